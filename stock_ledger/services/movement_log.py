"""
Movement log: the append-only store of stock movements.

Writes go through ``record_movement`` and only the transaction service calls
it, inside the unit of work that also holds the product locks. Reads are
ordered by the per-product ``sequence``, which follows creation order.
"""

from datetime import datetime

from sqlalchemy.orm import Query, Session, joinedload

from stock_ledger.models.stock_movement import StockMovement
from stock_ledger.models.transaction import StockTransaction, TransactionItem, TransactionType


def record_movement(
    db: Session,
    *,
    transaction: StockTransaction,
    item: TransactionItem,
    movement_type: TransactionType,
    sequence: int,
    quantity_before: int,
    quantity_change: int,
) -> StockMovement:
    movement = StockMovement(
        product_id=item.product_id,
        transaction=transaction,
        transaction_item=item,
        movement_type=movement_type,
        sequence=sequence,
        quantity_before=quantity_before,
        quantity_change=quantity_change,
        quantity_after=quantity_before + quantity_change,
    )
    db.add(movement)
    return movement


def latest_movement(db: Session, product_id: str) -> StockMovement | None:
    return (
        db.query(StockMovement)
        .filter(StockMovement.product_id == product_id)
        .order_by(StockMovement.sequence.desc())
        .first()
    )


def current_balance(db: Session, product_id: str) -> int:
    movement = latest_movement(db, product_id)
    return movement.quantity_after if movement else 0


def _filtered(
    db: Session,
    product_id: str,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    movement_type: TransactionType | None = None,
) -> Query:
    q = db.query(StockMovement).filter(StockMovement.product_id == product_id)
    if start_date:
        q = q.filter(StockMovement.created_at >= start_date)
    if end_date:
        q = q.filter(StockMovement.created_at <= end_date)
    if movement_type:
        q = q.filter(StockMovement.movement_type == movement_type)
    return q


def movements_for_product(
    db: Session,
    product_id: str,
    *,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    movement_type: TransactionType | None = None,
    newest_first: bool = True,
    offset: int = 0,
    limit: int | None = None,
) -> list[StockMovement]:
    q = _filtered(db, product_id, start_date, end_date, movement_type).options(
        joinedload(StockMovement.transaction)
    )
    order = StockMovement.sequence.desc() if newest_first else StockMovement.sequence.asc()
    q = q.order_by(order).offset(offset)
    if limit is not None:
        q = q.limit(limit)
    return q.all()


def count_movements(
    db: Session,
    product_id: str,
    *,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    movement_type: TransactionType | None = None,
) -> int:
    return _filtered(db, product_id, start_date, end_date, movement_type).count()


def product_ids_with_movements(db: Session) -> list[str]:
    rows = db.query(StockMovement.product_id).distinct().order_by(StockMovement.product_id).all()
    return [r.product_id for r in rows]
