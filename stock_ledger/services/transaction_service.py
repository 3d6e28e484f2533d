"""
TRANSACTION ORCHESTRATOR

Validates a multi-line transaction request, computes each line's effect on
the running balance and commits header, items and movements as one unit.

Concurrency:
- per-product locks (sorted order) around read -> validate -> write, then
  a per-type lock around reference number assignment and commit
- product rows read FOR UPDATE where the database supports it
- (product_id, sequence) and reference_number are unique; a lost race
  surfaces as IntegrityError, the unit is rolled back and retried
  up to MAX_COMMIT_RETRIES times
"""

import logging
from datetime import datetime, timezone

from pydantic import BaseModel, TypeAdapter
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import func, or_
from sqlalchemy.exc import DBAPIError, IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from stock_ledger.config import settings
from stock_ledger.models.product import Product
from stock_ledger.models.transaction import StockTransaction, TransactionItem, TransactionType
from stock_ledger.schemas.transaction import TransactionCreate
from stock_ledger.services import movement_log
from stock_ledger.services.exceptions import (
    ConcurrencyConflictError,
    InsufficientStockError,
    LedgerError,
    LedgerStorageError,
    LedgerValidationError,
    ProductNotFoundError,
    SupplierNotFoundError,
    TransactionNotFoundError,
)
from stock_ledger.services.locks import product_locks
from stock_ledger.services.paging import page_count, page_window
from stock_ledger.services.registry import get_supplier

logger = logging.getLogger(__name__)

REFERENCE_PREFIXES = {
    TransactionType.IN: "IN",
    TransactionType.OUT: "OUT",
    TransactionType.ADJUST: "ADJ",
    TransactionType.RETURN_IN: "RIN",
    TransactionType.RETURN_OUT: "ROUT",
}

# Types whose lines may not drive the balance below zero
_STOCK_CHECKED = {TransactionType.OUT, TransactionType.RETURN_OUT}

# PostgreSQL serialization failure / deadlock detected
_TRANSIENT_SQLSTATES = {"40001", "40P01"}

_request_adapter = TypeAdapter(TransactionCreate)


def parse_transaction_request(payload) -> BaseModel:
    """Validate a raw dict into the request variant for its ``type``."""
    try:
        return _request_adapter.validate_python(payload)
    except PydanticValidationError as exc:
        error = exc.errors()[0]
        loc = [str(part) for part in error["loc"]]
        # tagged unions prefix the location with the tag
        if loc and loc[0] in {t.value for t in TransactionType}:
            loc = loc[1:]
        raise LedgerValidationError(".".join(loc) or "type", error["msg"]) from exc


def calculate_quantity_change(transaction_type, quantity: int) -> int:
    try:
        transaction_type = TransactionType(transaction_type)
    except ValueError:
        raise LedgerValidationError("type", f"Unknown transaction type: {transaction_type}") from None

    if transaction_type in (TransactionType.IN, TransactionType.RETURN_IN):
        return abs(quantity)
    if transaction_type in (TransactionType.OUT, TransactionType.RETURN_OUT):
        return -abs(quantity)
    # ADJUST: the quantity is the signed delta
    return quantity


def calculate_transaction_totals(items) -> dict:
    totals = {
        "total_items": len(items),
        "total_quantity": 0,
        "total_cost": 0.0,
        "total_price": 0.0,
        "has_costing": False,
        "has_pricing": False,
    }
    for item in items:
        totals["total_quantity"] += item.quantity
        unit_cost = getattr(item, "unit_cost", None)
        unit_price = getattr(item, "unit_price", None)
        if unit_cost:
            totals["total_cost"] += unit_cost * item.quantity
            totals["has_costing"] = True
        if unit_price:
            totals["total_price"] += unit_price * item.quantity
            totals["has_pricing"] = True
    totals["total_cost"] = round(totals["total_cost"], 2)
    totals["total_price"] = round(totals["total_price"], 2)
    return totals


def _generate_reference_number(db: Session, transaction_type: TransactionType) -> str:
    today = datetime.now(timezone.utc).strftime("%Y%m%d")
    prefix = f"{REFERENCE_PREFIXES[transaction_type]}-{today}-"
    last = (
        db.query(StockTransaction.reference_number)
        .filter(StockTransaction.reference_number.like(f"{prefix}%"))
        .order_by(
            func.length(StockTransaction.reference_number).desc(),
            StockTransaction.reference_number.desc(),
        )
        .first()
    )
    sequence = int(last.reference_number.rsplit("-", 1)[1]) + 1 if last else 1
    return f"{prefix}{sequence:04d}"


def _is_transient(exc: DBAPIError) -> bool:
    if isinstance(exc, IntegrityError):
        return True
    orig = getattr(exc, "orig", None)
    sqlstate = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    return sqlstate in _TRANSIENT_SQLSTATES


def create_transaction(db: Session, data) -> StockTransaction:
    """
    Commit a stock transaction and one movement per line, or nothing.

    ``data`` is one of the request variants of ``TransactionCreate`` or a
    plain dict in the same shape.
    """
    if not isinstance(data, BaseModel):
        data = parse_transaction_request(data)
    product_ids = sorted({item.product_id for item in data.items})

    for attempt in range(1, settings.MAX_COMMIT_RETRIES + 1):
        try:
            with product_locks.hold(product_ids, timeout=settings.LOCK_TIMEOUT), \
                    product_locks.hold_reference(data.type, timeout=settings.LOCK_TIMEOUT):
                txn = _commit_transaction(db, data, product_ids)
        except LedgerError:
            db.rollback()
            raise
        except DBAPIError as exc:
            db.rollback()
            if not _is_transient(exc):
                logger.exception("Storage failure while committing %s transaction", data.type)
                raise LedgerStorageError("Failed to create transaction") from exc
            logger.info(
                "Commit conflict on %s transaction for %s (attempt %d/%d)",
                data.type, ", ".join(product_ids), attempt, settings.MAX_COMMIT_RETRIES,
            )
            continue
        except SQLAlchemyError as exc:
            db.rollback()
            logger.exception("Storage failure while committing %s transaction", data.type)
            raise LedgerStorageError("Failed to create transaction") from exc

        logger.info(
            "Committed %s (%s, %d line(s))", txn.reference_number, txn.type.value, len(data.items)
        )
        return txn

    logger.warning(
        "Giving up on %s transaction for %s after %d conflicting attempts",
        data.type, ", ".join(product_ids), settings.MAX_COMMIT_RETRIES,
    )
    raise ConcurrencyConflictError("Transaction conflicted with a concurrent update; please retry")


def _commit_transaction(db: Session, data, product_ids: list[str]) -> StockTransaction:
    transaction_type = TransactionType(data.type)

    products = (
        db.query(Product)
        .filter(Product.id.in_(product_ids))
        .order_by(Product.id)
        .with_for_update()
        .all()
    )
    found = {p.id for p in products}
    missing = [pid for pid in product_ids if pid not in found]
    if missing:
        raise ProductNotFoundError(missing)

    supplier_id = getattr(data, "supplier_id", None)
    if supplier_id and not get_supplier(db, supplier_id):
        raise SupplierNotFoundError(supplier_id)

    balances: dict[str, int] = {}
    sequences: dict[str, int] = {}
    for product_id in product_ids:
        head = movement_log.latest_movement(db, product_id)
        balances[product_id] = head.quantity_after if head else 0
        sequences[product_id] = head.sequence if head else 0

    # Validate every line before writing anything
    planned = []
    for item in data.items:
        before = balances[item.product_id]
        change = calculate_quantity_change(transaction_type, item.quantity)
        if transaction_type in _STOCK_CHECKED and before < item.quantity:
            logger.warning(
                "Rejected %s for product %s: available %d, requested %d",
                transaction_type.value, item.product_id, before, item.quantity,
            )
            raise InsufficientStockError(item.product_id, before, item.quantity)
        balances[item.product_id] = before + change
        sequences[item.product_id] += 1
        planned.append((item, before, change, sequences[item.product_id]))

    totals = calculate_transaction_totals(data.items)
    priced = totals["has_costing"] or totals["has_pricing"]

    txn = StockTransaction(
        reference_number=_generate_reference_number(db, transaction_type),
        type=transaction_type,
        transaction_date=data.transaction_date,
        supplier_id=supplier_id,
        notes=data.notes,
        total_value=round(totals["total_cost"] + totals["total_price"], 2) if priced else None,
        created_by=data.created_by,
    )
    db.add(txn)

    for line_number, (item, before, change, sequence) in enumerate(planned, start=1):
        line = TransactionItem(
            transaction=txn,
            line_number=line_number,
            product_id=item.product_id,
            quantity=item.quantity,
            unit_cost=getattr(item, "unit_cost", None),
            unit_price=getattr(item, "unit_price", None),
        )
        db.add(line)
        movement_log.record_movement(
            db,
            transaction=txn,
            item=line,
            movement_type=transaction_type,
            sequence=sequence,
            quantity_before=before,
            quantity_change=change,
        )

    db.commit()
    db.refresh(txn)
    return txn


def get_transaction(db: Session, transaction_id: str) -> StockTransaction:
    txn = (
        db.query(StockTransaction)
        .options(selectinload(StockTransaction.items), selectinload(StockTransaction.movements))
        .filter(StockTransaction.id == transaction_id)
        .first()
    )
    if not txn:
        raise TransactionNotFoundError(transaction_id)
    return txn


def list_transactions(
    db: Session,
    *,
    type: TransactionType | None = None,
    supplier_id: str | None = None,
    product_id: str | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    search: str | None = None,
    page: int = 1,
    limit: int | None = None,
) -> dict:
    page, limit, offset = page_window(page, limit)

    q = db.query(StockTransaction)
    if type:
        q = q.filter(StockTransaction.type == type)
    if supplier_id:
        q = q.filter(StockTransaction.supplier_id == supplier_id)
    if product_id:
        q = q.filter(StockTransaction.items.any(TransactionItem.product_id == product_id))
    if start_date:
        q = q.filter(StockTransaction.transaction_date >= start_date)
    if end_date:
        q = q.filter(StockTransaction.transaction_date <= end_date)
    if search:
        like = f"%{search}%"
        q = q.filter(
            or_(StockTransaction.reference_number.ilike(like), StockTransaction.notes.ilike(like))
        )

    total = q.count()
    transactions = (
        q.options(selectinload(StockTransaction.items))
        .order_by(StockTransaction.transaction_date.desc(), StockTransaction.reference_number.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    return {
        "transactions": transactions,
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "pages": page_count(total, limit),
        },
    }
