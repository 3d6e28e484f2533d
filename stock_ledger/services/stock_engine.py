"""
STOCK CALCULATION ENGINE

Read/derive operations over the movement log: current balances, stock
levels and summaries, the stock card, adjustment planning and integrity
verification. Nothing here writes; balances are never recomputed from the
transaction tables.
"""

import logging
from datetime import datetime

from sqlalchemy import and_, func
from sqlalchemy.orm import Session

from stock_ledger.models.product import Product
from stock_ledger.models.stock_movement import StockMovement
from stock_ledger.models.transaction import TransactionType
from stock_ledger.schemas.transaction import AdjustItem, AdjustRequest
from stock_ledger.services import movement_log
from stock_ledger.services.exceptions import IntegrityViolationError, LedgerValidationError
from stock_ledger.services.paging import page_count, page_window
from stock_ledger.services.registry import require_product

logger = logging.getLogger(__name__)

INCREASE = "INCREASE"
DECREASE = "DECREASE"
NO_CHANGE = "NO_CHANGE"


def is_low_stock(current_stock: int, minimum_stock: int | None) -> bool:
    return minimum_stock is not None and current_stock <= minimum_stock


def get_current_stock(db: Session, product_id: str) -> int:
    require_product(db, product_id)
    return movement_log.current_balance(db, product_id)


# --- Stock levels ---

def _stock_rows(db: Session, product_ids=None, category: str | None = None):
    """One row per product: (Product, quantity_after, created_at, total_movements)."""
    heads = (
        db.query(
            StockMovement.product_id.label("product_id"),
            func.max(StockMovement.sequence).label("sequence"),
            func.count(StockMovement.id).label("total_movements"),
        )
        .group_by(StockMovement.product_id)
        .subquery()
    )
    q = (
        db.query(Product, StockMovement.quantity_after, StockMovement.created_at, heads.c.total_movements)
        .outerjoin(heads, heads.c.product_id == Product.id)
        .outerjoin(
            StockMovement,
            and_(StockMovement.product_id == Product.id, StockMovement.sequence == heads.c.sequence),
        )
    )
    if product_ids is not None:
        q = q.filter(Product.id.in_(list(product_ids)))
    if category:
        q = q.filter(Product.category == category)
    return q.order_by(Product.name, Product.sku).all()


def _level(product: Product, current_stock: int | None, last_updated: datetime | None) -> dict:
    current_stock = current_stock or 0
    return {
        "product_id": product.id,
        "sku": product.sku,
        "name": product.name,
        "unit": product.unit,
        "current_stock": current_stock,
        "minimum_stock": product.minimum_stock,
        "is_low_stock": is_low_stock(current_stock, product.minimum_stock),
        "last_updated": last_updated,
    }


def get_current_stock_levels(db: Session, product_ids) -> dict[str, int]:
    """Map of product id to balance; unknown ids are reported as 0."""
    product_ids = list(product_ids)
    levels = {pid: 0 for pid in product_ids}
    for product, quantity_after, _, _ in _stock_rows(db, product_ids):
        levels[product.id] = quantity_after or 0
    return levels


def get_real_time_stock_levels(db: Session, product_ids=None) -> list[dict]:
    return [
        _level(product, quantity_after, created_at)
        for product, quantity_after, created_at, _ in _stock_rows(db, product_ids)
    ]


def get_stock_summary(
    db: Session,
    only_low_stock: bool = False,
    include_zero_stock: bool = True,
    category: str | None = None,
) -> list[dict]:
    summary = []
    for product, quantity_after, created_at, total_movements in _stock_rows(db, category=category):
        row = _level(product, quantity_after, created_at)
        row["category"] = product.category
        row["total_movements"] = total_movements or 0
        summary.append(row)

    if not include_zero_stock:
        summary = [row for row in summary if row["current_stock"] > 0]
    if only_low_stock:
        summary = [row for row in summary if row["is_low_stock"]]
    return summary


def get_low_stock_products(db: Session) -> list[dict]:
    """Low-stock rows, furthest below their minimum first."""
    rows = get_stock_summary(db, only_low_stock=True, include_zero_stock=True)
    return sorted(rows, key=lambda r: r["minimum_stock"] - r["current_stock"], reverse=True)


# --- Stock card ---

def _with_running_balances(movements: list[StockMovement]) -> list[dict]:
    running = None
    rows = []
    for m in sorted(movements, key=lambda m: m.sequence):
        if running is None:
            running = m.quantity_before
        running += m.quantity_change
        txn = m.transaction
        rows.append({
            "id": m.id,
            "product_id": m.product_id,
            "transaction_id": m.transaction_id,
            "transaction_item_id": m.transaction_item_id,
            "reference_number": txn.reference_number,
            "transaction_type": txn.type,
            "transaction_date": txn.transaction_date,
            "notes": txn.notes,
            "movement_type": m.movement_type,
            "sequence": m.sequence,
            "quantity_before": m.quantity_before,
            "quantity_change": m.quantity_change,
            "quantity_after": m.quantity_after,
            "running_balance": running,
            "balance_verified": running == m.quantity_after,
            "created_at": m.created_at,
        })
    return rows


def get_product_stock_card(
    db: Session,
    product_id: str,
    *,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    transaction_type: TransactionType | None = None,
    page: int = 1,
    limit: int | None = None,
    order: str = "desc",
) -> dict:
    if order not in ("asc", "desc"):
        raise LedgerValidationError("order", "Order must be 'asc' or 'desc'")
    require_product(db, product_id)
    page, limit, offset = page_window(page, limit)
    filters = {"start_date": start_date, "end_date": end_date, "movement_type": transaction_type}

    total = movement_log.count_movements(db, product_id, **filters)
    movements = movement_log.movements_for_product(
        db, product_id, newest_first=(order == "desc"), offset=offset, limit=limit, **filters
    )
    rows = _with_running_balances(movements)
    if order == "desc":
        rows.reverse()

    return {
        "movements": rows,
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "pages": page_count(total, limit),
            "has_more": offset + limit < total,
        },
    }


# --- Adjustments ---

def calculate_stock_adjustment(db: Session, product_id: str, actual_stock: int) -> dict:
    if isinstance(actual_stock, bool) or not isinstance(actual_stock, int):
        raise LedgerValidationError("actual_stock", "Actual stock must be an integer")
    if actual_stock < 0:
        raise LedgerValidationError("actual_stock", "Actual stock cannot be negative")

    current_stock = get_current_stock(db, product_id)
    difference = actual_stock - current_stock
    if difference > 0:
        adjustment_type = INCREASE
    elif difference < 0:
        adjustment_type = DECREASE
    else:
        adjustment_type = NO_CHANGE

    return {
        "product_id": product_id,
        "current_stock": current_stock,
        "actual_stock": actual_stock,
        "difference": difference,
        "adjustment_type": adjustment_type,
        "adjustment_quantity": abs(difference),
    }


def calculate_batch_stock_adjustments(db: Session, adjustments) -> dict:
    """
    Plan a stock count reconciliation. Read-only: submit the result as an
    ADJUST transaction (see ``adjustment_request_from_plans``) to apply it.
    """
    results = []
    for entry in adjustments:
        if isinstance(entry, dict):
            product_id, actual_stock = entry.get("product_id"), entry.get("actual_stock")
        else:
            product_id, actual_stock = entry.product_id, entry.actual_stock
        results.append(calculate_stock_adjustment(db, product_id, actual_stock))

    increases = [r for r in results if r["adjustment_type"] == INCREASE]
    decreases = [r for r in results if r["adjustment_type"] == DECREASE]
    return {
        "adjustments": results,
        "summary": {
            "total_adjustments": len(results),
            "increases": len(increases),
            "decreases": len(decreases),
            "no_changes": len(results) - len(increases) - len(decreases),
            "total_increase_quantity": sum(r["adjustment_quantity"] for r in increases),
            "total_decrease_quantity": sum(r["adjustment_quantity"] for r in decreases),
        },
    }


def adjustment_request_from_plans(plans, notes: str = "", created_by: str = "system") -> AdjustRequest:
    """Turn adjustment plans into the ADJUST request carrying their differences."""
    if isinstance(plans, dict):
        plans = plans["adjustments"]
    items = [
        AdjustItem(product_id=p["product_id"], quantity=p["difference"])
        for p in plans
        if p["difference"] != 0
    ]
    if not items:
        raise LedgerValidationError("items", "No stock differences to adjust")
    return AdjustRequest(type="ADJUST", items=items, notes=notes, created_by=created_by)


# --- Integrity ---

def verify_stock_movement_integrity(db: Session, product_id: str) -> dict:
    require_product(db, product_id)
    movements = movement_log.movements_for_product(db, product_id, newest_first=False)

    errors = []
    expected_before = 0
    for position, m in enumerate(movements, start=1):
        if m.quantity_before != expected_before:
            issue = "OPENING_BALANCE_MISMATCH" if position == 1 else "BALANCE_MISMATCH"
            errors.append({
                "movement_id": m.id,
                "sequence": m.sequence,
                "issue": issue,
                "expected": expected_before,
                "actual": m.quantity_before,
                "message": (
                    f"Movement {position}: quantity_before ({m.quantity_before}) "
                    f"doesn't match expected balance ({expected_before})"
                ),
            })

        calculated_after = m.quantity_before + m.quantity_change
        if m.quantity_after != calculated_after:
            errors.append({
                "movement_id": m.id,
                "sequence": m.sequence,
                "issue": "CALCULATION_ERROR",
                "expected": calculated_after,
                "actual": m.quantity_after,
                "message": (
                    f"Movement {position}: quantity_after ({m.quantity_after}) "
                    f"doesn't equal quantity_before + quantity_change ({calculated_after})"
                ),
            })
        expected_before = m.quantity_after

    if errors:
        logger.warning("Integrity check failed for product %s: %d error(s)", product_id, len(errors))
    return {
        "valid": not errors,
        "product_id": product_id,
        "total_movements": len(movements),
        "final_balance": movements[-1].quantity_after if movements else 0,
        "errors": errors,
    }


def assert_stock_movement_integrity(db: Session, product_id: str) -> dict:
    report = verify_stock_movement_integrity(db, product_id)
    if not report["valid"]:
        raise IntegrityViolationError(report)
    return report


def verify_ledger_integrity(db: Session) -> list[dict]:
    return [
        verify_stock_movement_integrity(db, product_id)
        for product_id in movement_log.product_ids_with_movements(db)
    ]
