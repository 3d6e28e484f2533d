from datetime import datetime

from sqlalchemy import func
from sqlalchemy.orm import Session

from stock_ledger.models.transaction import StockTransaction, TransactionType


def transaction_summary(
    db: Session,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    type: TransactionType | None = None,
    supplier_id: str | None = None,
    recent_limit: int = 10,
) -> dict:
    q = db.query(StockTransaction)
    if start_date:
        q = q.filter(StockTransaction.transaction_date >= start_date)
    if end_date:
        q = q.filter(StockTransaction.transaction_date <= end_date)
    if type:
        q = q.filter(StockTransaction.type == type)
    if supplier_id:
        q = q.filter(StockTransaction.supplier_id == supplier_id)

    grouped = (
        q.with_entities(
            StockTransaction.type,
            func.count(StockTransaction.id),
            func.coalesce(func.sum(StockTransaction.total_value), 0.0),
        )
        .group_by(StockTransaction.type)
        .all()
    )
    by_type = [
        {"type": t.value, "count": count, "total_value": round(value, 2)}
        for t, count, value in sorted(grouped, key=lambda row: row[0].value)
    ]

    recent = (
        q.order_by(StockTransaction.transaction_date.desc(), StockTransaction.reference_number.desc())
        .limit(recent_limit)
        .all()
    )

    return {
        "total_transactions": sum(row["count"] for row in by_type),
        "total_value": round(sum(row["total_value"] for row in by_type), 2),
        "by_type": by_type,
        "recent_transactions": [
            {
                "id": t.id,
                "reference_number": t.reference_number,
                "type": t.type.value,
                "transaction_date": t.transaction_date.isoformat(),
                "total_value": t.total_value,
                "notes": t.notes,
            }
            for t in recent
        ],
        "date_range": {
            "start": start_date.isoformat() if start_date else None,
            "end": end_date.isoformat() if end_date else None,
        },
    }
