from datetime import datetime

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from stock_ledger.database import get_db
from stock_ledger.models.transaction import TransactionType
from stock_ledger.services import report_service

router = APIRouter(prefix="/reports", tags=["Reports"])


@router.get("/transactions")
def transactions_report(
    start_date: datetime | None = Query(None),
    end_date: datetime | None = Query(None),
    type: TransactionType | None = None,
    supplier_id: str | None = None,
    db: Session = Depends(get_db),
):
    return report_service.transaction_summary(
        db, start_date=start_date, end_date=end_date, type=type, supplier_id=supplier_id
    )
