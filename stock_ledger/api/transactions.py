from datetime import datetime

from fastapi import APIRouter, BackgroundTasks, Depends, Query
from sqlalchemy.orm import Session

from stock_ledger.database import get_db
from stock_ledger.models.transaction import TransactionType
from stock_ledger.schemas.transaction import TransactionCreate, TransactionOut, TransactionPage
from stock_ledger.services import notification_service, transaction_service

router = APIRouter(prefix="/transactions", tags=["Transactions"])


@router.post("", response_model=TransactionOut, status_code=201)
def create_transaction(data: TransactionCreate, background_tasks: BackgroundTasks, db: Session = Depends(get_db)):
    txn = transaction_service.create_transaction(db, data)
    # Built now, while the session is open; delivered after the response
    event = notification_service.build_transaction_event(db, txn)
    background_tasks.add_task(notification_service.dispatch, event)
    return txn


@router.get("", response_model=TransactionPage)
def list_transactions(
    type: TransactionType | None = None,
    supplier_id: str | None = None,
    product_id: str | None = None,
    start_date: datetime | None = Query(None),
    end_date: datetime | None = Query(None),
    search: str | None = None,
    page: int = 1,
    limit: int | None = None,
    db: Session = Depends(get_db),
):
    return transaction_service.list_transactions(
        db,
        type=type,
        supplier_id=supplier_id,
        product_id=product_id,
        start_date=start_date,
        end_date=end_date,
        search=search,
        page=page,
        limit=limit,
    )


@router.get("/{transaction_id}", response_model=TransactionOut)
def get_transaction(transaction_id: str, db: Session = Depends(get_db)):
    return transaction_service.get_transaction(db, transaction_id)
