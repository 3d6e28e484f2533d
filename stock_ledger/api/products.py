from datetime import datetime

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from stock_ledger.database import get_db
from stock_ledger.models.transaction import TransactionType
from stock_ledger.schemas.product import ProductCreate, ProductOut
from stock_ledger.schemas.stock import StockCardOut
from stock_ledger.services import registry, stock_engine

router = APIRouter(prefix="/products", tags=["Products"])


@router.post("", response_model=ProductOut, status_code=201)
def create_product(data: ProductCreate, db: Session = Depends(get_db)):
    return registry.create_product(db, data)


@router.get("", response_model=list[ProductOut])
def list_products(skip: int = 0, limit: int = 100, category: str | None = None, db: Session = Depends(get_db)):
    return registry.list_products(db, skip=skip, limit=limit, category=category)


@router.get("/{product_id}", response_model=ProductOut)
def get_product(product_id: str, db: Session = Depends(get_db)):
    return registry.require_product(db, product_id)


@router.get("/{product_id}/stock-card", response_model=StockCardOut)
def stock_card(
    product_id: str,
    start_date: datetime | None = Query(None),
    end_date: datetime | None = Query(None),
    type: TransactionType | None = None,
    page: int = 1,
    limit: int | None = None,
    order: str = "desc",
    db: Session = Depends(get_db),
):
    return stock_engine.get_product_stock_card(
        db,
        product_id,
        start_date=start_date,
        end_date=end_date,
        transaction_type=type,
        page=page,
        limit=limit,
        order=order,
    )
