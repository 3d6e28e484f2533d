from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from stock_ledger.database import get_db
from stock_ledger.schemas.stock import (
    AdjustmentCalculate,
    AdjustmentPlanOut,
    BatchAdjustmentCalculate,
    BatchAdjustmentOut,
    CurrentStockOut,
    IntegrityReportOut,
    StockLevelOut,
    StockSummaryOut,
)
from stock_ledger.services import stock_engine

router = APIRouter(prefix="/stock", tags=["Stock"])


@router.get("/levels", response_model=list[StockLevelOut])
def stock_levels(product_ids: list[str] | None = Query(None), db: Session = Depends(get_db)):
    return stock_engine.get_real_time_stock_levels(db, product_ids)


@router.get("/summary", response_model=list[StockSummaryOut])
def stock_summary(
    only_low_stock: bool = False,
    include_zero_stock: bool = True,
    category: str | None = None,
    db: Session = Depends(get_db),
):
    return stock_engine.get_stock_summary(
        db, only_low_stock=only_low_stock, include_zero_stock=include_zero_stock, category=category
    )


@router.get("/low-stock", response_model=list[StockSummaryOut])
def low_stock(db: Session = Depends(get_db)):
    return stock_engine.get_low_stock_products(db)


@router.get("/integrity", response_model=list[IntegrityReportOut])
def ledger_integrity(db: Session = Depends(get_db)):
    return stock_engine.verify_ledger_integrity(db)


@router.post("/adjustments/calculate", response_model=AdjustmentPlanOut)
def calculate_adjustment(data: AdjustmentCalculate, db: Session = Depends(get_db)):
    return stock_engine.calculate_stock_adjustment(db, data.product_id, data.actual_stock)


@router.post("/adjustments/calculate-batch", response_model=BatchAdjustmentOut)
def calculate_batch_adjustments(data: BatchAdjustmentCalculate, db: Session = Depends(get_db)):
    return stock_engine.calculate_batch_stock_adjustments(db, data.adjustments)


@router.get("/{product_id}", response_model=CurrentStockOut)
def current_stock(product_id: str, db: Session = Depends(get_db)):
    return {"product_id": product_id, "current_stock": stock_engine.get_current_stock(db, product_id)}


@router.get("/{product_id}/integrity", response_model=IntegrityReportOut)
def product_integrity(product_id: str, db: Session = Depends(get_db)):
    return stock_engine.verify_stock_movement_integrity(db, product_id)
