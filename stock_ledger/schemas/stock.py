from datetime import datetime

from pydantic import BaseModel, Field

from stock_ledger.models.transaction import TransactionType


class StockLevelOut(BaseModel):
    product_id: str
    sku: str
    name: str
    unit: str
    current_stock: int
    minimum_stock: int | None = None
    is_low_stock: bool
    last_updated: datetime | None = None


class StockSummaryOut(StockLevelOut):
    category: str
    total_movements: int


class CurrentStockOut(BaseModel):
    product_id: str
    current_stock: int


# --- Stock card ---

class StockCardMovement(BaseModel):
    id: str
    product_id: str
    transaction_id: str
    transaction_item_id: str
    reference_number: str
    transaction_type: TransactionType
    transaction_date: datetime
    notes: str
    movement_type: TransactionType
    sequence: int
    quantity_before: int
    quantity_change: int
    quantity_after: int
    running_balance: int
    balance_verified: bool
    created_at: datetime


class StockCardPagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int
    has_more: bool


class StockCardOut(BaseModel):
    movements: list[StockCardMovement]
    pagination: StockCardPagination


# --- Adjustments ---

class AdjustmentCalculate(BaseModel):
    product_id: str = Field(min_length=1)
    actual_stock: int = Field(ge=0)


class BatchAdjustmentCalculate(BaseModel):
    adjustments: list[AdjustmentCalculate]


class AdjustmentPlanOut(BaseModel):
    product_id: str
    current_stock: int
    actual_stock: int
    difference: int
    adjustment_type: str
    adjustment_quantity: int


class BatchAdjustmentSummary(BaseModel):
    total_adjustments: int
    increases: int
    decreases: int
    no_changes: int
    total_increase_quantity: int
    total_decrease_quantity: int


class BatchAdjustmentOut(BaseModel):
    adjustments: list[AdjustmentPlanOut]
    summary: BatchAdjustmentSummary


# --- Integrity ---

class IntegrityErrorOut(BaseModel):
    movement_id: str
    sequence: int
    issue: str
    expected: int
    actual: int
    message: str


class IntegrityReportOut(BaseModel):
    valid: bool
    product_id: str
    total_movements: int
    final_balance: int
    errors: list[IntegrityErrorOut]
