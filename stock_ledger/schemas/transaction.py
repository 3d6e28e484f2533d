from datetime import datetime, timezone
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, PositiveFloat, StrictInt, field_validator

from stock_ledger.config import settings
from stock_ledger.models.transaction import TransactionType


def _now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


# --- Line items: one shape per transaction type ---

class _PositiveItem(BaseModel):
    product_id: str = Field(min_length=1)
    quantity: StrictInt = Field(gt=0)


class StockInItem(_PositiveItem):
    unit_cost: PositiveFloat


class StockOutItem(_PositiveItem):
    unit_price: PositiveFloat


class AdjustItem(BaseModel):
    product_id: str = Field(min_length=1)
    quantity: StrictInt  # signed delta, not a magnitude

    @field_validator("quantity")
    @classmethod
    def non_zero(cls, v):
        if v == 0:
            raise ValueError("Adjustment quantity cannot be zero")
        return v


class ReturnInItem(_PositiveItem):
    unit_cost: PositiveFloat | None = None


class ReturnOutItem(_PositiveItem):
    unit_price: PositiveFloat


# --- Transaction requests ---

class _TransactionBase(BaseModel):
    transaction_date: datetime = Field(default_factory=_now)
    notes: str = Field("", max_length=settings.NOTES_MAX_LENGTH)
    created_by: str = "system"

    @field_validator("notes", mode="before")
    @classmethod
    def strip_notes(cls, v):
        if v is None:
            return ""
        return v.strip() if isinstance(v, str) else v

    @field_validator("transaction_date")
    @classmethod
    def naive_utc(cls, v: datetime):
        if v.tzinfo is not None:
            return v.astimezone(timezone.utc).replace(tzinfo=None)
        return v


class StockInRequest(_TransactionBase):
    type: Literal["IN"]
    supplier_id: str = Field(min_length=1)
    items: list[StockInItem] = Field(min_length=1)


class StockOutRequest(_TransactionBase):
    type: Literal["OUT"]
    items: list[StockOutItem] = Field(min_length=1)


class AdjustRequest(_TransactionBase):
    type: Literal["ADJUST"]
    items: list[AdjustItem] = Field(min_length=1)


class ReturnInRequest(_TransactionBase):
    type: Literal["RETURN_IN"]
    supplier_id: str | None = None
    items: list[ReturnInItem] = Field(min_length=1)


class ReturnOutRequest(_TransactionBase):
    type: Literal["RETURN_OUT"]
    items: list[ReturnOutItem] = Field(min_length=1)


TransactionCreate = Annotated[
    Union[StockInRequest, StockOutRequest, AdjustRequest, ReturnInRequest, ReturnOutRequest],
    Field(discriminator="type"),
]


# --- Responses ---

class TransactionItemOut(BaseModel):
    id: str
    line_number: int
    product_id: str
    quantity: int
    unit_cost: float | None = None
    unit_price: float | None = None

    model_config = {"from_attributes": True}


class StockMovementOut(BaseModel):
    id: str
    product_id: str
    transaction_id: str
    transaction_item_id: str
    movement_type: TransactionType
    sequence: int
    quantity_before: int
    quantity_change: int
    quantity_after: int
    created_at: datetime

    model_config = {"from_attributes": True}


class TransactionOut(BaseModel):
    id: str
    reference_number: str
    type: TransactionType
    transaction_date: datetime
    supplier_id: str | None = None
    notes: str
    total_value: float | None = None
    created_by: str
    created_at: datetime
    items: list[TransactionItemOut]
    movements: list[StockMovementOut]

    model_config = {"from_attributes": True}


class TransactionListItem(BaseModel):
    id: str
    reference_number: str
    type: TransactionType
    transaction_date: datetime
    supplier_id: str | None = None
    notes: str
    total_value: float | None = None
    created_by: str
    created_at: datetime
    items: list[TransactionItemOut]

    model_config = {"from_attributes": True}


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class TransactionPage(BaseModel):
    transactions: list[TransactionListItem]
    pagination: Pagination
