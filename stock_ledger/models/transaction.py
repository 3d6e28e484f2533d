import uuid
from datetime import datetime
from enum import Enum as PyEnum

from sqlalchemy import DateTime, Enum, Float, ForeignKey, Integer, String, Text, event, func
from sqlalchemy.orm import Mapped, mapped_column, object_session, relationship

from stock_ledger.database import Base
from stock_ledger.services.exceptions import ImmutableRecordError


class TransactionType(str, PyEnum):
    IN = "IN"
    OUT = "OUT"
    ADJUST = "ADJUST"
    RETURN_IN = "RETURN_IN"
    RETURN_OUT = "RETURN_OUT"


class StockTransaction(Base):
    """Transaction header. Created once together with its items and movements."""

    __tablename__ = "stock_transactions"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    reference_number: Mapped[str] = mapped_column(String, unique=True, index=True)
    type: Mapped[TransactionType] = mapped_column(
        Enum(TransactionType, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        index=True,
    )
    transaction_date: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    supplier_id: Mapped[str | None] = mapped_column(String, ForeignKey("suppliers.id"), nullable=True)
    notes: Mapped[str] = mapped_column(Text, default="")
    total_value: Mapped[float | None] = mapped_column(Float, nullable=True)
    created_by: Mapped[str] = mapped_column(String, default="system")
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    items: Mapped[list["TransactionItem"]] = relationship(
        "TransactionItem", back_populates="transaction", order_by="TransactionItem.line_number"
    )
    movements: Mapped[list["StockMovement"]] = relationship(  # noqa: F821
        "StockMovement",
        back_populates="transaction",
        order_by="[StockMovement.sequence, StockMovement.id]",
    )


class TransactionItem(Base):
    __tablename__ = "transaction_items"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    transaction_id: Mapped[str] = mapped_column(String, ForeignKey("stock_transactions.id"), nullable=False)
    line_number: Mapped[int] = mapped_column(Integer, nullable=False)
    product_id: Mapped[str] = mapped_column(String, ForeignKey("products.id"), nullable=False, index=True)

    # As stated by the user; the effect on stock is derived from the transaction type
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_cost: Mapped[float | None] = mapped_column(Float, nullable=True)
    unit_price: Mapped[float | None] = mapped_column(Float, nullable=True)

    transaction: Mapped["StockTransaction"] = relationship("StockTransaction", back_populates="items")


@event.listens_for(StockTransaction, "before_update")
@event.listens_for(TransactionItem, "before_update")
def _reject_update(mapper, connection, target):
    # collection appends also mark the parent dirty; only column changes count
    if not object_session(target).is_modified(target, include_collections=False):
        return
    raise ImmutableRecordError(f"{type(target).__name__} records are immutable")


@event.listens_for(StockTransaction, "before_delete")
@event.listens_for(TransactionItem, "before_delete")
def _reject_delete(mapper, connection, target):
    raise ImmutableRecordError(f"{type(target).__name__} records cannot be deleted")
