import uuid
from datetime import datetime

from sqlalchemy import (
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    event,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, object_session, relationship

from stock_ledger.database import Base
from stock_ledger.models.transaction import TransactionType
from stock_ledger.services.exceptions import ImmutableRecordError


class StockMovement(Base):
    """
    Append-only ledger entry: one per (transaction, item).

    quantity_after = quantity_before + quantity_change, and quantity_before
    equals the quantity_after of the previous movement for the same product.
    ``sequence`` numbers a product's movements 1, 2, 3, ...; the unique
    (product_id, sequence) pair rejects a second writer that read the same
    balance.
    """

    __tablename__ = "stock_movements"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    product_id: Mapped[str] = mapped_column(String, ForeignKey("products.id"), nullable=False)
    transaction_id: Mapped[str] = mapped_column(String, ForeignKey("stock_transactions.id"), nullable=False)
    transaction_item_id: Mapped[str] = mapped_column(
        String, ForeignKey("transaction_items.id"), nullable=False, unique=True
    )
    movement_type: Mapped[TransactionType] = mapped_column(
        Enum(TransactionType, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    quantity_before: Mapped[int] = mapped_column(Integer, nullable=False)
    quantity_change: Mapped[int] = mapped_column(Integer, nullable=False)  # signed
    quantity_after: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    transaction: Mapped["StockTransaction"] = relationship(  # noqa: F821
        "StockTransaction", back_populates="movements"
    )
    transaction_item: Mapped["TransactionItem"] = relationship("TransactionItem")  # noqa: F821

    __table_args__ = (
        UniqueConstraint("product_id", "sequence", name="uq_stock_movements_product_sequence"),
        Index("ix_stock_movements_product_created_at", "product_id", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<StockMovement {self.movement_type} product={self.product_id} seq={self.sequence} "
            f"{self.quantity_before}{self.quantity_change:+d}={self.quantity_after}>"
        )


@event.listens_for(StockMovement, "before_update")
def _reject_update(mapper, connection, target):
    if not object_session(target).is_modified(target, include_collections=False):
        return
    raise ImmutableRecordError("StockMovement records are immutable")


@event.listens_for(StockMovement, "before_delete")
def _reject_delete(mapper, connection, target):
    raise ImmutableRecordError("StockMovement records cannot be deleted")
