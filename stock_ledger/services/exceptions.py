"""
LEDGER SERVICE ERRORS

Domain errors raised by the ledger services. The HTTP layer maps each class
to a status code; messages of the deterministic errors are safe to show to
the caller verbatim.
"""


class LedgerError(Exception):
    """Base exception for all ledger failures."""

    status_code = 500

    def to_dict(self) -> dict:
        return {"detail": str(self)}


class LedgerValidationError(LedgerError):
    """Malformed request: rejected before any stock is read."""

    status_code = 422

    def __init__(self, field: str, message: str):
        self.field = field
        self.message = message
        super().__init__(f"{field}: {message}" if field else message)

    def to_dict(self) -> dict:
        return {"detail": str(self), "field": self.field}


class SupplierNotFoundError(LedgerValidationError):
    def __init__(self, supplier_id: str):
        self.supplier_id = supplier_id
        super().__init__("supplier_id", f"Supplier {supplier_id} not found")


class ProductNotFoundError(LedgerError):
    status_code = 404

    def __init__(self, product_ids):
        if isinstance(product_ids, str):
            product_ids = [product_ids]
        self.product_ids = list(product_ids)
        noun = "Product" if len(self.product_ids) == 1 else "Products"
        super().__init__(f"{noun} {', '.join(self.product_ids)} not found")

    def to_dict(self) -> dict:
        return {"detail": str(self), "product_ids": self.product_ids}


class TransactionNotFoundError(LedgerError):
    status_code = 404

    def __init__(self, transaction_id: str):
        self.transaction_id = transaction_id
        super().__init__(f"Transaction {transaction_id} not found")


class InsufficientStockError(LedgerError):
    """An OUT / RETURN_OUT line would drive the balance below zero."""

    status_code = 409

    def __init__(self, product_id: str, available: int, requested: int):
        self.product_id = product_id
        self.available = available
        self.requested = requested
        super().__init__(f"Insufficient stock. Available: {available}, Requested: {requested}")

    def to_dict(self) -> dict:
        return {
            "detail": str(self),
            "product_id": self.product_id,
            "available": self.available,
            "requested": self.requested,
        }


class ConcurrencyConflictError(LedgerError):
    """Commit retries exhausted; the whole request may be retried."""

    status_code = 503

    def to_dict(self) -> dict:
        return {"detail": str(self), "retryable": True}


class IntegrityViolationError(LedgerError):
    """A product's movement chain is broken. Only raised by the verifier."""

    def __init__(self, report: dict):
        self.report = report
        super().__init__(
            f"Stock movement integrity violated for product {report['product_id']}: "
            f"{len(report['errors'])} error(s)"
        )


class ImmutableRecordError(LedgerError):
    """Ledger rows are append-only."""


class LedgerStorageError(LedgerError):
    """Storage fault. The original error is logged, never shown."""
