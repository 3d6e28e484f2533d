from stock_ledger.config import settings
from stock_ledger.services.exceptions import LedgerValidationError


def page_window(page: int = 1, limit: int | None = None) -> tuple[int, int, int]:
    """Return (page, limit, offset) with limit clamped to MAX_PAGE_SIZE."""
    if page < 1:
        raise LedgerValidationError("page", "Page must be 1 or greater")
    if limit is None:
        limit = settings.STOCK_CARD_PAGE_SIZE
    if limit < 1:
        raise LedgerValidationError("limit", "Limit must be 1 or greater")
    limit = min(limit, settings.MAX_PAGE_SIZE)
    return page, limit, (page - 1) * limit


def page_count(total: int, limit: int) -> int:
    return (total + limit - 1) // limit
