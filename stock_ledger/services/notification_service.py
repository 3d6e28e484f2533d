"""
Stock notifications.

Pushes a ``stock.transaction_committed`` event after each commit to
in-process subscribers and to the configured webhook URLs. Runs outside the
ledger's unit of work: a failing subscriber or endpoint is logged and never
affects the committed transaction.
"""

import logging
from typing import Callable

import httpx
from sqlalchemy.orm import Session

from stock_ledger.config import settings
from stock_ledger.models.transaction import StockTransaction
from stock_ledger.services import stock_engine

logger = logging.getLogger(__name__)

EVENT_TRANSACTION_COMMITTED = "stock.transaction_committed"

_subscribers: list[Callable[[dict], None]] = []


def subscribe(callback: Callable[[dict], None]) -> None:
    if callback not in _subscribers:
        _subscribers.append(callback)


def unsubscribe(callback: Callable[[dict], None]) -> None:
    if callback in _subscribers:
        _subscribers.remove(callback)


def publish(event: dict) -> None:
    for callback in list(_subscribers):
        try:
            callback(event)
        except Exception:
            logger.exception("Stock subscriber %r failed for %s", callback, event.get("event"))


def build_transaction_event(db: Session, txn: StockTransaction) -> dict:
    product_ids = sorted({item.product_id for item in txn.items})
    levels = stock_engine.get_real_time_stock_levels(db, product_ids)
    return {
        "event": EVENT_TRANSACTION_COMMITTED,
        "transaction_id": txn.id,
        "reference_number": txn.reference_number,
        "type": txn.type.value,
        "transaction_date": txn.transaction_date.isoformat(),
        "balances": [
            {"product_id": row["product_id"], "sku": row["sku"], "current_stock": row["current_stock"]}
            for row in levels
        ],
        "low_stock": [row["product_id"] for row in levels if row["is_low_stock"]],
    }


def _webhook_urls() -> list[str]:
    return [u.strip() for u in settings.WEBHOOK_URLS.split(",") if u.strip()]


def send_webhook_sync(event: dict, urls: list[str] | None = None, transport=None) -> list[dict]:
    """POST the event to every URL; returns one result per URL."""
    if urls is None:
        urls = _webhook_urls()
    if not urls:
        return []

    results = []
    with httpx.Client(timeout=settings.WEBHOOK_TIMEOUT, transport=transport) as client:
        for url in urls:
            try:
                resp = client.post(url, json=event)
                results.append({"url": url, "status": resp.status_code, "success": resp.is_success})
            except httpx.HTTPError as e:
                logger.error("Webhook failed for %s: %s", url, e)
                results.append({"url": url, "status": 0, "success": False, "error": str(e)})
    return results


def dispatch(event: dict) -> None:
    """Background-task entry point: subscribers first, then webhooks."""
    publish(event)
    send_webhook_sync(event)
