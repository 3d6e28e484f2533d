"""
Per-product commit locks.

Every writer takes the locks of all products it touches, always in sorted
product-id order, and holds them across read-balance -> validate -> append.
Two transactions sharing products therefore never interleave, and two
transactions touching the same pair in opposite line order cannot deadlock.

Reference numbers are drawn per prefix; that lock is taken only after the
product locks and never held while waiting for one.
"""

import logging
import threading
import weakref
from contextlib import contextmanager

from stock_ledger.services.exceptions import ConcurrencyConflictError

logger = logging.getLogger(__name__)


class ProductLockRegistry:
    def __init__(self):
        self._guard = threading.Lock()
        # entries vanish once no thread holds or waits on the lock
        self._locks: weakref.WeakValueDictionary[str, threading.Lock] = weakref.WeakValueDictionary()

    def _lock_for(self, key: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock

    def __len__(self) -> int:
        return len(self._locks)

    @contextmanager
    def _hold_keys(self, keys: list[str], timeout: float, busy_message: str):
        acquired: list[threading.Lock] = []
        try:
            for key in keys:
                lock = self._lock_for(key)
                if not lock.acquire(timeout=timeout):
                    logger.warning("Timed out after %.1fs waiting for %s", timeout, key)
                    raise ConcurrencyConflictError(busy_message)
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()

    @contextmanager
    def hold(self, product_ids, timeout: float = -1):
        ordered = sorted(set(product_ids))
        with self._hold_keys(
            [f"product:{pid}" for pid in ordered], timeout, "Stock for this product is busy; please retry"
        ):
            yield ordered

    @contextmanager
    def hold_reference(self, prefix: str, timeout: float = -1):
        with self._hold_keys(
            [f"reference:{prefix}"], timeout, "Reference numbers are busy; please retry"
        ):
            yield prefix


product_locks = ProductLockRegistry()
