"""
Per-supplier exclusive locks.

An import deletes and rewrites a supplier's whole product set, so two
imports (or an import and a mapping change) must never overlap for the same
supplier. Acquisition never waits: a held lock raises
ImportAlreadyRunningError immediately.

Locks are plain threading.Lock objects so a lock taken in a request handler
can be released by the background task that finishes the import.
"""

from contextlib import contextmanager
from typing import Iterator, Optional
import threading
import structlog

from exceptions import ImportAlreadyRunningError

logger = structlog.get_logger(__name__)


class SupplierLockRegistry:
    """Process-wide registry of supplier locks."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}
        self._holders: dict[str, Optional[str]] = {}

    def _lock_for(self, supplier_id: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(supplier_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[supplier_id] = lock
            return lock

    def acquire(self, supplier_id: str, holder: Optional[str] = None) -> None:
        """
        Take the supplier's lock or fail fast.

        Args:
            supplier_id: Supplier UUID
            holder: Label stored for diagnostics (usually the run id)

        Raises:
            ImportAlreadyRunningError: If the lock is already held
        """
        lock = self._lock_for(supplier_id)
        if not lock.acquire(blocking=False):
            current = self._holders.get(supplier_id)
            logger.warning(
                "supplier_lock_busy",
                supplier_id=supplier_id,
                held_by=current
            )
            raise ImportAlreadyRunningError(supplier_id, current)
        self._holders[supplier_id] = holder
        logger.debug("supplier_lock_acquired", supplier_id=supplier_id, holder=holder)

    def set_holder(self, supplier_id: str, holder: str) -> None:
        """Record who holds an already acquired lock."""
        self._holders[supplier_id] = holder

    def release(self, supplier_id: str) -> None:
        """Release the supplier's lock. Releasing a free lock is a no-op."""
        lock = self._lock_for(supplier_id)
        self._holders.pop(supplier_id, None)
        if lock.locked():
            lock.release()
            logger.debug("supplier_lock_released", supplier_id=supplier_id)

    def is_locked(self, supplier_id: str) -> bool:
        return self._lock_for(supplier_id).locked()

    @contextmanager
    def hold(self, supplier_id: str, holder: Optional[str] = None) -> Iterator[None]:
        """Hold the supplier's lock for the duration of a with-block."""
        self.acquire(supplier_id, holder)
        try:
            yield
        finally:
            self.release(supplier_id)


_registry: Optional[SupplierLockRegistry] = None


def get_lock_registry() -> SupplierLockRegistry:
    """Get or create the process-wide lock registry."""
    global _registry
    if _registry is None:
        _registry = SupplierLockRegistry()
    return _registry
