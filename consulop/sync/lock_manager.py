import asyncio
import logging
import threading
from typing import Dict, Optional

from consulop.common.models import AcquireResult
from consulop.errors import ConsulOpError, LockNotAcquiredError
from .backend import CoordinationBackend
from .lock import ConsulLock

logger = logging.getLogger(__name__)

class LockManager:
    """
    Per-operator cache of lock handles, one handle per lock name.

    The cache mutex covers lookup-or-create only; the blocking acquire runs
    outside it so a long wait on one name never holds up another.
    """

    def __init__(self, backend: CoordinationBackend):
        self._backend = backend
        self._locks: Dict[str, ConsulLock] = {}
        self._mutex = threading.Lock()

    def handle(self, name: str) -> ConsulLock:
        with self._mutex:
            lock = self._locks.get(name)
            if lock is None:
                lock = self._backend.lock_key(name)
                self._locks[name] = lock
                logger.debug(f"Created lock handle for {name}")
            return lock

    def get(self, name: str) -> Optional[ConsulLock]:
        with self._mutex:
            return self._locks.get(name)

    async def acquire(self, name: str, cancel: Optional[asyncio.Event] = None) -> AcquireResult:
        lock = self.handle(name)
        try:
            acquired = await lock.acquire(cancel)
        except ConsulOpError as e:
            logger.error(f"Acquire lock {name} error: {e}", extra={"lock": name})
            raise
        if not acquired:
            return AcquireResult.CANCELLED
        logger.info(f"Lock {name} held", extra={"lock": name})
        return AcquireResult.HELD

    async def release(self, name: str) -> None:
        lock = self.get(name)
        if lock is None:
            raise LockNotAcquiredError(name)
        try:
            await lock.release()
        except ConsulOpError as e:
            logger.error(f"Release lock {name} error: {e}", extra={"lock": name})
            raise
        logger.info(f"Lock {name} released", extra={"lock": name})

    async def close(self) -> None:
        """Release every held lock, e.g. before the backend connection goes away."""
        with self._mutex:
            locks = list(self._locks.values())
        for lock in locks:
            if lock.held:
                await lock.close()
                logger.info(f"Lock {lock.key} released on close", extra={"lock": lock.key})
