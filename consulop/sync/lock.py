import asyncio
import logging
import re
import time
from dataclasses import dataclass
from typing import Optional, TYPE_CHECKING

from consulop.errors import BackendFaultError, LockConflictError, LockHeldError, LockNotHeldError

if TYPE_CHECKING:
    from .backend import CoordinationBackend

logger = logging.getLogger(__name__)

# magic flag set on keys written by the lock recipe, shared with other consul clients
LOCK_FLAG_VALUE = 0x2DDCCBC058A50C18

_DURATION_RE = re.compile(r"(\d+(?:\.\d+)?)(ms|s|m|h)")
_UNIT_SECONDS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}

def parse_duration(value: str) -> float:
    """Seconds in a consul duration string such as ``15s``, ``1m30s`` or ``500ms``."""
    text = value.strip()
    pos = 0
    total = 0.0
    for match in _DURATION_RE.finditer(text):
        if match.start() != pos:
            break
        total += float(match.group(1)) * _UNIT_SECONDS[match.group(2)]
        pos = match.end()
    if not text or pos != len(text):
        raise ValueError(f"invalid duration {value!r}")
    return total


@dataclass
class LockOptions:
    session_name: str = "Consul API Lock"
    session_ttl: str = "15s"
    lock_delay: str = "15s"
    wait_time: float = 15.0
    retry_time: float = 5.0
    value: bytes = b""


class ConsulLock:
    """
    Session backed lock on one key.

    acquire() creates a session, keeps it renewed and waits on blocking
    queries until the key can be written with ``acquire=<session>``.
    release() writes ``release=<session>`` and destroys the session.
    """

    def __init__(self, backend: "CoordinationBackend", key: str, options: Optional[LockOptions] = None):
        self.backend = backend
        self.key = key
        self.options = options or LockOptions()
        self.lost = asyncio.Event()
        self._held = False
        self._session: Optional[str] = None
        self._renew_task: Optional[asyncio.Task] = None
        self._attempt_lock = asyncio.Lock()

    @property
    def held(self) -> bool:
        return self._held

    @property
    def session(self) -> Optional[str]:
        return self._session

    async def acquire(self, stop: Optional[asyncio.Event] = None) -> bool:
        """
        Block until the lock is held (True) or ``stop`` is set (False).

        Backend faults propagate. A stop event that is already set returns
        False before any request is made.
        """
        if stop is not None and stop.is_set():
            return False

        attempt = asyncio.create_task(self._acquire())
        if stop is None:
            return await attempt

        stopper = asyncio.create_task(stop.wait())
        try:
            done, _ = await asyncio.wait({attempt, stopper}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            attempt.cancel()
            raise
        finally:
            stopper.cancel()

        if attempt in done:
            return attempt.result()

        attempt.cancel()
        try:
            await attempt
        except asyncio.CancelledError:
            if asyncio.current_task().cancelling():
                raise
        else:
            # granted while the cancellation was being delivered
            await self.release()
        logger.info(f"Acquire lock {self.key} stopped by caller")
        return False

    async def _acquire(self) -> bool:
        async with self._attempt_lock:
            if self._held:
                raise LockHeldError(f"{self.key} lock already held")

            session = await self.backend.session_create(
                self.options.session_name, self.options.session_ttl, self.options.lock_delay
            )
            renew_task = asyncio.create_task(self._renew_loop(session))
            try:
                await self._wait_and_acquire(session)
            except BaseException:
                renew_task.cancel()
                await self._destroy_session(session)
                raise

            self._session = session
            self._renew_task = renew_task
            self.lost.clear()
            self._held = True
            logger.debug(f"Lock {self.key} acquired with session {session}")
            return True

    async def _wait_and_acquire(self, session: str):
        index = 0
        while True:
            index, pair = await self.backend.kv_get(self.key, index=index, wait=self.options.wait_time)
            if pair is not None and pair.flags != LOCK_FLAG_VALUE:
                raise LockConflictError(f"{self.key} existing key does not match lock use")

            if pair is not None and pair.session:
                # held elsewhere, block until the key changes
                continue

            locked = await self.backend.kv_put(
                self.key, self.options.value, flags=LOCK_FLAG_VALUE, acquire=session
            )
            if locked:
                return

            # lost the race or still inside the lock-delay window
            await asyncio.sleep(self.options.retry_time)

    async def _renew_loop(self, session: str):
        ttl = parse_duration(self.options.session_ttl)
        last_ok = time.monotonic()
        while True:
            await asyncio.sleep(ttl / 2)
            try:
                alive = await self.backend.session_renew(session)
            except BackendFaultError as e:
                if time.monotonic() - last_ok < ttl:
                    logger.warning(f"Renew session {session} for lock {self.key} failed: {e}")
                    continue
                alive = False
            except Exception as e:
                logger.error(f"Renew session {session} for lock {self.key} crashed: {e!r}")
                alive = False

            if alive:
                last_ok = time.monotonic()
                continue

            logger.warning(f"Session {session} for lock {self.key} invalidated")
            if self._session == session:
                self._held = False
                self._session = None
                self.lost.set()
            return

    async def _destroy_session(self, session: str):
        try:
            await self.backend.session_destroy(session)
        except BackendFaultError as e:
            # the TTL reaps it
            logger.error(f"Error destroying session {session} of lock {self.key}: {e}")

    async def release(self):
        if not self._held:
            raise LockNotHeldError(f"{self.key} lock not held")

        session = self._session
        self._held = False
        self._session = None
        if self._renew_task:
            self._renew_task.cancel()
            self._renew_task = None

        try:
            released = await self.backend.kv_put(
                self.key, self.options.value, flags=LOCK_FLAG_VALUE, release=session
            )
            if not released:
                logger.warning(f"Lock {self.key} was no longer owned by session {session}")
        finally:
            await self._destroy_session(session)

    async def close(self):
        """Give the lock back if held. Backend faults are logged, the handle ends up not held."""
        if not self._held:
            return
        try:
            await self.release()
        except BackendFaultError as e:
            logger.error(f"Release lock {self.key} on close failed: {e}")
