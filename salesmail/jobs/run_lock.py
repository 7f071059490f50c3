"""Run lock: at most one scan at a time."""
import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from typing import Optional

from salesmail.store.state import StateDB

logger = logging.getLogger(__name__)

LOCK_NAME = "scan"
POLL_INTERVAL_SECONDS = 0.5


class RunLock(ABC):
    """Acquire-with-timeout / release pair."""

    @abstractmethod
    async def acquire(self, timeout: float) -> bool:
        """True if the lock was taken within timeout seconds."""

    @abstractmethod
    async def release(self) -> None:
        """Release the lock if held. Safe to call when not held."""

    async def renew(self) -> None:
        """Extend a held lock that expires on its own. No-op by default."""


class InMemoryRunLock(RunLock):
    """Process-local lock."""

    def __init__(self):
        self._lock = asyncio.Lock()
        self._held = False

    @property
    def locked(self) -> bool:
        return self._lock.locked()

    async def acquire(self, timeout: float) -> bool:
        try:
            await asyncio.wait_for(self._lock.acquire(), timeout=timeout)
        except asyncio.TimeoutError:
            return False
        self._held = True
        return True

    async def release(self) -> None:
        if self._held:
            self._held = False
            self._lock.release()


class SqliteRunLock(RunLock):
    """Lease row in the state database, shared by every process on the host."""

    def __init__(self, state_db: Optional[StateDB] = None, stale_after_minutes: float = 30, name: str = LOCK_NAME):
        self.state_db = state_db or StateDB()
        self.stale_after_seconds = stale_after_minutes * 60
        self.name = name
        self.holder = str(uuid.uuid4())
        self._held = False

    async def acquire(self, timeout: float) -> bool:
        await self.state_db.initialize()
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while True:
            if await self.state_db.try_acquire_lease(self.name, self.holder, self.stale_after_seconds):
                self._held = True
                return True
            remaining = deadline - loop.time()
            if remaining <= 0:
                current = await self.state_db.get_lease_holder(self.name)
                logger.info(f"Run lock {self.name} held by {current}")
                return False
            await asyncio.sleep(min(POLL_INTERVAL_SECONDS, remaining))

    async def renew(self) -> None:
        if self._held and not await self.state_db.renew_lease(self.name, self.holder):
            logger.warning(f"Run lock {self.name} was taken over by another run")

    async def release(self) -> None:
        if self._held:
            await self.state_db.release_lease(self.name, self.holder)
            self._held = False
