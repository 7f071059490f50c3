"""SQLite state database holding the run lock lease."""
import aiosqlite
import logging
import time
from pathlib import Path
from typing import Optional

from salesmail.config import STATE_DB

logger = logging.getLogger(__name__)


class StateDB:
    """SQLite database for the cross-process run lease."""

    def __init__(self, db_path: Path = STATE_DB):
        self.db_path = Path(db_path)

    async def initialize(self) -> None:
        """Create tables if they don't exist."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                """
                CREATE TABLE IF NOT EXISTS run_lease (
                    name TEXT PRIMARY KEY,
                    holder TEXT NOT NULL,
                    acquired_at REAL NOT NULL
                )
                """
            )
            await db.commit()
            logger.debug(f"State database initialized at {self.db_path}")

    async def try_acquire_lease(self, name: str, holder: str, stale_after_seconds: float) -> bool:
        """Take the lease if it is free or stale. Never waits."""
        now = time.time()
        async with aiosqlite.connect(self.db_path) as db:
            # Expire a lease left behind by a crashed run
            await db.execute(
                "DELETE FROM run_lease WHERE name = ? AND acquired_at < ?",
                (name, now - stale_after_seconds),
            )
            cursor = await db.execute(
                "INSERT OR IGNORE INTO run_lease (name, holder, acquired_at) VALUES (?, ?, ?)",
                (name, holder, now),
            )
            await db.commit()
            return cursor.rowcount == 1

    async def renew_lease(self, name: str, holder: str) -> bool:
        """Restart the stale timer of a lease this holder owns."""
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute(
                "UPDATE run_lease SET acquired_at = ? WHERE name = ? AND holder = ?",
                (time.time(), name, holder),
            )
            await db.commit()
            return cursor.rowcount == 1

    async def release_lease(self, name: str, holder: str) -> None:
        """Release the lease if this holder owns it."""
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                "DELETE FROM run_lease WHERE name = ? AND holder = ?",
                (name, holder),
            )
            await db.commit()

    async def get_lease_holder(self, name: str) -> Optional[str]:
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute(
                "SELECT holder FROM run_lease WHERE name = ?",
                (name,),
            )
            row = await cursor.fetchone()
            return row[0] if row else None
