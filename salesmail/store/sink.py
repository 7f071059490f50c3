"""Sale record sinks: the interface and the Supabase table writer."""
import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

from supabase import create_client, Client

from salesmail.config import config, is_placeholder
from salesmail.errors import ConfigurationError, SinkUnavailable, SinkWriteError
from salesmail.parse.models import SaleRecord

logger = logging.getLogger(__name__)

SINK_COLUMNS = ("order_timestamp", "order_id", "product_name", "product_variant", "amount")


class SalesSink(ABC):
    """Append-only tabular store of sale records."""

    @abstractmethod
    def is_configured(self) -> bool:
        """False when the sink identity is unset or a placeholder."""

    @abstractmethod
    async def test_connection(self) -> bool:
        """Check that the sink can be reached."""

    @abstractmethod
    async def read_order_ids(self) -> list[Any]:
        """Raw order id cells of every recorded row. Raises SinkUnavailable."""

    @abstractmethod
    async def append(self, record: SaleRecord) -> None:
        """Write one row. Raises SinkWriteError."""

    @abstractmethod
    async def reopen(self) -> None:
        """Drop and re-acquire the underlying handle."""


class SupabaseSalesSink(SalesSink):
    """Writes one row per sale to a Supabase table."""

    PAGE_SIZE = 1000

    def __init__(
        self,
        url: Optional[str] = None,
        key: Optional[str] = None,
        table: Optional[str] = None,
    ):
        self.url = url if url is not None else config.SUPABASE_URL
        self.key = key if key is not None else config.SUPABASE_SERVICE_ROLE
        self.table = table or config.SUPABASE_TABLE
        self._client: Optional[Client] = None

    def is_configured(self) -> bool:
        return not is_placeholder(self.url) and not is_placeholder(self.key)

    @property
    def client(self) -> Client:
        if self._client is None:
            if not self.is_configured():
                raise ConfigurationError("Supabase configuration missing")
            try:
                self._client = create_client(self.url, self.key)
            except Exception as e:
                raise SinkUnavailable(f"Could not create Supabase client: {e}") from e
        return self._client

    async def _run(self, func, *args):
        """Run a sync Supabase call in the thread pool."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, func, *args)

    async def test_connection(self) -> bool:
        """Test Supabase connection."""
        try:
            await self._run(
                lambda: (
                    self.client.table(self.table)
                    .select("order_id", count="exact")
                    .limit(1)
                    .execute()
                )
            )
            logger.info("Supabase connection successful")
            return True
        except Exception as e:
            logger.error(f"Supabase connection test failed: {e}")
            return False

    def _read_page_sync(self, start: int) -> list[dict]:
        response = (
            self.client.table(self.table)
            .select("order_id")
            .order("order_id")
            .range(start, start + self.PAGE_SIZE - 1)
            .execute()
        )
        return response.data or []

    async def read_order_ids(self) -> list[Any]:
        values: list[Any] = []
        start = 0
        try:
            while True:
                rows = await self._run(self._read_page_sync, start)
                values.extend(row.get("order_id") for row in rows)
                if len(rows) < self.PAGE_SIZE:
                    break
                start += self.PAGE_SIZE
        except ConfigurationError:
            raise
        except Exception as e:
            raise SinkUnavailable(f"Could not read order ids from {self.table}: {e}") from e
        logger.info(f"Read {len(values)} order ids from {self.table}")
        return values

    def _insert_sync(self, row: dict) -> None:
        """Synchronous insert (called from thread pool)."""
        self.client.table(self.table).insert(row).execute()

    async def append(self, record: SaleRecord) -> None:
        row = record.to_row()
        try:
            await self._run(self._insert_sync, row)
        except Exception as e:
            raise SinkWriteError(
                f"Supabase insert failed for order {record.order_id}: {e}",
                {"order_id": record.order_id, "table": self.table},
            ) from e
        logger.debug(f"Inserted order {record.order_id} into {self.table}")

    async def reopen(self) -> None:
        logger.info(f"Re-opening Supabase client for {self.table}")
        self._client = None
        _ = self.client
