"""Scan checkpoint kept entirely in markers on the source's candidates.

A candidate is unmarked (eligible), processed (done) or in-flight (fetched by
an interrupted run and owed a retry). The scan controller only talks to this
class; it never touches the source's tagging calls directly.
"""
import logging
from typing import Sequence

from salesmail.parse.models import Candidate
from salesmail.source.base import MessageSource

logger = logging.getLogger(__name__)


class ScanCheckpoint:
    def __init__(self, source: MessageSource, processed_marker: str, in_flight_marker: str):
        self.source = source
        self.processed_marker = processed_marker
        self.in_flight_marker = in_flight_marker

    @property
    def markers(self) -> tuple[str, str]:
        return self.processed_marker, self.in_flight_marker

    def is_eligible(self, candidate: Candidate) -> bool:
        """In-flight wins over processed; otherwise only unmarked candidates are eligible."""
        if self.is_in_flight(candidate):
            return True
        return self.processed_marker not in candidate.markers

    def is_in_flight(self, candidate: Candidate) -> bool:
        return self.in_flight_marker in candidate.markers

    async def fetch_in_flight(self, limit: int) -> list[Candidate]:
        """Candidates handed off by an interrupted run, processed or not."""
        return await self.source.fetch(limit, require_marker=self.in_flight_marker)

    async def fetch_unmarked(self, limit: int) -> list[Candidate]:
        return await self.source.fetch(limit, exclude_markers=self.markers)

    async def mark_processed(self, batch: Sequence[Candidate]) -> None:
        if not batch:
            return
        await self.source.add_marker(batch, self.processed_marker)
        logger.debug(f"Marked {len(batch)} candidates processed")

    async def mark_in_flight(self, batch: Sequence[Candidate]) -> None:
        if not batch:
            return
        await self.source.add_marker(batch, self.in_flight_marker)
        logger.info(f"Handed off {len(batch)} candidates as in-flight")

    async def clear_in_flight(self, batch: Sequence[Candidate]) -> None:
        pending = [candidate for candidate in batch if self.is_in_flight(candidate)]
        if pending:
            await self.source.remove_marker(pending, self.in_flight_marker)
