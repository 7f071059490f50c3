"""Source of candidate notification messages."""
from abc import ABC, abstractmethod
from typing import Iterable, Optional, Sequence

from salesmail.parse.models import Candidate


class MessageSource(ABC):
    """Provides bounded candidate lists and lets candidates carry named markers."""

    @abstractmethod
    async def probe(self) -> None:
        """Run the candidate query once. Raises SourceUnavailable."""

    @abstractmethod
    async def fetch(
        self,
        limit: int,
        exclude_markers: Iterable[str] = (),
        require_marker: Optional[str] = None,
    ) -> list[Candidate]:
        """Ordered candidates matching the query. Raises SourceUnavailable."""

    @abstractmethod
    async def add_marker(self, candidates: Sequence[Candidate], marker: str) -> None:
        """Tag every candidate with marker in one batched call."""

    @abstractmethod
    async def remove_marker(self, candidates: Sequence[Candidate], marker: str) -> None:
        """Remove marker from every candidate in one batched call."""

    async def close(self) -> None:
        """Release transport resources."""
