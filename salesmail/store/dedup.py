"""In-run index of already recorded order ids."""
import logging
from typing import Any, Iterable

logger = logging.getLogger(__name__)


def coerce_order_id(value: Any) -> int | None:
    """Order id from a sink cell; None for empty or non-numeric cells."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else None
    text = str(value).strip()
    if not text.isdigit():
        return None
    return int(text)


class DedupIndex:
    """Set of order ids present in the sink. Rebuilt from the sink every run."""

    def __init__(self, order_ids: Iterable[int] = ()):
        self._ids: set[int] = set(order_ids)

    @classmethod
    def from_values(cls, values: Iterable[Any]) -> "DedupIndex":
        ids = set()
        ignored = 0
        for value in values:
            order_id = coerce_order_id(value)
            if order_id is None:
                ignored += 1
                continue
            ids.add(order_id)
        if ignored:
            logger.debug(f"Ignored {ignored} empty or non-numeric order id cells")
        return cls(ids)

    def __contains__(self, order_id: int) -> bool:
        return order_id in self._ids

    def __len__(self) -> int:
        return len(self._ids)

    def add(self, order_id: int) -> None:
        self._ids.add(order_id)
