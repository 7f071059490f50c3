"""Per-run counters and progress logging."""
import logging
import time
from collections import Counter
from typing import Callable, Dict

logger = logging.getLogger(__name__)

# Outcome of each message body, plus candidates considered
COUNTERS = ("considered", "recorded", "duplicate", "unparseable", "not_sale", "failed")


class Metrics:
    """Counts scan outcomes; rates use the run's clock."""

    def __init__(self, total: int, clock: Callable[[], float] = time.monotonic):
        self.total = total
        self.clock = clock
        self.started = clock()
        self.counters: Counter = Counter()

    def increment(self, key: str, amount: int = 1) -> None:
        self.counters[key] += amount

    def get(self, key: str) -> int:
        return self.counters[key]

    def elapsed_seconds(self) -> float:
        return self.clock() - self.started

    def get_rate(self) -> float:
        """Candidates considered per second."""
        elapsed = self.elapsed_seconds()
        return self.counters["considered"] / elapsed if elapsed > 0 else 0.0

    def report(self) -> None:
        considered = self.counters["considered"]
        percent = considered * 100 // self.total if self.total > 0 else 0
        logger.info(
            f"Progress: {considered}/{self.total} ({percent}%) | "
            f"Rate: {self.get_rate():.2f}/s | "
            f"New: {self.counters['recorded']} | "
            f"Duplicate: {self.counters['duplicate']} | "
            f"Unparseable: {self.counters['unparseable']} | "
            f"Failed: {self.counters['failed']}"
        )

    def get_summary(self) -> Dict:
        summary: Dict = {"total": self.total}
        summary.update({key: self.counters[key] for key in COUNTERS})
        summary["rate"] = self.get_rate()
        summary["elapsed_seconds"] = self.elapsed_seconds()
        return summary
