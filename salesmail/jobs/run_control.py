"""Run control: time budget and check cadence."""
import time
import logging
from typing import Callable, Optional
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass
class RunControl:
    """Controls when a scan stops because its time budget ran out."""

    time_budget_minutes: float
    check_interval: int = 5
    clock: Callable[[], float] = time.monotonic

    # Internal state
    start_time: Optional[float] = None
    iterations: int = 0
    stop_reason: Optional[str] = None
    checks: int = 0

    def __post_init__(self) -> None:
        if self.start_time is None:
            self.start_time = self.clock()

    def elapsed_minutes(self) -> float:
        return (self.clock() - self.start_time) / 60

    def budget_exceeded(self) -> bool:
        return self.elapsed_minutes() >= self.time_budget_minutes

    def should_stop(self, index: int) -> tuple[bool, Optional[str]]:
        """Checked before handling candidate at index. Returns (should_stop, reason)."""
        if index % self.check_interval != 0:
            return False, None
        self.checks += 1
        if self.budget_exceeded():
            self.stop_reason = (
                f"Reached time budget of {self.time_budget_minutes} minutes "
                f"after {index} candidates"
            )
            return True, self.stop_reason
        return False, None

    def record_iteration(self) -> None:
        self.iterations += 1

    def get_summary(self) -> dict:
        """Get summary statistics."""
        return {
            "elapsed_minutes": round(self.elapsed_minutes(), 2),
            "iterations": self.iterations,
            "time_checks": self.checks,
            "stop_reason": self.stop_reason,
        }
