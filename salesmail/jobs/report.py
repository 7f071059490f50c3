"""Run result log for observability."""
from pathlib import Path
from typing import TYPE_CHECKING
import aiofiles
import orjson

from salesmail.config import RUNS_FILE

if TYPE_CHECKING:
    from salesmail.jobs.runner import RunResult


class RunReporter:
    """Appends one JSON line per finished run."""

    def __init__(self, runs_file: Path = RUNS_FILE):
        self.runs_file = Path(runs_file)

    async def export(self, result: "RunResult") -> None:
        """Append a run result to the JSONL file."""
        self.runs_file.parent.mkdir(parents=True, exist_ok=True)
        line = orjson.dumps(result.model_dump(mode="json")) + b"\n"
        async with aiofiles.open(self.runs_file, "ab") as f:
            await f.write(line)

    async def recent(self, limit: int = 100) -> list[dict]:
        """Last results, oldest first."""
        if not self.runs_file.exists():
            return []
        results = []
        async with aiofiles.open(self.runs_file, "rb") as f:
            async for line in f:
                if line.strip():
                    results.append(orjson.loads(line))
        return results[-limit:]
