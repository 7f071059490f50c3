"""Scan controller: one time-boxed, resumable pass over candidate messages."""
import logging
import time
import uuid
from datetime import datetime
from enum import Enum
from typing import Callable, Optional

from pydantic import BaseModel, Field
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt

from salesmail.config import ScanSettings, config
from salesmail.errors import ConfigurationError, SinkUnavailable, SinkWriteError, SourceUnavailable
from salesmail.jobs.checkpoint import ScanCheckpoint
from salesmail.jobs.metrics import Metrics
from salesmail.jobs.report import RunReporter
from salesmail.jobs.run_control import RunControl
from salesmail.jobs.run_lock import RunLock, SqliteRunLock
from salesmail.parse.models import Candidate, SaleRecord
from salesmail.parse.notification import parse_notification
from salesmail.source.base import MessageSource
from salesmail.store.dedup import DedupIndex
from salesmail.store.sink import SalesSink

logger = logging.getLogger(__name__)

# One write plus one retry after re-opening the sink
SINK_WRITE_ATTEMPTS = 2


class RunStatus(str, Enum):
    COMPLETED = "completed"
    INTERRUPTED = "interrupted"
    SKIPPED = "skipped"
    FAILED = "failed"


class RunResult(BaseModel):
    """Outcome of one scan, reported to the caller and the run log."""

    run_id: str
    status: RunStatus
    started_at: datetime = Field(default_factory=datetime.now)
    new_records: int = 0
    duplicates: int = 0
    unparseable: int = 0
    not_sale: int = 0
    failures: int = 0
    candidates_found: int = 0
    candidates_considered: int = 0
    interrupted: bool = False
    remaining: int = 0
    elapsed_seconds: float = 0.0
    message: str = ""


class ScanRunner:
    """Orchestrates one scan: lock, preflight, fetch, iterate, checkpoint, hand off."""

    def __init__(
        self,
        source: MessageSource,
        sink: SalesSink,
        lock: RunLock,
        settings: Optional[ScanSettings] = None,
        reporter: Optional[RunReporter] = None,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = datetime.now,
    ):
        self.source = source
        self.sink = sink
        self.lock = lock
        self.settings = settings or ScanSettings()
        self.reporter = reporter
        self.clock = clock
        self.now = now
        self.checkpoint = ScanCheckpoint(
            source,
            processed_marker=self.settings.processed_marker,
            in_flight_marker=self.settings.in_flight_marker,
        )
        self.run_id = str(uuid.uuid4())
        self.dedup = DedupIndex()

    @classmethod
    def from_config(cls, settings: Optional[ScanSettings] = None) -> "ScanRunner":
        """Production wiring: Gmail source, Supabase sink, sqlite run lock."""
        from salesmail.source.gmail import GmailSource
        from salesmail.store.sink import SupabaseSalesSink

        return cls(
            source=GmailSource(),
            sink=SupabaseSalesSink(),
            lock=SqliteRunLock(stale_after_minutes=config.LOCK_STALE_MINUTES),
            settings=settings or ScanSettings.from_config(),
            reporter=RunReporter(),
        )

    async def close(self) -> None:
        await self.source.close()

    async def run(self) -> RunResult:
        """Run one scan. Never raises for expected outcomes; see RunResult.status."""
        self.run_id = str(uuid.uuid4())
        started = self.clock()
        logger.info(f"Run ID: {self.run_id}")

        if not await self.lock.acquire(self.settings.lock_timeout_seconds):
            logger.warning("Skipped: concurrent run in progress")
            result = RunResult(
                run_id=self.run_id,
                status=RunStatus.SKIPPED,
                message="Skipped: concurrent run in progress",
            )
        else:
            try:
                result = await self._run_locked()
            except Exception as e:
                logger.error(f"Run failed: {e}", exc_info=True)
                result = RunResult(
                    run_id=self.run_id,
                    status=RunStatus.FAILED,
                    message=f"Failed: {type(e).__name__}: {e}",
                )
            finally:
                await self.lock.release()

        result.elapsed_seconds = round(self.clock() - started, 3)
        self._final_report(result)
        await self._export(result)
        return result

    async def _run_locked(self) -> RunResult:
        try:
            await self._preflight()
            candidates = await self._fetch_candidates()
            self.dedup = DedupIndex.from_values(await self.sink.read_order_ids())
        except (ConfigurationError, SourceUnavailable, SinkUnavailable) as e:
            logger.error(f"Run aborted before any changes: {e}")
            return RunResult(
                run_id=self.run_id,
                status=RunStatus.FAILED,
                message=f"Aborted: {e}",
            )
        logger.info(f"Fetched {len(candidates)} candidates, {len(self.dedup)} orders already recorded")
        return await self._scan(candidates)

    async def _preflight(self) -> None:
        if not self.sink.is_configured():
            raise ConfigurationError("Destination sink is not configured")
        if not await self.sink.test_connection():
            raise SinkUnavailable("Destination sink is unreachable")
        await self.source.probe()

    async def _fetch_candidates(self) -> list[Candidate]:
        """In-flight retries first, then fresh unmarked candidates, up to the limit."""
        limit = self.settings.max_candidates
        retry = await self.checkpoint.fetch_in_flight(limit)
        fresh = []
        if len(retry) < limit:
            fresh = await self.checkpoint.fetch_unmarked(limit - len(retry))
        if retry:
            logger.info(f"Retrying {len(retry)} in-flight candidates from an interrupted run")

        candidates, seen = [], set()
        for candidate in retry + fresh:
            if candidate.id in seen or not self.checkpoint.is_eligible(candidate):
                continue
            seen.add(candidate.id)
            candidates.append(candidate)
        return candidates[:limit]

    async def _scan(self, candidates: list[Candidate]) -> RunResult:
        settings = self.settings
        metrics = Metrics(len(candidates), clock=self.clock)
        run_control = RunControl(
            time_budget_minutes=settings.time_budget_minutes,
            check_interval=settings.time_check_interval,
            clock=self.clock,
        )
        handled: list[Candidate] = []
        stop_index = len(candidates)
        interrupted = False

        for index, candidate in enumerate(candidates):
            should_stop, reason = run_control.should_stop(index)
            if should_stop:
                logger.warning(f"Stop condition met: {reason}")
                interrupted = True
                stop_index = index
                break

            if self.checkpoint.is_in_flight(candidate):
                await self._clear_in_flight(index, candidate)

            if await self._handle_candidate(index, candidate, metrics):
                handled.append(candidate)
            metrics.increment("considered")
            run_control.record_iteration()

            if (index + 1) % settings.batch_size == 0:
                await self._flush(handled)
            if (index + 1) % settings.log_interval == 0:
                metrics.report()

        await self._flush(handled)
        logger.debug(f"Run control: {run_control.get_summary()}")

        remaining = candidates[stop_index:] if interrupted else []
        if remaining:
            await self._hand_off(remaining)

        summary = metrics.get_summary()
        message = (
            f"Recorded {summary['recorded']} new sales from "
            f"{summary['considered']}/{len(candidates)} candidates"
        )
        if interrupted:
            message += f"; time budget reached, {len(remaining)} handed off to the next run"
        return RunResult(
            run_id=self.run_id,
            status=RunStatus.INTERRUPTED if interrupted else RunStatus.COMPLETED,
            new_records=summary["recorded"],
            duplicates=summary["duplicate"],
            unparseable=summary["unparseable"],
            not_sale=summary["not_sale"],
            failures=summary["failed"],
            candidates_found=len(candidates),
            candidates_considered=summary["considered"],
            interrupted=interrupted,
            remaining=len(remaining),
            message=message,
        )

    async def _handle_candidate(self, index: int, candidate: Candidate, metrics: Metrics) -> bool:
        """
        Parse and record every body of a candidate.

        Returns False when a record could not be written, so the candidate stays
        unmarked and the next run retries it; every other outcome is final.
        """
        complete = True
        if not candidate.bodies:
            logger.info(f"Candidate {index} ({candidate.id}) has no readable body")
            metrics.increment("unparseable")

        for body_index, body in enumerate(candidate.bodies):
            try:
                outcome = parse_notification(
                    body,
                    extract_variant=self.settings.extract_variant,
                    now=self.now(),
                )
            except Exception as e:
                logger.error(
                    f"Candidate {index} ({candidate.id}) body {body_index}: extraction error: {e}",
                    exc_info=True,
                )
                metrics.increment("failed")
                continue

            if not outcome.is_sale:
                logger.debug(f"Candidate {index} ({candidate.id}) body {body_index}: not a sale notification")
                metrics.increment("not_sale")
                continue
            if not outcome.ok:
                logger.info(f"Candidate {index} ({candidate.id}) body {body_index}: skipped, {outcome.reason}")
                metrics.increment("unparseable")
                continue

            record = outcome.record
            if record.order_id in self.dedup:
                logger.debug(f"Candidate {index}: order {record.order_id} already recorded")
                metrics.increment("duplicate")
                continue

            try:
                await self._write(record)
            except Exception as e:
                logger.error(f"Candidate {index} ({candidate.id}): could not record order {record.order_id}: {e}")
                metrics.increment("failed")
                complete = False
                continue

            self.dedup.add(record.order_id)
            metrics.increment("recorded")
            logger.info(
                f"Recorded order {record.order_id}: {record.product_name} "
                f"¥{record.amount:,} ({record.payment_kind.value})"
            )
        return complete

    async def _write(self, record: SaleRecord) -> None:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(SINK_WRITE_ATTEMPTS),
            retry=retry_if_exception_type(SinkWriteError),
            reraise=True,
        ):
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    logger.warning(f"Write failed for order {record.order_id}, re-opening sink and retrying")
                    await self.sink.reopen()
                await self.sink.append(record)

    async def _clear_in_flight(self, index: int, candidate: Candidate) -> None:
        try:
            await self.checkpoint.clear_in_flight([candidate])
        except Exception as e:
            logger.warning(f"Candidate {index} ({candidate.id}): could not clear in-flight marker: {e}")

    async def _flush(self, handled: list[Candidate]) -> None:
        """Mark the accumulated candidates processed in one call and renew the run lock."""
        await self._renew_lock()
        if not handled:
            return
        batch = list(handled)
        handled.clear()
        try:
            await self.checkpoint.mark_processed(batch)
        except Exception as e:
            logger.error(f"Could not mark {len(batch)} candidates processed: {e}")

    async def _renew_lock(self) -> None:
        try:
            await self.lock.renew()
        except Exception as e:
            logger.warning(f"Could not renew run lock: {e}")

    async def _hand_off(self, remaining: list[Candidate]) -> None:
        try:
            await self.checkpoint.mark_in_flight(remaining)
        except Exception as e:
            logger.error(f"Could not hand off {len(remaining)} candidates: {e}")

    def _final_report(self, result: RunResult) -> None:
        logger.info("=" * 60)
        logger.info("FINAL REPORT")
        logger.info(f"Run ID: {result.run_id}")
        logger.info(f"Status: {result.status.value}")
        logger.info(f"Elapsed: {result.elapsed_seconds:.1f}s")
        logger.info(f"Candidates: {result.candidates_considered}/{result.candidates_found}")
        logger.info(f"New records: {result.new_records}")
        logger.info(f"Duplicates: {result.duplicates}")
        logger.info(f"Unparseable: {result.unparseable}")
        logger.info(f"Not a sale: {result.not_sale}")
        logger.info(f"Failures: {result.failures}")
        logger.info(f"Remaining: {result.remaining}")
        logger.info(result.message)
        logger.info("=" * 60)

    async def _export(self, result: RunResult) -> None:
        if self.reporter is None:
            return
        try:
            await self.reporter.export(result)
        except OSError as e:
            logger.warning(f"Could not write run log: {e}")
