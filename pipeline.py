"""Queue dispatch and pipeline orchestration.

Dispatch Cycle:
    1. RECLAIM: Jobs stuck in ``processing`` past the stale timeout go back
       to ``pending`` (their worker died; no attempt is consumed)
    2. CLAIM: Up to ``max_concurrent`` eligible pending jobs, oldest first,
       are flipped to ``processing`` in one immediate transaction
    3. RUN: Every claimed job runs concurrently; each settles on its own
    4. SETTLE: Success completes the job (an extract job also enqueues its
       analyze job). Failure increments ``attempts``; below ``max_retries``
       the job goes back to ``pending`` behind a backoff gate, at the
       ceiling the job and its article become ``failed``

Only a failure to claim the batch aborts a cycle (DispatchError). A job
failure is recorded in the cycle's summary and never raised.

Continuous Mode:
    Dispatch every ``poll_interval_seconds`` (immediately again while full
    batches keep coming), and once per day after ``digest_hour`` generate
    yesterday's digests. Users whose digest failed are rerun on the next
    cycles, up to ``max_retries`` times. Digest writes are upserts, so a
    restart that regenerates the same day is harmless.
"""

import asyncio
import logging
import random
import sqlite3
import time
import uuid
from datetime import date, datetime, timedelta
from typing import Any, Callable, Protocol

from agents.llm import LLMClient
from config import Config
from database import Database
from digest import DigestAggregator
from models.digest import DigestRunResult
from models.queue import NEXT_KIND, DispatchResult, JobKind, JobOutcome, JobStatus, QueueJob
from observability.logging import clear_context, set_job_context, set_run_context
from observability.tracing import trace_operation
from stages import AnalysisStage, ExtractionStage, StageError

logger = logging.getLogger(__name__)

NO_PENDING_JOBS = "No pending jobs"


class DispatchError(Exception):
    """Raised when a dispatch cycle cannot read or claim its batch."""


class Stage(Protocol):
    async def run(self, job: QueueJob) -> dict[str, Any]: ...


def retry_delay(
    attempts: int,
    base_delay: float,
    max_delay: float,
    rng: Callable[[], float] = random.random,
) -> float:
    """Backoff before retry number ``attempts`` becomes eligible.

    Exponential in the attempt count, capped at ``max_delay``, with jitter
    in [50%, 100%]. A zero ``base_delay`` retries on the next cycle.
    """
    if base_delay <= 0:
        return 0.0
    delay = min(max_delay, base_delay * 2 ** max(0, attempts - 1))
    return delay * (0.5 + rng() * 0.5)


def _error_message(e: BaseException) -> str:
    return str(e) or type(e).__name__


class QueueDispatcher:
    """Claims and runs queue jobs with bounded concurrency.

    Example:
        >>> dispatcher = QueueDispatcher(config, db, {JobKind.EXTRACT: extraction})
        >>> result = await dispatcher.dispatch_once()
        >>> print(result.to_dict())
    """

    def __init__(
        self,
        config: Config,
        db: Database,
        stages: dict[JobKind, Stage],
        rng: Callable[[], float] = random.random,
    ):
        """Initialize the dispatcher.

        Args:
            config: Batch size, retry ceiling, backoff and stale timeout
            db: Queue and article store
            stages: Stage to run for each job kind
            rng: Jitter source for backoff
        """
        self.config = config
        self.db = db
        self.stages = stages
        self._rng = rng

    async def dispatch_once(self) -> DispatchResult:
        """Run one dispatch cycle.

        Returns:
            DispatchResult; ``idle`` when nothing was eligible

        Raises:
            DispatchError: If the batch cannot be reclaimed or claimed
        """
        run_id = uuid.uuid4().hex[:8]
        set_run_context(run_id)
        start = time.time()

        try:
            with trace_operation("dispatch_cycle", {"run_id": run_id}) as attrs:
                try:
                    self.db.reclaim_stale_jobs(self.config.stale_job_seconds)
                    jobs = self.db.claim_jobs(self.config.max_concurrent, self.config.max_retries)
                except sqlite3.Error as e:
                    logger.error("Claim failed | error=%s", e, exc_info=True)
                    raise DispatchError(f"Cannot claim job batch: {e}") from e

                if not jobs:
                    logger.debug("No pending jobs")
                    attrs["processed"] = 0
                    return DispatchResult(idle=True, message=NO_PENDING_JOBS, duration=time.time() - start)

                logger.info("Dispatch started | jobs=%d", len(jobs))
                outcomes = await asyncio.gather(*(self._run_job(job) for job in jobs))

                result = DispatchResult(
                    processed=len(outcomes),
                    summary=list(outcomes),
                    duration=time.time() - start,
                )
                attrs["processed"] = result.processed
                attrs["completed"] = result.completed
                attrs["failed"] = result.failed
        finally:
            clear_context()

        logger.info(
            "Dispatch done | processed=%d completed=%d retrying=%d failed=%d duration=%.1fs",
            result.processed,
            result.completed,
            result.retrying,
            result.failed,
            result.duration,
        )
        return result

    async def _run_job(self, job: QueueJob) -> JobOutcome:
        """Run one job and apply its bookkeeping; never raises."""
        # Runs in its own task context, so this tags only this job's records
        set_job_context(job.id)
        stage = self.stages.get(job.job_type)

        try:
            if stage is None:
                raise StageError(f"No stage registered for job kind '{job.kind}'")
            result = await stage.run(job)
        except Exception as e:
            logger.warning(
                "Job attempt failed | job=%s article=%s kind=%s error=%s",
                job.id[:8],
                job.article_id[:8],
                job.kind,
                e,
                exc_info=True,
            )
            return self._settle_failure(job, _error_message(e))

        return self._settle_success(job, result)

    def _settle_success(self, job: QueueJob, result: dict[str, Any]) -> JobOutcome:
        try:
            completed = self.db.complete_job(job.id, follow_on=NEXT_KIND.get(job.job_type))
        except sqlite3.Error as e:
            logger.error("Job completion not recorded | job=%s error=%s", job.id[:8], e, exc_info=True)
            return self._outcome(job, JobStatus.PROCESSING, error=f"Completion not recorded: {e}")

        if not completed:
            logger.warning("Job no longer processing at completion | job=%s", job.id[:8])
            try:
                current = self.db.get_job(job.id)
            except sqlite3.Error as e:
                logger.error("Job status unreadable | job=%s error=%s", job.id[:8], e)
                current = None
            status = current.status if current else JobStatus.PROCESSING
            return self._outcome(job, status, result=result)

        logger.info("Job completed | job=%s kind=%s", job.id[:8], job.kind)
        return self._outcome(job, JobStatus.COMPLETED, result=result)

    def _settle_failure(self, job: QueueJob, error: str) -> JobOutcome:
        delay = retry_delay(
            job.attempts + 1,
            self.config.retry_base_delay,
            self.config.retry_max_delay,
            self._rng,
        )
        try:
            updated = self.db.record_job_failure(job.id, error, self.config.max_retries, delay)
        except sqlite3.Error as e:
            logger.error("Job failure not recorded | job=%s error=%s", job.id[:8], e, exc_info=True)
            return self._outcome(job, JobStatus.PROCESSING, error=error)

        if updated is None:
            logger.warning("Job no longer processing at failure | job=%s", job.id[:8])
            return self._outcome(job, JobStatus.PROCESSING, error=error)

        if updated.status == JobStatus.FAILED:
            logger.error(
                "Job failed permanently | job=%s article=%s attempts=%d error=%s",
                job.id[:8],
                job.article_id[:8],
                updated.attempts,
                error,
            )
        else:
            logger.info(
                "Job will retry | job=%s attempts=%d/%d delay=%.0fs",
                job.id[:8],
                updated.attempts,
                self.config.max_retries,
                delay,
            )
        return self._outcome(job, updated.status, error=error, attempts=updated.attempts)

    @staticmethod
    def _outcome(
        job: QueueJob,
        status: JobStatus,
        result: dict[str, Any] | None = None,
        error: str | None = None,
        attempts: int | None = None,
    ) -> JobOutcome:
        return JobOutcome(
            job_id=job.id,
            article_id=job.article_id,
            job_type=job.job_type,
            status=status,
            attempts=job.attempts if attempts is None else attempts,
            result=result,
            error=error,
        )


class Pipeline:
    """Saved-article pipeline: queue dispatch plus daily digests.

    Components:
        - Database: articles, queue, digests, user settings (SQLite)
        - QueueDispatcher: extraction and analysis stages
        - DigestAggregator: per-user daily digests
    """

    def __init__(
        self,
        config: Config,
        db: Database | None = None,
        analysis_llm: LLMClient | None = None,
        digest_llm: LLMClient | None = None,
    ):
        """Initialize pipeline with all components.

        Args:
            config: Application configuration
            db: Existing database (defaults to ``config.db_path``)
            analysis_llm: LLM client for article analysis
            digest_llm: LLM client for digests
        """
        self.config = config
        self.db = db or Database(config.db_path)
        self.dispatcher = QueueDispatcher(
            config,
            self.db,
            {
                JobKind.EXTRACT: ExtractionStage.from_config(config, self.db),
                JobKind.ANALYZE: AnalysisStage.from_config(config, self.db, analysis_llm),
            },
        )
        self.aggregator = DigestAggregator.from_config(config, self.db, digest_llm)
        self._last_digest_date: date | None = None
        self._failed_digest_users: list[str] = []
        self._digest_retry_rounds = 0

        # Optional: Distributed tracing
        if config.enable_logfire:
            from observability.tracing import setup_tracing
            setup_tracing(enabled=True, service_name="saveflow", token=config.logfire_token)

    async def dispatch_once(self) -> DispatchResult:
        return await self.dispatcher.dispatch_once()

    async def run_digest(
        self,
        user_id: str | None = None,
        target_date: date | str | None = None,
    ) -> DigestRunResult:
        return await self.aggregator.run(user_id=user_id, target_date=target_date)

    def digest_due(self, now: datetime | None = None) -> date | None:
        """Return yesterday's date if its scheduled digest has not run yet."""
        local = (now or datetime.now(self.config.tz)).astimezone(self.config.tz)
        if local.hour < self.config.digest_hour:
            return None
        target = local.date() - timedelta(days=1)
        if self._last_digest_date == target:
            return None
        return target

    async def run_scheduled_digest(self, now: datetime | None = None) -> DigestRunResult | None:
        """Run the daily digest when due, retrying users whose digest failed.

        A newly due day runs for every user. On later calls the users that
        failed are rerun alone, up to MAX_RETRIES times, after which they are
        logged and dropped until the next day.

        Returns:
            This call's results, or None when nothing was due
        """
        target = self.digest_due(now)
        if target is not None:
            result = await self.run_digest(target_date=target)
            self._last_digest_date = target
            self._digest_retry_rounds = 0
        elif self._failed_digest_users and self._last_digest_date is not None:
            self._digest_retry_rounds += 1
            result = DigestRunResult(date=self._last_digest_date.isoformat())
            for user_id in self._failed_digest_users:
                retry = await self.run_digest(user_id=user_id, target_date=self._last_digest_date)
                result.results.extend(retry.results)
        else:
            return None

        failed = [r.user_id for r in result.results if not r.success]
        if failed and self._digest_retry_rounds >= self.config.max_retries:
            logger.error(
                "Digest retries exhausted | date=%s users=%s",
                result.date,
                ",".join(failed),
            )
            failed = []
        elif failed:
            logger.warning(
                "Digest failed, will retry | date=%s users=%s round=%d",
                result.date,
                ",".join(failed),
                self._digest_retry_rounds + 1,
            )
        self._failed_digest_users = failed
        return result

    async def run_continuous(self) -> None:
        """Dispatch and schedule digests until cancelled."""
        cycles = 0
        total_processed = 0
        total_errors = 0

        logger.info(
            "Starting continuous mode | interval=%ds digest_hour=%d tz=%s",
            self.config.poll_interval_seconds,
            self.config.digest_hour,
            self.config.digest_timezone,
        )

        try:
            while True:
                cycles += 1
                full_batch = False
                try:
                    result = await self.dispatch_once()
                    total_processed += result.processed
                    total_errors += result.failed
                    full_batch = result.processed >= self.config.max_concurrent
                except DispatchError as e:
                    logger.error("Cycle failed | cycle=%d error=%s", cycles, e)
                    total_errors += 1

                try:
                    digest = await self.run_scheduled_digest()
                    if digest is not None:
                        total_errors += sum(1 for r in digest.results if not r.success)
                except Exception as e:
                    logger.error("Scheduled digest failed | error=%s", e, exc_info=True)
                    total_errors += 1

                if full_batch:
                    # More work is likely waiting; yield and go again
                    await asyncio.sleep(0)
                    continue
                await asyncio.sleep(self.config.poll_interval_seconds)

        except asyncio.CancelledError:
            logger.info(
                "Pipeline stopped | cycles=%d processed=%d errors=%d",
                cycles,
                total_processed,
                total_errors,
            )
            raise

    def close(self) -> None:
        """Clean up resources."""
        self.db.close()


async def dispatch_once(config: Config) -> dict[str, Any]:
    """Run one dispatch cycle and return its JSON summary."""
    pipeline = Pipeline(config)
    try:
        return (await pipeline.dispatch_once()).to_dict()
    finally:
        pipeline.close()


async def run_digest(
    config: Config,
    user_id: str | None = None,
    target_date: str | None = None,
) -> dict[str, Any]:
    """Run digest generation and return its JSON summary."""
    pipeline = Pipeline(config)
    try:
        return (await pipeline.run_digest(user_id=user_id, target_date=target_date)).to_dict()
    finally:
        pipeline.close()


async def run_continuous(config: Config) -> None:
    pipeline = Pipeline(config)
    try:
        await pipeline.run_continuous()
    finally:
        pipeline.close()
