"""Daily digest aggregation.

For each user and one calendar day, collect the user's ``ready`` articles
created that day, ask the LLM for a narrative digest, upsert it keyed by
(user, date) and send a best-effort push notification.

Calendar days are taken in the configured reference timezone; the window
is inclusive, from 00:00:00 to 23:59:59 local time. Users are processed
sequentially and independently: one user's failure is recorded in the
results and never stops the others.
"""

import logging
import time
import uuid
from datetime import date, datetime, timedelta
from datetime import time as dt_time
from typing import Awaitable, Callable
from zoneinfo import ZoneInfo

from agents.digester import DigestWriter
from agents.llm import LLMClient
from config import Config
from database import Database
from models.digest import Digest, DigestRunResult, UserDigestResult, UserSettings
from notifications import notify_digest, save_digest_markdown
from observability.logging import clear_context, set_run_context
from observability.tracing import trace_operation

logger = logging.getLogger(__name__)

NO_ARTICLES = "no articles"

Notifier = Callable[[Digest, UserSettings | None, Config], Awaitable[bool]]


def resolve_target_date(
    target_date: date | str | None,
    tz: ZoneInfo,
    now: datetime | None = None,
) -> date:
    """Return ``target_date`` as a date, defaulting to yesterday in ``tz``.

    Raises:
        ValueError: If a string date is not YYYY-MM-DD
    """
    if isinstance(target_date, date):
        return target_date
    if target_date:
        return date.fromisoformat(target_date)
    current = now.astimezone(tz) if now else datetime.now(tz)
    return current.date() - timedelta(days=1)


def day_window(day: date, tz: ZoneInfo) -> tuple[int, int]:
    """Inclusive ``[start, end]`` epoch seconds covering ``day`` in ``tz``."""
    start = datetime.combine(day, dt_time.min, tzinfo=tz)
    next_start = datetime.combine(day + timedelta(days=1), dt_time.min, tzinfo=tz)
    return int(start.timestamp()), int(next_start.timestamp()) - 1


class DigestAggregator:
    """Generates daily digests for one or all users.

    Example:
        >>> aggregator = DigestAggregator.from_config(config, db)
        >>> result = await aggregator.run(target_date="2024-05-01")
        >>> print(result.to_dict())
    """

    def __init__(
        self,
        config: Config,
        db: Database,
        writer: DigestWriter,
        notifier: Notifier = notify_digest,
    ):
        self.config = config
        self.db = db
        self.writer = writer
        self.notifier = notifier

    @classmethod
    def from_config(
        cls,
        config: Config,
        db: Database,
        llm: LLMClient | None = None,
    ) -> "DigestAggregator":
        llm = llm or LLMClient(
            config.digest_model,
            api_key=config.llm_api_key,
            timeout=config.llm_timeout_seconds,
        )
        return cls(config, db, DigestWriter(llm))

    def _target_users(self, user_id: str | None) -> list[tuple[str, UserSettings | None]]:
        if user_id:
            return [(user_id, self.db.get_user_settings(user_id))]
        return [(s.user_id, s) for s in self.db.list_user_settings()]

    async def run(
        self,
        user_id: str | None = None,
        target_date: date | str | None = None,
        now: datetime | None = None,
    ) -> DigestRunResult:
        """Generate digests for ``target_date`` (default: yesterday).

        Args:
            user_id: Only this user (processed even without a settings row)
            target_date: Calendar day as date or YYYY-MM-DD
            now: Override the current time when resolving "yesterday"

        Returns:
            Per-user results in processing order

        Raises:
            ValueError: If ``target_date`` is not a valid date
            sqlite3.Error: If the user list cannot be read
        """
        tz = self.config.tz
        day = resolve_target_date(target_date, tz, now)
        start, end = day_window(day, tz)
        run_id = uuid.uuid4().hex[:8]
        set_run_context(run_id)
        started = time.time()
        result = DigestRunResult(date=day.isoformat())

        try:
            with trace_operation("digest_run", {"run_id": run_id, "date": day.isoformat()}) as attrs:
                users = self._target_users(user_id)
                logger.info("Digest run started | date=%s users=%d", day.isoformat(), len(users))

                for uid, settings in users:
                    result.results.append(
                        await self.generate_for_user(uid, day, start, end, settings)
                    )

                generated = sum(1 for r in result.results if r.digest_id)
                failed = sum(1 for r in result.results if not r.success)
                attrs["generated"] = generated
                attrs["failed"] = failed
        finally:
            result.duration = time.time() - started
            clear_context()

        logger.info(
            "Digest run done | date=%s users=%d generated=%d skipped=%d failed=%d duration=%.1fs",
            result.date,
            len(result.results),
            sum(1 for r in result.results if r.digest_id),
            sum(1 for r in result.results if r.skipped),
            sum(1 for r in result.results if not r.success),
            result.duration,
        )
        return result

    async def generate_for_user(
        self,
        user_id: str,
        day: date,
        start: int,
        end: int,
        settings: UserSettings | None = None,
    ) -> UserDigestResult:
        """Build, store and announce one user's digest; never raises."""
        try:
            articles = self.db.list_ready_articles(user_id, start, end)
            if not articles:
                logger.info("Digest skipped, no articles | user=%s date=%s", user_id, day.isoformat())
                return UserDigestResult(user_id=user_id, success=True, skipped=NO_ARTICLES)

            logger.info("Generating digest | user=%s articles=%d", user_id, len(articles))
            content = await self.writer.write(articles)
            digest = self.db.upsert_digest(user_id, day.isoformat(), content, len(articles))
        except Exception as e:
            logger.error(
                "Digest failed | user=%s date=%s error=%s",
                user_id,
                day.isoformat(),
                e,
                exc_info=True,
            )
            return UserDigestResult(user_id=user_id, success=False, error=str(e) or type(e).__name__)

        if self.config.digest_export_dir:
            save_digest_markdown(digest, self.config.digest_export_dir)

        try:
            notified = await self.notifier(digest, settings, self.config)
        except Exception as e:
            logger.warning("Digest push failed | user=%s error=%s", user_id, e, exc_info=True)
            notified = False

        logger.info(
            "Digest stored | user=%s date=%s digest=%s notified=%s",
            user_id,
            digest.date,
            digest.id[:8],
            notified,
        )
        return UserDigestResult(
            user_id=user_id,
            success=True,
            digest_id=digest.id,
            notified=notified,
        )
