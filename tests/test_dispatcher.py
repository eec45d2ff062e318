"""
Tests for the queue dispatcher and pipeline orchestration.
"""

import dataclasses
import sqlite3
import time
from datetime import date, datetime, timezone

import pytest

from agents.analyst import ArticleAnalyst
from agents.llm import LLMError
from models.article import ArticleStatus
from models.digest import UserSettings
from models.queue import DispatchResult, JobKind, JobStatus
from pipeline import NO_PENDING_JOBS, DispatchError, Pipeline, QueueDispatcher, retry_delay
from stages import AnalysisStage, ExtractionStage
from tests.fakes import (
    FakeLLM,
    analysis_json,
    digest_reply,
    extracted,
    fake_image_fetcher,
    image_json,
    make_reader,
    make_ready_article,
)
from tools.reader import ExtractionError

# 2024-05-01 12:00:00 UTC
MAY_FIRST_NOON = 1714564800


def _default_llm(prompt):
    if isinstance(prompt, str):
        return analysis_json()
    return image_json("A chart")


def make_dispatcher(config, db, reader=None, llm=None, rng=lambda: 1.0):
    extraction = ExtractionStage(db, reader or make_reader())
    analysis = AnalysisStage(db, ArticleAnalyst(llm or FakeLLM(_default_llm)), fake_image_fetcher)
    return QueueDispatcher(
        config,
        db,
        {JobKind.EXTRACT: extraction, JobKind.ANALYZE: analysis},
        rng=rng,
    )


class TestRetryDelay:
    """Tests for retry_delay backoff."""

    def test_zero_base_retries_immediately(self):
        assert retry_delay(3, 0.0, 900.0, lambda: 1.0) == 0.0

    def test_exponential_growth(self):
        assert retry_delay(1, 30.0, 900.0, lambda: 1.0) == 30.0
        assert retry_delay(2, 30.0, 900.0, lambda: 1.0) == 60.0
        assert retry_delay(3, 30.0, 900.0, lambda: 1.0) == 120.0

    def test_capped_at_max(self):
        assert retry_delay(10, 30.0, 900.0, lambda: 1.0) == 900.0

    def test_jitter_keeps_at_least_half(self):
        assert retry_delay(1, 30.0, 900.0, lambda: 0.0) == 15.0


class TestDispatchOnce:
    """Tests for QueueDispatcher.dispatch_once."""

    @pytest.mark.asyncio
    async def test_empty_queue_is_idle(self, config, db):
        result = await make_dispatcher(config, db).dispatch_once()

        assert result.idle
        assert result.to_dict() == {"processed": 0, "message": NO_PENDING_JOBS}

    @pytest.mark.asyncio
    async def test_extract_completion_enqueues_analyze(self, config, db):
        article, job = db.submit_article("alice", "https://example.com/a")

        result = await make_dispatcher(config, db).dispatch_once()

        assert result.processed == 1
        assert result.summary[0].status == JobStatus.COMPLETED
        assert db.get_article(article.id).status == ArticleStatus.ANALYZING
        jobs = db.list_jobs(article_id=article.id)
        assert [j.job_type for j in jobs] == [JobKind.EXTRACT, JobKind.ANALYZE]
        assert jobs[1].status == JobStatus.PENDING

    @pytest.mark.asyncio
    async def test_two_cycles_reach_ready_with_images_in_order(self, config, db):
        article, _ = db.submit_article("alice", "https://example.com/a")
        dispatcher = make_dispatcher(config, db, reader=make_reader(extracted(images=3)))

        await dispatcher.dispatch_once()
        second = await dispatcher.dispatch_once()

        assert second.summary[0].status == JobStatus.COMPLETED
        stored = db.get_article(article.id)
        assert stored.status == ArticleStatus.READY
        assert [a.image_url for a in stored.analysis.image_analyses] == [
            "https://img.example.com/1.png",
            "https://img.example.com/2.png",
            "https://img.example.com/3.png",
        ]
        assert (await dispatcher.dispatch_once()).idle

    @pytest.mark.asyncio
    async def test_one_failure_does_not_affect_siblings(self, config, db):
        ids = [db.submit_article("alice", f"https://example.com/{i}")[0].id for i in range(3)]
        calls = []

        async def reader(url):
            calls.append(url)
            if url.endswith("/1"):
                raise ExtractionError("Reader extraction failed: HTTP 503")
            return extracted()

        result = await make_dispatcher(config, db, reader=reader).dispatch_once()

        assert result.processed == 3
        by_article = {o.article_id: o for o in result.summary}
        assert by_article[ids[0]].status == JobStatus.COMPLETED
        assert by_article[ids[1]].status == JobStatus.PENDING
        assert by_article[ids[1]].error == "Reader extraction failed: HTTP 503"
        assert by_article[ids[2]].status == JobStatus.COMPLETED
        assert db.get_article(ids[1]).status == ArticleStatus.EXTRACTING

    @pytest.mark.asyncio
    async def test_last_attempt_fails_job_and_article(self, config, db):
        article, job = db.submit_article("alice", "https://example.com/a")
        db.conn.execute("UPDATE processing_queue SET attempts = 2 WHERE id = ?", (job.id,))
        db.conn.commit()
        reader = make_reader(ExtractionError("Reader extraction failed: HTTP 503"))

        result = await make_dispatcher(config, db, reader=reader).dispatch_once()

        assert result.to_dict() == {
            "processed": 1,
            "summary": [
                {
                    "job_id": job.id,
                    "status": "failed",
                    "error": "Reader extraction failed: HTTP 503",
                }
            ],
        }
        stored_job = db.get_job(job.id)
        assert stored_job.status == JobStatus.FAILED
        assert stored_job.attempts == 3
        stored = db.get_article(article.id)
        assert stored.status == ArticleStatus.FAILED
        assert stored.error_message == "Reader extraction failed: HTTP 503"

    @pytest.mark.asyncio
    async def test_attempts_increase_each_cycle_until_failed(self, config, db):
        _, job = db.submit_article("alice", "https://example.com/a")
        dispatcher = make_dispatcher(config, db, reader=make_reader(ExtractionError("down")))

        statuses = []
        for _ in range(3):
            result = await dispatcher.dispatch_once()
            statuses.append((result.summary[0].status, result.summary[0].attempts))

        assert statuses == [
            (JobStatus.PENDING, 1),
            (JobStatus.PENDING, 2),
            (JobStatus.FAILED, 3),
        ]
        assert (await dispatcher.dispatch_once()).idle

    @pytest.mark.asyncio
    async def test_backoff_gates_retry(self, config, db):
        config = dataclasses.replace(config, retry_base_delay=10.0, retry_max_delay=100.0)
        _, job = db.submit_article("alice", "https://example.com/a")
        dispatcher = make_dispatcher(config, db, reader=make_reader(ExtractionError("down")))

        before = int(time.time())
        await dispatcher.dispatch_once()

        stored = db.get_job(job.id)
        assert stored.status == JobStatus.PENDING
        assert stored.next_eligible_at >= before + 10
        assert (await dispatcher.dispatch_once()).idle
        claimed = db.claim_jobs(limit=5, max_retries=3, now=stored.next_eligible_at)
        assert [j.id for j in claimed] == [job.id]

    @pytest.mark.asyncio
    async def test_unknown_job_kind_fails_that_job(self, config, db):
        _, job = db.submit_article("alice", "https://example.com/a")
        db.conn.execute("UPDATE processing_queue SET job_type = 'summarize' WHERE id = ?", (job.id,))
        db.conn.commit()

        result = await make_dispatcher(config, db).dispatch_once()

        outcome = result.summary[0]
        assert outcome.status == JobStatus.PENDING
        assert outcome.attempts == 1
        assert "summarize" in outcome.error

    @pytest.mark.asyncio
    async def test_claim_failure_raises_dispatch_error(self, config, db, monkeypatch):
        db.submit_article("alice", "https://example.com/a")

        def locked(*args, **kwargs):
            raise sqlite3.OperationalError("database is locked")

        monkeypatch.setattr(db, "claim_jobs", locked)

        with pytest.raises(DispatchError, match="database is locked"):
            await make_dispatcher(config, db).dispatch_once()

    @pytest.mark.asyncio
    async def test_unreadable_status_after_lost_completion(self, config, db, monkeypatch):
        article, job = db.submit_article("alice", "https://example.com/a")

        def locked(*args, **kwargs):
            raise sqlite3.OperationalError("database is locked")

        monkeypatch.setattr(db, "complete_job", lambda *args, **kwargs: False)
        monkeypatch.setattr(db, "get_job", locked)

        result = await make_dispatcher(config, db).dispatch_once()

        outcome = result.summary[0]
        assert outcome.job_id == job.id
        assert outcome.status == JobStatus.PROCESSING
        assert outcome.result["article_id"] == article.id

    @pytest.mark.asyncio
    async def test_prose_wrapped_reply_is_retried(self, config, db):
        article, _ = db.submit_article("alice", "https://example.com/a")
        llm = FakeLLM(lambda prompt: "Sure! Here is the analysis: " + analysis_json())
        dispatcher = make_dispatcher(config, db, llm=llm)

        await dispatcher.dispatch_once()
        result = await dispatcher.dispatch_once()

        outcome = result.summary[0]
        assert outcome.job_type == JobKind.ANALYZE
        assert outcome.status == JobStatus.PENDING
        assert "Malformed" in outcome.error
        stored = db.get_article(article.id)
        assert stored.status == ArticleStatus.ANALYZING
        assert stored.analysis is None

    @pytest.mark.asyncio
    async def test_batch_limited_to_max_concurrent(self, config, db):
        config = dataclasses.replace(config, max_concurrent=2)
        for i in range(5):
            db.submit_article("alice", f"https://example.com/{i}")

        result = await make_dispatcher(config, db).dispatch_once()

        assert result.processed == 2
        assert db.queue_stats()["pending"] == 3 + 2  # 3 extract left, 2 analyze added


class TestDispatchResult:
    """Tests for the dispatch summary shape."""

    def test_completed_entries_carry_result(self):
        result = DispatchResult.model_validate({
            "processed": 1,
            "summary": [
                {
                    "job_id": "j1",
                    "article_id": "a1",
                    "job_type": "extract",
                    "status": "completed",
                    "result": {"article_id": "a1"},
                }
            ],
        })
        assert result.to_dict() == {
            "processed": 1,
            "summary": [{"job_id": "j1", "status": "completed", "result": {"article_id": "a1"}}],
        }
        assert result.completed == 1
        assert result.failed == 0


class TestPipeline:
    """Tests for Pipeline wiring and digest scheduling."""

    @pytest.mark.asyncio
    async def test_pipeline_runs_cycle_with_injected_llm(self, config, db):
        db.submit_article("alice", "https://example.com/a")
        pipeline = Pipeline(config, db=db, analysis_llm=FakeLLM(_default_llm), digest_llm=FakeLLM(_default_llm))
        pipeline.dispatcher.stages[JobKind.EXTRACT] = ExtractionStage(db, make_reader())

        first = await pipeline.dispatch_once()
        second = await pipeline.dispatch_once()

        assert first.summary[0].job_type == JobKind.EXTRACT
        assert second.summary[0].job_type == JobKind.ANALYZE
        assert db.article_stats()["ready"] == 1

    def test_digest_due_after_configured_hour(self, config, db):
        config = dataclasses.replace(config, digest_hour=6)
        pipeline = Pipeline(config, db=db, analysis_llm=FakeLLM(_default_llm), digest_llm=FakeLLM(_default_llm))

        early = datetime(2024, 5, 2, 5, 59, tzinfo=timezone.utc)
        late = datetime(2024, 5, 2, 6, 0, tzinfo=timezone.utc)

        assert pipeline.digest_due(early) is None
        assert pipeline.digest_due(late) == date(2024, 5, 1)

        pipeline._last_digest_date = date(2024, 5, 1)
        assert pipeline.digest_due(late) is None

    @pytest.mark.asyncio
    async def test_scheduled_digest_retries_only_failed_users(self, config, db):
        for user_id in ("alice", "bob"):
            db.upsert_user_settings(UserSettings(user_id=user_id))
            make_ready_article(db, user_id, created_at=MAY_FIRST_NOON, title=f"{user_id} post")
        attempts = []

        def handler(prompt):
            user = "alice" if "alice post" in prompt else "bob"
            attempts.append(user)
            if attempts == ["alice"]:
                return LLMError("Model call failed: overloaded")
            return digest_reply(prompt)

        pipeline = Pipeline(config, db=db, analysis_llm=FakeLLM(_default_llm), digest_llm=FakeLLM(handler))
        now = datetime(2024, 5, 2, 7, 0, tzinfo=timezone.utc)

        first = await pipeline.run_scheduled_digest(now)
        assert {r.user_id: r.success for r in first.results} == {"alice": False, "bob": True}

        second = await pipeline.run_scheduled_digest(now)
        assert [(r.user_id, r.success) for r in second.results] == [("alice", True)]
        assert attempts == ["alice", "bob", "alice"]
        assert db.get_digest("alice", "2024-05-01") is not None

        assert await pipeline.run_scheduled_digest(now) is None

    @pytest.mark.asyncio
    async def test_scheduled_digest_gives_up_after_max_retries(self, config, db):
        config = dataclasses.replace(config, max_retries=2)
        db.upsert_user_settings(UserSettings(user_id="alice"))
        make_ready_article(db, "alice", created_at=MAY_FIRST_NOON)
        llm = FakeLLM(lambda prompt: LLMError("Model call failed: overloaded"))
        pipeline = Pipeline(config, db=db, analysis_llm=FakeLLM(_default_llm), digest_llm=llm)
        now = datetime(2024, 5, 2, 7, 0, tzinfo=timezone.utc)

        for _ in range(3):
            result = await pipeline.run_scheduled_digest(now)
            assert not result.results[0].success

        assert await pipeline.run_scheduled_digest(now) is None
        assert len(llm.calls) == 3
