"""
Tests for the extraction and analysis stages.
"""

import pytest

from agents.analyst import IMAGE_MAX_TOKENS, TEXT_MAX_TOKENS, TRUNCATION_MARKER, ArticleAnalyst
from agents.llm import LLMError, MalformedOutputError
from models.article import ArticleStatus
from models.queue import JobKind, QueueJob
from stages import AnalysisStage, ArticleNotFoundError, ArticleStateError, ExtractionStage
from tests.fakes import (
    FakeLLM,
    analysis_json,
    extracted,
    fake_image_fetcher,
    image_json,
    make_reader,
    make_ready_article,
)
from tools.comments import CommentExtractorRegistry
from tools.images import ImageFetchError
from tools.reader import ExtractionError


def _job(article_id: str, kind: JobKind) -> QueueJob:
    return QueueJob(id="job-1", article_id=article_id, job_type=kind)


def _analyzing_article(db, content="Body text " * 20, images=0, url="https://example.com/a"):
    article, _ = db.submit_article("alice", url)
    db.set_article_status(article.id, ArticleStatus.EXTRACTING)
    db.save_extraction(article.id, extracted(content=content, images=images))
    return article.id


class TestExtractionStage:
    """Tests for ExtractionStage.run."""

    @pytest.mark.asyncio
    async def test_success_merges_content(self, db):
        article, _ = db.submit_article("alice", "https://example.com/a")
        reader = make_reader(extracted(images=2))
        stage = ExtractionStage(db, reader)

        result = await stage.run(_job(article.id, JobKind.EXTRACT))

        assert reader.calls == ["https://example.com/a"]
        assert result["images"] == 2
        stored = db.get_article(article.id)
        assert stored.status == ArticleStatus.ANALYZING
        assert stored.content.startswith("Body text")
        assert stored.site_name == "Example"

    @pytest.mark.asyncio
    async def test_reader_failure_leaves_article_extracting(self, db):
        article, _ = db.submit_article("alice", "https://example.com/a")
        stage = ExtractionStage(db, make_reader(ExtractionError("Reader extraction failed: HTTP 503")))

        with pytest.raises(ExtractionError, match="HTTP 503"):
            await stage.run(_job(article.id, JobKind.EXTRACT))

        stored = db.get_article(article.id)
        assert stored.status == ArticleStatus.EXTRACTING
        assert stored.error_message is None

    @pytest.mark.asyncio
    async def test_comments_from_registered_strategy(self, db):
        article, _ = db.submit_article("alice", "https://news.ycombinator.com/item?id=1")
        registry = CommentExtractorRegistry()
        registry.register("news.ycombinator.com", lambda url, content: ["first", "  ", "second"])
        stage = ExtractionStage(db, make_reader(), comments=registry)

        result = await stage.run(_job(article.id, JobKind.EXTRACT))

        assert result["comments"] == 2
        assert db.get_article(article.id).comments == ["first", "second"]

    @pytest.mark.asyncio
    async def test_rerun_after_extraction_is_skipped(self, db):
        article_id = _analyzing_article(db)
        reader = make_reader()

        result = await ExtractionStage(db, reader).run(_job(article_id, JobKind.EXTRACT))

        assert result["skipped"] == "already extracted"
        assert reader.calls == []

    @pytest.mark.asyncio
    async def test_missing_article(self, db):
        with pytest.raises(ArticleNotFoundError):
            await ExtractionStage(db, make_reader()).run(_job("nope", JobKind.EXTRACT))

    @pytest.mark.asyncio
    async def test_failed_article_cannot_restart(self, db):
        article, job = db.submit_article("alice", "https://example.com/a")
        db.set_article_status(article.id, ArticleStatus.EXTRACTING)
        db.claim_jobs(limit=1, max_retries=1)
        db.record_job_failure(job.id, "boom", max_retries=1)

        with pytest.raises(ArticleStateError):
            await ExtractionStage(db, make_reader()).run(_job(article.id, JobKind.EXTRACT))


class TestAnalysisStage:
    """Tests for AnalysisStage.run."""

    @pytest.mark.asyncio
    async def test_text_and_images_analyzed(self, db):
        article_id = _analyzing_article(db, images=2)
        llm = FakeLLM(lambda p: analysis_json() if isinstance(p, str) else image_json("A chart"))
        stage = AnalysisStage(db, ArticleAnalyst(llm), fake_image_fetcher)

        result = await stage.run(_job(article_id, JobKind.ANALYZE))

        assert result["image_analyses"] == 2
        assert [tokens for _, tokens in llm.calls].count(TEXT_MAX_TOKENS) == 1
        assert [tokens for _, tokens in llm.calls].count(IMAGE_MAX_TOKENS) == 2
        stored = db.get_article(article_id)
        assert stored.status == ArticleStatus.READY
        assert stored.analysis.sentiment == "neutral"

    @pytest.mark.asyncio
    async def test_failed_image_is_dropped_others_kept(self, db):
        article_id = _analyzing_article(db, images=3)

        async def fetcher(url):
            if url.endswith("/2.png"):
                raise ImageFetchError("HTTP 404 fetching image")
            return await fake_image_fetcher(url)

        llm = FakeLLM(lambda p: analysis_json() if isinstance(p, str) else image_json("An image"))
        stage = AnalysisStage(db, ArticleAnalyst(llm), fetcher)

        await stage.run(_job(article_id, JobKind.ANALYZE))

        stored = db.get_article(article_id)
        assert stored.status == ArticleStatus.READY
        assert [a.image_url for a in stored.analysis.image_analyses] == [
            "https://img.example.com/1.png",
            "https://img.example.com/3.png",
        ]

    @pytest.mark.asyncio
    async def test_malformed_image_reply_is_dropped(self, db):
        article_id = _analyzing_article(db, images=1)
        llm = FakeLLM(lambda p: analysis_json() if isinstance(p, str) else "I see a cat.")
        stage = AnalysisStage(db, ArticleAnalyst(llm), fake_image_fetcher)

        await stage.run(_job(article_id, JobKind.ANALYZE))

        stored = db.get_article(article_id)
        assert stored.status == ArticleStatus.READY
        assert stored.analysis.image_analyses == []

    @pytest.mark.asyncio
    async def test_images_capped_at_max_images(self, db):
        article_id = _analyzing_article(db, images=4)
        llm = FakeLLM(lambda p: analysis_json() if isinstance(p, str) else image_json("x"))
        stage = AnalysisStage(db, ArticleAnalyst(llm), fake_image_fetcher, max_images=2)

        result = await stage.run(_job(article_id, JobKind.ANALYZE))

        assert result["image_analyses"] == 2

    @pytest.mark.asyncio
    async def test_prose_around_json_rejected(self, db):
        article_id = _analyzing_article(db)
        llm = FakeLLM(lambda p: f"Here you go:\n{analysis_json()}")
        stage = AnalysisStage(db, ArticleAnalyst(llm), fake_image_fetcher)

        with pytest.raises(MalformedOutputError):
            await stage.run(_job(article_id, JobKind.ANALYZE))

        stored = db.get_article(article_id)
        assert stored.status == ArticleStatus.ANALYZING
        assert stored.analysis is None

    @pytest.mark.asyncio
    async def test_llm_error_propagates(self, db):
        article_id = _analyzing_article(db)
        llm = FakeLLM(lambda p: LLMError("LLM call timed out after 90s"))
        stage = AnalysisStage(db, ArticleAnalyst(llm), fake_image_fetcher)

        with pytest.raises(LLMError, match="timed out"):
            await stage.run(_job(article_id, JobKind.ANALYZE))

    @pytest.mark.asyncio
    async def test_long_content_truncated_in_prompt(self, db):
        article_id = _analyzing_article(db, content="x" * 500)
        llm = FakeLLM(lambda p: analysis_json())
        stage = AnalysisStage(db, ArticleAnalyst(llm, max_content_chars=100), fake_image_fetcher)

        await stage.run(_job(article_id, JobKind.ANALYZE))

        prompt = llm.text_prompts[0]
        assert ("x" * 100 + " " + TRUNCATION_MARKER) in prompt
        assert "x" * 101 not in prompt

    @pytest.mark.asyncio
    async def test_ready_article_is_skipped(self, db):
        article_id = make_ready_article(db, "alice", created_at=1000)
        llm = FakeLLM(lambda p: analysis_json())

        result = await AnalysisStage(db, ArticleAnalyst(llm), fake_image_fetcher).run(
            _job(article_id, JobKind.ANALYZE)
        )

        assert result["skipped"] == "already analyzed"
        assert llm.calls == []

    @pytest.mark.asyncio
    async def test_submitted_article_cannot_be_analyzed(self, db):
        article, _ = db.submit_article("alice", "https://example.com/a")
        llm = FakeLLM(lambda p: analysis_json())

        with pytest.raises(ArticleStateError):
            await AnalysisStage(db, ArticleAnalyst(llm), fake_image_fetcher).run(
                _job(article.id, JobKind.ANALYZE)
            )
