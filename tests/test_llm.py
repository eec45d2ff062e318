"""
Tests for the LLM client, strict reply parsing and model selection.
"""

import asyncio

import pytest
from pydantic_ai import BinaryContent
from pydantic_ai.messages import ModelMessage, ModelRequest, ModelResponse, TextPart, UserPromptPart
from pydantic_ai.models.function import AgentInfo, FunctionModel
from pydantic_ai.models.openai import OpenAIChatModel
from pydantic_ai.usage import RunUsage

from agents.analyst import ArticleAnalyst
from agents.digester import DigestWriter
from agents.llm import (
    LLMClient,
    LLMError,
    MalformedOutputError,
    _create_model,
    _parse_local_model,
    _run_usage,
    image_prompt,
    parse_strict,
)
from models.article import ArticleAnalysis, ArticleStatus, ImageAnalysis
from models.queue import JobKind, JobStatus, QueueJob
from pipeline import QueueDispatcher
from stages import AnalysisStage, ExtractionStage
from tests.fakes import (
    analysis_json,
    digest_reply,
    extracted,
    fake_image_fetcher,
    image_json,
    make_reader,
    make_ready_article,
)


def _user_content(messages: list[ModelMessage]):
    request = messages[-1]
    assert isinstance(request, ModelRequest)
    parts = [p for p in request.parts if isinstance(p, UserPromptPart)]
    return parts[-1].content


class TestLLMClient:
    """Tests for LLMClient.complete against a function model."""

    @pytest.mark.asyncio
    async def test_returns_raw_text(self):
        def reply(messages: list[ModelMessage], info: AgentInfo) -> ModelResponse:
            return ModelResponse(parts=[TextPart('{"ok": true}')])

        client = LLMClient(FunctionModel(reply), timeout=5)

        assert await client.complete("Return JSON", max_tokens=64) == '{"ok": true}'

    @pytest.mark.asyncio
    async def test_token_ceiling_passed_to_model(self):
        seen = {}

        def reply(messages: list[ModelMessage], info: AgentInfo) -> ModelResponse:
            seen.update(info.model_settings or {})
            return ModelResponse(parts=[TextPart("done")])

        await LLMClient(FunctionModel(reply), timeout=5).complete("hi", max_tokens=512)

        assert seen["max_tokens"] == 512

    @pytest.mark.asyncio
    async def test_timeout_raises_llm_error(self):
        async def slow(messages: list[ModelMessage], info: AgentInfo) -> ModelResponse:
            await asyncio.sleep(5)
            return ModelResponse(parts=[TextPart("late")])

        client = LLMClient(FunctionModel(slow), timeout=0.05)

        with pytest.raises(LLMError, match="timed out"):
            await client.complete("hi", max_tokens=64)

    @pytest.mark.asyncio
    async def test_image_prompt_sends_binary_content(self):
        captured = []

        def reply(messages: list[ModelMessage], info: AgentInfo) -> ModelResponse:
            captured.append(_user_content(messages))
            return ModelResponse(parts=[TextPart(image_json("A cat"))])

        client = LLMClient(FunctionModel(reply), timeout=5)
        text = await client.complete(image_prompt(b"\x89PNG", "image/png", "Describe"), max_tokens=64)

        content = captured[0]
        assert isinstance(content[0], BinaryContent)
        assert content[0].media_type == "image/png"
        assert content[1] == "Describe"
        assert parse_strict(text, ImageAnalysis).description == "A cat"


class TestParseStrict:
    """Tests for strict JSON reply validation."""

    def test_accepts_exact_object(self):
        analysis = parse_strict(analysis_json(), ArticleAnalysis)
        assert analysis.reading_time_minutes == 4

    @pytest.mark.parametrize(
        "reply",
        [
            "Sure! " + analysis_json(),
            "```json\n" + analysis_json() + "\n```",
            analysis_json() + "\nHope this helps.",
            "",
        ],
    )
    def test_rejects_wrapped_replies(self, reply):
        with pytest.raises(MalformedOutputError):
            parse_strict(reply, ArticleAnalysis)

    def test_rejects_schema_violation(self):
        with pytest.raises(MalformedOutputError, match="ArticleAnalysis"):
            parse_strict(analysis_json(sentiment="ecstatic"), ArticleAnalysis)

    def test_malformed_is_an_llm_error(self):
        assert issubclass(MalformedOutputError, LLMError)


class TestModelSelection:
    """Tests for model string handling."""

    def test_parse_local_model(self):
        assert _parse_local_model("openai:qwen@http://127.0.0.1:8080/v1") == (
            "qwen",
            "http://127.0.0.1:8080/v1",
        )
        assert _parse_local_model("anthropic:claude-haiku-4-5") is None

    def test_local_model_uses_openai_chat(self):
        model = _create_model("openai:qwen@http://127.0.0.1:8080/v1")
        assert isinstance(model, OpenAIChatModel)
        assert model.model_name == "qwen"

    def test_without_key_passes_string_through(self):
        assert _create_model("anthropic:claude-haiku-4-5") == "anthropic:claude-haiku-4-5"


class TestRunUsage:
    """Tests for reading token usage off a finished run."""

    def test_usage_method(self):
        usage = RunUsage(input_tokens=3, output_tokens=5)

        class Result:
            def usage(self):
                return usage

        assert _run_usage(Result()) is usage

    def test_usage_property(self):
        usage = RunUsage(input_tokens=3, output_tokens=5)

        class Result:
            pass

        result = Result()
        result.usage = usage
        assert _run_usage(result) is usage


def _pipeline_model_reply(messages: list[ModelMessage], info: AgentInfo) -> ModelResponse:
    """Answer text prompts with an analysis or digest, image prompts with a description."""
    content = _user_content(messages)
    if not isinstance(content, str):
        return ModelResponse(parts=[TextPart(image_json("A diagram"))])
    if "daily reading digest" in content:
        return ModelResponse(parts=[TextPart(digest_reply(content))])
    return ModelResponse(parts=[TextPart(analysis_json())])


class TestClientThroughPipeline:
    """LLMClient driving the analysis stage, dispatcher and digest writer end to end."""

    @pytest.mark.asyncio
    async def test_analysis_stage_reaches_ready(self, db):
        article, _ = db.submit_article("alice", "https://example.com/a")
        db.set_article_status(article.id, ArticleStatus.EXTRACTING)
        db.save_extraction(article.id, extracted(images=2))
        llm = LLMClient(FunctionModel(_pipeline_model_reply), timeout=5)
        stage = AnalysisStage(db, ArticleAnalyst(llm), fake_image_fetcher)

        await stage.run(QueueJob(id="job-1", article_id=article.id, job_type=JobKind.ANALYZE))

        stored = db.get_article(article.id)
        assert stored.status == ArticleStatus.READY
        assert stored.analysis.summary == "A short summary of the article."
        assert [a.description for a in stored.analysis.image_analyses] == ["A diagram", "A diagram"]

    @pytest.mark.asyncio
    async def test_dispatcher_two_cycles(self, config, db):
        article, _ = db.submit_article("alice", "https://example.com/a")
        llm = LLMClient(FunctionModel(_pipeline_model_reply), timeout=5)
        dispatcher = QueueDispatcher(
            config,
            db,
            {
                JobKind.EXTRACT: ExtractionStage(db, make_reader()),
                JobKind.ANALYZE: AnalysisStage(db, ArticleAnalyst(llm), fake_image_fetcher),
            },
        )

        await dispatcher.dispatch_once()
        second = await dispatcher.dispatch_once()

        assert second.summary[0].status == JobStatus.COMPLETED
        assert second.summary[0].error is None
        assert db.get_article(article.id).analysis is not None

    @pytest.mark.asyncio
    async def test_digest_writer(self, db):
        article_id = make_ready_article(db, "alice", created_at=1000, title="Queues")
        llm = LLMClient(FunctionModel(_pipeline_model_reply), timeout=5)

        content = await DigestWriter(llm).write([db.get_article(article_id)])

        assert [a.article_id for a in content.articles] == [article_id]
        assert content.top_themes == ["Testing", "Python", "Queues"]
