"""LLM access for the analysis and digest agents.

All model calls go through a PydanticAI ``Agent`` with plain-text output.
The reply string is then validated strictly against a pydantic schema with
``model_validate_json``: the model is asked for a bare JSON object, and a
reply with prose around the object (or a code fence) is rejected as
MalformedOutputError rather than repaired. Callers treat that as a stage
failure, so the dispatcher's retry bookkeeping applies.

Model strings use PydanticAI format (``provider:model``). Local
OpenAI-compatible servers are addressed as ``openai:{model_name}@{base_url}``.
"""

import asyncio
import logging
from typing import Sequence, TypeVar

from openai import AsyncOpenAI
from pydantic import BaseModel, ValidationError
from pydantic_ai import Agent, BinaryContent
from pydantic_ai.exceptions import AgentRunError
from pydantic_ai.messages import UserContent
from pydantic_ai.models import Model
from pydantic_ai.models.openai import OpenAIChatModel
from pydantic_ai.profiles.openai import OpenAIModelProfile
from pydantic_ai.providers.openai import OpenAIProvider
from pydantic_ai.settings import ModelSettings

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

Prompt = str | Sequence[UserContent]


class LLMError(Exception):
    """Raised when an LLM call fails or times out."""


class MalformedOutputError(LLMError):
    """Raised when an LLM reply is not exactly one JSON object of the expected schema."""


def _parse_local_model(model_str: str) -> tuple[str, str] | None:
    """Parse local model string into (model_name, base_url) or None if not local."""
    if model_str.startswith("openai:") and "@" in model_str:
        rest = model_str[7:]
        model_name, base_url = rest.split("@", 1)
        return model_name, base_url
    return None


def _create_model(model_str: str, api_key: str = "") -> Model | str:
    """Create the PydanticAI model for ``model_str``.

    Supports:
    - Local servers: 'openai:{model_name}@http://127.0.0.1:8080/v1'
    - Anthropic/OpenAI with an explicit key: 'anthropic:claude-haiku-4-5'
    - Anything else PydanticAI understands, passed through as a string
      (credentials then come from the provider's own environment variables)
    """
    parsed = _parse_local_model(model_str)
    if parsed:
        model_name, base_url = parsed
        logger.info("Using local model | model=%s base_url=%s", model_name, base_url)
        client = AsyncOpenAI(base_url=base_url, api_key="local-model")
        profile = OpenAIModelProfile(supports_json_object_output=False)
        return OpenAIChatModel(
            model_name,
            provider=OpenAIProvider(openai_client=client),
            profile=profile,
        )

    provider, _, model_name = model_str.partition(":")
    if api_key and provider == "anthropic":
        from pydantic_ai.models.anthropic import AnthropicModel
        from pydantic_ai.providers.anthropic import AnthropicProvider

        return AnthropicModel(model_name, provider=AnthropicProvider(api_key=api_key))
    if api_key and provider == "openai":
        return OpenAIChatModel(model_name, provider=OpenAIProvider(api_key=api_key))
    return model_str


def parse_strict(text: str, schema: type[T]) -> T:
    """Validate a raw reply string as exactly one ``schema`` JSON object.

    Raises:
        MalformedOutputError: If the reply is not valid JSON or violates the schema
    """
    try:
        return schema.model_validate_json(text)
    except ValidationError as e:
        preview = text[:120].replace("\n", " ")
        raise MalformedOutputError(
            f"Malformed {schema.__name__} reply ({e.error_count()} errors): {preview!r}"
        ) from e


def image_prompt(data: bytes, media_type: str, text: str) -> list[UserContent]:
    """Build a multi-modal prompt: one image followed by instructions."""
    return [BinaryContent(data=data, media_type=media_type), text]


def _run_usage(result):
    """Token usage of a finished run.

    ``AgentRunResult.usage`` is a method on pydantic-ai 1.x and a property
    from 2.0 on; both are accepted so the declared range stays usable.
    """
    usage = result.usage
    return usage() if callable(usage) else usage


class LLMClient:
    """Thin async wrapper over a PydanticAI agent returning raw text.

    Every call carries an explicit timeout and token ceiling.

    Example:
        >>> llm = LLMClient("anthropic:claude-haiku-4-5", api_key=key)
        >>> text = await llm.complete("Return {}", max_tokens=64)
        >>> parse_strict(text, MySchema)
    """

    def __init__(
        self,
        model: str | Model,
        api_key: str = "",
        timeout: float = 90.0,
    ):
        """Initialize the client.

        Args:
            model: PydanticAI model string, or a ready Model instance
            api_key: Provider API key (optional for local models)
            timeout: Per-call timeout in seconds
        """
        self.timeout = timeout
        model_instance = _create_model(model, api_key) if isinstance(model, str) else model
        self.model_name = model if isinstance(model, str) else model.model_name
        self._agent = Agent(model_instance, output_type=str, defer_model_check=True)

    async def complete(self, prompt: Prompt, max_tokens: int) -> str:
        """Run one prompt and return the raw reply text.

        Raises:
            LLMError: On timeout or model/provider failure
        """
        try:
            result = await asyncio.wait_for(
                self._agent.run(prompt, model_settings=ModelSettings(max_tokens=max_tokens)),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            raise LLMError(f"LLM call timed out after {self.timeout:.0f}s") from e
        except AgentRunError as e:
            raise LLMError(f"LLM call failed: {type(e).__name__}: {e}") from e

        usage = _run_usage(result)
        logger.debug(
            "LLM call complete | model=%s input_tokens=%d output_tokens=%d",
            self.model_name,
            usage.input_tokens or 0,
            usage.output_tokens or 0,
        )
        return result.output
