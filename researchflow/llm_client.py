"""LLM client factory for the Anthropic and OpenAI providers.

Both clients expose the same two capabilities the analysis engine relies on:
``generate_object`` (structured output validated against a pydantic model) and
``generate_text`` (free text), plus ``stream_text`` for incremental output.
"""
from __future__ import annotations

import json
import re
import time
from dataclasses import dataclass
from typing import Any, AsyncIterator, Generic, TypeVar

from pydantic import BaseModel, ValidationError

from researchflow.config import settings
from researchflow.errors import GenerationError
from researchflow.models.research import Provider
from researchflow.services import logger as log_service

M = TypeVar("M", bound=BaseModel)
T = TypeVar("T")


@dataclass
class Usage:
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass
class Generation(Generic[T]):
    value: T
    usage: Usage
    model: str
    duration_ms: int


def _tool_name(schema: type[BaseModel]) -> str:
    snake = re.sub(r"(?<!^)(?=[A-Z])", "_", schema.__name__).lower()
    return f"submit_{snake}"


class BaseLLMClient:
    provider: Provider

    def __init__(self, sdk_client: Any, model: str, max_tokens: int | None = None):
        self._client = sdk_client
        self.model = model
        self.max_tokens = max_tokens or settings.llm_max_tokens

    async def _complete_structured(
        self, prompt: str, name: str, schema: dict[str, Any]
    ) -> tuple[Any, Usage]:
        raise NotImplementedError

    async def _complete_text(self, prompt: str) -> tuple[str, Usage]:
        raise NotImplementedError

    def stream_text(self, prompt: str) -> AsyncIterator[str]:
        raise NotImplementedError

    async def generate_object(
        self, prompt: str, schema: type[M], *, operation: str
    ) -> Generation[M]:
        """Generate a value matching ``schema``; raises GenerationError otherwise."""
        t0 = time.monotonic()
        try:
            raw, usage = await self._complete_structured(
                prompt, _tool_name(schema), schema.model_json_schema()
            )
            if raw is None:
                raise GenerationError(f"{self.provider.value} returned no structured output")
            value = schema.model_validate(raw)
        except ValidationError as e:
            self._log(operation, t0, Usage(), status="error", error=str(e))
            raise GenerationError(
                f"{operation}: output did not match {schema.__name__}: {e.error_count()} error(s)"
            ) from e
        except Exception as e:
            self._log(operation, t0, Usage(), status="error", error=str(e))
            raise

        duration_ms = self._log(operation, t0, usage)
        return Generation(value=value, usage=usage, model=self.model, duration_ms=duration_ms)

    async def generate_text(self, prompt: str, *, operation: str) -> Generation[str]:
        t0 = time.monotonic()
        try:
            text, usage = await self._complete_text(prompt)
        except Exception as e:
            self._log(operation, t0, Usage(), status="error", error=str(e))
            raise

        duration_ms = self._log(operation, t0, usage)
        return Generation(value=text, usage=usage, model=self.model, duration_ms=duration_ms)

    def _log(
        self,
        operation: str,
        t0: float,
        usage: Usage,
        *,
        status: str = "success",
        error: str | None = None,
    ) -> int:
        duration_ms = int((time.monotonic() - t0) * 1000)
        log_service.log_llm_call(
            provider=self.provider.value,
            model=self.model,
            operation=operation,
            input_tokens=usage.input_tokens,
            output_tokens=usage.output_tokens,
            duration_ms=duration_ms,
            status=status,
            error=error,
        )
        return duration_ms


class AnthropicClient(BaseLLMClient):
    provider = Provider.ANTHROPIC

    async def _complete_structured(
        self, prompt: str, name: str, schema: dict[str, Any]
    ) -> tuple[Any, Usage]:
        response = await self._client.messages.create(
            model=self.model,
            max_tokens=self.max_tokens,
            messages=[{"role": "user", "content": prompt}],
            tools=[
                {
                    "name": name,
                    "description": "Record the structured result.",
                    "input_schema": schema,
                }
            ],
            tool_choice={"type": "tool", "name": name},
        )
        usage = Usage(
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
        )
        for block in response.content:
            if block.type == "tool_use":
                return block.input, usage
        return None, usage

    async def _complete_text(self, prompt: str) -> tuple[str, Usage]:
        response = await self._client.messages.create(
            model=self.model,
            max_tokens=self.max_tokens,
            messages=[{"role": "user", "content": prompt}],
        )
        text = "\n".join(b.text for b in response.content if b.type == "text")
        usage = Usage(
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
        )
        return text, usage

    async def stream_text(self, prompt: str) -> AsyncIterator[str]:
        async with self._client.messages.stream(
            model=self.model,
            max_tokens=self.max_tokens,
            messages=[{"role": "user", "content": prompt}],
        ) as stream:
            async for text in stream.text_stream:
                yield text


class OpenAIClient(BaseLLMClient):
    provider = Provider.OPENAI

    @staticmethod
    def _usage(response: Any) -> Usage:
        usage = getattr(response, "usage", None)
        return Usage(
            input_tokens=getattr(usage, "prompt_tokens", 0) or 0,
            output_tokens=getattr(usage, "completion_tokens", 0) or 0,
        )

    async def _complete_structured(
        self, prompt: str, name: str, schema: dict[str, Any]
    ) -> tuple[Any, Usage]:
        response = await self._client.chat.completions.create(
            model=self.model,
            max_tokens=self.max_tokens,
            messages=[{"role": "user", "content": prompt}],
            tools=[
                {
                    "type": "function",
                    "function": {
                        "name": name,
                        "description": "Record the structured result.",
                        "parameters": schema,
                    },
                }
            ],
            tool_choice={"type": "function", "function": {"name": name}},
        )
        usage = self._usage(response)
        message = response.choices[0].message
        for tc in getattr(message, "tool_calls", None) or []:
            try:
                return json.loads(tc.function.arguments or "{}"), usage
            except json.JSONDecodeError as e:
                raise GenerationError(f"openai returned malformed tool arguments: {e}") from e
        return None, usage

    async def _complete_text(self, prompt: str) -> tuple[str, Usage]:
        response = await self._client.chat.completions.create(
            model=self.model,
            max_tokens=self.max_tokens,
            messages=[{"role": "user", "content": prompt}],
        )
        text = response.choices[0].message.content or ""
        return text, self._usage(response)

    async def stream_text(self, prompt: str) -> AsyncIterator[str]:
        stream = await self._client.chat.completions.create(
            model=self.model,
            max_tokens=self.max_tokens,
            messages=[{"role": "user", "content": prompt}],
            stream=True,
        )
        async for chunk in stream:
            choices = getattr(chunk, "choices", None) or []
            if not choices:
                continue
            text = getattr(choices[0].delta, "content", None)
            if text:
                yield text


def get_model(provider: Provider | str) -> str:
    """Get the configured model id for a provider."""
    if Provider(provider) is Provider.OPENAI:
        return settings.openai_model
    return settings.anthropic_model


def get_client(provider: Provider | str) -> BaseLLMClient:
    """Build a client for the given provider."""
    provider = Provider(provider)
    if provider is Provider.OPENAI:
        from openai import AsyncOpenAI

        return OpenAIClient(AsyncOpenAI(api_key=settings.openai_api_key), get_model(provider))

    import anthropic

    return AnthropicClient(
        anthropic.AsyncAnthropic(api_key=settings.anthropic_api_key), get_model(provider)
    )


# Singletons, one per provider
_clients: dict[Provider, BaseLLMClient] = {}


def client(provider: Provider | str) -> BaseLLMClient:
    """Get or create the LLM client for a provider."""
    provider = Provider(provider)
    if provider not in _clients:
        _clients[provider] = get_client(provider)
    return _clients[provider]
