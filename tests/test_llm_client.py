from __future__ import annotations

import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from researchflow import llm_client
from researchflow.errors import GenerationError
from researchflow.llm_client import AnthropicClient, OpenAIClient
from researchflow.models.research import ArticleAnalysis, Provider, ResearchPlan

ANALYSIS = {
    "relevanceScore": 8,
    "credibilityScore": 7,
    "mainTopics": ["agents"],
    "summary": "Agents in production.",
    "keyInsights": ["Costs fell"],
}


def _anthropic_sdk(content, input_tokens=120, output_tokens=40):
    sdk = MagicMock()
    sdk.messages.create = AsyncMock(
        return_value=SimpleNamespace(
            content=content,
            usage=SimpleNamespace(input_tokens=input_tokens, output_tokens=output_tokens),
        )
    )
    return sdk


def _openai_sdk(message, prompt_tokens=90, completion_tokens=30):
    sdk = MagicMock()
    sdk.chat.completions.create = AsyncMock(
        return_value=SimpleNamespace(
            choices=[SimpleNamespace(message=message)],
            usage=SimpleNamespace(prompt_tokens=prompt_tokens, completion_tokens=completion_tokens),
        )
    )
    return sdk


@pytest.mark.asyncio
async def test_anthropic_generate_object_forces_tool_use():
    sdk = _anthropic_sdk([SimpleNamespace(type="tool_use", input=ANALYSIS)])
    client = AnthropicClient(sdk, "claude-3-5-sonnet-20241022", max_tokens=512)

    generation = await client.generate_object("prompt", ArticleAnalysis, operation="analyze-article")

    assert generation.value.relevance_score == 8
    assert generation.usage.total_tokens == 160
    assert generation.model == "claude-3-5-sonnet-20241022"
    kwargs = sdk.messages.create.call_args.kwargs
    assert kwargs["tool_choice"] == {"type": "tool", "name": "submit_article_analysis"}
    assert kwargs["tools"][0]["input_schema"]["properties"]
    assert kwargs["max_tokens"] == 512


@pytest.mark.asyncio
async def test_anthropic_without_tool_use_is_a_generation_error():
    sdk = _anthropic_sdk([SimpleNamespace(type="text", text="I refuse")])
    client = AnthropicClient(sdk, "claude-3-5-sonnet-20241022")

    with pytest.raises(GenerationError):
        await client.generate_object("prompt", ArticleAnalysis, operation="analyze-article")


@pytest.mark.asyncio
async def test_invalid_structured_output_is_a_generation_error():
    sdk = _anthropic_sdk([SimpleNamespace(type="tool_use", input={"relevanceScore": "high"})])
    client = AnthropicClient(sdk, "claude-3-5-sonnet-20241022")

    with pytest.raises(GenerationError, match="ArticleAnalysis"):
        await client.generate_object("prompt", ArticleAnalysis, operation="analyze-article")


@pytest.mark.asyncio
async def test_anthropic_generate_text_joins_text_blocks():
    sdk = _anthropic_sdk(
        [SimpleNamespace(type="text", text="ai, agents"), SimpleNamespace(type="text", text="robots")]
    )
    client = AnthropicClient(sdk, "claude-3-5-sonnet-20241022")

    generation = await client.generate_text("prompt", operation="generate-keywords")

    assert generation.value == "ai, agents\nrobots"
    assert "tools" not in sdk.messages.create.call_args.kwargs


@pytest.mark.asyncio
async def test_anthropic_stream_text():
    async def text_chunks():
        for chunk in ("Plan", " ready"):
            yield chunk

    class FakeStream:
        def __init__(self):
            self.text_stream = text_chunks()

        async def __aenter__(self):
            return self

        async def __aexit__(self, *exc):
            return None

    sdk = MagicMock()
    sdk.messages.stream = MagicMock(return_value=FakeStream())
    client = AnthropicClient(sdk, "claude-3-5-sonnet-20241022")

    chunks = [chunk async for chunk in client.stream_text("prompt")]

    assert chunks == ["Plan", " ready"]


@pytest.mark.asyncio
async def test_openai_generate_object_parses_tool_arguments():
    plan = {
        "primaryQuestions": ["Q1"],
        "searchTerms": ["t1"],
        "expectedFindings": ["F1"],
        "researchDepth": "basic",
    }
    tool_call = SimpleNamespace(function=SimpleNamespace(arguments=json.dumps(plan)))
    sdk = _openai_sdk(SimpleNamespace(tool_calls=[tool_call], content=None))
    client = OpenAIClient(sdk, "gpt-4o")

    generation = await client.generate_object("prompt", ResearchPlan, operation="generate-research-plan")

    assert generation.value.search_terms == ["t1"]
    assert generation.usage.input_tokens == 90
    kwargs = sdk.chat.completions.create.call_args.kwargs
    assert kwargs["tool_choice"] == {"type": "function", "function": {"name": "submit_research_plan"}}


@pytest.mark.asyncio
async def test_openai_malformed_arguments_is_a_generation_error():
    tool_call = SimpleNamespace(function=SimpleNamespace(arguments="{not json"))
    sdk = _openai_sdk(SimpleNamespace(tool_calls=[tool_call], content=None))
    client = OpenAIClient(sdk, "gpt-4o")

    with pytest.raises(GenerationError):
        await client.generate_object("prompt", ResearchPlan, operation="generate-research-plan")


@pytest.mark.asyncio
async def test_openai_generate_text():
    sdk = _openai_sdk(SimpleNamespace(tool_calls=None, content="ai, ml"))
    client = OpenAIClient(sdk, "gpt-4o")

    generation = await client.generate_text("prompt", operation="generate-keywords")

    assert generation.value == "ai, ml"
    assert generation.usage.total_tokens == 120


@pytest.mark.asyncio
async def test_provider_errors_propagate():
    sdk = MagicMock()
    sdk.messages.create = AsyncMock(side_effect=ConnectionError("overloaded"))
    client = AnthropicClient(sdk, "claude-3-5-sonnet-20241022")

    with pytest.raises(ConnectionError):
        await client.generate_text("prompt", operation="generate-keywords")


def test_get_model_uses_settings():
    with patch("researchflow.llm_client.settings") as mock_settings:
        mock_settings.openai_model = "gpt-4o-mini"
        mock_settings.anthropic_model = "claude-3-haiku-20240307"

        assert llm_client.get_model("openai") == "gpt-4o-mini"
        assert llm_client.get_model(Provider.ANTHROPIC) == "claude-3-haiku-20240307"


def test_client_is_cached_per_provider(monkeypatch):
    monkeypatch.setattr(llm_client, "_clients", {})
    built = []

    def fake_get_client(provider):
        built.append(provider)
        return object()

    monkeypatch.setattr(llm_client, "get_client", fake_get_client)

    first = llm_client.client("openai")
    second = llm_client.client(Provider.OPENAI)
    llm_client.client("anthropic")

    assert first is second
    assert built == [Provider.OPENAI, Provider.ANTHROPIC]


def test_unknown_provider_is_rejected():
    with pytest.raises(ValueError):
        llm_client.get_client("gemini")
