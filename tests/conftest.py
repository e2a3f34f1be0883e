"""Shared fakes: an in-memory research database and a scripted LLM client."""
from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncIterator, Callable
from uuid import UUID, uuid4

import pytest

from researchflow.errors import InvalidStatusTransitionError, NotFoundError
from researchflow.llm_client import BaseLLMClient, Usage
from researchflow.models.research import (
    Article,
    EnhancedResearchData,
    LogStatus,
    Provider,
    RequestStatus,
    ResearchRequest,
    ResearchResult,
    WorkflowLogEntry,
    can_transition,
)
from researchflow.services import database as db
from researchflow.services import metrics as metrics_service
from researchflow.services.metrics import InMemoryMetricsStore

DB_FUNCTIONS = (
    "create_research_request",
    "get_research_request",
    "list_research_requests",
    "update_request_status",
    "create_research_result",
    "get_research_result",
    "create_workflow_log",
    "get_workflow_logs",
)


class FakeDatabase:
    """Mirrors the asyncpg functions in researchflow.services.database."""

    def __init__(self):
        self.requests: dict[UUID, ResearchRequest] = {}
        self.results: dict[UUID, ResearchResult] = {}
        self.logs: list[WorkflowLogEntry] = []
        self._clock = datetime(2025, 1, 1, tzinfo=timezone.utc)

    def _tick(self) -> datetime:
        self._clock += timedelta(seconds=1)
        return self._clock

    async def create_research_request(self, topic, user_id, provider) -> ResearchRequest:
        now = self._tick()
        request = ResearchRequest(
            id=uuid4(),
            topic=topic,
            user_id=user_id,
            status=RequestStatus.PENDING,
            provider=Provider(provider),
            created_at=now,
            updated_at=now,
        )
        self.requests[request.id] = request
        return request

    async def get_research_request(self, request_id) -> ResearchRequest | None:
        return self.requests.get(request_id)

    async def list_research_requests(self, user_id=None) -> list[ResearchRequest]:
        rows = [r for r in self.requests.values() if user_id is None or r.user_id == user_id]
        return sorted(rows, key=lambda r: r.created_at, reverse=True)

    async def update_request_status(self, request_id, status) -> ResearchRequest:
        request = self.requests.get(request_id)
        if request is None:
            raise NotFoundError(f"Research request {request_id} not found")
        if not can_transition(request.status, status):
            raise InvalidStatusTransitionError(request.status.value, status.value)
        updated = request.model_copy(update={"status": status, "updated_at": self._tick()})
        self.requests[request_id] = updated
        return updated

    async def create_research_result(
        self, request_id, articles, keywords, enhanced_data: EnhancedResearchData | None = None
    ) -> ResearchResult:
        if request_id in self.results:
            return self.results[request_id]
        result = ResearchResult(
            id=uuid4(),
            request_id=request_id,
            articles=list(articles),
            keywords=list(keywords),
            enhanced_data=enhanced_data,
            created_at=self._tick(),
        )
        self.results[request_id] = result
        return result

    async def get_research_result(self, request_id) -> ResearchResult | None:
        return self.results.get(request_id)

    async def create_workflow_log(self, request_id, step, status, message="") -> WorkflowLogEntry:
        entry = WorkflowLogEntry(
            id=uuid4(),
            request_id=request_id,
            step=step,
            status=LogStatus(status),
            message=message,
            timestamp=self._tick(),
        )
        self.logs.append(entry)
        return entry

    async def get_workflow_logs(self, request_id) -> list[WorkflowLogEntry]:
        return [log for log in self.logs if log.request_id == request_id]

    def steps_for(self, request_id) -> list[tuple[str, str]]:
        return [(log.step, log.status.value) for log in self.logs if log.request_id == request_id]


@pytest.fixture(autouse=True)
def in_memory_metrics(monkeypatch) -> InMemoryMetricsStore:
    store = InMemoryMetricsStore(max_records=100)
    monkeypatch.setattr(metrics_service, "metrics_store", store)
    return store


class FakeRedis:
    """The list commands RedisMetricsStore uses, kept in a dict."""

    def __init__(self):
        self.lists: dict[str, list[str]] = {}

    def lpush(self, key, *values):
        items = self.lists.setdefault(key, [])
        for value in values:
            items.insert(0, value)
        return len(items)

    def ltrim(self, key, start, stop):
        items = self.lists.get(key, [])
        self.lists[key] = items[start:] if stop == -1 else items[start : stop + 1]
        return True

    def lrange(self, key, start, stop):
        items = self.lists.get(key, [])
        return items[start:] if stop == -1 else items[start : stop + 1]

    def delete(self, key):
        return 1 if self.lists.pop(key, None) is not None else 0

    def pipeline(self):
        return FakePipeline(self)


class FakePipeline:
    def __init__(self, client: FakeRedis):
        self._client = client
        self._calls: list[tuple[str, tuple]] = []

    def __getattr__(self, name):
        def queue(*args):
            self._calls.append((name, args))
            return self

        return queue

    def execute(self):
        results = [getattr(self._client, name)(*args) for name, args in self._calls]
        self._calls = []
        return results


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def fake_db(monkeypatch) -> FakeDatabase:
    fake = FakeDatabase()
    for name in DB_FUNCTIONS:
        monkeypatch.setattr(db, name, getattr(fake, name))
    return fake


class ScriptedLLM(BaseLLMClient):
    """LLM client whose provider responses come from a script.

    ``structured`` maps tool names (``submit_research_plan``,
    ``submit_article_analysis``, ``submit_research_summary``) to a payload or to
    a callable taking the prompt. Validation still goes through
    ``BaseLLMClient.generate_object``.
    """

    provider = Provider.ANTHROPIC

    def __init__(
        self,
        structured: dict[str, Any],
        text: str = "",
        chunks: list[str] | None = None,
        model: str = "claude-3-5-sonnet-20241022",
    ):
        super().__init__(sdk_client=None, model=model, max_tokens=1024)
        self.structured = structured
        self.text = text
        self.chunks = chunks or []
        self.calls: list[str] = []
        self.prompts: list[str] = []

    async def _complete_structured(self, prompt, name, schema):
        self.calls.append(name)
        self.prompts.append(prompt)
        payload = self.structured[name]
        if callable(payload):
            payload = payload(prompt)
        return payload, Usage(input_tokens=100, output_tokens=50)

    async def _complete_text(self, prompt):
        self.calls.append("text")
        self.prompts.append(prompt)
        return self.text, Usage(input_tokens=40, output_tokens=10)

    async def stream_text(self, prompt) -> AsyncIterator[str]:
        for chunk in self.chunks:
            yield chunk


PLAN_PAYLOAD = {
    "primaryQuestions": ["What changed in 2025?", "Who leads adoption?"],
    "searchTerms": ["AI trends 2025", "generative AI", "AI agents"],
    "expectedFindings": ["Agentic workflows are mainstream"],
    "researchDepth": "intermediate",
}

SUMMARY_PAYLOAD = {
    "executiveSummary": "AI in 2025 is defined by agents and cheaper inference.",
    "keyFindings": ["Agents moved to production", "Inference costs fell"],
    "recommendations": ["Pilot agentic workflows"],
    "confidenceLevel": 7,
    "sources": [{"title": "Story 1", "relevance": "high", "credibility": "medium"}],
}


def title_scores(scores: dict[str, float]) -> Callable[[str], dict[str, Any]]:
    """Article analysis payload whose relevance depends on the prompt's title."""

    def analyze(prompt: str) -> dict[str, Any]:
        title = re.search(r"^Title: (.*)$", prompt, re.MULTILINE).group(1)
        return {
            "relevanceScore": scores[title],
            "credibilityScore": 6,
            "mainTopics": ["ai"],
            "summary": f"Analysis of {title}",
            "keyInsights": [f"Insight from {title}"],
        }

    return analyze


def make_articles(count: int, source: str = "Hacker News") -> list[Article]:
    return [
        Article(
            title=f"Story {i}",
            summary=f"Summary {i}",
            url=f"https://example.com/{i}",
            source=source,
        )
        for i in range(1, count + 1)
    ]


@pytest.fixture
def scripted_llm() -> Callable[..., ScriptedLLM]:
    def build(scores: dict[str, float] | None = None, **kwargs: Any) -> ScriptedLLM:
        scores = scores or {f"Story {i}": float(i) for i in range(1, 8)}
        structured = {
            "submit_research_plan": PLAN_PAYLOAD,
            "submit_article_analysis": title_scores(scores),
            "submit_research_summary": SUMMARY_PAYLOAD,
        }
        structured.update(kwargs.pop("structured", {}))
        kwargs.setdefault("text", "agents, inference, AI agents, agents , , multimodal")
        return ScriptedLLM(structured, **kwargs)

    return build


@pytest.fixture
def articles() -> Callable[..., list[Article]]:
    return make_articles
