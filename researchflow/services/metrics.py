"""AI usage metrics: token counts, cost and duration per provider call."""
from __future__ import annotations

import json
from collections import deque
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional, Protocol

import redis
from loguru import logger

from researchflow.config import settings
from researchflow.services import logger as log_service


@dataclass
class TokenUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass
class AIMetric:
    request_id: str
    provider: str
    model: str
    operation: str
    token_usage: TokenUsage
    cost: float
    duration: int  # ms
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AIMetric":
        return cls(
            request_id=data["request_id"],
            provider=data["provider"],
            model=data["model"],
            operation=data["operation"],
            token_usage=TokenUsage(**data.get("token_usage") or {}),
            cost=float(data.get("cost") or 0.0),
            duration=int(data.get("duration") or 0),
            timestamp=datetime.fromisoformat(data["timestamp"]),
            metadata=data.get("metadata") or {},
        )


# Tokens per dollar
PRICING: dict[str, dict[str, float]] = {
    "gpt-4o": {"input": 400_000, "output": 100_000},
    "gpt-4o-mini": {"input": 6_666_667, "output": 1_666_667},
    "claude-3-5-sonnet-20241022": {"input": 333_333, "output": 66_667},
    "claude-3-haiku-20240307": {"input": 4_000_000, "output": 800_000},
}


def calculate_cost(usage: TokenUsage, model: str) -> float:
    pricing = PRICING.get(model)
    if not pricing:
        logger.warning(f"No pricing info for model: {model}")
        return 0.0
    return usage.prompt_tokens / pricing["input"] + usage.completion_tokens / pricing["output"]


class MetricsSink(Protocol):
    def record(self, metric: AIMetric) -> None: ...

    def for_request(self, request_id: str) -> list[AIMetric]: ...

    def in_range(self, start: datetime, end: datetime) -> list[AIMetric]: ...

    def recent(self, limit: int = 50) -> list[AIMetric]: ...

    def export(self) -> list[AIMetric]: ...

    def clear(self) -> None: ...


class InMemoryMetricsStore:
    """Bounded in-process store; the oldest records are evicted first."""

    def __init__(self, max_records: int | None = None):
        self._metrics: deque[AIMetric] = deque(maxlen=max_records or settings.metrics_max_records)

    def record(self, metric: AIMetric) -> None:
        self._metrics.append(metric)
        logger.info(
            f"[AI METRICS] {metric.operation} | {metric.provider}:{metric.model} | "
            f"Tokens: {metric.token_usage.total_tokens} | Cost: ${metric.cost:.4f} | "
            f"Duration: {metric.duration}ms"
        )

    def for_request(self, request_id: str) -> list[AIMetric]:
        return [m for m in self._metrics if m.request_id == request_id]

    def in_range(self, start: datetime, end: datetime) -> list[AIMetric]:
        return [m for m in self._metrics if start <= m.timestamp <= end]

    def recent(self, limit: int = 50) -> list[AIMetric]:
        if limit <= 0:
            return []
        return list(self._metrics)[-limit:][::-1]

    def export(self) -> list[AIMetric]:
        return list(self._metrics)

    def clear(self) -> None:
        self._metrics.clear()


METRICS_KEY = "researchflow:ai_metrics"


def get_redis_client() -> redis.Redis:
    return redis.Redis.from_url(settings.metrics_redis_url or settings.redis_url, decode_responses=True)


class RedisMetricsStore:
    """Capped Redis list shared by the API and the workers, newest first."""

    def __init__(
        self,
        client: redis.Redis | None = None,
        max_records: int | None = None,
        key: str = METRICS_KEY,
    ):
        self._client = client
        self.max_records = max_records or settings.metrics_max_records
        self.key = key

    @property
    def client(self) -> redis.Redis:
        if self._client is None:
            self._client = get_redis_client()
        return self._client

    def _load(self, stop: int = -1) -> list[AIMetric]:
        metrics: list[AIMetric] = []
        for raw in self.client.lrange(self.key, 0, stop):
            try:
                metrics.append(AIMetric.from_dict(json.loads(raw)))
            except (ValueError, KeyError, TypeError) as e:
                logger.warning(f"Skipping unreadable metric record: {e}")
        return metrics

    def record(self, metric: AIMetric) -> None:
        pipe = self.client.pipeline()
        pipe.lpush(self.key, json.dumps(metric.to_dict(), default=str))
        pipe.ltrim(self.key, 0, self.max_records - 1)
        pipe.execute()
        logger.info(
            f"[AI METRICS] {metric.operation} | {metric.provider}:{metric.model} | "
            f"Tokens: {metric.token_usage.total_tokens} | Cost: ${metric.cost:.4f} | "
            f"Duration: {metric.duration}ms"
        )

    def for_request(self, request_id: str) -> list[AIMetric]:
        return [m for m in self.export() if m.request_id == request_id]

    def in_range(self, start: datetime, end: datetime) -> list[AIMetric]:
        return [m for m in self.export() if start <= m.timestamp <= end]

    def recent(self, limit: int = 50) -> list[AIMetric]:
        if limit <= 0:
            return []
        return self._load(limit - 1)

    def export(self) -> list[AIMetric]:
        """Oldest first, like the in-memory store."""
        return self._load()[::-1]

    def clear(self) -> None:
        self.client.delete(self.key)


def build_metrics_store() -> MetricsSink:
    """The configured sink; ``memory`` is only visible inside one process."""
    if settings.metrics_backend == "memory":
        return InMemoryMetricsStore()
    return RedisMetricsStore()


def record_safely(sink: Optional[MetricsSink], metric: AIMetric) -> None:
    """Record a metric; failures are logged and never propagated."""
    if sink is None:
        return
    try:
        sink.record(metric)
    except Exception as e:
        log_service.log_event(
            event_type="metrics_error",
            message=f"Failed to record metrics for {metric.operation}",
            error=str(e),
            request_id=metric.request_id,
        )


def aggregate(metrics: list[AIMetric]) -> dict[str, Any]:
    """Totals plus per-provider and per-operation breakdowns."""
    total_tokens = sum(m.token_usage.total_tokens for m in metrics)
    total_cost = sum(m.cost for m in metrics)
    avg_duration = sum(m.duration for m in metrics) / len(metrics) if metrics else 0.0

    by_provider: dict[str, dict[str, Any]] = {}
    for m in metrics:
        stats = by_provider.setdefault(m.provider, {"count": 0, "tokens": 0, "cost": 0.0})
        stats["count"] += 1
        stats["tokens"] += m.token_usage.total_tokens
        stats["cost"] += m.cost

    by_operation: dict[str, dict[str, Any]] = {}
    durations: dict[str, list[int]] = {}
    for m in metrics:
        stats = by_operation.setdefault(
            m.operation, {"count": 0, "avg_duration": 0.0, "total_cost": 0.0}
        )
        stats["count"] += 1
        stats["total_cost"] += m.cost
        durations.setdefault(m.operation, []).append(m.duration)
    for op, values in durations.items():
        by_operation[op]["avg_duration"] = sum(values) / len(values)

    return {
        "summary": {
            "total_requests": len(metrics),
            "total_tokens": total_tokens,
            "total_cost": total_cost,
            "avg_duration": avg_duration,
        },
        "provider_breakdown": by_provider,
        "operation_breakdown": by_operation,
    }


metrics_store: MetricsSink = build_metrics_store()
