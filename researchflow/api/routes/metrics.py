from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from fastapi import APIRouter, Query
from fastapi.responses import JSONResponse

from researchflow.errors import NotFoundError, ValidationError
from researchflow.services import metrics as metrics_service
from researchflow.services.metrics import AIMetric

router = APIRouter(prefix="/api/metrics", tags=["metrics"])


def _round(value: float, digits: int = 6) -> float:
    return round(value, digits)


def _metric_view(m: AIMetric, *, with_request: bool = True) -> dict[str, Any]:
    data: dict[str, Any] = {
        "operation": m.operation,
        "provider": m.provider,
        "model": m.model,
        "tokenUsage": {
            "promptTokens": m.token_usage.prompt_tokens,
            "completionTokens": m.token_usage.completion_tokens,
            "totalTokens": m.token_usage.total_tokens,
        },
        "cost": _round(m.cost),
        "duration": m.duration,
        "timestamp": m.timestamp.isoformat(),
        "metadata": m.metadata,
    }
    if with_request:
        data["requestId"] = m.request_id
    return data


def _window(hours: int) -> tuple[datetime, datetime]:
    end = datetime.now(timezone.utc)
    return end - timedelta(hours=hours), end


def _parse_date(value: str) -> datetime:
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        raise ValidationError(f"Invalid date: {value}") from None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


@router.get("/request/{request_id}")
def request_metrics(request_id: str):
    """Per-operation metrics for one research request."""
    metrics = metrics_service.metrics_store.for_request(request_id)
    if not metrics:
        raise NotFoundError("No metrics found for this request")

    return {
        "requestId": request_id,
        "summary": {
            "operationsCount": len(metrics),
            "totalCost": _round(sum(m.cost for m in metrics)),
            "totalTokens": sum(m.token_usage.total_tokens for m in metrics),
            "totalDuration": sum(m.duration for m in metrics),
            "provider": metrics[0].provider,
            "model": metrics[0].model,
        },
        "operations": [_metric_view(m, with_request=False) for m in metrics],
    }


@router.get("/aggregate")
def aggregate_metrics(
    hours: int = Query(default=24, ge=1),
    start_date: Optional[str] = Query(default=None, alias="startDate"),
    end_date: Optional[str] = Query(default=None, alias="endDate"),
):
    if start_date and end_date:
        start, end = _parse_date(start_date), _parse_date(end_date)
    else:
        start, end = _window(hours)

    aggregated = metrics_service.aggregate(metrics_service.metrics_store.in_range(start, end))
    summary = aggregated["summary"]
    return {
        "timeRange": {
            "start": start.isoformat(),
            "end": end.isoformat(),
            "duration": f"{hours} hours",
        },
        "summary": {
            "totalRequests": summary["total_requests"],
            "totalTokens": summary["total_tokens"],
            "totalCost": _round(summary["total_cost"]),
            "avgDuration": round(summary["avg_duration"]),
        },
        "breakdown": {
            "byProvider": [
                {
                    "provider": provider,
                    "requests": stats["count"],
                    "tokens": stats["tokens"],
                    "cost": _round(stats["cost"]),
                }
                for provider, stats in aggregated["provider_breakdown"].items()
            ],
            "byOperation": [
                {
                    "operation": operation,
                    "requests": stats["count"],
                    "avgDuration": round(stats["avg_duration"]),
                    "totalCost": _round(stats["total_cost"]),
                }
                for operation, stats in aggregated["operation_breakdown"].items()
            ],
        },
    }


@router.get("/recent")
def recent_metrics(limit: int = Query(default=50, ge=1)):
    recent = metrics_service.metrics_store.recent(limit)
    return {"count": len(recent), "metrics": [_metric_view(m) for m in recent]}


@router.get("/costs")
def cost_analysis(hours: int = Query(default=24, ge=1)):
    start, end = _window(hours)
    aggregated = metrics_service.aggregate(metrics_service.metrics_store.in_range(start, end))
    summary = aggregated["summary"]
    total_cost = summary["total_cost"]
    total_tokens = summary["total_tokens"]
    total_requests = summary["total_requests"]

    return {
        "timeRange": {"start": start.isoformat(), "end": end.isoformat(), "hours": hours},
        "costSummary": {
            "totalCost": _round(total_cost),
            "costPerRequest": _round(total_cost / total_requests) if total_requests else 0,
            "costPerToken": _round(total_cost / total_tokens, 8) if total_tokens else 0,
        },
        "providerComparison": [
            {
                "provider": provider,
                "totalCost": _round(stats["cost"]),
                "costPerRequest": _round(stats["cost"] / stats["count"]) if stats["count"] else 0,
                "costPerToken": _round(stats["cost"] / stats["tokens"], 8) if stats["tokens"] else 0,
                "tokenShare": round(stats["tokens"] / total_tokens * 100, 1) if total_tokens else 0,
            }
            for provider, stats in aggregated["provider_breakdown"].items()
        ],
    }


@router.get("/export")
def export_metrics():
    now = datetime.now(timezone.utc)
    records = metrics_service.metrics_store.export()
    return JSONResponse(
        content={
            "exportedAt": now.isoformat(),
            "totalRecords": len(records),
            "metrics": [m.to_dict() for m in records],
        },
        headers={
            "Content-Disposition": f'attachment; filename="ai-metrics-{int(now.timestamp() * 1000)}.json"'
        },
    )


@router.get("/health")
def metrics_health():
    recent = metrics_service.metrics_store.recent(10)
    summary = metrics_service.aggregate(metrics_service.metrics_store.export())["summary"]
    return {
        "status": "healthy",
        "metricsCount": len(recent),
        "lastActivity": recent[0].timestamp.isoformat() if recent else None,
        "totalCost": _round(summary["total_cost"]),
        "totalTokens": summary["total_tokens"],
    }
