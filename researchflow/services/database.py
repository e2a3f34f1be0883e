"""PostgreSQL persistence for research requests, results and workflow logs."""

from __future__ import annotations

import json
from typing import Any
from uuid import UUID

import asyncpg

from researchflow.config import settings
from researchflow.errors import InvalidStatusTransitionError, NotFoundError
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
from researchflow.services.logger import log_db_operation

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS research_requests (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    topic VARCHAR(255) NOT NULL,
    user_id UUID,
    status VARCHAR(20) NOT NULL DEFAULT 'pending',
    provider VARCHAR(20) NOT NULL DEFAULT 'anthropic',
    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
);
CREATE INDEX IF NOT EXISTS research_requests_user_created_idx
    ON research_requests (user_id, created_at DESC);

CREATE TABLE IF NOT EXISTS research_results (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    request_id UUID NOT NULL UNIQUE REFERENCES research_requests(id) ON DELETE CASCADE,
    articles JSONB NOT NULL,
    keywords TEXT[] NOT NULL,
    enhanced_data JSONB,
    created_at TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE TABLE IF NOT EXISTS workflow_logs (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    seq BIGSERIAL NOT NULL,
    request_id UUID NOT NULL REFERENCES research_requests(id) ON DELETE CASCADE,
    step VARCHAR(100) NOT NULL,
    status VARCHAR(20) NOT NULL,
    message TEXT,
    timestamp TIMESTAMPTZ NOT NULL DEFAULT now()
);
CREATE INDEX IF NOT EXISTS workflow_logs_request_seq_idx ON workflow_logs (request_id, seq);
"""

_REQUEST_COLUMNS = "id, topic, user_id, status, provider, created_at, updated_at"
_RESULT_COLUMNS = "id, request_id, articles, keywords, enhanced_data, created_at"
_LOG_COLUMNS = "id, request_id, step, status, message, timestamp"

# Connection pool
_pool: asyncpg.Pool | None = None


def _db_available() -> bool:
    return bool(settings.database_url)


async def _get_pool() -> asyncpg.Pool:
    """Get or create the database connection pool."""
    global _pool
    if not _db_available():
        raise RuntimeError("Database not configured. Set DATABASE_URL in .env")
    if _pool is None:
        _pool = await asyncpg.create_pool(
            settings.database_url,
            min_size=settings.db_pool_min_size,
            max_size=settings.db_pool_max_size,
        )
    return _pool


async def close_pool() -> None:
    global _pool
    if _pool is not None:
        await _pool.close()
        _pool = None


async def init_schema() -> None:
    """Create tables and indexes if they do not exist yet."""
    pool = await _get_pool()
    async with pool.acquire() as conn:
        await conn.execute(SCHEMA_SQL)
    log_db_operation("init_schema", "*", "success")


def _coerce_json(value: Any) -> Any:
    """jsonb columns come back as text without a registered codec."""
    if isinstance(value, str):
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            return None
    return value


def _to_request(row: Any) -> ResearchRequest:
    return ResearchRequest(
        id=row["id"],
        topic=row["topic"],
        user_id=row["user_id"],
        status=RequestStatus(row["status"]),
        provider=Provider(row["provider"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _to_result(row: Any) -> ResearchResult:
    enhanced = _coerce_json(row["enhanced_data"])
    return ResearchResult(
        id=row["id"],
        request_id=row["request_id"],
        articles=[Article.model_validate(a) for a in _coerce_json(row["articles"]) or []],
        keywords=list(row["keywords"] or []),
        enhanced_data=EnhancedResearchData.model_validate(enhanced) if enhanced else None,
        created_at=row["created_at"],
    )


def _to_log(row: Any) -> WorkflowLogEntry:
    return WorkflowLogEntry(
        id=row["id"],
        request_id=row["request_id"],
        step=row["step"],
        status=LogStatus(row["status"]),
        message=row["message"] or "",
        timestamp=row["timestamp"],
    )


# --- Research requests ---


async def create_research_request(
    topic: str, user_id: UUID | None, provider: Provider
) -> ResearchRequest:
    pool = await _get_pool()
    async with pool.acquire() as conn:
        row = await conn.fetchrow(
            f"""
            INSERT INTO research_requests (topic, user_id, provider)
            VALUES ($1, $2, $3)
            RETURNING {_REQUEST_COLUMNS}
            """,
            topic,
            user_id,
            provider.value,
        )
    log_db_operation("insert", "research_requests", "success", details=str(row["id"]))
    return _to_request(row)


async def get_research_request(request_id: UUID) -> ResearchRequest | None:
    pool = await _get_pool()
    async with pool.acquire() as conn:
        row = await conn.fetchrow(
            f"SELECT {_REQUEST_COLUMNS} FROM research_requests WHERE id = $1",
            request_id,
        )
    return _to_request(row) if row else None


async def list_research_requests(user_id: UUID | None = None) -> list[ResearchRequest]:
    """Newest first; all requests when ``user_id`` is None."""
    pool = await _get_pool()
    async with pool.acquire() as conn:
        if user_id is None:
            rows = await conn.fetch(
                f"SELECT {_REQUEST_COLUMNS} FROM research_requests ORDER BY created_at DESC"
            )
        else:
            rows = await conn.fetch(
                f"""
                SELECT {_REQUEST_COLUMNS} FROM research_requests
                WHERE user_id = $1
                ORDER BY created_at DESC
                """,
                user_id,
            )
    return [_to_request(r) for r in rows]


async def update_request_status(request_id: UUID, status: RequestStatus) -> ResearchRequest:
    """Move a request forward; terminal statuses never change again."""
    allowed_from = [s.value for s in RequestStatus if can_transition(s, status)]
    pool = await _get_pool()
    async with pool.acquire() as conn:
        row = await conn.fetchrow(
            f"""
            UPDATE research_requests
            SET status = $1, updated_at = now()
            WHERE id = $2 AND status = ANY($3::text[])
            RETURNING {_REQUEST_COLUMNS}
            """,
            status.value,
            request_id,
            allowed_from,
        )
        if row is None:
            current = await conn.fetchval(
                "SELECT status FROM research_requests WHERE id = $1", request_id
            )
    if row is None:
        log_db_operation(
            "update_status", "research_requests", "error",
            details=str(request_id), error=f"rejected transition to {status.value}",
        )
        if current is None:
            raise NotFoundError(f"Research request {request_id} not found")
        raise InvalidStatusTransitionError(current, status.value)
    log_db_operation("update_status", "research_requests", "success", details=f"{request_id} -> {status.value}")
    return _to_request(row)


# --- Research results ---


async def create_research_result(
    request_id: UUID,
    articles: list[Article],
    keywords: list[str],
    enhanced_data: EnhancedResearchData | None = None,
) -> ResearchResult:
    """Insert the request's result; an existing result is returned unchanged."""
    pool = await _get_pool()
    async with pool.acquire() as conn:
        row = await conn.fetchrow(
            f"""
            INSERT INTO research_results (request_id, articles, keywords, enhanced_data)
            VALUES ($1, $2::jsonb, $3, $4::jsonb)
            ON CONFLICT (request_id) DO NOTHING
            RETURNING {_RESULT_COLUMNS}
            """,
            request_id,
            json.dumps([a.model_dump(mode="json", by_alias=True) for a in articles]),
            keywords,
            enhanced_data.model_dump_json(by_alias=True) if enhanced_data else None,
        )
        if row is None:
            row = await conn.fetchrow(
                f"SELECT {_RESULT_COLUMNS} FROM research_results WHERE request_id = $1",
                request_id,
            )
    log_db_operation("insert", "research_results", "success", details=str(request_id))
    return _to_result(row)


async def get_research_result(request_id: UUID) -> ResearchResult | None:
    pool = await _get_pool()
    async with pool.acquire() as conn:
        row = await conn.fetchrow(
            f"SELECT {_RESULT_COLUMNS} FROM research_results WHERE request_id = $1",
            request_id,
        )
    return _to_result(row) if row else None


# --- Workflow logs ---


async def create_workflow_log(
    request_id: UUID, step: str, status: LogStatus, message: str = ""
) -> WorkflowLogEntry:
    pool = await _get_pool()
    async with pool.acquire() as conn:
        row = await conn.fetchrow(
            f"""
            INSERT INTO workflow_logs (request_id, step, status, message)
            VALUES ($1, $2, $3, $4)
            RETURNING {_LOG_COLUMNS}
            """,
            request_id,
            step,
            status.value,
            message,
        )
    return _to_log(row)


async def get_workflow_logs(request_id: UUID) -> list[WorkflowLogEntry]:
    """All log entries for a request in append order."""
    pool = await _get_pool()
    async with pool.acquire() as conn:
        rows = await conn.fetch(
            f"SELECT {_LOG_COLUMNS} FROM workflow_logs WHERE request_id = $1 ORDER BY seq",
            request_id,
        )
    return [_to_log(r) for r in rows]
