from __future__ import annotations

from datetime import datetime, timezone
from uuid import uuid4

import pytest
from pydantic import ValidationError

from researchflow.models.research import (
    Article,
    ArticleAnalysis,
    RequestStatus,
    ResearchRequest,
    ResearchSummary,
    StepName,
    SummarySource,
    can_transition,
    clamp_score,
    normalize_list,
)


@pytest.mark.parametrize(
    "current,target,allowed",
    [
        (RequestStatus.PENDING, RequestStatus.PROCESSING, True),
        (RequestStatus.PENDING, RequestStatus.FAILED, True),
        (RequestStatus.PENDING, RequestStatus.COMPLETED, False),
        (RequestStatus.PROCESSING, RequestStatus.PROCESSING, True),
        (RequestStatus.PROCESSING, RequestStatus.COMPLETED, True),
        (RequestStatus.PROCESSING, RequestStatus.PENDING, False),
        (RequestStatus.COMPLETED, RequestStatus.FAILED, False),
        (RequestStatus.FAILED, RequestStatus.PROCESSING, False),
    ],
)
def test_status_transitions_only_move_forward(current, target, allowed):
    assert can_transition(current, target) is allowed


def test_terminal_statuses():
    assert RequestStatus.COMPLETED.is_terminal
    assert RequestStatus.FAILED.is_terminal
    assert not RequestStatus.PROCESSING.is_terminal


def test_step_parse_returns_none_for_unknown_names():
    assert StepName.parse("Data Gathering") is StepName.DATA_GATHERING
    assert StepName.parse("data gathering") is None


def test_normalize_list():
    assert normalize_list(["  a ", "", None, "b"], 5) == ["a", "b"]
    assert normalize_list("single", 5) == ["single"]
    assert normalize_list(None, 5) == []
    assert normalize_list(list("abcdef"), 3) == ["a", "b", "c"]


def test_article_analysis_rejects_non_numeric_scores():
    with pytest.raises(ValidationError):
        ArticleAnalysis(relevance_score="very", credibility_score=5, summary="s")


def test_summary_is_bounded():
    summary = ResearchSummary.model_validate(
        {
            "executiveSummary": "  " + "e" * 600,
            "keyFindings": [f"f{i}" for i in range(12)],
            "recommendations": [f"r{i}" for i in range(7)],
            "confidenceLevel": 11.5,
            "sources": [{"title": f"s{i}", "relevance": 9, "credibility": "high"} for i in range(7)],
        }
    )

    assert len(summary.executive_summary) == 500
    assert len(summary.key_findings) == 8
    assert len(summary.recommendations) == 5
    assert summary.confidence_level == 10
    assert len(summary.sources) == 5
    assert summary.sources[0] == SummarySource(title="s0", relevance="9", credibility="high")


def test_enrich_copies_analysis_onto_article():
    article = Article(title="t", summary="raw", url="https://e.com", source="HN")
    assert not article.is_analyzed

    enriched = article.enrich(
        ArticleAnalysis(relevance_score=6, credibility_score=4, summary="better", key_insights=["i"])
    )

    assert enriched.is_analyzed
    assert enriched.summary == "better"
    assert enriched.key_insights == ["i"]
    assert article.summary == "raw"


def test_records_serialize_camel_case():
    now = datetime.now(timezone.utc)
    request = ResearchRequest(id=uuid4(), topic="ai", created_at=now, updated_at=now)

    data = request.model_dump(by_alias=True, mode="json")

    assert set(data) == {"id", "topic", "userId", "status", "provider", "createdAt", "updatedAt"}
    assert data["status"] == "pending"
    assert data["provider"] == "anthropic"


@pytest.mark.parametrize("value", [None, "high", {"score": 5}, float("nan")])
def test_clamp_score_rejects_non_numbers_with_value_error(value):
    with pytest.raises(ValueError):
        clamp_score(value)


def test_clamp_score_accepts_numeric_strings():
    assert clamp_score("7.5") == 7.5


@pytest.mark.parametrize("value", [3, {"a": "b"}, object()])
def test_normalize_list_rejects_non_lists_with_value_error(value):
    with pytest.raises(ValueError):
        normalize_list(value, 5)
