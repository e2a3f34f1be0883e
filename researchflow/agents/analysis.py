from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any, AsyncIterator

from researchflow import llm_client
from researchflow.llm_client import BaseLLMClient, Generation
from researchflow.models.research import (
    TOP_ARTICLE_LIMIT,
    Article,
    ArticleAnalysis,
    Provider,
    ResearchPlan,
    ResearchSummary,
)
from researchflow.services import metrics as metrics_service
from researchflow.services.metrics import AIMetric, MetricsSink, TokenUsage
from researchflow.services.prompt_store import render_prompt

MAX_KEYWORDS = 15


@dataclass(slots=True)
class AnalyzedArticle:
    article: Article
    analysis: ArticleAnalysis

    @property
    def relevance(self) -> float:
        return self.analysis.relevance_score

    def enriched(self) -> Article:
        return self.article.enrich(self.analysis)


@dataclass(slots=True)
class ProcessedArticles:
    processed_articles: list[Article]
    keywords: list[str]
    research_summary: ResearchSummary
    total_articles_analyzed: int
    provider: Provider


def select_top_articles(
    analyzed: list[AnalyzedArticle], limit: int = TOP_ARTICLE_LIMIT
) -> list[AnalyzedArticle]:
    """Highest relevance first; equal scores keep their fetch order."""
    return sorted(analyzed, key=lambda item: item.relevance, reverse=True)[:limit]


def parse_keywords(text: str, limit: int = MAX_KEYWORDS) -> list[str]:
    keywords: list[str] = []
    seen: set[str] = set()
    for raw in text.split(","):
        keyword = raw.strip()
        if not keyword or keyword.lower() in seen:
            continue
        seen.add(keyword.lower())
        keywords.append(keyword)
        if len(keywords) >= limit:
            break
    return keywords


class AnalysisEngine:
    """Plan, analysis, keyword and summary generation for one provider.

    Metrics are only recorded when a ``request_id`` is given, and a failing
    metrics sink never fails the calling operation.
    """

    def __init__(
        self,
        provider: Provider | str = Provider.ANTHROPIC,
        *,
        request_id: str | None = None,
        metrics: MetricsSink | None = None,
        llm: BaseLLMClient | None = None,
    ):
        self.provider = Provider(provider)
        self.request_id = request_id
        self.metrics = metrics if metrics is not None else metrics_service.metrics_store
        self.llm = llm or llm_client.client(self.provider)

    def _record(
        self,
        operation: str,
        generation: Generation[Any] | None,
        *,
        usage: TokenUsage | None = None,
        cost: float | None = None,
        duration_ms: int | None = None,
        **metadata: Any,
    ) -> None:
        if not self.request_id:
            return
        if usage is None:
            usage = TokenUsage(
                prompt_tokens=generation.usage.input_tokens,
                completion_tokens=generation.usage.output_tokens,
                total_tokens=generation.usage.total_tokens,
            )
        model = generation.model if generation is not None else llm_client.get_model(self.provider)
        if cost is None:
            cost = metrics_service.calculate_cost(usage, model)
        metrics_service.record_safely(
            self.metrics,
            AIMetric(
                request_id=self.request_id,
                provider=self.provider.value,
                model=model,
                operation=operation,
                token_usage=usage,
                cost=cost,
                duration=duration_ms if duration_ms is not None else generation.duration_ms,
                metadata=metadata,
            ),
        )

    async def generate_research_plan(self, topic: str) -> ResearchPlan:
        generation = await self.llm.generate_object(
            render_prompt("analysis.research_plan", topic=topic),
            ResearchPlan,
            operation="generate-research-plan",
        )
        self._record("generate-research-plan", generation, topic=topic)
        return generation.value

    async def _analyze(self, article: Article, topic: str) -> Generation[ArticleAnalysis]:
        generation = await self.llm.generate_object(
            render_prompt(
                "analysis.article",
                topic=topic,
                title=article.title,
                summary=article.summary,
                source=article.source,
                url=article.url,
            ),
            ArticleAnalysis,
            operation="analyze-article",
        )
        self._record("analyze-article", generation, topic=topic, article_title=article.title)
        return generation

    async def analyze_article(self, article: Article, topic: str) -> ArticleAnalysis:
        return (await self._analyze(article, topic)).value

    async def analyze_articles(self, articles: list[Article], topic: str) -> list[AnalyzedArticle]:
        """Analyze all articles concurrently and rank them by relevance.

        Any single failure fails the whole batch.
        """
        t0 = time.monotonic()
        generations = await asyncio.gather(*(self._analyze(a, topic) for a in articles))

        total_tokens = sum(g.usage.total_tokens for g in generations)
        total_cost = sum(
            metrics_service.calculate_cost(
                TokenUsage(g.usage.input_tokens, g.usage.output_tokens, g.usage.total_tokens),
                g.model,
            )
            for g in generations
        )
        self._record(
            "analyze-articles-batch",
            None,
            usage=TokenUsage(total_tokens=total_tokens),
            cost=total_cost,
            duration_ms=int((time.monotonic() - t0) * 1000),
            topic=topic,
            articles_count=len(articles),
        )

        analyzed = [
            AnalyzedArticle(article=article, analysis=g.value)
            for article, g in zip(articles, generations)
        ]
        return select_top_articles(analyzed, limit=len(analyzed))

    async def generate_keywords(self, topic: str, articles: list[Article]) -> list[str]:
        articles_text = "\n\n".join(f"{a.title}: {a.summary}" for a in articles)
        generation = await self.llm.generate_text(
            render_prompt("analysis.keywords", topic=topic, articles=articles_text),
            operation="generate-keywords",
        )
        self._record("generate-keywords", generation, topic=topic, articles_count=len(articles))
        return parse_keywords(generation.value)

    async def generate_research_summary(
        self, topic: str, analyzed: list[AnalyzedArticle]
    ) -> ResearchSummary:
        top = select_top_articles(analyzed)
        source_material = "\n\n---\n\n".join(
            render_prompt(
                "analysis.summary_source",
                title=item.article.title,
                source=item.article.source,
                relevance=f"{item.relevance:g}",
                insights=", ".join(item.analysis.key_insights),
                summary=item.analysis.summary,
            )
            for item in top
        )
        generation = await self.llm.generate_object(
            render_prompt("analysis.summary", topic=topic, sources=source_material),
            ResearchSummary,
            operation="generate-research-summary",
        )
        self._record(
            "generate-research-summary", generation, topic=topic, sources_count=len(top)
        )
        return generation.value

    async def process_articles(self, articles: list[Article], topic: str) -> ProcessedArticles:
        """Analyze, rank, extract keywords and summarize in one pass."""
        analyzed = await self.analyze_articles(articles, topic)
        top = select_top_articles(analyzed)
        keywords = await self.generate_keywords(topic, [item.article for item in top])
        summary = await self.generate_research_summary(topic, analyzed)

        return ProcessedArticles(
            processed_articles=[item.enriched() for item in top],
            keywords=keywords,
            research_summary=summary,
            total_articles_analyzed=len(articles),
            provider=self.provider,
        )

    async def stream_research_plan(self, topic: str) -> AsyncIterator[str]:
        async for chunk in self.llm.stream_text(render_prompt("analysis.stream_plan", topic=topic)):
            yield chunk
