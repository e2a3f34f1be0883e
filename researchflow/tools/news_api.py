from __future__ import annotations

from typing import Any

import httpx

from researchflow.config import settings
from researchflow.models.research import Article

NEWS_API_URL = "https://newsapi.org/v2/everything"


def _summary(item: dict[str, Any]) -> str:
    description = (item.get("description") or "").strip()
    if description:
        return description
    content = (item.get("content") or "").strip()
    if content:
        return f"{content[:200]}..."
    return "No summary available"


async def fetch(topic: str, *, max_articles: int | None = None) -> list[Article]:
    """Search NewsAPI for articles on a topic and normalize them."""
    if not settings.news_api_key:
        raise RuntimeError("NewsAPI key not configured")

    limit = max_articles or settings.source_max_articles
    async with httpx.AsyncClient(timeout=settings.source_timeout_seconds) as client:
        response = await client.get(
            NEWS_API_URL,
            params={
                "q": topic,
                "sortBy": "relevancy",
                "pageSize": 20,
                "apiKey": settings.news_api_key,
            },
        )
        response.raise_for_status()
        payload = response.json()

    raw_articles = payload.get("articles") or []
    if not raw_articles:
        raise RuntimeError("No articles found from NewsAPI")

    usable = [a for a in raw_articles if a.get("title") and a.get("url")]
    return [
        Article(
            title=item["title"],
            summary=_summary(item),
            url=item["url"],
            source=(item.get("source") or {}).get("name") or "NewsAPI",
        )
        for item in usable[:limit]
    ]
