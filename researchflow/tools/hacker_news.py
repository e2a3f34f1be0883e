from __future__ import annotations

import httpx

from researchflow.config import settings
from researchflow.models.research import Article

HACKER_NEWS_SEARCH_URL = "https://hn.algolia.com/api/v1/search"
HACKER_NEWS_ITEM_URL = "https://news.ycombinator.com/item?id={id}"


async def fetch(topic: str, *, max_articles: int | None = None) -> list[Article]:
    """Search Hacker News stories via the Algolia API."""
    limit = max_articles or settings.source_max_articles
    async with httpx.AsyncClient(timeout=settings.source_timeout_seconds) as client:
        response = await client.get(
            HACKER_NEWS_SEARCH_URL,
            params={"query": topic, "tags": "story", "hitsPerPage": 10},
        )
        response.raise_for_status()
        payload = response.json()

    hits = payload.get("hits") or []
    if not hits:
        raise RuntimeError("No articles found from Hacker News")

    articles: list[Article] = []
    for hit in hits:
        title = (hit.get("title") or "").strip()
        story_id = hit.get("story_id") or hit.get("objectID")
        # Text posts have no url; link to the discussion instead.
        url = hit.get("url") or (HACKER_NEWS_ITEM_URL.format(id=story_id) if story_id else "")
        if not title or not url:
            continue
        story_text = hit.get("story_text") or ""
        articles.append(
            Article(
                title=title,
                summary=f"{story_text[:200]}..." if story_text else "Discussion on Hacker News",
                url=url,
                source="Hacker News",
            )
        )
        if len(articles) >= limit:
            break
    return articles
