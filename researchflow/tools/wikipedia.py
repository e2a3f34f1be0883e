from __future__ import annotations

from urllib.parse import quote

import httpx
from loguru import logger

from researchflow.config import settings
from researchflow.models.research import Article

WIKIPEDIA_SEARCH_URL = "https://en.wikipedia.org/w/rest.php/v1/search/page"
WIKIPEDIA_SUMMARY_URL = "https://en.wikipedia.org/api/rest_v1/page/summary"
WIKIPEDIA_PAGE_URL = "https://en.wikipedia.org/wiki/{title}"
WIKIPEDIA_SEARCH_LIMIT = 10


async def fetch(topic: str, *, max_articles: int | None = None) -> list[Article]:
    """Search Wikipedia pages and build articles from their summaries.

    Pages without a title or extract, or whose summary lookup fails, are
    skipped; lookups stop once ``max_articles`` articles are built.
    """
    limit = max_articles or settings.source_max_articles
    async with httpx.AsyncClient(timeout=settings.source_timeout_seconds) as client:
        response = await client.get(
            WIKIPEDIA_SEARCH_URL,
            params={"q": topic, "limit": max(limit, WIKIPEDIA_SEARCH_LIMIT)},
        )
        response.raise_for_status()
        pages = response.json().get("pages") or []
        if not pages:
            raise RuntimeError("No articles found from Wikipedia")

        articles: list[Article] = []
        for page in pages:
            page_title = page.get("title") or ""
            if not page_title:
                continue
            try:
                page_response = await client.get(
                    f"{WIKIPEDIA_SUMMARY_URL}/{quote(page_title, safe='')}"
                )
                page_response.raise_for_status()
                data = page_response.json()
            except (httpx.HTTPError, ValueError) as e:
                logger.warning(f"Error fetching Wikipedia page {page_title}: {e}")
                continue

            extract = data.get("extract")
            if not extract:
                continue
            url = (
                ((data.get("content_urls") or {}).get("desktop") or {}).get("page")
                or WIKIPEDIA_PAGE_URL.format(title=quote(page_title, safe=""))
            )
            articles.append(
                Article(
                    title=data.get("title") or page_title,
                    summary=f"{extract[:300]}...",
                    url=url,
                    source="Wikipedia",
                )
            )
            if len(articles) >= limit:
                break

    if not articles:
        raise RuntimeError("No valid articles extracted from Wikipedia")
    return articles
