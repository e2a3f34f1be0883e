from __future__ import annotations

from typing import Awaitable, Callable, Sequence

from loguru import logger

from researchflow.errors import AllSourcesExhaustedError
from researchflow.models.research import Article
from researchflow.tools import hacker_news, news_api, wikipedia

SourceFetcher = Callable[[str], Awaitable[list[Article]]]


def default_sources() -> list[tuple[str, SourceFetcher]]:
    """Sources in priority order."""
    return [
        ("NewsAPI", news_api.fetch),
        ("HackerNews", hacker_news.fetch),
        ("Wikipedia", wikipedia.fetch),
    ]


async def fetch_articles(
    topic: str,
    *,
    sources: Sequence[tuple[str, SourceFetcher]] | None = None,
) -> list[Article]:
    """Return the articles of the first source that yields any.

    Sources are tried in order and never merged. A source that raises or comes
    back empty is recorded and the next one is tried; if none succeed,
    AllSourcesExhaustedError carries every recorded failure.
    """
    errors: list[str] = []

    for name, fetch in sources if sources is not None else default_sources():
        try:
            logger.info(f"Attempting to fetch from {name}...")
            articles = await fetch(topic)
        except Exception as e:
            logger.warning(f"Error fetching from {name}: {e}")
            errors.append(f"{name}: {str(e) or type(e).__name__}")
            continue

        if articles:
            logger.info(f"Successfully fetched {len(articles)} articles from {name}")
            return list(articles)
        errors.append(f"{name}: no articles returned")

    raise AllSourcesExhaustedError(errors)
