"""ResearchFlow - AI research pipeline

Simple CLI for running a research topic in-process (nothing is persisted),
or for creating the database tables.
"""

import argparse
import asyncio

from researchflow.agents.analysis import AnalysisEngine
from researchflow.services import database as db
from researchflow.tools import article_sources


async def run_research(topic: str, provider: str):
    """Run planning, gathering and analysis for a topic and print the findings."""
    print(f"Research topic: {topic} ({provider})")
    print("-" * 50)

    engine = AnalysisEngine(provider)

    plan = await engine.generate_research_plan(topic)
    print(f"\n[*] Research Plan ({plan.research_depth}):")
    for i, question in enumerate(plan.primary_questions, 1):
        print(f"  {i}. {question}")
    print(f"  Search terms: {', '.join(plan.search_terms)}")

    articles = await article_sources.fetch_articles(topic)
    print(f"\n[~] Fetched {len(articles)} articles from {articles[0].source}")

    processed = await engine.process_articles(articles, topic)
    print(f"\n[+] Top {len(processed.processed_articles)} articles:")
    for article in processed.processed_articles:
        print(
            f"  - [{article.relevance_score:g}/10 relevance, "
            f"{article.credibility_score:g}/10 credibility] {article.title}"
        )
        print(f"    {article.url}")

    print(f"\n[+] Keywords: {', '.join(processed.keywords)}")

    summary = processed.research_summary
    print(f"\n{'='*50}")
    print(f"SUMMARY (confidence {summary.confidence_level:g}/10):")
    print(f"{'='*50}")
    print(summary.executive_summary)
    for finding in summary.key_findings:
        print(f"  * {finding}")
    if summary.recommendations:
        print("\nRecommendations:")
        for rec in summary.recommendations:
            print(f"  - {rec}")


async def init_db():
    try:
        await db.init_schema()
        print("Database tables are ready.")
    finally:
        await db.close_pool()


def main():
    parser = argparse.ArgumentParser(description="ResearchFlow AI research pipeline")
    parser.add_argument("--topic", "-t", help="Research topic")
    parser.add_argument(
        "--provider",
        "-p",
        choices=["anthropic", "openai"],
        default="anthropic",
        help="AI provider (default: anthropic)",
    )
    parser.add_argument("--init-db", action="store_true", help="Create database tables and exit")

    args = parser.parse_args()

    if args.init_db:
        asyncio.run(init_db())
        return
    if not args.topic:
        parser.error("--topic is required unless --init-db is given")

    asyncio.run(run_research(args.topic, args.provider))


if __name__ == "__main__":
    main()
