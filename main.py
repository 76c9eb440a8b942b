"""Agentic Search

Simple CLI for running a search request through the iterative loop.
"""

import argparse
import asyncio
import json

from app.api.deps import build_orchestrator
from app.config import settings
from app.llm_client import close_client
from app.models.schemas import SearchRequest
from app.research_core.models.interfaces import TeamContext
from app.services.background import BackgroundTasks


async def run_search(args: argparse.Namespace) -> None:
    """Run one search and print the fused results."""
    request = SearchRequest(
        query=args.query,
        limit=args.limit,
        sources=args.source or ["web"],
        categories=args.category or [],
        tbs=args.tbs,
        origin="cli",
    )
    background = BackgroundTasks()
    orchestrator = build_orchestrator(settings, model=args.model, background=background)
    if args.no_scrape:
        orchestrator.options.enrichment_enabled = False

    print(f"Search query: {request.query}")
    print("-" * 50)

    try:
        outcome = await orchestrator.run(request, TeamContext(team_id=args.team))
    finally:
        await background.drain()
        await close_client()

    if args.json:
        print(json.dumps(outcome.to_response().model_dump(exclude_none=True), indent=2))
        return

    print(f"[*] Iterations: {outcome.iterations}  Credits: {outcome.credits_used}")
    if outcome.verdict is not None:
        print(f"[*] Answered: {outcome.verdict.answered} (confidence {outcome.verdict.confidence:.2f})")
    print(f"[*] Queries: {', '.join(outcome.expanded_queries)}")
    for kind, items in outcome.data.to_dict().items():
        print(f"\n[{kind}] {len(items)} results")
        for item in items:
            print(f"  {item['position']}. {item.get('title') or item['url']}")
            print(f"     {item['url']}")
            if item.get("metadata", {}).get("error"):
                print(f"     [!] {item['metadata']['error']}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Agentic Search CLI")
    parser.add_argument("--query", "-q", required=True, help="Search query")
    parser.add_argument("--limit", "-n", type=int, default=5, help="Results per category")
    parser.add_argument("--source", "-s", action="append", choices=["web", "images", "news"], help="Result category (repeatable)")
    parser.add_argument("--category", "-c", action="append", choices=["github", "research", "pdf"], help="Category label rule (repeatable)")
    parser.add_argument("--tbs", help="Time filter, e.g. qdr:w")
    parser.add_argument("--model", "-m", help="Model to use (default: from config)")
    parser.add_argument("--team", default="cli", help="Team id used for billing logs")
    parser.add_argument("--no-scrape", action="store_true", help="Return search results without fetching pages")
    parser.add_argument("--json", action="store_true", help="Print the raw response body")
    return parser


def main():
    args = build_parser().parse_args()

    asyncio.run(run_search(args))


if __name__ == "__main__":
    main()
