"""Command-line interface for NicheScore.

Usage:
    python cli.py top [--period day|week|month] [--limit N] [--category TEXT]
    python cli.py stats
    python cli.py trends [--days N]
    python cli.py collect [--platform reddit|hackernews|lemmy|stackexchange|appstore]
    python cli.py classify
    python cli.py aggregate [--date YYYY-MM-DD]
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from datetime import date, timedelta

from config.settings import PipelineConfig, settings
from data.database import engine, get_session, init_db
from data.repositories import RawPostRepository, TrendRepository, utcnow
from pipeline.aggregator import TrendAggregator
from pipeline.runner import PipelineRunner, build_oracle, default_collectors

log = logging.getLogger(__name__)

PERIOD_DAYS = {"day": 1, "week": 7, "month": 30}


def setup_logging() -> None:
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL),
        format="%(asctime)s  %(levelname)-8s  %(name)s  %(message)s",
    )


def _build_runner() -> PipelineRunner:
    config = PipelineConfig.from_settings(settings)
    return PipelineRunner(
        config,
        oracle=build_oracle(config, settings),
        collectors=default_collectors(config, settings),
    )


async def cmd_top(args) -> None:
    async with get_session() as session:
        rows = await TrendRepository(session).top_problems(
            days=PERIOD_DAYS[args.period], limit=args.limit, category=args.category
        )

    if not rows:
        print("\n  No problems found for this period.\n")
        return

    print(f"\n  Top {args.limit} problems (last {args.period}):\n")
    print("  Rank  NicheScore  Category                      Posts  Avg Sentiment  Platforms")
    print("  ────  ──────────  ────────────────────────────  ─────  ─────────────  ─────────")
    for row in rows:
        print(
            f"  {row['rank']:>4}  {row['niche_score']:>10}  {row['category'][:28]:<28}  "
            f"{row['post_count']:>5}  {row['avg_sentiment']:>13}  {', '.join(row['platforms'])}"
        )
    print()


async def cmd_stats(args) -> None:
    async with get_session() as session:
        stats = await RawPostRepository(session).get_stats()

    print("\n  NicheScore Statistics:\n")
    print("  Platform           Posts")
    print("  ─────────────────  ─────")
    for row in stats["platforms"]:
        print(f"  {row['platform']:<18} {row['count']}")
    print()
    print(f"  Classified:   {stats['classified']} ({stats['quarantined']} quarantined)")
    print(f"  Unclassified: {stats['pending']}")
    print()


async def cmd_trends(args) -> None:
    since = utcnow().date() - timedelta(days=args.days - 1)
    async with get_session() as session:
        snapshots = await TrendRepository(session).list_snapshots(since=since)

    if not snapshots:
        print(f"\n  No trend snapshots in the last {args.days} days.\n")
        return
    print()
    for t in snapshots:
        print(
            f"  {t.date.isoformat()}  {t.category[:28]:<28}  {t.post_count:>5}  "
            f"{t.avg_sentiment:>5}  {', '.join(t.platforms)}"
        )
    print()


async def cmd_collect(args) -> None:
    runner = _build_runner()
    sources = [args.platform] if args.platform else None
    result = await runner.run(sources, trigger="cli")
    print(f"\n  Collected:  {result.collected} new posts")
    print(f"  Classified: {result.classified} posts ({result.quarantined} quarantined)")
    print(f"  Trends:     {result.trends} categories updated\n")


async def cmd_classify(args) -> None:
    runner = _build_runner()
    result = await runner.run([], trigger="cli", aggregate=False)
    print(f"\n  Classified: {result.classified} posts ({result.quarantined} quarantined)\n")


async def cmd_aggregate(args) -> None:
    day = date.fromisoformat(args.date) if args.date else None
    saved = await TrendAggregator(get_session).aggregate(day)
    print(f"\n  Trends: {saved} categories aggregated\n")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="nichescore", description="NicheScore: social media problem discovery"
    )
    sub = parser.add_subparsers(dest="command", required=True)

    top = sub.add_parser("top", help="Show top-scoring problems")
    top.add_argument("--period", choices=sorted(PERIOD_DAYS), default="week")
    top.add_argument("--limit", type=int, default=10)
    top.add_argument("--category", help="Filter by category (substring match)")
    top.set_defaults(func=cmd_top)

    stats = sub.add_parser("stats", help="Show collection statistics")
    stats.set_defaults(func=cmd_stats)

    trends = sub.add_parser("trends", help="Show daily trend snapshots")
    trends.add_argument("--days", type=int, default=30)
    trends.set_defaults(func=cmd_trends)

    collect = sub.add_parser("collect", help="Run the full pipeline now")
    collect.add_argument(
        "--platform", choices=["reddit", "hackernews", "lemmy", "stackexchange", "appstore"]
    )
    collect.set_defaults(func=cmd_collect)

    classify = sub.add_parser("classify", help="Classify pending posts")
    classify.set_defaults(func=cmd_classify)

    aggregate = sub.add_parser("aggregate", help="Roll up trend snapshots for a day")
    aggregate.add_argument("--date", help="UTC day, YYYY-MM-DD (default: today)")
    aggregate.set_defaults(func=cmd_aggregate)

    return parser


async def _run(args) -> None:
    try:
        await init_db()
        await args.func(args)
    finally:
        await engine.dispose()


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging()
    try:
        asyncio.run(_run(args))
    except Exception as e:
        log.debug("Command failed", exc_info=True)
        print(f"\n  Error: {e}\n", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
