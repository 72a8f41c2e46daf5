# main.py
"""Inspect persisted behaviour history and the prefetch rules derived from it."""

import argparse
import sys
from datetime import datetime, timezone

import structlog
from rich.console import Console
from rich.table import Table

import config
from core.behavior_tracker import BehaviorTracker
from core.defaults import DEFAULT_ROUTE_QUERIES
from core.kv_store import JsonFileKVStore
from core.logging_config import setup_logging
from core.prefetch_engine import PrefetchRuleEngine
from core.task_queue import BackgroundTaskQueue

logger = structlog.get_logger(__name__)


async def _no_prefetch(query) -> None:
    return None


def _load_tracker(store_dir: str, storage_key: str) -> BehaviorTracker:
    return BehaviorTracker(
        JsonFileKVStore(store_dir),
        storage_key=storage_key,
        max_stored_patterns=config.MAX_STORED_PATTERNS,
        min_dwell_ms=config.MIN_DWELL_MS,
    )


def show_history(args: argparse.Namespace, console: Console) -> int:
    tracker = _load_tracker(args.store_dir, args.key)
    patterns = tracker.patterns
    if not patterns:
        console.print(f"No behaviour history stored under '{args.key}' in {args.store_dir}")
        return 1

    table = Table(title=f"Behaviour history ({len(patterns)} visits)")
    table.add_column("Entered (UTC)")
    table.add_column("Route")
    table.add_column("Dwell (s)", justify="right")
    table.add_column("Interactions")
    for pattern in patterns:
        entered = datetime.fromtimestamp(pattern.timestamp / 1000.0, tz=timezone.utc)
        table.add_row(
            entered.strftime(config.LOG_DATE_FORMAT),
            pattern.route,
            f"{pattern.duration_ms / 1000.0:.1f}",
            ", ".join(pattern.interactions),
        )
    console.print(table)
    return 0


def show_rules(args: argparse.Namespace, console: Console) -> int:
    tracker = _load_tracker(args.store_dir, args.key)
    engine = PrefetchRuleEngine(
        tracker,
        DEFAULT_ROUTE_QUERIES,
        _no_prefetch,
        BackgroundTaskQueue(),
        min_samples=config.PREFETCH_MIN_SAMPLES,
        probability_threshold=config.PREFETCH_PROBABILITY_THRESHOLD,
        priority_scale=config.PREFETCH_PRIORITY_SCALE,
        priority_threshold=config.PREFETCH_PRIORITY_THRESHOLD,
    )
    patterns = tracker.patterns
    if len(patterns) <= engine.min_samples:
        console.print(f"Not enough history for rules: {len(patterns)} visits, need more than {engine.min_samples}")
        return 1

    rules = engine.generate_rules(patterns)
    table = Table(title=f"Prefetch rules from {len(patterns)} visits")
    table.add_column("From")
    table.add_column("To")
    table.add_column("Probability", justify="right")
    table.add_column("Priority", justify="right")
    table.add_column("Prefetched", justify="center")
    table.add_column("Queries")
    for rule in rules:
        table.add_row(
            rule.trigger_route,
            rule.target_route,
            f"{rule.probability:.2f}",
            str(rule.priority),
            "yes" if rule.priority >= engine.priority_threshold else "no",
            ", ".join(query.fingerprint for query in rule.target_queries),
        )
    console.print(table)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "--store-dir",
        default=config.BEHAVIOR_STORE_DIR or ".coordination",
        help="Directory of the JSON file store holding behaviour history",
    )
    parser.add_argument("--key", default=config.BEHAVIOR_STORAGE_KEY, help="Storage key of the history")
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL")

    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("show-history", help="List recorded route visits").set_defaults(handler=show_history)
    subparsers.add_parser("show-rules", help="Derive and list prefetch rules").set_defaults(handler=show_rules)
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(log_level=args.log_level)
    console = Console()
    try:
        return args.handler(args, console)
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 130


if __name__ == "__main__":
    sys.exit(main())
