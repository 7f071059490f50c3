"""Main entry point with CLI."""
import argparse
import asyncio
import json
import sys
from pathlib import Path

from salesmail.config import config, Config, ScanSettings
from salesmail.errors import ConfigurationError
from salesmail.logging_conf import setup_logging
from salesmail.jobs.runner import RunStatus, ScanRunner
from salesmail.parse.notification import parse_notification

import logging

logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description="Marketplace sales-notification ingester")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Run one scan over new notifications")
    run_parser.add_argument(
        "--max-candidates",
        type=int,
        default=None,
        help=f"Maximum candidates per run (default: {config.MAX_CANDIDATES})",
    )
    run_parser.add_argument(
        "--batch-size",
        type=int,
        default=None,
        help=f"Candidates per processed-marker flush (default: {config.BATCH_SIZE})",
    )
    run_parser.add_argument(
        "--time-budget-minutes",
        type=float,
        default=None,
        help=f"Stop and hand off after M minutes (default: {config.TIME_BUDGET_MINUTES})",
    )
    run_parser.add_argument(
        "--time-check-interval",
        type=int,
        default=None,
        help=f"Check the time budget every N candidates (default: {config.TIME_CHECK_INTERVAL})",
    )
    run_parser.add_argument(
        "--no-variant",
        action="store_true",
        help="Keep parenthesised variants in the product name",
    )

    parse_parser = subparsers.add_parser("parse", help="Parse one notification body from a file")
    parse_parser.add_argument("path", type=Path, help="File holding the raw message body")
    parse_parser.add_argument(
        "--no-variant",
        action="store_true",
        help="Keep parenthesised variants in the product name",
    )

    return parser.parse_args(argv)


def run_command(args: argparse.Namespace) -> int:
    try:
        Config.validate()
        settings = ScanSettings.from_config(
            max_candidates=args.max_candidates,
            batch_size=args.batch_size,
            time_budget_minutes=args.time_budget_minutes,
            time_check_interval=args.time_check_interval,
            extract_variant=False if args.no_variant else None,
        )
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        return 1

    logger.info("=" * 60)
    logger.info("Sales ingestion starting")
    logger.info(f"Max candidates: {settings.max_candidates}")
    logger.info(f"Batch size: {settings.batch_size}")
    logger.info(f"Time budget: {settings.time_budget_minutes} minutes")
    logger.info(f"Variant extraction: {settings.extract_variant}")
    logger.info("=" * 60)

    async def _run():
        runner = ScanRunner.from_config(settings)
        try:
            return await runner.run()
        finally:
            await runner.close()

    result = asyncio.run(_run())
    print(result.model_dump_json(indent=2))
    return 1 if result.status == RunStatus.FAILED else 0


def parse_command(args: argparse.Namespace) -> int:
    raw = args.path.read_text(encoding="utf-8", errors="replace")
    outcome = parse_notification(raw, extract_variant=not args.no_variant)
    payload = {
        "kind": outcome.kind.value if outcome.kind else None,
        "reason": outcome.reason,
        "record": outcome.record.model_dump(mode="json") if outcome.record else None,
    }
    print(json.dumps(payload, ensure_ascii=False, indent=2))
    return 0 if outcome.ok else 2


def main(argv: list[str] | None = None) -> None:
    """Main entry point."""
    setup_logging()
    args = parse_args(argv)
    try:
        if args.command == "run":
            code = run_command(args)
        else:
            code = parse_command(args)
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        code = 1
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        code = 1
    sys.exit(code)


if __name__ == "__main__":
    main()
