"""CLI entrypoint: run one feed ingest-and-submit cycle."""

from __future__ import annotations

import argparse
import logging
import sys

from dotenv import load_dotenv

from config import ledger_timeout, ledger_url, load_feed_configuration
from ledger_client import RemoteLedgerClient
from models import PipelineRun
from pipeline import SubmissionPipeline


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line flags."""
    parser = argparse.ArgumentParser(description="Submit new feed articles as signed claims to a ledger")
    parser.add_argument("--feed-url", default=None, help="Feed URL (overrides FEED_URL)")
    parser.add_argument("--ledger-url", default=None, help="Ledger base URL (overrides LEDGER_URL)")
    parser.add_argument(
        "--delay",
        type=float,
        default=None,
        help="Seconds to wait before each phase (overrides FEED_DELAY_* variables)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Only log what would be submitted, without posting any claims",
    )
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    return parser.parse_args(argv)


def run(feed_url: str | None, ledger: str | None, delay: float | None, dry_run: bool) -> PipelineRun:
    """Run one full pipeline cycle."""
    config = load_feed_configuration(feed_url=feed_url, delay=delay)
    client = RemoteLedgerClient(ledger_url(ledger), timeout=ledger_timeout())
    return SubmissionPipeline(config, client, dry_run=dry_run).run()


def main(argv: list[str] | None = None) -> int:
    """Initialize config and execute the pipeline."""
    load_dotenv()
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(message)s",
    )

    result = run(feed_url=args.feed_url, ledger=args.ledger_url, delay=args.delay, dry_run=args.dry_run)
    if not result.ok:
        logging.error("Run ended %s during %s: %s", result.state, result.failed_phase, result.error)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
