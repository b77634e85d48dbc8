"""
Command-line entry points for cron.

Usage:
    riskcast dispatch [--now 2026-03-01T09:05:00Z]
    riskcast work [--batch-size 50] [--job-type risk_score]

Each invocation is stateless: it runs one tick or one batch against the
shared store, prints the summary as JSON and exits. The exit code is 1
when any unit in the summary errored.
"""

import argparse
import sys
from datetime import datetime
from typing import Optional

from riskcast.config import get_settings
from riskcast.engine.dispatch import Dispatcher
from riskcast.engine.worker import Worker
from riskcast.models.enums import JobType
from riskcast.storage import get_storage
from riskcast.utils.logging import configure_logging, get_logger

logger = get_logger(__name__)


def _parse_now(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="riskcast", description="Riskcast scheduling entry points")
    subparsers = parser.add_subparsers(dest="command", required=True)

    dispatch = subparsers.add_parser("dispatch", help="Run one dispatcher tick")
    dispatch.add_argument("--now", help="Override the current instant (ISO 8601)")

    work = subparsers.add_parser("work", help="Run one worker batch")
    work.add_argument("--batch-size", type=int, default=None, help="Maximum jobs to pick")
    work.add_argument(
        "--job-type",
        action="append",
        choices=[t.value for t in JobType],
        help="Restrict the batch to a job type (repeatable)",
    )
    work.add_argument("--now", help="Override the current instant (ISO 8601)")

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    # stdout carries the JSON summary
    configure_logging(stream=sys.stderr)
    settings = get_settings()
    storage = get_storage()

    if args.command == "dispatch":
        summary = Dispatcher(storage, settings).run_tick(_parse_now(args.now))
    else:
        job_types = [JobType(t) for t in args.job_type] if args.job_type else None
        summary = Worker(storage, settings).run_batch(
            batch_size=args.batch_size,
            now=_parse_now(args.now),
            job_types=job_types,
        )

    print(summary.model_dump_json(indent=2))
    logger.info("cli_command_completed", command=args.command, errors=summary.errors)
    return 1 if summary.errors else 0


if __name__ == "__main__":
    sys.exit(main())
