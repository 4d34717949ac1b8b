"""Manually run (or enqueue) alert jobs for one tenant or for every tenant."""

from __future__ import annotations

import argparse
import json
from typing import List, Optional

from alerts.rules import OCCASION_DAILY, OCCASIONS
from core.logging import setup_logging


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run SubTrack alert jobs outside the beat schedule.")
    parser.add_argument(
        "--occasion",
        choices=OCCASIONS,
        default=OCCASION_DAILY,
        help="Which alert job to run (default: daily).",
    )
    parser.add_argument(
        "--tenant",
        default=None,
        help="Tenant UUID. When omitted every active tenant is processed.",
    )
    parser.add_argument(
        "--now",
        default=None,
        help="ISO-8601 timestamp to evaluate rules against (default: current time).",
    )
    parser.add_argument(
        "--enqueue",
        action="store_true",
        help="Send the job to the Celery alerts queue instead of running it inline.",
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = _build_parser().parse_args(argv)
    setup_logging()

    from worker.celery_app import app  # noqa: F401  binds shared tasks to the configured broker
    from worker import tasks

    if args.tenant:
        task = tasks.run_tenant_alerts
        call_args = [args.tenant, args.occasion, args.now]
    else:
        task = tasks.run_daily_alerts if args.occasion == OCCASION_DAILY else tasks.run_monthly_summaries
        call_args = [args.now]

    if args.enqueue:
        async_result = task.apply_async(args=call_args)
        print(f"Enqueued {task.name}: {async_result.id}")
        return 0

    result = task(*call_args)
    print(json.dumps(result, indent=2, default=str))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
