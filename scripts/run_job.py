#!/usr/bin/env python3
"""Run one scheduled reconciliation job from the command line.

Meant for a system crontab on hosts where hitting the HTTP trigger is not
convenient. Each run is one transaction, retried on transient store errors.

Usage:
    python scripts/run_job.py midnight-closeout
    python scripts/run_job.py midnight-closeout --cutoff-date 2025-11-18
    python scripts/run_job.py reminder-sweep --at 2025-11-17T18:30:00+01:00
    python scripts/run_job.py notification-cleanup --log-level DEBUG
    python scripts/run_job.py leave-year-open --year 2026

Exit codes:
    0 = job finished with no per-entity failures
    1 = job finished but some entities failed (see report)
    2 = job aborted
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from datetime import date, datetime
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from hrops.common.log import configure_logging  # noqa: E402
from hrops.jobs.service import JOBS, LEAVE_YEAR_OPEN, MIDNIGHT_CLOSEOUT, JobReport  # noqa: E402

logger = logging.getLogger("hrops.run_job")


async def _run(args: argparse.Namespace) -> JobReport:
    runner = JOBS[args.job]
    if args.job == MIDNIGHT_CLOSEOUT:
        return await runner(args.cutoff_date)
    if args.job == LEAVE_YEAR_OPEN:
        return await runner(args.year)
    return await runner(args.at)


def main() -> int:
    parser = argparse.ArgumentParser(
        description="HR Ops — run a scheduled job once",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("job", choices=sorted(JOBS), help="Job to run")
    parser.add_argument("--cutoff-date", type=date.fromisoformat,
                        help="Close sessions dated before this day (midnight-closeout only)")
    parser.add_argument("--year", type=int,
                        help="Leave year to open (leave-year-open only)")
    parser.add_argument("--at", type=datetime.fromisoformat,
                        help="Pretend the job runs at this instant (ISO 8601)")
    parser.add_argument("--log-level", default=None,
                        help="Override LOG_LEVEL for this run")
    args = parser.parse_args()

    if args.cutoff_date and args.job != MIDNIGHT_CLOSEOUT:
        parser.error("--cutoff-date only applies to midnight-closeout")
    if args.year and args.job != LEAVE_YEAR_OPEN:
        parser.error("--year only applies to leave-year-open")

    configure_logging(args.log_level)

    try:
        report = asyncio.run(_run(args))
    except Exception:
        logger.exception("Job %s aborted", args.job)
        return 2

    print(report.model_dump_json(indent=2))
    return 1 if report.failures else 0


if __name__ == "__main__":
    sys.exit(main())
