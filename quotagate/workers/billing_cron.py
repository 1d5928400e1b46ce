"""Billing period worker.

Usage:
    python -m quotagate.workers.billing_cron --once
    python -m quotagate.workers.billing_cron --loop

Environment flags:
- BILLING_CRON_ENABLED (0/1) default 0
- BILLING_CRON_LOOP_SECONDS (default 86400)
"""
from __future__ import annotations

import argparse
import time
from typing import Dict

from quotagate.core.config import settings
from quotagate.core.logging import configure_logging
from quotagate.features.billing.period_job import run_billing_period_job


def _process_once() -> Dict[str, object]:
    return run_billing_period_job()


def _format_summary(summary: Dict[str, object]) -> str:
    return (
        f"canceled={summary['canceled']} rolled={summary['rolled']} "
        f"skipped={summary['skipped']} failed={summary['failed']} usage_reset={summary['usage_reset']}"
    )


def main() -> None:
    parser = argparse.ArgumentParser(description="Billing period worker")
    parser.add_argument("--once", action="store_true", help="Run the billing period job once and exit")
    parser.add_argument("--loop", action="store_true", help="Run in continuous loop")
    parser.add_argument(
        "--sleep",
        type=int,
        default=settings.BILLING_CRON_LOOP_SECONDS,
        help="Seconds to sleep between runs (when --loop)",
    )
    args = parser.parse_args()

    configure_logging(settings.ENV)

    if not settings.BILLING_CRON_ENABLED:
        print("[billing-cron] Disabled (BILLING_CRON_ENABLED=0). Exiting.")
        return

    if args.once:
        summary = _process_once()
        print(f"[billing-cron] Done: {_format_summary(summary)}")
        return

    # Default to loop mode when not explicitly once
    print(f"[billing-cron] Starting loop (sleep={args.sleep}s). CTRL+C to stop.")
    try:
        while True:
            summary = _process_once()
            print(f"[billing-cron] Run complete: {_format_summary(summary)}")
            time.sleep(args.sleep)
    except KeyboardInterrupt:
        print("[billing-cron] Stopped")


if __name__ == "__main__":
    main()
