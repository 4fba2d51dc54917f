#!/usr/bin/env python3
"""
Run the reconciliation sweep once, or enqueue it on the RQ worker.

Usage:
  python scripts/reconcile.py [--since-hours 72] [--limit 200] [--enqueue]

Cron example (every 15 minutes):
  */15 * * * * cd /srv/app && python scripts/reconcile.py --enqueue
"""
import argparse
import json
import logging
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dotenv import load_dotenv

load_dotenv()

from app.tasks import enqueue_reconciliation, run_reconciliation_job  # noqa: E402


def main():
    ap = argparse.ArgumentParser(description="Ledger reconciliation sweep")
    ap.add_argument("--since-hours", type=int, default=72, help="Processor session look-back")
    ap.add_argument("--limit", type=int, default=200, help="Max rows per step")
    ap.add_argument("--enqueue", action="store_true", help="Run on the RQ worker instead")
    args = ap.parse_args()

    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    if args.enqueue:
        job_id = enqueue_reconciliation(since_hours=args.since_hours, limit=args.limit)
        print(f"enqueued reconciliation job {job_id}")
        return 0

    report = run_reconciliation_job(since_hours=args.since_hours, limit=args.limit)
    print(json.dumps(report, indent=2, default=str))
    drift = report["audit"]["campaign_drift"] or report["audit"]["refund_drift"]
    return 2 if drift else 0


if __name__ == "__main__":
    sys.exit(main())
