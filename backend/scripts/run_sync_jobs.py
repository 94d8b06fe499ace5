#!/usr/bin/env python
"""Run one Open Finance job, for cron or a systemd timer.

The jobs are idempotent and safe to re-run; each reports per-item
failures and exits non-zero when any item failed.

Usage:
    python -m scripts.run_sync_jobs refresh-tokens
    python -m scripts.run_sync_jobs sync-accounts
    python -m scripts.run_sync_jobs sync-balances --verbose
"""

import argparse
import sys

from config import settings
from database import get_session_local
from logging_config import setup_logging
from services.aggregation import build_aggregation_core

JOBS = ("refresh-tokens", "sync-accounts", "sync-balances")


def run_job(jobs, name: str) -> int:
    """Run a job and print a summary. Returns the number of failed items."""
    if name == "refresh-tokens":
        result = jobs.refresh_expiring_tokens()
        print(f"Tokens refreshed: {len(result.refreshed)}, failed: {len(result.failed)}")
        for consent_id, error in result.failed.items():
            print(f"  {consent_id}: {error}")
        return len(result.failed)

    if name == "sync-accounts":
        outcomes = jobs.sync_all_accounts()
        failed = [o for o in outcomes if not o.success]
        print(
            f"Accounts synced: {len(outcomes) - len(failed)}, failed: {len(failed)}, "
            f"records imported: {sum(o.records_imported for o in outcomes)}"
        )
        for outcome in failed:
            print(f"  {outcome.account_id}: {outcome.error_message}")
        return len(failed)

    results = jobs.sync_all_balances()
    failed = {k: v for k, v in results.items() if v != "SUCCESS"}
    print(f"Balances updated: {len(results) - len(failed)}, failed: {len(failed)}")
    for account_id, error in failed.items():
        print(f"  {account_id}: {error}")
    return len(failed)


def main():
    parser = argparse.ArgumentParser(description="Run an Open Finance job once.")
    parser.add_argument("job", choices=JOBS)
    parser.add_argument("--verbose", action="store_true", help="Log at DEBUG level")
    args = parser.parse_args()

    setup_logging("DEBUG" if args.verbose else None)

    if not settings.OPEN_FINANCE_ENABLED:
        print("Open Finance is disabled (OPEN_FINANCE_ENABLED=false); nothing to do.")
        return

    core = build_aggregation_core(settings, session_factory=get_session_local())
    failures = run_job(core.jobs, args.job)
    sys.exit(1 if failures else 0)


if __name__ == "__main__":
    main()
