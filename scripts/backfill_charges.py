# scripts/backfill_charges.py
"""
Charge completed calls that never made it through billing.

Run from the repo root:

    python -m scripts.backfill_charges --dry-run
    python -m scripts.backfill_charges --limit 100
    python -m scripts.backfill_charges --reconcile
    python -m scripts.backfill_charges --sync

`--reconcile` only writes the missing call_charge ledger entries for calls
that were already debited; it never touches balances.

`--sync` pulls each active agent's calls from the provider API first, so
calls whose webhooks were lost are stored and charged too.
"""

from __future__ import annotations

import argparse

from callbilling.config import get_settings
from callbilling.db.session import init_db, session_scope
from callbilling.logging_config import configure_logging
from callbilling.services.call_sync import sync_provider_calls
from callbilling.services.provider_client import get_provider_client
from callbilling.services.reconciliation import backfill_unbilled_calls, reconcile_missing_transactions


def run_sync(provider=None) -> None:
    provider = provider or get_provider_client()
    init_db()
    with session_scope() as db:
        report = sync_provider_calls(db, provider)

    print(
        f"[backfill_charges] synced agents={report.agents_processed}/{report.agents_found} "
        f"calls={report.calls_seen} new={report.calls_created} charged={report.charged} "
        f"duplicates={report.duplicates} total=${report.total_amount}"
    )
    for skipped in report.skipped_agents:
        print(f"  - agent {skipped['agent_id']}: {skipped['reason']}")
    for failure in report.failures:
        key = failure.get("call_id") or failure.get("agent_id")
        print(f"  ! {key}: {failure['reason']}")


def run_once(limit: int | None = None, dry_run: bool = False, reconcile: bool = False) -> None:
    init_db()
    with session_scope() as db:
        if reconcile:
            written = reconcile_missing_transactions(db)
            print(f"[backfill_charges] Reconciled {written} call charge transactions")
            return

        report = backfill_unbilled_calls(db, limit=limit, dry_run=dry_run)

    prefix = "[backfill_charges] (dry run)" if report.dry_run else "[backfill_charges]"
    print(
        f"{prefix} examined={report.examined} charged={report.charged} "
        f"duplicates={report.duplicates} skipped={report.skipped} "
        f"total=${report.total_amount}"
    )
    for failure in report.failures:
        print(f"  ! {failure['call_id']}: {failure['reason']}")


def main() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument(
        "--limit",
        type=int,
        default=None,
        help="Max number of unbilled calls to process in this run",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Report what would be charged without debiting anyone",
    )
    parser.add_argument(
        "--reconcile",
        action="store_true",
        help="Write missing ledger entries for already-debited calls",
    )
    parser.add_argument(
        "--sync",
        action="store_true",
        help="Pull calls from the provider API and charge any that were missed",
    )
    args = parser.parse_args()

    configure_logging(get_settings().LOG_LEVEL)
    if args.sync:
        if args.dry_run:
            parser.error("--sync cannot be combined with --dry-run")
        run_sync()
        return
    run_once(limit=args.limit, dry_run=args.dry_run, reconcile=args.reconcile)


if __name__ == "__main__":
    main()
