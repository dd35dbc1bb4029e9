#!/usr/bin/env python3
"""
Generate journal entries from due recurring templates for one company.

Loads engine settings (packaged defaults, optional --config YAML, then the
JOURNAL_DATABASE_URL / JOURNAL_LOG_LEVEL environment), runs the recurring
scheduler in a single transaction and prints a JSON summary.

Usage:
    python3 scripts/run_recurring.py --tenant <id> --company <id> --actor <id> [options]

Examples:
    # Everything due today
    python3 scripts/run_recurring.py --tenant t-1 --company c-1 --actor scheduler

    # Catch up to a given date with a custom settings file
    python3 scripts/run_recurring.py --tenant t-1 --company c-1 --actor scheduler \\
        --as-of 2024-03-31 --config settings.yaml
"""

from __future__ import annotations

import argparse
import json
import sys
from datetime import date
from pathlib import Path

# Project root on sys.path
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Run due recurring journal templates and print a JSON summary.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--tenant", required=True, help="Tenant id.")
    parser.add_argument("--company", required=True, help="Company id.")
    parser.add_argument("--actor", required=True, help="Actor id recorded on entries and audit rows.")
    parser.add_argument(
        "--as-of",
        type=lambda s: date.fromisoformat(s),
        default=None,
        help="Run templates due on or before this date (YYYY-MM-DD). Default: today.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional settings YAML overlaid on the packaged defaults.",
    )
    return parser.parse_args()


def main() -> int:
    args = _parse_args()

    # Lazy imports so we fail fast on args first
    from journal_batch.services import RecurringScheduler
    from journal_config import load_settings
    from journal_kernel.db.engine import init_engine_from_url, session_scope
    from journal_kernel.domain.clock import SystemClock
    from journal_kernel.domain.scope import LedgerScope
    from journal_kernel.exceptions import JournalKernelError
    from journal_kernel.logging_config import configure_logging
    from journal_kernel.services import JournalService

    try:
        settings = load_settings(args.config)
    except (JournalKernelError, OSError) as e:
        print(f"ERROR: Failed to load settings: {e}", file=sys.stderr)
        return 1

    configure_logging(level=settings.log_level)
    init_engine_from_url(settings.database_url)

    clock = SystemClock()
    scope = LedgerScope(tenant_id=args.tenant, company_id=args.company)
    as_of = args.as_of or clock.today()

    with session_scope() as session:
        journal = JournalService(
            session,
            clock,
            balance_tolerance=settings.balance_tolerance,
            reference_prefix=settings.reference_prefix,
        )
        result = RecurringScheduler(session, journal, clock).process_recurring(
            scope, as_of, actor_id=args.actor,
        )
        summary = {
            "asOf": as_of.isoformat(),
            "generated": [
                {
                    "entryId": str(entry.id),
                    "reference": entry.reference,
                    "entryDate": entry.entry_date.isoformat(),
                    "status": entry.status,
                }
                for entry in result.entries
            ],
            "failed": [
                {
                    "templateId": str(failure.template_id),
                    "template": failure.template_name,
                    "runDate": failure.run_date.isoformat(),
                    "code": failure.code,
                    "error": failure.message,
                }
                for failure in result.failures
            ],
        }

    print(json.dumps(summary, indent=2))
    return 1 if result.failures else 0


if __name__ == "__main__":
    sys.exit(main())
