#!/usr/bin/env python3
"""
Replay every treasury transaction log and compare it with the stored
balances.

Prints one line per treasury and exits 1 if any treasury has drifted,
2 if the database cannot be reached.

Usage:
    python3 scripts/reconcile_treasuries.py
    python3 scripts/reconcile_treasuries.py --config path/to/treasury.yaml
    python3 scripts/reconcile_treasuries.py --database-url postgresql://...
    python3 scripts/reconcile_treasuries.py --json
"""

import argparse
import json
import sys

from sqlalchemy.exc import SQLAlchemyError

from treasury_config import get_active_config
from treasury_kernel.db.engine import get_session, init_engine_from_url, reset_engine
from treasury_kernel.logging_config import configure_logging, get_logger
from treasury_kernel.services.reconciliation_service import (
    ReconciliationService,
    TreasuryReconciliation,
)

logger = get_logger("scripts.reconcile_treasuries")


def _as_dict(report: TreasuryReconciliation) -> dict:
    return {
        "treasury_id": str(report.treasury_id),
        "name": report.name,
        "cached_balance": str(report.cached_balance),
        "replayed_balance": str(report.replayed_balance),
        "drift": str(report.drift),
        "transactions": report.transaction_count,
        "consistent": report.is_consistent,
        "issues": list(report.issues),
    }


def run(database_url: str, base_currency: str, as_json: bool, out=sys.stdout) -> int:
    init_engine_from_url(database_url)
    session = get_session()
    try:
        reports = ReconciliationService(
            session, base_currency=base_currency
        ).verify_all_treasuries()
    finally:
        session.close()
        reset_engine()

    drifted = [r for r in reports if not r.is_consistent]

    if as_json:
        json.dump([_as_dict(r) for r in reports], out, indent=2)
        out.write("\n")
    else:
        for report in reports:
            mark = "OK   " if report.is_consistent else "DRIFT"
            out.write(
                f"{mark} {report.name:<30} cached={report.cached_balance} "
                f"replayed={report.replayed_balance} txns={report.transaction_count}\n"
            )
            for issue in report.issues:
                out.write(f"      - {issue}\n")
        out.write(f"\n{len(reports)} treasuries, {len(drifted)} inconsistent\n")

    logger.info(
        "reconcile_treasuries_finished",
        extra={"treasuries": len(reports), "inconsistent": len(drifted)},
    )
    return 1 if drifted else 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Reconcile treasury balances against their logs")
    parser.add_argument("--config", help="YAML configuration file")
    parser.add_argument("--database-url", help="Override the configured database URL")
    parser.add_argument("--json", action="store_true", help="Print reports as JSON")
    parser.add_argument("--log-level", default=None, help="Log level (default: from config)")
    args = parser.parse_args(argv)

    config = get_active_config(args.config)
    configure_logging(level=args.log_level or config.log_level, stream=sys.stderr)

    try:
        return run(args.database_url or config.database_url, config.base_currency, args.json)
    except SQLAlchemyError as exc:
        print(f"ERROR: database unavailable: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
