from __future__ import annotations

import argparse
import asyncio
import sys

from orgauthz.core.config import get_settings
from orgauthz.core.logging import configure_logging
from orgauthz.persistence.db import engine
from orgauthz.persistence.rls import POLICY_CATALOG, PolicyDrift, reset_table_policies, verify_policy_set


def _print_report(report: dict[str, PolicyDrift]) -> list[PolicyDrift]:
    for table, drift in sorted(report.items()):
        state = "ok" if drift.ok else "drift"
        print(f"{table}: {state} missing={drift.missing} stale={drift.stale}")
    return [drift for drift in report.values() if not drift.ok]


async def _verify(tables: list[str] | None, fix: bool, reset: bool) -> int:
    async with engine.connect() as conn:
        report = await conn.run_sync(verify_policy_set, tables)
    drifted = _print_report(report)
    # --reset reinstalls even matching tables, e.g. after AGENCY_GRANT_ADMIN_POLICY changes a policy body.
    if reset:
        targets = sorted(report)
    elif fix:
        targets = sorted(drift.table for drift in drifted)
    else:
        targets = []
    if not targets:
        return 1 if drifted else 0

    role = get_settings().rls_app_role
    async with engine.begin() as conn:
        for table in targets:
            dropped = await conn.run_sync(reset_table_policies, table, role)
            print(f"{table}: reset dropped={dropped}")
    async with engine.connect() as conn:
        report = await conn.run_sync(verify_policy_set, targets)
    return 1 if _print_report(report) else 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Compare live RLS policies with the policy catalog")
    parser.add_argument("--table", action="append", choices=sorted(POLICY_CATALOG), default=None)
    parser.add_argument("--fix", action="store_true", help="enumerate-then-drop and reinstall drifted tables")
    parser.add_argument("--reset", action="store_true", help="enumerate-then-drop and reinstall every selected table")
    args = parser.parse_args()
    configure_logging()
    sys.exit(asyncio.run(_verify(args.table, args.fix, args.reset)))


if __name__ == "__main__":
    main()
