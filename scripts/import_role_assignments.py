from __future__ import annotations

import argparse
import asyncio
import csv
from pathlib import Path
import sys

from orgauthz.core.logging import configure_logging
from orgauthz.persistence.db import SessionLocal
from orgauthz.services.roles import import_role_rows


async def _import(path: Path) -> int:
    # Columns: user_id, role, and optionally email and organization_id.
    with path.open(newline="", encoding="utf-8") as handle:
        rows = list(csv.DictReader(handle))
    async with SessionLocal() as session:
        report = await import_role_rows(session, rows)
    for role, count in sorted(report.imported.items()):
        print(f"imported role={role} count={count}")
    for user_id, reason in report.skipped:
        print(f"skipped user_id={user_id or '-'} reason={reason}")
    return 1 if report.skipped else 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Import role assignments, normalizing legacy role spellings")
    parser.add_argument("csv_path", type=Path)
    args = parser.parse_args()
    configure_logging()
    sys.exit(asyncio.run(_import(args.csv_path)))


if __name__ == "__main__":
    main()
