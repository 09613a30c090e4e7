from __future__ import annotations

import argparse
import asyncio
import csv
import logging
from pathlib import Path

from clinic_scheduler import BulkImportReconciler, ImportAbortedError, YamlDocumentStore
from clinic_scheduler.config import settings

KINDS = ("infrastructure", "doctors", "reservations")


def read_rows(path: Path) -> list[dict[str, str]]:
    # utf-8-sig drops the BOM spreadsheet exports tend to add
    with path.open(newline="", encoding="utf-8-sig") as handle:
        return [dict(row) for row in csv.DictReader(handle)]


async def run(kind: str, path: Path, org_id: str, user_id: str, data_dir: str) -> int:
    reconciler = BulkImportReconciler(YamlDocumentStore(data_dir))
    rows = read_rows(path)

    try:
        if kind == "infrastructure":
            report = await reconciler.import_infrastructure(rows, org_id, on_log=print)
        elif kind == "doctors":
            report = await reconciler.import_doctors(rows, org_id, on_log=print)
        else:
            report = await reconciler.import_reservations(rows, org_id, user_id, on_log=print)
    except ImportAbortedError as error:
        print(f"[ERROR] {error}")
        return 1

    print(f"[OK] {report.to_dict()}")
    print(f"[OK] Reservations stored for {org_id}: {await reconciler.count_reservations(org_id)}")
    return 0


def main() -> int:
    parser = argparse.ArgumentParser(description="Import a CSV export into the clinic scheduler store")
    parser.add_argument("kind", choices=KINDS)
    parser.add_argument("csv_path", type=Path)
    parser.add_argument("--org-id", required=True)
    parser.add_argument("--user-id", default="import-script")
    parser.add_argument("--data-dir", default=settings.data_dir)
    args = parser.parse_args()

    logging.basicConfig(level=settings.log_level)
    return asyncio.run(run(args.kind, args.csv_path, args.org_id, args.user_id, args.data_dir))


if __name__ == "__main__":
    raise SystemExit(main())
