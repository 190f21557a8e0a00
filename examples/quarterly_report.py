"""
examples/quarterly_report.py
~~~~~~~~~~~~~~~~~~~~~~~~~~~~
Generate the UStVA draft for one quarter from the ledger entries in the
local DB and write its export payload.

Usage
-----
    python -m examples.quarterly_report --company acme --year 2024 --quarter 1
    python -m examples.quarterly_report --company acme --quarter 2 --output-dir reports/
    python -m examples.quarterly_report --company acme --quarter 1 --submit
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import date
from pathlib import Path

logging.basicConfig(level=logging.WARNING, format="%(levelname)s  %(name)s — %(message)s")

from steuerbuch import ReportBuilder, SteuerbuchError, TaxEngine, get_repository
from steuerbuch.models import Period, ReportType


def quarterly_report(
    company_id: str,
    year: int,
    quarter: int,
    output_dir: Path | None = None,
    db_path: Path | None = None,
    submit: bool = False,
) -> bool:
    period = Period(year, quarter=quarter)

    with get_repository(db_path) as repo:
        engine = TaxEngine(repo)
        try:
            report = engine.generate_report(company_id, ReportType.UST, period)
            if submit:
                report = engine.submit(report.id)
        except SteuerbuchError as exc:
            print(f"[error] {exc}", file=sys.stderr)
            return False

        print(engine.figures_of(report).summary())
        print(f"  Report ID : {report.id}")
        print(f"  Status    : {report.status.value}")

        if output_dir:
            payload = ReportBuilder().to_export_payload(report)
            output_dir.mkdir(parents=True, exist_ok=True)
            out_path = output_dir / f"ust_{period.key}.json"
            out_path.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")
            print(f"  Saved JSON: {out_path}")

    print()
    return True


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        description="Generate a quarterly UStVA draft from the local ledger.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    p.add_argument("--company",    default="default",          metavar="ID")
    p.add_argument("--year",       default=date.today().year,  type=int)
    p.add_argument("--quarter",    required=True,              type=int, choices=[1, 2, 3, 4])
    p.add_argument("--output-dir", default=None,               metavar="DIR",
                   help="Also write the export payload here (optional).")
    p.add_argument("--db",         default=None,               metavar="FILE",
                   help="SQLite DB path (default: ~/.steuerbuch/default/steuerbuch.db).")
    p.add_argument("--submit",     action="store_true",
                   help="Mark the report as submitted; figures are frozen afterwards.")
    p.add_argument("--verbose", "-v", action="store_true")
    return p


if __name__ == "__main__":
    args = _build_parser().parse_args()
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)
    ok = quarterly_report(
        company_id=args.company,
        year=args.year,
        quarter=args.quarter,
        output_dir=Path(args.output_dir) if args.output_dir else None,
        db_path=Path(args.db) if args.db else None,
        submit=args.submit,
    )
    sys.exit(0 if ok else 1)
