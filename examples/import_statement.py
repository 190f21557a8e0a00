"""
examples/import_statement.py
~~~~~~~~~~~~~~~~~~~~~~~~~~~~
Import one bank statement and reconcile it against the open invoices.
The statement is stored in the local DB; importing it again is a no-op.

Usage
-----
    python -m examples.import_statement --file auszuege/januar.sta --company acme
    python -m examples.import_statement --file export.xml --format CAMT053
    python -m examples.import_statement --file januar.csv --db /tmp/test.db
    python -m examples.import_statement --file januar.csv --no-reconcile
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

logging.basicConfig(level=logging.WARNING, format="%(levelname)s  %(name)s — %(message)s")

from steuerbuch import ReconciliationEngine, StatementImporter


def import_statement(
    path: Path,
    company_id: str = "default",
    fmt: str | None = None,
    db_path: Path | None = None,       # None → ~/.steuerbuch/<project>/steuerbuch.db
    reconcile: bool = True,
) -> bool:
    if not path.exists():
        print(f"[error] File not found: {path}", file=sys.stderr)
        return False

    print(f"Importing: {path}")

    with StatementImporter(db_path=db_path) as importer:
        result = importer.import_file(company_id, path, fmt)

        if not result.success:
            print(f"[error] Import failed: {result.error_message}", file=sys.stderr)
            return False

        stmt = result.statement
        if result.duplicate:
            print(f"\n  ⚠  Duplicate detected — this statement was already imported.")
            print(f"     Existing ID : {result.existing_id}")
            print(f"     No changes made to the database.\n")

        # ------------------------------------------------------------------
        # Print summary
        # ------------------------------------------------------------------
        W = 44
        print("\n" + "─" * W)
        print(f"  {'STATEMENT':^{W - 4}}")
        print("─" * W)

        def row(label: str, value: object) -> None:
            print(f"  {label:<18} {str(value) if value is not None else '—'}")

        row("Format",        stmt.source_format)
        row("Account",       stmt.account_id)
        row("Bank",          stmt.bank_name)
        row("Date",          stmt.statement_date)
        row("Opening",       stmt.opening_balance)
        row("Closing",       stmt.closing_balance)
        row("Transactions",  stmt.transaction_count)

        if stmt.transactions:
            print("  " + "·" * (W - 4))
            for tx in stmt.transactions:
                print(f"    • {tx.booking_date}  {str(tx.amount):>16}  {tx.description[:18]}")

        if reconcile:
            summary = ReconciliationEngine(importer.repository, importer.config).reconcile(
                company_id, stmt.id,
            )
            print("  " + "·" * (W - 4))
            row("Matched",       summary.matched)
            row("Unmatched",     summary.unmatched)
            row("Needs review",  summary.manual_review_needed)
            for item in summary.review:
                for c in item.candidates:
                    print(f"    ? {item.transaction_id[:8]}…  {c.invoice_number}  score {c.score}")

        print("─" * W)
        if result.processing_time:
            print(f"  Processing time : {result.processing_time:.2f}s")
        print(f"  Statement ID    : {stmt.id}")
        print(f"  Saved to DB     : {importer.repository.db_path}")
        print()
    return True


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        description="Import a bank statement (CSV, MT940 or CAMT.053) and reconcile it.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    p.add_argument("--file",         required=True,      metavar="FILE")
    p.add_argument("--company",      default="default",  metavar="ID")
    p.add_argument("--format",       default=None,       choices=["CSV", "MT940", "CAMT053"],
                   help="Statement format (default: from the file suffix).")
    p.add_argument("--db",           default=None,       metavar="FILE",
                   help="SQLite DB path (default: ~/.steuerbuch/default/steuerbuch.db).")
    p.add_argument("--no-reconcile", action="store_true",
                   help="Only import, do not match invoices.")
    p.add_argument("--verbose", "-v", action="store_true")
    return p


if __name__ == "__main__":
    args = _build_parser().parse_args()
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)
    ok = import_statement(
        path=Path(args.file),
        company_id=args.company,
        fmt=args.format,
        db_path=Path(args.db) if args.db else None,
        reconcile=not args.no_reconcile,
    )
    sys.exit(0 if ok else 1)
