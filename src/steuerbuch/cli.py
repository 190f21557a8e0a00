"""
steuerbuch.cli
~~~~~~~~~~~~~~
Command-line interface for steuerbuch.

Entry point registered in pyproject.toml::

    [project.scripts]
    steuerbuch = "steuerbuch.cli:main"

Usage examples
--------------
    steuerbuch --version

    # Import one statement (format from the suffix unless --format is given)
    steuerbuch --import kontoauszug_2024_03.sta --company acme

    # Import every statement file in a directory, reconciling each new one
    steuerbuch --batch --input-dir auszuege/ --company acme --auto-reconcile

    # Reconcile a stored statement
    steuerbuch --reconcile 6f1c... --company acme

    # Q1 VAT return: generate draft, submit, export
    steuerbuch --report USt --year 2024 --quarter 1 --company acme
    steuerbuch --submit 9a2b...
    steuerbuch --export 9a2b... --output ust_q1_2024.json

    # Use a custom DB path
    steuerbuch --report EUER --year 2024 --db /tmp/steuerbuch.db
"""

from __future__ import annotations

import argparse
import json
import logging
import signal
import sys
import threading
from datetime import date
from importlib.metadata import version
from pathlib import Path

from steuerbuch.config import Config
from steuerbuch.exceptions import SteuerbuchError
from steuerbuch.importer import StatementImporter, format_from_suffix
from steuerbuch.models import ImportResult, Period, ReportType
from steuerbuch.reconcile import ReconciliationEngine
from steuerbuch.storage import get_repository
from steuerbuch.tax import ReportBuilder, TaxEngine


# ---------------------------------------------------------------------------
# CLI class
# ---------------------------------------------------------------------------

class SteuerbuchCLI:

    def __init__(
        self,
        config:  Config | None = None,
        db_path: Path | None = None,
        project: str | None = None,
    ) -> None:
        self.config  = config or Config()
        self.db_path = db_path
        self.project = project

    def _repository(self):
        return get_repository(self.db_path or self.config.db_path, project=self.project or self.config.project)

    # ------------------------------------------------------------------
    # Utility
    # ------------------------------------------------------------------

    def print_version(self) -> None:
        try:
            print(f"steuerbuch version: {version('steuerbuch')}")
        except Exception:
            print("steuerbuch version: unknown")

    # ------------------------------------------------------------------
    # Import
    # ------------------------------------------------------------------

    def import_statement(
        self,
        path: str | Path,
        company_id: str,
        fmt: str | None = None,
        auto_reconcile: bool = False,
    ) -> int:
        """Import one statement file. Returns exit code."""
        path = Path(path)
        if not path.exists():
            print(f"[error] File not found: {path}", file=sys.stderr)
            return 1

        with self._importer(auto_reconcile) as importer:
            result = importer.import_file(company_id, path, fmt)
        return self._print_result(path, result)

    def batch_import(
        self,
        input_dir: str | Path,
        company_id: str,
        fmt: str | None = None,
        auto_reconcile: bool = False,
        verbose: bool = False,
    ) -> int:
        """
        Import every statement file in ``input_dir``. Ctrl-C stops after
        the current file. Returns exit code.
        """
        input_dir = Path(input_dir)
        files = sorted(
            p for p in input_dir.iterdir()
            if p.is_file() and (fmt or format_from_suffix(p))
        ) if input_dir.is_dir() else []

        if not files:
            print(f"No statement files found in {input_dir.resolve()}")
            return 1

        cancel = threading.Event()
        previous = signal.getsignal(signal.SIGINT)
        if threading.current_thread() is threading.main_thread():
            signal.signal(signal.SIGINT, lambda *_: cancel.set())
        try:
            with self._importer(auto_reconcile) as importer:
                results = importer.import_batch(company_id, files, fmt, cancel_event=cancel)
        finally:
            if threading.current_thread() is threading.main_thread():
                signal.signal(signal.SIGINT, previous)

        self._print_batch_report(results, total=len(files), verbose=verbose)
        failed = sum(1 for r in results.values() if not r.success)
        return 1 if failed or cancel.is_set() else 0

    def _importer(self, auto_reconcile: bool) -> StatementImporter:
        importer = StatementImporter(
            config=self.config,
            project=self.project,
            db_path=self.db_path,
        )
        if auto_reconcile:
            engine = ReconciliationEngine(importer.repository, self.config)
            importer.ingestor.add_listener(engine.on_statement)
        return importer

    @staticmethod
    def _print_result(path: Path, result: ImportResult) -> int:
        if not result.success:
            print(f"✗  {path.name}: {result.error_message}", file=sys.stderr)
            return 1
        s = result.statement
        if result.duplicate:
            print(f"⚠  Duplicate — already imported: {s.account_id} {s.statement_date}  (id: {s.id})")
            return 0
        print(
            f"✓  {s.source_format}  {s.account_id}  {s.statement_date}  "
            f"{s.transaction_count} Umsätze  Endsaldo {s.closing_balance}  (id: {s.id})"
        )
        return 0

    def _print_batch_report(self, results: dict[str, ImportResult], total: int, verbose: bool) -> None:
        imported   = [r for r in results.values() if r.success and not r.duplicate]
        duplicates = [r for r in results.values() if r.duplicate]
        failed     = [r for r in results.values() if not r.success]

        W    = 50
        div  = "─" * W
        hdiv = "═" * W

        print(f"\n{hdiv}")
        print(f"  {'STATEMENT IMPORT REPORT':^{W - 4}}")
        print(hdiv)
        print(f"  Files found    : {total}")
        print(f"  Processed      : {len(results)}")
        print(f"  Imported       : {len(imported)}")
        print(f"  Duplicates     : {len(duplicates)}")
        print(f"  Failed         : {len(failed)}")
        if len(results) < total:
            print(f"  Not reached    : {total - len(results)}  (cancelled)")

        print(f"\n  {'DETAIL':^{W - 4}}")
        print(div)
        for path, result in results.items():
            name = Path(path).name
            if result.duplicate:
                print(f"  ⚠  {name}  [duplicate — skipped]")
            elif result.success:
                s = result.statement
                t = f"  ({result.processing_time:.2f}s)" if verbose and result.processing_time else ""
                print(f"  ✓  {name}{t}")
                print(f"     {s.account_id}  {s.statement_date}  {s.transaction_count} Umsätze")
            else:
                print(f"  ✗  {name}")
                print(f"     Error: {result.error_message}")
        print(f"\n{hdiv}\n")

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    def reconcile(self, statement_id: str, company_id: str) -> int:
        try:
            with self._repository() as repo:
                summary = ReconciliationEngine(repo, self.config).reconcile(company_id, statement_id)
        except SteuerbuchError as exc:
            print(f"[error] {exc}", file=sys.stderr)
            return 1

        if summary.in_progress:
            print(f"Reconciliation of {statement_id} is already running.")
            return 0

        print(f"Statement {statement_id}")
        print(f"  Zugeordnet      : {summary.matched}  (neu: {summary.newly_matched})")
        print(f"  Offen           : {summary.unmatched}")
        print(f"  Zu prüfen       : {summary.manual_review_needed}")
        print(f"  Ignoriert       : {summary.ignored}")
        for item in summary.review:
            options = ", ".join(f"{c.invoice_number} ({c.score})" for c in item.candidates)
            print(f"    {item.transaction_id}: {options}")
        return 0

    # ------------------------------------------------------------------
    # Tax reports
    # ------------------------------------------------------------------

    def run_report(
        self,
        report_type: str,
        company_id: str,
        year: int,
        quarter: int | None = None,
        month: int | None = None,
        output: Path | None = None,
        preview: bool = False,
    ) -> int:
        """Generate (or preview) a report and print its summary."""
        try:
            period = Period(year, quarter=quarter, month=month)
            with self._repository() as repo:
                engine = TaxEngine(repo, self.config)
                if preview:
                    report = engine.preview(company_id, report_type, period)
                else:
                    report = engine.generate_report(company_id, report_type, period)
                figures = engine.figures_of(report)
        except (SteuerbuchError, ValueError) as exc:
            print(f"[error] {exc}", file=sys.stderr)
            return 1

        print(figures.summary())
        if not preview:
            print(f"{report.report_type.value} draft saved (id: {report.id})")

        if output:
            output.parent.mkdir(parents=True, exist_ok=True)
            output.write_text(report.to_json(), encoding="utf-8")
            print(f"Report saved to {output}")
        return 0

    def submit_report(self, report_id: str) -> int:
        try:
            with self._repository() as repo:
                report = TaxEngine(repo, self.config).submit(report_id)
        except SteuerbuchError as exc:
            print(f"[error] {exc}", file=sys.stderr)
            return 1
        print(f"✓  {report.report_type.value} {report.period.key} submitted at {report.submitted_at}")
        return 0

    def export_report(self, report_id: str, output: Path | None = None) -> int:
        try:
            with self._repository() as repo:
                report = repo.get_report(report_id)
                if report is None:
                    print(f"[error] Tax report {report_id} not found", file=sys.stderr)
                    return 1
                payload = ReportBuilder().to_export_payload(report)
        except SteuerbuchError as exc:
            print(f"[error] {exc}", file=sys.stderr)
            return 1

        raw = json.dumps(payload, indent=2, ensure_ascii=False)
        if output:
            output.parent.mkdir(parents=True, exist_ok=True)
            output.write_text(raw, encoding="utf-8")
            print(f"Export payload saved to {output}")
        else:
            print(raw)
        return 0


# ---------------------------------------------------------------------------
# Argument parser
# ---------------------------------------------------------------------------

def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="steuerbuch: import bank statements, reconcile invoices and prepare German tax reports.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    parser.add_argument(
        "--version", action="store_true",
        help="Show package version and exit.",
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true",
        help="Enable verbose output.",
    )
    parser.add_argument(
        "--company", default=None, metavar="ID",
        help="Company ID (default: STEUERBUCH_COMPANY_ID or 'default').",
    )
    parser.add_argument(
        "--db", default=None, metavar="FILE",
        help="SQLite database path (default: ~/.steuerbuch/<project>/steuerbuch.db).",
    )
    parser.add_argument(
        "--project", default=None, metavar="NAME",
        help="Project name under ~/.steuerbuch/.",
    )

    # -- Statement import -------------------------------------------------
    import_group = parser.add_argument_group("Statement import")
    import_group.add_argument(
        "--import", dest="import_file", default=None, metavar="FILE",
        help="Import a single statement file.",
    )
    import_group.add_argument(
        "--format", default=None, choices=["CSV", "MT940", "CAMT053"], type=str.upper,
        help="Statement format. Inferred from the file suffix when omitted.",
    )
    import_group.add_argument(
        "--batch", action="store_true",
        help="Import all statement files in --input-dir.",
    )
    import_group.add_argument(
        "--input-dir", default=None, metavar="DIR",
        help="Directory containing statement files.",
    )
    import_group.add_argument(
        "--auto-reconcile", action="store_true",
        help="Reconcile each newly imported statement right away.",
    )

    # -- Reconciliation ---------------------------------------------------
    rec_group = parser.add_argument_group("Reconciliation")
    rec_group.add_argument(
        "--reconcile", default=None, metavar="STATEMENT_ID",
        help="Match the statement's transactions against open invoices.",
    )

    # -- Tax reports ------------------------------------------------------
    tax_group = parser.add_argument_group("Tax reports")
    tax_group.add_argument(
        "--report", default=None, choices=[t.value for t in ReportType], metavar="TYPE",
        help="Generate a draft report: USt, EUER or GewSt.",
    )
    tax_group.add_argument(
        "--preview", action="store_true",
        help="With --report: compute and print without saving.",
    )
    tax_group.add_argument(
        "--year", type=int, default=date.today().year,
        help="Fiscal year.",
    )
    period_group = tax_group.add_mutually_exclusive_group()
    period_group.add_argument(
        "--quarter", type=int, default=None, choices=[1, 2, 3, 4],
        help="Fiscal quarter (omit both --quarter and --month for the whole year).",
    )
    period_group.add_argument(
        "--month", type=int, default=None, choices=range(1, 13), metavar="1-12",
        help="Fiscal month.",
    )
    tax_group.add_argument(
        "--submit", default=None, metavar="REPORT_ID",
        help="Mark a report as submitted; its figures are frozen afterwards.",
    )
    tax_group.add_argument(
        "--export", default=None, metavar="REPORT_ID",
        help="Write the export payload of a report.",
    )
    tax_group.add_argument(
        "--output", default=None, metavar="FILE",
        help="Output file for --report / --export (stdout for --export when omitted).",
    )

    return parser


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args   = parser.parse_args(argv)

    if args.verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(levelname)-8s %(name)s — %(message)s",
        )

    if args.version:
        SteuerbuchCLI().print_version()
        return 0

    cli = SteuerbuchCLI(
        db_path=Path(args.db) if args.db else None,
        project=args.project,
    )
    company = args.company or cli.config.company_id
    output  = Path(args.output) if args.output else None

    if args.import_file:
        return cli.import_statement(args.import_file, company, args.format, args.auto_reconcile)

    if args.batch and args.input_dir:
        return cli.batch_import(args.input_dir, company, args.format, args.auto_reconcile, args.verbose)

    if args.reconcile:
        return cli.reconcile(args.reconcile, company)

    if args.report:
        return cli.run_report(
            report_type=args.report,
            company_id=company,
            year=args.year,
            quarter=args.quarter,
            month=args.month,
            output=output,
            preview=args.preview,
        )

    if args.submit:
        return cli.submit_report(args.submit)

    if args.export:
        return cli.export_report(args.export, output)

    parser.print_help()
    return 0


if __name__ == "__main__":
    sys.exit(main())
