"""
tests/test_storage.py
~~~~~~~~~~~~~~~~~~~~~
Tests for steuerbuch.storage — SQLiteRepository and project layout.
All tests use tmp_path, never touching ~/.steuerbuch/.
"""

from __future__ import annotations

import sqlite3
from datetime import date, datetime, timedelta, timezone

import pytest

from steuerbuch.exceptions import (
    DuplicateImportError, DuplicatePeriodError, ImmutableReportError, ReportNotFoundError,
)
from steuerbuch.models import (
    InvoiceStatus, MatchState, Period, ReportStatus, ReportType, StatementStatus, TaxReport,
)
from steuerbuch.money import Money
from steuerbuch.storage import LedgerRepository, get_repository
from steuerbuch.storage.project import (
    DB_FILENAME, layout_from_db_path, resolve_project, validate_project_name,
)
from steuerbuch.storage.sqlite import SQLiteRepository


def _report(status: ReportStatus = ReportStatus.DRAFT, **kwargs) -> TaxReport:
    return TaxReport(
        company_id="acme",
        report_type=ReportType.UST,
        period=Period(2024, quarter=1),
        figures={"output_vat": 28500},
        status=status,
        generated_at=datetime(2024, 4, 2, tzinfo=timezone.utc),
        **kwargs,
    )


# ---------------------------------------------------------------------------
# Basics
# ---------------------------------------------------------------------------

class TestRepository:
    def test_implements_protocol(self, repo):
        assert isinstance(repo, LedgerRepository)

    def test_creates_parent_directories(self, tmp_path):
        db = SQLiteRepository(db_path=tmp_path / "nested" / "dir" / "x.db")
        assert (tmp_path / "nested" / "dir" / "x.db").exists()
        db.close()

    def test_reopen_keeps_data(self, tmp_path, make_statement):
        path = tmp_path / "keep.db"
        with SQLiteRepository(path) as first:
            stmt = first.save_statement(make_statement())
        with SQLiteRepository(path) as second:
            assert second.get_statement(stmt.id) is not None

    def test_get_repository_with_path(self, tmp_path):
        repo = get_repository(tmp_path / "r.db")
        assert isinstance(repo, SQLiteRepository)
        assert repo.db_path == tmp_path / "r.db"
        repo.close()


# ---------------------------------------------------------------------------
# Statements
# ---------------------------------------------------------------------------

class TestStatements:
    def test_round_trip(self, repo, make_statement):
        stmt = repo.save_statement(make_statement([(25000, "INV-0042"), (-1250, "")]))
        loaded = repo.get_statement(stmt.id)
        assert loaded.opening_balance == Money(100000)
        assert loaded.closing_balance == Money(123750)
        assert loaded.status is StatementStatus.IMPORTED
        assert loaded.transaction_count == 2
        assert [t.amount for t in loaded.transactions] == [Money(25000), Money(-1250)]
        assert loaded.transactions[1].reference == ""
        assert loaded.imported_at is not None

    def test_duplicate_key(self, repo, make_statement):
        first = repo.save_statement(make_statement())
        with pytest.raises(DuplicateImportError) as exc_info:
            repo.save_statement(make_statement())
        assert exc_info.value.existing_id == first.id
        assert len(repo.list_statements("acme")) == 1

    def test_failed_save_leaves_nothing(self, repo, make_statement):
        stmt = make_statement([(100, "a"), (200, "b")])
        stmt.transactions[1].id = stmt.transactions[0].id  # primary key clash
        with pytest.raises(sqlite3.IntegrityError):
            repo.save_statement(stmt)
        assert repo.list_statements("acme") == []

    def test_find_statement(self, repo, make_statement):
        stmt = repo.save_statement(make_statement())
        found = repo.find_statement("acme", stmt.account_id, stmt.statement_date, "hash-1")
        assert found.id == stmt.id
        assert repo.find_statement("acme", stmt.account_id, stmt.statement_date, "other") is None

    def test_list_statements_newest_first(self, repo, make_statement):
        repo.save_statement(make_statement(statement_date=date(2024, 1, 31), content_hash="a"))
        repo.save_statement(make_statement(statement_date=date(2024, 2, 29), content_hash="b"))
        dates = [s.statement_date for s in repo.list_statements("acme")]
        assert dates == [date(2024, 2, 29), date(2024, 1, 31)]

    def test_statements_cannot_be_deleted(self, repo, make_statement):
        repo.save_statement(make_statement())
        with pytest.raises(sqlite3.IntegrityError):
            with repo._transaction() as conn:
                conn.execute("DELETE FROM bank_statements")

    def test_balances_cannot_change(self, repo, make_statement):
        stmt = repo.save_statement(make_statement())
        with pytest.raises(sqlite3.IntegrityError):
            with repo._transaction() as conn:
                conn.execute("UPDATE bank_statements SET closing_balance = 0 WHERE id = ?", (stmt.id,))

    def test_transaction_amounts_cannot_change(self, repo, make_statement):
        stmt = repo.save_statement(make_statement())
        with pytest.raises(sqlite3.IntegrityError):
            with repo._transaction() as conn:
                conn.execute("UPDATE bank_transactions SET amount = 1 WHERE statement_id = ?", (stmt.id,))

    def test_summary_update(self, repo, make_statement):
        stmt = repo.save_statement(make_statement())
        repo.update_statement_summary(stmt.id, StatementStatus.RECONCILED, 1)
        loaded = repo.get_statement(stmt.id)
        assert loaded.status is StatementStatus.RECONCILED
        assert loaded.matched_count == 1


# ---------------------------------------------------------------------------
# Matching compare-and-set
# ---------------------------------------------------------------------------

class TestMatching:
    def test_match_links_both_sides(self, repo, make_statement, make_invoice):
        stmt = repo.save_statement(make_statement())
        inv = repo.save_invoice(make_invoice())
        tx = stmt.transactions[0]

        assert repo.match_transaction(tx.id, inv.id) is True
        assert repo.get_transaction(tx.id).match_state is MatchState.MATCHED
        assert repo.get_transaction(tx.id).matched_invoice_id == inv.id
        paid = repo.get_invoice(inv.id)
        assert paid.status is InvoiceStatus.PAID
        assert paid.paid_transaction_id == tx.id

    def test_invoice_paid_at_most_once(self, repo, make_statement, make_invoice):
        stmt = repo.save_statement(make_statement([(25000, "INV-0042"), (25000, "INV-0042")]))
        inv = repo.save_invoice(make_invoice())
        first, second = stmt.transactions

        assert repo.match_transaction(first.id, inv.id) is True
        assert repo.match_transaction(second.id, inv.id) is False
        assert repo.get_transaction(second.id).match_state is MatchState.UNMATCHED
        assert repo.get_invoice(inv.id).paid_transaction_id == first.id

    def test_transaction_state_precondition(self, repo, make_statement, make_invoice):
        stmt = repo.save_statement(make_statement())
        a = repo.save_invoice(make_invoice("INV-A"))
        b = repo.save_invoice(make_invoice("INV-B"))
        tx = stmt.transactions[0]

        assert repo.match_transaction(tx.id, a.id) is True
        # Already matched: the second CAS fails and invoice B stays open
        assert repo.match_transaction(tx.id, b.id) is False
        assert repo.get_invoice(b.id).status is InvoiceStatus.SENT

    def test_unlinked_state_rejected_for_match(self, repo):
        with pytest.raises(ValueError):
            repo.match_transaction("tx", "inv", MatchState.IGNORED)

    def test_reset_reopens_invoice(self, repo, make_statement, make_invoice):
        stmt = repo.save_statement(make_statement())
        inv = repo.save_invoice(make_invoice())
        tx = stmt.transactions[0]
        repo.match_transaction(tx.id, inv.id)

        ok = repo.set_match_state(tx.id, MatchState.UNMATCHED, from_states=(MatchState.MATCHED,))
        assert ok is True
        assert repo.get_transaction(tx.id).matched_invoice_id is None
        reopened = repo.get_invoice(inv.id)
        assert reopened.status is InvoiceStatus.SENT
        assert reopened.paid_transaction_id is None

    def test_set_state_precondition(self, repo, make_statement):
        stmt = repo.save_statement(make_statement())
        tx = stmt.transactions[0]
        assert repo.set_match_state(tx.id, MatchState.IGNORED) is True
        assert repo.set_match_state(tx.id, MatchState.IGNORED) is False

    def test_confirm_existing_match(self, repo, make_statement, make_invoice):
        stmt = repo.save_statement(make_statement())
        inv = repo.save_invoice(make_invoice())
        tx = stmt.transactions[0]
        repo.match_transaction(tx.id, inv.id)
        assert repo.confirm_existing_match(tx.id, "other") is False
        assert repo.confirm_existing_match(tx.id, inv.id) is True
        assert repo.get_transaction(tx.id).match_state is MatchState.MANUALLY_CONFIRMED

    def test_categorize(self, repo, make_statement):
        stmt = repo.save_statement(make_statement())
        tx = stmt.transactions[0]
        assert repo.categorize_transaction(tx.id, "software", "standard") is True
        loaded = repo.get_transaction(tx.id)
        assert (loaded.category, loaded.vat_category) == ("software", "standard")
        assert repo.categorize_transaction("missing", "x", None) is False


class TestReconciliationClaims:
    def test_second_claim_refused(self, repo, make_statement):
        stmt = repo.save_statement(make_statement())
        assert repo.try_claim_reconciliation(stmt.id) is True
        assert repo.try_claim_reconciliation(stmt.id) is False
        repo.release_reconciliation(stmt.id)
        assert repo.try_claim_reconciliation(stmt.id) is True

    def test_stale_claim_taken_over(self, repo, make_statement):
        stmt = repo.save_statement(make_statement())
        assert repo.try_claim_reconciliation(stmt.id) is True
        assert repo.try_claim_reconciliation(stmt.id, stale_after=timedelta(seconds=-1)) is True


# ---------------------------------------------------------------------------
# Invoices
# ---------------------------------------------------------------------------

class TestInvoices:
    def test_round_trip(self, repo, make_invoice):
        inv = repo.save_invoice(make_invoice())
        loaded = repo.get_invoice(inv.id)
        assert loaded.net_amount == Money(21008)
        assert loaded.vat_amount == Money(3992)
        assert loaded.total_amount == Money(25000)
        assert loaded.due_date == date(2024, 1, 30)
        assert loaded.is_open

    def test_open_invoices_exclude_paid_and_cancelled(self, repo, make_invoice):
        repo.save_invoice(make_invoice("A"))
        cancelled = make_invoice("B")
        cancelled.status = InvoiceStatus.CANCELLED
        repo.save_invoice(cancelled)
        repo.save_invoice(make_invoice("C", company_id="globex"))
        assert [i.invoice_number for i in repo.list_open_invoices("acme")] == ["A"]
        assert len(repo.list_invoices("acme")) == 2

    def test_upsert_keeps_paid_status(self, repo, make_statement, make_invoice):
        stmt = repo.save_statement(make_statement())
        inv = repo.save_invoice(make_invoice())
        repo.match_transaction(stmt.transactions[0].id, inv.id)

        inv.client_name = "ACME Holding GmbH"
        inv.status = InvoiceStatus.SENT
        repo.save_invoice(inv)
        loaded = repo.get_invoice(inv.id)
        assert loaded.client_name == "ACME Holding GmbH"
        assert loaded.status is InvoiceStatus.PAID


# ---------------------------------------------------------------------------
# Ledger entries
# ---------------------------------------------------------------------------

class TestLedger:
    def test_period_end_is_exclusive(self, repo, make_entry):
        repo.save_ledger_entries([
            make_entry("income", 100, entry_date=date(2024, 1, 1)),
            make_entry("income", 200, entry_date=date(2024, 3, 31)),
            make_entry("income", 300, entry_date=date(2024, 4, 1)),
            make_entry("income", 400, entry_date=date(2024, 2, 1), company_id="globex"),
        ])
        found = repo.find_ledger_entries("acme", date(2024, 1, 1), date(2024, 4, 1))
        assert [e.net_amount.minor_units for e in found] == [100, 200]

    def test_single_entry(self, repo, make_entry):
        entry = repo.save_ledger_entry(make_entry("expense", 500, category="travel"))
        found = repo.find_ledger_entries("acme", date(2024, 1, 1), date(2025, 1, 1))
        assert found[0].id == entry.id
        assert found[0].category == "travel"


# ---------------------------------------------------------------------------
# Tax reports
# ---------------------------------------------------------------------------

class TestReports:
    def test_draft_overwrite_keeps_id(self, repo):
        first = repo.save_draft_report(_report())
        second = _report()
        second.figures = {"output_vat": 1}
        saved = repo.save_draft_report(second)
        assert saved.id == first.id
        reports = repo.find_reports("acme", ReportType.UST, "2024-Q1")
        assert len(reports) == 1
        assert reports[0].figures == {"output_vat": 1}

    def test_round_trip(self, repo):
        report = repo.save_report(_report())
        loaded = repo.get_report(report.id)
        assert loaded.period == Period(2024, quarter=1)
        assert loaded.report_type is ReportType.UST
        assert loaded.generated_at == datetime(2024, 4, 2, tzinfo=timezone.utc)

    def test_submit_sets_timestamp(self, repo):
        report = repo.save_report(_report())
        submitted = repo.update_report_status(report.id, ReportStatus.SUBMITTED)
        assert submitted.status is ReportStatus.SUBMITTED
        assert submitted.submitted_at is not None

    def test_submitted_figures_locked(self, repo):
        report = repo.save_report(_report())
        repo.update_report_status(report.id, ReportStatus.SUBMITTED)
        with pytest.raises(sqlite3.IntegrityError, match="locked"):
            with repo._transaction() as conn:
                conn.execute("UPDATE tax_reports SET figures = '{}' WHERE id = ?", (report.id,))
        with pytest.raises(sqlite3.IntegrityError, match="locked"):
            with repo._transaction() as conn:
                conn.execute("UPDATE tax_reports SET period_key = '2024-Q2' WHERE id = ?", (report.id,))

    def test_submitted_cannot_reopen(self, repo):
        report = repo.save_report(_report())
        repo.update_report_status(report.id, ReportStatus.SUBMITTED)
        with pytest.raises(ImmutableReportError):
            repo.update_report_status(report.id, ReportStatus.DRAFT)

    def test_submitted_cannot_be_deleted(self, repo):
        report = repo.save_report(_report())
        repo.update_report_status(report.id, ReportStatus.SUBMITTED)
        with pytest.raises(ImmutableReportError):
            repo.delete_report(report.id)
        assert repo.get_report(report.id) is not None

    def test_delete_draft(self, repo):
        report = repo.save_report(_report())
        assert repo.delete_report(report.id) is True
        assert repo.delete_report(report.id) is False

    def test_second_filed_original_rejected(self, repo):
        filed = repo.save_report(_report())
        repo.update_report_status(filed.id, ReportStatus.SUBMITTED)
        other = repo.save_report(_report())
        with pytest.raises(DuplicatePeriodError) as exc_info:
            repo.update_report_status(other.id, ReportStatus.SUBMITTED)
        assert exc_info.value.existing_id == filed.id

    def test_filed_correction_allowed(self, repo):
        filed = repo.save_report(_report())
        repo.update_report_status(filed.id, ReportStatus.SUBMITTED)
        correction = repo.save_report(_report(corrects_report_id=filed.id))
        repo.update_report_status(correction.id, ReportStatus.SUBMITTED)
        assert len(repo.find_reports("acme", "USt", "2024-Q1")) == 2

    def test_missing_report(self, repo):
        assert repo.get_report("nope") is None
        with pytest.raises(ReportNotFoundError):
            repo.update_report_status("nope", ReportStatus.SUBMITTED)


# ---------------------------------------------------------------------------
# Project layout
# ---------------------------------------------------------------------------

class TestProjectLayout:
    def test_explicit_project(self):
        layout = resolve_project("acme-2024", env_var=False)
        assert layout.name == "acme-2024"
        assert layout.db_path.name == DB_FILENAME
        assert layout.statements_dir == layout.root / "statements"

    def test_env_var(self, monkeypatch):
        monkeypatch.setenv("STEUERBUCH_PROJECT", "from-env")
        assert resolve_project().name == "from-env"

    def test_default(self, monkeypatch):
        monkeypatch.delenv("STEUERBUCH_PROJECT", raising=False)
        assert resolve_project().is_default

    def test_invalid_name(self):
        with pytest.raises(ValueError):
            resolve_project("Bad Name!")

    @pytest.mark.parametrize("name, ok", [
        ("default", True),
        ("a", True),
        ("acme_gmbh-2024", True),
        ("", False),
        ("-leading", False),
        ("UPPER", False),
        ("x" * 65, False),
    ])
    def test_validate_name(self, name, ok):
        assert (validate_project_name(name) is None) is ok

    def test_layout_from_custom_db_path(self, tmp_path):
        layout = layout_from_db_path(tmp_path / "books.db")
        assert layout.name == "books"
        assert layout.root == tmp_path.resolve()
        assert layout.statements_dir == tmp_path.resolve() / "statements"

    def test_home_override(self, monkeypatch, tmp_path):
        monkeypatch.setenv("STEUERBUCH_HOME", str(tmp_path))
        assert resolve_project("acme", env_var=False).root == tmp_path / "acme"

    def test_layout_inside_home_uses_directory_name(self, monkeypatch, tmp_path):
        monkeypatch.setenv("STEUERBUCH_HOME", str(tmp_path))
        layout = layout_from_db_path(tmp_path / "acme" / DB_FILENAME)
        assert layout.name == "acme"

    @pytest.mark.parametrize("filename, fmt, suffix", [
        ("januar.CSV", "CSV", ".csv"),
        (None, "MT940", ".sta"),
        (None, "CAMT053", ".xml"),
        ("no_suffix", "MT940", ".sta"),
    ])
    def test_archive_path(self, tmp_path, filename, fmt, suffix):
        layout = layout_from_db_path(tmp_path / "books.db")
        path = layout.archive_path("ab" * 32, fmt, filename)
        assert path == layout.statements_dir / f"{'ab' * 32}{suffix}"
