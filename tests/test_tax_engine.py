"""
tests/test_tax_engine.py
~~~~~~~~~~~~~~~~~~~~~~~~
Tests for steuerbuch.tax.engine — report generation and the filing workflow.
"""

from __future__ import annotations

from datetime import date, datetime, timezone

import pytest

from steuerbuch.exceptions import (
    DuplicatePeriodError, ImmutableReportError, InvalidTransitionError,
    ReportNotFoundError, UnknownCategoryError, UnknownVatRateError,
)
from steuerbuch.models import Period, ReportStatus, ReportType, TaxReport
from steuerbuch.tax.engine import TaxEngine

Q1 = Period(2024, quarter=1)
FIXED_NOW = datetime(2024, 4, 5, 9, 30, tzinfo=timezone.utc)


@pytest.fixture
def engine(repo, default_config) -> TaxEngine:
    return TaxEngine(repo, default_config, clock=lambda: FIXED_NOW)


@pytest.fixture
def booked(repo, q1_entries):
    repo.save_ledger_entries(q1_entries)
    return q1_entries


# ---------------------------------------------------------------------------
# Generation
# ---------------------------------------------------------------------------

class TestGenerate:
    def test_quarterly_vat_figures(self, engine, booked):
        report = engine.generate_report("acme", ReportType.UST, Q1)
        assert report.status is ReportStatus.DRAFT
        assert report.figures["output_vat"] == 28500
        assert report.figures["input_vat"] == 5700
        assert report.figures["net_liability"] == 22800
        assert report.figures["period"] == "2024-Q1"

    def test_report_type_as_string(self, engine, booked):
        report = engine.generate_report("acme", "EUER", Q1)
        assert report.report_type is ReportType.EUER
        assert report.figures["revenue"] == 150000
        assert report.figures["deductible_expenses"] == 30000
        assert report.figures["taxable_income"] == 120000

    def test_clock_injected(self, engine, booked):
        assert engine.generate_report("acme", "USt", Q1).generated_at == FIXED_NOW

    def test_other_company_and_period_excluded(self, engine, repo, booked, make_entry):
        repo.save_ledger_entries([
            make_entry("income", 99900, company_id="globex"),
            make_entry("income", 99900, entry_date=date(2024, 4, 1)),
        ])
        figures = engine.compute_period("acme", Q1)
        assert figures.output_vat == 28500
        assert figures.entry_count == 3

    def test_regenerate_overwrites_draft(self, engine, repo, booked, make_entry):
        first = engine.generate_report("acme", "USt", Q1)
        repo.save_ledger_entry(make_entry("income", 10000, entry_date=date(2024, 3, 1)))
        second = engine.generate_report("acme", "USt", Q1)
        assert second.id == first.id
        assert second.figures["output_vat"] == 30400
        assert len(repo.find_reports("acme", "USt", "2024-Q1")) == 1

    def test_preview_not_stored(self, engine, repo, booked):
        report = engine.preview("acme", "USt", Q1)
        assert report.figures["net_liability"] == 22800
        assert repo.find_reports("acme") == []

    def test_figures_of(self, engine, booked):
        report = engine.generate_report("acme", "USt", Q1)
        figures = engine.figures_of(report)
        assert figures.period == Q1
        assert figures.net_liability == 22800
        assert figures.lines["standard"].income_count == 2

    def test_unknown_vat_category(self, engine, repo, make_entry):
        repo.save_ledger_entry(make_entry("income", 100, vat_category="luxury"))
        with pytest.raises(UnknownVatRateError):
            engine.generate_report("acme", "USt", Q1)
        assert repo.find_reports("acme") == []

    def test_unknown_expense_category(self, engine, repo, make_entry):
        repo.save_ledger_entry(make_entry("expense", 100, category="yacht"))
        with pytest.raises(UnknownCategoryError):
            engine.generate_report("acme", "EUER", Q1)

    def test_monthly_period(self, engine, booked):
        report = engine.generate_report("acme", "USt", Period(2024, month=2))
        assert report.figures["output_vat"] == 9500
        assert report.period.key == "2024-02"

    def test_annual_trade_tax(self, engine, repo, make_entry):
        repo.save_ledger_entry(make_entry("income", 10_000_000, entry_date=date(2024, 6, 1)))
        report = engine.generate_report("acme", ReportType.GEWST, Period(2024))
        assert report.figures["trade_tax"] == 1_057_000
        assert report.figures["trade_tax_multiplier"] == 400


# ---------------------------------------------------------------------------
# Workflow
# ---------------------------------------------------------------------------

class TestWorkflow:
    def test_submit(self, engine, booked):
        report = engine.generate_report("acme", "USt", Q1)
        submitted = engine.submit(report.id)
        assert submitted.status is ReportStatus.SUBMITTED
        assert submitted.submitted_at is not None
        assert submitted.figures == report.figures

    def test_full_lifecycle(self, engine, booked):
        report = engine.generate_report("acme", "USt", Q1)
        engine.transition(report.id, ReportStatus.GENERATED)
        engine.transition(report.id, "submitted")
        assert engine.transition(report.id, "approved").status is ReportStatus.APPROVED

    @pytest.mark.parametrize("target", ["approved", "rejected"])
    def test_draft_cannot_skip_submission(self, engine, booked, target):
        report = engine.generate_report("acme", "USt", Q1)
        with pytest.raises(InvalidTransitionError):
            engine.transition(report.id, target)

    def test_final_states_are_final(self, engine, booked):
        report = engine.generate_report("acme", "USt", Q1)
        engine.submit(report.id)
        engine.transition(report.id, "approved")
        with pytest.raises(InvalidTransitionError):
            engine.transition(report.id, "rejected")

    @pytest.mark.parametrize("target", ["draft", "generated"])
    def test_submitted_cannot_reopen(self, engine, booked, target):
        report = engine.generate_report("acme", "USt", Q1)
        engine.submit(report.id)
        with pytest.raises(ImmutableReportError):
            engine.transition(report.id, target)

    def test_generate_after_submit_rejected(self, engine, booked):
        report = engine.generate_report("acme", "USt", Q1)
        engine.submit(report.id)
        with pytest.raises(DuplicatePeriodError) as exc_info:
            engine.generate_report("acme", "USt", Q1)
        assert exc_info.value.existing_id == report.id

    def test_other_type_same_period_allowed(self, engine, booked):
        engine.submit(engine.generate_report("acme", "USt", Q1).id)
        assert engine.generate_report("acme", "EUER", Q1).status is ReportStatus.DRAFT

    def test_second_original_cannot_be_submitted(self, engine, repo, booked):
        filed = engine.generate_report("acme", "USt", Q1)
        engine.submit(filed.id)
        stray = repo.save_report(
            TaxReport(company_id="acme", report_type=ReportType.UST, period=Q1, figures={})
        )
        with pytest.raises(DuplicatePeriodError):
            engine.submit(stray.id)

    def test_missing_report(self, engine):
        with pytest.raises(ReportNotFoundError):
            engine.submit("missing")


class TestDeleteDraft:
    def test_delete(self, engine, repo, booked):
        report = engine.generate_report("acme", "USt", Q1)
        assert engine.delete_draft(report.id) is True
        assert repo.get_report(report.id) is None

    def test_missing(self, engine):
        assert engine.delete_draft("missing") is False

    def test_filed_report_kept(self, engine, repo, booked):
        report = engine.generate_report("acme", "USt", Q1)
        engine.submit(report.id)
        with pytest.raises(ImmutableReportError):
            engine.delete_draft(report.id)
        assert repo.get_report(report.id) is not None


# ---------------------------------------------------------------------------
# Corrections
# ---------------------------------------------------------------------------

class TestCorrections:
    def test_correction_of_filed_report(self, engine, repo, booked, make_entry):
        original = engine.generate_report("acme", "USt", Q1)
        engine.submit(original.id)
        repo.save_ledger_entry(make_entry("income", 10000, entry_date=date(2024, 3, 1)))

        correction = engine.generate_correction(original.id)
        assert correction.corrects_report_id == original.id
        assert correction.status is ReportStatus.DRAFT
        assert correction.figures["output_vat"] == 30400
        assert repo.get_report(original.id).figures["output_vat"] == 28500

        engine.submit(correction.id)
        assert repo.get_report(correction.id).status is ReportStatus.SUBMITTED

    def test_chain_points_at_original(self, engine, booked):
        original = engine.generate_report("acme", "USt", Q1)
        engine.submit(original.id)
        first = engine.generate_correction(original.id)
        engine.submit(first.id)
        second = engine.generate_correction(first.id)
        assert second.corrects_report_id == original.id

    def test_draft_cannot_be_corrected(self, engine, booked):
        report = engine.generate_report("acme", "USt", Q1)
        with pytest.raises(InvalidTransitionError):
            engine.generate_correction(report.id)

    def test_missing_original(self, engine):
        with pytest.raises(ReportNotFoundError):
            engine.generate_correction("missing")
