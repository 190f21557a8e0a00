"""
tests/test_report_builder.py
~~~~~~~~~~~~~~~~~~~~~~~~~~~~
Tests for steuerbuch.tax.report — the export payload handed to submission.
"""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from steuerbuch.exceptions import TaxComputationError
from steuerbuch.models import Period, ReportStatus, ReportType, TaxReport
from steuerbuch.tax.report import ReportBuilder
from steuerbuch.tax.ustva import aggregate_entries

Q1 = Period(2024, quarter=1)


@pytest.fixture
def builder() -> ReportBuilder:
    return ReportBuilder()


def _report(figures: dict, report_type: ReportType = ReportType.UST, **kwargs) -> TaxReport:
    return TaxReport(
        company_id="acme",
        report_type=report_type,
        period=kwargs.pop("period", Q1),
        figures=figures,
        generated_at=datetime(2024, 4, 5, tzinfo=timezone.utc),
        **kwargs,
    )


@pytest.fixture
def q1_figures(default_config, q1_entries) -> dict:
    return aggregate_entries(q1_entries, Q1, default_config).to_dict()


class TestUstPayload:
    def test_kennzahlen(self, builder, q1_figures):
        kz = builder.to_export_payload(_report(q1_figures))["kennzahlen"]
        assert kz["Kz81"] == "1500"
        assert kz["Kz86"] == "0"
        assert kz["Kz66"] == "57.00"
        assert kz["Kz83"] == "228.00"

    def test_amounts(self, builder, q1_figures):
        amounts = builder.to_export_payload(_report(q1_figures))["amounts"]
        assert amounts == {
            "output_vat":    "285.00",
            "input_vat":     "57.00",
            "net_liability": "228.00",
        }

    def test_cents_dropped_from_bases(self, builder, default_config, make_entry):
        entries = [
            make_entry("income", 100099),
            make_entry("income", 50050, vat_category="reduced"),
        ]
        figures = aggregate_entries(entries, Q1, default_config).to_dict()
        kz = builder.to_export_payload(_report(figures))["kennzahlen"]
        assert kz["Kz81"] == "1000"
        assert kz["Kz86"] == "500"

    def test_refund_is_negative(self, builder, default_config, make_entry):
        figures = aggregate_entries([make_entry("expense", 30000)], Q1, default_config).to_dict()
        assert builder.to_export_payload(_report(figures))["kennzahlen"]["Kz83"] == "-57.00"

    def test_header_and_period(self, builder, q1_figures):
        report = _report(q1_figures, status=ReportStatus.SUBMITTED)
        payload = builder.to_export_payload(report)
        assert payload["header"]["report_id"] == report.id
        assert payload["header"]["report_type"] == "USt"
        assert payload["header"]["status"] == "submitted"
        assert payload["header"]["is_correction"] is False
        assert payload["period"] == {
            "key": "2024-Q1", "year": 2024, "quarter": 1, "month": None,
            "start": "2024-01-01", "end": "2024-04-01",
        }
        assert payload["currency"] == "EUR"

    def test_correction_flag(self, builder, q1_figures):
        payload = builder.to_export_payload(_report(q1_figures, corrects_report_id="orig-1"))
        assert payload["header"]["is_correction"] is True
        assert payload["header"]["corrects_report_id"] == "orig-1"

    def test_deterministic(self, builder, q1_figures):
        report = _report(q1_figures)
        assert builder.to_export_payload(report) == builder.to_export_payload(report)


class TestOtherReportTypes:
    def test_euer(self, builder, q1_figures):
        payload = builder.to_export_payload(_report(q1_figures, ReportType.EUER))
        assert payload["amounts"]["revenue"] == "1500.00"
        assert payload["amounts"]["taxable_income"] == "1200.00"
        assert "kennzahlen" not in payload

    def test_gewst(self, builder, default_config, make_entry):
        figures = aggregate_entries(
            [make_entry("income", 10_000_000)], Period(2024), default_config,
        ).to_dict()
        payload = builder.to_export_payload(_report(figures, ReportType.GEWST, period=Period(2024)))
        assert payload["amounts"]["trade_tax"] == "10570.00"
        assert payload["hebesatz"] == 400
        assert payload["period"]["key"] == "2024"


class TestIncompleteFigures:
    def test_empty_figures(self, builder):
        with pytest.raises(TaxComputationError):
            builder.to_export_payload(_report({}))

    def test_missing_field_for_type(self, builder):
        with pytest.raises(TaxComputationError, match="trade_tax"):
            builder.to_export_payload(_report({"taxable_income": 0}, ReportType.GEWST))
