"""
steuerbuch.tax.report
~~~~~~~~~~~~~~~~~~~~~
Maps a stored ``TaxReport`` to the payload handed to the submission layer.

The builder only reads ``report.figures``. It never looks at the ledger,
so a payload always reflects what was generated (and, once submitted,
what was filed). Stale figures call for an explicit regeneration.

UStVA Kennzahlen produced for ``USt`` reports:

    Kz81  taxable revenue at 19 %, net, full euros
    Kz86  taxable revenue at 7 %, net, full euros
    Kz66  deductible input VAT
    Kz83  remaining advance payment (negative = refund)
"""

from __future__ import annotations

from decimal import Decimal

from ..exceptions import TaxComputationError
from ..models import ReportType, TaxReport
from ..money import currency_exponent

_KZ_BASE_BY_RATE = {
    Decimal("19"): "Kz81",
    Decimal("7"):  "Kz86",
}

_AMOUNT_FIELDS = {
    ReportType.UST: ("output_vat", "input_vat", "net_liability"),
    ReportType.EUER: ("revenue", "deductible_expenses", "non_deductible_expenses", "taxable_income"),
    ReportType.GEWST: ("taxable_income", "trade_tax"),
}


def _decimal_str(minor_units: int, exponent: int) -> str:
    """``123456`` -> ``"1234.56"``; always ``exponent`` fraction digits."""
    value = Decimal(int(minor_units)).scaleb(-exponent)
    return f"{value:.{exponent}f}"


class ReportBuilder:
    """Pure, deterministic transform of report figures into an export payload."""

    def to_export_payload(self, report: TaxReport) -> dict:
        figures = report.figures or {}
        report_type = ReportType(report.report_type)
        currency = figures.get("currency", "EUR")
        exp = currency_exponent(currency)

        missing = [name for name in _AMOUNT_FIELDS[report_type] if name not in figures]
        if missing:
            raise TaxComputationError(
                f"Report {report.id} has incomplete figures (missing {', '.join(missing)}); regenerate it"
            )

        payload = {
            "header": {
                "report_id":          report.id,
                "company_id":         report.company_id,
                "report_type":        report_type.value,
                "status":             report.status.value,
                "is_correction":      report.corrects_report_id is not None,
                "corrects_report_id": report.corrects_report_id,
                "generated_at":       report.generated_at.isoformat() if report.generated_at else None,
                "submitted_at":       report.submitted_at.isoformat() if report.submitted_at else None,
            },
            "period": {
                "key":     report.period.key,
                "year":    report.period.year,
                "quarter": report.period.quarter,
                "month":   report.period.month,
                "start":   report.period.start.isoformat(),
                "end":     report.period.end.isoformat(),
            },
            "currency": currency,
            "amounts": {
                name: _decimal_str(figures[name], exp)
                for name in _AMOUNT_FIELDS[report_type]
            },
        }

        if report_type is ReportType.UST:
            payload["kennzahlen"] = self._kennzahlen(figures, exp)
        elif report_type is ReportType.GEWST:
            payload["hebesatz"] = figures.get("trade_tax_multiplier")

        return payload

    @staticmethod
    def _kennzahlen(figures: dict, exp: int) -> dict:
        scale = 10 ** exp
        bases = {kz: 0 for kz in _KZ_BASE_BY_RATE.values()}
        for line in figures.get("lines", {}).values():
            kz = _KZ_BASE_BY_RATE.get(Decimal(line["vat_rate"]).normalize())
            if kz is not None:
                bases[kz] += int(line["income_net"])

        # Bemessungsgrundlagen are declared in full euros, cents dropped
        result = {
            kz: str(-(abs(minor) // scale) if minor < 0 else minor // scale)
            for kz, minor in sorted(bases.items())
        }
        result["Kz66"] = _decimal_str(figures["input_vat"], exp)
        result["Kz83"] = _decimal_str(figures["net_liability"], exp)
        return result
