"""
steuerbuch.tax.ustva
~~~~~~~~~~~~~~~~~~~~
Period aggregation — Umsatzsteuer-Voranmeldung (UStVA) figures plus the
income figures the EÜR and GewSt reports need.

VAT flow
--------
Expense entries (Eingangsrechnung)
    You paid a vendor.  Their VAT charge = your Vorsteuer (input tax).
    You reclaim this from the Finanzamt.

Income entries (Ausgangsrechnung)
    You invoiced a client.  You charged VAT = Umsatzsteuer (output tax).
    You remit this to the Finanzamt.

Net UStVA liability = output_tax − input_tax
  > 0  → you owe the state
  < 0  → state owes you a refund (Erstattung)
  = 0  → break-even

Rounding
--------
VAT is rounded half-up to the cent once per entry. Totals are plain integer
sums of those rounded values, so the order of entries never matters.

Usage::

    figures = aggregate_entries(entries, Period(2024, quarter=1), config)
    print(figures.summary())
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal
from typing import Iterable

from ..config import Config
from ..exceptions import TaxComputationError, UnknownCategoryError, UnknownVatRateError
from ..models import EntryType, LedgerEntry, Period
from ..money import currency_exponent, format_amount

_ONE = Decimal("1")

# Gewerbesteuer Messzahl (§ 11 Abs. 2 GewStG)
TRADE_TAX_RATE = Decimal("0.035")


def vat_minor_units(net_minor_units: int, rate: Decimal) -> int:
    """VAT on one net amount, rounded half-up to whole minor units."""
    return int((Decimal(net_minor_units) * rate / 100).quantize(_ONE, rounding=ROUND_HALF_UP))


def trade_tax_minor_units(
    taxable_income: int,
    multiplier: int,
    allowance_eur: int,
    exponent: int = 2,
) -> int:
    """
    Gewerbesteuer in minor units.

    Trade income is rounded down to full 100 EUR, the allowance deducted,
    the Messzahl (3.5 %) applied and the result multiplied by the
    municipal Hebesatz (in percent).
    """
    scale = 10 ** exponent
    income_eur = max(taxable_income, 0) // scale
    base_eur = (income_eur // 100) * 100 - allowance_eur
    if base_eur <= 0:
        return 0
    measure = (Decimal(base_eur * scale) * TRADE_TAX_RATE).quantize(_ONE, rounding=ROUND_DOWN)
    return int((measure * Decimal(multiplier) / 100).quantize(_ONE, rounding=ROUND_HALF_UP))


# ---------------------------------------------------------------------------
# Per-rate line
# ---------------------------------------------------------------------------

@dataclass
class VatLine:
    """Aggregated figures for one VAT category, split by entry type (minor units)."""

    vat_category:  str
    vat_rate:      Decimal
    # Expense side (Vorsteuer, input tax you reclaim)
    expense_net:   int = 0
    expense_vat:   int = 0
    expense_count: int = 0
    # Income side (Umsatzsteuer, output tax you remit)
    income_net:    int = 0
    income_vat:    int = 0
    income_count:  int = 0

    @property
    def net_liability(self) -> int:
        """Output VAT − input VAT for this rate. Positive = you owe."""
        return self.income_vat - self.expense_vat

    def to_dict(self) -> dict:
        return {
            "vat_category":  self.vat_category,
            "vat_rate":      str(self.vat_rate),
            "expense_net":   self.expense_net,
            "expense_vat":   self.expense_vat,
            "expense_count": self.expense_count,
            "income_net":    self.income_net,
            "income_vat":    self.income_vat,
            "income_count":  self.income_count,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "VatLine":
        return cls(
            vat_category=data["vat_category"],
            vat_rate=Decimal(data["vat_rate"]),
            expense_net=int(data["expense_net"]),
            expense_vat=int(data["expense_vat"]),
            expense_count=int(data["expense_count"]),
            income_net=int(data["income_net"]),
            income_vat=int(data["income_vat"]),
            income_count=int(data["income_count"]),
        )


# ---------------------------------------------------------------------------
# Period figures
# ---------------------------------------------------------------------------

@dataclass
class PeriodFigures:
    """
    All tax figures of one company for one period, in integer minor units.

    ``net_liability > 0``  → you owe the Finanzamt
    ``net_liability < 0``  → the Finanzamt owes you (Erstattung)
    """

    period:                  Period
    currency:                str = "EUR"
    lines:                   dict[str, VatLine] = field(default_factory=dict)
    revenue:                 int = 0
    deductible_expenses:     int = 0
    non_deductible_expenses: int = 0
    trade_tax:               int = 0
    trade_tax_multiplier:    int = 400
    entry_count:             int = 0
    skipped_count:           int = 0

    # ------------------------------------------------------------------
    # Aggregated totals
    # ------------------------------------------------------------------

    @property
    def input_vat(self) -> int:
        """Total Vorsteuer across all rates above zero."""
        return sum(ln.expense_vat for ln in self.lines.values() if ln.vat_rate > 0)

    @property
    def output_vat(self) -> int:
        """Total Umsatzsteuer across all rates."""
        return sum(ln.income_vat for ln in self.lines.values())

    @property
    def net_liability(self) -> int:
        """output − input. Positive = you owe; negative = refund."""
        return self.output_vat - self.input_vat

    @property
    def taxable_income(self) -> int:
        """Revenue minus deductible expenses; non-deductible ones are left out."""
        return self.revenue - self.deductible_expenses

    # ------------------------------------------------------------------
    # Export
    # ------------------------------------------------------------------

    def to_dict(self) -> dict:
        return {
            "period":                  self.period.key,
            "currency":                self.currency,
            "input_vat":               self.input_vat,
            "output_vat":              self.output_vat,
            "net_liability":           self.net_liability,
            "revenue":                 self.revenue,
            "deductible_expenses":     self.deductible_expenses,
            "non_deductible_expenses": self.non_deductible_expenses,
            "taxable_income":          self.taxable_income,
            "trade_tax":               self.trade_tax,
            "trade_tax_multiplier":    self.trade_tax_multiplier,
            "entry_count":             self.entry_count,
            "skipped_count":           self.skipped_count,
            "lines":                   {k: v.to_dict() for k, v in sorted(self.lines.items())},
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PeriodFigures":
        return cls(
            period=Period.from_key(data["period"]),
            currency=data.get("currency", "EUR"),
            lines={k: VatLine.from_dict(v) for k, v in data.get("lines", {}).items()},
            revenue=int(data.get("revenue", 0)),
            deductible_expenses=int(data.get("deductible_expenses", 0)),
            non_deductible_expenses=int(data.get("non_deductible_expenses", 0)),
            trade_tax=int(data.get("trade_tax", 0)),
            trade_tax_multiplier=int(data.get("trade_tax_multiplier", 400)),
            entry_count=int(data.get("entry_count", 0)),
            skipped_count=int(data.get("skipped_count", 0)),
        )

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2, ensure_ascii=False)

    def summary(self) -> str:
        W = 52
        div  = "─" * W
        hdiv = "═" * W
        exp  = currency_exponent(self.currency)
        cur  = self.currency

        def amt(minor: int) -> str:
            return f"{format_amount(minor, exponent=exp):>12}"

        def owe_str() -> str:
            if self.net_liability > 0:
                return f"{amt(self.net_liability)} {cur}  ← Zahllast an das Finanzamt"
            elif self.net_liability < 0:
                return f"{amt(-self.net_liability)} {cur}  ← Erstattung vom Finanzamt"
            return f"{amt(0)} {cur}  (ausgeglichen)"

        lines = [
            "=" * W,
            f"  UStVA — {self.period.label} ({self.period.start} bis {self.period.end})",
            "=" * W,
            f"  Buchungen gesamt    : {self.entry_count}",
            f"  Übersprungen        : {self.skipped_count}",
        ]

        if self.lines:
            lines.append(div)
            for _, ln in sorted(self.lines.items()):
                lines += [
                    f"  USt-Satz {ln.vat_rate} % ({ln.vat_category})",
                    f"    Ausgaben (Vorsteuer)",
                    f"      Nettobetrag    : {amt(ln.expense_net)} {cur}  ({ln.expense_count} Buchungen)",
                    f"      Vorsteuer      : {amt(ln.expense_vat)} {cur}",
                    f"    Einnahmen (Umsatzsteuer)",
                    f"      Nettobetrag    : {amt(ln.income_net)} {cur}  ({ln.income_count} Buchungen)",
                    f"      Umsatzsteuer   : {amt(ln.income_vat)} {cur}",
                ]

        lines += [
            hdiv,
            f"  Gesamt Vorsteuer    : {amt(self.input_vat)} {cur}",
            f"  Gesamt Umsatzsteuer : {amt(self.output_vat)} {cur}",
            hdiv,
            f"  Zahllast / Erstatt. : {owe_str()}",
            div,
            f"  Betriebseinnahmen   : {amt(self.revenue)} {cur}",
            f"  Betriebsausgaben    : {amt(self.deductible_expenses)} {cur}",
            f"  Nicht abzugsfähig   : {amt(self.non_deductible_expenses)} {cur}",
            f"  Gewinn              : {amt(self.taxable_income)} {cur}",
            f"  Gewerbesteuer       : {amt(self.trade_tax)} {cur}  (Hebesatz {self.trade_tax_multiplier} %)",
            "=" * W,
        ]
        return "\n".join(lines)


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------

def aggregate_entries(
    entries: Iterable[LedgerEntry],
    period: Period,
    config: Config | None = None,
) -> PeriodFigures:
    """
    Compute the period figures from an iterable of ledger entries.

    Entries dated outside ``period`` are counted in ``skipped_count``.

    Raises:
        UnknownVatRateError:  an entry's VAT category is not configured.
        UnknownCategoryError: an expense has no known deductibility rule.
        TaxComputationError:  entries in a currency other than the configured one.
    """
    config = config or Config()
    figures = PeriodFigures(
        period=period,
        currency=config.currency,
        trade_tax_multiplier=config.trade_tax_multiplier,
    )

    for entry in entries:
        if not period.contains(entry.entry_date):
            figures.skipped_count += 1
            continue
        if entry.net_amount.currency != figures.currency:
            raise TaxComputationError(
                f"Ledger entry {entry.id} is in {entry.net_amount.currency}, "
                f"reports are computed in {figures.currency}"
            )

        category_key = (entry.vat_category or "").strip().lower()
        rate = config.vat_rates.get(category_key)
        if rate is None:
            raise UnknownVatRateError(entry.vat_category)

        line = figures.lines.get(category_key)
        if line is None:
            line = figures.lines[category_key] = VatLine(vat_category=category_key, vat_rate=rate)

        net = entry.net_amount.minor_units
        vat = vat_minor_units(net, rate)

        if EntryType(entry.entry_type) is EntryType.INCOME:
            line.income_net += net
            line.income_vat += vat
            line.income_count += 1
            figures.revenue += net
        else:
            deductible = config.expense_categories.get((entry.category or "").strip().lower())
            if deductible is None:
                raise UnknownCategoryError(entry.category)
            line.expense_net += net
            line.expense_vat += vat
            line.expense_count += 1
            if deductible:
                figures.deductible_expenses += net
            else:
                figures.non_deductible_expenses += net

        figures.entry_count += 1

    figures.trade_tax = trade_tax_minor_units(
        figures.taxable_income,
        config.trade_tax_multiplier,
        config.trade_tax_allowance_eur,
        currency_exponent(figures.currency),
    )
    return figures
