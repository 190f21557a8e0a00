"""
steuerbuch.tax
~~~~~~~~~~~~~~
Tax computation and reporting.

  - ``ustva``   — per-rate VAT aggregation and period figures (UStVA, EÜR, GewSt)
  - ``engine``  — report generation and the draft → submitted workflow
  - ``report``  — export payload for the submission layer
"""

from .engine import TRANSITIONS, TaxEngine
from .report import ReportBuilder
from .ustva import PeriodFigures, VatLine, aggregate_entries, trade_tax_minor_units, vat_minor_units

__all__ = [
    "PeriodFigures",
    "ReportBuilder",
    "TRANSITIONS",
    "TaxEngine",
    "VatLine",
    "aggregate_entries",
    "trade_tax_minor_units",
    "vat_minor_units",
]
