"""
steuerbuch.config
~~~~~~~~~~~~~~~~~
Central configuration for the steuerbuch library.

All values have defaults that work out of the box for German bank exports
and German VAT. Override any field via a ``.env`` file or environment
variables — pydantic-settings picks them up automatically.

There is no module-level instance: build one and hand it to the components
that need it::

    from steuerbuch.config import Config

    config = Config(auto_match_threshold="0.9")
    engine = ReconciliationEngine(repo, config)
"""

from __future__ import annotations

import warnings
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------

DEFAULT_VAT_RATES: dict[str, Decimal] = {
    "standard": Decimal("19"),
    "reduced":  Decimal("7"),
    "zero":     Decimal("0"),
    "exempt":   Decimal("0"),
}

# Expense category -> deductible for income tax purposes
DEFAULT_EXPENSE_CATEGORIES: dict[str, bool] = {
    "material":          True,
    "equipment":         True,
    "software":          True,
    "internet":          True,
    "telecommunication": True,
    "travel":            True,
    "education":         True,
    "utilities":         True,
    "insurance":         True,
    "rent":              True,
    "fees":              True,
    "fines":             False,
    "private":           False,
    "entertainment_nondeductible": False,
}


# ---------------------------------------------------------------------------
# Typed snapshots
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class MatchingConfig:
    """Immutable snapshot of the reconciliation scoring settings."""

    window_days:          int
    date_weight:          Decimal
    reference_weight:     Decimal
    auto_match_threshold: Decimal
    review_floor:         Decimal
    top_n:                int


class ColumnMapping(BaseModel):
    """Header names of the delimited (CSV) statement columns."""

    date:         str = "Buchungstag"
    amount:       str = "Betrag"
    description:  str = "Verwendungszweck"
    reference:    Optional[str] = "Referenz"
    counterparty: Optional[str] = "Auftraggeber/Empfänger"
    value_date:   Optional[str] = None
    balance:      Optional[str] = None  # running balance after each booking


# ---------------------------------------------------------------------------
# Main settings class
# ---------------------------------------------------------------------------

class Config(BaseSettings):
    """
    Runtime configuration for steuerbuch.

    Reads from (in priority order):
      1. Environment variables (prefixed with ``STEUERBUCH_``)
      2. A ``.env`` file in the working directory
      3. The defaults defined below
    """

    model_config = SettingsConfigDict(
        env_prefix="STEUERBUCH_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    company_id: str = Field(
        default="default",
        min_length=1,
        description="Company the CLI works on when --company is not given.",
    )
    project: Optional[str] = Field(
        default=None,
        description="Project name under ~/.steuerbuch/. Falls back to STEUERBUCH_PROJECT / 'default'.",
    )
    db_path: Optional[Path] = Field(
        default=None,
        description="Explicit SQLite path; overrides the project layout.",
    )
    archive_sources: bool = Field(
        default=True,
        description="Keep a copy of every imported statement file in the project directory.",
    )

    # ------------------------------------------------------------------
    # Statement parsing
    # ------------------------------------------------------------------

    currency: str = Field(default="EUR", description="Default currency when a file does not state one.")

    csv_delimiter:           str = Field(default=";")
    csv_decimal_separator:   str = Field(default=",")
    csv_thousands_separator: str = Field(default=".")
    csv_date_format:         str = Field(default="%d.%m.%Y")
    csv_encoding:            str = Field(default="utf-8")
    csv_columns:             ColumnMapping = Field(default_factory=ColumnMapping)

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    match_window_days: int = Field(
        default=60,
        ge=1,
        le=366,
        description="Days either side of the due date after which the date score is 0.",
    )
    date_weight: Decimal = Field(default=Decimal("0.4"), ge=0, le=1)
    reference_weight: Decimal = Field(default=Decimal("0.6"), ge=0, le=1)
    auto_match_threshold: Decimal = Field(
        default=Decimal("0.80"),
        ge=0,
        le=1,
        description="Combined score at or above which a transaction is matched automatically.",
    )
    review_floor: Decimal = Field(
        default=Decimal("0.40"),
        ge=0,
        le=1,
        description="Combined score at or above which candidates are surfaced for review.",
    )
    review_top_n: int = Field(default=3, ge=1, le=20)

    # ------------------------------------------------------------------
    # Tax
    # ------------------------------------------------------------------

    vat_rates: dict[str, Decimal] = Field(
        default_factory=lambda: dict(DEFAULT_VAT_RATES),
        description="VAT category -> rate in percent.",
    )
    expense_categories: dict[str, bool] = Field(
        default_factory=lambda: dict(DEFAULT_EXPENSE_CATEGORIES),
        description="Expense category -> deductible flag.",
    )
    trade_tax_multiplier: int = Field(
        default=400,
        ge=200,
        le=1000,
        description="Municipal Hebesatz in percent (legal minimum 200).",
    )
    trade_tax_allowance_eur: int = Field(
        default=24500,
        ge=0,
        description="Freibetrag deducted from trade income before the Messzahl.",
    )

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @field_validator("currency")
    @classmethod
    def _upper_currency(cls, v: str) -> str:
        code = v.strip().upper()
        if len(code) != 3 or not code.isalpha():
            raise ValueError(f"currency must be an ISO 4217 code, got {v!r}")
        return code

    @field_validator("vat_rates")
    @classmethod
    def _validate_rates(cls, v: dict[str, Decimal]) -> dict[str, Decimal]:
        out = {}
        for key, rate in v.items():
            if not (Decimal("0") <= rate <= Decimal("100")):
                raise ValueError(f"VAT rate for {key!r} must be between 0 and 100")
            out[key.strip().lower()] = rate
        return out

    @field_validator("expense_categories")
    @classmethod
    def _lower_categories(cls, v: dict[str, bool]) -> dict[str, bool]:
        return {key.strip().lower(): flag for key, flag in v.items()}

    @model_validator(mode="after")
    def _check_scoring(self) -> "Config":
        if self.date_weight + self.reference_weight != Decimal("1"):
            raise ValueError("date_weight and reference_weight must add up to 1")
        if self.review_floor >= self.auto_match_threshold:
            raise ValueError("review_floor must be lower than auto_match_threshold")
        if self.csv_decimal_separator == self.csv_thousands_separator:
            raise ValueError("csv decimal and thousands separators must differ")
        if self.auto_match_threshold < Decimal("0.5"):
            warnings.warn(
                f"auto_match_threshold={self.auto_match_threshold} is low. "
                "Transactions may be matched to the wrong invoice without review.",
                UserWarning,
                stacklevel=2,
            )
        return self

    # ------------------------------------------------------------------
    # Helper methods
    # ------------------------------------------------------------------

    def get_matching_config(self) -> MatchingConfig:
        """Return an immutable, typed snapshot of the reconciliation settings."""
        return MatchingConfig(
            window_days=self.match_window_days,
            date_weight=self.date_weight,
            reference_weight=self.reference_weight,
            auto_match_threshold=self.auto_match_threshold,
            review_floor=self.review_floor,
            top_n=self.review_top_n,
        )


__all__ = ["Config", "ColumnMapping", "MatchingConfig", "DEFAULT_VAT_RATES", "DEFAULT_EXPENSE_CATEGORIES"]
