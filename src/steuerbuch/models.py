"""
steuerbuch.models
~~~~~~~~~~~~~~~~~
Data models for statements, transactions, invoices, ledger entries and
tax reports.

Key design decisions
--------------------
* Every amount is a :class:`~steuerbuch.money.Money` in integer minor units.
  Transaction amounts are signed: credits positive, debits negative.

* ``ParsedStatement`` is what a decoder produces — nothing has an ID yet.
  ``BankStatement`` / ``BankTransaction`` are the stored records.

* A statement's ``content_hash`` (raw bytes + account + date) is the
  idempotency key for imports.

* A ``TaxReport`` stores its figures as a plain dict of minor units so the
  export layer can map them without recomputing anything.
"""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from .money import Money, sum_money


def _new_id() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

class Direction(str, Enum):
    """Credit = money in (positive amount), debit = money out (negative)."""

    CREDIT = "credit"
    DEBIT = "debit"

    @classmethod
    def of(cls, minor_units: int) -> "Direction":
        return cls.DEBIT if minor_units < 0 else cls.CREDIT


class MatchState(str, Enum):
    UNMATCHED = "unmatched"
    MATCHED = "matched"
    MANUALLY_CONFIRMED = "manually-confirmed"
    IGNORED = "ignored"


class StatementStatus(str, Enum):
    IMPORTED = "imported"
    PARTIALLY_RECONCILED = "partially_reconciled"
    RECONCILED = "reconciled"


class InvoiceStatus(str, Enum):
    DRAFT = "draft"
    SENT = "sent"
    PAID = "paid"
    CANCELLED = "cancelled"


class EntryType(str, Enum):
    """Income entries carry output VAT, expense entries input VAT."""

    INCOME = "income"
    EXPENSE = "expense"


class ReportType(str, Enum):
    """USt = VAT return, EUER = income-surplus statement, GewSt = trade tax."""

    UST = "USt"
    EUER = "EUER"
    GEWST = "GewSt"


class ReportStatus(str, Enum):
    DRAFT = "draft"
    GENERATED = "generated"
    SUBMITTED = "submitted"
    APPROVED = "approved"
    REJECTED = "rejected"


# Statuses in which figures and period are frozen.
LOCKED_STATUSES = frozenset({ReportStatus.SUBMITTED, ReportStatus.APPROVED, ReportStatus.REJECTED})


# ---------------------------------------------------------------------------
# Parser output
# ---------------------------------------------------------------------------

@dataclass
class ParsedTransaction:
    """One booking as read from a bank file, before it is stored."""

    booking_date:  date
    amount:        Money
    description:   str = ""
    reference:     str = ""
    counterparty:  Optional[str] = None
    value_date:    Optional[date] = None

    @property
    def direction(self) -> Direction:
        return Direction.of(self.amount.minor_units)


@dataclass
class ParsedStatement:
    """Canonical shape every decoder produces."""

    account_id:       str
    statement_date:   date
    opening_balance:  Money
    closing_balance:  Money
    transactions:     List[ParsedTransaction] = field(default_factory=list)
    source_format:    str = ""
    bank_name:        Optional[str] = None
    statement_number: Optional[str] = None

    @property
    def currency(self) -> str:
        return self.opening_balance.currency

    @property
    def transaction_total(self) -> Money:
        return sum_money((t.amount for t in self.transactions), self.currency)

    @property
    def computed_closing_balance(self) -> Money:
        return self.opening_balance + self.transaction_total


# ---------------------------------------------------------------------------
# Stored statement records
# ---------------------------------------------------------------------------

@dataclass
class BankTransaction:
    """
    A stored booking line, owned by exactly one ``BankStatement``.

    Only reconciliation changes ``match_state`` / ``matched_invoice_id``;
    only user categorization changes ``category`` / ``vat_category``.
    """

    statement_id:       str
    company_id:         str
    booking_date:       date
    amount:             Money
    description:        str = ""
    reference:          str = ""
    counterparty:       Optional[str] = None
    value_date:         Optional[date] = None
    position:           int = 0
    category:           Optional[str] = None
    vat_category:       Optional[str] = None
    match_state:        MatchState = MatchState.UNMATCHED
    matched_invoice_id: Optional[str] = None
    id:                 str = field(default_factory=_new_id)

    @property
    def direction(self) -> Direction:
        return Direction.of(self.amount.minor_units)

    def to_dict(self) -> dict:
        return {
            "id":                 self.id,
            "statement_id":       self.statement_id,
            "position":           self.position,
            "booking_date":       self.booking_date.isoformat(),
            "value_date":         self.value_date.isoformat() if self.value_date else None,
            "amount":             self.amount.minor_units,
            "currency":           self.amount.currency,
            "direction":          self.direction.value,
            "description":        self.description,
            "reference":          self.reference,
            "counterparty":       self.counterparty,
            "category":           self.category,
            "vat_category":       self.vat_category,
            "match_state":        self.match_state.value,
            "matched_invoice_id": self.matched_invoice_id,
        }


@dataclass
class BankStatement:
    """
    A stored bank statement. Never deleted; only ``status`` and
    ``matched_count`` change after import.
    """

    company_id:        str
    account_id:        str
    statement_date:    date
    opening_balance:   Money
    closing_balance:   Money
    source_format:     str
    content_hash:      str
    bank_name:         Optional[str] = None
    status:            StatementStatus = StatementStatus.IMPORTED
    transaction_count: int = 0
    matched_count:     int = 0
    imported_at:       Optional[datetime] = None
    transactions:      List[BankTransaction] = field(default_factory=list)
    id:                str = field(default_factory=_new_id)

    def to_dict(self) -> dict:
        return {
            "id":                self.id,
            "company_id":        self.company_id,
            "bank_name":         self.bank_name,
            "account_id":        self.account_id,
            "statement_date":    self.statement_date.isoformat(),
            "opening_balance":   self.opening_balance.minor_units,
            "closing_balance":   self.closing_balance.minor_units,
            "currency":          self.opening_balance.currency,
            "source_format":     self.source_format,
            "content_hash":      self.content_hash,
            "status":            self.status.value,
            "transaction_count": self.transaction_count,
            "matched_count":     self.matched_count,
            "imported_at":       self.imported_at.isoformat() if self.imported_at else None,
        }


# ---------------------------------------------------------------------------
# Invoice (owned by the invoicing workflow, read here)
# ---------------------------------------------------------------------------

@dataclass
class Invoice:
    """An outgoing invoice. Only reconciliation moves it to ``paid``."""

    company_id:          str
    invoice_number:      str
    issue_date:          date
    net_amount:          Money
    vat_amount:          Money
    total_amount:        Money
    vat_rate:            Decimal = Decimal("19")
    due_date:            Optional[date] = None
    client_name:         Optional[str] = None
    status:              InvoiceStatus = InvoiceStatus.SENT
    paid_transaction_id: Optional[str] = None
    id:                  str = field(default_factory=_new_id)

    @property
    def is_open(self) -> bool:
        return self.status not in (InvoiceStatus.PAID, InvoiceStatus.CANCELLED)


# ---------------------------------------------------------------------------
# Ledger entry (tax input)
# ---------------------------------------------------------------------------

@dataclass
class LedgerEntry:
    """
    One income or expense booking used for tax computation.

    ``vat_category`` is a key into the configured rate table
    (``standard``, ``reduced``, ...); ``category`` drives deductibility.
    """

    company_id:   str
    entry_date:   date
    entry_type:   EntryType
    net_amount:   Money
    vat_category: str = "standard"
    category:     Optional[str] = None
    description:  str = ""
    reference:    Optional[str] = None
    id:           str = field(default_factory=_new_id)


# ---------------------------------------------------------------------------
# Period
# ---------------------------------------------------------------------------

_MONTHS_DE = (
    "Januar", "Februar", "März", "April", "Mai", "Juni",
    "Juli", "August", "September", "Oktober", "November", "Dezember",
)

@dataclass(frozen=True)
class Period:
    """
    A calendar year, quarter or month.

    Bounds are ``[start, end)``: ``end`` is the first day after the period.
    """

    year:    int
    quarter: Optional[int] = None
    month:   Optional[int] = None

    def __post_init__(self) -> None:
        if self.quarter is not None and self.month is not None:
            raise ValueError("a period has either a quarter or a month, not both")
        if self.quarter is not None and not 1 <= self.quarter <= 4:
            raise ValueError(f"quarter must be 1-4, got {self.quarter}")
        if self.month is not None and not 1 <= self.month <= 12:
            raise ValueError(f"month must be 1-12, got {self.month}")
        if not 1 <= self.year <= 9998:
            raise ValueError(f"invalid year {self.year}")

    @property
    def start(self) -> date:
        if self.quarter is not None:
            return date(self.year, 3 * (self.quarter - 1) + 1, 1)
        if self.month is not None:
            return date(self.year, self.month, 1)
        return date(self.year, 1, 1)

    @property
    def end(self) -> date:
        """Exclusive end."""
        if self.quarter is not None:
            last_month = 3 * self.quarter
        elif self.month is not None:
            last_month = self.month
        else:
            last_month = 12
        if last_month == 12:
            return date(self.year + 1, 1, 1)
        return date(self.year, last_month + 1, 1)

    def contains(self, day: date | datetime) -> bool:
        d = day.date() if isinstance(day, datetime) else day
        return self.start <= d < self.end

    @property
    def key(self) -> str:
        if self.quarter is not None:
            return f"{self.year}-Q{self.quarter}"
        if self.month is not None:
            return f"{self.year}-{self.month:02d}"
        return str(self.year)

    @property
    def label(self) -> str:
        """German display label: ``Q1 2024``, ``März 2024`` or ``2024``."""
        if self.quarter is not None:
            return f"Q{self.quarter} {self.year}"
        if self.month is not None:
            return f"{_MONTHS_DE[self.month - 1]} {self.year}"
        return str(self.year)

    @classmethod
    def from_key(cls, key: str) -> "Period":
        year, _, rest = key.partition("-")
        if not rest:
            return cls(int(year))
        if rest.startswith("Q"):
            return cls(int(year), quarter=int(rest[1:]))
        return cls(int(year), month=int(rest))

    def to_dict(self) -> dict:
        return {"year": self.year, "quarter": self.quarter, "month": self.month}


# ---------------------------------------------------------------------------
# TaxReport
# ---------------------------------------------------------------------------

@dataclass
class TaxReport:
    """
    A tax report for one company, type and period.

    Once ``submitted`` the ``figures`` and ``period`` never change;
    corrections are new reports with ``corrects_report_id`` set.
    """

    company_id:         str
    report_type:        ReportType
    period:             Period
    figures:            dict = field(default_factory=dict)
    status:             ReportStatus = ReportStatus.DRAFT
    generated_at:       Optional[datetime] = None
    submitted_at:       Optional[datetime] = None
    corrects_report_id: Optional[str] = None
    id:                 str = field(default_factory=_new_id)

    @property
    def is_locked(self) -> bool:
        return self.status in LOCKED_STATUSES

    def to_dict(self) -> dict:
        return {
            "id":                 self.id,
            "company_id":         self.company_id,
            "report_type":        self.report_type.value,
            "period":             self.period.to_dict(),
            "status":             self.status.value,
            "figures":            self.figures,
            "generated_at":       self.generated_at.isoformat() if self.generated_at else None,
            "submitted_at":       self.submitted_at.isoformat() if self.submitted_at else None,
            "corrects_report_id": self.corrects_report_id,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2, ensure_ascii=False)


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

@dataclass
class ImportResult:
    """
    Top-level result returned by ``StatementImporter.import_bytes()``.

    Always check ``success`` before accessing ``statement``.
    When ``duplicate`` is True the file had been imported before and
    ``statement`` is the existing record.
    """

    success:         bool
    statement:       Optional[BankStatement] = None
    error_message:   Optional[str] = None
    processing_time: Optional[float] = None
    duplicate:       bool = False
    existing_id:     Optional[str] = None
    source:          Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "success":         self.success,
            "duplicate":       self.duplicate,
            "existing_id":     self.existing_id,
            "source":          self.source,
            "statement":       self.statement.to_dict() if self.statement else None,
            "error_message":   self.error_message,
            "processing_time": round(self.processing_time, 3) if self.processing_time else None,
        }


@dataclass(frozen=True)
class MatchCandidate:
    """A scored invoice for one transaction."""

    invoice_id:      str
    invoice_number:  str
    score:           Decimal
    date_score:      Decimal
    reference_score: Decimal
    due_date:        Optional[date] = None

    def to_dict(self) -> dict:
        return {
            "invoice_id":      self.invoice_id,
            "invoice_number":  self.invoice_number,
            "score":           str(self.score),
            "date_score":      str(self.date_score),
            "reference_score": str(self.reference_score),
        }


@dataclass
class ReviewItem:
    """A transaction left unmatched with candidates worth a human look."""

    transaction_id: str
    candidates:     List[MatchCandidate] = field(default_factory=list)


@dataclass
class ReconciliationSummary:
    """Counts are statement-wide after the run; ``newly_matched`` is this run only."""

    statement_id:         str
    matched:              int = 0
    unmatched:            int = 0
    manual_review_needed: int = 0
    ignored:              int = 0
    newly_matched:        int = 0
    review:               List[ReviewItem] = field(default_factory=list)
    in_progress:          bool = False

    def to_dict(self) -> dict:
        return {
            "statement_id":         self.statement_id,
            "matched":              self.matched,
            "unmatched":            self.unmatched,
            "manual_review_needed": self.manual_review_needed,
            "ignored":              self.ignored,
            "newly_matched":        self.newly_matched,
            "in_progress":          self.in_progress,
            "review": [
                {
                    "transaction_id": item.transaction_id,
                    "candidates":     [c.to_dict() for c in item.candidates],
                }
                for item in self.review
            ],
        }
