"""
steuerbuch.storage.base
~~~~~~~~~~~~~~~~~~~~~~~
Abstract repository interface.

The uniqueness rules the core relies on live behind this boundary, so
they hold across worker processes:

* one statement per ``(company, account, statement date, content hash)``
* one unsubmitted and one submitted original report per
  ``(company, report type, period)``
* an invoice leaves the open states at most once (compare-and-set)
"""

from __future__ import annotations

from datetime import date
from typing import Iterable, Protocol, runtime_checkable

from ..models import (
    BankStatement, BankTransaction, Invoice, LedgerEntry, MatchState,
    ReportStatus, StatementStatus, TaxReport,
)


@runtime_checkable
class LedgerRepository(Protocol):
    """Storage abstraction for statements, invoices, ledger entries and reports."""

    # -- statements ------------------------------------------------------

    def save_statement(self, statement: BankStatement) -> BankStatement:
        """
        Persist a statement and all its transactions atomically.

        Raises ``DuplicateImportError`` if the idempotency key is taken.
        """
        ...

    def find_statement(
        self, company_id: str, account_id: str, statement_date: date, content_hash: str,
    ) -> BankStatement | None:
        """Look up a statement by its idempotency key."""
        ...

    def get_statement(self, statement_id: str) -> BankStatement | None:
        """Fetch a statement with its transactions."""
        ...

    def list_statements(self, company_id: str) -> Iterable[BankStatement]:
        """All statements of a company, newest first (without transactions)."""
        ...

    def update_statement_summary(
        self, statement_id: str, status: StatementStatus, matched_count: int,
    ) -> None:
        """Store the derived reconciliation summary."""
        ...

    # -- transactions ----------------------------------------------------

    def get_transaction(self, transaction_id: str) -> BankTransaction | None:
        ...

    def list_transactions(self, statement_id: str) -> list[BankTransaction]:
        """Transactions of a statement in file order."""
        ...

    def match_transaction(
        self,
        transaction_id: str,
        invoice_id: str,
        state: MatchState = MatchState.MATCHED,
        *,
        from_states: Iterable[MatchState] = (MatchState.UNMATCHED,),
    ) -> bool:
        """
        Atomically mark the invoice paid (only if still open) and link the
        transaction (only if still in ``from_states``). Returns False if
        either precondition no longer holds; nothing is changed in that case.
        """
        ...

    def confirm_existing_match(self, transaction_id: str, invoice_id: str) -> bool:
        """Promote ``matched`` to ``manually-confirmed`` for the same invoice."""
        ...

    def set_match_state(
        self,
        transaction_id: str,
        state: MatchState,
        *,
        from_states: Iterable[MatchState] = (MatchState.UNMATCHED,),
    ) -> bool:
        """Move a transaction to an unlinked state, reopening its invoice if any."""
        ...

    def categorize_transaction(
        self, transaction_id: str, category: str | None, vat_category: str | None,
    ) -> bool:
        ...

    # -- reconciliation run claims ---------------------------------------

    def try_claim_reconciliation(self, statement_id: str) -> bool:
        """Claim the statement for one reconciliation run. False if already claimed."""
        ...

    def release_reconciliation(self, statement_id: str) -> None:
        ...

    # -- invoices --------------------------------------------------------

    def save_invoice(self, invoice: Invoice) -> Invoice:
        ...

    def get_invoice(self, invoice_id: str) -> Invoice | None:
        ...

    def list_open_invoices(self, company_id: str) -> list[Invoice]:
        """Invoices whose status is neither paid nor cancelled."""
        ...

    def list_invoices(self, company_id: str) -> list[Invoice]:
        ...

    # -- ledger ----------------------------------------------------------

    def save_ledger_entry(self, entry: LedgerEntry) -> LedgerEntry:
        ...

    def save_ledger_entries(self, entries: Iterable[LedgerEntry]) -> None:
        ...

    def find_ledger_entries(self, company_id: str, start: date, end: date) -> list[LedgerEntry]:
        """Entries with ``start <= entry_date < end``."""
        ...

    # -- tax reports -----------------------------------------------------

    def save_report(self, report: TaxReport) -> TaxReport:
        """Insert a new report."""
        ...

    def save_draft_report(self, report: TaxReport) -> TaxReport:
        """Insert a draft, or overwrite the existing unsubmitted report for the same key."""
        ...

    def get_report(self, report_id: str) -> TaxReport | None:
        ...

    def find_reports(
        self, company_id: str, report_type: str | None = None, period_key: str | None = None,
    ) -> list[TaxReport]:
        ...

    def update_report_status(self, report_id: str, status: ReportStatus) -> TaxReport:
        ...

    def delete_report(self, report_id: str) -> bool:
        """Delete an unsubmitted report. Raises ``ImmutableReportError`` otherwise."""
        ...

    def close(self) -> None:
        """Release connections."""
        ...
