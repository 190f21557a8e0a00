"""
steuerbuch.reconcile
~~~~~~~~~~~~~~~~~~~~
Matches bank transactions to open invoices.

Scoring (all ``Decimal``, quantized to 4 places so ties are exact):

  gate       credit amount == invoice total (same currency, 0 minor units off)
  date       1 at the due date, falling linearly to 0 at ``window_days``
  reference  1 if the invoice number appears in reference/description,
             otherwise token overlap with invoice number + client name
  combined   date_weight * date + reference_weight * reference

``combined >= auto_match_threshold`` matches automatically; a score in
``[review_floor, auto_match_threshold)`` leaves the transaction unmatched
but lists up to ``top_n`` candidates for review. An automatic match lost to
a concurrent writer is listed for review too, with the invoices still open.

Ties: higher score, then earlier due date, then lower invoice id.
"""

from __future__ import annotations

import logging
import re
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional

from .config import Config, MatchingConfig
from .exceptions import CandidateScoringError, ReconciliationError, UnknownVatRateError
from .models import (
    BankStatement, BankTransaction, Invoice, MatchCandidate, MatchState,
    ReconciliationSummary, ReviewItem, StatementStatus,
)
from .storage.base import LedgerRepository

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())

_SCORE_Q   = Decimal("0.0001")
_ZERO      = Decimal("0")
_ONE       = Decimal("1")
_COMPACT   = re.compile(r"[^0-9a-z]")
_TOKEN     = re.compile(r"[0-9a-zäöüß]+")
_LINKED    = (MatchState.MATCHED, MatchState.MANUALLY_CONFIRMED)


def _q(value: Decimal) -> Decimal:
    return value.quantize(_SCORE_Q, rounding=ROUND_HALF_UP)


def _compact(text: str) -> str:
    return _COMPACT.sub("", text.lower())


def _tokens(text: str) -> set[str]:
    return {t for t in _TOKEN.findall(text.lower()) if len(t) > 1}


def date_score(booking_date: date, anchor: date, window_days: int) -> Decimal:
    days = abs((booking_date - anchor).days)
    if days >= window_days:
        return _ZERO
    return _q(Decimal(window_days - days) / Decimal(window_days))


def reference_score(transaction: BankTransaction, invoice: Invoice) -> Decimal:
    text = " ".join(
        part for part in (transaction.reference, transaction.description, transaction.counterparty) if part
    )
    number = _compact(invoice.invoice_number)
    if len(number) >= 3 and number in _compact(text):
        return _ONE

    wanted = _tokens(invoice.invoice_number) | _tokens(invoice.client_name or "")
    if not wanted:
        return _ZERO
    return _q(Decimal(len(wanted & _tokens(text))) / Decimal(len(wanted)))


class ReconciliationEngine:
    """
    Matches the transactions of one statement at a time.

    Only the storage layer's compare-and-set decides whether an invoice
    gets paid, so engines in several processes can run side by side.
    """

    def __init__(self, repository: LedgerRepository, config: Optional[Config] = None) -> None:
        self.repository = repository
        self.config     = config or Config()
        self.matching: MatchingConfig = self.config.get_matching_config()

    # ------------------------------------------------------------------
    # Automatic matching
    # ------------------------------------------------------------------

    def reconcile(self, company_id: str, statement_id: str) -> ReconciliationSummary:
        """
        Score every ``unmatched`` transaction of the statement against the
        company's open invoices. Safe to re-run; matched, confirmed and
        ignored transactions are skipped.

        A second call while a run for the same statement is active returns
        at once with ``in_progress=True``.
        """
        statement = self._statement(company_id, statement_id)

        if not self.repository.try_claim_reconciliation(statement_id):
            logger.info("Reconciliation of %s already running, skipping", statement_id)
            summary = self._summarize(self.repository.list_transactions(statement_id), statement_id)
            summary.in_progress = True
            return summary

        try:
            pool = {inv.id: inv for inv in self.repository.list_open_invoices(company_id)}
            review: list[ReviewItem] = []
            newly_matched = 0

            for tx in statement.transactions:
                if tx.match_state is not MatchState.UNMATCHED:
                    continue
                candidates = self.score_transaction(tx, pool.values())
                if not candidates:
                    continue

                best = candidates[0]
                if best.score >= self.matching.auto_match_threshold:
                    if self.repository.match_transaction(tx.id, best.invoice_id, MatchState.MATCHED):
                        newly_matched += 1
                        pool.pop(best.invoice_id, None)
                        logger.info(
                            "Matched transaction %s to invoice %s (score %s)",
                            tx.id, best.invoice_number, best.score,
                        )
                    else:
                        logger.info(
                            "Invoice %s or transaction %s changed concurrently, skipping",
                            best.invoice_number, tx.id,
                        )
                        current = self.repository.get_invoice(best.invoice_id)
                        if current is None or not current.is_open:
                            pool.pop(best.invoice_id, None)
                        remaining = [c for c in candidates if c.invoice_id in pool]
                        review.append(ReviewItem(transaction_id=tx.id, candidates=self._shortlist(remaining)))
                elif best.score >= self.matching.review_floor:
                    review.append(ReviewItem(transaction_id=tx.id, candidates=self._shortlist(candidates)))

            summary = self._refresh(statement_id)
            summary.newly_matched = newly_matched
            summary.review = review
            summary.manual_review_needed = len(review)
            logger.info(
                "Reconciled %s: matched=%d unmatched=%d review=%d",
                statement_id, summary.matched, summary.unmatched, summary.manual_review_needed,
            )
            return summary
        finally:
            self.repository.release_reconciliation(statement_id)

    def on_statement(self, statement: BankStatement) -> None:
        """Listener hook for ``StatementIngestor``."""
        self.reconcile(statement.company_id, statement.id)

    def score_transaction(
        self, transaction: BankTransaction, invoices: Iterable[Invoice],
    ) -> list[MatchCandidate]:
        """
        Return the amount-matching invoices as candidates, best first.

        Debits are never matched: invoices are receivables. An invoice that
        cannot be scored is logged and left out.
        """
        if transaction.amount.minor_units <= 0:
            return []

        candidates: list[MatchCandidate] = []
        for invoice in invoices:
            if invoice.company_id != transaction.company_id or not invoice.is_open:
                continue
            if invoice.total_amount != transaction.amount:
                continue
            try:
                candidates.append(self._score(transaction, invoice))
            except CandidateScoringError as exc:
                logger.warning("Skipping invoice %s: %s", invoice.id, exc)

        candidates.sort(key=lambda c: (-c.score, c.due_date or date.max, c.invoice_id))
        return candidates

    def _score(self, transaction: BankTransaction, invoice: Invoice) -> MatchCandidate:
        anchor = invoice.due_date or invoice.issue_date
        if anchor is None:
            raise CandidateScoringError(f"invoice {invoice.invoice_number!r} has neither due nor issue date")
        try:
            by_date = date_score(transaction.booking_date, anchor, self.matching.window_days)
            by_reference = reference_score(transaction, invoice)
        except (TypeError, ValueError, ArithmeticError) as exc:
            raise CandidateScoringError(
                f"cannot score invoice {invoice.invoice_number!r}", cause=exc,
            ) from exc

        combined = _q(
            self.matching.date_weight * by_date + self.matching.reference_weight * by_reference
        )
        return MatchCandidate(
            invoice_id=invoice.id,
            invoice_number=invoice.invoice_number,
            score=combined,
            date_score=by_date,
            reference_score=by_reference,
            due_date=invoice.due_date,
        )

    # ------------------------------------------------------------------
    # Manual decisions
    # ------------------------------------------------------------------

    def confirm_match(self, transaction_id: str, invoice_id: str) -> BankTransaction:
        """
        Link a transaction to an invoice as a user decision. It is never
        re-scored afterwards unless ``reset`` is called.
        """
        tx = self._transaction(transaction_id)
        if tx.match_state is MatchState.MANUALLY_CONFIRMED and tx.matched_invoice_id == invoice_id:
            return tx

        if tx.match_state is MatchState.MATCHED:
            if tx.matched_invoice_id != invoice_id:
                raise ReconciliationError(
                    f"Transaction {transaction_id} is matched to another invoice; reset it first"
                )
            if not self.repository.confirm_existing_match(transaction_id, invoice_id):
                raise ReconciliationError(f"Transaction {transaction_id} changed concurrently")
        else:
            invoice = self.repository.get_invoice(invoice_id)
            if invoice is None or invoice.company_id != tx.company_id:
                raise ReconciliationError(f"Invoice {invoice_id} not found for company {tx.company_id}")
            if not invoice.is_open:
                raise ReconciliationError(
                    f"Invoice {invoice.invoice_number} is {invoice.status.value}"
                )
            if invoice.total_amount != tx.amount:
                logger.warning(
                    "Manual match of %s to %s with differing amounts (%s vs %s)",
                    transaction_id, invoice.invoice_number, tx.amount, invoice.total_amount,
                )
            ok = self.repository.match_transaction(
                transaction_id, invoice_id, MatchState.MANUALLY_CONFIRMED,
                from_states=(MatchState.UNMATCHED, MatchState.IGNORED),
            )
            if not ok:
                raise ReconciliationError(
                    f"Invoice {invoice.invoice_number} or transaction {transaction_id} changed concurrently"
                )

        self._refresh(tx.statement_id)
        return self._transaction(transaction_id)

    def ignore(self, transaction_id: str) -> BankTransaction:
        """Mark an unmatched transaction as not needing an invoice (fees, transfers...)."""
        tx = self._transaction(transaction_id)
        if tx.match_state is MatchState.IGNORED:
            return tx
        if tx.match_state in _LINKED:
            raise ReconciliationError(f"Transaction {transaction_id} is matched; reset it first")
        if not self.repository.set_match_state(transaction_id, MatchState.IGNORED):
            raise ReconciliationError(f"Transaction {transaction_id} changed concurrently")
        self._refresh(tx.statement_id)
        return self._transaction(transaction_id)

    def reset(self, transaction_id: str) -> BankTransaction:
        """Back to ``unmatched``; an invoice it had paid is reopened."""
        tx = self._transaction(transaction_id)
        if tx.match_state is MatchState.UNMATCHED:
            return tx
        ok = self.repository.set_match_state(
            transaction_id, MatchState.UNMATCHED,
            from_states=(MatchState.MATCHED, MatchState.MANUALLY_CONFIRMED, MatchState.IGNORED),
        )
        if not ok:
            raise ReconciliationError(f"Transaction {transaction_id} changed concurrently")
        self._refresh(tx.statement_id)
        return self._transaction(transaction_id)

    def categorize(
        self, transaction_id: str, category: Optional[str], vat_category: Optional[str] = None,
    ) -> BankTransaction:
        """Set the bookkeeping category. Match state is left alone."""
        self._transaction(transaction_id)
        if vat_category is not None:
            vat_category = vat_category.strip().lower()
            if vat_category not in self.config.vat_rates:
                raise UnknownVatRateError(vat_category)
        if category is not None:
            category = category.strip().lower() or None
        self.repository.categorize_transaction(transaction_id, category, vat_category)
        return self._transaction(transaction_id)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _statement(self, company_id: str, statement_id: str) -> BankStatement:
        statement = self.repository.get_statement(statement_id)
        if statement is None or statement.company_id != company_id:
            raise ReconciliationError(f"Statement {statement_id} not found for company {company_id}")
        return statement

    def _transaction(self, transaction_id: str) -> BankTransaction:
        tx = self.repository.get_transaction(transaction_id)
        if tx is None:
            raise ReconciliationError(f"Transaction {transaction_id} not found")
        return tx

    def _shortlist(self, candidates: list[MatchCandidate]) -> list[MatchCandidate]:
        return [
            c for c in candidates[: self.matching.top_n]
            if c.score >= self.matching.review_floor
        ]

    @staticmethod
    def _summarize(transactions: list[BankTransaction], statement_id: str) -> ReconciliationSummary:
        summary = ReconciliationSummary(statement_id=statement_id)
        for tx in transactions:
            if tx.match_state in _LINKED:
                summary.matched += 1
            elif tx.match_state is MatchState.IGNORED:
                summary.ignored += 1
            else:
                summary.unmatched += 1
        return summary

    def _refresh(self, statement_id: str) -> ReconciliationSummary:
        """Recount match states and store the statement's derived status."""
        summary = self._summarize(self.repository.list_transactions(statement_id), statement_id)
        if summary.unmatched == 0:
            status = StatementStatus.RECONCILED
        elif summary.matched or summary.ignored:
            status = StatementStatus.PARTIALLY_RECONCILED
        else:
            status = StatementStatus.IMPORTED
        self.repository.update_statement_summary(statement_id, status, summary.matched)
        return summary
