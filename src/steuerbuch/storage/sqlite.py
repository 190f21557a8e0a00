"""
steuerbuch.storage.sqlite
~~~~~~~~~~~~~~~~~~~~~~~~~
SQLite-backed ledger repository.

Tables
------
bank_statements      — one row per imported file, unique per idempotency key
bank_transactions    — booking lines, FK to statement, match state + category
invoices             — outgoing invoices (written by the invoicing workflow)
ledger_entries       — income / expense bookings used by the tax engine
tax_reports          — USt / EUER / GewSt reports, figures stored as JSON
reconciliation_runs  — one claim row per statement while a run is active

Amounts are stored as INTEGER minor units next to a currency column.

Immutability is enforced by triggers, not just by the Python layer:
statements and transactions can never be deleted and their balances and
amounts never change; a submitted / approved / rejected report can have
neither its figures nor its period changed, nor be deleted.

Default path: ``~/.steuerbuch/default/steuerbuch.db``
"""

from __future__ import annotations

import json
import sqlite3
import threading
from contextlib import contextmanager
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path
from typing import Iterable, Iterator

from .project import resolve_project
from ..exceptions import (
    DuplicateImportError, DuplicatePeriodError, ImmutableReportError, ReportNotFoundError,
)
from ..models import (
    BankStatement, BankTransaction, EntryType, Invoice, InvoiceStatus, LedgerEntry,
    MatchState, Period, ReportStatus, ReportType, StatementStatus, TaxReport,
)
from ..money import Money

_SCHEMA_VERSION = 1

_LINKED_STATES   = (MatchState.MATCHED, MatchState.MANUALLY_CONFIRMED)
_UNLINKED_STATES = (MatchState.UNMATCHED, MatchState.IGNORED)


class _Conflict(Exception):
    """Internal: a compare-and-set precondition failed, roll back."""


class SQLiteRepository:
    """Persistent SQLite storage implementing ``LedgerRepository``."""

    def __init__(self, db_path: Path | str | None = None) -> None:
        self.db_path = Path(db_path) if db_path else resolve_project().db_path
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False, timeout=30)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA foreign_keys=ON")
        self._init_schema()

    # ------------------------------------------------------------------
    # Context manager
    # ------------------------------------------------------------------

    def __enter__(self) -> "SQLiteRepository":
        return self

    def __exit__(self, *_) -> None:
        self.close()

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    # ------------------------------------------------------------------
    # Schema
    # ------------------------------------------------------------------

    def _init_schema(self) -> None:
        with self._lock:
            version = self._conn.execute("PRAGMA user_version").fetchone()[0]
            if version == 0:
                self._create_tables()
                self._conn.execute(f"PRAGMA user_version = {_SCHEMA_VERSION}")
                self._conn.commit()

    def _create_tables(self) -> None:
        self._conn.executescript("""
            CREATE TABLE IF NOT EXISTS bank_statements (
                id                TEXT PRIMARY KEY,
                company_id        TEXT NOT NULL,
                account_id        TEXT NOT NULL,
                bank_name         TEXT,
                statement_date    TEXT NOT NULL,
                opening_balance   INTEGER NOT NULL,
                closing_balance   INTEGER NOT NULL,
                currency          TEXT NOT NULL,
                source_format     TEXT NOT NULL,
                content_hash      TEXT NOT NULL,
                status            TEXT NOT NULL DEFAULT 'imported',
                transaction_count INTEGER NOT NULL DEFAULT 0,
                matched_count     INTEGER NOT NULL DEFAULT 0,
                imported_at       TEXT NOT NULL,
                UNIQUE (company_id, account_id, statement_date, content_hash)
            );

            CREATE INDEX IF NOT EXISTS idx_statements_company
                ON bank_statements (company_id, statement_date);

            CREATE TABLE IF NOT EXISTS invoices (
                id                  TEXT PRIMARY KEY,
                company_id          TEXT NOT NULL,
                invoice_number      TEXT NOT NULL,
                client_name         TEXT,
                issue_date          TEXT NOT NULL,
                due_date            TEXT,
                net_amount          INTEGER NOT NULL,
                vat_amount          INTEGER NOT NULL,
                total_amount        INTEGER NOT NULL,
                currency            TEXT NOT NULL,
                vat_rate            TEXT NOT NULL,
                status              TEXT NOT NULL DEFAULT 'sent',
                paid_transaction_id TEXT,
                UNIQUE (company_id, invoice_number)
            );

            CREATE INDEX IF NOT EXISTS idx_invoices_open
                ON invoices (company_id, status);

            CREATE TABLE IF NOT EXISTS bank_transactions (
                id                 TEXT PRIMARY KEY,
                statement_id       TEXT NOT NULL REFERENCES bank_statements(id),
                company_id         TEXT NOT NULL,
                position           INTEGER NOT NULL,
                booking_date       TEXT NOT NULL,
                value_date         TEXT,
                amount             INTEGER NOT NULL,
                currency           TEXT NOT NULL,
                description        TEXT NOT NULL DEFAULT '',
                reference          TEXT NOT NULL DEFAULT '',
                counterparty       TEXT,
                category           TEXT,
                vat_category       TEXT,
                match_state        TEXT NOT NULL DEFAULT 'unmatched',
                matched_invoice_id TEXT REFERENCES invoices(id),
                CHECK ((match_state IN ('matched', 'manually-confirmed'))
                       = (matched_invoice_id IS NOT NULL))
            );

            CREATE INDEX IF NOT EXISTS idx_tx_statement
                ON bank_transactions (statement_id, position);
            CREATE UNIQUE INDEX IF NOT EXISTS ux_tx_invoice
                ON bank_transactions (matched_invoice_id)
                WHERE matched_invoice_id IS NOT NULL;

            CREATE TABLE IF NOT EXISTS ledger_entries (
                id           TEXT PRIMARY KEY,
                company_id   TEXT NOT NULL,
                entry_date   TEXT NOT NULL,
                entry_type   TEXT NOT NULL,
                net_amount   INTEGER NOT NULL,
                currency     TEXT NOT NULL,
                vat_category TEXT NOT NULL,
                category     TEXT,
                description  TEXT NOT NULL DEFAULT '',
                reference    TEXT
            );

            CREATE INDEX IF NOT EXISTS idx_ledger_period
                ON ledger_entries (company_id, entry_date);

            CREATE TABLE IF NOT EXISTS tax_reports (
                id                 TEXT PRIMARY KEY,
                company_id         TEXT NOT NULL,
                report_type        TEXT NOT NULL,
                period_key         TEXT NOT NULL,
                status             TEXT NOT NULL DEFAULT 'draft',
                figures            TEXT NOT NULL,
                generated_at       TEXT,
                submitted_at       TEXT,
                corrects_report_id TEXT REFERENCES tax_reports(id)
            );

            CREATE INDEX IF NOT EXISTS idx_reports_key
                ON tax_reports (company_id, report_type, period_key);
            CREATE UNIQUE INDEX IF NOT EXISTS ux_reports_open
                ON tax_reports (company_id, report_type, period_key)
                WHERE status IN ('draft', 'generated');
            CREATE UNIQUE INDEX IF NOT EXISTS ux_reports_filed
                ON tax_reports (company_id, report_type, period_key)
                WHERE status IN ('submitted', 'approved', 'rejected')
                  AND corrects_report_id IS NULL;

            CREATE TABLE IF NOT EXISTS reconciliation_runs (
                statement_id TEXT PRIMARY KEY REFERENCES bank_statements(id),
                started_at   TEXT NOT NULL
            );

            CREATE TRIGGER IF NOT EXISTS trg_statements_no_delete
            BEFORE DELETE ON bank_statements
            BEGIN
                SELECT RAISE(ABORT, 'bank statements cannot be deleted');
            END;

            CREATE TRIGGER IF NOT EXISTS trg_statements_frozen
            BEFORE UPDATE OF company_id, account_id, statement_date, opening_balance,
                             closing_balance, currency, content_hash
            ON bank_statements
            BEGIN
                SELECT RAISE(ABORT, 'bank statement balances are immutable');
            END;

            CREATE TRIGGER IF NOT EXISTS trg_transactions_no_delete
            BEFORE DELETE ON bank_transactions
            BEGIN
                SELECT RAISE(ABORT, 'bank transactions cannot be deleted');
            END;

            CREATE TRIGGER IF NOT EXISTS trg_transactions_frozen
            BEFORE UPDATE OF statement_id, booking_date, value_date, amount, currency
            ON bank_transactions
            BEGIN
                SELECT RAISE(ABORT, 'bank transaction amounts are immutable');
            END;

            CREATE TRIGGER IF NOT EXISTS trg_reports_locked_update
            BEFORE UPDATE OF company_id, report_type, period_key, figures, corrects_report_id
            ON tax_reports
            WHEN OLD.status IN ('submitted', 'approved', 'rejected')
            BEGIN
                SELECT RAISE(ABORT, 'tax report is locked');
            END;

            CREATE TRIGGER IF NOT EXISTS trg_reports_locked_reopen
            BEFORE UPDATE OF status ON tax_reports
            WHEN OLD.status IN ('submitted', 'approved', 'rejected')
             AND NEW.status IN ('draft', 'generated')
            BEGIN
                SELECT RAISE(ABORT, 'tax report is locked');
            END;

            CREATE TRIGGER IF NOT EXISTS trg_reports_locked_delete
            BEFORE DELETE ON tax_reports
            WHEN OLD.status IN ('submitted', 'approved', 'rejected')
            BEGIN
                SELECT RAISE(ABORT, 'tax report is locked');
            END;
        """)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """One atomic unit of work: commit on success, roll back on any error."""
        with self._lock:
            try:
                yield self._conn
            except BaseException:
                self._conn.rollback()
                raise
            else:
                self._conn.commit()

    def _query(self, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        with self._lock:
            return self._conn.execute(sql, params).fetchall()

    def _query_one(self, sql: str, params: tuple = ()) -> sqlite3.Row | None:
        with self._lock:
            return self._conn.execute(sql, params).fetchone()

    @staticmethod
    def _now() -> str:
        return datetime.now(timezone.utc).isoformat()

    @staticmethod
    def _date(v: str | None) -> date | None:
        return date.fromisoformat(v) if v else None

    @staticmethod
    def _datetime(v: str | None) -> datetime | None:
        return datetime.fromisoformat(v) if v else None

    # ------------------------------------------------------------------
    # Statements
    # ------------------------------------------------------------------

    def save_statement(self, statement: BankStatement) -> BankStatement:
        """
        Persist the statement and every transaction in one SQLite transaction.

        Raises ``DuplicateImportError`` when another import already stored
        a statement with the same idempotency key.
        """
        imported_at = statement.imported_at or datetime.now(timezone.utc)
        currency = statement.opening_balance.currency
        try:
            with self._transaction() as conn:
                conn.execute(
                    """INSERT INTO bank_statements
                       (id, company_id, account_id, bank_name, statement_date,
                        opening_balance, closing_balance, currency, source_format,
                        content_hash, status, transaction_count, matched_count, imported_at)
                       VALUES (?,?,?,?,?,?,?,?,?,?,?,?,?,?)""",
                    (
                        statement.id, statement.company_id, statement.account_id,
                        statement.bank_name, statement.statement_date.isoformat(),
                        statement.opening_balance.minor_units,
                        statement.closing_balance.minor_units, currency,
                        statement.source_format, statement.content_hash,
                        statement.status.value, len(statement.transactions),
                        statement.matched_count, imported_at.isoformat(),
                    ),
                )
                conn.executemany(
                    """INSERT INTO bank_transactions
                       (id, statement_id, company_id, position, booking_date, value_date,
                        amount, currency, description, reference, counterparty,
                        category, vat_category, match_state, matched_invoice_id)
                       VALUES (?,?,?,?,?,?,?,?,?,?,?,?,?,?,?)""",
                    [
                        (
                            tx.id, statement.id, statement.company_id, tx.position,
                            tx.booking_date.isoformat(),
                            tx.value_date.isoformat() if tx.value_date else None,
                            tx.amount.minor_units,
                            tx.amount.currency, tx.description, tx.reference,
                            tx.counterparty, tx.category, tx.vat_category,
                            tx.match_state.value, tx.matched_invoice_id,
                        )
                        for tx in statement.transactions
                    ],
                )
        except sqlite3.IntegrityError as exc:
            existing = self.find_statement(
                statement.company_id, statement.account_id,
                statement.statement_date, statement.content_hash,
            )
            if existing is None:
                raise
            raise DuplicateImportError(
                f"Statement for account {statement.account_id} on "
                f"{statement.statement_date.isoformat()} was already imported",
                existing_id=existing.id,
            ) from exc

        statement.imported_at = imported_at
        statement.transaction_count = len(statement.transactions)
        return statement

    def find_statement(
        self, company_id: str, account_id: str, statement_date: date, content_hash: str,
    ) -> BankStatement | None:
        row = self._query_one(
            """SELECT * FROM bank_statements
               WHERE company_id = ? AND account_id = ?
                 AND statement_date = ? AND content_hash = ?""",
            (company_id, account_id, statement_date.isoformat(), content_hash),
        )
        return self._row_to_statement(row, with_transactions=True) if row else None

    def get_statement(self, statement_id: str) -> BankStatement | None:
        row = self._query_one("SELECT * FROM bank_statements WHERE id = ?", (statement_id,))
        return self._row_to_statement(row, with_transactions=True) if row else None

    def list_statements(self, company_id: str) -> Iterable[BankStatement]:
        rows = self._query(
            """SELECT * FROM bank_statements WHERE company_id = ?
               ORDER BY statement_date DESC, imported_at DESC""",
            (company_id,),
        )
        return [self._row_to_statement(row, with_transactions=False) for row in rows]

    def update_statement_summary(
        self, statement_id: str, status: StatementStatus, matched_count: int,
    ) -> None:
        with self._transaction() as conn:
            conn.execute(
                "UPDATE bank_statements SET status = ?, matched_count = ? WHERE id = ?",
                (StatementStatus(status).value, matched_count, statement_id),
            )

    def _row_to_statement(self, row: sqlite3.Row, *, with_transactions: bool) -> BankStatement:
        currency = row["currency"]
        statement = BankStatement(
            id=row["id"],
            company_id=row["company_id"],
            account_id=row["account_id"],
            bank_name=row["bank_name"],
            statement_date=self._date(row["statement_date"]),
            opening_balance=Money(row["opening_balance"], currency),
            closing_balance=Money(row["closing_balance"], currency),
            source_format=row["source_format"],
            content_hash=row["content_hash"],
            status=StatementStatus(row["status"]),
            transaction_count=row["transaction_count"],
            matched_count=row["matched_count"],
            imported_at=self._datetime(row["imported_at"]),
        )
        if with_transactions:
            statement.transactions = self.list_transactions(statement.id)
        return statement

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def get_transaction(self, transaction_id: str) -> BankTransaction | None:
        row = self._query_one("SELECT * FROM bank_transactions WHERE id = ?", (transaction_id,))
        return self._row_to_transaction(row) if row else None

    def list_transactions(self, statement_id: str) -> list[BankTransaction]:
        rows = self._query(
            "SELECT * FROM bank_transactions WHERE statement_id = ? ORDER BY position ASC",
            (statement_id,),
        )
        return [self._row_to_transaction(row) for row in rows]

    def match_transaction(
        self,
        transaction_id: str,
        invoice_id: str,
        state: MatchState = MatchState.MATCHED,
        *,
        from_states: Iterable[MatchState] = (MatchState.UNMATCHED,),
    ) -> bool:
        """
        Compare-and-set: the invoice must still be open and the transaction
        still in one of ``from_states``. Both rows change together or not
        at all.
        """
        state = MatchState(state)
        if state not in _LINKED_STATES:
            raise ValueError(f"{state.value!r} does not link an invoice")
        allowed = tuple(MatchState(s).value for s in from_states)
        placeholders = ",".join("?" * len(allowed))
        try:
            with self._transaction() as conn:
                cur = conn.execute(
                    """UPDATE invoices SET status = 'paid', paid_transaction_id = ?
                       WHERE id = ? AND status NOT IN ('paid', 'cancelled')""",
                    (transaction_id, invoice_id),
                )
                if cur.rowcount != 1:
                    raise _Conflict()
                cur = conn.execute(
                    f"""UPDATE bank_transactions
                        SET match_state = ?, matched_invoice_id = ?
                        WHERE id = ? AND match_state IN ({placeholders})""",
                    (state.value, invoice_id, transaction_id, *allowed),
                )
                if cur.rowcount != 1:
                    raise _Conflict()
        except _Conflict:
            return False
        return True

    def confirm_existing_match(self, transaction_id: str, invoice_id: str) -> bool:
        """Turn an automatic match into a manual confirmation of the same invoice."""
        with self._transaction() as conn:
            cur = conn.execute(
                """UPDATE bank_transactions SET match_state = 'manually-confirmed'
                   WHERE id = ? AND match_state = 'matched' AND matched_invoice_id = ?""",
                (transaction_id, invoice_id),
            )
        return cur.rowcount == 1

    def set_match_state(
        self,
        transaction_id: str,
        state: MatchState,
        *,
        from_states: Iterable[MatchState] = (MatchState.UNMATCHED,),
    ) -> bool:
        """
        Move a transaction to ``unmatched`` or ``ignored``.

        If it was linked to an invoice, the invoice is reopened (``sent``)
        in the same SQLite transaction.
        """
        state = MatchState(state)
        if state not in _UNLINKED_STATES:
            raise ValueError(f"{state.value!r} requires an invoice")
        allowed = tuple(MatchState(s).value for s in from_states)
        placeholders = ",".join("?" * len(allowed))
        try:
            with self._transaction() as conn:
                row = conn.execute(
                    f"""SELECT matched_invoice_id FROM bank_transactions
                        WHERE id = ? AND match_state IN ({placeholders})""",
                    (transaction_id, *allowed),
                ).fetchone()
                if row is None:
                    raise _Conflict()
                conn.execute(
                    """UPDATE bank_transactions
                       SET match_state = ?, matched_invoice_id = NULL
                       WHERE id = ?""",
                    (state.value, transaction_id),
                )
                if row["matched_invoice_id"]:
                    conn.execute(
                        """UPDATE invoices SET status = 'sent', paid_transaction_id = NULL
                           WHERE id = ? AND paid_transaction_id = ?""",
                        (row["matched_invoice_id"], transaction_id),
                    )
        except _Conflict:
            return False
        return True

    def categorize_transaction(
        self, transaction_id: str, category: str | None, vat_category: str | None,
    ) -> bool:
        with self._transaction() as conn:
            cur = conn.execute(
                "UPDATE bank_transactions SET category = ?, vat_category = ? WHERE id = ?",
                (category, vat_category, transaction_id),
            )
        return cur.rowcount > 0

    def _row_to_transaction(self, row: sqlite3.Row) -> BankTransaction:
        return BankTransaction(
            id=row["id"],
            statement_id=row["statement_id"],
            company_id=row["company_id"],
            position=row["position"],
            booking_date=self._date(row["booking_date"]),
            value_date=self._date(row["value_date"]),
            amount=Money(row["amount"], row["currency"]),
            description=row["description"] or "",
            reference=row["reference"] or "",
            counterparty=row["counterparty"],
            category=row["category"],
            vat_category=row["vat_category"],
            match_state=MatchState(row["match_state"]),
            matched_invoice_id=row["matched_invoice_id"],
        )

    # ------------------------------------------------------------------
    # Reconciliation run claims
    # ------------------------------------------------------------------

    def try_claim_reconciliation(
        self, statement_id: str, *, stale_after: timedelta = timedelta(minutes=30),
    ) -> bool:
        """Insert the claim row. Claims older than ``stale_after`` are taken over."""
        cutoff = (datetime.now(timezone.utc) - stale_after).isoformat()
        try:
            with self._transaction() as conn:
                conn.execute(
                    "DELETE FROM reconciliation_runs WHERE statement_id = ? AND started_at < ?",
                    (statement_id, cutoff),
                )
                conn.execute(
                    "INSERT INTO reconciliation_runs (statement_id, started_at) VALUES (?, ?)",
                    (statement_id, self._now()),
                )
        except sqlite3.IntegrityError:
            return False
        return True

    def release_reconciliation(self, statement_id: str) -> None:
        with self._transaction() as conn:
            conn.execute("DELETE FROM reconciliation_runs WHERE statement_id = ?", (statement_id,))

    # ------------------------------------------------------------------
    # Invoices
    # ------------------------------------------------------------------

    def save_invoice(self, invoice: Invoice) -> Invoice:
        """
        Insert or update an invoice as supplied by the invoicing workflow.

        A paid invoice keeps its ``paid`` status and payment link; only
        reconciliation moves it in or out of that state.
        """
        with self._transaction() as conn:
            conn.execute(
                """INSERT INTO invoices
                   (id, company_id, invoice_number, client_name, issue_date, due_date,
                    net_amount, vat_amount, total_amount, currency, vat_rate,
                    status, paid_transaction_id)
                   VALUES (?,?,?,?,?,?,?,?,?,?,?,?,?)
                   ON CONFLICT(id) DO UPDATE SET
                       invoice_number = excluded.invoice_number,
                       client_name    = excluded.client_name,
                       issue_date     = excluded.issue_date,
                       due_date       = excluded.due_date,
                       net_amount     = excluded.net_amount,
                       vat_amount     = excluded.vat_amount,
                       total_amount   = excluded.total_amount,
                       currency       = excluded.currency,
                       vat_rate       = excluded.vat_rate,
                       status = CASE WHEN invoices.status = 'paid'
                                     THEN invoices.status ELSE excluded.status END""",
                (
                    invoice.id, invoice.company_id, invoice.invoice_number,
                    invoice.client_name, invoice.issue_date.isoformat(),
                    invoice.due_date.isoformat() if invoice.due_date else None,
                    invoice.net_amount.minor_units, invoice.vat_amount.minor_units,
                    invoice.total_amount.minor_units, invoice.total_amount.currency,
                    str(invoice.vat_rate), InvoiceStatus(invoice.status).value,
                    invoice.paid_transaction_id,
                ),
            )
        return invoice

    def get_invoice(self, invoice_id: str) -> Invoice | None:
        row = self._query_one("SELECT * FROM invoices WHERE id = ?", (invoice_id,))
        return self._row_to_invoice(row) if row else None

    def list_open_invoices(self, company_id: str) -> list[Invoice]:
        rows = self._query(
            """SELECT * FROM invoices
               WHERE company_id = ? AND status NOT IN ('paid', 'cancelled')
               ORDER BY id ASC""",
            (company_id,),
        )
        return [self._row_to_invoice(row) for row in rows]

    def list_invoices(self, company_id: str) -> list[Invoice]:
        rows = self._query(
            "SELECT * FROM invoices WHERE company_id = ? ORDER BY issue_date ASC, id ASC",
            (company_id,),
        )
        return [self._row_to_invoice(row) for row in rows]

    def _row_to_invoice(self, row: sqlite3.Row) -> Invoice:
        currency = row["currency"]
        return Invoice(
            id=row["id"],
            company_id=row["company_id"],
            invoice_number=row["invoice_number"],
            client_name=row["client_name"],
            issue_date=self._date(row["issue_date"]),
            due_date=self._date(row["due_date"]),
            net_amount=Money(row["net_amount"], currency),
            vat_amount=Money(row["vat_amount"], currency),
            total_amount=Money(row["total_amount"], currency),
            vat_rate=Decimal(row["vat_rate"]),
            status=InvoiceStatus(row["status"]),
            paid_transaction_id=row["paid_transaction_id"],
        )

    # ------------------------------------------------------------------
    # Ledger entries
    # ------------------------------------------------------------------

    def save_ledger_entry(self, entry: LedgerEntry) -> LedgerEntry:
        self.save_ledger_entries([entry])
        return entry

    def save_ledger_entries(self, entries: Iterable[LedgerEntry]) -> None:
        with self._transaction() as conn:
            conn.executemany(
                """INSERT INTO ledger_entries
                   (id, company_id, entry_date, entry_type, net_amount, currency,
                    vat_category, category, description, reference)
                   VALUES (?,?,?,?,?,?,?,?,?,?)""",
                [
                    (
                        e.id, e.company_id, e.entry_date.isoformat(),
                        EntryType(e.entry_type).value, e.net_amount.minor_units,
                        e.net_amount.currency, e.vat_category, e.category,
                        e.description, e.reference,
                    )
                    for e in entries
                ],
            )

    def find_ledger_entries(self, company_id: str, start: date, end: date) -> list[LedgerEntry]:
        rows = self._query(
            """SELECT * FROM ledger_entries
               WHERE company_id = ? AND entry_date >= ? AND entry_date < ?
               ORDER BY entry_date ASC, id ASC""",
            (company_id, start.isoformat(), end.isoformat()),
        )
        return [
            LedgerEntry(
                id=row["id"],
                company_id=row["company_id"],
                entry_date=self._date(row["entry_date"]),
                entry_type=EntryType(row["entry_type"]),
                net_amount=Money(row["net_amount"], row["currency"]),
                vat_category=row["vat_category"],
                category=row["category"],
                description=row["description"] or "",
                reference=row["reference"],
            )
            for row in rows
        ]

    # ------------------------------------------------------------------
    # Tax reports
    # ------------------------------------------------------------------

    def save_report(self, report: TaxReport) -> TaxReport:
        try:
            with self._transaction() as conn:
                self._insert_report(conn, report)
        except sqlite3.IntegrityError as exc:
            self._raise_duplicate_period(report, exc)
        return report

    def save_draft_report(self, report: TaxReport) -> TaxReport:
        """
        Insert ``report`` as a draft, or overwrite the figures of the open
        (draft / generated) report for the same key, keeping its ID.
        """
        report.status = ReportStatus.DRAFT
        for attempt in range(2):
            try:
                with self._transaction() as conn:
                    row = conn.execute(
                        """SELECT id FROM tax_reports
                           WHERE company_id = ? AND report_type = ? AND period_key = ?
                             AND status IN ('draft', 'generated')""",
                        (report.company_id, ReportType(report.report_type).value, report.period.key),
                    ).fetchone()
                    if row is None:
                        self._insert_report(conn, report)
                    else:
                        report.id = row["id"]
                        conn.execute(
                            """UPDATE tax_reports
                               SET figures = ?, status = 'draft', generated_at = ?,
                                   corrects_report_id = ?
                               WHERE id = ?""",
                            (
                                json.dumps(report.figures, sort_keys=True),
                                report.generated_at.isoformat() if report.generated_at else None,
                                report.corrects_report_id, report.id,
                            ),
                        )
                return report
            except sqlite3.IntegrityError:
                # lost an insert race against a concurrent draft; overwrite it instead
                if attempt:
                    raise
        return report

    def get_report(self, report_id: str) -> TaxReport | None:
        row = self._query_one("SELECT * FROM tax_reports WHERE id = ?", (report_id,))
        return self._row_to_report(row) if row else None

    def find_reports(
        self, company_id: str, report_type: str | None = None, period_key: str | None = None,
    ) -> list[TaxReport]:
        clauses, params = ["company_id = ?"], [company_id]
        if report_type is not None:
            clauses.append("report_type = ?")
            params.append(ReportType(report_type).value)
        if period_key is not None:
            clauses.append("period_key = ?")
            params.append(period_key)
        rows = self._query(
            f"""SELECT * FROM tax_reports WHERE {' AND '.join(clauses)}
                ORDER BY period_key ASC, generated_at ASC""",
            tuple(params),
        )
        return [self._row_to_report(row) for row in rows]

    def update_report_status(self, report_id: str, status: ReportStatus) -> TaxReport:
        status = ReportStatus(status)
        current = self.get_report(report_id)
        if current is None:
            raise ReportNotFoundError(report_id)
        try:
            with self._transaction() as conn:
                if status is ReportStatus.SUBMITTED:
                    conn.execute(
                        "UPDATE tax_reports SET status = ?, submitted_at = ? WHERE id = ?",
                        (status.value, self._now(), report_id),
                    )
                else:
                    conn.execute(
                        "UPDATE tax_reports SET status = ? WHERE id = ?",
                        (status.value, report_id),
                    )
        except sqlite3.IntegrityError as exc:
            if "locked" in str(exc):
                raise ImmutableReportError(report_id, current.status.value) from exc
            self._raise_duplicate_period(current, exc)
        return self.get_report(report_id)

    def delete_report(self, report_id: str) -> bool:
        current = self.get_report(report_id)
        if current is None:
            return False
        try:
            with self._transaction() as conn:
                cur = conn.execute("DELETE FROM tax_reports WHERE id = ?", (report_id,))
        except sqlite3.IntegrityError as exc:
            raise ImmutableReportError(report_id, current.status.value) from exc
        return cur.rowcount > 0

    def _insert_report(self, conn: sqlite3.Connection, report: TaxReport) -> None:
        conn.execute(
            """INSERT INTO tax_reports
               (id, company_id, report_type, period_key, status, figures,
                generated_at, submitted_at, corrects_report_id)
               VALUES (?,?,?,?,?,?,?,?,?)""",
            (
                report.id, report.company_id, ReportType(report.report_type).value,
                report.period.key, ReportStatus(report.status).value,
                json.dumps(report.figures, sort_keys=True),
                report.generated_at.isoformat() if report.generated_at else None,
                report.submitted_at.isoformat() if report.submitted_at else None,
                report.corrects_report_id,
            ),
        )

    def _raise_duplicate_period(self, report: TaxReport, exc: sqlite3.IntegrityError) -> None:
        others = [
            r for r in self.find_reports(report.company_id, report.report_type, report.period.key)
            if r.id != report.id
        ]
        if not others:
            raise exc
        raise DuplicatePeriodError(
            f"{ReportType(report.report_type).value} report for {report.period.key} already exists",
            existing_id=others[0].id,
        ) from exc

    def _row_to_report(self, row: sqlite3.Row) -> TaxReport:
        return TaxReport(
            id=row["id"],
            company_id=row["company_id"],
            report_type=ReportType(row["report_type"]),
            period=Period.from_key(row["period_key"]),
            status=ReportStatus(row["status"]),
            figures=json.loads(row["figures"]),
            generated_at=self._datetime(row["generated_at"]),
            submitted_at=self._datetime(row["submitted_at"]),
            corrects_report_id=row["corrects_report_id"],
        )
