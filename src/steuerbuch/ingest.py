"""
steuerbuch.ingest
~~~~~~~~~~~~~~~~~
Turns a decoded statement into stored records.

Steps:
  1. Content hash (raw bytes + account + statement date)
  2. Idempotency check: an identical statement is returned as-is
  3. Balance invariant: opening + transactions must equal closing
  4. Atomic save of statement + transactions
  5. Hand the new statement to the registered listeners (reconciliation)

Uniqueness is enforced by the repository, so two workers importing the
same file concurrently end up with one statement; the loser receives the
winner's record.
"""

from __future__ import annotations

import hashlib
import logging
from datetime import date, datetime, timezone
from typing import Callable, Iterable, Optional

from .config import Config
from .exceptions import DuplicateImportError, IngestError
from .models import BankStatement, BankTransaction, ParsedStatement
from .parsers.base import verify_balance
from .storage.base import LedgerRepository

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())

StatementListener = Callable[[BankStatement], None]


def compute_content_hash(raw: bytes, account_id: str, statement_date: date) -> str:
    """SHA-256 over the raw file bytes, the account and the ISO statement date."""
    digest = hashlib.sha256()
    digest.update(bytes(raw))
    digest.update(b"\x00")
    digest.update(account_id.encode("utf-8"))
    digest.update(b"\x00")
    digest.update(statement_date.isoformat().encode("ascii"))
    return digest.hexdigest()


class StatementIngestor:
    """
    Validates and persists parsed statements.

    Args:
        repository: Storage backend.
        config:     Optional Config instance.
        listeners:  Callables invoked with every *newly* stored statement.
    """

    def __init__(
        self,
        repository: LedgerRepository,
        config:     Optional[Config] = None,
        listeners:  Iterable[StatementListener] = (),
    ) -> None:
        self.repository = repository
        self.config     = config or Config()
        self._listeners = list(listeners)

    def add_listener(self, listener: StatementListener) -> None:
        self._listeners.append(listener)

    def ingest(
        self,
        company_id:   str,
        parsed:       ParsedStatement,
        source_bytes: bytes,
    ) -> tuple[BankStatement, bool]:
        """
        Store ``parsed`` for ``company_id``.

        Returns ``(statement, created)``. ``created`` is False when the same
        content had been imported before; that is not an error.

        Raises:
            BalanceMismatchError: the statement does not balance; nothing stored.
            IngestError:          ``company_id`` is empty.
        """
        if not company_id or not company_id.strip():
            raise IngestError("company_id is required")

        content_hash = compute_content_hash(source_bytes, parsed.account_id, parsed.statement_date)

        existing = self.repository.find_statement(
            company_id, parsed.account_id, parsed.statement_date, content_hash,
        )
        if existing is not None:
            logger.info("Statement already imported: %s", existing.id)
            return existing, False

        verify_balance(parsed)

        statement = self._build(company_id, parsed, content_hash)
        try:
            self.repository.save_statement(statement)
        except DuplicateImportError as exc:
            logger.info("Concurrent import of the same statement, using %s", exc.existing_id)
            stored = self.repository.get_statement(exc.existing_id)
            if stored is None:
                raise
            return stored, False

        logger.info(
            "Imported %s statement %s: account=%s date=%s transactions=%d",
            statement.source_format, statement.id, statement.account_id,
            statement.statement_date, statement.transaction_count,
        )
        self._emit(statement)
        return statement, True

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _build(company_id: str, parsed: ParsedStatement, content_hash: str) -> BankStatement:
        statement = BankStatement(
            company_id=company_id,
            account_id=parsed.account_id,
            bank_name=parsed.bank_name,
            statement_date=parsed.statement_date,
            opening_balance=parsed.opening_balance,
            closing_balance=parsed.closing_balance,
            source_format=parsed.source_format,
            content_hash=content_hash,
            imported_at=datetime.now(timezone.utc),
        )
        statement.transactions = [
            BankTransaction(
                statement_id=statement.id,
                company_id=company_id,
                position=pos,
                booking_date=tx.booking_date,
                amount=tx.amount,
                description=tx.description,
                reference=tx.reference,
                counterparty=tx.counterparty,
                value_date=tx.value_date,
            )
            for pos, tx in enumerate(parsed.transactions, start=1)
        ]
        statement.transaction_count = len(statement.transactions)
        return statement

    def _emit(self, statement: BankStatement) -> None:
        # The statement is already committed; a failing listener must not undo that.
        for listener in self._listeners:
            try:
                listener(statement)
            except Exception:  # noqa: BLE001
                logger.exception("Statement listener %r failed for %s", listener, statement.id)
