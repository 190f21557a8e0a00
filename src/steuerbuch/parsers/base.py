"""
steuerbuch.parsers.base
~~~~~~~~~~~~~~~~~~~~~~~
Shared decoder contract plus the canonicalization and balance checks
every format goes through.

A decoder turns the raw bytes of exactly one statement into a
:class:`~steuerbuch.models.ParsedStatement` or raises
:class:`~steuerbuch.exceptions.ParseError`. It never returns a partially
populated statement.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import date, datetime

from ..config import Config
from ..exceptions import BalanceMismatchError, ParseError
from ..models import ParsedStatement
from ..money import Money, currency_exponent, format_amount, parse_amount

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())


class StatementDecoder(ABC):
    """Base class for the delimited, MT940 and CAMT.053 decoders."""

    #: Canonical upper-case format name, e.g. ``"MT940"``.
    format_name: str = ""

    def __init__(self, config: Config | None = None) -> None:
        self.config = config or Config()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def decode(self, raw: bytes) -> ParsedStatement:
        """Decode one statement. All-or-nothing: raises ``ParseError`` on any bad record."""
        if not isinstance(raw, (bytes, bytearray)):
            raise TypeError(f"expected bytes, got {type(raw).__name__}")
        if not bytes(raw).strip():
            raise ParseError(f"{self.format_name}: file is empty")
        statement = self._decode(bytes(raw))
        return self.finalize(statement)

    @abstractmethod
    def _decode(self, raw: bytes) -> ParsedStatement:
        """Format-specific decoding."""

    # ------------------------------------------------------------------
    # Canonicalization
    # ------------------------------------------------------------------

    def finalize(self, statement: ParsedStatement) -> ParsedStatement:
        """Common post-checks shared by every decoder."""
        statement.account_id = (statement.account_id or "").replace(" ", "").strip()
        if not statement.account_id:
            raise ParseError(f"{self.format_name}: statement has no account identifier", field="account")

        currency = statement.opening_balance.currency
        if statement.closing_balance.currency != currency:
            raise ParseError(
                f"{self.format_name}: opening and closing balance currencies differ",
                field="currency",
                raw_value=statement.closing_balance.currency,
            )
        for pos, txn in enumerate(statement.transactions, start=1):
            if txn.amount.currency != currency:
                raise ParseError(
                    f"{self.format_name}: transaction currency differs from statement currency",
                    index=pos,
                    field="currency",
                    raw_value=txn.amount.currency,
                )
            txn.description = " ".join(txn.description.split())
            txn.reference = txn.reference.strip()

        statement.source_format = self.format_name
        logger.debug(
            "%s: decoded %d transactions for %s (%s)",
            self.format_name, len(statement.transactions),
            statement.account_id, statement.statement_date,
        )
        return statement

    # ------------------------------------------------------------------
    # Helpers for subclasses
    # ------------------------------------------------------------------

    def _text(self, raw: bytes, encoding: str) -> str:
        if encoding.lower().replace("_", "-") in ("utf-8", "utf8"):
            encoding = "utf-8-sig"  # strip BOM if present
        try:
            return raw.decode(encoding)
        except (UnicodeDecodeError, LookupError) as exc:
            raise ParseError(f"{self.format_name}: cannot decode file as {encoding}", cause=exc) from exc

    def _amount(
        self,
        text: str,
        currency: str,
        *,
        index: int | None,
        field: str,
        decimal_separator: str,
        thousands_separator: str,
    ) -> Money:
        try:
            units = parse_amount(
                text,
                decimal_separator=decimal_separator,
                thousands_separator=thousands_separator,
                exponent=currency_exponent(currency),
            )
            return Money(units, currency)
        except ValueError as exc:
            raise ParseError(
                f"{self.format_name}: invalid amount",
                index=index, field=field, raw_value=text, cause=exc,
            ) from exc

    def _date(self, text: str, fmt: str, *, index: int | None, field: str) -> date:
        try:
            return datetime.strptime(text.strip(), fmt).date()
        except (ValueError, AttributeError) as exc:
            raise ParseError(
                f"{self.format_name}: invalid date",
                index=index, field=field, raw_value=text, cause=exc,
            ) from exc


# ---------------------------------------------------------------------------
# Balance invariant
# ---------------------------------------------------------------------------

def verify_balance(statement: ParsedStatement) -> None:
    """
    Raise ``BalanceMismatchError`` unless
    ``opening + sum(transactions) == closing`` exactly.
    """
    computed = statement.computed_closing_balance
    declared = statement.closing_balance
    if computed != declared:
        exp = currency_exponent(declared.currency)
        raise BalanceMismatchError(
            f"Statement for {statement.account_id} on {statement.statement_date} does not balance: "
            f"opening {format_amount(statement.opening_balance.minor_units, exponent=exp)} + "
            f"transactions {format_amount(statement.transaction_total.minor_units, exponent=exp)} = "
            f"{format_amount(computed.minor_units, exponent=exp)}, "
            f"closing balance is {format_amount(declared.minor_units, exponent=exp)}",
            expected=declared.minor_units,
            actual=computed.minor_units,
        )
