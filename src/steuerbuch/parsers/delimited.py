"""
steuerbuch.parsers.delimited
~~~~~~~~~~~~~~~~~~~~~~~~~~~~
Delimited-text (CSV) statements as exported by German online banking.

Layout::

    Konto;DE89370400440532013000
    Bank;Commerzbank
    Auszugsdatum;31.01.2024
    Anfangssaldo;1.000,00
    Endsaldo;1.250,00
    Währung;EUR

    Buchungstag;Auftraggeber/Empfänger;Verwendungszweck;Referenz;Betrag
    15.01.2024;ACME GmbH;Zahlung INV-0042;INV-0042;250,00

The metadata preamble is optional when the mapping names a running
balance column; opening and closing balance are then derived from the
first and last row. Rows are expected in booking order.

The header row is the first row that names every required column; the
columns may appear in any order and unmapped ones are ignored.
"""

from __future__ import annotations

import csv
import io

from ..exceptions import ParseError
from ..models import ParsedStatement, ParsedTransaction
from ..money import Money
from .base import StatementDecoder

# Preamble label (lower-case, no trailing colon) -> metadata key
_META_LABELS = {
    "konto":         "account",
    "kontonummer":   "account",
    "iban":          "account",
    "bank":          "bank",
    "auszugsdatum":  "date",
    "datum":         "date",
    "auszugsnummer": "number",
    "anfangssaldo":  "opening",
    "endsaldo":      "closing",
    "währung":       "currency",
    "waehrung":      "currency",
}


def _label(cell: str) -> str:
    return cell.strip().rstrip(":").strip().lower()


class DelimitedDecoder(StatementDecoder):
    """Decoder for ``CSV`` statements with a configurable column mapping."""

    format_name = "CSV"

    def _decode(self, raw: bytes) -> ParsedStatement:
        cfg     = self.config
        mapping = cfg.csv_columns
        text    = self._text(raw, cfg.csv_encoding)
        reader  = csv.reader(io.StringIO(text, newline=""), delimiter=cfg.csv_delimiter)

        meta: dict[str, str] = {}
        columns: dict[str, int] | None = None
        rows: list[tuple[int, list[str]]] = []

        for line_no, row in enumerate(reader, start=1):
            if not any(cell.strip() for cell in row):
                continue
            if columns is None:
                first = _label(row[0])
                if self._is_header(row) or first == mapping.date.lower():
                    columns = self._header(row, line_no)
                    continue
                key = _META_LABELS.get(first)
                if key is None:
                    raise ParseError(
                        "CSV: unexpected line before the header row",
                        index=line_no, raw_value=cfg.csv_delimiter.join(row),
                    )
                if len(row) < 2 or not row[1].strip():
                    raise ParseError("CSV: metadata line has no value", index=line_no, field=key)
                meta[key] = row[1].strip()
                continue
            rows.append((line_no, row))

        if columns is None:
            raise ParseError(f"CSV: no header row with a {mapping.date!r} column found")

        currency = meta.get("currency", cfg.currency).upper()
        transactions: list[ParsedTransaction] = []
        balances: list[tuple[int, Money]] = []

        width = max(columns.values()) + 1
        for line_no, row in rows:
            if len(row) < width:
                raise ParseError(
                    f"CSV: expected at least {width} columns, found {len(row)}",
                    index=line_no, raw_value=cfg.csv_delimiter.join(row),
                )
            txn = self._transaction(row, columns, currency, line_no)
            transactions.append(txn)
            if mapping.balance:
                balances.append((line_no, self._csv_amount(
                    row[columns["balance"]], currency, line_no, "balance",
                )))

        opening, closing = self._balances(meta, balances, transactions, currency)

        if "date" in meta:
            statement_date = self._date(meta["date"], cfg.csv_date_format, index=None, field="date")
        elif transactions:
            statement_date = max(t.booking_date for t in transactions)
        else:
            raise ParseError("CSV: statement date missing and no transactions to derive it from", field="date")

        account = meta.get("account")
        if not account:
            raise ParseError("CSV: account line (Konto/IBAN) missing", field="account")

        return ParsedStatement(
            account_id=account,
            statement_date=statement_date,
            opening_balance=opening,
            closing_balance=closing,
            transactions=transactions,
            bank_name=meta.get("bank"),
            statement_number=meta.get("number"),
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _is_header(self, row: list[str]) -> bool:
        """True if ``row`` names every required column, in any order."""
        mapping = self.config.csv_columns
        required = [mapping.date, mapping.amount, mapping.description]
        if mapping.balance:
            required.append(mapping.balance)
        cells = {cell.strip().lower() for cell in row}
        return all(header.lower() in cells for header in required)

    def _header(self, row: list[str], line_no: int) -> dict[str, int]:
        names = {cell.strip().lower(): pos for pos, cell in enumerate(row)}
        columns: dict[str, int] = {}
        for attr, header in self.config.csv_columns.model_dump().items():
            if header is None:
                continue
            pos = names.get(header.lower())
            if pos is None:
                if attr in ("date", "amount", "description", "balance"):
                    raise ParseError(
                        f"CSV: header is missing column {header!r}",
                        index=line_no, field=attr,
                    )
                continue
            columns[attr] = pos
        return columns

    def _csv_amount(self, text: str, currency: str, line_no: int, field: str) -> Money:
        return self._amount(
            text, currency,
            index=line_no, field=field,
            decimal_separator=self.config.csv_decimal_separator,
            thousands_separator=self.config.csv_thousands_separator,
        )

    def _transaction(
        self, row: list[str], columns: dict[str, int], currency: str, line_no: int,
    ) -> ParsedTransaction:
        fmt = self.config.csv_date_format

        def cell(name: str) -> str:
            pos = columns.get(name)
            return row[pos].strip() if pos is not None else ""

        value_date = None
        if cell("value_date"):
            value_date = self._date(cell("value_date"), fmt, index=line_no, field="value_date")

        return ParsedTransaction(
            booking_date=self._date(cell("date"), fmt, index=line_no, field="date"),
            amount=self._csv_amount(cell("amount"), currency, line_no, "amount"),
            description=cell("description"),
            reference=cell("reference"),
            counterparty=cell("counterparty") or None,
            value_date=value_date,
        )

    def _balances(
        self,
        meta: dict[str, str],
        balances: list[tuple[int, Money]],
        transactions: list[ParsedTransaction],
        currency: str,
    ) -> tuple[Money, Money]:
        if "opening" in meta and "closing" in meta:
            return (
                self._csv_amount(meta["opening"], currency, None, "opening"),
                self._csv_amount(meta["closing"], currency, None, "closing"),
            )
        if not balances:
            raise ParseError(
                "CSV: opening/closing balance missing (no Anfangssaldo/Endsaldo and no balance column)",
                field="balance",
            )

        # Running balance: each row's balance must follow from the previous one.
        opening = balances[0][1] - transactions[0].amount
        running = opening
        for (line_no, balance), txn in zip(balances, transactions):
            running = running + txn.amount
            if running != balance:
                raise ParseError(
                    "CSV: running balance does not follow from the previous row",
                    index=line_no, field="balance", raw_value=balance.format(),
                )
        return opening, balances[-1][1]
