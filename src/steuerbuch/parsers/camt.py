"""
steuerbuch.parsers.camt
~~~~~~~~~~~~~~~~~~~~~~~
ISO 20022 CAMT.053 (bank-to-customer statement) XML.

Accepts any ``urn:iso:std:iso:20022:tech:xsd:camt.053.001.xx`` namespace.
One ``<Stmt>`` per file. Amounts use ``.`` as decimal mark; the sign comes
from ``<CdtDbtInd>`` (``CRDT`` / ``DBIT``), flipped when ``<RvslInd>`` is true.
"""

from __future__ import annotations

import xml.etree.ElementTree as ET
from datetime import date

from ..exceptions import ParseError
from ..models import ParsedStatement, ParsedTransaction
from ..money import Money
from .base import StatementDecoder

_OPENING_CODES = ("OPBD", "PRCD")
_CLOSING_CODES = ("CLBD",)


class CAMT053Decoder(StatementDecoder):
    """Decoder for ``CAMT053`` statements."""

    format_name = "CAMT053"

    def _decode(self, raw: bytes) -> ParsedStatement:
        try:
            root = ET.fromstring(raw)
        except ET.ParseError as exc:
            raise ParseError("CAMT053: not well-formed XML", cause=exc) from exc

        ns_uri, _, local = root.tag[1:].partition("}") if root.tag.startswith("{") else ("", "", root.tag)
        if local != "Document" or "camt.053" not in ns_uri:
            raise ParseError("CAMT053: root element is not a camt.053 Document", raw_value=root.tag)
        self._ns = {"c": ns_uri}

        stmts = root.findall("c:BkToCstmrStmt/c:Stmt", self._ns)
        if not stmts:
            raise ParseError("CAMT053: no <Stmt> element", field="Stmt")
        if len(stmts) > 1:
            raise ParseError("CAMT053: file contains more than one statement", field="Stmt")
        stmt = stmts[0]

        account = (
            self._find_text(stmt, "c:Acct/c:Id/c:IBAN")
            or self._find_text(stmt, "c:Acct/c:Id/c:Othr/c:Id")
        )
        bank_name = self._find_text(stmt, "c:Acct/c:Svcr/c:FinInstnId/c:Nm")
        number = self._find_text(stmt, "c:ElctrncSeqNb") or self._find_text(stmt, "c:Id")

        opening = closing = None
        for bal in stmt.findall("c:Bal", self._ns):
            code = self._find_text(bal, "c:Tp/c:CdOrPrtry/c:Cd")
            if code in _OPENING_CODES and opening is None:
                opening = self._balance(bal, code)
            elif code in _CLOSING_CODES:
                closing = self._balance(bal, code)
        if opening is None:
            raise ParseError("CAMT053: opening balance (OPBD/PRCD) missing", field="Bal")
        if closing is None:
            raise ParseError("CAMT053: closing balance (CLBD) missing", field="Bal")

        transactions = [
            self._entry(ntry, pos)
            for pos, ntry in enumerate(stmt.findall("c:Ntry", self._ns), start=1)
        ]

        return ParsedStatement(
            account_id=account or "",
            statement_date=closing[1],
            opening_balance=opening[0],
            closing_balance=closing[0],
            transactions=transactions,
            bank_name=bank_name,
            statement_number=number,
        )

    # ------------------------------------------------------------------
    # Element helpers
    # ------------------------------------------------------------------

    def _find_text(self, elem: ET.Element, path: str) -> str | None:
        found = elem.find(path, self._ns)
        if found is None or found.text is None:
            return None
        return found.text.strip() or None

    def _signed(self, elem: ET.Element, index: int | None, field: str) -> Money:
        amt = elem.find("c:Amt", self._ns)
        if amt is None or not (amt.text or "").strip():
            raise ParseError("CAMT053: amount missing", index=index, field=field)
        currency = amt.get("Ccy") or self.config.currency
        text = amt.text.strip()
        if text.startswith(("-", "+")):
            raise ParseError("CAMT053: signed amount not allowed", index=index, field=field, raw_value=text)
        money = self._amount(
            text, currency, index=index, field=field,
            decimal_separator=".", thousands_separator="",
        )
        indicator = self._find_text(elem, "c:CdtDbtInd")
        if indicator not in ("CRDT", "DBIT"):
            raise ParseError(
                "CAMT053: credit/debit indicator missing or invalid",
                index=index, field=f"{field}/CdtDbtInd", raw_value=indicator,
            )
        return -money if indicator == "DBIT" else money

    def _date_of(self, elem: ET.Element, path: str, index: int | None, field: str) -> date | None:
        text = self._find_text(elem, f"{path}/c:Dt") or self._find_text(elem, f"{path}/c:DtTm")
        if text is None:
            return None
        return self._date(text[:10], "%Y-%m-%d", index=index, field=field)

    def _balance(self, bal: ET.Element, code: str) -> tuple[Money, date]:
        money = self._signed(bal, None, code)
        when = self._date_of(bal, "c:Dt", None, code)
        if when is None:
            raise ParseError("CAMT053: balance date missing", field=code)
        return money, when

    def _entry(self, ntry: ET.Element, pos: int) -> ParsedTransaction:
        amount = self._signed(ntry, pos, "Ntry")
        if (self._find_text(ntry, "c:RvslInd") or "").lower() == "true":
            amount = -amount

        booking_date = self._date_of(ntry, "c:BookgDt", pos, "BookgDt")
        if booking_date is None:
            raise ParseError("CAMT053: booking date missing", index=pos, field="BookgDt")
        value_date = self._date_of(ntry, "c:ValDt", pos, "ValDt")

        tx = ntry.find("c:NtryDtls/c:TxDtls", self._ns)
        end_to_end = remittance = counterparty = None
        if tx is not None:
            end_to_end = self._find_text(tx, "c:Refs/c:EndToEndId")
            if end_to_end == "NOTPROVIDED":
                end_to_end = None
            lines = [
                (u.text or "").strip()
                for u in tx.findall("c:RmtInf/c:Ustrd", self._ns)
            ]
            remittance = " ".join(line for line in lines if line) or None
            party = "c:RltdPties/c:Dbtr/c:Nm" if amount.minor_units >= 0 else "c:RltdPties/c:Cdtr/c:Nm"
            counterparty = self._find_text(tx, party)

        return ParsedTransaction(
            booking_date=booking_date,
            amount=amount,
            description=remittance or self._find_text(ntry, "c:AddtlNtryInf") or "",
            reference=end_to_end or self._find_text(ntry, "c:AcctSvcrRef") or "",
            counterparty=counterparty,
            value_date=value_date,
        )
