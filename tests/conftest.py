"""
tests/conftest.py
~~~~~~~~~~~~~~~~~
Shared pytest fixtures for the steuerbuch test suite.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from steuerbuch.config import Config
from steuerbuch.models import (
    BankStatement, BankTransaction, EntryType, Invoice, LedgerEntry,
)
from steuerbuch.money import Money
from steuerbuch.storage.sqlite import SQLiteRepository


# ---------------------------------------------------------------------------
# Config / storage
# ---------------------------------------------------------------------------

@pytest.fixture
def default_config() -> Config:
    return Config(_env_file=None)  # type: ignore[call-arg]


@pytest.fixture
def repo(tmp_path) -> SQLiteRepository:
    db = SQLiteRepository(db_path=tmp_path / "test.db")
    yield db
    db.close()


# ---------------------------------------------------------------------------
# Statement files
# ---------------------------------------------------------------------------

@pytest.fixture
def csv_bytes() -> bytes:
    """Opening 1.000,00 + one credit of 250,00 for INV-0042 = closing 1.250,00."""
    return (
        "Konto;DE89370400440532013000\n"
        "Bank;Commerzbank\n"
        "Auszugsdatum;31.01.2024\n"
        "Anfangssaldo;1.000,00\n"
        "Endsaldo;1.250,00\n"
        "Währung;EUR\n"
        "\n"
        "Buchungstag;Auftraggeber/Empfänger;Verwendungszweck;Referenz;Betrag\n"
        "25.01.2024;ACME GmbH;Zahlung INV-0042;INV-0042;250,00\n"
    ).encode("utf-8")


@pytest.fixture
def mt940_bytes() -> bytes:
    return (
        ":20:STARTUMSE\n"
        ":25:10020030/1234567890\n"
        ":28C:00001/001\n"
        ":60F:C240130EUR1000,00\n"
        ":61:2401250125C250,00NTRFINV-0042//B4A25\n"
        ":86:166?00GUTSCHRIFT?20INV-0042 Zahlung?32ACME GMBH\n"
        ":61:2401260126D12,50NMSCNONREF\n"
        ":86:805?00ENTGELT?20Kontofuehrung\n"
        ":62F:C240131EUR1237,50\n"
        "-\n"
    ).encode("latin-1")


@pytest.fixture
def camt_bytes() -> bytes:
    return b"""<?xml version="1.0" encoding="UTF-8"?>
<Document xmlns="urn:iso:std:iso:20022:tech:xsd:camt.053.001.02">
  <BkToCstmrStmt>
    <Stmt>
      <Id>STMT-2024-01</Id>
      <ElctrncSeqNb>1</ElctrncSeqNb>
      <Acct>
        <Id><IBAN>DE89370400440532013000</IBAN></Id>
        <Svcr><FinInstnId><Nm>Commerzbank</Nm></FinInstnId></Svcr>
      </Acct>
      <Bal>
        <Tp><CdOrPrtry><Cd>OPBD</Cd></CdOrPrtry></Tp>
        <Amt Ccy="EUR">1000.00</Amt>
        <CdtDbtInd>CRDT</CdtDbtInd>
        <Dt><Dt>2024-01-01</Dt></Dt>
      </Bal>
      <Bal>
        <Tp><CdOrPrtry><Cd>CLBD</Cd></CdOrPrtry></Tp>
        <Amt Ccy="EUR">1250.00</Amt>
        <CdtDbtInd>CRDT</CdtDbtInd>
        <Dt><Dt>2024-01-31</Dt></Dt>
      </Bal>
      <Ntry>
        <Amt Ccy="EUR">250.00</Amt>
        <CdtDbtInd>CRDT</CdtDbtInd>
        <BookgDt><Dt>2024-01-25</Dt></BookgDt>
        <ValDt><Dt>2024-01-25</Dt></ValDt>
        <NtryDtls>
          <TxDtls>
            <Refs><EndToEndId>INV-0042</EndToEndId></Refs>
            <RltdPties><Dbtr><Nm>ACME GmbH</Nm></Dbtr></RltdPties>
            <RmtInf><Ustrd>Zahlung INV-0042</Ustrd></RmtInf>
          </TxDtls>
        </NtryDtls>
      </Ntry>
    </Stmt>
  </BkToCstmrStmt>
</Document>
"""


# ---------------------------------------------------------------------------
# Record factories
# ---------------------------------------------------------------------------

@pytest.fixture
def make_invoice():
    """INV-0042 by default: net 210,08 + 19 % VAT 39,92 = 250,00, due 30.01.2024."""

    def _make(
        invoice_number: str = "INV-0042",
        total: int = 25000,
        *,
        company_id: str = "acme",
        net: int | None = None,
        vat: int | None = None,
        issue_date: date | None = date(2024, 1, 2),
        due_date: date | None = date(2024, 1, 30),
        client_name: str | None = "ACME GmbH",
        invoice_id: str | None = None,
    ) -> Invoice:
        if net is None:
            net = 21008 if total == 25000 else total
        vat = total - net if vat is None else vat
        kwargs = {"id": invoice_id} if invoice_id else {}
        return Invoice(
            company_id=company_id,
            invoice_number=invoice_number,
            issue_date=issue_date,
            due_date=due_date,
            net_amount=Money(net),
            vat_amount=Money(vat),
            total_amount=Money(total),
            vat_rate=Decimal("19"),
            client_name=client_name,
            **kwargs,
        )

    return _make


@pytest.fixture
def make_statement():
    """Balanced statement with one transaction per ``(amount, reference)`` pair."""

    def _make(
        bookings: list[tuple[int, str]] = ((25000, "INV-0042"),),
        *,
        company_id: str = "acme",
        account_id: str = "DE89370400440532013000",
        statement_date: date = date(2024, 1, 31),
        booking_date: date = date(2024, 1, 25),
        opening: int = 100000,
        content_hash: str = "hash-1",
    ) -> BankStatement:
        closing = opening + sum(amount for amount, _ in bookings)
        statement = BankStatement(
            company_id=company_id,
            account_id=account_id,
            statement_date=statement_date,
            opening_balance=Money(opening),
            closing_balance=Money(closing),
            source_format="CSV",
            content_hash=content_hash,
        )
        statement.transactions = [
            BankTransaction(
                statement_id=statement.id,
                company_id=company_id,
                position=pos,
                booking_date=booking_date,
                amount=Money(amount),
                description=f"Zahlung {reference}".strip(),
                reference=reference,
            )
            for pos, (amount, reference) in enumerate(bookings, start=1)
        ]
        statement.transaction_count = len(statement.transactions)
        return statement

    return _make


@pytest.fixture
def make_entry():

    def _make(
        entry_type: str,
        net: int,
        *,
        entry_date: date = date(2024, 2, 15),
        vat_category: str = "standard",
        category: str | None = None,
        company_id: str = "acme",
    ) -> LedgerEntry:
        if entry_type == "expense" and category is None:
            category = "software"
        return LedgerEntry(
            company_id=company_id,
            entry_date=entry_date,
            entry_type=EntryType(entry_type),
            net_amount=Money(net),
            vat_category=vat_category,
            category=category,
        )

    return _make


@pytest.fixture
def q1_entries(make_entry) -> list[LedgerEntry]:
    """Two sales (1.000,00 and 500,00) and one purchase (300,00), all at 19 %."""
    return [
        make_entry("income", 100000, entry_date=date(2024, 1, 10)),
        make_entry("income", 50000, entry_date=date(2024, 2, 20)),
        make_entry("expense", 30000, entry_date=date(2024, 3, 31)),
    ]
