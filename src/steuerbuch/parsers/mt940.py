"""
steuerbuch.parsers.mt940
~~~~~~~~~~~~~~~~~~~~~~~~
SWIFT MT940 statements (German banks: ``.sta`` / ``.txt`` exports).

Segments handled::

    :20:  transaction reference          :25:  account (BLZ/Konto or IBAN)
    :28C: statement / sequence number    :60F: / :60M:  opening balance
    :61:  statement line (booking)       :86:  information to the account owner
    :62F: / :62M:  closing balance

A booking is a ``:61:`` line plus its optional ``:86:`` block; the block
of bookings is terminated by the closing balance segment. Lines that do
not start with a tag continue the previous segment.

``:86:`` may be free text or the German structured form
``166?00GUTSCHRIFT?20purpose...?32name`` (purpose in ``?20``-``?29`` and
``?60``-``?63``, counterparty name in ``?32``/``?33``).
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import date

from ..exceptions import ParseError
from ..models import ParsedStatement, ParsedTransaction
from ..money import Money
from .base import StatementDecoder

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())

_TAG_RE      = re.compile(r"^:(\d{2}[A-Z]?):(.*)$")
_BALANCE_RE  = re.compile(r"^([CD])(\d{6})([A-Z]{3})(\d[\d,]*)$")
_LINE_RE     = re.compile(
    r"^(?P<value>\d{6})(?P<entry>\d{4})?(?P<mark>R?[CD])(?P<funds>[A-Z])?"
    r"(?P<amount>\d[\d,]*)(?P<type>[A-Z][A-Z0-9]{3})(?P<rest>.*)$"
)
_STRUCTURED_RE = re.compile(r"^\d{3}\?")
_EREF_RE     = re.compile(r"EREF\+(\S+)")

_PURPOSE_CODES = {f"{n:02d}" for n in list(range(20, 30)) + list(range(60, 64))}
_NAME_CODES    = {"32", "33"}
_IGNORED_TAGS  = {"13D", "21", "64", "65", "NS"}


@dataclass
class _Segment:
    tag:     str
    value:   str
    line_no: int


@dataclass
class _Booking:
    line:    str
    line_no: int
    info:    list[str] = field(default_factory=list)


def _yymmdd(text: str) -> date:
    yy, mm, dd = int(text[:2]), int(text[2:4]), int(text[4:6])
    return date(2000 + yy, mm, dd)


class MT940Decoder(StatementDecoder):
    """Decoder for ``MT940`` statements."""

    format_name = "MT940"

    def _decode(self, raw: bytes) -> ParsedStatement:
        try:
            text = raw.decode("utf-8-sig")
        except UnicodeDecodeError:
            text = raw.decode("latin-1")  # classic MT940 charset
        segments = self._segments(text)
        if not any(s.tag == "20" for s in segments):
            raise ParseError("MT940: no :20: segment, not an MT940 statement")

        account: str | None = None
        number: str | None = None
        reference: str | None = None
        opening: tuple[Money, date] | None = None
        closing: tuple[Money, date] | None = None
        final_seen = False
        bookings: list[_Booking] = []

        for seg in segments:
            tag = seg.tag
            if tag == "20":
                reference = seg.value.strip()
            elif tag == "25":
                account = seg.value.strip()
            elif tag == "28C":
                number = seg.value.strip()
            elif tag in ("60F", "60M"):
                if final_seen:
                    raise ParseError(
                        "MT940: file contains more than one statement",
                        index=seg.line_no, field=tag,
                    )
                if opening is None:
                    opening = self._balance(seg)
            elif tag == "61":
                if opening is None:
                    raise ParseError("MT940: :61: before opening balance", index=seg.line_no, field="61")
                bookings.append(_Booking(line=seg.value, line_no=seg.line_no))
            elif tag == "86":
                if not bookings:
                    raise ParseError("MT940: :86: without a preceding :61:", index=seg.line_no, field="86")
                bookings[-1].info.append(seg.value)
            elif tag in ("62F", "62M"):
                closing = self._balance(seg)
                final_seen = tag == "62F"
            elif tag not in _IGNORED_TAGS:
                logger.debug("MT940: ignoring segment :%s: at line %d", tag, seg.line_no)

        if account is None:
            raise ParseError("MT940: :25: account segment missing", field="25")
        if opening is None:
            raise ParseError("MT940: opening balance (:60F:) missing", field="60F")
        if closing is None:
            raise ParseError("MT940: closing balance (:62F:) missing", field="62F")

        currency = opening[0].currency
        transactions = [self._booking(b, currency) for b in bookings]

        return ParsedStatement(
            account_id=account,
            statement_date=closing[1],
            opening_balance=opening[0],
            closing_balance=closing[0],
            transactions=transactions,
            statement_number=number or reference,
        )

    # ------------------------------------------------------------------
    # Segmenting
    # ------------------------------------------------------------------

    def _segments(self, text: str) -> list[_Segment]:
        segments: list[_Segment] = []
        for line_no, line in enumerate(text.splitlines(), start=1):
            stripped = line.rstrip()
            if not stripped.strip():
                continue
            if stripped.startswith("{") or stripped in ("-", "-}"):
                continue  # SWIFT envelope / message terminator
            match = _TAG_RE.match(stripped)
            if match:
                segments.append(_Segment(match.group(1), match.group(2), line_no))
            elif segments:
                segments[-1].value += "\n" + stripped
            else:
                raise ParseError(
                    "MT940: content before the first tag",
                    index=line_no, raw_value=stripped,
                )
        return segments

    # ------------------------------------------------------------------
    # Field parsers
    # ------------------------------------------------------------------

    def _mt_amount(self, text: str, currency: str, line_no: int, field: str) -> Money:
        if "," not in text:
            raise ParseError("MT940: amount without decimal comma", index=line_no, field=field, raw_value=text)
        return self._amount(
            text, currency, index=line_no, field=field,
            decimal_separator=",", thousands_separator="",
        )

    def _balance(self, seg: _Segment) -> tuple[Money, date]:
        match = _BALANCE_RE.match(seg.value.strip())
        if not match:
            raise ParseError("MT940: malformed balance", index=seg.line_no, field=seg.tag, raw_value=seg.value)
        mark, day, currency, amount = match.groups()
        try:
            when = _yymmdd(day)
        except ValueError as exc:
            raise ParseError(
                "MT940: invalid balance date", index=seg.line_no, field=seg.tag, raw_value=day, cause=exc,
            ) from exc
        money = self._mt_amount(amount, currency, seg.line_no, seg.tag)
        return (-money if mark == "D" else money), when

    def _booking(self, booking: _Booking, currency: str) -> ParsedTransaction:
        first, _, extra = booking.line.partition("\n")
        match = _LINE_RE.match(first.strip())
        if not match:
            raise ParseError("MT940: malformed :61: line", index=booking.line_no, field="61", raw_value=first)

        try:
            value_date = _yymmdd(match.group("value"))
            booking_date = value_date
            if match.group("entry"):
                month, day = int(match.group("entry")[:2]), int(match.group("entry")[2:])
                year = value_date.year
                if month == 12 and value_date.month == 1:
                    year -= 1
                elif month == 1 and value_date.month == 12:
                    year += 1
                booking_date = date(year, month, day)
        except ValueError as exc:
            raise ParseError(
                "MT940: invalid booking date", index=booking.line_no, field="61", raw_value=first, cause=exc,
            ) from exc

        amount = self._mt_amount(match.group("amount"), currency, booking.line_no, "61")
        # C credit, D debit, RC reversal of credit, RD reversal of debit
        if match.group("mark") in ("D", "RC"):
            amount = -amount

        customer_ref, _, _bank_ref = match.group("rest").partition("//")
        customer_ref = customer_ref.strip()
        if customer_ref.upper() == "NONREF":
            customer_ref = ""

        description, counterparty = self._information("\n".join(booking.info))
        if not description and extra:
            description = extra
        if not customer_ref:
            eref = _EREF_RE.search(description)
            if eref:
                customer_ref = eref.group(1)

        return ParsedTransaction(
            booking_date=booking_date,
            amount=amount,
            description=description,
            reference=customer_ref,
            counterparty=counterparty,
            value_date=value_date,
        )

    @staticmethod
    def _information(info: str) -> tuple[str, str | None]:
        """Return (purpose text, counterparty name) from a :86: block."""
        if not info:
            return "", None
        if not _STRUCTURED_RE.match(info):
            return " ".join(info.split()), None

        joined = info.replace("\n", "")
        purpose: list[str] = []
        names: list[str] = []
        booking_text = ""
        for chunk in joined[4:].split("?"):
            code, value = chunk[:2], chunk[2:]
            if code in _PURPOSE_CODES:
                purpose.append(value)
            elif code in _NAME_CODES:
                names.append(value)
            elif code == "00":
                booking_text = value
        description = "".join(purpose).strip() or booking_text.strip()
        name = "".join(names).strip() or None
        return description, name
