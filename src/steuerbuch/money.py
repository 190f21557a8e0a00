"""
steuerbuch.money
~~~~~~~~~~~~~~~~
Fixed-point money in integer minor units.

Amounts enter and leave the system as text (bank files, reports) and are
held as ``int`` cents in between. ``float`` is rejected everywhere::

    >>> parse_amount("1.234,56")
    123456
    >>> format_amount(123456)
    '1.234,56'
    >>> Money(25000) + Money(100000)
    Money(minor_units=125000, currency='EUR')
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable


CURRENCY_EXPONENTS: dict[str, int] = {
    "EUR": 2,
    "USD": 2,
    "GBP": 2,
    "CHF": 2,
    "JPY": 0,
}


def currency_exponent(currency: str) -> int:
    """Number of minor-unit digits for ``currency`` (2 if unknown)."""
    return CURRENCY_EXPONENTS.get(currency.upper(), 2)


# ---------------------------------------------------------------------------
# Text <-> minor units
# ---------------------------------------------------------------------------

def _split_sign(text: str) -> tuple[int, str]:
    s = text.strip()
    sign = 1
    if s[:1] in "+-":
        sign = -1 if s[0] == "-" else 1
        s = s[1:].strip()
    elif s[-1:] in "+-":
        # Some German exports put the sign after the amount: "250,00-"
        sign = -1 if s[-1] == "-" else 1
        s = s[:-1].strip()
    return sign, s


def _integer_part(raw: str, thousands_separator: str) -> str:
    if thousands_separator and thousands_separator in raw:
        groups = raw.split(thousands_separator)
        head, tail = groups[0], groups[1:]
        if not (1 <= len(head) <= 3 and head.isdigit()):
            raise ValueError(f"misplaced thousands separator in {raw!r}")
        if any(len(g) != 3 or not g.isdigit() for g in tail):
            raise ValueError(f"misplaced thousands separator in {raw!r}")
        return "".join(groups)
    if raw and not raw.isdigit():
        raise ValueError(f"not a number: {raw!r}")
    return raw


def parse_amount(
    text: str,
    *,
    decimal_separator: str = ",",
    thousands_separator: str = ".",
    exponent: int = 2,
) -> int:
    """
    Convert a locale-formatted amount string to integer minor units.

    Raises ``ValueError`` for anything that is not an exact amount at the
    given precision, including more fraction digits than ``exponent``.
    """
    if decimal_separator == thousands_separator:
        raise ValueError("decimal and thousands separator must differ")
    if text is None or not str(text).strip():
        raise ValueError("empty amount")

    sign, body = _split_sign(str(text))
    if not body:
        raise ValueError(f"empty amount: {text!r}")

    if decimal_separator in body:
        if body.count(decimal_separator) > 1:
            raise ValueError(f"more than one decimal separator in {text!r}")
        int_raw, frac = body.split(decimal_separator)
    else:
        int_raw, frac = body, ""

    if frac and not frac.isdigit():
        raise ValueError(f"invalid fraction in {text!r}")
    if len(frac) > exponent:
        raise ValueError(f"{text!r} has more than {exponent} fraction digits")

    digits = _integer_part(int_raw, thousands_separator)
    if not digits and not frac:
        raise ValueError(f"no digits in {text!r}")

    units = int(digits or "0") * 10 ** exponent + int(frac.ljust(exponent, "0") or "0")
    return sign * units


def format_amount(
    minor_units: int,
    *,
    decimal_separator: str = ",",
    thousands_separator: str = ".",
    exponent: int = 2,
) -> str:
    """Inverse of :func:`parse_amount`."""
    if isinstance(minor_units, bool) or not isinstance(minor_units, int):
        raise TypeError(f"minor units must be int, got {type(minor_units).__name__}")
    sign = "-" if minor_units < 0 else ""
    whole, frac = divmod(abs(minor_units), 10 ** exponent)

    int_text = str(whole)
    if thousands_separator:
        groups = []
        while len(int_text) > 3:
            groups.insert(0, int_text[-3:])
            int_text = int_text[:-3]
        groups.insert(0, int_text)
        int_text = thousands_separator.join(groups)

    if exponent == 0:
        return f"{sign}{int_text}"
    return f"{sign}{int_text}{decimal_separator}{frac:0{exponent}d}"


# ---------------------------------------------------------------------------
# Money
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Money:
    """An amount in integer minor units of a single ISO 4217 currency."""

    minor_units: int
    currency: str = "EUR"

    def __post_init__(self) -> None:
        if isinstance(self.minor_units, bool) or not isinstance(self.minor_units, int):
            raise TypeError(
                f"Money requires int minor units, got {type(self.minor_units).__name__}"
            )
        code = str(self.currency).strip().upper()
        if len(code) != 3 or not code.isalpha():
            raise ValueError(f"invalid currency code: {self.currency!r}")
        object.__setattr__(self, "currency", code)

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def zero(cls, currency: str = "EUR") -> "Money":
        return cls(0, currency)

    @classmethod
    def parse(cls, text: str, currency: str = "EUR", **separators) -> "Money":
        return cls(
            parse_amount(text, exponent=currency_exponent(currency), **separators),
            currency,
        )

    @classmethod
    def from_decimal(cls, amount: Decimal, currency: str = "EUR") -> "Money":
        """Exact conversion; a value with sub-cent precision raises ``ValueError``."""
        if not isinstance(amount, Decimal):
            raise TypeError("from_decimal expects a Decimal")
        scaled = amount.scaleb(currency_exponent(currency))
        if scaled != scaled.to_integral_value():
            raise ValueError(f"{amount} is not representable in {currency} minor units")
        return cls(int(scaled), currency)

    def to_decimal(self) -> Decimal:
        return Decimal(self.minor_units).scaleb(-currency_exponent(self.currency))

    # ------------------------------------------------------------------
    # Arithmetic
    # ------------------------------------------------------------------

    def _check(self, other: object) -> "Money":
        if not isinstance(other, Money):
            raise TypeError(f"cannot combine Money with {type(other).__name__}")
        if other.currency != self.currency:
            raise ValueError(f"currency mismatch: {self.currency} vs {other.currency}")
        return other

    def __add__(self, other: "Money") -> "Money":
        return Money(self.minor_units + self._check(other).minor_units, self.currency)

    def __sub__(self, other: "Money") -> "Money":
        return Money(self.minor_units - self._check(other).minor_units, self.currency)

    def __neg__(self) -> "Money":
        return Money(-self.minor_units, self.currency)

    def __abs__(self) -> "Money":
        return Money(abs(self.minor_units), self.currency)

    def __lt__(self, other: "Money") -> bool:
        return self.minor_units < self._check(other).minor_units

    def __le__(self, other: "Money") -> bool:
        return self.minor_units <= self._check(other).minor_units

    def __gt__(self, other: "Money") -> bool:
        return self.minor_units > self._check(other).minor_units

    def __ge__(self, other: "Money") -> bool:
        return self.minor_units >= self._check(other).minor_units

    @property
    def is_zero(self) -> bool:
        return self.minor_units == 0

    @property
    def is_negative(self) -> bool:
        return self.minor_units < 0

    # ------------------------------------------------------------------
    # Display
    # ------------------------------------------------------------------

    def format(self, **separators) -> str:
        return format_amount(
            self.minor_units, exponent=currency_exponent(self.currency), **separators
        )

    def __str__(self) -> str:
        return f"{self.format()} {self.currency}"


def sum_money(items: Iterable[Money], currency: str = "EUR") -> Money:
    """Sum an iterable of Money; an empty iterable gives zero in ``currency``."""
    total = Money.zero(currency)
    for item in items:
        total = total + item
    return total
