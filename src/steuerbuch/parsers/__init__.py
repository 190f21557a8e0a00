"""
steuerbuch.parsers
~~~~~~~~~~~~~~~~~~
Bank statement decoders and the registry that dispatches to them.

Usage::

    from steuerbuch.parsers import DecoderRegistry

    registry = DecoderRegistry.default(config)
    statement = registry.parse(raw_bytes, "MT940")

The declared format is authoritative: content that does not match it is
rejected, never re-routed to another decoder.
"""

from __future__ import annotations

from typing import Iterable

from ..config import Config
from ..exceptions import UnsupportedFormatError
from ..models import ParsedStatement
from .base import StatementDecoder, verify_balance
from .camt import CAMT053Decoder
from .delimited import DelimitedDecoder
from .mt940 import MT940Decoder

_ALIASES = {
    "CAMT.053": "CAMT053",
    "CAMT":     "CAMT053",
    "XML":      "CAMT053",
    "SWIFT":    "MT940",
    "STA":      "MT940",
    "MT-940":   "MT940",
    "TEXT/CSV": "CSV",
}


def normalise_format(name: str) -> str:
    key = (name or "").strip().upper()
    return _ALIASES.get(key, key)


def sniff_format(raw: bytes) -> str | None:
    """
    Best-effort guess of the format of ``raw``.

    Only used when the caller declares no format at all.
    """
    head = raw.lstrip()[:2048]
    if head.startswith(b"\xef\xbb\xbf"):
        head = head[3:]
    if head.startswith(b"<") and b"camt.053" in raw[:4096]:
        return "CAMT053"
    if b":20:" in head and (b":60F:" in raw or b":60M:" in raw):
        return "MT940"
    if b";" in head or b"," in head:
        return "CSV"
    return None


class DecoderRegistry:
    """
    Maps format names to decoder instances.

    Built explicitly and passed to whoever needs it; there is no global
    registry.
    """

    def __init__(self, decoders: Iterable[StatementDecoder] = ()) -> None:
        self._decoders: dict[str, StatementDecoder] = {}
        for decoder in decoders:
            self.register(decoder)

    @classmethod
    def default(cls, config: Config | None = None) -> "DecoderRegistry":
        config = config or Config()
        return cls([
            DelimitedDecoder(config),
            MT940Decoder(config),
            CAMT053Decoder(config),
        ])

    def register(self, decoder: StatementDecoder) -> None:
        self._decoders[normalise_format(decoder.format_name)] = decoder

    @property
    def formats(self) -> list[str]:
        return sorted(self._decoders)

    def get(self, format_name: str) -> StatementDecoder:
        decoder = self._decoders.get(normalise_format(format_name))
        if decoder is None:
            raise UnsupportedFormatError(format_name)
        return decoder

    def parse(self, raw: bytes, declared_format: str | None) -> ParsedStatement:
        """
        Decode ``raw`` with the decoder for ``declared_format``.

        Raises ``UnsupportedFormatError`` before touching the content when
        the format is unknown, and ``ParseError`` for malformed content.
        """
        if declared_format is None or not declared_format.strip():
            guessed = sniff_format(bytes(raw))
            if guessed is None:
                raise UnsupportedFormatError("<undeclared>")
            declared_format = guessed
        return self.get(declared_format).decode(raw)


def parse_statement(
    raw: bytes,
    declared_format: str | None,
    *,
    config: Config | None = None,
) -> ParsedStatement:
    """Convenience wrapper: decode with a default registry."""
    return DecoderRegistry.default(config).parse(raw, declared_format)


__all__ = [
    "CAMT053Decoder",
    "DecoderRegistry",
    "DelimitedDecoder",
    "MT940Decoder",
    "StatementDecoder",
    "normalise_format",
    "parse_statement",
    "sniff_format",
    "verify_balance",
]
