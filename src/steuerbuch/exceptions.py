"""
steuerbuch.exceptions
~~~~~~~~~~~~~~~~~~~~~
Exception hierarchy for the steuerbuch library.

Statement-level failures (parsing, balance validation) are terminal for the
statement they concern. Unmatched transactions are a normal outcome and have
no exception type.
"""

from __future__ import annotations


class SteuerbuchError(Exception):
    """Base exception for all steuerbuch errors."""

    def __init__(self, message: str, *, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.cause = cause
        self.message = message

    def __str__(self) -> str:
        if self.cause:
            return f"{self.message} (caused by {type(self.cause).__name__}: {self.cause})"
        return self.message


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

class ParseError(SteuerbuchError):
    """
    Raised when a statement file cannot be decoded.

    Attributes:
        index:     Line number (delimited/MT940) or entry position (CAMT)
                   of the offending record, if known.
        field:     Name of the field that failed, if known.
        raw_value: The raw text that could not be interpreted.
    """

    def __init__(
        self,
        message: str,
        *,
        index: int | None = None,
        field: str | None = None,
        raw_value: str | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message, cause=cause)
        self.index = index
        self.field = field
        self.raw_value = raw_value

    def __str__(self) -> str:
        parts = [self.message]
        if self.index is not None:
            parts.append(f"record {self.index}")
        if self.field:
            parts.append(f"field {self.field!r}")
        if self.raw_value is not None:
            parts.append(f"value {self.raw_value!r}")
        text = " | ".join(parts)
        if self.cause:
            return f"{text} (caused by {type(self.cause).__name__}: {self.cause})"
        return text


class UnsupportedFormatError(ParseError):
    """Raised before any decoding when the declared format is not registered."""

    def __init__(self, format_name: str) -> None:
        super().__init__(f"Unsupported statement format: {format_name!r}")
        self.format_name = format_name


# ---------------------------------------------------------------------------
# Ingestion
# ---------------------------------------------------------------------------

class IngestError(SteuerbuchError):
    """Raised when a parsed statement cannot be stored."""


class BalanceMismatchError(IngestError):
    """
    Raised when opening balance + transactions does not equal the closing
    balance. Nothing is persisted.
    """

    def __init__(self, message: str, *, expected: int, actual: int) -> None:
        super().__init__(message)
        self.expected = expected
        self.actual = actual

    @property
    def difference(self) -> int:
        return self.actual - self.expected


class DuplicateImportError(IngestError):
    """
    Raised by the storage layer when a statement with the same idempotency
    key already exists. The ingestor turns this into a successful result.

    Attributes:
        existing_id: ID of the statement already stored.
    """

    def __init__(self, message: str, *, existing_id: str) -> None:
        super().__init__(message)
        self.existing_id = existing_id


# ---------------------------------------------------------------------------
# Reconciliation
# ---------------------------------------------------------------------------

class ReconciliationError(SteuerbuchError):
    """Raised for invalid manual reconciliation actions."""


class CandidateScoringError(ReconciliationError):
    """Raised when a single invoice candidate cannot be scored."""


# ---------------------------------------------------------------------------
# Tax
# ---------------------------------------------------------------------------

class TaxComputationError(SteuerbuchError):
    """Raised when period figures cannot be computed. Fatal for the report."""


class UnknownVatRateError(TaxComputationError):
    """Raised for a VAT category missing from the configured rate table."""

    def __init__(self, category: str | None) -> None:
        super().__init__(f"Unknown VAT category: {category!r}")
        self.category = category


class UnknownCategoryError(TaxComputationError):
    """Raised for an expense category with no deductibility rule."""

    def __init__(self, category: str | None) -> None:
        super().__init__(f"Unknown expense category: {category!r}")
        self.category = category


class DuplicatePeriodError(TaxComputationError):
    """
    Raised when a report for the same company, type and period has already
    been submitted.
    """

    def __init__(self, message: str, *, existing_id: str) -> None:
        super().__init__(message)
        self.existing_id = existing_id


class ImmutableReportError(TaxComputationError):
    """Raised on any attempt to change figures or period of a submitted report."""

    def __init__(self, report_id: str, status: str) -> None:
        super().__init__(f"Tax report {report_id} is {status} and can no longer be changed")
        self.report_id = report_id
        self.status = status


class InvalidTransitionError(TaxComputationError):
    """Raised for a report status change the workflow does not allow."""


class ReportNotFoundError(TaxComputationError):
    """Raised when a tax report ID does not exist."""

    def __init__(self, report_id: str) -> None:
        super().__init__(f"Tax report {report_id} not found")
        self.report_id = report_id
