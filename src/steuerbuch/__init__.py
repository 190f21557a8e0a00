"""
steuerbuch
~~~~~~~~~~
Bank statement import, invoice reconciliation and German tax reports.

Typical usage::

    from steuerbuch import StatementImporter, ReconciliationEngine

    with StatementImporter(project="acme") as importer:
        result = importer.import_file("acme", "kontoauszug.sta")

        if result.success:
            summary = ReconciliationEngine(importer.repository).reconcile(
                "acme", result.statement.id
            )
            print(summary.matched, summary.manual_review_needed)
        else:
            print(result.error_message)
"""

from .config import Config, MatchingConfig
from .exceptions import (
    BalanceMismatchError,
    CandidateScoringError,
    DuplicateImportError,
    DuplicatePeriodError,
    ImmutableReportError,
    IngestError,
    InvalidTransitionError,
    ParseError,
    ReconciliationError,
    ReportNotFoundError,
    SteuerbuchError,
    TaxComputationError,
    UnknownCategoryError,
    UnknownVatRateError,
    UnsupportedFormatError,
)
from .importer import StatementImporter
from .ingest import StatementIngestor, compute_content_hash
from .models import (
    BankStatement,
    BankTransaction,
    EntryType,
    ImportResult,
    Invoice,
    InvoiceStatus,
    LedgerEntry,
    MatchCandidate,
    MatchState,
    ParsedStatement,
    ParsedTransaction,
    Period,
    ReconciliationSummary,
    ReportStatus,
    ReportType,
    StatementStatus,
    TaxReport,
)
from .money import Money
from .parsers import DecoderRegistry, parse_statement
from .reconcile import ReconciliationEngine
from .storage import LedgerRepository, SQLiteRepository, get_repository
from .tax import PeriodFigures, ReportBuilder, TaxEngine

__all__ = [
    # Pipeline
    "StatementImporter",
    "StatementIngestor",
    "compute_content_hash",
    "DecoderRegistry",
    "parse_statement",
    "ReconciliationEngine",
    "TaxEngine",
    "ReportBuilder",
    # Configuration
    "Config",
    "MatchingConfig",
    # Storage
    "LedgerRepository",
    "SQLiteRepository",
    "get_repository",
    # Models
    "Money",
    "ParsedStatement",
    "ParsedTransaction",
    "BankStatement",
    "BankTransaction",
    "Invoice",
    "InvoiceStatus",
    "LedgerEntry",
    "EntryType",
    "MatchState",
    "MatchCandidate",
    "StatementStatus",
    "ReconciliationSummary",
    "ImportResult",
    "Period",
    "PeriodFigures",
    "ReportType",
    "ReportStatus",
    "TaxReport",
    # Exceptions
    "SteuerbuchError",
    "ParseError",
    "UnsupportedFormatError",
    "IngestError",
    "BalanceMismatchError",
    "DuplicateImportError",
    "ReconciliationError",
    "CandidateScoringError",
    "TaxComputationError",
    "UnknownVatRateError",
    "UnknownCategoryError",
    "DuplicatePeriodError",
    "ImmutableReportError",
    "InvalidTransitionError",
    "ReportNotFoundError",
]
