"""
steuerbuch.importer
~~~~~~~~~~~~~~~~~~~
Main entry point for statement imports.

Pipeline:
  1. Decode the raw bytes with the declared format (never guessed when declared)
  2. Ingest: idempotency check, balance invariant, atomic save
  3. Archive the source file under ``<project>/statements/<hash><suffix>``
  4. New statements are handed to listeners (e.g. reconciliation)

Every call returns an ``ImportResult``; failures are reported through
``success`` / ``error_message`` rather than raised, so a batch keeps going
after a bad file.
"""

from __future__ import annotations

import logging
import threading
import time
from pathlib import Path
from typing import Iterable, Optional, Union

from .config import Config
from .exceptions import IngestError, ParseError
from .ingest import StatementIngestor, StatementListener
from .models import BankStatement, ImportResult
from .parsers import DecoderRegistry
from .storage.base import LedgerRepository
from .storage.project import ProjectLayout, layout_from_db_path, resolve_project
from .storage.sqlite import SQLiteRepository

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())

# File suffix -> format, used only when the caller declares none
_SUFFIX_FORMATS = {
    ".csv":   "CSV",
    ".sta":   "MT940",
    ".mt940": "MT940",
    ".940":   "MT940",
    ".xml":   "CAMT053",
}


def format_from_suffix(path: Union[str, Path]) -> Optional[str]:
    return _SUFFIX_FORMATS.get(Path(path).suffix.lower())


class StatementImporter:
    """
    Orchestrates decode + ingest + archive for one company ledger.

    Args:
        config:     Optional Config instance (reads .env by default).
        project:    Project name — determines ~/.steuerbuch/<project>/ layout.
        db_path:    Explicit SQLite path — overrides the project layout.
        repository: Ready-made repository; ``project``/``db_path`` then only
                    locate the archive directory.
        registry:   Decoder registry; defaults to the three built-in formats.
        listeners:  Called with every newly stored statement.
    """

    def __init__(
        self,
        config:     Optional[Config] = None,
        project:    Optional[str] = None,
        db_path:    Union[str, Path, None] = None,
        repository: Optional[LedgerRepository] = None,
        registry:   Optional[DecoderRegistry] = None,
        listeners:  Iterable[StatementListener] = (),
    ) -> None:
        self.config = config or Config()

        db_path = db_path or self.config.db_path
        if db_path is not None:
            self._layout: ProjectLayout = layout_from_db_path(Path(db_path))
        else:
            self._layout = resolve_project(project or self.config.project)

        self.repository = repository or SQLiteRepository(self._layout.db_path)
        self.registry   = registry or DecoderRegistry.default(self.config)
        self.ingestor   = StatementIngestor(self.repository, self.config, listeners)

    @property
    def layout(self) -> ProjectLayout:
        return self._layout

    def close(self) -> None:
        self.repository.close()

    def __enter__(self) -> "StatementImporter":
        return self

    def __exit__(self, *_) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def import_bytes(
        self,
        company_id:      str,
        raw:             bytes,
        declared_format: Optional[str],
        *,
        bank_name:       Optional[str] = None,
        filename:        Optional[str] = None,
    ) -> ImportResult:
        """
        Decode and store one statement.

        Args:
            company_id:      Owning company.
            raw:             File content.
            declared_format: ``CSV``, ``MT940`` or ``CAMT053`` (aliases accepted).
                             ``None`` sniffs the content.
            bank_name:       Used when the file itself names no bank.
            filename:        Original file name, for the result and the archive suffix.
        """
        start = time.monotonic()
        try:
            parsed = self.registry.parse(raw, declared_format)
            if bank_name and not parsed.bank_name:
                parsed.bank_name = bank_name

            statement, created = self.ingestor.ingest(company_id, parsed, raw)
            if created and self.config.archive_sources:
                self._archive(raw, statement, filename)

            return ImportResult(
                success=True,
                statement=statement,
                duplicate=not created,
                existing_id=None if created else statement.id,
                source=filename,
                processing_time=time.monotonic() - start,
            )

        except (ParseError, IngestError) as exc:
            logger.error("%s: %s", type(exc).__name__, exc)
            return ImportResult(
                success=False,
                error_message=str(exc),
                source=filename,
                processing_time=time.monotonic() - start,
            )
        except Exception as exc:  # noqa: BLE001
            logger.exception("Unexpected error importing statement.")
            return ImportResult(
                success=False,
                error_message=f"Unexpected error: {exc}",
                source=filename,
                processing_time=time.monotonic() - start,
            )

    def import_file(
        self,
        company_id:      str,
        path:            Union[str, Path],
        declared_format: Optional[str] = None,
        *,
        bank_name:       Optional[str] = None,
    ) -> ImportResult:
        """Read ``path`` and import it. The format falls back to the file suffix."""
        path = Path(path)
        try:
            raw = path.read_bytes()
        except OSError as exc:
            logger.error("Cannot read %s: %s", path, exc)
            return ImportResult(success=False, error_message=f"Cannot read file: {exc}", source=str(path))
        return self.import_bytes(
            company_id,
            raw,
            declared_format or format_from_suffix(path),
            bank_name=bank_name,
            filename=str(path),
        )

    def import_batch(
        self,
        company_id:      str,
        paths:           Iterable[Union[str, Path]],
        declared_format: Optional[str] = None,
        *,
        cancel_event:    Optional[threading.Event] = None,
    ) -> dict[str, ImportResult]:
        """
        Import several files sequentially.

        ``cancel_event`` is checked before each file; a statement that has
        started is always finished. Files not reached are absent from the
        returned mapping.
        """
        results: dict[str, ImportResult] = {}
        for path in paths:
            if cancel_event is not None and cancel_event.is_set():
                logger.warning("Batch import cancelled after %d file(s).", len(results))
                break
            results[str(path)] = self.import_file(company_id, path, declared_format)
        return results

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _archive(self, raw: bytes, statement: BankStatement, filename: Optional[str]) -> None:
        dest = self._layout.archive_path(statement.content_hash, statement.source_format, filename)
        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            if not dest.exists():
                dest.write_bytes(raw)
                logger.debug("Archived source file: %s", dest)
        except OSError as exc:
            logger.warning("Could not archive statement %s: %s", statement.id, exc)
