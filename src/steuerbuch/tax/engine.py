"""
steuerbuch.tax.engine
~~~~~~~~~~~~~~~~~~~~~
Report generation and the report workflow.

Workflow
--------
::

    draft ──► generated ──► submitted ──► approved
      │                         ▲    └──► rejected
      └─────────────────────────┘

* Generating again overwrites the open draft / generated report.
* Once submitted, figures and period are frozen (also enforced by the
  database). A correction is a new draft pointing at the original.
* Generating an original for a period whose original was already
  submitted raises ``DuplicatePeriodError``.

The engine only reads ledger entries; it never changes invoices or bank
transactions.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from ..config import Config
from ..exceptions import (
    DuplicatePeriodError, ImmutableReportError, InvalidTransitionError, ReportNotFoundError,
)
from ..models import LOCKED_STATUSES, Period, ReportStatus, ReportType, TaxReport
from ..storage.base import LedgerRepository
from .ustva import PeriodFigures, aggregate_entries

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())

TRANSITIONS: dict[ReportStatus, frozenset[ReportStatus]] = {
    ReportStatus.DRAFT:     frozenset({ReportStatus.GENERATED, ReportStatus.SUBMITTED}),
    ReportStatus.GENERATED: frozenset({ReportStatus.SUBMITTED}),
    ReportStatus.SUBMITTED: frozenset({ReportStatus.APPROVED, ReportStatus.REJECTED}),
    ReportStatus.APPROVED:  frozenset(),
    ReportStatus.REJECTED:  frozenset(),
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TaxEngine:
    """
    Computes period figures and manages tax reports.

    Args:
        repository: Storage backend.
        config:     Optional Config instance (rate table, categories, Hebesatz).
        clock:      Callable returning the current time; injectable for tests.
    """

    def __init__(
        self,
        repository: LedgerRepository,
        config:     Optional[Config] = None,
        clock:      Callable[[], datetime] = _utcnow,
    ) -> None:
        self.repository = repository
        self.config     = config or Config()
        self._clock     = clock

    # ------------------------------------------------------------------
    # Computation
    # ------------------------------------------------------------------

    def compute_period(self, company_id: str, period: Period) -> PeriodFigures:
        entries = self.repository.find_ledger_entries(company_id, period.start, period.end)
        figures = aggregate_entries(entries, period, self.config)
        logger.debug(
            "Computed %s for %s: %d entries, net liability %d",
            period.key, company_id, figures.entry_count, figures.net_liability,
        )
        return figures

    def preview(self, company_id: str, report_type: ReportType | str, period: Period) -> TaxReport:
        """Build a draft report without storing it."""
        return self._build(company_id, ReportType(report_type), period)

    def generate_report(
        self, company_id: str, report_type: ReportType | str, period: Period,
    ) -> TaxReport:
        """
        Compute and store a draft report, overwriting an open one.

        Raises:
            DuplicatePeriodError: the original report for this period was
                                  already submitted.
        """
        report_type = ReportType(report_type)
        filed = self._filed_original(company_id, report_type, period)
        if filed is not None:
            raise DuplicatePeriodError(
                f"{report_type.value} report for {period.key} was already {filed.status.value}; "
                "file a correction instead",
                existing_id=filed.id,
            )
        report = self.repository.save_draft_report(self._build(company_id, report_type, period))
        logger.info("Generated %s draft %s for %s", report_type.value, report.id, period.key)
        return report

    def generate_correction(self, report_id: str) -> TaxReport:
        """New draft with fresh figures that references a filed report."""
        original = self._get(report_id)
        if original.status not in LOCKED_STATUSES:
            raise InvalidTransitionError(
                f"Report {report_id} is {original.status.value}; only filed reports can be corrected"
            )
        correction = self._build(original.company_id, original.report_type, original.period)
        correction.corrects_report_id = original.corrects_report_id or original.id
        report = self.repository.save_draft_report(correction)
        logger.info("Generated correction %s for report %s", report.id, report_id)
        return report

    # ------------------------------------------------------------------
    # Workflow
    # ------------------------------------------------------------------

    def transition(self, report_id: str, status: ReportStatus | str) -> TaxReport:
        report = self._get(report_id)
        target = ReportStatus(status)
        if target not in TRANSITIONS[report.status]:
            if report.is_locked and target in (ReportStatus.DRAFT, ReportStatus.GENERATED):
                raise ImmutableReportError(report.id, report.status.value)
            raise InvalidTransitionError(
                f"Cannot move report {report_id} from {report.status.value} to {target.value}"
            )
        if target is ReportStatus.SUBMITTED and report.corrects_report_id is None:
            filed = self._filed_original(report.company_id, report.report_type, report.period)
            if filed is not None and filed.id != report.id:
                raise DuplicatePeriodError(
                    f"{report.report_type.value} report for {report.period.key} already filed",
                    existing_id=filed.id,
                )
        updated = self.repository.update_report_status(report_id, target)
        logger.info("Report %s: %s -> %s", report_id, report.status.value, target.value)
        return updated

    def submit(self, report_id: str) -> TaxReport:
        return self.transition(report_id, ReportStatus.SUBMITTED)

    def delete_draft(self, report_id: str) -> bool:
        """Delete an unsubmitted report. Filed reports are kept forever."""
        report = self.repository.get_report(report_id)
        if report is None:
            return False
        if report.is_locked:
            raise ImmutableReportError(report.id, report.status.value)
        return self.repository.delete_report(report_id)

    def figures_of(self, report: TaxReport) -> PeriodFigures:
        """The stored figures of ``report``, as computed at generation time."""
        return PeriodFigures.from_dict(report.figures)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _build(self, company_id: str, report_type: ReportType, period: Period) -> TaxReport:
        figures = self.compute_period(company_id, period)
        return TaxReport(
            company_id=company_id,
            report_type=report_type,
            period=period,
            figures=figures.to_dict(),
            status=ReportStatus.DRAFT,
            generated_at=self._clock(),
        )

    def _get(self, report_id: str) -> TaxReport:
        report = self.repository.get_report(report_id)
        if report is None:
            raise ReportNotFoundError(report_id)
        return report

    def _filed_original(
        self, company_id: str, report_type: ReportType, period: Period,
    ) -> TaxReport | None:
        for report in self.repository.find_reports(company_id, report_type, period.key):
            if report.is_locked and report.corrects_report_id is None:
                return report
        return None
