"""
Consolidated report generation.

Runs one report: collects from every source, then aggregates the
results into the rows handed to the report writer. A failing source or
an unavailable directory degrades the report but never aborts it.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import List, Optional, Tuple

from ai_user_control.storage.models import UnifiedSpendingRecord, UnifiedUsageRecord
from .aggregation import (
    MultiToolRow,
    ReportSummary,
    UnregisteredRow,
    UserUsageRow,
    build_multi_tool_rows,
    build_unregistered_rows,
    build_user_usage_rows,
    calculate_summary,
)
from .collection import CollectionOrchestrator, CollectionResult
from .directory import DirectoryResolver

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConsolidatedReport:
    """Result of one report run."""
    start: date
    end: date
    generated_at: datetime
    usage_records: Tuple[UnifiedUsageRecord, ...]
    spending_records: Tuple[UnifiedSpendingRecord, ...]
    summary: ReportSummary
    usage_rows: Tuple[UserUsageRow, ...]
    multi_tool_rows: Tuple[MultiToolRow, ...]
    unregistered_rows: Tuple[UnregisteredRow, ...]
    failures: Tuple[CollectionResult, ...] = ()
    unregistered_checked: bool = True

    @property
    def period(self) -> str:
        return f"{self.start.isoformat()} to {self.end.isoformat()}"

    @property
    def is_degraded(self) -> bool:
        """True if any source failed or the directory check was skipped."""
        return bool(self.failures) or not self.unregistered_checked


def generate_report(
    orchestrator: CollectionOrchestrator,
    start: date,
    end: date,
    resolver: Optional[DirectoryResolver] = None
) -> ConsolidatedReport:
    """Generate the consolidated report for a date range.

    Args:
        orchestrator: Orchestrator wrapping every registered collector
        start: First day of the period (inclusive)
        end: Last day of the period (inclusive)
        resolver: Directory resolver for the unregistered user check;
            the check is skipped when None

    Returns:
        ConsolidatedReport with the summary and all row collections

    Raises:
        ValueError: If start is after end
    """
    if start > end:
        raise ValueError(f"start ({start}) must not be after end ({end})")

    logger.info("Starting report generation for period %s to %s", start, end)
    data = orchestrator.collect(start, end)

    for failure in data.failures:
        logger.warning("Report is missing %s data from %s: %s", failure.operation, failure.source, failure.error)

    summary = calculate_summary(data.usage_records, data.spending_records)
    usage_rows: List[UserUsageRow] = build_user_usage_rows(data.usage_records, data.spending_records)
    multi_tool_rows = build_multi_tool_rows(data.usage_records, data.spending_records)
    unregistered_rows = build_unregistered_rows(data.usage_records, resolver)

    logger.info(
        "Report generation completed. Usage records: %d, Spending records: %d, Total cost: $%s",
        len(data.usage_records), len(data.spending_records), summary.total_cost
    )

    return ConsolidatedReport(
        start=start,
        end=end,
        generated_at=datetime.now(),
        usage_records=tuple(data.usage_records),
        spending_records=tuple(data.spending_records),
        summary=summary,
        usage_rows=tuple(usage_rows),
        multi_tool_rows=tuple(multi_tool_rows),
        unregistered_rows=tuple(unregistered_rows),
        failures=tuple(data.failures),
        unregistered_checked=resolver is not None
    )
