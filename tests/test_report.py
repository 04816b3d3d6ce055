"""
Unit tests for consolidated report generation.
"""

from datetime import date
from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from ai_user_control.core.collection import CollectedData, CollectionOrchestrator, CollectionResult, USAGE
from ai_user_control.core.identity import UNRESOLVED_MARKER
from ai_user_control.core.report import generate_report
from ai_user_control.storage.models import ToolType, UnifiedSpendingRecord, UnifiedUsageRecord

START = date(2024, 1, 1)
END = date(2024, 1, 31)


def _orchestrator(usage=(), spending=(), results=()):
    orchestrator = MagicMock(spec=CollectionOrchestrator)
    orchestrator.collect.return_value = CollectedData(
        usage_records=list(usage),
        spending_records=list(spending),
        results=list(results)
    )
    return orchestrator


class TestGenerateReport:
    """Test the report pipeline from collection to rows."""

    def test_report_contains_all_rollups(self):
        usage = [
            UnifiedUsageRecord("a@x.com", ToolType.CLAUDE, date(2024, 1, 5), input_tokens=100),
            UnifiedUsageRecord("a@x.com", ToolType.CURSOR, date(2024, 1, 6), input_tokens=20),
            UnifiedUsageRecord(UNRESOLVED_MARKER, ToolType.GITHUB_COPILOT, date(2024, 1, 7),
                               lines_suggested=10, lines_accepted=5, metadata={"gitHubLogin": "ghost"}),
        ]
        spending = [UnifiedSpendingRecord("a@x.com", ToolType.CURSOR, "2024-01", Decimal("4.00"))]
        resolver = MagicMock()
        resolver.find_email_by_git_name.return_value = None
        orchestrator = _orchestrator(usage, spending)

        report = generate_report(orchestrator, START, END, resolver)

        orchestrator.collect.assert_called_once_with(START, END)
        assert report.period == "2024-01-01 to 2024-01-31"
        assert report.summary.total_cost == Decimal("4.00")
        assert report.summary.user_count == 2
        assert len(report.usage_rows) == 3
        assert [row.identity for row in report.multi_tool_rows] == ["a@x.com"]
        assert [row.login for row in report.unregistered_rows] == ["ghost"]
        assert report.unregistered_checked
        assert not report.is_degraded

    def test_failures_degrade_the_report(self):
        failure = CollectionResult.failure("cursor", USAGE, "boom")

        report = generate_report(_orchestrator(results=[failure]), START, END, MagicMock())

        assert report.failures == (failure,)
        assert report.is_degraded

    def test_missing_directory_skips_unregistered_check(self):
        usage = [UnifiedUsageRecord(UNRESOLVED_MARKER, ToolType.GITHUB_COPILOT, date(2024, 1, 7),
                                    metadata={"gitHubLogin": "ghost"})]

        report = generate_report(_orchestrator(usage), START, END, None)

        assert report.unregistered_rows == ()
        assert not report.unregistered_checked
        assert report.is_degraded

    def test_start_after_end_is_rejected(self):
        orchestrator = _orchestrator()

        with pytest.raises(ValueError):
            generate_report(orchestrator, END, START)
        orchestrator.collect.assert_not_called()
