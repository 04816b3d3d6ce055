"""
Unit tests for CSV export.
"""

import csv
from datetime import date, datetime
from decimal import Decimal

from ai_user_control.core.aggregation import MultiToolRow, ReportSummary, UnregisteredRow, UserUsageRow
from ai_user_control.core.identity import unify_identities
from ai_user_control.core.report import ConsolidatedReport
from ai_user_control.export.csv_writer import (
    MULTI_TOOL_FIELDS,
    UNIFIED_USER_FIELDS,
    USAGE_FIELDS,
    export_identities,
    export_report,
)
from ai_user_control.storage.models import ToolType, UserSnapshot

STAMP = datetime(2024, 2, 1, 9, 30, 0)


def _read(path):
    with open(path, newline='', encoding='utf-8') as f:
        return list(csv.DictReader(f))


def _report(unregistered_checked=True):
    return ConsolidatedReport(
        start=date(2024, 1, 1),
        end=date(2024, 1, 31),
        generated_at=STAMP,
        usage_records=(),
        spending_records=(),
        summary=ReportSummary(Decimal("5"), 100, 50, 1),
        usage_rows=(
            UserUsageRow("a@x.com", ToolType.CLAUDE, date(2024, 1, 9), 100, 50, None, None, None, None, Decimal("5")),
            UserUsageRow("a@x.com", ToolType.GITHUB_COPILOT, None, None, None, None, 40, 10, 25.0, None),
        ),
        multi_tool_rows=(
            MultiToolRow("a@x.com", frozenset({ToolType.CLAUDE, ToolType.GITHUB_COPILOT}), 2, 150, 40, 10, Decimal("5")),
        ),
        unregistered_rows=(
            UnregisteredRow("ghost", "[sem-usr-github]", date(2024, 1, 3), 7, None),
        ),
        unregistered_checked=unregistered_checked
    )


class TestExportReport:
    """Test report files and their contents."""

    def test_files_are_written(self, tmp_path):
        files = export_report(_report(), tmp_path / "out", timestamp=STAMP)

        assert [path.name for path in files] == [
            "usage-by-user-tool-20240201-093000.csv",
            "multi-tool-users-20240201-093000.csv",
            "unregistered-users-20240201-093000.csv",
        ]
        assert all(path.exists() for path in files)

    def test_usage_rows(self, tmp_path):
        usage_path = export_report(_report(), tmp_path, timestamp=STAMP)[0]

        rows = _read(usage_path)

        assert list(rows[0].keys()) == USAGE_FIELDS
        assert rows[0]["tool"] == "Claude Code"
        assert rows[0]["input_tokens"] == "100"
        assert rows[0]["cache_read_tokens"] == ""
        assert rows[0]["cost_usd"] == "5.00"
        assert rows[1]["last_usage"] == ""
        assert rows[1]["acceptance_rate_pct"] == "25.0"
        assert rows[1]["cost_usd"] == ""

    def test_multi_tool_rows(self, tmp_path):
        multi_path = export_report(_report(), tmp_path, timestamp=STAMP)[1]

        rows = _read(multi_path)

        assert list(rows[0].keys()) == MULTI_TOOL_FIELDS
        assert rows[0]["tools"] == "Claude Code, GitHub Copilot"
        assert rows[0]["uses_claude_code"] == "yes"
        assert rows[0]["uses_cursor"] == "no"
        assert rows[0]["total_tokens"] == "150"

    def test_unregistered_rows(self, tmp_path):
        unregistered_path = export_report(_report(), tmp_path, timestamp=STAMP)[2]

        rows = _read(unregistered_path)

        assert rows == [{
            "github_login": "ghost",
            "github_email": "[sem-usr-github]",
            "last_usage": "2024-01-03",
            "lines_suggested": "7",
            "lines_accepted": "",
        }]

    def test_unchecked_directory_omits_unregistered_file(self, tmp_path):
        files = export_report(_report(unregistered_checked=False), tmp_path, timestamp=STAMP)

        assert len(files) == 2
        assert not (tmp_path / "unregistered-users-20240201-093000.csv").exists()


class TestExportIdentities:
    """Test the unified users file."""

    def test_identities_written(self, tmp_path):
        identities = unify_identities({
            ToolType.CLAUDE: [UserSnapshot("a@x.com", "Ana", status="active",
                                           last_activity_at=datetime(2024, 1, 2, 3, 4, 5))],
            ToolType.CURSOR: [UserSnapshot("a@x.com", "Ana R")],
        })

        path = export_identities(identities, tmp_path, timestamp=STAMP)
        rows = _read(path)

        assert path.name == "unified-users-20240201-093000.csv"
        assert rows[0]["key"] == "a@x.com"
        assert rows[0]["email"] == "a@x.com"
        assert rows[0]["name"] == "Ana"
        assert rows[0]["tools"] == "claude-code, cursor"
        assert rows[0]["tools_count"] == "2"
        assert rows[0]["claude_code_status"] == "active"
        assert rows[0]["claude_code_last_activity"] == "2024-01-02T03:04:05"
        assert rows[0]["github_copilot_status"] == ""

    def test_unresolved_users_keep_distinct_keys(self, tmp_path):
        identities = unify_identities({
            ToolType.GITHUB_COPILOT: [
                UserSnapshot("[SEM-USR-GITHUB]", "Alice", metadata={"gitHubLogin": "alice-login"}),
                UserSnapshot("[SEM-USR-GITHUB]", "Bob", metadata={"gitHubLogin": "bob-login"}),
            ],
        })

        rows = _read(export_identities(identities, tmp_path, timestamp=STAMP))

        assert list(rows[0].keys()) == UNIFIED_USER_FIELDS
        assert [row["key"] for row in rows] == ["[sem-usr-github]#alice-login", "[sem-usr-github]#bob-login"]
        assert {row["email"] for row in rows} == {"[SEM-USR-GITHUB]"}
