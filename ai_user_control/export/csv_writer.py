"""
CSV export of reports and unified identities.

Each export writes one timestamped file per row collection into the
output directory, creating the directory if needed.
"""

import csv
import logging
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from ai_user_control.core.aggregation import MultiToolRow, UnregisteredRow, UserUsageRow
from ai_user_control.core.identity import UnifiedIdentity
from ai_user_control.core.report import ConsolidatedReport
from ai_user_control.storage.models import ToolType

logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y%m%d-%H%M%S"


def _tool_column(tool: ToolType) -> str:
    return tool.id.replace('-', '_')


USAGE_FIELDS = [
    "email", "tool", "last_usage",
    "input_tokens", "output_tokens", "cache_read_tokens",
    "lines_suggested", "lines_accepted", "acceptance_rate_pct",
    "cost_usd",
]

UNREGISTERED_FIELDS = [
    "github_login", "github_email", "last_usage",
    "lines_suggested", "lines_accepted",
]

MULTI_TOOL_FIELDS = (
    ["email", "tools", "tool_count"]
    + [f"uses_{_tool_column(tool)}" for tool in ToolType]
    + ["total_tokens", "lines_suggested", "lines_accepted", "total_cost_usd"]
)

UNIFIED_USER_FIELDS = (
    ["key", "email", "name", "tools", "tools_count", "email_type"]
    + [f"{_tool_column(tool)}_{column}" for tool in ToolType for column in ("status", "last_activity")]
)


def _cell(value: Any) -> Any:
    """Render a value for a CSV cell; missing values become empty cells."""
    if value is None:
        return ""
    if isinstance(value, Decimal):
        return f"{value:.2f}"
    if isinstance(value, float):
        return f"{value:.1f}"
    return value


def usage_row_to_dict(row: UserUsageRow) -> Dict[str, Any]:
    return {
        "email": row.identity,
        "tool": row.tool.display_name,
        "last_usage": _cell(row.last_usage.isoformat() if row.last_usage else None),
        "input_tokens": _cell(row.input_tokens),
        "output_tokens": _cell(row.output_tokens),
        "cache_read_tokens": _cell(row.cache_read_tokens),
        "lines_suggested": _cell(row.lines_suggested),
        "lines_accepted": _cell(row.lines_accepted),
        "acceptance_rate_pct": _cell(row.acceptance_rate),
        "cost_usd": _cell(row.cost),
    }


def unregistered_row_to_dict(row: UnregisteredRow) -> Dict[str, Any]:
    return {
        "github_login": row.login,
        "github_email": row.identity,
        "last_usage": _cell(row.last_usage.isoformat() if row.last_usage else None),
        "lines_suggested": _cell(row.lines_suggested),
        "lines_accepted": _cell(row.lines_accepted),
    }


def multi_tool_row_to_dict(row: MultiToolRow) -> Dict[str, Any]:
    data = {
        "email": row.identity,
        "tools": ", ".join(tool.display_name for tool in ToolType if row.uses(tool)),
        "tool_count": row.tool_count,
    }
    for tool in ToolType:
        data[f"uses_{_tool_column(tool)}"] = "yes" if row.uses(tool) else "no"
    data.update({
        "total_tokens": _cell(row.total_tokens),
        "lines_suggested": _cell(row.lines_suggested),
        "lines_accepted": _cell(row.lines_accepted),
        "total_cost_usd": _cell(row.total_cost),
    })
    return data


def identity_to_dict(identity: UnifiedIdentity) -> Dict[str, Any]:
    data = {
        "key": identity.key,
        "email": identity.email,
        "name": identity.name,
        "tools": ", ".join(tool.id for tool in ToolType if identity.uses(tool)),
        "tools_count": identity.tools_count,
        "email_type": identity.email_type,
    }
    for tool in ToolType:
        data[f"{_tool_column(tool)}_status"] = identity.status_for(tool)
        data[f"{_tool_column(tool)}_last_activity"] = identity.last_activity_for(tool)
    return data


def write_csv(path: Path, fieldnames: List[str], rows: Iterable[Dict[str, Any]]) -> int:
    """Write dictionaries to a CSV file with a header row.

    Returns:
        Number of data rows written
    """
    count = 0
    with open(path, 'w', newline='', encoding='utf-8') as f:
        writer = csv.DictWriter(f, fieldnames=fieldnames)
        writer.writeheader()
        for row in rows:
            writer.writerow(row)
            count += 1
    logger.info("Created: %s (%d rows)", path.name, count)
    return count


def _prepare(output_dir: Path, timestamp: Optional[datetime]) -> str:
    if not output_dir.exists():
        output_dir.mkdir(parents=True, exist_ok=True)
        logger.info("Created output directory: %s", output_dir)
    return (timestamp or datetime.now()).strftime(TIMESTAMP_FORMAT)


def export_report(
    report: ConsolidatedReport,
    output_dir: Path,
    timestamp: Optional[datetime] = None
) -> List[Path]:
    """Write a consolidated report as CSV files.

    Args:
        report: Report to export
        output_dir: Directory to write into
        timestamp: Timestamp used in file names (defaults to now)

    Returns:
        Paths of the files written: usage, multi-tool, then unregistered
        users (omitted when the directory check was skipped)

    Raises:
        OSError: If the files cannot be written
    """
    output_dir = Path(output_dir)
    stamp = _prepare(output_dir, timestamp)

    usage_path = output_dir / f"usage-by-user-tool-{stamp}.csv"
    write_csv(usage_path, USAGE_FIELDS, (usage_row_to_dict(row) for row in report.usage_rows))

    multi_tool_path = output_dir / f"multi-tool-users-{stamp}.csv"
    write_csv(multi_tool_path, MULTI_TOOL_FIELDS, (multi_tool_row_to_dict(row) for row in report.multi_tool_rows))

    files = [usage_path, multi_tool_path]
    if report.unregistered_checked:
        unregistered_path = output_dir / f"unregistered-users-{stamp}.csv"
        write_csv(
            unregistered_path,
            UNREGISTERED_FIELDS,
            (unregistered_row_to_dict(row) for row in report.unregistered_rows)
        )
        files.append(unregistered_path)

    logger.info("Report export completed. Generated %d files", len(files))
    return files


def export_identities(
    identities: List[UnifiedIdentity],
    output_dir: Path,
    timestamp: Optional[datetime] = None
) -> Path:
    """Write unified identities to a single CSV file.

    Raises:
        OSError: If the file cannot be written
    """
    stamp = _prepare(Path(output_dir), timestamp)
    path = Path(output_dir) / f"unified-users-{stamp}.csv"
    write_csv(path, UNIFIED_USER_FIELDS, (identity_to_dict(identity) for identity in identities))
    return path
