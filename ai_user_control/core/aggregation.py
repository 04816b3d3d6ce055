"""
Usage and spending aggregation.

Rolls the collected records up per (identity, tool), per identity across
tools, and into the list of Copilot users missing from the directory.

Null propagation: a summed field is None only when every contributing
record had None for it. Otherwise missing values count as zero, and a
zero total is reported as zero.
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple

from ai_user_control.storage.models import (
    ToolType,
    UnifiedSpendingRecord,
    UnifiedUsageRecord,
)
from .directory import DirectoryResolver
from .identity import UNRESOLVED_MARKER, canonical_key, login_from_metadata

logger = logging.getLogger(__name__)


class NullableSum:
    """Running sum that remembers whether any value was added."""

    __slots__ = ("total", "seen")

    def __init__(self, zero=0):
        self.total = zero
        self.seen = False

    def add(self, value) -> None:
        if value is not None:
            self.total += value
            self.seen = True

    @property
    def value(self):
        return self.total if self.seen else None

    @classmethod
    def of(cls, values: Iterable, zero=0):
        """Sum values under the null-propagation rule."""
        accumulator = cls(zero)
        for value in values:
            accumulator.add(value)
        return accumulator.value


@dataclass(frozen=True)
class ReportSummary:
    """Headline numbers of a report run."""
    total_cost: Decimal
    total_input_tokens: int
    total_output_tokens: int
    user_count: int
    cost_by_tool: Mapping[ToolType, Decimal] = field(default_factory=dict, hash=False)


@dataclass(frozen=True)
class UserUsageRow:
    """Usage of one tool by one identity over the report period."""
    identity: str
    tool: ToolType
    last_usage: Optional[date]
    input_tokens: Optional[int]
    output_tokens: Optional[int]
    cache_read_tokens: Optional[int]
    lines_suggested: Optional[int]
    lines_accepted: Optional[int]
    acceptance_rate: Optional[float]
    cost: Optional[Decimal]


@dataclass(frozen=True)
class MultiToolRow:
    """An identity using more than one tool."""
    identity: str
    tools: FrozenSet[ToolType]
    tool_count: int
    total_tokens: Optional[int]
    lines_suggested: Optional[int]
    lines_accepted: Optional[int]
    total_cost: Optional[Decimal]

    def uses(self, tool: ToolType) -> bool:
        return tool in self.tools


@dataclass(frozen=True)
class UnregisteredRow:
    """A user of a tool without verified emails who is not in the directory."""
    login: str
    identity: str
    last_usage: Optional[date]
    lines_suggested: Optional[int]
    lines_accepted: Optional[int]


def calculate_summary(
    usage_records: List[UnifiedUsageRecord],
    spending_records: List[UnifiedSpendingRecord]
) -> ReportSummary:
    """Calculate headline totals over all collected records.

    Args:
        usage_records: Usage records from every collector
        spending_records: Spending records from every collector

    Returns:
        ReportSummary with total cost, token totals, distinct users and
        cost per tool
    """
    total_cost = sum(
        (record.amount for record in spending_records if record.amount is not None),
        Decimal("0")
    )
    total_input = sum(record.input_tokens for record in usage_records if record.input_tokens is not None)
    total_output = sum(record.output_tokens for record in usage_records if record.output_tokens is not None)
    users = {canonical_key(record.identity, record.metadata) for record in usage_records}

    cost_by_tool: Dict[ToolType, Decimal] = {}
    for record in spending_records:
        if record.amount is not None:
            cost_by_tool[record.tool] = cost_by_tool.get(record.tool, Decimal("0")) + record.amount

    return ReportSummary(
        total_cost=total_cost,
        total_input_tokens=total_input,
        total_output_tokens=total_output,
        user_count=len(users),
        cost_by_tool=cost_by_tool
    )


def acceptance_rate(lines_suggested: Optional[int], lines_accepted: Optional[int]) -> Optional[float]:
    """Percentage of suggested lines that were accepted.

    Returns:
        accepted / suggested * 100, or None when suggested is missing or
        not positive, or accepted is missing
    """
    if lines_suggested is None or lines_suggested <= 0 or lines_accepted is None:
        return None
    return lines_accepted / lines_suggested * 100.0


def build_user_usage_rows(
    usage_records: List[UnifiedUsageRecord],
    spending_records: List[UnifiedSpendingRecord]
) -> List[UserUsageRow]:
    """Roll usage and spending up per (identity, tool).

    Args:
        usage_records: Usage records from every collector
        spending_records: Spending records from every collector

    Returns:
        One row per (identity, tool), sorted by identity then tool id
    """
    costs: Dict[Tuple[str, ToolType], NullableSum] = {}
    for record in spending_records:
        key = (canonical_key(record.identity, record.metadata), record.tool)
        costs.setdefault(key, NullableSum(Decimal("0"))).add(record.amount)

    groups: Dict[Tuple[str, ToolType], List[UnifiedUsageRecord]] = {}
    for record in usage_records:
        key = (canonical_key(record.identity, record.metadata), record.tool)
        groups.setdefault(key, []).append(record)

    rows = []
    for (identity, tool), records in groups.items():
        lines_suggested = NullableSum.of(r.lines_suggested for r in records)
        lines_accepted = NullableSum.of(r.lines_accepted for r in records)
        cost = costs.get((identity, tool))

        rows.append(UserUsageRow(
            identity=identity,
            tool=tool,
            last_usage=_last_usage(records),
            input_tokens=NullableSum.of(r.input_tokens for r in records),
            output_tokens=NullableSum.of(r.output_tokens for r in records),
            cache_read_tokens=NullableSum.of(r.cache_read_tokens for r in records),
            lines_suggested=lines_suggested,
            lines_accepted=lines_accepted,
            acceptance_rate=acceptance_rate(lines_suggested, lines_accepted),
            cost=cost.value if cost is not None else None
        ))

    rows.sort(key=lambda row: (row.identity, row.tool.id))
    return rows


def build_multi_tool_rows(
    usage_records: List[UnifiedUsageRecord],
    spending_records: List[UnifiedSpendingRecord]
) -> List[MultiToolRow]:
    """Roll usage up per identity, keeping identities seen in 2+ tools.

    Args:
        usage_records: Usage records from every collector
        spending_records: Spending records from every collector

    Returns:
        Rows sorted by tool count (descending), then identity
    """
    costs: Dict[str, NullableSum] = {}
    for record in spending_records:
        key = canonical_key(record.identity, record.metadata)
        costs.setdefault(key, NullableSum(Decimal("0"))).add(record.amount)

    groups: Dict[str, List[UnifiedUsageRecord]] = {}
    for record in usage_records:
        groups.setdefault(canonical_key(record.identity, record.metadata), []).append(record)

    rows = []
    for identity, records in groups.items():
        tools = frozenset(record.tool for record in records)
        if len(tools) < 2:
            continue

        tokens = NullableSum()
        for record in records:
            tokens.add(record.input_tokens)
            tokens.add(record.output_tokens)
            tokens.add(record.cache_read_tokens)
        cost = costs.get(identity)

        rows.append(MultiToolRow(
            identity=identity,
            tools=tools,
            tool_count=len(tools),
            total_tokens=tokens.value,
            lines_suggested=NullableSum.of(r.lines_suggested for r in records),
            lines_accepted=NullableSum.of(r.lines_accepted for r in records),
            total_cost=cost.value if cost is not None else None
        ))

    rows.sort(key=lambda row: (-row.tool_count, row.identity))
    return rows


def build_unregistered_rows(
    usage_records: List[UnifiedUsageRecord],
    resolver: Optional[DirectoryResolver]
) -> List[UnregisteredRow]:
    """Find users of tools without verified emails missing from the directory.

    Args:
        usage_records: Usage records from every collector
        resolver: Directory resolver; the check is skipped when None

    Returns:
        One row per unmatched user, sorted by login
    """
    if resolver is None:
        logger.warning("Directory resolver not available, skipping unregistered user check")
        return []

    groups: Dict[str, List[UnifiedUsageRecord]] = {}
    for record in usage_records:
        if record.tool.has_verified_email:
            continue
        groups.setdefault(canonical_key(record.identity, record.metadata), []).append(record)

    rows = []
    for key, records in groups.items():
        login = _login_for_group(key, records)
        if resolver.find_email_by_git_name(login) is not None:
            continue

        rows.append(UnregisteredRow(
            login=login,
            identity=records[0].identity or "",
            last_usage=_last_usage(records),
            lines_suggested=NullableSum.of(r.lines_suggested for r in records),
            lines_accepted=NullableSum.of(r.lines_accepted for r in records)
        ))

    rows.sort(key=lambda row: row.login.lower())
    logger.info("Found %d unregistered users among %d checked", len(rows), len(groups))
    return rows


def _login_for_group(key: str, records: List[UnifiedUsageRecord]) -> str:
    for record in records:
        login = login_from_metadata(record.metadata)
        if login:
            return login
    prefix = UNRESOLVED_MARKER + "#"
    return key[len(prefix):] if key.startswith(prefix) else key


def _last_usage(records: List[UnifiedUsageRecord]) -> Optional[date]:
    dates = [record.date for record in records if record.date is not None]
    return max(dates) if dates else None
