"""
Data models for collected usage, spending and identity data.

Defines the normalized records every source collector produces.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping, Optional


class ToolType(Enum):
    """AI coding tools supported by the report.

    Each member carries its identifier, display name, the priority its
    display names get when identities are merged (higher wins), and whether
    the tool reports a verified corporate email natively.
    """
    CLAUDE = ("claude-code", "Claude Code", 1, True)
    GITHUB_COPILOT = ("github-copilot", "GitHub Copilot", 2, False)
    CURSOR = ("cursor", "Cursor", 0, True)

    def __init__(self, tool_id: str, display_name: str, name_priority: int, has_verified_email: bool):
        self.id = tool_id
        self.display_name = display_name
        self.name_priority = name_priority
        self.has_verified_email = has_verified_email

    @classmethod
    def from_id(cls, value: Optional[str]) -> Optional["ToolType"]:
        """Resolve a tool identifier, ignoring case.

        Args:
            value: Tool identifier such as "cursor" or "github-copilot"

        Returns:
            Matching ToolType, or None if the identifier is unknown
        """
        if not value:
            return None
        normalized = value.strip().lower()
        for tool in cls:
            if tool.id == normalized:
                return tool
        return _TOOL_ALIASES.get(normalized)


# Identifiers used by older exports
_TOOL_ALIASES = {
    "claude": ToolType.CLAUDE,
    "copilot": ToolType.GITHUB_COPILOT,
}


def _freeze(metadata: Optional[Mapping[str, Any]]) -> Mapping[str, Any]:
    """Copy a metadata map into a read-only view."""
    return MappingProxyType(dict(metadata or {}))


@dataclass(frozen=True)
class UnifiedUsageRecord:
    """Usage of one tool by one identity on one day.

    Numeric fields are None when the source tool does not report them
    (Copilot has no token counts, Claude Code has no line counts).
    """
    identity: Optional[str]
    tool: ToolType
    date: Optional[date]
    input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None
    cache_read_tokens: Optional[int] = None
    lines_suggested: Optional[int] = None
    lines_accepted: Optional[int] = None
    acceptance_rate: Optional[float] = None
    metadata: Mapping[str, Any] = field(default_factory=dict, hash=False)

    def __post_init__(self):
        object.__setattr__(self, "metadata", _freeze(self.metadata))


@dataclass(frozen=True)
class UnifiedSpendingRecord:
    """Spend attributed to one identity for one tool over a period.

    The period is "YYYY-MM-DD", "YYYY-MM" or "start_end" depending on
    the granularity the source exposes.
    """
    identity: Optional[str]
    tool: ToolType
    period: str
    amount: Optional[Decimal]
    currency: Optional[str] = "USD"
    metadata: Mapping[str, Any] = field(default_factory=dict, hash=False)

    def __post_init__(self):
        if self.amount is not None and not isinstance(self.amount, Decimal):
            object.__setattr__(self, "amount", Decimal(str(self.amount)))
        if self.currency is None:
            object.__setattr__(self, "currency", "USD")
        object.__setattr__(self, "metadata", _freeze(self.metadata))


@dataclass(frozen=True)
class UserSnapshot:
    """A user as reported by one tool's member or seat listing."""
    email: Optional[str]
    name: Optional[str] = None
    status: Optional[str] = None
    last_activity_at: Optional[datetime] = None
    metadata: Mapping[str, Any] = field(default_factory=dict, hash=False)
    raw_json: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "metadata", _freeze(self.metadata))
