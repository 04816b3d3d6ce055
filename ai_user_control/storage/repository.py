"""
File-backed sources for usage, spending and user data.

Each tool's export is read from JSON Lines files: one JSON object per
line, blank lines ignored.
"""

import json
import logging
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from ai_user_control.config.loader import ReportConfig, SourceConfig
from ai_user_control.core.collection import CollectionError, IdentitySource, UsageDataCollector
from ai_user_control.core.directory import DirectoryResolver
from ai_user_control.core.identity import is_unresolved_email, resolve_corporate_email
from .models import ToolType, UnifiedSpendingRecord, UnifiedUsageRecord, UserSnapshot

logger = logging.getLogger(__name__)

LOGIN_METADATA_KEY = "gitHubLogin"


def read_json_lines(path: Path) -> Iterator[Dict[str, Any]]:
    """Yield the JSON objects stored one per line in a file.

    Args:
        path: JSON Lines file

    Yields:
        One dictionary per non-blank line

    Raises:
        CollectionError: If the file is missing, unreadable or malformed
    """
    try:
        with open(path, 'r', encoding='utf-8') as f:
            for line_number, line in enumerate(f, start=1):
                if not line.strip():
                    continue
                try:
                    item = json.loads(line)
                except json.JSONDecodeError as e:
                    raise CollectionError(f"{path}:{line_number}: invalid JSON: {e}")
                if not isinstance(item, dict):
                    raise CollectionError(f"{path}:{line_number}: expected a JSON object")
                yield item
    except OSError as e:
        raise CollectionError(f"Cannot read {path}: {e}")


def _optional_int(item: Dict[str, Any], key: str) -> Optional[int]:
    value = item.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"'{key}' must be a number, got {value!r}")
    return int(value)


def _optional_float(item: Dict[str, Any], key: str) -> Optional[float]:
    value = item.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"'{key}' must be a number, got {value!r}")
    return float(value)


def _optional_decimal(item: Dict[str, Any], key: str) -> Optional[Decimal]:
    value = item.get(key)
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError(f"'{key}' must be a number, got {value!r}")
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"'{key}' must be a number, got {value!r}")


def _optional_str(item: Dict[str, Any], key: str) -> Optional[str]:
    value = item.get(key)
    if value is None:
        return None
    return str(value).strip() or None


def _metadata(item: Dict[str, Any]) -> Dict[str, Any]:
    metadata = item.get("metadata") or {}
    if not isinstance(metadata, dict):
        raise ValueError("'metadata' must be an object")
    return dict(metadata)


def parse_usage_record(item: Dict[str, Any], tool: ToolType) -> UnifiedUsageRecord:
    """Build a usage record from one exported JSON object.

    The email is resolved by the caller; this only maps the fields.

    Raises:
        ValueError: If a field has the wrong type
    """
    raw_date = item.get("date")
    if raw_date is not None and not isinstance(raw_date, str):
        raise ValueError(f"'date' must be an ISO date, got {raw_date!r}")
    return UnifiedUsageRecord(
        identity=_optional_str(item, "email"),
        tool=tool,
        date=date.fromisoformat(raw_date) if raw_date else None,
        input_tokens=_optional_int(item, "input_tokens"),
        output_tokens=_optional_int(item, "output_tokens"),
        cache_read_tokens=_optional_int(item, "cache_read_tokens"),
        lines_suggested=_optional_int(item, "lines_suggested"),
        lines_accepted=_optional_int(item, "lines_accepted"),
        acceptance_rate=_optional_float(item, "acceptance_rate"),
        metadata=_metadata(item)
    )


def parse_spending_record(item: Dict[str, Any], tool: ToolType) -> UnifiedSpendingRecord:
    """Build a spending record from one exported JSON object.

    Raises:
        ValueError: If a field has the wrong type or the period is missing
    """
    period = _optional_str(item, "period")
    if period is None:
        raise ValueError("'period' is required")
    return UnifiedSpendingRecord(
        identity=_optional_str(item, "email"),
        tool=tool,
        period=period,
        amount=_optional_decimal(item, "amount"),
        currency=_optional_str(item, "currency"),
        metadata=_metadata(item)
    )


def parse_user_snapshot(item: Dict[str, Any]) -> UserSnapshot:
    """Build a user snapshot from one exported JSON object.

    Raises:
        ValueError: If last_activity_at is not an ISO timestamp
    """
    raw_activity = item.get("last_activity_at")
    if raw_activity is not None and not isinstance(raw_activity, str):
        raise ValueError(f"'last_activity_at' must be an ISO timestamp, got {raw_activity!r}")
    return UserSnapshot(
        email=_optional_str(item, "email"),
        name=_optional_str(item, "name"),
        status=_optional_str(item, "status"),
        last_activity_at=datetime.fromisoformat(raw_activity) if raw_activity else None,
        metadata=_metadata(item),
        raw_json=json.dumps(item, sort_keys=True)
    )


def _period_in_range(period: str, start: date, end: date) -> bool:
    # Only day periods can be filtered; months and ranges are kept as exported
    try:
        day = date.fromisoformat(period)
    except ValueError:
        return True
    return start <= day <= end


class JsonLinesUsageCollector(UsageDataCollector):
    """Usage and spending collector reading one tool's JSON Lines export."""

    def __init__(
        self,
        tool: ToolType,
        usage_path: Optional[Path] = None,
        spending_path: Optional[Path] = None,
        resolver: Optional[DirectoryResolver] = None,
        corporate_domain: Optional[str] = None
    ):
        """Initialize the collector.

        Args:
            tool: Tool the export belongs to
            usage_path: Usage export; no usage is collected when None
            spending_path: Spending export; no spending is collected when None
            resolver: Directory resolver used for logins without an email
            corporate_domain: Domain public emails must belong to
        """
        self._tool = tool
        self.usage_path = usage_path
        self.spending_path = spending_path
        self.resolver = resolver
        self.corporate_domain = corporate_domain

    @property
    def tool_type(self) -> ToolType:
        return self._tool

    def collect_usage_data(self, start: date, end: date) -> List[UnifiedUsageRecord]:
        if self.usage_path is None:
            logger.debug("No usage export configured for %s", self._tool.id)
            return []

        records = []
        for line_number, item in enumerate(read_json_lines(self.usage_path), start=1):
            try:
                record = parse_usage_record(item, self._tool)
                if record.date is not None and not (start <= record.date <= end):
                    continue
                resolved = self._with_identity(item)
                if resolved is not item:
                    record = parse_usage_record(resolved, self._tool)
            except ValueError as e:
                raise CollectionError(f"{self.usage_path}: record {line_number}: {e}")
            records.append(record)
        return records

    def collect_spending_data(self, start: date, end: date) -> List[UnifiedSpendingRecord]:
        if self.spending_path is None:
            logger.debug("No spending export configured for %s", self._tool.id)
            return []

        records = []
        for line_number, item in enumerate(read_json_lines(self.spending_path), start=1):
            try:
                record = parse_spending_record(item, self._tool)
            except ValueError as e:
                raise CollectionError(f"{self.spending_path}: record {line_number}: {e}")
            if _period_in_range(record.period, start, end):
                records.append(record)
        return records

    def _with_identity(self, item: Dict[str, Any]) -> Dict[str, Any]:
        """Resolve the corporate email of records known only by login.

        The login is always kept in the metadata.
        """
        if self._tool.has_verified_email:
            return item

        email = _optional_str(item, "email")
        login = _optional_str(item, "login")
        public_email = _optional_str(item, "public_email")
        needs_email = is_unresolved_email(email) and (login is not None or public_email is not None)
        if not needs_email and login is None:
            return item

        resolved = dict(item)
        if needs_email:
            resolved["email"] = resolve_corporate_email(login, public_email, self.resolver, self.corporate_domain)
        if login:
            metadata = _metadata(item)
            metadata.setdefault(LOGIN_METADATA_KEY, login)
            resolved["metadata"] = metadata
        return resolved


class JsonLinesIdentitySource(IdentitySource):
    """Identity source reading one tool's member export."""

    def __init__(self, tool: ToolType, users_path: Optional[Path], enabled: bool = True):
        self.tool = tool
        self.users_path = users_path
        self.enabled = enabled

    @property
    def tool_name(self) -> str:
        return self.tool.id

    @property
    def display_name(self) -> str:
        return self.tool.display_name

    def is_enabled(self) -> bool:
        return self.enabled and self.users_path is not None

    def fetch_users(self) -> List[UserSnapshot]:
        if self.users_path is None:
            return []

        users = []
        for line_number, item in enumerate(read_json_lines(self.users_path), start=1):
            try:
                users.append(parse_user_snapshot(item))
            except ValueError as e:
                raise CollectionError(f"{self.users_path}: record {line_number}: {e}")
        return users


def build_collectors(
    config: ReportConfig,
    resolver: Optional[DirectoryResolver] = None
) -> List[UsageDataCollector]:
    """Create one collector per enabled source, in configuration order."""
    collectors: List[UsageDataCollector] = []
    for source in config.enabled_sources():
        if source.usage_file is None and source.spending_file is None:
            logger.info("Source %s has no usage or spending export, skipping", source.tool.id)
            continue
        collectors.append(JsonLinesUsageCollector(
            tool=source.tool,
            usage_path=source.usage_file,
            spending_path=source.spending_file,
            resolver=resolver,
            corporate_domain=config.corporate_domain
        ))
    logger.info("Registered %d collectors", len(collectors))
    return collectors


def build_identity_sources(config: ReportConfig) -> List[IdentitySource]:
    """Create one identity source per configured tool, in configuration order."""
    return [_identity_source(source) for source in config.sources]


def _identity_source(source: SourceConfig) -> IdentitySource:
    return JsonLinesIdentitySource(source.tool, source.users_file, enabled=source.enabled)
