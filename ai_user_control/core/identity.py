"""
Cross-tool identity resolution and merging.

Every tool reports its users differently. This module derives one
canonical key per person and merges the per-tool snapshots sharing that
key into a single UnifiedIdentity.

Key rules:
1. A resolvable email is the key, lowercased and trimmed
2. An unresolved email is keyed by the marker plus the user's login, so
   two different unresolved users never collapse into one
3. Snapshots with neither email nor login get a content fingerprint
"""

import hashlib
import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Union

from ai_user_control.storage.models import ToolType, UserSnapshot
from .directory import DirectoryResolver

logger = logging.getLogger(__name__)

UNRESOLVED_MARKER = "[sem-usr-github]"
UNATTRIBUTED_LOGIN = "unattributed"
LAST_ACTIVITY_FORMAT = "%Y-%m-%dT%H:%M:%S"

# Metadata keys that carry the GitHub login, in lookup order
LOGIN_METADATA_KEYS = ("gitHubLogin", "github_login")


@dataclass(frozen=True)
class UnifiedIdentity:
    """One person across every tool they were found in."""
    key: str
    email: str
    name: str
    tools: FrozenSet[ToolType]
    tools_count: int
    last_activity: Mapping[ToolType, str] = field(default_factory=dict, hash=False)
    status: Mapping[ToolType, str] = field(default_factory=dict, hash=False)
    email_type: str = ""

    def uses(self, tool: ToolType) -> bool:
        return tool in self.tools

    def last_activity_for(self, tool: ToolType) -> str:
        return self.last_activity.get(tool, "")

    def status_for(self, tool: ToolType) -> str:
        return self.status.get(tool, "")

    @property
    def is_unresolved(self) -> bool:
        return self.key.startswith(UNRESOLVED_MARKER)


def is_unresolved_email(email: Optional[str]) -> bool:
    """Check whether an email is missing or carries the unresolved marker."""
    if email is None or not email.strip():
        return True
    return email.strip().lower().startswith(UNRESOLVED_MARKER)


def login_from_metadata(metadata: Optional[Mapping[str, Any]]) -> Optional[str]:
    """Return the first non-blank GitHub login found in a metadata map."""
    if not metadata:
        return None
    for key in LOGIN_METADATA_KEYS:
        value = metadata.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def extract_login(snapshot: UserSnapshot) -> Optional[str]:
    """Extract the secondary login of an unresolved snapshot.

    The display name holds the login for seats without a corporate email;
    the login metadata is the fallback.
    """
    if snapshot.name and snapshot.name.strip():
        return snapshot.name.strip()
    return login_from_metadata(snapshot.metadata)


def resolve_key(snapshot: UserSnapshot, tool: ToolType) -> str:
    """Compute the canonical identity key of a snapshot.

    Args:
        snapshot: User snapshot reported by a tool
        tool: Tool that reported the snapshot

    Returns:
        Lowercased email, or marker + "#" + login for unresolved users
    """
    if not is_unresolved_email(snapshot.email):
        return snapshot.email.strip().lower()

    login = extract_login(snapshot)
    if login:
        return f"{UNRESOLVED_MARKER}#{login.lower()}"

    fingerprint = _fingerprint(snapshot, tool)
    logger.warning(
        "Snapshot from %s has neither email nor login, keeping it apart as %s",
        tool.id, fingerprint
    )
    return f"{UNRESOLVED_MARKER}#anonymous-{fingerprint}"


def canonical_key(identity: Optional[str], metadata: Optional[Mapping[str, Any]] = None) -> str:
    """Compute the canonical identity key of a usage or spending record.

    Args:
        identity: Identity recorded by the collector (email or marker)
        metadata: Record metadata, searched for the GitHub login

    Returns:
        Lowercased email, or marker + "#" + login for unresolved records
    """
    if not is_unresolved_email(identity):
        return identity.strip().lower()

    login = login_from_metadata(metadata)
    if login:
        return f"{UNRESOLVED_MARKER}#{login.lower()}"

    logger.warning("Record without email or login attributed to %s#%s", UNRESOLVED_MARKER, UNATTRIBUTED_LOGIN)
    return f"{UNRESOLVED_MARKER}#{UNATTRIBUTED_LOGIN}"


def _fingerprint(snapshot: UserSnapshot, tool: ToolType) -> str:
    parts = [
        tool.id,
        snapshot.status or "",
        snapshot.last_activity_at.isoformat() if snapshot.last_activity_at else "",
        repr(sorted((str(k), str(v)) for k, v in snapshot.metadata.items())),
        snapshot.raw_json or "",
    ]
    return hashlib.sha1("\x1f".join(parts).encode("utf-8")).hexdigest()[:12]


class IdentityBuilder:
    """Accumulates one person's snapshots across tools."""

    def __init__(self, key: str, email: str):
        self.key = key
        self.email = email
        self._name: Optional[str] = None
        self._name_priority = -1
        self._tools: List[ToolType] = []
        self._last_activity: Dict[ToolType, str] = {}
        self._status: Dict[ToolType, str] = {}
        self._email_type = ""

    def apply_tool(self, tool: Union[ToolType, str], snapshot: UserSnapshot) -> bool:
        """Record that the person was found in a tool.

        Args:
            tool: ToolType or tool identifier
            snapshot: The person's snapshot in that tool

        Returns:
            False if the tool is unknown and the snapshot was skipped
        """
        tool_type = tool if isinstance(tool, ToolType) else ToolType.from_id(tool)
        if tool_type is None:
            logger.warning("Unknown tool: %s", tool)
            return False

        if tool_type not in self._tools:
            self._tools.append(tool_type)
        self._last_activity[tool_type] = (
            snapshot.last_activity_at.strftime(LAST_ACTIVITY_FORMAT)
            if snapshot.last_activity_at else ""
        )
        self._status[tool_type] = snapshot.status or ""
        self._apply_name(snapshot.name, tool_type.name_priority)

        email_type = snapshot.metadata.get("email_type")
        if email_type is not None and str(email_type):
            self._email_type = str(email_type)
        return True

    def _apply_name(self, candidate: Optional[str], priority: int) -> None:
        # Ties keep the name already set
        if candidate and priority > self._name_priority:
            self._name = candidate
            self._name_priority = priority

    def build(self) -> UnifiedIdentity:
        tools = frozenset(self._tools)
        return UnifiedIdentity(
            key=self.key,
            email=self.email,
            name=self._name or "",
            tools=tools,
            tools_count=len(tools),
            last_activity=MappingProxyType(dict(self._last_activity)),
            status=MappingProxyType(dict(self._status)),
            email_type=self._email_type
        )


def unify_identities(
    data_by_tool: Optional[Mapping[Union[ToolType, str], List[UserSnapshot]]]
) -> List[UnifiedIdentity]:
    """Merge per-tool user snapshots into one identity per person.

    Args:
        data_by_tool: Snapshots keyed by ToolType or tool identifier

    Returns:
        Identities sorted by tools count (descending), then key (ascending,
        case-insensitive)
    """
    if not data_by_tool:
        return []

    builders: Dict[str, IdentityBuilder] = {}
    total_entries = 0

    for tool, snapshots in data_by_tool.items():
        tool_type = tool if isinstance(tool, ToolType) else ToolType.from_id(tool)
        if tool_type is None:
            logger.warning("Unknown tool: %s, skipping %d users", tool, len(snapshots))
            continue

        for snapshot in snapshots:
            total_entries += 1
            key = resolve_key(snapshot, tool_type)
            builder = builders.get(key)
            if builder is None:
                builder = IdentityBuilder(key, snapshot.email or "")
                builders[key] = builder
            builder.apply_tool(tool_type, snapshot)

    identities = [builder.build() for builder in builders.values()]
    identities.sort(key=lambda identity: (-identity.tools_count, identity.key.lower()))

    logger.info("Unified %d tool entries into %d unique users", total_entries, len(identities))
    return identities


def build_collection_summary(
    identities: List[UnifiedIdentity],
    data_by_tool: Mapping[Union[ToolType, str], List[UserSnapshot]]
) -> str:
    """Render a plain-text summary of an identity collection run."""
    total = len(identities)
    per_tool: Dict[ToolType, int] = {tool: 0 for tool in ToolType}
    for tool, snapshots in data_by_tool.items():
        tool_type = tool if isinstance(tool, ToolType) else ToolType.from_id(tool)
        if tool_type is not None:
            per_tool[tool_type] += len(snapshots)

    multi_tool = sum(1 for identity in identities if identity.tools_count >= 2)
    all_tools = sum(1 for identity in identities if identity.tools_count == len(ToolType))
    unresolved = sum(1 for identity in identities if identity.is_unresolved)

    lines = [
        "=== Collection Summary ===",
        f"Unique users: {total}",
    ]
    for tool in ToolType:
        lines.append(f"{tool.display_name}: {per_tool[tool]} active")
    lines.append(f"Using 2+ tools: {multi_tool} ({_percent(multi_tool, total)}%)")
    lines.append(f"Using all ({len(ToolType)}): {all_tools} ({_percent(all_tools, total)}%)")
    lines.append(f"Without resolved email: {unresolved}")
    return "\n".join(lines)


def _percent(part: int, total: int) -> int:
    if total == 0:
        return 0
    # Round half up
    return int(part * 100 / total + 0.5)


def resolve_corporate_email(
    login: Optional[str],
    public_email: Optional[str],
    resolver: Optional[DirectoryResolver],
    corporate_domain: Optional[str] = None
) -> str:
    """Pick the corporate email for a user known by GitHub login.

    Order of preference:
    1. The directory entry registered for the login
    2. The public email, if it belongs to the corporate domain
    3. The unresolved marker

    Args:
        login: GitHub login
        public_email: Email published on the GitHub profile, if any
        resolver: Directory resolver, or None when the directory is unavailable
        corporate_domain: Domain corporate emails must belong to; any
            non-blank email is accepted when None

    Returns:
        A lowercased email or the unresolved marker
    """
    if resolver is not None and login and login.strip():
        email = resolver.find_email_by_git_name(login)
        if email:
            return email.strip().lower()

    if public_email and public_email.strip():
        normalized = public_email.strip().lower()
        if corporate_domain is None or normalized.endswith("@" + corporate_domain.strip().lower()):
            return normalized
        logger.debug("User %s has non-corporate email (%s), marking as unresolved", login, public_email)

    return UNRESOLVED_MARKER
