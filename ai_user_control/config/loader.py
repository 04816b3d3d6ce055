"""
Configuration management and loading.

Handles report settings: sources, collection limits and the directory.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from ai_user_control.storage.models import ToolType


@dataclass(frozen=True)
class CollectionConfig:
    """Limits applied to collector calls."""
    timeout_seconds: Optional[float] = 120.0
    max_workers: Optional[int] = None

    def __post_init__(self):
        """Validate collection limits are positive."""
        if self.timeout_seconds is not None and self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")
        if self.max_workers is not None and self.max_workers <= 0:
            raise ValueError("max_workers must be > 0")


@dataclass(frozen=True)
class DirectoryConfig:
    """Corporate directory used to resolve GitHub logins."""
    enabled: bool = False
    domain: Optional[str] = None
    token_env: str = "WORKSPACE_ACCESS_TOKEN"
    custom_schema: str = "custom"
    git_name_field: str = "git_name"
    timeout_seconds: float = 30.0

    def __post_init__(self):
        """Validate directory settings."""
        if self.enabled and not self.domain:
            raise ValueError("directory.domain is required when the directory is enabled")
        if self.timeout_seconds <= 0:
            raise ValueError("directory.timeout_seconds must be > 0")


@dataclass(frozen=True)
class SourceConfig:
    """File-backed export of one tool's data."""
    tool: ToolType
    usage_file: Optional[Path] = None
    spending_file: Optional[Path] = None
    users_file: Optional[Path] = None
    enabled: bool = True


@dataclass(frozen=True)
class ReportConfig:
    """Complete report configuration."""
    sources: List[SourceConfig]
    collection: CollectionConfig = field(default_factory=CollectionConfig)
    directory: DirectoryConfig = field(default_factory=DirectoryConfig)
    corporate_domain: Optional[str] = None
    output_dir: Path = Path("output")

    def enabled_sources(self) -> List[SourceConfig]:
        return [source for source in self.sources if source.enabled]


def load_report_config(path: str) -> ReportConfig:
    """Load and validate report configuration from YAML file.

    Validation is strict: unknown keys and wrongly typed values are
    rejected instead of silently ignored.

    Args:
        path: Path to YAML configuration file

    Returns:
        Validated ReportConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Report config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if not raw_config:
        raise ValueError("Configuration file is empty")
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a dictionary")

    allowed_top_keys = {'sources', 'collection', 'directory', 'identity', 'export'}
    unknown_keys = set(raw_config.keys()) - allowed_top_keys
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    base_dir = config_path.parent

    if 'sources' not in raw_config:
        raise ValueError("Missing required 'sources' section")
    sources_data = raw_config['sources'] or []
    if not isinstance(sources_data, list):
        raise ValueError("'sources' must be a list")

    sources = []
    seen_tools = set()
    for index, source_data in enumerate(sources_data):
        source = _parse_source(source_data, f"sources[{index}]", base_dir)
        if source.tool in seen_tools:
            raise ValueError(f"Duplicate source for tool '{source.tool.id}'")
        seen_tools.add(source.tool)
        sources.append(source)

    collection = _parse_collection(_section(raw_config, 'collection'))
    directory = _parse_directory(_section(raw_config, 'directory'))

    identity_data = _section(raw_config, 'identity')
    _reject_unknown(identity_data, {'corporate_domain'}, 'identity')
    corporate_domain = _optional_str(identity_data, 'corporate_domain', 'identity')

    export_data = _section(raw_config, 'export')
    _reject_unknown(export_data, {'output_dir'}, 'export')
    output_dir = _optional_str(export_data, 'output_dir', 'export')

    return ReportConfig(
        sources=sources,
        collection=collection,
        directory=directory,
        corporate_domain=corporate_domain,
        output_dir=_resolve_path(output_dir, base_dir) if output_dir else Path("output")
    )


def _section(raw_config: Dict, name: str) -> Dict:
    data = raw_config.get(name) or {}
    if not isinstance(data, dict):
        raise ValueError(f"'{name}' must be a dictionary")
    return data


def _reject_unknown(data: Dict, allowed_keys: set, path: str) -> None:
    unknown_keys = set(data.keys()) - allowed_keys
    if unknown_keys:
        raise ValueError(f"Unknown keys in {path}: {unknown_keys}")


def _optional_str(data: Dict, key: str, path: str) -> Optional[str]:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"'{key}' in {path} must be a non-empty string")
    return value.strip()


def _optional_positive(data: Dict, key: str, path: str) -> Optional[float]:
    value = data.get(key)
    if value is None:
        return None
    # bool is an int subclass
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        raise ValueError(f"'{key}' in {path} must be > 0")
    return value


def _optional_bool(data: Dict, key: str, path: str, default: bool) -> bool:
    value = data.get(key, default)
    if not isinstance(value, bool):
        raise ValueError(f"'{key}' in {path} must be true or false")
    return value


def _resolve_path(value: str, base_dir: Path) -> Path:
    path = Path(value).expanduser()
    return path if path.is_absolute() else base_dir / path


def _parse_source(data: Any, path: str, base_dir: Path) -> SourceConfig:
    """Parse and validate one source entry.

    Args:
        data: Source configuration data
        path: Path for error messages
        base_dir: Directory relative file paths are resolved against

    Returns:
        Validated SourceConfig

    Raises:
        ValueError: If configuration is invalid
    """
    if not isinstance(data, dict):
        raise ValueError(f"{path} must be a dictionary")
    _reject_unknown(data, {'tool', 'usage_file', 'spending_file', 'users_file', 'enabled'}, path)

    if 'tool' not in data:
        raise ValueError(f"Missing required 'tool' in {path}")
    tool_id = data['tool']
    if not isinstance(tool_id, str):
        raise ValueError(f"'tool' in {path} must be a string")

    tool = ToolType.from_id(tool_id)
    if tool is None:
        valid_tools = [tool.id for tool in ToolType]
        raise ValueError(f"'tool' in {path} must be one of: {valid_tools}")

    files = {}
    for key in ('usage_file', 'spending_file', 'users_file'):
        value = _optional_str(data, key, path)
        files[key] = _resolve_path(value, base_dir) if value else None

    return SourceConfig(
        tool=tool,
        enabled=_optional_bool(data, 'enabled', path, True),
        **files
    )


def _parse_collection(data: Dict) -> CollectionConfig:
    _reject_unknown(data, {'timeout_seconds', 'max_workers'}, 'collection')

    max_workers = data.get('max_workers')
    if max_workers is not None and (isinstance(max_workers, bool) or not isinstance(max_workers, int)):
        raise ValueError("'max_workers' in collection must be an integer")

    timeout = _optional_positive(data, 'timeout_seconds', 'collection')
    return CollectionConfig(
        timeout_seconds=float(timeout) if timeout is not None else CollectionConfig.timeout_seconds,
        max_workers=max_workers
    )


def _parse_directory(data: Dict) -> DirectoryConfig:
    allowed_keys = {'enabled', 'domain', 'token_env', 'custom_schema', 'git_name_field', 'timeout_seconds'}
    _reject_unknown(data, allowed_keys, 'directory')

    defaults = DirectoryConfig()
    timeout = _optional_positive(data, 'timeout_seconds', 'directory')
    return DirectoryConfig(
        enabled=_optional_bool(data, 'enabled', 'directory', False),
        domain=_optional_str(data, 'domain', 'directory'),
        token_env=_optional_str(data, 'token_env', 'directory') or defaults.token_env,
        custom_schema=_optional_str(data, 'custom_schema', 'directory') or defaults.custom_schema,
        git_name_field=_optional_str(data, 'git_name_field', 'directory') or defaults.git_name_field,
        timeout_seconds=float(timeout) if timeout is not None else defaults.timeout_seconds
    )
