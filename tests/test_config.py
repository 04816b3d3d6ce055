"""
Unit tests for configuration loading and validation.

Tests strict validation and error handling for report configs.
"""

import os
import tempfile
from pathlib import Path

import pytest
import yaml

from ai_user_control.config.loader import (
    CollectionConfig,
    DirectoryConfig,
    load_report_config,
)
from ai_user_control.storage.models import ToolType


class TestConfigLoading:
    """Test configuration loading and validation."""

    def setup_method(self):
        """Set up test environment."""
        self.temp_dir = tempfile.mkdtemp()

    def teardown_method(self):
        """Clean up test environment."""
        import shutil
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _write_config(self, config_data, filename: str = "config.yaml") -> str:
        """Write configuration data to temporary file."""
        config_path = os.path.join(self.temp_dir, filename)
        with open(config_path, 'w', encoding='utf-8') as f:
            yaml.dump(config_data, f)
        return config_path

    def test_valid_config_loads_correctly(self):
        """Test that a valid configuration loads correctly."""
        config_data = {
            "sources": [
                {"tool": "claude-code", "usage_file": "data/claude.jsonl", "spending_file": "data/claude-cost.jsonl"},
                {"tool": "github-copilot", "usage_file": "/abs/copilot.jsonl", "users_file": "seats.jsonl"},
                {"tool": "cursor", "enabled": False},
            ],
            "collection": {"timeout_seconds": 45, "max_workers": 4},
            "directory": {"enabled": True, "domain": "corp.com", "git_name_field": "login"},
            "identity": {"corporate_domain": "corp.com"},
            "export": {"output_dir": "reports"},
        }

        config = load_report_config(self._write_config(config_data))
        base = Path(self.temp_dir)

        assert [source.tool for source in config.sources] == [
            ToolType.CLAUDE, ToolType.GITHUB_COPILOT, ToolType.CURSOR
        ]
        assert config.sources[0].usage_file == base / "data/claude.jsonl"
        assert config.sources[1].usage_file == Path("/abs/copilot.jsonl")
        assert config.sources[1].users_file == base / "seats.jsonl"
        assert config.sources[1].spending_file is None
        assert [source.tool for source in config.enabled_sources()] == [ToolType.CLAUDE, ToolType.GITHUB_COPILOT]
        assert config.collection == CollectionConfig(timeout_seconds=45.0, max_workers=4)
        assert config.directory.enabled
        assert config.directory.git_name_field == "login"
        assert config.directory.custom_schema == "custom"
        assert config.directory.token_env == "WORKSPACE_ACCESS_TOKEN"
        assert config.corporate_domain == "corp.com"
        assert config.output_dir == base / "reports"

    def test_minimal_config_uses_defaults(self):
        """Test omitted sections fall back to defaults."""
        config = load_report_config(self._write_config({"sources": [{"tool": "cursor"}]}))

        assert config.collection == CollectionConfig()
        assert config.directory == DirectoryConfig()
        assert config.corporate_domain is None
        assert config.output_dir == Path("output")

    def test_tool_aliases_accepted(self):
        """Test short tool identifiers are accepted."""
        config = load_report_config(self._write_config({"sources": [{"tool": "Copilot"}]}))
        assert config.sources[0].tool is ToolType.GITHUB_COPILOT

    def test_missing_file_raises(self):
        """Test that missing config file raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            load_report_config(os.path.join(self.temp_dir, "missing.yaml"))

    def test_invalid_yaml_raises(self):
        """Test that invalid YAML raises YAMLError."""
        config_path = os.path.join(self.temp_dir, "bad.yaml")
        with open(config_path, 'w', encoding='utf-8') as f:
            f.write("sources: [unclosed\n")

        with pytest.raises(yaml.YAMLError):
            load_report_config(config_path)

    def test_empty_config_raises(self):
        """Test that empty configuration raises ValueError."""
        config_path = os.path.join(self.temp_dir, "empty.yaml")
        Path(config_path).write_text("", encoding='utf-8')

        with pytest.raises(ValueError, match="empty"):
            load_report_config(config_path)

    @pytest.mark.parametrize("config_data,message", [
        ({"sources": [], "extra": 1}, "Unknown configuration keys"),
        ({"collection": {}}, "Missing required 'sources'"),
        ({"sources": {"tool": "cursor"}}, "must be a list"),
        ({"sources": [{"usage_file": "a.jsonl"}]}, "Missing required 'tool'"),
        ({"sources": [{"tool": "windsurf"}]}, "must be one of"),
        ({"sources": [{"tool": "cursor", "path": "x"}]}, "Unknown keys in sources\\[0\\]"),
        ({"sources": [{"tool": "cursor"}, {"tool": "Cursor"}]}, "Duplicate source"),
        ({"sources": [{"tool": "cursor", "enabled": "yes"}]}, "must be true or false"),
        ({"sources": [{"tool": "cursor", "usage_file": ""}]}, "non-empty string"),
        ({"sources": [], "collection": {"timeout_seconds": 0}}, "must be > 0"),
        ({"sources": [], "collection": {"max_workers": 2.5}}, "must be an integer"),
        ({"sources": [], "collection": {"max_workers": 0}}, "must be > 0"),
        ({"sources": [], "directory": {"enabled": True}}, "domain is required"),
        ({"sources": [], "directory": {"url": "x"}}, "Unknown keys in directory"),
        ({"sources": [], "identity": "corp.com"}, "must be a dictionary"),
    ])
    def test_invalid_config_raises(self, config_data, message):
        """Test that invalid configuration is rejected with a clear message."""
        with pytest.raises(ValueError, match=message):
            load_report_config(self._write_config(config_data))

    def test_config_objects_are_immutable(self):
        """Test that loaded configuration cannot be modified."""
        config = load_report_config(self._write_config({"sources": [{"tool": "cursor"}]}))

        with pytest.raises(AttributeError):
            config.corporate_domain = "other.com"
