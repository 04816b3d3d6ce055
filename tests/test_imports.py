# test_imports.py
import importlib

import pytest


@pytest.mark.parametrize("module", [
    "ai_user_control.cli.main",
    "ai_user_control.config.loader",
    "ai_user_control.core.aggregation",
    "ai_user_control.core.collection",
    "ai_user_control.core.directory",
    "ai_user_control.core.identity",
    "ai_user_control.core.report",
    "ai_user_control.export.csv_writer",
    "ai_user_control.sdk",
    "ai_user_control.storage.models",
    "ai_user_control.storage.repository",
])
def test_module_imports(module):
    assert importlib.import_module(module) is not None


def test_sdk_exports():
    from ai_user_control.sdk import WorkspaceDirectoryClient, build_directory_resolver
    assert callable(build_directory_resolver)
    assert WorkspaceDirectoryClient.__name__ == "WorkspaceDirectoryClient"
