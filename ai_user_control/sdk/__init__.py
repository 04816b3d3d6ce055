"""
SDK for AI User Control.

Provides clients for the external services the report depends on.
"""

from .workspace_client import WorkspaceDirectoryClient, build_directory_resolver

__all__ = ["WorkspaceDirectoryClient", "build_directory_resolver"]
