"""
Google Workspace directory client.

Looks users up by the git login stored in a custom schema field of the
Admin SDK Directory API.
"""

import logging
import os
from typing import Any, Dict, Optional

import requests

from ai_user_control.config.loader import DirectoryConfig
from ai_user_control.core.directory import (
    DirectoryLookup,
    DirectoryLookupError,
    DirectoryResolver,
    DirectoryUnavailableError,
)

logger = logging.getLogger(__name__)

USERS_URL = "https://admin.googleapis.com/admin/directory/v1/users"


class WorkspaceDirectoryClient(DirectoryLookup):
    """Directory backend querying Workspace users by custom schema field."""

    def __init__(
        self,
        domain: str,
        access_token: str,
        custom_schema: str = "custom",
        git_name_field: str = "git_name",
        timeout: float = 30.0
    ):
        """Initialize the client.

        Args:
            domain: Workspace domain to search
            access_token: OAuth access token with directory read scope
            custom_schema: Custom schema holding the git login field
            git_name_field: Field of the custom schema holding the git login
            timeout: Request timeout in seconds

        Raises:
            DirectoryUnavailableError: If the domain or token is missing
        """
        if not domain or not domain.strip():
            raise DirectoryUnavailableError("Workspace domain is not configured")
        if not access_token or not access_token.strip():
            raise DirectoryUnavailableError("Workspace access token is not configured")

        self.domain = domain.strip()
        self.custom_schema = custom_schema
        self.git_name_field = git_name_field
        self.timeout = timeout
        self._headers = {
            "Authorization": f"Bearer {access_token.strip()}",
            "Accept": "application/json"
        }

    def _build_params(self, login: str) -> Dict[str, Any]:
        return {
            "domain": self.domain,
            "query": f"{self.custom_schema}.{self.git_name_field}='{login}'",
            "projection": "custom",
            "customFieldMask": self.custom_schema,
            "maxResults": 1,
        }

    def lookup_email(self, login: str) -> Optional[str]:
        """Query the directory for the user whose git login field matches.

        Args:
            login: Validated GitHub login

        Returns:
            The user's primary email, or None if no user matches

        Raises:
            DirectoryLookupError: If the request fails or the response is invalid
        """
        try:
            response = requests.get(
                USERS_URL,
                params=self._build_params(login),
                headers=self._headers,
                timeout=self.timeout
            )
            response.raise_for_status()
            data = response.json()
        except requests.RequestException as e:
            raise DirectoryLookupError(f"Directory request failed: {e}")
        except ValueError as e:
            raise DirectoryLookupError(f"Invalid directory response: {e}")

        if not isinstance(data, dict):
            raise DirectoryLookupError("Invalid directory response: expected a JSON object")
        users = data.get("users") or []
        if not isinstance(users, list) or not all(isinstance(user, dict) for user in users):
            raise DirectoryLookupError("Invalid directory response: 'users' must be a list of objects")
        if not users:
            return None
        email = users[0].get("primaryEmail")
        if email is not None and not isinstance(email, str):
            raise DirectoryLookupError(f"Invalid directory response: unexpected primaryEmail {email!r}")
        return email or None


def build_directory_resolver(config: DirectoryConfig) -> Optional[DirectoryResolver]:
    """Create the directory resolver described by the configuration.

    Args:
        config: Directory configuration

    Returns:
        A resolver, or None if the directory is disabled or unavailable
    """
    if not config.enabled:
        logger.info("Directory lookups disabled")
        return None

    try:
        client = WorkspaceDirectoryClient(
            domain=config.domain or "",
            access_token=os.environ.get(config.token_env, ""),
            custom_schema=config.custom_schema,
            git_name_field=config.git_name_field,
            timeout=config.timeout_seconds
        )
    except DirectoryUnavailableError as e:
        logger.warning("Directory unavailable (%s is %s): %s", config.token_env,
                       "set" if os.environ.get(config.token_env) else "unset", e)
        return None

    logger.info("Directory lookups enabled for domain %s", config.domain)
    return DirectoryResolver(client)
