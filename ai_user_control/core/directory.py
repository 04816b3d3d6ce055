"""
Corporate directory lookups with result caching.

Resolves a GitHub login to the corporate email registered for it in the
company directory. Both hits and misses are cached, so a login costs at
most one remote query per report run.
"""

import logging
import re
import threading
from abc import ABC, abstractmethod
from typing import Dict, Optional, Tuple

logger = logging.getLogger(__name__)

VALID_GIT_LOGIN = re.compile(r"[a-zA-Z0-9]([a-zA-Z0-9-]*[a-zA-Z0-9])?")


class DirectoryLookupError(Exception):
    """Raised by a directory backend when a single lookup fails."""


class DirectoryUnavailableError(Exception):
    """Raised when a directory backend cannot be constructed."""


class DirectoryLookup(ABC):
    """Backend that performs the remote login-to-email query."""

    @abstractmethod
    def lookup_email(self, login: str) -> Optional[str]:
        """Return the email registered for the login, or None if there is none.

        Raises:
            DirectoryLookupError: If the remote query fails
        """
        pass


class LookupCache:
    """Thread-safe map from literal login to lookup result.

    A stored None is a cached miss, distinct from an absent entry.
    """

    def __init__(self):
        self._entries: Dict[str, Optional[str]] = {}
        self._lock = threading.Lock()

    def get(self, login: str) -> Tuple[bool, Optional[str]]:
        """Return (found, value) for a login."""
        with self._lock:
            if login in self._entries:
                return True, self._entries[login]
            return False, None

    def put(self, login: str, email: Optional[str]) -> None:
        with self._lock:
            self._entries[login] = email

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __contains__(self, login: str) -> bool:
        with self._lock:
            return login in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class DirectoryResolver:
    """Resolves GitHub logins to corporate emails through a cached backend.

    Lookups never raise: invalid logins and backend failures both resolve
    to None. Concurrent lookups of the same uncached login may each reach
    the backend; the last result written wins.
    """

    def __init__(self, lookup: DirectoryLookup, cache: Optional[LookupCache] = None):
        """Initialize the resolver.

        Args:
            lookup: Backend performing the remote query
            cache: Cache to use (a fresh one is created if omitted)
        """
        self.lookup = lookup
        self.cache = cache if cache is not None else LookupCache()

    def find_email_by_git_name(self, login: Optional[str]) -> Optional[str]:
        """Find the corporate email for a GitHub login.

        Args:
            login: GitHub username, used verbatim as the cache key

        Returns:
            The corporate email, or None if no user matches
        """
        if login is None or not login.strip():
            return None

        found, cached = self.cache.get(login)
        if found:
            return cached

        email = self._lookup(login)
        self.cache.put(login, email)
        return email

    def clear_cache(self) -> None:
        """Forget every cached result."""
        self.cache.clear()

    def _lookup(self, login: str) -> Optional[str]:
        if not VALID_GIT_LOGIN.fullmatch(login):
            logger.debug("Directory: skipping invalid git login '%s'", login)
            return None

        try:
            email = self.lookup.lookup_email(login)
        except DirectoryLookupError as e:
            logger.warning("Directory lookup failed for '%s': %s", login, e)
            return None
        except Exception as e:
            logger.error("Unexpected directory error for '%s': %s", login, e, exc_info=True)
            return None

        if email:
            logger.debug("Directory resolved %s -> %s", login, email)
            return email

        logger.debug("Directory: no match for git login '%s'", login)
        return None
