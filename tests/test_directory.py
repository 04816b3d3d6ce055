"""
Unit tests for the cached directory resolver.
"""

from concurrent.futures import ThreadPoolExecutor
from unittest.mock import MagicMock

import pytest

from ai_user_control.core.directory import (
    DirectoryLookup,
    DirectoryLookupError,
    DirectoryResolver,
    LookupCache,
)


class CountingLookup(DirectoryLookup):
    """Backend returning fixed results and counting remote queries."""

    def __init__(self, entries=None, fail=False):
        self.entries = entries or {}
        self.fail = fail
        self.calls = []

    def lookup_email(self, login):
        self.calls.append(login)
        if self.fail:
            raise DirectoryLookupError("backend down")
        return self.entries.get(login)


class TestLookupCache:
    """Test the cache distinguishes misses from absent entries."""

    def test_absent_entry(self):
        cache = LookupCache()
        assert cache.get("octocat") == (False, None)
        assert "octocat" not in cache

    def test_cached_miss(self):
        cache = LookupCache()
        cache.put("octocat", None)

        assert cache.get("octocat") == (True, None)
        assert "octocat" in cache
        assert len(cache) == 1

    def test_clear(self):
        cache = LookupCache()
        cache.put("a", "a@x.com")
        cache.clear()

        assert len(cache) == 0


class TestDirectoryResolver:
    """Test login resolution, validation and caching."""

    def test_found_email(self):
        """Test a registered login resolves to its email."""
        resolver = DirectoryResolver(CountingLookup({"octocat": "octo@corp.com"}))
        assert resolver.find_email_by_git_name("octocat") == "octo@corp.com"

    def test_repeated_lookup_queries_once(self):
        """Test two lookups of the same login cost one remote query."""
        backend = CountingLookup({"octocat": "octo@corp.com"})
        resolver = DirectoryResolver(backend)

        resolver.find_email_by_git_name("octocat")
        resolver.find_email_by_git_name("octocat")

        assert backend.calls == ["octocat"]

    def test_clear_cache_forces_one_more_query(self):
        """Test clearing the cache causes exactly one new query."""
        backend = CountingLookup({"octocat": "octo@corp.com"})
        resolver = DirectoryResolver(backend)

        resolver.find_email_by_git_name("octocat")
        resolver.clear_cache()
        resolver.find_email_by_git_name("octocat")
        resolver.find_email_by_git_name("octocat")

        assert len(backend.calls) == 2

    def test_misses_are_cached(self):
        """Test unknown logins are not queried twice."""
        backend = CountingLookup()
        resolver = DirectoryResolver(backend)

        assert resolver.find_email_by_git_name("ghost") is None
        assert resolver.find_email_by_git_name("ghost") is None
        assert backend.calls == ["ghost"]

    def test_cache_key_is_case_sensitive(self):
        """Test the login is used verbatim as the cache key."""
        backend = CountingLookup()
        resolver = DirectoryResolver(backend)

        resolver.find_email_by_git_name("OctoCat")
        resolver.find_email_by_git_name("octocat")

        assert backend.calls == ["OctoCat", "octocat"]

    @pytest.mark.parametrize("login", ["bad login", "-leading", "trailing-", "a_b", "x'y", "ok\n"])
    def test_invalid_login_is_not_queried(self, login):
        """Test logins outside the GitHub charset never reach the backend."""
        backend = CountingLookup()
        resolver = DirectoryResolver(backend)

        assert resolver.find_email_by_git_name(login) is None
        assert backend.calls == []
        assert login in resolver.cache

    @pytest.mark.parametrize("login", [None, "", "   "])
    def test_blank_login_is_not_cached(self, login):
        """Test blank logins resolve to None without a cache entry."""
        backend = CountingLookup()
        resolver = DirectoryResolver(backend)

        assert resolver.find_email_by_git_name(login) is None
        assert backend.calls == []
        assert len(resolver.cache) == 0

    def test_backend_failure_is_a_cached_miss(self):
        """Test lookup errors resolve to None and are not retried."""
        backend = CountingLookup(fail=True)
        resolver = DirectoryResolver(backend)

        assert resolver.find_email_by_git_name("octocat") is None
        assert resolver.find_email_by_git_name("octocat") is None
        assert backend.calls == ["octocat"]

    def test_unexpected_backend_error_is_a_cached_miss(self):
        """Test errors outside the lookup contract still resolve to None."""
        backend = MagicMock(spec=DirectoryLookup)
        backend.lookup_email.side_effect = AttributeError("'str' object has no attribute 'get'")
        resolver = DirectoryResolver(backend)

        assert resolver.find_email_by_git_name("octocat") is None
        assert resolver.find_email_by_git_name("octocat") is None
        backend.lookup_email.assert_called_once_with("octocat")

    def test_single_character_login_is_valid(self):
        """Test the shortest valid login is queried."""
        backend = MagicMock(spec=DirectoryLookup)
        backend.lookup_email.return_value = "x@corp.com"

        assert DirectoryResolver(backend).find_email_by_git_name("x") == "x@corp.com"

    def test_concurrent_lookups_share_cache(self):
        """Test concurrent callers all get the same answer."""
        backend = CountingLookup({"octocat": "octo@corp.com"})
        resolver = DirectoryResolver(backend)

        with ThreadPoolExecutor(max_workers=8) as executor:
            results = list(executor.map(resolver.find_email_by_git_name, ["octocat"] * 32))

        assert set(results) == {"octo@corp.com"}
        assert resolver.cache.get("octocat") == (True, "octo@corp.com")
