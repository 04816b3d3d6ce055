"""
Collection from usage sources with per-source failure isolation.

Every collector call is an independent attempt whose outcome is an
explicit CollectionResult. A failed or timed-out attempt contributes no
records; it never aborts the batch.
"""

import logging
import threading
import time
from abc import ABC, abstractmethod
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from dataclasses import dataclass, field
from datetime import date
from typing import Callable, Dict, Generic, List, Optional, Sequence, Tuple, TypeVar

from ai_user_control.storage.models import (
    ToolType,
    UnifiedSpendingRecord,
    UnifiedUsageRecord,
    UserSnapshot,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

USAGE = "usage"
SPENDING = "spending"


class CollectionError(Exception):
    """Raised by a source when it cannot deliver its data."""


class UsageDataCollector(ABC):
    """A source of usage and spending records for one tool."""

    @property
    @abstractmethod
    def tool_type(self) -> ToolType:
        pass

    @abstractmethod
    def collect_usage_data(self, start: date, end: date) -> List[UnifiedUsageRecord]:
        """Collect usage records between start and end (inclusive).

        Raises:
            CollectionError: If the source cannot be read
        """
        pass

    @abstractmethod
    def collect_spending_data(self, start: date, end: date) -> List[UnifiedSpendingRecord]:
        """Collect spending records between start and end (inclusive).

        Raises:
            CollectionError: If the source cannot be read
        """
        pass


class IdentitySource(ABC):
    """A source of user snapshots (members, seats) for one tool."""

    @property
    @abstractmethod
    def tool_name(self) -> str:
        pass

    @property
    @abstractmethod
    def display_name(self) -> str:
        pass

    @abstractmethod
    def is_enabled(self) -> bool:
        pass

    @abstractmethod
    def fetch_users(self) -> List[UserSnapshot]:
        """Fetch the tool's current users.

        Raises:
            CollectionError: If the source cannot be read
        """
        pass


@dataclass(frozen=True)
class CollectionResult(Generic[T]):
    """Outcome of one collector call."""
    source: str
    operation: str
    records: Tuple[T, ...] = ()
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None

    @property
    def contribution(self) -> List[T]:
        """Records to merge into the batch; empty when the call failed."""
        return list(self.records) if self.succeeded else []

    @classmethod
    def success(cls, source: str, operation: str, records: Sequence[T]) -> "CollectionResult[T]":
        return cls(source=source, operation=operation, records=tuple(records))

    @classmethod
    def failure(cls, source: str, operation: str, error: str) -> "CollectionResult[T]":
        return cls(source=source, operation=operation, error=error)


@dataclass
class CollectedData:
    """Everything gathered from all collectors for one date range."""
    usage_records: List[UnifiedUsageRecord] = field(default_factory=list)
    spending_records: List[UnifiedSpendingRecord] = field(default_factory=list)
    results: List[CollectionResult] = field(default_factory=list)

    @property
    def failures(self) -> List[CollectionResult]:
        return [result for result in self.results if not result.succeeded]


class _PendingCall:
    """A submitted collector call and the moment it started running."""

    def __init__(self, source: str, operation: str):
        self.source = source
        self.operation = operation
        self.future: Future = Future()
        self.started = threading.Event()
        self.started_at: Optional[float] = None

    @classmethod
    def failed(cls, source: str, operation: str, error: str) -> "_PendingCall":
        pending = cls(source, operation)
        pending.mark_started()
        pending.future.set_result(CollectionResult.failure(source, operation, error))
        return pending

    def mark_started(self) -> None:
        self.started_at = time.monotonic()
        self.started.set()


class CollectionOrchestrator:
    """Runs every collector's usage and spending calls independently.

    Calls run on a thread pool. Each call is bounded by its own timeout,
    measured from when the call starts running. A call still queued when
    its result is awaited gets the same allowance to start. Results are
    concatenated in registration order regardless of completion order.
    """

    def __init__(
        self,
        collectors: Sequence[UsageDataCollector],
        timeout: Optional[float] = None,
        max_workers: Optional[int] = None
    ):
        """Initialize the orchestrator.

        Args:
            collectors: Collectors in registration order
            timeout: Seconds each call may take; None waits indefinitely
            max_workers: Thread pool size (defaults to one thread per call)

        Raises:
            ValueError: If timeout or max_workers is not positive
        """
        if timeout is not None and timeout <= 0:
            raise ValueError("timeout must be > 0")
        if max_workers is not None and max_workers <= 0:
            raise ValueError("max_workers must be > 0")

        self.collectors = list(collectors)
        self.timeout = timeout
        self.max_workers = max_workers
        logger.info("Collection orchestrator initialized with %d collectors", len(self.collectors))

    def collect(self, start: date, end: date) -> CollectedData:
        """Collect usage and spending data from every collector.

        Args:
            start: First day of the period (inclusive)
            end: Last day of the period (inclusive)

        Returns:
            CollectedData with the concatenated records of successful calls
        """
        data = CollectedData()
        if not self.collectors:
            logger.warning("No collectors registered, report will be empty")
            return data

        workers = self.max_workers or 2 * len(self.collectors)
        executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="collector")
        try:
            pending: List[_PendingCall] = []
            for collector in self.collectors:
                pending.extend(self._submit(executor, collector, start, end))

            for call in pending:
                result = self._await(call)
                data.results.append(result)
                if call.operation == USAGE:
                    data.usage_records.extend(result.contribution)
                else:
                    data.spending_records.extend(result.contribution)
        finally:
            # A stalled call must not block the report
            executor.shutdown(wait=False, cancel_futures=True)

        logger.info(
            "Collection completed: %d usage records, %d spending records, %d failed calls",
            len(data.usage_records), len(data.spending_records), len(data.failures)
        )
        return data

    def _submit(
        self,
        executor: ThreadPoolExecutor,
        collector: UsageDataCollector,
        start: date,
        end: date
    ) -> List[_PendingCall]:
        try:
            source = collector.tool_type.id
        except Exception as e:
            source = type(collector).__name__
            logger.error("Cannot identify collector %s: %s", source, e, exc_info=True)
            error = f"invalid collector: {e}"
            return [_PendingCall.failed(source, USAGE, error), _PendingCall.failed(source, SPENDING, error)]

        calls: Dict[str, Callable[[date, date], list]] = {
            USAGE: collector.collect_usage_data,
            SPENDING: collector.collect_spending_data,
        }
        submitted = []
        for operation, call in calls.items():
            pending = _PendingCall(source, operation)
            pending.future = executor.submit(_attempt, pending, call, start, end)
            submitted.append(pending)
        return submitted

    def _await(self, call: _PendingCall) -> CollectionResult:
        if self.timeout is None:
            return call.future.result()

        if not call.started.wait(self.timeout):
            call.future.cancel()
            logger.error("%s data from %s did not start within %ss", call.operation, call.source, self.timeout)
            return CollectionResult.failure(call.source, call.operation, f"not started within {self.timeout}s")

        remaining = max(0.0, call.started_at + self.timeout - time.monotonic())
        try:
            return call.future.result(timeout=remaining)
        except FuturesTimeoutError:
            call.future.cancel()
            logger.error("Timed out collecting %s data from %s after %ss", call.operation, call.source, self.timeout)
            return CollectionResult.failure(call.source, call.operation, f"timed out after {self.timeout}s")


def _attempt(pending: _PendingCall, call: Callable[[date, date], list], start: date, end: date) -> CollectionResult:
    pending.mark_started()
    source, operation = pending.source, pending.operation
    logger.info("Collecting %s data from %s...", operation, source)
    try:
        records = list(call(start, end))
    except Exception as e:
        logger.error("Error collecting %s data from %s: %s", operation, source, e, exc_info=True)
        return CollectionResult.failure(source, operation, str(e) or type(e).__name__)

    logger.info("Collected %d %s records from %s", len(records), operation, source)
    return CollectionResult.success(source, operation, records)


def collect_all_users(sources: Sequence[IdentitySource]) -> Dict[str, List[UserSnapshot]]:
    """Collect user snapshots from every identity source.

    Disabled sources and failing sources contribute an empty list.

    Args:
        sources: Identity sources, one per tool

    Returns:
        Snapshots keyed by tool name
    """
    logger.info("Starting user collection from all integrations")
    results: Dict[str, List[UserSnapshot]] = {}
    total_users = 0

    for source in sources:
        if not source.is_enabled():
            logger.info("Skipping %s - integration is disabled", source.tool_name)
            results[source.tool_name] = []
            continue

        users = _fetch(source)
        results[source.tool_name] = users
        total_users += len(users)

    logger.info("User collection completed. Total users collected: %d from %d integrations",
                total_users, len(sources))
    return results


def collect_from_tool(sources: Sequence[IdentitySource], tool_name: str) -> List[UserSnapshot]:
    """Collect user snapshots from the source registered for one tool.

    Returns:
        The tool's snapshots, or an empty list if it is unknown, disabled
        or failing
    """
    for source in sources:
        if source.tool_name.lower() != tool_name.lower():
            continue
        if not source.is_enabled():
            logger.warning("%s integration is disabled", source.display_name)
            return []
        return _fetch(source)

    logger.warning("Tool '%s' not found or not registered", tool_name)
    return []


def _fetch(source: IdentitySource) -> List[UserSnapshot]:
    try:
        logger.info("Collecting users from %s...", source.display_name)
        users = source.fetch_users()
    except Exception as e:
        logger.error("Error collecting users from %s: %s", source.display_name, e, exc_info=True)
        return []

    logger.info("Successfully collected %d users from %s", len(users), source.display_name)
    return list(users)
