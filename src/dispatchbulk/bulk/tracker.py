"""Operation lifecycle tracking for bulk work.

An :class:`Operation` is created ``running`` and makes exactly one terminal
transition, to ``completed`` or ``failed``. Terminal operations move into a
bounded history (newest first, oldest evicted) and are never touched again.

The tracker also owns the system-wide concurrency bound: :meth:`OperationTracker.slot`
is a counting semaphore held by each top-level operation while it runs.
"""

import asyncio
import logging
from collections import deque
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, TypeVar

from ..datastore.models import generate_id
from ..events import (
    OPERATION_COMPLETED,
    OPERATION_FAILED,
    OPERATION_PROGRESS,
    OPERATION_STARTED,
    EventBus,
)
from ..exceptions import InvalidOperationError, OperationLimitError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class OperationStatus(str, Enum):
    """Lifecycle states of an operation."""

    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class Operation:
    """A tracked unit of bulk work."""

    id: str
    type: str
    total_items: int
    processed_items: int = 0
    status: OperationStatus = OperationStatus.RUNNING
    start_time: datetime = field(default_factory=datetime.now)
    end_time: Optional[datetime] = None
    progress: int = 0
    results: Any = None
    error: Optional[str] = None
    parent_id: Optional[str] = None
    children: List[str] = field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return self.status != OperationStatus.RUNNING

    @property
    def duration(self) -> Optional[float]:
        """Run time in seconds, once finished."""
        if self.end_time is None:
            return None
        return (self.end_time - self.start_time).total_seconds()

    def to_dict(self) -> Dict[str, Any]:
        results = self.results
        if hasattr(results, "to_dict"):
            results = results.to_dict()
        return {
            "id": self.id,
            "type": self.type,
            "total_items": self.total_items,
            "processed_items": self.processed_items,
            "status": self.status.value,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "duration": self.duration,
            "progress": self.progress,
            "results": results,
            "error": self.error,
            "parent_id": self.parent_id,
            "children": list(self.children),
        }


def percentage(processed: int, total: int) -> int:
    """Whole-number percentage, rounding halves up."""
    if total <= 0:
        return 100
    return int(processed * 100 / total + 0.5)


class OperationTracker:
    """Registers operations, records progress and keeps a bounded history."""

    def __init__(
        self,
        event_bus: Optional[EventBus] = None,
        history_limit: int = 100,
        max_concurrent: int = 3,
        reject_when_busy: bool = False,
    ):
        """Initialize operation tracker.

        Args:
            event_bus: Channel receiving lifecycle notifications
            history_limit: Number of finished operations kept
            max_concurrent: Upper bound on top-level operations running at once
            reject_when_busy: Reject starts beyond the bound instead of queuing them
        """
        self.event_bus = event_bus or EventBus()
        self.max_concurrent = max_concurrent
        self.reject_when_busy = reject_when_busy
        self._active: Dict[str, Operation] = {}
        self._history: deque = deque(maxlen=history_limit)
        self._semaphore: Optional[asyncio.Semaphore] = None
        self._running = 0

    # ----- lifecycle -----

    def start(self, operation_type: str, total_items: int, parent_id: Optional[str] = None) -> str:
        """Register a running operation and return its id.

        Raises:
            InvalidOperationError: If ``total_items`` is not a non-negative integer
        """
        if isinstance(total_items, bool) or not isinstance(total_items, int) or total_items < 0:
            raise InvalidOperationError(
                f"total_items must be a non-negative integer, got {total_items!r}"
            )

        operation = Operation(
            id=generate_id("operation"),
            type=operation_type,
            total_items=total_items,
            parent_id=parent_id,
        )
        self._active[operation.id] = operation

        if parent_id is not None:
            parent = self._active.get(parent_id)
            if parent is not None:
                parent.children.append(operation.id)

        logger.info(f"Started {operation_type} operation {operation.id} ({total_items} items)")
        self.event_bus.emit(OPERATION_STARTED, operation.to_dict())
        return operation.id

    def update_progress(self, operation_id: str, processed: int, total: Optional[int] = None) -> None:
        """Record progress; unknown or finished ids are ignored."""
        operation = self._active.get(operation_id)
        if operation is None:
            return

        total = operation.total_items if total is None else total
        processed = min(max(processed, operation.processed_items), operation.total_items)
        operation.processed_items = processed
        operation.progress = min(100, max(operation.progress, percentage(processed, total)))

        logger.debug(
            f"Operation {operation_id} progress {operation.progress}% "
            f"({processed}/{operation.total_items})"
        )
        self.event_bus.emit(OPERATION_PROGRESS, operation.to_dict())

    def complete(self, operation_id: str, results: Any = None) -> bool:
        """Mark an operation completed; returns False if it was not running."""
        operation = self._active.pop(operation_id, None)
        if operation is None:
            return False

        operation.status = OperationStatus.COMPLETED
        operation.end_time = datetime.now()
        operation.progress = 100
        operation.results = results
        self._history.appendleft(operation)

        logger.info(
            f"Completed {operation.type} operation {operation_id} in {operation.duration:.2f}s"
        )
        self.event_bus.emit(OPERATION_COMPLETED, operation.to_dict())
        return True

    def fail(self, operation_id: str, error: Any, results: Any = None) -> bool:
        """Mark an operation failed; returns False if it was not running."""
        operation = self._active.pop(operation_id, None)
        if operation is None:
            return False

        operation.status = OperationStatus.FAILED
        operation.end_time = datetime.now()
        operation.error = str(error)
        operation.results = results
        self._history.appendleft(operation)

        logger.error(f"{operation.type} operation {operation_id} failed: {operation.error}")
        self.event_bus.emit(OPERATION_FAILED, operation.to_dict())
        return True

    # ----- queries -----

    def get(self, operation_id: str) -> Optional[Operation]:
        """Look up an operation, active or historical."""
        if operation_id in self._active:
            return self._active[operation_id]
        for operation in self._history:
            if operation.id == operation_id:
                return operation
        return None

    def active_operations(self) -> List[Operation]:
        return list(self._active.values())

    def history(self) -> List[Operation]:
        """Finished operations, newest first."""
        return list(self._history)

    def children_of(self, operation_id: str) -> List[Operation]:
        """Sub-operations registered under ``operation_id``."""
        operation = self.get(operation_id)
        if operation is None:
            return []
        return [child for child in map(self.get, operation.children) if child is not None]

    # ----- concurrency -----

    @property
    def running_slots(self) -> int:
        return self._running

    @asynccontextmanager
    async def slot(self) -> AsyncIterator[None]:
        """Hold one of ``max_concurrent`` operation slots.

        Raises:
            OperationLimitError: If every slot is taken and ``reject_when_busy`` is set
        """
        if self._semaphore is None:
            self._semaphore = asyncio.Semaphore(self.max_concurrent)

        if self._running >= self.max_concurrent:
            if self.reject_when_busy:
                raise OperationLimitError(self.max_concurrent)
            logger.info("Operation slots exhausted, waiting for a running operation to finish")

        async with self._semaphore:
            self._running += 1
            try:
                yield
            finally:
                self._running -= 1

    async def run(
        self,
        operation_type: str,
        total_items: int,
        work: Callable[[str], Awaitable[T]],
        parent_id: Optional[str] = None,
        acquire_slot: bool = True,
    ) -> T:
        """Run ``work(operation_id)`` inside a tracked operation.

        The operation completes with the value returned by ``work``. Any exception
        fails the operation and propagates. Sub-operations pass ``acquire_slot=False``
        since their parent already holds a slot.
        """
        if not acquire_slot:
            return await self._run_tracked(operation_type, total_items, work, parent_id)
        async with self.slot():
            return await self._run_tracked(operation_type, total_items, work, parent_id)

    async def _run_tracked(
        self,
        operation_type: str,
        total_items: int,
        work: Callable[[str], Awaitable[T]],
        parent_id: Optional[str],
    ) -> T:
        operation_id = self.start(operation_type, total_items, parent_id=parent_id)
        try:
            results = await work(operation_id)
        except (Exception, asyncio.CancelledError) as e:
            self.fail(operation_id, e, results=getattr(e, "partial_results", None))
            raise
        self.complete(operation_id, results)
        return results
