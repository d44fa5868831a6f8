"""Batch processing components for bulk operations.

This module provides the batch processor that walks a list of items in
fixed-size chunks, applies a per-item function to each one, classifies the
outcome and aggregates the results.

Classes:
    ItemError: A failed item and the reason it failed
    BulkOperationResults: Aggregated outcome of one batch run
    BatchProcessor: Chunked, strictly ordered, fail-soft item processing
"""

import asyncio
import inspect
import logging
import time
from contextlib import nullcontext
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence

from ..datastore.interfaces import DatastoreInterface
from ..exceptions import (
    ConflictSkip,
    DispatchBulkError,
    InvalidOperationError,
    OperationCancelledError,
    OperationTimeoutError,
)
from .cancellation import CancellationToken
from .tracker import OperationTracker

logger = logging.getLogger(__name__)

RUNTIME_ERROR = "runtime_error"

STATUS_SUCCESS = "success"
STATUS_FAILED = "failed"
STATUS_SKIPPED = "skipped"


def _serialize_item(item: Any) -> Any:
    if hasattr(item, "to_dict"):
        return item.to_dict()
    return item


@dataclass
class ItemError:
    """A failed item and the reason it failed."""

    item: Any
    reason: str
    error_type: str = RUNTIME_ERROR
    index: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "item": _serialize_item(self.item),
            "reason": self.reason,
            "error_type": self.error_type,
            "index": self.index,
        }


@dataclass
class BulkOperationResults:
    """Results of a bulk run.

    ``errors`` keeps at most ``max_errors`` records. Records past the cap are
    counted in ``errors_dropped`` and flagged by ``errors_truncated``; the
    failure count always covers every failed item.
    """

    total_items: int = 0
    processed_count: int = 0
    failed_count: int = 0
    skipped_count: int = 0
    errors: List[ItemError] = field(default_factory=list)
    max_errors: int = 100
    errors_dropped: int = 0
    operation_type: str = "bulk"
    batch_size: int = 50
    start_time: Optional[float] = None
    end_time: Optional[float] = None

    @property
    def handled_count(self) -> int:
        """Items that reached a terminal outcome."""
        return self.processed_count + self.failed_count + self.skipped_count

    @property
    def errors_truncated(self) -> bool:
        return self.errors_dropped > 0

    @property
    def duration(self) -> float:
        if self.start_time is None or self.end_time is None:
            return 0.0
        return self.end_time - self.start_time

    @property
    def success_rate(self) -> float:
        """Success rate as a percentage."""
        if self.total_items == 0:
            return 0.0
        return (self.processed_count / self.total_items) * 100

    def add_success(self) -> None:
        self.processed_count += 1

    def add_skip(self) -> None:
        self.skipped_count += 1

    def add_failure(self, error: ItemError) -> None:
        self.failed_count += 1
        if len(self.errors) < self.max_errors:
            self.errors.append(error)
        else:
            self.errors_dropped += 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "operation_type": self.operation_type,
            "total_items": self.total_items,
            "processed_count": self.processed_count,
            "failed_count": self.failed_count,
            "skipped_count": self.skipped_count,
            "errors": [error.to_dict() for error in self.errors],
            "errors_truncated": self.errors_truncated,
            "errors_dropped": self.errors_dropped,
            "duration": self.duration,
        }


def iter_batches(items: Sequence[Any], batch_size: int) -> Iterator[Sequence[Any]]:
    """Yield consecutive slices of ``items`` of at most ``batch_size`` elements."""
    for i in range(0, len(items), batch_size):
        yield items[i : i + batch_size]


class BatchProcessor:
    """Processes items in ordered chunks with progress tracking.

    Items are never reordered: chunk ``n`` finishes before chunk ``n + 1``
    starts, and items inside a chunk run in input order, because later items
    may depend on conflict state created by earlier ones.
    """

    def __init__(
        self,
        tracker: Optional[OperationTracker] = None,
        datastore: Optional[DatastoreInterface] = None,
        batch_size: int = 50,
        batch_delay: float = 0.01,
        max_errors: int = 100,
    ):
        """Initialize batch processor.

        Args:
            tracker: Receives progress after every chunk
            datastore: Dataset whose write lock is held around each item
            batch_size: Default number of items per chunk
            batch_delay: Seconds to yield to the event loop between chunks
            max_errors: Error records kept per run
        """
        self.tracker = tracker
        self.datastore = datastore
        self.batch_size = batch_size
        self.batch_delay = batch_delay
        self.max_errors = max_errors

    def _write_lock(self):
        if self.datastore is None:
            return nullcontext()
        return self.datastore.write_lock()

    async def run(
        self,
        items: Sequence[Any],
        per_item_fn: Callable[[Any], Any],
        batch_size: Optional[int] = None,
        operation_id: Optional[str] = None,
        cancellation: Optional[CancellationToken] = None,
        operation_type: str = "bulk",
    ) -> BulkOperationResults:
        """Run ``per_item_fn`` over ``items`` in chunks.

        Args:
            items: Items to process, in order
            per_item_fn: Called once per item, awaited when it returns an
                awaitable. Returning normally counts as
                success, raising :class:`ConflictSkip` as skipped, anything else
                as a failure
            batch_size: Chunk size for this run, defaults to the processor's
            operation_id: Tracked operation receiving progress updates
            cancellation: Checked before every item
            operation_type: Label stored on the results

        Returns:
            BulkOperationResults for the run

        Raises:
            InvalidOperationError: If the batch size is not positive
            OperationCancelledError: If cancellation was requested mid-run
            OperationTimeoutError: If the deadline passed mid-run
        """
        batch_size = self.batch_size if batch_size is None else batch_size
        if isinstance(batch_size, bool) or not isinstance(batch_size, int) or batch_size < 1:
            raise InvalidOperationError(f"batch_size must be a positive integer, got {batch_size!r}")

        items = list(items)
        total = len(items)
        results = BulkOperationResults(
            total_items=total,
            max_errors=self.max_errors,
            operation_type=operation_type,
            batch_size=batch_size,
            start_time=time.time(),
        )

        handled = 0
        for batch in iter_batches(items, batch_size):
            for item in batch:
                if cancellation is not None:
                    try:
                        cancellation.raise_if_stopped()
                    except (OperationCancelledError, OperationTimeoutError) as e:
                        results.end_time = time.time()
                        e.partial_results = results
                        logger.warning(
                            f"{operation_type} stopped after {handled}/{total} items: {e}"
                        )
                        raise
                await self._process_item(item, handled, per_item_fn, results)
                handled += 1

            if self.tracker is not None and operation_id is not None:
                self.tracker.update_progress(operation_id, handled, total)

            if handled < total:
                await asyncio.sleep(self.batch_delay)

        results.end_time = time.time()

        if results.failed_count:
            logger.warning(
                f"{operation_type}: {results.failed_count} of {total} items failed"
                + (f" ({results.errors_dropped} error records dropped)" if results.errors_truncated else "")
            )
        logger.info(
            f"{operation_type}: processed={results.processed_count} "
            f"skipped={results.skipped_count} failed={results.failed_count}"
        )
        return results

    async def _process_item(
        self,
        item: Any,
        index: int,
        per_item_fn: Callable[[Any], Any],
        results: BulkOperationResults,
    ) -> str:
        """Process one item with complete error isolation.

        Coroutine item functions are awaited after the write lock is released.

        Returns:
            The outcome status string
        """
        try:
            with self._write_lock():
                outcome = per_item_fn(item)
            if inspect.isawaitable(outcome):
                await outcome
        except ConflictSkip as e:
            logger.debug(f"Skipped item {index}: {e}")
            results.add_skip()
            return STATUS_SKIPPED
        except DispatchBulkError as e:
            results.add_failure(ItemError(item, str(e), e.error_type, index))
            return STATUS_FAILED
        except Exception as e:
            logger.debug(f"Unexpected error processing item {index}", exc_info=True)
            results.add_failure(ItemError(item, f"Unexpected error: {e}", RUNTIME_ERROR, index))
            return STATUS_FAILED

        results.add_success()
        return STATUS_SUCCESS
