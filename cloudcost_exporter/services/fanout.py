"""
Bounded, fail-fast fan-out over a thread pool.
The first worker error cancels the rest of the batch.
"""
from concurrent.futures import FIRST_EXCEPTION, Future, ThreadPoolExecutor, wait
import logging
import threading
from typing import Callable, Dict, List, Optional, Sequence, TypeVar

from cloudcost_exporter.pricing.errors import FetchCancelledError, FetchTimeoutError


logger = logging.getLogger(__name__)

DEFAULT_MAX_WORKERS = 5

T = TypeVar("T")
R = TypeVar("R")


class ChildEvent(threading.Event):
    """
    Cancel event scoped to one batch of work.

    Reads as set once either it or its parent is set. Setting it never sets
    the parent, so a failing batch cancels only its own workers.
    Workers poll ``is_set``; ``wait`` only wakes on the child's own flag.
    """

    def __init__(self, parent: Optional[threading.Event] = None):
        super().__init__()
        self.parent = parent

    def is_set(self) -> bool:
        return super().is_set() or (self.parent is not None and self.parent.is_set())


def child_event(parent: Optional[threading.Event] = None) -> ChildEvent:
    """Create a cancel event that follows ``parent`` but cannot set it."""
    return ChildEvent(parent)


def _first_error(errors: List[BaseException]) -> BaseException:
    # A sibling cancelled by the root failure may finish first; report the root failure
    for error in errors:
        if not isinstance(error, FetchCancelledError):
            return error
    return errors[0]


def fan_out(
    items: Sequence[T],
    worker: Callable[[T, threading.Event], R],
    max_workers: int = DEFAULT_MAX_WORKERS,
    cancel_event: Optional[threading.Event] = None,
    timeout: Optional[float] = None,
    name: str = "fan-out",
) -> List[R]:
    """
    Run ``worker(item, cancel_event)`` for every item with at most ``max_workers`` in flight.

    Workers are expected to poll ``cancel_event`` between upstream pages. When a
    worker raises, the event is set, queued work is cancelled and the first error
    is re-raised without waiting for workers still in flight.

    Args:
        items: Work items, e.g. region codes or project ids
        worker: Callable taking (item, cancel_event)
        max_workers: Concurrency bound
        cancel_event: Shared event, created when not supplied
        timeout: Seconds to wait for the whole batch
        name: Label for log lines

    Returns:
        Worker results in the order of ``items``

    Raises:
        FetchTimeoutError: If the batch does not finish within ``timeout``
        Exception: The first error raised by a worker
    """
    if not items:
        return []
    cancel_event = cancel_event or threading.Event()
    executor = ThreadPoolExecutor(
        max_workers=max(1, min(max_workers, len(items))),
        thread_name_prefix=name,
    )
    futures: Dict[Future, int] = {}
    try:
        for index, item in enumerate(items):
            futures[executor.submit(worker, item, cancel_event)] = index

        done, not_done = wait(futures, timeout=timeout, return_when=FIRST_EXCEPTION)

        errors: List[BaseException] = []
        for future in sorted(done, key=futures.get):
            error = future.exception()
            if error is not None:
                logger.error(f"{name}: worker for {items[futures[future]]!r} failed: {error}")
                errors.append(error)
        if errors:
            cancel_event.set()
            for pending in not_done:
                pending.cancel()
            raise _first_error(errors)

        if not_done:
            cancel_event.set()
            for pending in not_done:
                pending.cancel()
            raise FetchTimeoutError(f"{name}: {len(not_done)} of {len(items)} workers did not finish in {timeout}s")

        results: List[Optional[R]] = [None] * len(items)
        for future, index in futures.items():
            results[index] = future.result()
        return results
    finally:
        # Running workers see the cancel event; do not block on them after a failure
        executor.shutdown(wait=not cancel_event.is_set(), cancel_futures=True)
