"""
TTL-driven refresh of pricing maps.
A new map is built off to the side and swapped in only when the build succeeds.
"""
from datetime import datetime, timedelta
import logging
import threading
from typing import Callable, Generic, Optional, TypeVar

from cloudcost_exporter.services.fanout import child_event


logger = logging.getLogger(__name__)

M = TypeVar("M")


class PricingRefresher(Generic[M]):
    """
    Holds the published pricing map of one collector and rebuilds it when due.

    States: Stale (no map, or ``now`` past ``next_refresh``) -> Building -> Fresh.
    A failed build keeps the previously published map and schedule, so the next
    caller retries.
    """

    def __init__(
        self,
        name: str,
        build: Callable[[threading.Event], M],
        interval: timedelta,
        clock: Callable[[], datetime] = datetime.now,
    ):
        """
        Initialize refresher.

        Args:
            name: Label for logs, e.g. "aws_ec2_compute"
            build: Callable producing a complete new map; receives the cancel event
            interval: Time a published map stays fresh
            clock: Time source, injectable for tests
        """
        self.name = name
        self._build = build
        self.interval = interval
        self._clock = clock

        self._state_lock = threading.Lock()  # guards the fields below
        self._build_lock = threading.Lock()  # serializes builds
        self._current: Optional[M] = None
        self._next_refresh: Optional[datetime] = None
        self._last_error: Optional[Exception] = None

    @property
    def current(self) -> Optional[M]:
        with self._state_lock:
            return self._current

    @property
    def next_refresh(self) -> Optional[datetime]:
        with self._state_lock:
            return self._next_refresh

    @property
    def last_error(self) -> Optional[Exception]:
        with self._state_lock:
            return self._last_error

    def is_ready(self) -> bool:
        """True once a map has been published."""
        return self.current is not None

    def is_stale(self) -> bool:
        """True when no map is published or the published one is past its interval."""
        with self._state_lock:
            return self._current is None or self._clock() > self._next_refresh

    def refresh(self, cancel_event: Optional[threading.Event] = None) -> M:
        """
        Build a new map and publish it.

        Args:
            cancel_event: Caller's cancel event; set it to abandon the build

        Returns:
            The newly published map

        Raises:
            Exception: Whatever the build raised; the previous map stays published
        """
        with self._build_lock:
            return self._refresh_locked(cancel_event)

    def _refresh_locked(self, cancel_event: Optional[threading.Event]) -> M:
        started = self._clock()
        try:
            # The build's fan-out may set its own event on failure; the caller's stays clear
            new_map = self._build(child_event(cancel_event))
        except Exception as error:
            with self._state_lock:
                self._last_error = error
                has_previous = self._current is not None
            if has_previous:
                logger.error(f"{self.name}: pricing refresh failed, keeping previous map: {error}")
            else:
                logger.error(f"{self.name}: initial pricing build failed: {error}")
            raise

        with self._state_lock:
            self._current = new_map
            self._next_refresh = self._clock() + self.interval
            self._last_error = None
            next_refresh = self._next_refresh
        logger.info(
            f"{self.name}: pricing map refreshed in "
            f"{(self._clock() - started).total_seconds():.1f}s, next refresh at {next_refresh.isoformat()}"
        )
        return new_map

    def ensure_fresh(self, cancel_event: Optional[threading.Event] = None) -> M:
        """
        Return the published map, rebuilding it first when stale.

        Concurrent callers that find the map stale wait for a single build.

        Raises:
            Exception: Whatever the build raised
        """
        if not self.is_stale():
            return self.current
        with self._build_lock:
            # Another caller may have refreshed while we waited
            if not self.is_stale():
                return self.current
            return self._refresh_locked(cancel_event)
