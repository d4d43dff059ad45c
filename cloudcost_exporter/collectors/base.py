"""
Shared pieces of the per-service collectors.
"""
from dataclasses import dataclass
import logging
import threading
from typing import Dict, Iterable, List, Optional, Sequence

from prometheus_client.core import GaugeMetricFamily, Metric

from cloudcost_exporter.pricing.errors import FetchCancelledError
from cloudcost_exporter.services.fanout import child_event
from cloudcost_exporter.services.refresh_scheduler import PricingRefresher


logger = logging.getLogger(__name__)

PRICE_TIER_ON_DEMAND = "ondemand"
PRICE_TIER_SPOT = "spot"


def metric_name(prefix: str, *parts: str) -> str:
    """Join metric name parts with underscores, skipping empty ones."""
    return "_".join(part for part in (prefix, *parts) if part)


@dataclass(frozen=True)
class MetricDescriptor:
    """Name, help text and label names of one gauge."""
    name: str
    documentation: str
    labels: Sequence[str]

    def new_family(self) -> GaugeMetricFamily:
        return GaugeMetricFamily(self.name, self.documentation, labels=list(self.labels))


class Collector:
    """
    A service collector: owns its pricing refreshers and emits cost gauges.

    Subclasses implement ``describe`` and ``emit``; ``collect`` handles refreshing
    pricing maps and serving stale ones when a refresh fails.
    """

    name = "collector"

    def __init__(self, refreshers: Dict[str, PricingRefresher]):
        self.refreshers = refreshers

    def describe(self) -> List[MetricDescriptor]:
        raise NotImplementedError

    def emit(self, cancel_event: threading.Event) -> Iterable[Metric]:
        raise NotImplementedError

    def is_ready(self) -> bool:
        return all(refresher.is_ready() for refresher in self.refreshers.values())

    def readiness(self) -> Dict[str, Dict[str, bool]]:
        return {
            name: {"ready": refresher.is_ready(), "stale": refresher.is_stale()}
            for name, refresher in self.refreshers.items()
        }

    def refresh(self, cancel_event: Optional[threading.Event] = None) -> None:
        """
        Force a rebuild of every pricing map.

        Raises:
            Exception: The first build failure
        """
        for refresher in self.refreshers.values():
            refresher.refresh(cancel_event)

    def ensure_pricing(self, cancel_event: threading.Event) -> List[Exception]:
        """
        Bring every pricing map up to date.

        A failed refresh is tolerated when an older map is still published.

        Returns:
            Refresh errors that were tolerated

        Raises:
            Exception: If a map fails to build and none was ever published, or if cancelled
        """
        tolerated: List[Exception] = []
        for name, refresher in self.refreshers.items():
            try:
                refresher.ensure_fresh(cancel_event)
            except Exception as error:
                # Only the scrape's own cancellation aborts the scrape
                if isinstance(error, FetchCancelledError) and cancel_event.is_set():
                    raise
                if not refresher.is_ready():
                    raise
                logger.warning(f"{self.name}: serving stale {name} pricing map: {error}")
                tolerated.append(error)
        return tolerated

    def collect(self, cancel_event: Optional[threading.Event] = None) -> List[Metric]:
        """
        Refresh pricing when due and emit every metric family.

        Raises:
            StalePricingError: After emitting from a stale map, carrying the metrics
            Exception: If pricing or inventory cannot be fetched
        """
        cancel_event = cancel_event or threading.Event()
        tolerated = self.ensure_pricing(cancel_event)
        metrics = list(self.emit(child_event(cancel_event)))
        if tolerated:
            raise StalePricingError(metrics, tolerated)
        return metrics


class StalePricingError(Exception):
    """Raised by ``collect`` when metrics were emitted from a stale pricing map."""

    def __init__(self, metrics: List[Metric], errors: List[Exception]):
        super().__init__(f"pricing refresh failed, served stale prices: {errors[0]}")
        self.metrics = metrics
        self.errors = errors
