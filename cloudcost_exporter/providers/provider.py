"""
Provider aggregate registered with the Prometheus registry.
Runs every service collector on each scrape and reports how each one did.
"""
from concurrent.futures import ThreadPoolExecutor, wait
from datetime import timedelta
import logging
import threading
import time
from typing import Dict, Iterator, List, Optional, Tuple

import boto3
from prometheus_client.core import CounterMetricFamily, GaugeMetricFamily, Metric

from cloudcost_exporter.collectors.aws_ec2 import EC2Collector
from cloudcost_exporter.collectors.aws_elb import ELBCollector
from cloudcost_exporter.collectors.base import Collector, StalePricingError, metric_name
from cloudcost_exporter.collectors.gcp_compute import GCECollector
from cloudcost_exporter.collectors.gcp_networking import ForwardingRuleCollector
from cloudcost_exporter.core.config import Config
from cloudcost_exporter.pricing.aws_pricing_client import AWSPricingClient, EC2RegionClient, ELBRegionClient
from cloudcost_exporter.pricing.aws_region_map import discover_regions
from cloudcost_exporter.pricing.decomposition import CostDecomposer
from cloudcost_exporter.pricing.gcp_pricing_client import GCPPricingClient
from cloudcost_exporter.services.fanout import child_event


logger = logging.getLogger(__name__)


class Provider:
    """
    Custom Prometheus collector wrapping a cloud provider's service collectors.

    Each scrape runs the collectors concurrently. Every collector gets its own
    cancel event; all of them fire when ``timeout_seconds`` elapses.
    """

    def __init__(
        self,
        name: str,
        collectors: List[Collector],
        timeout_seconds: float = 60,
        metric_prefix: str = "cloudcost",
    ):
        self.name = name
        self.collectors = list(collectors)
        self.timeout_seconds = timeout_seconds
        self.metric_prefix = metric_prefix
        self._lock = threading.Lock()
        self._scrapes_total = 0
        self._collector_scrapes: Dict[str, int] = {collector.name: 0 for collector in self.collectors}

    def describe(self) -> List[Metric]:
        # Returning nothing keeps registration from running a full scrape
        return []

    def _run_collector(self, collector: Collector, cancel_event: threading.Event) -> Tuple[List[Metric], bool, float]:
        started = time.monotonic()
        try:
            metrics = collector.collect(cancel_event)
            failed = False
        except StalePricingError as error:
            logger.warning(f"{self.name}/{collector.name}: {error}")
            metrics, failed = error.metrics, True
        except Exception as error:
            logger.error(f"{self.name}/{collector.name}: collect failed: {error}")
            metrics, failed = [], True
        return metrics, failed, time.monotonic() - started

    def collect(self) -> Iterator[Metric]:
        started = time.monotonic()
        deadline = threading.Event()
        collector_error = GaugeMetricFamily(
            metric_name(self.metric_prefix, "collector_last_scrape_error"),
            "Was the last scrape an error. 1 indicates an error.",
            labels=["provider", "collector"],
        )
        collector_duration = GaugeMetricFamily(
            metric_name(self.metric_prefix, "collector_last_scrape_duration_seconds"),
            "Duration of the last scrape in seconds.",
            labels=["provider", "collector"],
        )
        collector_time = GaugeMetricFamily(
            metric_name(self.metric_prefix, "collector_last_scrape_time"),
            "Time of the last scrape in unix seconds.",
            labels=["provider", "collector"],
        )
        collector_scrapes = CounterMetricFamily(
            metric_name(self.metric_prefix, "collector_scrapes"),
            "Total number of scrapes for a collector.",
            labels=["provider", "collector"],
        )

        errors = 0
        executor = ThreadPoolExecutor(max_workers=max(1, len(self.collectors)), thread_name_prefix=self.name)
        try:
            # One event per collector so a failing collector cannot cancel its siblings
            futures = {
                executor.submit(self._run_collector, collector, child_event(deadline)): collector
                for collector in self.collectors
            }
            done, not_done = wait(futures, timeout=self.timeout_seconds)
            if not_done:
                deadline.set()
                logger.error(f"{self.name}: {len(not_done)} collectors exceeded {self.timeout_seconds}s, cancelling")

            for future, collector in futures.items():
                if future in done:
                    metrics, failed, duration = future.result()
                else:
                    metrics, failed, duration = [], True, float(self.timeout_seconds)
                yield from metrics

                errors += int(failed)
                with self._lock:
                    self._collector_scrapes[collector.name] += 1
                    scrapes = self._collector_scrapes[collector.name]
                labels = [self.name, collector.name]
                collector_error.add_metric(labels, float(failed))
                collector_duration.add_metric(labels, duration)
                collector_time.add_metric(labels, time.time())
                collector_scrapes.add_metric(labels, scrapes)
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        with self._lock:
            self._scrapes_total += 1
            scrapes_total = self._scrapes_total

        yield collector_error
        yield collector_duration
        yield collector_time
        yield collector_scrapes

        provider_labels = [self.name]
        last_error = GaugeMetricFamily(
            metric_name(self.metric_prefix, "last_scrape_error"),
            "Was the last scrape an error. 1 indicates an error.",
            labels=["provider"],
        )
        last_error.add_metric(provider_labels, float(errors > 0))
        yield last_error
        last_duration = GaugeMetricFamily(
            metric_name(self.metric_prefix, "last_scrape_duration_seconds"),
            "Duration of the last scrape in seconds.",
            labels=["provider"],
        )
        last_duration.add_metric(provider_labels, time.monotonic() - started)
        yield last_duration
        scrapes = CounterMetricFamily(
            metric_name(self.metric_prefix, "scrapes"),
            "Total number of scrapes.",
            labels=["provider"],
        )
        scrapes.add_metric(provider_labels, scrapes_total)
        yield scrapes

    def refresh(self, cancel_event: Optional[threading.Event] = None) -> Dict[str, Optional[str]]:
        """
        Force a pricing rebuild on every collector.

        Returns:
            Collector name -> error message, or None when the rebuild succeeded
        """
        outcome: Dict[str, Optional[str]] = {}
        for collector in self.collectors:
            try:
                collector.refresh(child_event(cancel_event))
                outcome[collector.name] = None
            except Exception as error:
                logger.error(f"{self.name}/{collector.name}: forced refresh failed: {error}")
                outcome[collector.name] = str(error)
        return outcome

    def is_ready(self) -> bool:
        """True once every collector has published its pricing maps at least once."""
        return bool(self.collectors) and all(collector.is_ready() for collector in self.collectors)

    def readiness(self) -> Dict[str, Dict[str, Dict[str, bool]]]:
        return {collector.name: collector.readiness() for collector in self.collectors}


def _build_aws_provider(settings: Config, decomposer: CostDecomposer) -> Provider:
    session = boto3.session.Session(
        profile_name=settings.AWS_PROFILE or None,
        region_name=settings.AWS_REGION,
    )
    regions = settings.AWS_REGIONS or discover_regions(session.client("ec2"))
    logger.info(f"Pricing AWS regions: {', '.join(regions)}")

    collectors: List[Collector] = []
    for service in settings.AWS_SERVICES:
        if service.upper() == "EC2":
            collectors.append(EC2Collector(
                regions=regions,
                pricing_client=AWSPricingClient(session=session),
                region_clients={region: EC2RegionClient(region, session=session) for region in regions},
                scrape_interval=timedelta(seconds=settings.SCRAPE_INTERVAL_SECONDS),
                max_workers=settings.PRICING_FETCH_CONCURRENCY,
                metric_prefix=settings.METRIC_PREFIX,
                decomposer=decomposer,
                fetch_timeout=settings.COLLECTOR_TIMEOUT_SECONDS,
                build_timeout=settings.pricing_build_timeout(),
            ))
        elif service.upper() == "ELB":
            collectors.append(ELBCollector(
                regions=regions,
                pricing_client=AWSPricingClient(session=session),
                region_clients={region: ELBRegionClient(region, session=session) for region in regions},
                scrape_interval=timedelta(seconds=settings.SCRAPE_INTERVAL_SECONDS),
                max_workers=settings.PRICING_FETCH_CONCURRENCY,
                metric_prefix=settings.METRIC_PREFIX,
                fetch_timeout=settings.COLLECTOR_TIMEOUT_SECONDS,
                build_timeout=settings.pricing_build_timeout(),
            ))
        else:
            logger.warning(f"Unknown AWS service '{service}', skipping")
    return Provider("aws", collectors, settings.COLLECTOR_TIMEOUT_SECONDS, settings.METRIC_PREFIX)


def _build_gcp_provider(settings: Config) -> Provider:
    client = GCPPricingClient()
    collectors: List[Collector] = []
    for service in settings.GCP_SERVICES:
        if service.upper() == "GCE":
            collectors.append(GCECollector(
                projects=settings.GCP_PROJECTS,
                client=client,
                scrape_interval=timedelta(seconds=settings.SCRAPE_INTERVAL_SECONDS),
                max_workers=settings.PRICING_FETCH_CONCURRENCY,
                metric_prefix=settings.METRIC_PREFIX,
                fetch_timeout=settings.COLLECTOR_TIMEOUT_SECONDS,
            ))
        elif service.upper() == "CLB":
            collectors.append(ForwardingRuleCollector(
                projects=settings.GCP_PROJECTS,
                client=client,
                scrape_interval=timedelta(seconds=settings.SCRAPE_INTERVAL_SECONDS),
                max_workers=settings.PRICING_FETCH_CONCURRENCY,
                metric_prefix=settings.METRIC_PREFIX,
                fetch_timeout=settings.COLLECTOR_TIMEOUT_SECONDS,
            ))
        else:
            logger.warning(f"Unknown GCP service '{service}', skipping")
    return Provider("gcp", collectors, settings.COLLECTOR_TIMEOUT_SECONDS, settings.METRIC_PREFIX)


def build_provider(settings: Config) -> Provider:
    """
    Build the provider selected by configuration.

    Args:
        settings: Validated configuration

    Returns:
        Provider with one collector per configured service

    Raises:
        ValueError: If the provider is unknown
    """
    if settings.PROVIDER == "aws":
        return _build_aws_provider(settings, CostDecomposer(settings.cpu_cost_ratios()))
    if settings.PROVIDER == "gcp":
        return _build_gcp_provider(settings)
    raise ValueError(f"Unknown provider '{settings.PROVIDER}'")
