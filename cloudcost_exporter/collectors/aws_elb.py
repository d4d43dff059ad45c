"""
ELB collector.
Prices application and network load balancers by the hour and by capacity unit.
"""
from datetime import datetime, timedelta
import logging
import threading
from typing import Callable, Dict, Iterable, List, Optional

from prometheus_client.core import Metric

from cloudcost_exporter.collectors.base import Collector, MetricDescriptor, metric_name
from cloudcost_exporter.domain.inventory_models import LoadBalancer
from cloudcost_exporter.pricing.aws_pricing_client import AWSPricingClient, AWSPricingError, ELBRegionClient
from cloudcost_exporter.pricing.elb_pricing_map import ELBPricingMap
from cloudcost_exporter.pricing.errors import (
    ClientNotFoundError,
    GeneratePricingMapError,
    ListInventoryError,
    ListLoadBalancerPricesError,
    MalformedEntryError,
    PriceNotFoundError,
)
from cloudcost_exporter.services.fanout import DEFAULT_MAX_WORKERS, fan_out
from cloudcost_exporter.services.refresh_scheduler import PricingRefresher


logger = logging.getLogger(__name__)

SUBSYSTEM = "aws_elb"

LOAD_BALANCER_LABELS = ["name", "arn", "region", "type", "scheme"]


class ELBCollector(Collector):
    """Emits hourly cost gauges for Elastic Load Balancing v2 load balancers."""

    name = "aws_elb"

    def __init__(
        self,
        regions: List[str],
        pricing_client: AWSPricingClient,
        region_clients: Dict[str, ELBRegionClient],
        scrape_interval: timedelta = timedelta(hours=1),
        max_workers: int = DEFAULT_MAX_WORKERS,
        metric_prefix: str = "cloudcost",
        clock: Callable[[], datetime] = datetime.now,
        fetch_timeout: Optional[float] = None,
        build_timeout: Optional[float] = None,
    ):
        self.regions = list(regions)
        self.pricing_client = pricing_client
        self.region_clients = region_clients
        self.max_workers = max_workers
        self.fetch_timeout = fetch_timeout
        self.build_timeout = build_timeout
        super().__init__({
            "loadbalancer": PricingRefresher(f"{self.name}_pricing", self._build_pricing_map, scrape_interval, clock),
        })

        self.load_balancer_total = MetricDescriptor(
            metric_name(metric_prefix, SUBSYSTEM, "loadbalancer_total_usd_per_hour"),
            "The hourly cost of a load balancer in USD, excluding capacity units.",
            LOAD_BALANCER_LABELS,
        )
        self.load_balancer_lcu = MetricDescriptor(
            metric_name(metric_prefix, SUBSYSTEM, "loadbalancer_lcu_usd_per_hour"),
            "The cost of one load balancer capacity unit in USD per hour.",
            LOAD_BALANCER_LABELS,
        )

    def describe(self) -> List[MetricDescriptor]:
        return [self.load_balancer_total, self.load_balancer_lcu]

    def _fetch_region_prices(self, region: str, cancel_event: threading.Event) -> List[str]:
        try:
            return self.pricing_client.list_load_balancer_prices(region, cancel_event)
        except AWSPricingError as error:
            raise ListLoadBalancerPricesError(f"Listing load balancer prices for {region}: {error}") from error

    def _build_pricing_map(self, cancel_event: threading.Event) -> ELBPricingMap:
        results = fan_out(
            self.regions,
            self._fetch_region_prices,
            max_workers=self.max_workers,
            cancel_event=cancel_event,
            timeout=self.build_timeout,
            name="elb-prices",
        )
        try:
            return ELBPricingMap.generate(dict(zip(self.regions, results)))
        except MalformedEntryError as error:
            raise GeneratePricingMapError(f"Building ELB pricing map: {error}") from error

    def _fetch_region_load_balancers(self, region: str, cancel_event: threading.Event) -> List[LoadBalancer]:
        client = self.region_clients.get(region)
        if client is None:
            raise ClientNotFoundError(f"No ELB client configured for region {region}")
        try:
            return client.list_load_balancers(cancel_event)
        except AWSPricingError as error:
            raise ListInventoryError(f"Listing load balancers for {region}: {error}") from error

    def emit(self, cancel_event: threading.Event) -> Iterable[Metric]:
        pricing_map: ELBPricingMap = self.refreshers["loadbalancer"].current
        inventories = fan_out(
            self.regions,
            self._fetch_region_load_balancers,
            max_workers=self.max_workers,
            cancel_event=cancel_event,
            timeout=self.fetch_timeout,
            name="elb-inventory",
        )

        total_family = self.load_balancer_total.new_family()
        lcu_family = self.load_balancer_lcu.new_family()
        for load_balancers in inventories:
            for load_balancer in load_balancers:
                try:
                    rates = pricing_map.get_rates(load_balancer.region, load_balancer.lb_type)
                except PriceNotFoundError as error:
                    logger.warning(f"No price for load balancer {load_balancer.name}: {error}")
                    continue
                labels = [
                    load_balancer.name,
                    load_balancer.arn,
                    load_balancer.region,
                    load_balancer.lb_type,
                    load_balancer.scheme,
                ]
                total_family.add_metric(labels, rates.hourly)
                if rates.lcu is not None:
                    lcu_family.add_metric(labels, rates.lcu)

        return [total_family, lcu_family]
