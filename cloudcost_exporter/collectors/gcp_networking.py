"""
GCP load balancing collector.
Prices forwarding rules per hour and their processed data per GiB.
"""
from datetime import datetime, timedelta
import logging
import threading
from typing import Callable, Iterable, List, Optional

from prometheus_client.core import Metric

from cloudcost_exporter.collectors.base import Collector, MetricDescriptor, metric_name
from cloudcost_exporter.domain.inventory_models import ForwardingRule
from cloudcost_exporter.pricing.errors import GeneratePricingMapError, ListInventoryError, PriceNotFoundError
from cloudcost_exporter.pricing.gcp_networking_pricing_map import NETWORKING_SERVICE, NetworkingPricingMap
from cloudcost_exporter.pricing.gcp_pricing_client import GCPPricingClient, GCPPricingError
from cloudcost_exporter.services.fanout import DEFAULT_MAX_WORKERS, fan_out
from cloudcost_exporter.services.refresh_scheduler import PricingRefresher


logger = logging.getLogger(__name__)

SUBSYSTEM = "gcp_clb"

FORWARDING_RULE_LABELS = ["name", "region", "project", "ip_address", "load_balancing_scheme"]


class ForwardingRuleCollector(Collector):
    """Emits cost gauges for GCP load balancer forwarding rules."""

    name = "gcp_clb_forwarding_rule"

    def __init__(
        self,
        projects: List[str],
        client: GCPPricingClient,
        scrape_interval: timedelta = timedelta(hours=1),
        max_workers: int = DEFAULT_MAX_WORKERS,
        metric_prefix: str = "cloudcost",
        clock: Callable[[], datetime] = datetime.now,
        fetch_timeout: Optional[float] = None,
    ):
        self.projects = list(projects)
        self.client = client
        self.max_workers = max_workers
        self.fetch_timeout = fetch_timeout
        super().__init__({
            "networking": PricingRefresher(f"{self.name}_pricing", self._build_pricing_map, scrape_interval, clock),
        })

        self.unit_per_hour = MetricDescriptor(
            metric_name(metric_prefix, SUBSYSTEM, "forwarding_rule_unit_per_hour"),
            "The cost of a forwarding rule in USD per hour.",
            FORWARDING_RULE_LABELS,
        )
        self.inbound_data = MetricDescriptor(
            metric_name(metric_prefix, SUBSYSTEM, "forwarding_rule_inbound_data_processed_per_gib"),
            "The cost of inbound data processed by a forwarding rule in USD per GiB.",
            FORWARDING_RULE_LABELS,
        )
        self.outbound_data = MetricDescriptor(
            metric_name(metric_prefix, SUBSYSTEM, "forwarding_rule_outbound_data_processed_per_gib"),
            "The cost of outbound data processed by a forwarding rule in USD per GiB.",
            FORWARDING_RULE_LABELS,
        )

    def describe(self) -> List[MetricDescriptor]:
        return [self.unit_per_hour, self.inbound_data, self.outbound_data]

    def _build_pricing_map(self, cancel_event: threading.Event) -> NetworkingPricingMap:
        try:
            service_name = self.client.get_service_name(NETWORKING_SERVICE, cancel_event)
            skus = self.client.list_skus(service_name, cancel_event)
        except GCPPricingError as error:
            raise GeneratePricingMapError(f"Listing Networking SKUs: {error}") from error
        return NetworkingPricingMap.generate(skus)

    def _fetch_project_rules(self, project: str, cancel_event: threading.Event) -> List[ForwardingRule]:
        try:
            return self.client.list_forwarding_rules(project, cancel_event)
        except GCPPricingError as error:
            raise ListInventoryError(f"Listing forwarding rules for {project}: {error}") from error

    def emit(self, cancel_event: threading.Event) -> Iterable[Metric]:
        pricing_map: NetworkingPricingMap = self.refreshers["networking"].current
        inventories = fan_out(
            self.projects,
            self._fetch_project_rules,
            max_workers=self.max_workers,
            cancel_event=cancel_event,
            timeout=self.fetch_timeout,
            name="clb-inventory",
        )

        unit_family = self.unit_per_hour.new_family()
        inbound_family = self.inbound_data.new_family()
        outbound_family = self.outbound_data.new_family()
        for rules in inventories:
            for rule in rules:
                try:
                    prices = pricing_map.get_prices(rule.region)
                except PriceNotFoundError as error:
                    logger.warning(f"No price for forwarding rule {rule.name}: {error}")
                    continue
                labels = [rule.name, rule.region, rule.project, rule.ip_address, rule.load_balancing_scheme]
                unit_family.add_metric(labels, prices.forwarding_rule)
                inbound_family.add_metric(labels, prices.inbound_data)
                outbound_family.add_metric(labels, prices.outbound_data)

        return [unit_family, inbound_family, outbound_family]
