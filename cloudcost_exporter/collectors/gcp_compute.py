"""
GCE collector.
Prices running instances per core and per GiB, and persistent disks per hour.
"""
from datetime import datetime, timedelta
import logging
import threading
from typing import Callable, Iterable, List, Optional, Tuple

from prometheus_client.core import Metric

from cloudcost_exporter.collectors.base import Collector, MetricDescriptor, metric_name
from cloudcost_exporter.domain.inventory_models import GcpDisk, MachineSpec
from cloudcost_exporter.pricing.errors import GeneratePricingMapError, ListInventoryError, PriceNotFoundError
from cloudcost_exporter.pricing.gcp_pricing_client import COMPUTE_ENGINE_SERVICE, GCPPricingClient, GCPPricingError
from cloudcost_exporter.pricing.gcp_pricing_map import GcpPricingMap
from cloudcost_exporter.services.fanout import DEFAULT_MAX_WORKERS, fan_out
from cloudcost_exporter.services.refresh_scheduler import PricingRefresher


logger = logging.getLogger(__name__)

SUBSYSTEM = "gcp_gce"

INSTANCE_LABELS = ["instance", "region", "family", "machine_type", "project", "cluster_name", "price_tier"]
DISK_LABELS = ["persistent_volume", "region", "location", "project", "type", "size_gib", "status"]


class GCECollector(Collector):
    """Emits hourly cost gauges for GCE instances and persistent disks."""

    name = "gcp_gce"

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
            "compute": PricingRefresher(f"{self.name}_pricing", self._build_pricing_map, scrape_interval, clock),
        })

        self.instance_cpu = MetricDescriptor(
            metric_name(metric_prefix, SUBSYSTEM, "instance_cpu_usd_per_core_hour"),
            "The cpu cost of a GCE instance in USD per core-hour.",
            INSTANCE_LABELS,
        )
        self.instance_memory = MetricDescriptor(
            metric_name(metric_prefix, SUBSYSTEM, "instance_memory_usd_per_gib_hour"),
            "The memory cost of a GCE instance in USD per GiB-hour.",
            INSTANCE_LABELS,
        )
        self.persistent_volume = MetricDescriptor(
            metric_name(metric_prefix, SUBSYSTEM, "persistent_volume_usd_per_hour"),
            "The cost of a GCE persistent disk in USD per hour.",
            DISK_LABELS,
        )

    def describe(self) -> List[MetricDescriptor]:
        return [self.instance_cpu, self.instance_memory, self.persistent_volume]

    def _build_pricing_map(self, cancel_event: threading.Event) -> GcpPricingMap:
        try:
            service_name = self.client.get_service_name(COMPUTE_ENGINE_SERVICE, cancel_event)
            skus = self.client.list_skus(service_name, cancel_event)
        except GCPPricingError as error:
            raise GeneratePricingMapError(f"Listing Compute Engine SKUs: {error}") from error
        return GcpPricingMap.generate(skus)

    def _fetch_project_inventory(
        self,
        project: str,
        cancel_event: threading.Event,
    ) -> Tuple[List[MachineSpec], List[GcpDisk]]:
        try:
            return self.client.list_instances(project, cancel_event), self.client.list_disks(project, cancel_event)
        except GCPPricingError as error:
            raise ListInventoryError(f"Listing GCE inventory for {project}: {error}") from error

    def emit(self, cancel_event: threading.Event) -> Iterable[Metric]:
        pricing_map: GcpPricingMap = self.refreshers["compute"].current
        inventories = fan_out(
            self.projects,
            self._fetch_project_inventory,
            max_workers=self.max_workers,
            cancel_event=cancel_event,
            timeout=self.fetch_timeout,
            name="gce-inventory",
        )

        cpu_family = self.instance_cpu.new_family()
        memory_family = self.instance_memory.new_family()
        disk_family = self.persistent_volume.new_family()

        for machines, disks in inventories:
            for machine in machines:
                try:
                    cpu, ram = pricing_map.get_cost_of_instance(machine)
                except PriceNotFoundError as error:
                    logger.warning(f"No price for instance {machine.instance}: {error}")
                    continue
                labels = [
                    machine.instance,
                    machine.region,
                    machine.family,
                    machine.machine_type,
                    machine.project,
                    machine.cluster_name,
                    machine.price_tier,
                ]
                cpu_family.add_metric(labels, cpu)
                memory_family.add_metric(labels, ram)

            for disk in disks:
                try:
                    price = pricing_map.get_cost_of_storage(disk.region, disk.storage_class)
                except PriceNotFoundError as error:
                    logger.warning(f"No price for disk {disk.name}: {error}")
                    continue
                disk_family.add_metric(
                    [
                        disk.name,
                        disk.region,
                        disk.location,
                        disk.project,
                        disk.storage_class,
                        str(disk.size_gib),
                        disk.status,
                    ],
                    price * disk.size_gib,
                )

        return [cpu_family, memory_family, disk_family]
