"""
EC2 collector.
Joins running instances and EBS volumes against the compute and storage pricing maps.
"""
from datetime import datetime, timedelta
import logging
import threading
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from prometheus_client.core import Metric

from cloudcost_exporter.collectors.base import (
    PRICE_TIER_ON_DEMAND,
    PRICE_TIER_SPOT,
    Collector,
    MetricDescriptor,
    metric_name,
)
from cloudcost_exporter.domain.inventory_models import ComputeInstance, PersistentVolume
from cloudcost_exporter.domain.pricing_models import PriceBreakdown, VariantPrice
from cloudcost_exporter.pricing.aws_pricing_client import AWSPricingClient, AWSPricingError, EC2RegionClient
from cloudcost_exporter.pricing.aws_region_map import region_from_availability_zone
from cloudcost_exporter.pricing.decomposition import CostDecomposer
from cloudcost_exporter.pricing.errors import (
    ClientNotFoundError,
    GeneratePricingMapError,
    ListInventoryError,
    ListOnDemandPricesError,
    ListSpotPricesError,
    ListStoragePricesError,
    MalformedEntryError,
    PriceNotFoundError,
)
from cloudcost_exporter.pricing.pricing_map import ComputePricingMap, StoragePricingMap
from cloudcost_exporter.services.fanout import DEFAULT_MAX_WORKERS, fan_out
from cloudcost_exporter.services.refresh_scheduler import PricingRefresher


logger = logging.getLogger(__name__)

SUBSYSTEM = "aws_ec2"

INSTANCE_LABELS = ["instance", "region", "family", "machine_type", "cluster_name", "price_tier"]
VOLUME_LABELS = ["persistent_volume", "region", "availability_zone", "disk", "type", "size_gib", "state"]


class EC2Collector(Collector):
    """Emits hourly cost gauges for EC2 instances and EBS volumes."""

    name = "aws_ec2"

    def __init__(
        self,
        regions: List[str],
        pricing_client: AWSPricingClient,
        region_clients: Dict[str, EC2RegionClient],
        scrape_interval: timedelta = timedelta(hours=1),
        max_workers: int = DEFAULT_MAX_WORKERS,
        metric_prefix: str = "cloudcost",
        decomposer: Optional[CostDecomposer] = None,
        clock: Callable[[], datetime] = datetime.now,
        fetch_timeout: Optional[float] = None,
        build_timeout: Optional[float] = None,
    ):
        """
        Initialize EC2 collector.

        Args:
            regions: Region codes to price and inventory
            pricing_client: Price List API client
            region_clients: One EC2 client per region
            scrape_interval: How long a pricing map stays fresh
            max_workers: Bound on concurrent per-region fetches
            metric_prefix: Namespace of emitted metric names
            decomposer: CPU/RAM ratio table
            clock: Time source for the refreshers
            fetch_timeout: Seconds allowed for one inventory fan-out
            build_timeout: Seconds allowed for one pricing fan-out, None for no deadline
        """
        self.regions = list(regions)
        self.pricing_client = pricing_client
        self.region_clients = region_clients
        self.max_workers = max_workers
        self.decomposer = decomposer or CostDecomposer()
        self.fetch_timeout = fetch_timeout
        self.build_timeout = build_timeout
        super().__init__({
            "compute": PricingRefresher(f"{self.name}_compute", self._build_compute_pricing_map, scrape_interval, clock),
            "storage": PricingRefresher(f"{self.name}_storage", self._build_storage_pricing_map, scrape_interval, clock),
        })

        self.instance_cpu = MetricDescriptor(
            metric_name(metric_prefix, SUBSYSTEM, "instance_cpu_usd_per_core_hour"),
            "The cpu cost of an EC2 instance in USD per core-hour.",
            INSTANCE_LABELS,
        )
        self.instance_memory = MetricDescriptor(
            metric_name(metric_prefix, SUBSYSTEM, "instance_memory_usd_per_gib_hour"),
            "The memory cost of an EC2 instance in USD per GiB-hour.",
            INSTANCE_LABELS,
        )
        self.instance_total = MetricDescriptor(
            metric_name(metric_prefix, SUBSYSTEM, "instance_total_usd_per_hour"),
            "The total cost of an EC2 instance in USD per hour.",
            INSTANCE_LABELS,
        )
        self.persistent_volume = MetricDescriptor(
            metric_name(metric_prefix, SUBSYSTEM, "persistent_volume_usd_per_hour"),
            "The cost of an EBS volume in USD per hour.",
            VOLUME_LABELS,
        )

    def describe(self) -> List[MetricDescriptor]:
        return [self.instance_cpu, self.instance_memory, self.instance_total, self.persistent_volume]

    def _region_client(self, region: str) -> EC2RegionClient:
        client = self.region_clients.get(region)
        if client is None:
            raise ClientNotFoundError(f"No EC2 client configured for region {region}")
        return client

    def _fetch_region_prices(self, region: str, cancel_event: threading.Event) -> Tuple[List[str], List[VariantPrice]]:
        try:
            on_demand = self.pricing_client.list_on_demand_prices(region, cancel_event)
        except AWSPricingError as error:
            raise ListOnDemandPricesError(f"Listing on-demand prices for {region}: {error}") from error
        client = self._region_client(region)
        try:
            spot = client.list_spot_prices(cancel_event)
        except AWSPricingError as error:
            raise ListSpotPricesError(f"Listing spot prices for {region}: {error}") from error
        return on_demand, spot

    def _build_compute_pricing_map(self, cancel_event: threading.Event) -> ComputePricingMap:
        results = fan_out(
            self.regions,
            self._fetch_region_prices,
            max_workers=self.max_workers,
            cancel_event=cancel_event,
            timeout=self.build_timeout,
            name="ec2-prices",
        )
        on_demand: List[str] = []
        spot: List[VariantPrice] = []
        for region_on_demand, region_spot in results:
            on_demand.extend(region_on_demand)
            spot.extend(region_spot)
        try:
            return ComputePricingMap.generate(on_demand, spot, self.decomposer)
        except MalformedEntryError as error:
            raise GeneratePricingMapError(f"Building EC2 compute pricing map: {error}") from error

    def _fetch_region_storage_prices(self, region: str, cancel_event: threading.Event) -> List[str]:
        try:
            return self.pricing_client.list_storage_prices(region, cancel_event)
        except AWSPricingError as error:
            raise ListStoragePricesError(f"Listing storage prices for {region}: {error}") from error

    def _build_storage_pricing_map(self, cancel_event: threading.Event) -> StoragePricingMap:
        results = fan_out(
            self.regions,
            self._fetch_region_storage_prices,
            max_workers=self.max_workers,
            cancel_event=cancel_event,
            timeout=self.build_timeout,
            name="ebs-prices",
        )
        try:
            return StoragePricingMap.generate(entry for region_entries in results for entry in region_entries)
        except MalformedEntryError as error:
            raise GeneratePricingMapError(f"Building EBS storage pricing map: {error}") from error

    def lookup(self, region: str, instance_type: str) -> PriceBreakdown:
        """
        Price of an instance type in a region (or availability zone, for spot).

        Raises:
            RegionNotFoundError, InstanceTypeNotFoundError: On a lookup miss
            GeneratePricingMapError: If no compute map has been built yet
        """
        compute_map = self.refreshers["compute"].current
        if compute_map is None:
            raise GeneratePricingMapError("EC2 compute pricing map has not been built yet")
        return compute_map.get_price_for_instance_type(region, instance_type)

    def _fetch_region_inventory(
        self,
        region: str,
        cancel_event: threading.Event,
    ) -> Tuple[List[ComputeInstance], List[PersistentVolume]]:
        client = self._region_client(region)
        try:
            return client.list_compute_instances(cancel_event), client.list_volumes(cancel_event)
        except AWSPricingError as error:
            raise ListInventoryError(f"Listing EC2 inventory for {region}: {error}") from error

    def emit(self, cancel_event: threading.Event) -> Iterable[Metric]:
        compute_map: ComputePricingMap = self.refreshers["compute"].current
        storage_map: StoragePricingMap = self.refreshers["storage"].current
        inventories = fan_out(
            self.regions,
            self._fetch_region_inventory,
            max_workers=self.max_workers,
            cancel_event=cancel_event,
            timeout=self.fetch_timeout,
            name="ec2-inventory",
        )

        cpu_family = self.instance_cpu.new_family()
        memory_family = self.instance_memory.new_family()
        total_family = self.instance_total.new_family()
        volume_family = self.persistent_volume.new_family()

        for instances, volumes in inventories:
            for instance in instances:
                priced = self._price_instance(compute_map, instance)
                if priced is None:
                    continue
                labels, price = priced
                cpu_family.add_metric(labels, price.cpu)
                memory_family.add_metric(labels, price.ram)
                total_family.add_metric(labels, price.total)

            for volume in volumes:
                priced_volume = self._price_volume(storage_map, volume)
                if priced_volume is None:
                    continue
                labels, hourly = priced_volume
                volume_family.add_metric(labels, hourly)

        return [cpu_family, memory_family, total_family, volume_family]

    def _price_instance(
        self,
        compute_map: ComputePricingMap,
        instance: ComputeInstance,
    ) -> Optional[Tuple[List[str], PriceBreakdown]]:
        if not instance.private_dns_name:
            logger.info(f"Skipping instance {instance.instance_id}: no private DNS name")
            return None
        if not instance.availability_zone:
            logger.info(f"Skipping instance {instance.instance_id}: no availability zone")
            return None

        # Spot prices are keyed by availability zone, on-demand by region
        if instance.is_spot:
            price_tier = PRICE_TIER_SPOT
            region = instance.availability_zone
        else:
            price_tier = PRICE_TIER_ON_DEMAND
            region = region_from_availability_zone(instance.availability_zone)

        try:
            price = compute_map.get_price_for_instance_type(region, instance.instance_type)
        except PriceNotFoundError as error:
            logger.warning(f"No price for instance {instance.instance_id}: {error}")
            return None

        labels = [
            instance.private_dns_name,
            region,
            compute_map.instance_family(instance.instance_type),
            instance.instance_type,
            instance.cluster_name,
            price_tier,
        ]
        return labels, price

    def _price_volume(
        self,
        storage_map: StoragePricingMap,
        volume: PersistentVolume,
    ) -> Optional[Tuple[List[str], float]]:
        if not volume.availability_zone:
            logger.info(f"Skipping volume {volume.volume_id}: no availability zone")
            return None
        region = region_from_availability_zone(volume.availability_zone)
        try:
            hourly = storage_map.get_price_for_volume_type(region, volume.volume_type, volume.size_gib)
        except PriceNotFoundError as error:
            logger.warning(f"No price for volume {volume.volume_id}: {error}")
            return None
        labels = [
            volume.pv_name,
            region,
            volume.availability_zone,
            volume.volume_id,
            volume.volume_type,
            str(volume.size_gib),
            volume.state,
        ]
        return labels, hourly
