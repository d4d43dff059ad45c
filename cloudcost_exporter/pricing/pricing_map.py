"""
In-memory pricing maps for AWS compute and EBS storage.
Maps are built in full off to the side and then published; see refresh_scheduler.
"""
import logging
import threading
from typing import Dict, Iterable, Optional, Union

from cloudcost_exporter.domain.pricing_models import PriceAttributes, PriceBreakdown, VariantPrice
from cloudcost_exporter.pricing.catalog_parser import (
    decode_price_list_entry,
    parse_price_list_entry,
    parse_usd_amount,
)
from cloudcost_exporter.pricing.decomposition import CostDecomposer
from cloudcost_exporter.pricing.errors import (
    InstanceTypeAlreadyExistsError,
    InstanceTypeNotFoundError,
    MalformedEntryError,
    ParseAttributesError,
    RegionNotFoundError,
    VolumeTypeNotFoundError,
)


logger = logging.getLogger(__name__)

# EBS is billed per GB-month; the hourly rate assumes a 30 day month
STORAGE_HOURS_IN_MONTH = 30 * 24

RawEntry = Union[str, bytes, dict]


class ComputePricingMap:
    """
    (region, instance type) -> PriceBreakdown index.

    Regions are AWS region codes for on-demand prices and availability zones for
    spot prices. ``instance_details`` keeps the first catalog attributes seen per
    instance type so spot prices, which carry no attributes, can be decomposed.
    """

    def __init__(self, decomposer: Optional[CostDecomposer] = None):
        self.regions: Dict[str, Dict[str, PriceBreakdown]] = {}
        self.instance_details: Dict[str, PriceAttributes] = {}
        self.decomposer = decomposer or CostDecomposer()
        # Single lock for readers and writers; lookups are O(1) so contention stays low
        self._lock = threading.Lock()

    def add_to_pricing_map(self, price: float, attributes: PriceAttributes) -> PriceBreakdown:
        """
        Decompose a price and insert it under (attributes.region, attributes.instance_type).

        Args:
            price: Bundled hourly price in USD
            attributes: Catalog attributes; region may be a zone for spot prices

        Returns:
            The stored PriceBreakdown

        Raises:
            InstanceTypeAlreadyExistsError: If the pair is already present, checked before parsing
            ParseAttributesError: If vcpu or memory cannot be parsed
        """
        self._check_not_priced(attributes)
        cpu, ram = self.decomposer.decompose(price, attributes)
        breakdown = PriceBreakdown(cpu=cpu, ram=ram, total=price)
        with self._lock:
            self._check_not_priced_locked(attributes)
            self.regions.setdefault(attributes.region, {})[attributes.instance_type] = breakdown
        return breakdown

    def _check_not_priced(self, attributes: PriceAttributes) -> None:
        with self._lock:
            self._check_not_priced_locked(attributes)

    def _check_not_priced_locked(self, attributes: PriceAttributes) -> None:
        if attributes.instance_type in self.regions.get(attributes.region, {}):
            raise InstanceTypeAlreadyExistsError(
                f"{attributes.instance_type} already priced in {attributes.region}"
            )

    def add_instance_details(self, attributes: PriceAttributes) -> None:
        """Record attributes for an instance type unless already known."""
        with self._lock:
            self.instance_details.setdefault(attributes.instance_type, attributes)

    def get_price_for_instance_type(self, region: str, instance_type: str) -> PriceBreakdown:
        """
        Look up the price of an instance type.

        Raises:
            RegionNotFoundError: If the region has no prices
            InstanceTypeNotFoundError: If the region has no price for the type
        """
        with self._lock:
            region_prices = self.regions.get(region)
            if region_prices is None:
                raise RegionNotFoundError(f"No prices for region {region}")
            breakdown = region_prices.get(instance_type)
            if breakdown is None:
                raise InstanceTypeNotFoundError(f"No price for {instance_type} in {region}")
            return breakdown

    def instance_family(self, instance_type: str) -> str:
        with self._lock:
            attributes = self.instance_details.get(instance_type)
        return attributes.instance_family if attributes else ""

    def __len__(self) -> int:
        with self._lock:
            return sum(len(prices) for prices in self.regions.values())

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ComputePricingMap):
            return NotImplemented
        return self.regions == other.regions and self.instance_details == other.instance_details

    def _add_on_demand_entry(self, raw: RawEntry) -> None:
        for attributes, price in parse_price_list_entry(raw):
            try:
                self.add_to_pricing_map(price, attributes)
            except InstanceTypeAlreadyExistsError as error:
                logger.debug(f"Skipping duplicate price: {error}")
                continue
            except ParseAttributesError as error:
                logger.warning(
                    f"Skipping {attributes.instance_type} in {attributes.region}: {error}"
                )
                continue
            self.add_instance_details(attributes)

    def _add_spot_price(self, spot_price: VariantPrice) -> None:
        with self._lock:
            details = self.instance_details.get(spot_price.instance_type)
        if details is None:
            logger.warning(f"no instance details found for instance type {spot_price.instance_type}")
            return
        try:
            price = parse_usd_amount(spot_price.price)
            self.add_to_pricing_map(price, details.with_region(spot_price.availability_zone))
        except InstanceTypeAlreadyExistsError as error:
            logger.debug(f"Skipping duplicate spot price: {error}")
        except (MalformedEntryError, ParseAttributesError) as error:
            logger.warning(
                f"Skipping spot price for {spot_price.instance_type} "
                f"in {spot_price.availability_zone}: {error}"
            )

    @classmethod
    def generate(
        cls,
        on_demand_prices: Iterable[RawEntry],
        spot_prices: Iterable[VariantPrice],
        decomposer: Optional[CostDecomposer] = None,
    ) -> "ComputePricingMap":
        """
        Build a pricing map from raw catalog entries and spot prices.

        On-demand entries are processed first so that spot prices can borrow
        their attributes. Duplicate and unparseable entries are logged and
        skipped; the first entry seen for a key wins.

        Args:
            on_demand_prices: Raw Price List entries
            spot_prices: Spot prices keyed by availability zone
            decomposer: Ratio table to use, defaults to the built-in one

        Returns:
            A new ComputePricingMap

        Raises:
            MalformedEntryError: If an on-demand entry cannot be decoded at all
        """
        pricing_map = cls(decomposer)
        for raw in on_demand_prices:
            pricing_map._add_on_demand_entry(raw)
        for spot_price in spot_prices:
            pricing_map._add_spot_price(spot_price)
        return pricing_map


class StoragePricingMap:
    """region -> EBS volume type -> USD per GB-month."""

    def __init__(self):
        self.regions: Dict[str, Dict[str, float]] = {}
        self._lock = threading.Lock()

    def add_storage_price(self, region: str, volume_type: str, price: float) -> None:
        """
        Raises:
            InstanceTypeAlreadyExistsError: If the volume type is already priced in the region
        """
        with self._lock:
            region_prices = self.regions.setdefault(region, {})
            if volume_type in region_prices:
                raise InstanceTypeAlreadyExistsError(f"{volume_type} already priced in {region}")
            region_prices[volume_type] = price

    def get_price_for_volume_type(self, region: str, volume_type: str, size_gib: float) -> float:
        """
        Hourly price of a volume.

        Args:
            region: AWS region code
            volume_type: EBS volume API name (gp3, io2, ...)
            size_gib: Provisioned size

        Returns:
            USD per hour for the whole volume

        Raises:
            RegionNotFoundError: If the region has no storage prices
            VolumeTypeNotFoundError: If the region has no price for the volume type
        """
        with self._lock:
            region_prices = self.regions.get(region)
            if region_prices is None:
                raise RegionNotFoundError(f"No storage prices for region {region}")
            price = region_prices.get(volume_type)
        if price is None:
            raise VolumeTypeNotFoundError(f"No price for volume type {volume_type} in {region}")
        return price / STORAGE_HOURS_IN_MONTH * size_gib

    def __len__(self) -> int:
        with self._lock:
            return sum(len(prices) for prices in self.regions.values())

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, StoragePricingMap):
            return NotImplemented
        return self.regions == other.regions

    @classmethod
    def generate(cls, storage_prices: Iterable[RawEntry]) -> "StoragePricingMap":
        """
        Build a storage map from ``productFamily=Storage`` catalog entries.

        Raises:
            MalformedEntryError: If an entry cannot be decoded at all
        """
        storage_map = cls()
        for raw in storage_prices:
            entry = decode_price_list_entry(raw)
            attributes = entry.get("product", {}).get("attributes", {})
            region = attributes.get("regionCode", "")
            volume_type = attributes.get("volumeApiName", "")
            if not region or not volume_type:
                continue
            for term in entry.get("terms", {}).get("OnDemand", {}).values():
                for dimension in (term.get("priceDimensions") or {}).values():
                    try:
                        price = parse_usd_amount((dimension.get("pricePerUnit") or {}).get("USD"))
                        storage_map.add_storage_price(region, volume_type, price)
                    except InstanceTypeAlreadyExistsError as error:
                        logger.debug(f"Skipping duplicate storage price: {error}")
                    except MalformedEntryError as error:
                        logger.warning(f"Skipping storage price for {volume_type} in {region}: {error}")
        return storage_map
