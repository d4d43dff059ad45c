"""
Pricing map for GCP Compute Engine built from Cloud Billing Catalog SKUs.
Machine families are priced per core and per GiB; disks per GiB-hour.
"""
import logging
import re
import threading
from dataclasses import dataclass, replace
from typing import Any, Dict, Iterable, List, Optional, Tuple

from cloudcost_exporter.domain.inventory_models import MachineSpec
from cloudcost_exporter.domain.pricing_models import ComponentPrices, PriceTiers
from cloudcost_exporter.pricing.catalog_parser import money_to_usd
from cloudcost_exporter.pricing.errors import (
    FamilyNotFoundError,
    PricingDataIsOffError,
    RegionNotFoundError,
    SkuNotParsableError,
    SkuNotRelevantError,
)


logger = logging.getLogger(__name__)

# GCP bills persistent disk by the month; this is the month length its console uses
HOURS_IN_MONTH = 24.35 * 30

_COMPUTE_SKU_PATTERN = re.compile(
    r"^(?P<spot>Spot Preemptible )?"
    r"(?:(?P<family>\w{1,3})|(?P<optimized> ?Compute optimized))"
    r"(?: Predefined)?(?: AMD)?(?: Instance)? "
    r"(?P<resource>Core|Ram) running in \w+(?: \w+){0,2}$"
)

# Substrings of SKU descriptions that are never priced
IGNORED_SKU_MARKERS: List[str] = [
    "Network",
    "Nvidia",
    "Sole Tenancy",
    "Cloud Interconnect - ",
    "Commitment v1: ",
    "Custom",
    "Micro Instance",
    "Small Instance",
    "Memory-optimized",
]

# SKU description prefix -> disk storage class
STORAGE_CLASSES: Dict[str, str] = {
    "Storage PD Capacity": "pd-standard",
    "SSD backed PD Capacity": "pd-ssd",
    "Balanced PD Capacity": "pd-balanced",
    "Extreme PD Capacity": "pd-extreme",
}


@dataclass(frozen=True)
class ParsedSku:
    """One priced fact extracted from a SKU, for each region it is offered in."""
    kind: str  # "compute" or "storage"
    regions: Tuple[str, ...]
    price: float
    family: str = ""
    resource: str = ""  # "cpu" or "ram"
    spot: bool = False
    storage_class: str = ""


def tiered_rates(sku: Dict[str, Any]) -> List[Dict[str, Any]]:
    pricing_info = sku.get("pricingInfo") or []
    if not pricing_info:
        raise PricingDataIsOffError(f"SKU {sku.get('skuId', '')} has no pricing info")
    expression = pricing_info[0].get("pricingExpression") or {}
    rates = expression.get("tieredRates") or []
    if not rates:
        raise PricingDataIsOffError(f"SKU {sku.get('skuId', '')} has no tiered rates")
    return rates


def parse_sku(sku: Dict[str, Any]) -> ParsedSku:
    """
    Classify a billing SKU and extract its price.

    Args:
        sku: One element of ``services/*/skus``

    Returns:
        ParsedSku describing a compute or storage price

    Raises:
        SkuNotRelevantError: For SKUs on the ignore list
        PricingDataIsOffError: When the SKU carries no usable rate
        SkuNotParsableError: When the description is not recognised
    """
    description = sku.get("description", "")
    for marker in IGNORED_SKU_MARKERS:
        if marker in description:
            raise SkuNotRelevantError(description)

    regions = tuple(sku.get("serviceRegions") or [])
    resource_family = (sku.get("category") or {}).get("resourceFamily", "")

    if resource_family == "Storage":
        for prefix, storage_class in STORAGE_CLASSES.items():
            if description.startswith(prefix):
                rates = tiered_rates(sku)
                monthly = money_to_usd(rates[-1].get("unitPrice") or {})
                return ParsedSku(
                    kind="storage",
                    regions=regions,
                    price=monthly / HOURS_IN_MONTH,
                    storage_class=storage_class,
                )
        raise SkuNotRelevantError(description)

    match = _COMPUTE_SKU_PATTERN.match(description)
    if not match:
        raise SkuNotParsableError(description)
    family = "c2" if match.group("optimized") else match.group("family").lower()
    rates = tiered_rates(sku)
    return ParsedSku(
        kind="compute",
        regions=regions,
        price=money_to_usd(rates[0].get("unitPrice") or {}),
        family=family,
        resource="cpu" if match.group("resource") == "Core" else "ram",
        spot=bool(match.group("spot")),
    )


class GcpPricingMap:
    """region -> family -> PriceTiers, plus region -> storage class -> USD per GiB-hour."""

    def __init__(self):
        self.compute: Dict[str, Dict[str, PriceTiers]] = {}
        self.storage: Dict[str, Dict[str, float]] = {}
        self._lock = threading.Lock()

    def _add_compute(self, parsed: ParsedSku) -> None:
        for region in parsed.regions:
            tiers = self.compute.setdefault(region, {}).setdefault(parsed.family, PriceTiers())
            tier_name = "spot" if parsed.spot else "on_demand"
            current: ComponentPrices = getattr(tiers, tier_name)
            setattr(tiers, tier_name, replace(current, **{parsed.resource: parsed.price}))

    def _add_storage(self, parsed: ParsedSku) -> None:
        for region in parsed.regions:
            region_prices = self.storage.setdefault(region, {})
            if parsed.storage_class in region_prices:
                logger.debug(f"Skipping duplicate {parsed.storage_class} price in {region}")
                continue
            region_prices[parsed.storage_class] = parsed.price

    def get_cost_of_instance(self, machine: MachineSpec) -> Tuple[float, float]:
        """
        Per-core and per-GiB hourly prices for a machine.

        Raises:
            RegionNotFoundError: If the region has no compute prices
            FamilyNotFoundError: If the region has no price for the machine family
        """
        with self._lock:
            families = self.compute.get(machine.region)
            if families is None:
                raise RegionNotFoundError(f"No compute prices for region {machine.region}")
            tiers = families.get(machine.family)
        if tiers is None:
            raise FamilyNotFoundError(f"No price for family {machine.family} in {machine.region}")
        prices = tiers.spot if machine.spot_instance else tiers.on_demand
        return prices.cpu, prices.ram

    def get_cost_of_storage(self, region: str, storage_class: str) -> float:
        """
        Raises:
            RegionNotFoundError: If the region has no storage prices
            FamilyNotFoundError: If the region has no price for the storage class
        """
        with self._lock:
            classes = self.storage.get(region)
            if classes is None:
                raise RegionNotFoundError(f"No storage prices for region {region}")
            price = classes.get(storage_class)
        if price is None:
            raise FamilyNotFoundError(f"No price for storage class {storage_class} in {region}")
        return price

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, GcpPricingMap):
            return NotImplemented
        return self.compute == other.compute and self.storage == other.storage

    @classmethod
    def generate(cls, skus: Iterable[Dict[str, Any]], counts: Optional[Dict[str, int]] = None) -> "GcpPricingMap":
        """
        Build a pricing map from billing SKUs.

        Irrelevant, unparseable and unpriced SKUs are skipped; counts of each
        outcome are logged and written to ``counts`` when given.
        """
        pricing_map = cls()
        tally = counts if counts is not None else {}
        for sku in skus:
            try:
                parsed = parse_sku(sku)
            except SkuNotRelevantError:
                tally["not_relevant"] = tally.get("not_relevant", 0) + 1
                continue
            except PricingDataIsOffError as error:
                logger.warning(f"Skipping SKU with unusable pricing: {error}")
                tally["pricing_off"] = tally.get("pricing_off", 0) + 1
                continue
            except SkuNotParsableError:
                tally["not_parsable"] = tally.get("not_parsable", 0) + 1
                continue

            if parsed.kind == "storage":
                pricing_map._add_storage(parsed)
            else:
                pricing_map._add_compute(parsed)
            tally["parsed"] = tally.get("parsed", 0) + 1

        logger.info(f"Built GCP pricing map from SKUs: {tally}")
        return pricing_map
