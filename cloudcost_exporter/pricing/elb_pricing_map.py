"""
Pricing map for Elastic Load Balancing built from AWSELB Price List entries.
Each region holds an hourly rate and a capacity unit rate per load balancer type.
"""
import logging
import threading
from typing import Dict, Iterable, Mapping

from cloudcost_exporter.domain.pricing_models import LoadBalancerRates
from cloudcost_exporter.pricing.catalog_parser import decode_price_list_entry, parse_usd_amount
from cloudcost_exporter.pricing.errors import (
    LoadBalancerTypeNotFoundError,
    MalformedEntryError,
    RegionNotFoundError,
)
from cloudcost_exporter.pricing.pricing_map import RawEntry


logger = logging.getLogger(__name__)

# Catalog productFamily -> DescribeLoadBalancers ``Type``
LOAD_BALANCER_FAMILIES: Dict[str, str] = {
    "Load Balancer-Application": "application",
    "Load Balancer-Network": "network",
    "Load Balancer-Gateway": "gateway",
}

# Used when a region's catalog quotes no hourly rate for the type
DEFAULT_HOURLY_RATES: Dict[str, float] = {
    "application": 0.0225,
    "network": 0.0225,
}

HOURLY_UNIT = "hrs"


def _rate_kind(unit: str) -> str:
    """'hourly' for load balancer-hours, 'lcu' for capacity unit-hours, '' otherwise."""
    unit = (unit or "").lower()
    if unit == HOURLY_UNIT:
        return "hourly"
    if "lcu" in unit:
        return "lcu"
    return ""


class ELBPricingMap:
    """region -> load balancer type -> LoadBalancerRates."""

    def __init__(self):
        self.regions: Dict[str, Dict[str, LoadBalancerRates]] = {}
        self._lock = threading.Lock()

    def set_rates(self, region: str, lb_type: str, rates: LoadBalancerRates) -> None:
        with self._lock:
            self.regions.setdefault(region, {})[lb_type] = rates

    def get_rates(self, region: str, lb_type: str) -> LoadBalancerRates:
        """
        Raises:
            RegionNotFoundError: If the region has no load balancer prices
            LoadBalancerTypeNotFoundError: If the region has no price for the type
        """
        with self._lock:
            types = self.regions.get(region)
            if types is None:
                raise RegionNotFoundError(f"No load balancer prices for region {region}")
            rates = types.get(lb_type)
        if rates is None:
            raise LoadBalancerTypeNotFoundError(f"No price for {lb_type} load balancers in {region}")
        return rates

    def __len__(self) -> int:
        with self._lock:
            return sum(len(types) for types in self.regions.values())

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ELBPricingMap):
            return NotImplemented
        return self.regions == other.regions

    @classmethod
    def generate(cls, prices_by_region: Mapping[str, Iterable[RawEntry]]) -> "ELBPricingMap":
        """
        Build a load balancer map from per-region AWSELB catalog entries.

        The first hourly and capacity unit rate seen per (region, type) wins.
        Types the catalog leaves without an hourly rate fall back to
        DEFAULT_HOURLY_RATES, and are dropped when no default exists.

        Args:
            prices_by_region: Region code -> raw Price List entries fetched for it

        Returns:
            A new ELBPricingMap

        Raises:
            MalformedEntryError: If an entry cannot be decoded at all
        """
        found: Dict[str, Dict[str, Dict[str, float]]] = {}
        for requested_region, entries in prices_by_region.items():
            found.setdefault(requested_region, {})
            for raw in entries:
                entry = decode_price_list_entry(raw)
                product = entry.get("product", {})
                attributes = product.get("attributes", {})
                family = product.get("productFamily") or attributes.get("productFamily", "")
                lb_type = LOAD_BALANCER_FAMILIES.get(family)
                if lb_type is None:
                    continue
                if attributes.get("locationType", "AWS Region") != "AWS Region":
                    continue
                region = attributes.get("regionCode") or requested_region
                rates = found.setdefault(region, {}).setdefault(lb_type, {})
                for term in entry.get("terms", {}).get("OnDemand", {}).values():
                    if not isinstance(term, dict):
                        continue
                    for dimension in (term.get("priceDimensions") or {}).values():
                        kind = _rate_kind(dimension.get("unit", ""))
                        if not kind:
                            continue
                        if kind in rates:
                            logger.debug(f"Skipping duplicate {kind} rate for {lb_type} in {region}")
                            continue
                        try:
                            rates[kind] = parse_usd_amount((dimension.get("pricePerUnit") or {}).get("USD"))
                        except MalformedEntryError as error:
                            logger.warning(f"Skipping {kind} rate for {lb_type} in {region}: {error}")

        pricing_map = cls()
        for region, types in found.items():
            for lb_type in DEFAULT_HOURLY_RATES:
                types.setdefault(lb_type, {})
            for lb_type, rates in types.items():
                hourly = rates.get("hourly", DEFAULT_HOURLY_RATES.get(lb_type))
                if hourly is None:
                    logger.warning(f"No hourly rate for {lb_type} load balancers in {region}, skipping")
                    continue
                if "hourly" not in rates:
                    logger.info(f"Using default hourly rate {hourly} for {lb_type} load balancers in {region}")
                pricing_map.set_rates(region, lb_type, LoadBalancerRates(hourly=hourly, lcu=rates.get("lcu")))
        logger.info(f"Built ELB pricing map with {len(pricing_map)} rates across {len(found)} regions")
        return pricing_map
