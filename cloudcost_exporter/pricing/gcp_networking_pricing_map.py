"""
Pricing map for GCP load balancer forwarding rules built from Networking SKUs.
"""
import logging
import threading
from typing import Any, Dict, Iterable, List, Optional, Set

from cloudcost_exporter.domain.pricing_models import ForwardingRulePrices
from cloudcost_exporter.pricing.catalog_parser import money_to_usd
from cloudcost_exporter.pricing.errors import PricingDataIsOffError, RegionNotFoundError
from cloudcost_exporter.pricing.gcp_pricing_map import tiered_rates


logger = logging.getLogger(__name__)

NETWORKING_SERVICE = "Networking"
LOAD_BALANCING_RESOURCE_GROUP = "LoadBalancing"

# SKU description marker -> ForwardingRulePrices field
SKU_DESCRIPTION_FIELDS: Dict[str, str] = {
    "Forwarding Rule": "forwarding_rule",
    "Inbound Data Processing": "inbound_data",
    "Outbound Data Processing": "outbound_data",
}


def _sku_regions(sku: Dict[str, Any]) -> List[str]:
    regions = (sku.get("geoTaxonomy") or {}).get("regions") or []
    return list(regions or sku.get("serviceRegions") or [])


class NetworkingPricingMap:
    """region -> ForwardingRulePrices."""

    def __init__(self):
        self.regions: Dict[str, ForwardingRulePrices] = {}
        self._lock = threading.Lock()

    def get_prices(self, region: str) -> ForwardingRulePrices:
        """
        Raises:
            RegionNotFoundError: If no load balancing SKU covers the region
        """
        with self._lock:
            prices = self.regions.get(region)
        if prices is None:
            raise RegionNotFoundError(f"No forwarding rule prices for region {region}")
        return prices

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, NetworkingPricingMap):
            return NotImplemented
        return self.regions == other.regions

    @classmethod
    def generate(
        cls,
        skus: Iterable[Dict[str, Any]],
        counts: Optional[Dict[str, int]] = None,
    ) -> "NetworkingPricingMap":
        """
        Build a forwarding rule map from Networking billing SKUs.

        Only SKUs in the LoadBalancing resource group are read. The first
        price seen per (region, field) wins; SKUs without rates are skipped.
        """
        pricing_map = cls()
        seen: Dict[str, Set[str]] = {}
        tally = counts if counts is not None else {}
        for sku in skus:
            if (sku.get("category") or {}).get("resourceGroup") != LOAD_BALANCING_RESOURCE_GROUP:
                tally["not_relevant"] = tally.get("not_relevant", 0) + 1
                continue
            description = sku.get("description", "")
            field_name = next(
                (name for marker, name in SKU_DESCRIPTION_FIELDS.items() if marker in description),
                None,
            )
            if field_name is None:
                tally["not_relevant"] = tally.get("not_relevant", 0) + 1
                continue
            try:
                price = money_to_usd(tiered_rates(sku)[0].get("unitPrice") or {})
            except PricingDataIsOffError as error:
                logger.warning(f"Skipping SKU with unusable pricing: {error}")
                tally["pricing_off"] = tally.get("pricing_off", 0) + 1
                continue

            for region in _sku_regions(sku):
                if field_name in seen.setdefault(region, set()):
                    logger.debug(f"Skipping duplicate {field_name} price in {region}")
                    continue
                seen[region].add(field_name)
                prices = pricing_map.regions.setdefault(region, ForwardingRulePrices())
                setattr(prices, field_name, price)
            tally["parsed"] = tally.get("parsed", 0) + 1

        logger.info(f"Built GCP forwarding rule pricing map from SKUs: {tally}")
        return pricing_map
