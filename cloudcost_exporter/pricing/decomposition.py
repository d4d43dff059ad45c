"""
Splits a bundled instance price into per-vCPU and per-GiB components.
"""
import logging
from typing import Dict, Optional, Tuple

from cloudcost_exporter.domain.pricing_models import PriceAttributes
from cloudcost_exporter.pricing.catalog_parser import parse_memory_gib, parse_vcpu


logger = logging.getLogger(__name__)

DEFAULT_INSTANCE_FAMILY = "General purpose"

# Share of an instance's hourly price attributed to CPU, by catalog instance family.
# The remainder is attributed to RAM.
CPU_TO_COST_RATIO: Dict[str, float] = {
    "Compute optimized": 0.88,
    "Memory optimized": 0.48,
    "General purpose": 0.65,
    "Storage optimized": 0.48,
}


class CostDecomposer:
    """Apportions an hourly price between CPU and RAM using a family ratio table."""

    def __init__(
        self,
        ratios: Optional[Dict[str, float]] = None,
        default_family: str = DEFAULT_INSTANCE_FAMILY,
    ):
        """
        Initialize decomposer.

        Args:
            ratios: Overrides merged on top of CPU_TO_COST_RATIO
            default_family: Family whose ratio is used for unknown families

        Raises:
            ValueError: If a ratio falls outside [0, 1] or the default family has no ratio
        """
        self.ratios = dict(CPU_TO_COST_RATIO)
        self.ratios.update(ratios or {})
        for family, ratio in self.ratios.items():
            if not 0.0 <= ratio <= 1.0:
                raise ValueError(f"CPU cost ratio for '{family}' must be within [0, 1]")
        if default_family not in self.ratios:
            raise ValueError(f"Default family '{default_family}' has no CPU cost ratio")
        self.default_family = default_family

    def ratio_for(self, attributes: PriceAttributes) -> float:
        ratio = self.ratios.get(attributes.instance_family)
        if ratio is None:
            logger.warning(
                f"No CPU cost ratio for family '{attributes.instance_family}' "
                f"({attributes.instance_type}), using '{self.default_family}'"
            )
            ratio = self.ratios[self.default_family]
        return ratio

    def decompose(self, price: float, attributes: PriceAttributes) -> Tuple[float, float]:
        """
        Split an hourly price into CPU and RAM unit prices.

        Args:
            price: Bundled hourly price in USD
            attributes: Catalog attributes carrying vcpu, memory and family

        Returns:
            Tuple of (USD per vCPU-hour, USD per GiB-hour)

        Raises:
            ParseAttributesError: If vcpu or memory is empty, non-numeric or zero
        """
        vcpu = parse_vcpu(attributes.vcpu)
        memory_gib = parse_memory_gib(attributes.memory)
        ratio = self.ratio_for(attributes)
        return price * ratio / vcpu, price * (1 - ratio) / memory_gib


_default_decomposer = CostDecomposer()


def decompose(price: float, attributes: PriceAttributes) -> Tuple[float, float]:
    """Decompose with the built-in ratio table."""
    return _default_decomposer.decompose(price, attributes)
