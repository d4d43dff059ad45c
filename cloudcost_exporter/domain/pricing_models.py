"""
Domain models for price catalog data.
Defines catalog attributes and the per-resource price breakdown.
"""
from dataclasses import dataclass, replace
from typing import Any, Dict, Optional


# Catalog attribute key -> PriceAttributes field. Keys are matched case-insensitively.
CATALOG_ATTRIBUTE_FIELDS: Dict[str, str] = {
    "regioncode": "region",
    "instancetype": "instance_type",
    "vcpu": "vcpu",
    "memory": "memory",
    "instancefamily": "instance_family",
    "physicalprocessor": "physical_processor",
    "tenancy": "tenancy",
    "marketoption": "market_option",
    "operatingsystem": "operating_system",
    "clockspeed": "clock_speed",
    "usagetype": "usage_type",
}


@dataclass(frozen=True)
class PriceAttributes:
    """Descriptive attributes of a priced instance type, as quoted by the catalog."""
    region: str = ""
    instance_type: str = ""
    vcpu: str = ""
    memory: str = ""
    instance_family: str = ""
    physical_processor: str = ""
    tenancy: str = ""
    market_option: str = ""
    operating_system: str = ""
    clock_speed: str = ""
    usage_type: str = ""

    @classmethod
    def from_catalog(cls, attributes: Dict[str, Any]) -> "PriceAttributes":
        """Build from a catalog ``product.attributes`` object."""
        values = {}
        for key, value in attributes.items():
            field_name = CATALOG_ATTRIBUTE_FIELDS.get(str(key).lower())
            if field_name and value is not None:
                values[field_name] = str(value)
        return cls(**values)

    def with_region(self, region: str) -> "PriceAttributes":
        """Return a copy keyed under a different region or availability zone."""
        return replace(self, region=region)


@dataclass(frozen=True)
class PriceBreakdown:
    """Hourly price of one instance type split into CPU and RAM components."""
    cpu: float  # USD per vCPU-hour
    ram: float  # USD per GiB-hour
    total: float  # USD per hour, the bundled list price


@dataclass(frozen=True)
class VariantPrice:
    """A spot price for one instance type in one availability zone."""
    availability_zone: str
    instance_type: str
    price: str  # raw decimal string from the spot price history API


@dataclass(frozen=True)
class ComponentPrices:
    """Per-core and per-GiB hourly prices of a GCP machine family."""
    cpu: float = 0.0
    ram: float = 0.0


@dataclass
class PriceTiers:
    """On-demand and spot component prices of a GCP machine family."""
    on_demand: ComponentPrices = ComponentPrices()
    spot: ComponentPrices = ComponentPrices()


@dataclass(frozen=True)
class LoadBalancerRates:
    """Hourly prices of one load balancer type in one region."""
    hourly: float  # USD per load balancer-hour
    lcu: Optional[float] = None  # USD per capacity unit-hour, when the catalog quotes one


@dataclass
class ForwardingRulePrices:
    """Regional prices of a GCP forwarding rule."""
    forwarding_rule: float = 0.0  # USD per rule-hour
    inbound_data: float = 0.0  # USD per GiB processed
    outbound_data: float = 0.0  # USD per GiB processed
