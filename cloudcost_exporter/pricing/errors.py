"""
Error types raised while building and querying pricing maps.
"""


class PricingError(Exception):
    """Base class for pricing map errors."""
    pass


class MalformedEntryError(PricingError):
    """Raised when a price catalog entry cannot be decoded."""
    pass


class ParseAttributesError(PricingError):
    """Raised when vcpu or memory attributes are not usable numbers."""
    pass


class InstanceTypeAlreadyExistsError(PricingError):
    """Raised when a (region, instance type) pair is inserted twice."""
    pass


class PriceNotFoundError(PricingError):
    """Base class for lookup misses."""
    pass


class RegionNotFoundError(PriceNotFoundError):
    """Raised when a region has no prices in the map."""
    pass


class InstanceTypeNotFoundError(PriceNotFoundError):
    """Raised when a region has no price for the instance type."""
    pass


class VolumeTypeNotFoundError(PriceNotFoundError):
    """Raised when a region has no price for the volume type."""
    pass


class FamilyNotFoundError(PriceNotFoundError):
    """Raised when a region has no price for the machine family."""
    pass


class LoadBalancerTypeNotFoundError(PriceNotFoundError):
    """Raised when a region has no price for the load balancer type."""
    pass


class GeneratePricingMapError(PricingError):
    """Raised when a pricing map build fails as a whole."""
    pass


class ListOnDemandPricesError(PricingError):
    """Raised when on-demand prices cannot be fetched for a region."""
    pass


class ListSpotPricesError(PricingError):
    """Raised when spot prices cannot be fetched for a region."""
    pass


class ListStoragePricesError(PricingError):
    """Raised when storage prices cannot be fetched for a region."""
    pass


class ListLoadBalancerPricesError(PricingError):
    """Raised when load balancer prices cannot be fetched for a region."""
    pass


class ListInventoryError(PricingError):
    """Raised when resource inventory cannot be fetched."""
    pass


class ClientNotFoundError(PricingError):
    """Raised when no regional client is configured for a region."""
    pass


class FetchCancelledError(PricingError):
    """Raised when a fetch notices its cancel event was set."""
    pass


class FetchTimeoutError(PricingError):
    """Raised when a fan-out does not finish before its deadline."""
    pass


class SkuNotRelevantError(PricingError):
    """Raised for billing SKUs the exporter deliberately ignores."""
    pass


class SkuNotParsableError(PricingError):
    """Raised for billing SKUs whose description is not understood."""
    pass


class PricingDataIsOffError(PricingError):
    """Raised when a billing SKU carries no usable price."""
    pass
