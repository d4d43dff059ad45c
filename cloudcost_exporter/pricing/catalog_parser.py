"""
Parser for raw AWS Price List catalog entries.
Turns one JSON document into (attributes, hourly price) pairs.
"""
import json
import logging
import re
from typing import Any, Dict, List, Tuple, Union

from cloudcost_exporter.domain.pricing_models import PriceAttributes
from cloudcost_exporter.pricing.errors import MalformedEntryError, ParseAttributesError


logger = logging.getLogger(__name__)

_QUANTITY_PATTERN = re.compile(r"^\s*([0-9][0-9,]*(?:\.[0-9]+)?|\.[0-9]+)\s*([A-Za-z]*)\s*$")

# Memory unit -> multiplier to GiB. The catalog quotes "GiB"; "GB" shows up on older entries.
_MEMORY_UNITS: Dict[str, float] = {
    "": 1.0,
    "gib": 1.0,
    "gb": 1.0,
    "mib": 1.0 / 1024,
    "mb": 1.0 / 1024,
    "tib": 1024.0,
    "tb": 1024.0,
}


def decode_price_list_entry(raw: Union[str, bytes, Dict[str, Any]]) -> Dict[str, Any]:
    """
    Decode a Price List entry into a dictionary.

    Args:
        raw: JSON string (as returned by ``pricing.get_products``) or an already decoded dict

    Returns:
        Decoded entry

    Raises:
        MalformedEntryError: If the entry is not valid JSON or has the wrong shape
    """
    if isinstance(raw, dict):
        entry = raw
    else:
        try:
            entry = json.loads(raw)
        except (TypeError, ValueError) as error:
            raise MalformedEntryError(f"Cannot decode price list entry: {error}") from error

    if not isinstance(entry, dict):
        raise MalformedEntryError("Price list entry is not a JSON object")
    product = entry.get("product", {})
    if not isinstance(product, dict) or not isinstance(product.get("attributes", {}), dict):
        raise MalformedEntryError("Price list entry has no usable product.attributes")
    terms = entry.get("terms", {})
    if not isinstance(terms, dict) or not isinstance(terms.get("OnDemand", {}), dict):
        raise MalformedEntryError("Price list entry has no usable terms.OnDemand")
    return entry


def parse_usd_amount(value: Any) -> float:
    """
    Parse a fixed-point USD amount such as ``"0.4680000000"``.

    Raises:
        MalformedEntryError: If the value is missing or not a number
    """
    if value is None or value == "":
        raise MalformedEntryError("Missing USD price")
    try:
        return float(value)
    except (TypeError, ValueError) as error:
        raise MalformedEntryError(f"Cannot parse USD price {value!r}") from error


def money_to_usd(money: Dict[str, Any]) -> float:
    """Convert a Google ``Money`` object (``units`` + ``nanos``) to USD."""
    units = int(money.get("units") or 0)
    nanos = int(money.get("nanos") or 0)
    return units + nanos * 1e-9


def parse_quantity(value: str, field_name: str) -> Tuple[float, str]:
    """
    Split a catalog quantity like ``"16 GiB"`` or ``"1,952 GiB"`` into number and unit.

    Raises:
        ParseAttributesError: If the value is empty, not numeric or not positive
    """
    match = _QUANTITY_PATTERN.match(value or "")
    if not match:
        raise ParseAttributesError(f"Cannot parse {field_name} {value!r}")
    number = float(match.group(1).replace(",", ""))
    if number <= 0:
        raise ParseAttributesError(f"{field_name} must be positive (got {value!r})")
    return number, match.group(2)


def parse_vcpu(value: str) -> float:
    number, unit = parse_quantity(value, "vcpu")
    if unit:
        raise ParseAttributesError(f"Unexpected unit on vcpu {value!r}")
    return number


def parse_memory_gib(value: str) -> float:
    """Parse a memory attribute into GiB."""
    number, unit = parse_quantity(value, "memory")
    multiplier = _MEMORY_UNITS.get(unit.lower())
    if multiplier is None:
        raise ParseAttributesError(f"Unknown memory unit on {value!r}")
    return number * multiplier


def parse_price_list_entry(raw: Union[str, bytes, Dict[str, Any]]) -> List[Tuple[PriceAttributes, float]]:
    """
    Extract every on-demand hourly price of a Price List entry.

    Entries without an instance type (e.g. data transfer SKUs) yield nothing.
    Price dimensions whose USD amount cannot be parsed are logged and skipped.

    Args:
        raw: One element of a ``PriceList`` response

    Returns:
        List of (attributes, price) pairs, one per price dimension

    Raises:
        MalformedEntryError: If the entry itself cannot be decoded
    """
    entry = decode_price_list_entry(raw)
    attributes = PriceAttributes.from_catalog(entry.get("product", {}).get("attributes", {}))
    if not attributes.instance_type:
        return []

    prices: List[Tuple[PriceAttributes, float]] = []
    for term in entry.get("terms", {}).get("OnDemand", {}).values():
        if not isinstance(term, dict):
            continue
        for dimension in (term.get("priceDimensions") or {}).values():
            try:
                price = parse_usd_amount((dimension.get("pricePerUnit") or {}).get("USD"))
            except MalformedEntryError as error:
                logger.warning(
                    f"Skipping price dimension for {attributes.instance_type} "
                    f"in {attributes.region}: {error}"
                )
                continue
            prices.append((attributes, price))
    return prices
