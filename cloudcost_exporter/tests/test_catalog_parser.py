"""
Tests for the price catalog parser.
"""

import json
import logging

import pytest

from cloudcost_exporter.domain.pricing_models import PriceAttributes
from cloudcost_exporter.pricing.catalog_parser import (
    decode_price_list_entry,
    money_to_usd,
    parse_memory_gib,
    parse_price_list_entry,
    parse_usd_amount,
    parse_vcpu,
)
from cloudcost_exporter.pricing.errors import MalformedEntryError, ParseAttributesError
from conftest import make_price_list_entry


def test_entry_yields_attributes_and_price(on_demand_entry):
    """A well-formed entry yields one (attributes, price) pair."""
    prices = parse_price_list_entry(on_demand_entry)

    assert len(prices) == 1
    attributes, price = prices[0]
    assert price == 0.468
    assert attributes == PriceAttributes(
        region="af-south-1",
        instance_type="c5ad.2xlarge",
        vcpu="8",
        memory="16 GiB",
        instance_family="Compute optimized",
        physical_processor="AMD EPYC 7R32",
        tenancy="Shared",
        market_option="OnDemand",
        operating_system="Linux",
        clock_speed="3.3 GHz",
        usage_type="AFS1-BoxUsage:c5ad.2xlarge",
    )


def test_entry_without_instance_type_is_skipped():
    """Entries without an instance type produce nothing."""
    entry = json.loads(make_price_list_entry())
    del entry["product"]["attributes"]["instanceType"]

    assert parse_price_list_entry(entry) == []


def test_unparseable_price_dimension_is_logged_and_skipped(caplog):
    """A dimension with a non-numeric USD price is dropped with a warning."""
    entry = make_price_list_entry(usd="not-a-number")

    with caplog.at_level(logging.WARNING):
        prices = parse_price_list_entry(entry)

    assert prices == []
    assert "c5ad.2xlarge" in caplog.text


def test_invalid_json_raises_malformed_entry():
    """Undecodable input is a MalformedEntryError."""
    with pytest.raises(MalformedEntryError):
        parse_price_list_entry("{not json")


def test_wrong_shape_raises_malformed_entry():
    """A JSON array or non-object attributes is rejected."""
    with pytest.raises(MalformedEntryError):
        decode_price_list_entry("[]")
    with pytest.raises(MalformedEntryError):
        decode_price_list_entry({"product": {"attributes": "x"}})


def test_attribute_keys_are_case_insensitive():
    """marketOption and marketoption map to the same field."""
    attributes = PriceAttributes.from_catalog({"marketOption": "OnDemand", "UsageType": "u"})

    assert attributes.market_option == "OnDemand"
    assert attributes.usage_type == "u"


def test_parse_usd_amount():
    """Fixed-point strings parse; blanks do not."""
    assert parse_usd_amount("0.4680000000") == 0.468
    with pytest.raises(MalformedEntryError):
        parse_usd_amount("")
    with pytest.raises(MalformedEntryError):
        parse_usd_amount(None)


def test_money_to_usd():
    """units and nanos combine into dollars."""
    assert money_to_usd({"units": "1", "nanos": 500000000}) == pytest.approx(1.5)
    assert money_to_usd({"nanos": 31611000}) == pytest.approx(0.031611)
    assert money_to_usd({}) == 0


@pytest.mark.parametrize("value,expected", [
    ("16 GiB", 16.0),
    ("0.5 GiB", 0.5),
    ("1,952 GiB", 1952.0),
    ("512 MiB", 0.5),
    ("2 TiB", 2048.0),
    ("8", 8.0),
])
def test_parse_memory_gib(value, expected):
    """Memory strings are converted to GiB."""
    assert parse_memory_gib(value) == pytest.approx(expected)


@pytest.mark.parametrize("value", ["", "NA", "0 GiB", "16 Furlongs"])
def test_parse_memory_gib_rejects_bad_values(value):
    """Empty, non-numeric, zero or unknown-unit memory is an error."""
    with pytest.raises(ParseAttributesError):
        parse_memory_gib(value)


@pytest.mark.parametrize("value", ["", "zero", "0", "4 GiB"])
def test_parse_vcpu_rejects_bad_values(value):
    """vcpu must be a positive bare number."""
    with pytest.raises(ParseAttributesError):
        parse_vcpu(value)
