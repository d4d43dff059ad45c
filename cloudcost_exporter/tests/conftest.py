"""
Shared pytest fixtures for exporter tests.
"""

import json
import os
import sys
from datetime import datetime, timedelta
from pathlib import Path
from unittest.mock import Mock

import pytest

# Add project root to Python path
project_root = Path(__file__).parent.parent.parent
sys.path.insert(0, str(project_root))

os.environ.setdefault("PROVIDER", "aws")
os.environ.setdefault("AWS_REGIONS", "af-south-1")

from cloudcost_exporter.domain.pricing_models import VariantPrice  # noqa: E402


def make_price_list_entry(
    instance_type="c5ad.2xlarge",
    region="af-south-1",
    vcpu="8",
    memory="16 GiB",
    family="Compute optimized",
    usd="0.4680000000",
):
    """Build a Price List entry shaped like pricing.get_products output."""
    return json.dumps({
        "product": {
            "productFamily": "Compute Instance",
            "attributes": {
                "regionCode": region,
                "instanceType": instance_type,
                "vcpu": vcpu,
                "memory": memory,
                "instanceFamily": family,
                "physicalProcessor": "AMD EPYC 7R32",
                "tenancy": "Shared",
                "marketoption": "OnDemand",
                "operatingSystem": "Linux",
                "clockSpeed": "3.3 GHz",
                "usagetype": "AFS1-BoxUsage:" + instance_type,
            },
            "sku": "26NFCTE4HQ8BHHJF",
        },
        "serviceCode": "AmazonEC2",
        "terms": {
            "OnDemand": {
                "26NFCTE4HQ8BHHJF.JRTCKXETXF": {
                    "priceDimensions": {
                        "26NFCTE4HQ8BHHJF.JRTCKXETXF.6YS6EN2CT7": {
                            "unit": "Hrs",
                            "pricePerUnit": {"USD": usd},
                        }
                    }
                }
            }
        },
    })


def make_storage_entry(volume_type="gp3", region="af-south-1", usd="0.1047000000"):
    """Build an EBS storage Price List entry."""
    return json.dumps({
        "product": {
            "productFamily": "Storage",
            "attributes": {"regionCode": region, "volumeApiName": volume_type},
        },
        "terms": {
            "OnDemand": {
                "T1": {"priceDimensions": {"T1.D1": {"unit": "GB-Mo", "pricePerUnit": {"USD": usd}}}}
            }
        },
    })


class FakeClock:
    """Controllable datetime source."""

    def __init__(self, start=None):
        self.now = start or datetime(2024, 1, 1, 12, 0, 0)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def on_demand_entry():
    """The c5ad.2xlarge on-demand entry in af-south-1."""
    return make_price_list_entry()


@pytest.fixture
def spot_price():
    """A spot price for c5ad.2xlarge in af-south-1a."""
    return VariantPrice(availability_zone="af-south-1a", instance_type="c5ad.2xlarge", price="0.4680000000")


@pytest.fixture
def clock():
    """Controllable clock."""
    return FakeClock()


@pytest.fixture
def pricing_client():
    """Mock AWSPricingClient returning one compute and one storage entry."""
    client = Mock()
    client.list_on_demand_prices = Mock(return_value=[make_price_list_entry()])
    client.list_storage_prices = Mock(return_value=[make_storage_entry()])
    return client


@pytest.fixture
def region_client():
    """Mock EC2RegionClient with no spot prices and empty inventory."""
    client = Mock()
    client.list_spot_prices = Mock(return_value=[])
    client.list_compute_instances = Mock(return_value=[])
    client.list_volumes = Mock(return_value=[])
    return client
