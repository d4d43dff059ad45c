"""
Tests for the GCP forwarding rule pricing map and collector.
"""

import logging
from datetime import timedelta

import httpx
import pytest

from cloudcost_exporter.collectors.gcp_networking import ForwardingRuleCollector
from cloudcost_exporter.domain.inventory_models import ForwardingRule
from cloudcost_exporter.domain.pricing_models import ForwardingRulePrices
from cloudcost_exporter.pricing.errors import GeneratePricingMapError, ListInventoryError, RegionNotFoundError
from cloudcost_exporter.pricing.gcp_networking_pricing_map import NetworkingPricingMap
from cloudcost_exporter.pricing.gcp_pricing_client import GCPPricingClient
from cloudcost_exporter.resilience.circuit_breaker import _circuit_breakers


BILLING = "https://billing.test/v1"
COMPUTE = "https://compute.test/compute/v1"


def _sku(description, nanos, regions=("us-central1",), resource_group="LoadBalancing"):
    return {
        "description": description,
        "category": {"resourceFamily": "Network", "resourceGroup": resource_group},
        "geoTaxonomy": {"type": "REGIONAL", "regions": list(regions)},
        "pricingInfo": [{"pricingExpression": {"tieredRates": [{"unitPrice": {"units": "0", "nanos": nanos}}]}}],
    }


NETWORKING_SKUS = {
    "skus": [
        _sku("Network Load Balancing: Forwarding Rule Minimum Service Charge in Iowa", 25000000),
        _sku("Network Load Balancing: Forwarding Rule Minimum Service Charge in Iowa", 99000000),
        _sku("Network Inbound Data Processing for Iowa", 8000000),
        _sku("Network Outbound Data Processing for Iowa", 9000000),
        _sku("Network Internet Egress from Iowa to Americas", 120000000, resource_group="PremiumInternetEgress"),
    ],
}
FORWARDING_RULES = {
    "items": {
        "regions/us-central1": {
            "forwardingRules": [
                {
                    "name": "ingress-http",
                    "region": f"{COMPUTE}/projects/p1/regions/us-central1",
                    "IPAddress": "34.1.2.3",
                    "loadBalancingScheme": "EXTERNAL",
                },
                {
                    "name": "ingress-tokyo",
                    "region": f"{COMPUTE}/projects/p1/regions/asia-northeast1",
                    "IPAddress": "34.9.9.9",
                    "loadBalancingScheme": "EXTERNAL",
                },
            ]
        },
        "global": {"forwardingRules": [{"name": "global-https", "loadBalancingScheme": "EXTERNAL_MANAGED"}]},
        "regions/europe-west1": {"warning": {"code": "NO_RESULTS_ON_PAGE"}},
    }
}


@pytest.fixture(autouse=True)
def reset_breakers():
    """Start every test with closed circuit breakers."""
    _circuit_breakers.clear()
    yield
    _circuit_breakers.clear()


def _handler(request):
    path = request.url.path
    if path == "/v1/services":
        return httpx.Response(200, json={"services": [
            {"name": "services/6F81-5844-456A", "displayName": "Compute Engine"},
            {"name": "services/E505-1604-58F8", "displayName": "Networking"},
        ]})
    if path == "/v1/services/E505-1604-58F8/skus":
        return httpx.Response(200, json=NETWORKING_SKUS)
    if path.endswith("/aggregated/forwardingRules"):
        return httpx.Response(200, json=FORWARDING_RULES)
    return httpx.Response(404, json={"error": "not found"})


def _client(handler=_handler):
    return GCPPricingClient(
        http_client=httpx.Client(transport=httpx.MockTransport(handler)),
        token_provider=lambda: "token",
        billing_base_url=BILLING,
        compute_base_url=COMPUTE,
    )


def _samples(metrics, name):
    family = next(metric for metric in metrics if metric.name == name)
    return {sample.labels["name"]: sample.value for sample in family.samples}


def test_map_reads_load_balancing_skus_only():
    """Forwarding rule and data processing prices are collected per region."""
    counts = {}
    pricing_map = NetworkingPricingMap.generate(NETWORKING_SKUS["skus"], counts)

    assert pricing_map.get_prices("us-central1") == ForwardingRulePrices(
        forwarding_rule=pytest.approx(0.025),
        inbound_data=pytest.approx(0.008),
        outbound_data=pytest.approx(0.009),
    )
    assert counts == {"parsed": 4, "not_relevant": 1}


def test_map_keeps_first_price_per_region():
    """A duplicate forwarding rule SKU does not override the first price."""
    pricing_map = NetworkingPricingMap.generate(NETWORKING_SKUS["skus"])

    assert pricing_map.get_prices("us-central1").forwarding_rule == pytest.approx(0.025)


def test_map_falls_back_to_service_regions_and_skips_unpriced_skus(caplog):
    """SKUs without geo taxonomy use serviceRegions; SKUs without rates are skipped."""
    legacy = _sku("Forwarding Rule Minimum Service Charge in Belgium", 25000000)
    legacy.pop("geoTaxonomy")
    legacy["serviceRegions"] = ["europe-west1"]
    unpriced = _sku("Forwarding Rule Minimum Service Charge in Tokyo", 0, regions=("asia-northeast1",))
    unpriced["pricingInfo"] = []

    with caplog.at_level(logging.WARNING):
        pricing_map = NetworkingPricingMap.generate([legacy, unpriced])

    assert pricing_map.get_prices("europe-west1").forwarding_rule == pytest.approx(0.025)
    with pytest.raises(RegionNotFoundError):
        pricing_map.get_prices("asia-northeast1")
    assert "unusable pricing" in caplog.text


def test_list_forwarding_rules_flattens_regional_and_global_rules():
    """Aggregated listings become ForwardingRules; global rules get the 'global' region."""
    rules = _client().list_forwarding_rules("p1")

    assert rules == [
        ForwardingRule(name="ingress-http", region="us-central1", project="p1",
                       ip_address="34.1.2.3", load_balancing_scheme="EXTERNAL"),
        ForwardingRule(name="ingress-tokyo", region="asia-northeast1", project="p1",
                       ip_address="34.9.9.9", load_balancing_scheme="EXTERNAL"),
        ForwardingRule(name="global-https", region="global", project="p1",
                       load_balancing_scheme="EXTERNAL_MANAGED"),
    ]


def test_collector_emits_forwarding_rule_costs(clock, caplog):
    """Priced rules emit all three gauges; rules in unpriced regions are skipped."""
    collector = ForwardingRuleCollector(["p1"], _client(), scrape_interval=timedelta(hours=1), clock=clock)

    with caplog.at_level(logging.WARNING):
        metrics = collector.collect()

    unit = next(metric for metric in metrics
                if metric.name == "cloudcost_gcp_clb_forwarding_rule_unit_per_hour")
    assert unit.samples[0].labels == {
        "name": "ingress-http",
        "region": "us-central1",
        "project": "p1",
        "ip_address": "34.1.2.3",
        "load_balancing_scheme": "EXTERNAL",
    }
    assert _samples(metrics, "cloudcost_gcp_clb_forwarding_rule_unit_per_hour") == {
        "ingress-http": pytest.approx(0.025),
    }
    assert _samples(metrics, "cloudcost_gcp_clb_forwarding_rule_inbound_data_processed_per_gib") == {
        "ingress-http": pytest.approx(0.008),
    }
    assert _samples(metrics, "cloudcost_gcp_clb_forwarding_rule_outbound_data_processed_per_gib") == {
        "ingress-http": pytest.approx(0.009),
    }
    assert "ingress-tokyo" in caplog.text
    assert collector.is_ready()


def test_collector_build_failure_is_wrapped(clock):
    """Billing API failures fail the networking pricing build."""
    collector = ForwardingRuleCollector(["p1"], _client(lambda request: httpx.Response(500)), clock=clock)

    with pytest.raises(GeneratePricingMapError):
        collector.collect()
    assert not collector.is_ready()


def test_collector_inventory_failure_fails_scrape(clock):
    """Forwarding rule listing errors fail the scrape after pricing is built."""
    def handler(request):
        if "aggregated" in request.url.path:
            return httpx.Response(403, json={"error": "denied"})
        return _handler(request)

    collector = ForwardingRuleCollector(["p1"], _client(handler), clock=clock)

    with pytest.raises(ListInventoryError):
        collector.collect()
    assert collector.is_ready()
