"""
Tests for the GCP REST client and the GCE collector.
"""

import threading
from datetime import timedelta
from unittest.mock import Mock

import httpx
import pytest

from cloudcost_exporter.collectors.gcp_compute import GCECollector
from cloudcost_exporter.domain.inventory_models import GcpDisk, MachineSpec
from cloudcost_exporter.pricing.errors import FetchCancelledError, GeneratePricingMapError, ListInventoryError
from cloudcost_exporter.pricing.gcp_pricing_client import GCPPricingClient, GCPPricingError
from cloudcost_exporter.pricing.gcp_pricing_map import HOURS_IN_MONTH
from cloudcost_exporter.resilience.circuit_breaker import CircuitBreaker, CircuitState, _circuit_breakers


BILLING = "https://billing.test/v1"
COMPUTE = "https://compute.test/compute/v1"

SKUS_PAGE_1 = {
    "skus": [
        {
            "description": "N1 Predefined Instance Core running in Americas",
            "serviceRegions": ["us-central1"],
            "category": {"resourceFamily": "Compute"},
            "pricingInfo": [{"pricingExpression": {"tieredRates": [{"unitPrice": {"units": "0", "nanos": 31611000}}]}}],
        },
        {"description": "Licensing Fee for Windows Server", "serviceRegions": ["global"]},
    ],
    "nextPageToken": "page-2",
}
SKUS_PAGE_2 = {
    "skus": [
        {
            "description": "N1 Predefined Instance Ram running in Americas",
            "serviceRegions": ["us-central1"],
            "category": {"resourceFamily": "Compute"},
            "pricingInfo": [{"pricingExpression": {"tieredRates": [{"unitPrice": {"units": "0", "nanos": 4237000}}]}}],
        },
        {
            "description": "Balanced PD Capacity in Iowa",
            "serviceRegions": ["us-central1"],
            "category": {"resourceFamily": "Storage"},
            "pricingInfo": [{"pricingExpression": {"tieredRates": [{"unitPrice": {"units": "0", "nanos": 100000000}}]}}],
        },
    ],
}
INSTANCES = {
    "items": {
        "zones/us-central1-a": {
            "instances": [
                {
                    "name": "gke-node-1",
                    "status": "RUNNING",
                    "zone": f"{COMPUTE}/projects/p1/zones/us-central1-a",
                    "machineType": f"{COMPUTE}/projects/p1/zones/us-central1-a/machineTypes/n1-standard-4",
                    "scheduling": {"provisioningModel": "STANDARD"},
                    "labels": {"goog-k8s-cluster-name": "prod"},
                },
                {
                    "name": "stopped",
                    "status": "TERMINATED",
                    "zone": f"{COMPUTE}/projects/p1/zones/us-central1-a",
                    "machineType": f"{COMPUTE}/projects/p1/zones/us-central1-a/machineTypes/n1-standard-4",
                },
            ]
        },
        "zones/europe-west1-b": {"warning": {"code": "NO_RESULTS_ON_PAGE"}},
    }
}
DISKS = {
    "items": {
        "zones/us-central1-a": {
            "disks": [
                {
                    "name": "pvc-1",
                    "zone": f"{COMPUTE}/projects/p1/zones/us-central1-a",
                    "type": f"{COMPUTE}/projects/p1/zones/us-central1-a/diskTypes/pd-balanced",
                    "sizeGb": "50",
                    "status": "READY",
                }
            ]
        }
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
    assert request.headers["Authorization"] == "Bearer token"
    if path == "/v1/services":
        return httpx.Response(200, json={"services": [{"name": "services/6F81-5844-456A", "displayName": "Compute Engine"}]})
    if path == "/v1/services/6F81-5844-456A/skus":
        page = SKUS_PAGE_2 if request.url.params.get("pageToken") == "page-2" else SKUS_PAGE_1
        return httpx.Response(200, json=page)
    if path.endswith("/aggregated/instances"):
        return httpx.Response(200, json=INSTANCES)
    if path.endswith("/aggregated/disks"):
        return httpx.Response(200, json=DISKS)
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
    return [(sample.labels, sample.value) for sample in family.samples]


def test_list_skus_follows_pages_and_drops_licensing():
    """SKU listing walks nextPageToken and filters licensing SKUs."""
    client = _client()

    skus = client.list_skus(client.get_service_name())

    assert [sku["description"] for sku in skus] == [
        "N1 Predefined Instance Core running in Americas",
        "N1 Predefined Instance Ram running in Americas",
        "Balanced PD Capacity in Iowa",
    ]


def test_list_instances_keeps_running_machines():
    """Aggregated listings are flattened into MachineSpecs."""
    machines = _client().list_instances("p1")

    assert machines == [
        MachineSpec(
            instance="gke-node-1",
            zone="us-central1-a",
            region="us-central1",
            machine_type="n1-standard-4",
            family="n1",
            project="p1",
            spot_instance=False,
            labels={"goog-k8s-cluster-name": "prod"},
        )
    ]
    assert machines[0].cluster_name == "prod"


def test_list_disks():
    """Disks carry their type and size."""
    disks = _client().list_disks("p1")

    assert disks == [
        GcpDisk(name="pvc-1", zone="us-central1-a", region="us-central1", disk_type="pd-balanced",
                size_gib=50, status="READY", project="p1")
    ]


def test_http_errors_raise_gcp_pricing_error():
    """Non-2xx responses become GCPPricingError."""
    client = _client(lambda request: httpx.Response(403, json={"error": "denied"}))

    with pytest.raises(GCPPricingError):
        client.list_instances("p1")


def test_cancel_event_stops_pagination():
    """A set cancel event aborts before the next request."""
    cancel_event = threading.Event()
    cancel_event.set()

    with pytest.raises(FetchCancelledError):
        _client().list_skus("services/6F81-5844-456A", cancel_event)


def test_collector_emits_instance_and_disk_costs(clock):
    """The collector joins machines and disks with the SKU pricing map."""
    collector = GCECollector(["p1"], _client(), scrape_interval=timedelta(hours=1), clock=clock)

    metrics = collector.collect()

    cpu = _samples(metrics, "cloudcost_gcp_gce_instance_cpu_usd_per_core_hour")
    assert cpu == [(
        {
            "instance": "gke-node-1",
            "region": "us-central1",
            "family": "n1",
            "machine_type": "n1-standard-4",
            "project": "p1",
            "cluster_name": "prod",
            "price_tier": "ondemand",
        },
        pytest.approx(0.031611),
    )]
    ram = _samples(metrics, "cloudcost_gcp_gce_instance_memory_usd_per_gib_hour")
    assert ram[0][1] == pytest.approx(0.004237)
    disk = _samples(metrics, "cloudcost_gcp_gce_persistent_volume_usd_per_hour")
    assert disk[0][0]["type"] == "pd-balanced"
    assert disk[0][1] == pytest.approx(0.1 / HOURS_IN_MONTH * 50)
    assert collector.is_ready()


def test_collector_build_failure_is_wrapped(clock):
    """Billing API failures fail the pricing build."""
    collector = GCECollector(["p1"], _client(lambda request: httpx.Response(500)), clock=clock)

    with pytest.raises(GeneratePricingMapError):
        collector.collect()


def test_collector_inventory_failure_fails_scrape(clock):
    """Inventory errors fail the scrape after pricing is built."""
    def handler(request):
        if "aggregated" in request.url.path:
            return httpx.Response(500)
        return _handler(request)

    collector = GCECollector(["p1"], _client(handler), clock=clock)

    with pytest.raises(ListInventoryError):
        collector.collect()
    assert collector.is_ready()


class Ticker:
    """Monotonic clock stand-in."""

    def __init__(self):
        self.value = 0.0

    def __call__(self):
        return self.value


def _tripped_billing_breaker():
    ticker = Ticker()
    breaker = CircuitBreaker("gcp_billing", failure_threshold=1, open_duration=60, clock=ticker)
    _circuit_breakers["gcp_billing"] = breaker
    breaker.record_failure()
    ticker.value = 61
    return breaker, ticker


def test_credential_failure_leaves_breaker_usable():
    """A token failure after the open window neither takes nor holds the half-open slot."""
    breaker, _ = _tripped_billing_breaker()
    tokens = Mock(side_effect=[RuntimeError("metadata server unreachable"), "token"])
    client = GCPPricingClient(
        http_client=httpx.Client(transport=httpx.MockTransport(_handler)),
        token_provider=tokens,
        billing_base_url=BILLING,
        compute_base_url=COMPUTE,
    )

    with pytest.raises(GCPPricingError, match="credentials"):
        client.get_service_name()
    assert breaker.current_state() == CircuitState.OPEN

    assert client.get_service_name() == "services/6F81-5844-456A"
    assert breaker.current_state() == CircuitState.CLOSED


def test_unexpected_transport_error_settles_half_open_request():
    """Errors outside httpx still count as a failure and re-open the breaker."""
    breaker, ticker = _tripped_billing_breaker()

    def handler(request):
        raise RuntimeError("transport blew up")

    with pytest.raises(RuntimeError):
        _client(handler).get_service_name()

    assert breaker.current_state() == CircuitState.OPEN
    ticker.value = 200
    assert breaker.allow_request()


def test_open_breaker_fails_fast_without_calling_upstream():
    """While open, requests raise GCPPricingError without reaching the API."""
    ticker = Ticker()
    breaker = CircuitBreaker("gcp_compute", failure_threshold=1, open_duration=60, clock=ticker)
    _circuit_breakers["gcp_compute"] = breaker
    breaker.record_failure()
    handler = Mock(side_effect=_handler)

    with pytest.raises(GCPPricingError, match="circuit breaker open"):
        _client(handler).list_instances("p1")
    handler.assert_not_called()
