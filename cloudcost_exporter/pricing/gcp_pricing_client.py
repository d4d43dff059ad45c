"""
GCP Cloud Billing Catalog and Compute Engine REST client.
Authenticates with Application Default Credentials via google-auth.
"""
from typing import Any, Callable, Dict, Iterator, List, Optional
import logging
import threading

import httpx
import google.auth
from google.auth.transport.requests import Request

from cloudcost_exporter.core.config import config
from cloudcost_exporter.domain.inventory_models import ForwardingRule, GcpDisk, MachineSpec
from cloudcost_exporter.pricing.errors import FetchCancelledError
from cloudcost_exporter.resilience.circuit_breaker import get_circuit_breaker


logger = logging.getLogger(__name__)

CLOUD_PLATFORM_SCOPE = "https://www.googleapis.com/auth/cloud-platform"
COMPUTE_ENGINE_SERVICE = "Compute Engine"


class GCPPricingError(Exception):
    """Raised when a GCP billing or compute call fails."""
    pass


def default_token_provider() -> Callable[[], str]:
    """
    Build a token provider from Application Default Credentials.

    Returns:
        Zero-argument callable returning a fresh bearer token
    """
    credentials, _ = google.auth.default(scopes=[CLOUD_PLATFORM_SCOPE])
    lock = threading.Lock()

    def token() -> str:
        with lock:
            if not credentials.valid:
                credentials.refresh(Request())
            return credentials.token

    return token


class GCPPricingClient:
    """Client for Cloud Billing SKUs and Compute Engine inventories."""

    def __init__(
        self,
        http_client: Optional[httpx.Client] = None,
        token_provider: Optional[Callable[[], str]] = None,
        billing_base_url: str = config.GCP_BILLING_API_BASE_URL,
        compute_base_url: str = config.GCP_COMPUTE_API_BASE_URL,
    ):
        """
        Initialize GCP client.

        Args:
            http_client: httpx client (tests pass one built on MockTransport)
            token_provider: Callable returning a bearer token, defaults to ADC
            billing_base_url: Cloud Billing API root
            compute_base_url: Compute Engine API root
        """
        self.http_client = http_client or httpx.Client(timeout=float(config.HTTP_TIMEOUT_SECONDS))
        self.token_provider = token_provider or default_token_provider()
        self.billing_base_url = billing_base_url.rstrip("/")
        self.compute_base_url = compute_base_url.rstrip("/")

    def _pages(
        self,
        url: str,
        breaker_name: str,
        cancel_event: Optional[threading.Event],
        params: Optional[Dict[str, Any]] = None,
    ) -> Iterator[Dict[str, Any]]:
        """
        Yield JSON pages following ``nextPageToken``.

        Raises:
            GCPPricingError: If a request fails or the circuit breaker is open
            FetchCancelledError: If the cancel event is set between pages
        """
        breaker = get_circuit_breaker(breaker_name)
        query = dict(params or {})
        while True:
            if cancel_event is not None and cancel_event.is_set():
                raise FetchCancelledError(f"Request to {url} cancelled")
            # Credentials are resolved before the breaker hands out its half-open slot
            try:
                token = self.token_provider()
            except Exception as error:
                logger.error(f"Cannot obtain GCP credentials for {url}: {error}")
                raise GCPPricingError(f"Failed to obtain GCP credentials: {str(error)}") from error

            def fetch() -> Dict[str, Any]:
                response = self.http_client.get(
                    url,
                    params=query,
                    headers={"Authorization": f"Bearer {token}"},
                )
                response.raise_for_status()
                return response.json()

            try:
                page = breaker.call(fetch, GCPPricingError)
            except httpx.HTTPStatusError as error:
                logger.error(f"GCP API error {error.response.status_code} for {url}")
                raise GCPPricingError(
                    f"GCP API returned {error.response.status_code} for {url}"
                ) from error
            except (httpx.HTTPError, ValueError) as error:
                logger.error(f"GCP API request to {url} failed: {error}")
                raise GCPPricingError(f"Failed to call {url}: {str(error)}") from error

            yield page
            next_token = page.get("nextPageToken")
            if not next_token:
                return
            query["pageToken"] = next_token

    def get_service_name(
        self,
        display_name: str = COMPUTE_ENGINE_SERVICE,
        cancel_event: Optional[threading.Event] = None,
    ) -> str:
        """
        Resolve a billing service display name to its resource name.

        Returns:
            e.g. 'services/6F81-5844-456A'

        Raises:
            GCPPricingError: If the listing fails or no service matches
        """
        for page in self._pages(f"{self.billing_base_url}/services", "gcp_billing", cancel_event):
            for service in page.get("services", []):
                if service.get("displayName") == display_name:
                    return service["name"]
        raise GCPPricingError(f"Billing service '{display_name}' not found")

    def list_skus(self, service_name: str, cancel_event: Optional[threading.Event] = None) -> List[Dict[str, Any]]:
        """
        List every SKU of a billing service, dropping licensing SKUs.

        Raises:
            GCPPricingError: If the listing fails
        """
        skus: List[Dict[str, Any]] = []
        for page in self._pages(f"{self.billing_base_url}/{service_name}/skus", "gcp_billing", cancel_event):
            for sku in page.get("skus", []):
                if "Licensing" in sku.get("description", ""):
                    continue
                skus.append(sku)
        logger.info(f"Fetched {len(skus)} SKUs for {service_name}")
        return skus

    def _aggregated(
        self,
        project: str,
        resource: str,
        cancel_event: Optional[threading.Event],
    ) -> Iterator[Dict[str, Any]]:
        url = f"{self.compute_base_url}/projects/{project}/aggregated/{resource}"
        for page in self._pages(url, "gcp_compute", cancel_event):
            for scoped in (page.get("items") or {}).values():
                for item in scoped.get(resource, []):
                    yield item

    def list_instances(self, project: str, cancel_event: Optional[threading.Event] = None) -> List[MachineSpec]:
        """
        List running GCE instances of a project.

        Raises:
            GCPPricingError: If the listing fails
        """
        return [
            MachineSpec.from_api(instance, project)
            for instance in self._aggregated(project, "instances", cancel_event)
            if instance.get("status") == "RUNNING"
        ]

    def list_disks(self, project: str, cancel_event: Optional[threading.Event] = None) -> List[GcpDisk]:
        """
        List persistent disks of a project.

        Raises:
            GCPPricingError: If the listing fails
        """
        return [GcpDisk.from_api(disk, project) for disk in self._aggregated(project, "disks", cancel_event)]

    def list_forwarding_rules(
        self,
        project: str,
        cancel_event: Optional[threading.Event] = None,
    ) -> List[ForwardingRule]:
        """
        List regional and global forwarding rules of a project.

        Raises:
            GCPPricingError: If the listing fails
        """
        return [
            ForwardingRule.from_api(rule, project)
            for rule in self._aggregated(project, "forwardingRules", cancel_event)
        ]

    def close(self) -> None:
        self.http_client.close()
