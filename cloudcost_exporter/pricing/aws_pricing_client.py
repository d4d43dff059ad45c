"""
AWS Price List, EC2 and Elastic Load Balancing API clients.
Uses boto3 to page through price catalogs, spot price history and inventories.
"""
from datetime import datetime, timedelta, timezone
import logging
import threading
from typing import Any, Callable, Dict, Iterator, List, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from cloudcost_exporter.core.config import config
from cloudcost_exporter.domain.inventory_models import ComputeInstance, LoadBalancer, PersistentVolume
from cloudcost_exporter.domain.pricing_models import VariantPrice
from cloudcost_exporter.pricing.errors import FetchCancelledError
from cloudcost_exporter.resilience.circuit_breaker import get_circuit_breaker


logger = logging.getLogger(__name__)

SPOT_PRODUCT_DESCRIPTIONS = ["Linux/UNIX (Amazon VPC)"]
SPOT_HISTORY_WINDOW = timedelta(hours=1)

EC2_SERVICE_CODE = "AmazonEC2"
ELB_SERVICE_CODE = "AWSELB"


class AWSPricingError(Exception):
    """Raised when an AWS pricing or inventory call fails."""
    pass


def _boto_config() -> Config:
    # No retries, the circuit breaker handles failing upstreams
    return Config(connect_timeout=10, read_timeout=30, retries={"max_attempts": 0})


def _term_match(field: str, value: str) -> Dict[str, str]:
    return {"Type": "TERM_MATCH", "Field": field, "Value": value}


def _check_cancelled(cancel_event: Optional[threading.Event], what: str) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise FetchCancelledError(f"{what} cancelled")


def _paginate(
    client,
    operation: str,
    cancel_event: Optional[threading.Event],
    breaker_name: str,
    **kwargs: Any,
) -> Iterator[Dict[str, Any]]:
    """
    Yield pages of a boto3 paginator, checking the circuit breaker and cancel event per page.

    Raises:
        AWSPricingError: If the call fails or the circuit breaker is open
        FetchCancelledError: If the cancel event is set between pages
    """
    breaker = get_circuit_breaker(breaker_name)
    _check_cancelled(cancel_event, operation)
    if not breaker.allow_request():
        raise AWSPricingError(f"{breaker_name} temporarily unavailable (circuit breaker open)")
    try:
        for page in client.get_paginator(operation).paginate(**kwargs):
            _check_cancelled(cancel_event, operation)
            yield page
    except (FetchCancelledError, GeneratorExit):
        # Cancelled or abandoned by the caller; upstream answered every page asked for
        breaker.record_success()
        raise
    except (ClientError, BotoCoreError) as error:
        breaker.record_failure()
        logger.error(f"AWS {operation} failed: {error}")
        raise AWSPricingError(f"Failed to call {operation}: {str(error)}") from error
    except Exception:
        breaker.record_failure()
        raise
    breaker.record_success()


class AWSPricingClient:
    """Client for the AWS Price List API."""

    def __init__(self, client=None, session: Optional[boto3.session.Session] = None):
        """
        Initialize AWS pricing client.

        Args:
            client: Pre-built boto3 ``pricing`` client (tests inject a mock)
            session: boto3 session carrying the configured profile
        """
        if client is None:
            session = session or boto3.session.Session()
            client = session.client(
                "pricing",
                region_name=config.AWS_PRICING_REGION,
                config=_boto_config(),
            )
        self.pricing_client = client

    def _get_products(
        self,
        filters: List[Dict[str, str]],
        cancel_event: Optional[threading.Event],
        service_code: str = EC2_SERVICE_CODE,
    ) -> List[str]:
        prices: List[str] = []
        for page in _paginate(
            self.pricing_client,
            "get_products",
            cancel_event,
            "aws_pricing",
            ServiceCode=service_code,
            Filters=filters,
        ):
            prices.extend(page.get("PriceList", []))
        return prices

    def list_on_demand_prices(
        self,
        region: str,
        cancel_event: Optional[threading.Event] = None,
    ) -> List[str]:
        """
        List on-demand Linux compute price entries for a region.

        Args:
            region: AWS region code
            cancel_event: Set to abandon pagination

        Returns:
            Raw Price List JSON strings

        Raises:
            AWSPricingError: If the API call fails
        """
        filters = [
            _term_match("regionCode", region),
            _term_match("preInstalledSw", "NA"),
            _term_match("tenancy", "shared"),
            _term_match("productFamily", "Compute Instance"),
            _term_match("operation", "RunInstances"),
            _term_match("capacitystatus", "UnusedCapacityReservation"),
            _term_match("operatingSystem", "Linux"),
        ]
        prices = self._get_products(filters, cancel_event)
        logger.info(f"Fetched {len(prices)} on-demand price entries for {region}")
        return prices

    def list_storage_prices(
        self,
        region: str,
        cancel_event: Optional[threading.Event] = None,
    ) -> List[str]:
        """
        List EBS storage price entries for a region.

        Raises:
            AWSPricingError: If the API call fails
        """
        filters = [
            _term_match("regionCode", region),
            _term_match("productFamily", "Storage"),
        ]
        prices = self._get_products(filters, cancel_event)
        logger.info(f"Fetched {len(prices)} storage price entries for {region}")
        return prices

    def list_load_balancer_prices(
        self,
        region: str,
        cancel_event: Optional[threading.Event] = None,
    ) -> List[str]:
        """
        List Elastic Load Balancing price entries for a region.

        Raises:
            AWSPricingError: If the API call fails
        """
        filters = [_term_match("regionCode", region)]
        prices = self._get_products(filters, cancel_event, service_code=ELB_SERVICE_CODE)
        logger.info(f"Fetched {len(prices)} load balancer price entries for {region}")
        return prices


class EC2RegionClient:
    """Regional EC2 client for spot prices and inventories."""

    def __init__(
        self,
        region: str,
        client=None,
        session: Optional[boto3.session.Session] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        if client is None:
            session = session or boto3.session.Session()
            client = session.client("ec2", region_name=region, config=_boto_config())
        self.region = region
        self.ec2_client = client
        self.breaker_name = f"aws_ec2:{region}"
        self._clock = clock

    def list_spot_prices(self, cancel_event: Optional[threading.Event] = None) -> List[VariantPrice]:
        """
        List the last hour of Linux spot prices in the region.

        Raises:
            AWSPricingError: If the API call fails
        """
        now = self._clock()
        prices: List[VariantPrice] = []
        for page in _paginate(
            self.ec2_client,
            "describe_spot_price_history",
            cancel_event,
            self.breaker_name,
            ProductDescriptions=SPOT_PRODUCT_DESCRIPTIONS,
            StartTime=now - SPOT_HISTORY_WINDOW,
            EndTime=now,
        ):
            for item in page.get("SpotPriceHistory", []):
                prices.append(VariantPrice(
                    availability_zone=item.get("AvailabilityZone", ""),
                    instance_type=item.get("InstanceType", ""),
                    price=item.get("SpotPrice", ""),
                ))
        logger.info(f"Fetched {len(prices)} spot prices for {self.region}")
        return prices

    def list_compute_instances(self, cancel_event: Optional[threading.Event] = None) -> List[ComputeInstance]:
        """
        List EC2 instances in the region.

        Raises:
            AWSPricingError: If the API call fails
        """
        instances: List[ComputeInstance] = []
        for page in _paginate(
            self.ec2_client,
            "describe_instances",
            cancel_event,
            self.breaker_name,
            MaxResults=1000,
        ):
            for reservation in page.get("Reservations", []):
                for instance in reservation.get("Instances", []):
                    instances.append(ComputeInstance.from_api(instance))
        return instances

    def list_volumes(self, cancel_event: Optional[threading.Event] = None) -> List[PersistentVolume]:
        """
        List EBS volumes in the region that were not created from a snapshot.

        Raises:
            AWSPricingError: If the API call fails
        """
        volumes: List[PersistentVolume] = []
        for page in _paginate(
            self.ec2_client,
            "describe_volumes",
            cancel_event,
            self.breaker_name,
            Filters=[{"Name": "snapshot-id", "Values": [""]}],
        ):
            for volume in page.get("Volumes", []):
                volumes.append(PersistentVolume.from_api(volume))
        return volumes


class ELBRegionClient:
    """Regional Elastic Load Balancing v2 client."""

    def __init__(self, region: str, client=None, session: Optional[boto3.session.Session] = None):
        if client is None:
            session = session or boto3.session.Session()
            client = session.client("elbv2", region_name=region, config=_boto_config())
        self.region = region
        self.elb_client = client
        self.breaker_name = f"aws_elbv2:{region}"

    def list_load_balancers(self, cancel_event: Optional[threading.Event] = None) -> List[LoadBalancer]:
        """
        List application, network and gateway load balancers in the region.

        Raises:
            AWSPricingError: If the API call fails
        """
        load_balancers: List[LoadBalancer] = []
        for page in _paginate(self.elb_client, "describe_load_balancers", cancel_event, self.breaker_name):
            for load_balancer in page.get("LoadBalancers", []):
                load_balancers.append(LoadBalancer.from_api(load_balancer, self.region))
        return load_balancers
