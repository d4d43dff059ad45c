"""
AWS region helpers.
Region discovery and availability zone to region conversion.
"""
import logging
import re
from typing import List

from botocore.exceptions import BotoCoreError, ClientError


logger = logging.getLogger(__name__)

# Local Zones and Wavelength Zones (us-west-2-lax-1a, us-east-1-wl1-bos-wlz-1) are
# region + "-" + suffix; plain zones are region + a single letter.
_EXTENDED_ZONE_PATTERN = re.compile(r"^([a-z]{2}(?:-gov)?-[a-z]+-\d+)-")


def region_from_availability_zone(availability_zone: str) -> str:
    """
    Convert an availability zone to its region.

    Args:
        availability_zone: e.g. 'us-east-1a' or 'us-west-2-lax-1a'

    Returns:
        Region code, e.g. 'us-east-1'
    """
    match = _EXTENDED_ZONE_PATTERN.match(availability_zone)
    if match:
        return match.group(1)
    return availability_zone[:-1]


def discover_regions(ec2_client) -> List[str]:
    """
    List the regions enabled for the account.

    Args:
        ec2_client: boto3 EC2 client in any region

    Returns:
        Sorted region codes

    Raises:
        ClientError, BotoCoreError: If DescribeRegions fails
    """
    try:
        response = ec2_client.describe_regions(AllRegions=False)
    except (ClientError, BotoCoreError) as error:
        logger.error(f"Failed to describe AWS regions: {error}")
        raise
    return sorted(region["RegionName"] for region in response.get("Regions", []))
