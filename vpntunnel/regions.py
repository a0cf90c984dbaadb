"""
Region alias resolution and live validation.
"""

import logging

from botocore.exceptions import BotoCoreError, ClientError

from .errors import InvalidRegion

logger = logging.getLogger(__name__)

REGION_ALIASES = {
    "EU": "eu-west-1",
    "US": "us-east-1",
    "ASIA": "ap-southeast-1",
    "APAC": "ap-southeast-1",
}


def map_region_alias(value: str) -> str:
    """
    Map a friendly alias to a region code.

    Unknown input is returned unchanged and treated as a literal region code.

    Args:
        value: Alias or region code

    Returns:
        Region code
    """
    return REGION_ALIASES.get(value.strip().upper(), value.strip())


def validate_region(region: str, provider) -> None:
    """
    Check that a region is live by listing its availability zones.

    Raises:
        BotoCoreError, ClientError: If the region cannot be queried
        LookupError: If the region reports no availability zones
    """
    zones = provider.availability_zones(region)
    if not zones:
        raise LookupError("no availability zones")


def resolve_region(value: str, provider) -> str:
    """
    Resolve an alias and verify the resulting region with the provider.

    Args:
        value: Alias or region code supplied by the operator
        provider: Ec2Provider used for the live check

    Returns:
        Validated region code

    Raises:
        InvalidRegion: If the mapped region is unknown or unreachable
    """
    if not value or not value.strip():
        raise InvalidRegion(value or "", "", "region is required")

    region = map_region_alias(value)
    try:
        validate_region(region, provider)
    except (BotoCoreError, ClientError, LookupError) as e:
        logger.debug(f"Region validation failed for {region}: {e}")
        raise InvalidRegion(value, region) from e

    logger.debug(f"Resolved region {value} -> {region}")
    return region
