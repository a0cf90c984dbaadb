"""
Tagging utilities for ownership attribution and orphan discovery.
"""

from typing import Dict, List, Optional

TAG_KEY = "VpnTunnel"
TAG_VALUE = "OnDemand"
INSTANCE_NAME = "vpn-tunnel-instance"


def base_tags(suffix: Optional[str] = None, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
    """
    Generate the tags every provisioned resource carries.

    Args:
        suffix: Session suffix, recorded for manual recovery
        extra: Additional tags to include

    Returns:
        Dictionary of tags to apply to resources
    """
    tags = {TAG_KEY: TAG_VALUE}
    if suffix:
        tags["SessionSuffix"] = suffix
    if extra:
        tags.update(extra)
    return tags


def instance_tags(suffix: Optional[str] = None) -> Dict[str, str]:
    return base_tags(suffix, {"Name": INSTANCE_NAME})


def tag_specifications(resource_type: str, tags: Dict[str, str]) -> List[Dict]:
    """
    Convert a tag dict to the ``TagSpecifications`` shape EC2 create calls take.

    Args:
        resource_type: EC2 resource type ("instance", "security-group", "key-pair", ...)
        tags: Tags to apply
    """
    return [{
        "ResourceType": resource_type,
        "Tags": [{"Key": key, "Value": value} for key, value in tags.items()],
    }]


def ownership_filters() -> List[Dict]:
    """Describe-call filters matching only resources this tool owns."""
    return [{"Name": f"tag:{TAG_KEY}", "Values": [TAG_VALUE]}]


def tags_to_dict(tag_list: Optional[List[Dict[str, str]]]) -> Dict[str, str]:
    return {tag["Key"]: tag["Value"] for tag in tag_list or []}


def is_tunnel_resource(tags: Dict[str, str]) -> bool:
    """
    Check if a resource belongs to vpn-tunnel based on its tags.

    Args:
        tags: Resource tags

    Returns:
        True if the ownership tag is present with the expected value
    """
    return tags.get(TAG_KEY) == TAG_VALUE
