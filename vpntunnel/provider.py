"""
Thin EC2 control-plane wrapper used by every lifecycle component.

All calls go through per-region boto3 clients configured with bounded connect
and read timeouts; every "wait for state" call is a waiter with an explicit
attempt budget.
"""

import logging
from typing import Any, Dict, List, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError

from .tags import ownership_filters, tag_specifications

logger = logging.getLogger(__name__)

UBUNTU_OWNER = "099720109477"
UBUNTU_IMAGE_PATTERN = "ubuntu/images/hvm-ssd/ubuntu-jammy-22.04-amd64-server-*"
SSH_PORT = 22
WAITER_DELAY = 5  # seconds

# Instance states an orphan may still be in; terminated/shutting-down are gone already.
LIVE_INSTANCE_STATES = ["pending", "running", "stopping", "stopped"]

NOT_FOUND_CODES = {
    "InvalidInstanceID.NotFound",
    "InvalidInstanceID.Malformed",
    "InvalidGroup.NotFound",
    "InvalidGroupId.Malformed",
    "InvalidKeyPair.NotFound",
}

_CLIENT_CONFIG = Config(
    connect_timeout=10,
    read_timeout=60,
    retries={"max_attempts": 5, "mode": "standard"},
)


def error_code(error: ClientError) -> str:
    return error.response.get("Error", {}).get("Code", "")


def is_not_found(error: ClientError) -> bool:
    """Check whether a ClientError means the resource is already gone."""
    return error_code(error) in NOT_FOUND_CODES


class Ec2Provider:
    """Create/describe/delete/wait operations per resource kind."""

    def __init__(self, session=None, default_region: Optional[str] = None):
        self._session = session
        self._default_region = default_region
        self._clients: Dict[str, Any] = {}

    @property
    def session(self):
        if self._session is None:
            self._session = boto3.Session()
        return self._session

    def client(self, region: Optional[str] = None, service: str = "ec2"):
        """Return a cached client for ``service`` in ``region``."""
        region = region or self._default_region or self.session.region_name or "us-east-1"
        key = f"{service}:{region}"
        if key not in self._clients:
            self._clients[key] = self.session.client(service, region_name=region, config=_CLIENT_CONFIG)
        return self._clients[key]

    # Account and regions

    def caller_identity(self) -> Dict[str, Any]:
        return self.client(service="sts").get_caller_identity()

    def availability_zones(self, region: str) -> List[str]:
        response = self.client(region).describe_availability_zones()
        return [zone["ZoneName"] for zone in response.get("AvailabilityZones", [])]

    def list_regions(self) -> List[str]:
        response = self.client().describe_regions()
        return sorted(r["RegionName"] for r in response.get("Regions", []))

    # Images

    def latest_image(self, region: str, pattern: str = UBUNTU_IMAGE_PATTERN,
                     owner: str = UBUNTU_OWNER) -> str:
        """
        Find the newest available image matching a name pattern.

        Args:
            region: AWS region
            pattern: Image name glob
            owner: Image owner account

        Returns:
            Image ID

        Raises:
            LookupError: If no image matches
        """
        response = self.client(region).describe_images(
            Owners=[owner],
            Filters=[
                {"Name": "name", "Values": [pattern]},
                {"Name": "state", "Values": ["available"]},
            ],
        )
        images = response.get("Images", [])
        if not images:
            raise LookupError(f"No image matching {pattern} in {region}")
        newest = max(images, key=lambda image: image["CreationDate"])
        return newest["ImageId"]

    # Security groups

    def find_security_group(self, region: str, name: str) -> Optional[str]:
        response = self.client(region).describe_security_groups(
            Filters=[{"Name": "group-name", "Values": [name]}]
        )
        groups = response.get("SecurityGroups", [])
        return groups[0]["GroupId"] if groups else None

    def create_security_group(self, region: str, name: str, description: str,
                              tags: Dict[str, str]) -> str:
        response = self.client(region).create_security_group(
            GroupName=name,
            Description=description,
            TagSpecifications=tag_specifications("security-group", tags),
        )
        return response["GroupId"]

    def authorize_ssh(self, region: str, group_id: str, cidr: str = "0.0.0.0/0") -> None:
        self.client(region).authorize_security_group_ingress(
            GroupId=group_id,
            IpPermissions=[{
                "IpProtocol": "tcp",
                "FromPort": SSH_PORT,
                "ToPort": SSH_PORT,
                "IpRanges": [{"CidrIp": cidr, "Description": "vpn-tunnel ssh"}],
            }],
        )

    def delete_security_group(self, region: str, group_id: Optional[str] = None,
                              name: Optional[str] = None) -> None:
        if group_id:
            self.client(region).delete_security_group(GroupId=group_id)
        elif name:
            self.client(region).delete_security_group(GroupName=name)
        else:
            raise ValueError("group_id or name is required")

    def describe_security_groups(self, region: str, group_ids: List[str]) -> List[Dict[str, Any]]:
        response = self.client(region).describe_security_groups(GroupIds=group_ids)
        return response.get("SecurityGroups", [])

    # Key pairs

    def create_key_pair(self, region: str, name: str, tags: Dict[str, str]) -> str:
        """Create a key pair and return its private key material."""
        response = self.client(region).create_key_pair(
            KeyName=name,
            TagSpecifications=tag_specifications("key-pair", tags),
        )
        return response["KeyMaterial"]

    def delete_key_pair(self, region: str, name: str) -> None:
        self.client(region).delete_key_pair(KeyName=name)

    # Instances

    def run_spot_instance(self, region: str, image_id: str, instance_type: str,
                          key_name: str, group_id: str, user_data: str,
                          tags: Dict[str, str], max_price: str) -> str:
        response = self.client(region).run_instances(
            ImageId=image_id,
            InstanceType=instance_type,
            MinCount=1,
            MaxCount=1,
            KeyName=key_name,
            SecurityGroupIds=[group_id],
            UserData=user_data,
            InstanceInitiatedShutdownBehavior="terminate",
            InstanceMarketOptions={
                "MarketType": "spot",
                "SpotOptions": {
                    "MaxPrice": max_price,
                    "SpotInstanceType": "one-time",
                },
            },
            TagSpecifications=tag_specifications("instance", tags),
        )
        return response["Instances"][0]["InstanceId"]

    def describe_instance(self, region: str, instance_id: str) -> Optional[Dict[str, Any]]:
        """Return the instance description, or None if it no longer exists."""
        try:
            response = self.client(region).describe_instances(InstanceIds=[instance_id])
        except ClientError as e:
            if is_not_found(e):
                return None
            raise
        for reservation in response.get("Reservations", []):
            for instance in reservation.get("Instances", []):
                return instance
        return None

    def instance_state(self, region: str, instance_id: str) -> str:
        instance = self.describe_instance(region, instance_id)
        if instance is None:
            return "not-found"
        return instance.get("State", {}).get("Name", "unknown")

    def terminate_instance(self, region: str, instance_id: str) -> None:
        self.client(region).terminate_instances(InstanceIds=[instance_id])

    def wait_for_instance(self, region: str, instance_id: str, state: str, timeout: int) -> None:
        """
        Block until the instance reaches ``state`` ("running" or "terminated").

        Raises:
            botocore.exceptions.WaiterError: If the state is not reached in time
        """
        waiter = self.client(region).get_waiter(f"instance_{state}")
        waiter.wait(
            InstanceIds=[instance_id],
            WaiterConfig={"Delay": WAITER_DELAY, "MaxAttempts": max(1, timeout // WAITER_DELAY)},
        )

    # Tag-based discovery

    def tagged_instances(self, region: str) -> List[Dict[str, Any]]:
        paginator = self.client(region).get_paginator("describe_instances")
        instances = []
        for page in paginator.paginate(Filters=ownership_filters() + [
            {"Name": "instance-state-name", "Values": LIVE_INSTANCE_STATES},
        ]):
            for reservation in page.get("Reservations", []):
                instances.extend(reservation.get("Instances", []))
        return instances

    def tagged_security_groups(self, region: str) -> List[Dict[str, Any]]:
        response = self.client(region).describe_security_groups(Filters=ownership_filters())
        return response.get("SecurityGroups", [])

    def tagged_key_pairs(self, region: str) -> List[Dict[str, Any]]:
        response = self.client(region).describe_key_pairs(Filters=ownership_filters())
        return response.get("KeyPairs", [])
