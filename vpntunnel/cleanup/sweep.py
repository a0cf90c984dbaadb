"""
Fleet-wide sweep for tagged resources no session state accounts for.
"""

import logging
import time
from typing import Callable, List, Optional

from botocore.exceptions import BotoCoreError, ClientError

from ..errors import CleanupPartialFailure
from ..provider import Ec2Provider, is_not_found
from ..retry import RetryPolicy
from ..tags import TAG_KEY, TAG_VALUE, is_tunnel_resource, tags_to_dict
from .models import CleanupReport, FoundResource

logger = logging.getLogger(__name__)

GROUP_DELETE_DELAY = 10  # seconds between instance termination and group deletion


def list_tagged_resources(provider: Ec2Provider, region: str) -> List[FoundResource]:
    """
    List instances, security groups and key pairs tagged VpnTunnel=OnDemand.

    Discovery is by tag alone; local state is ignored.

    Args:
        provider: Ec2Provider
        region: AWS region

    Returns:
        List of found resources
    """
    reason = f"Tagged with {TAG_KEY}={TAG_VALUE}"
    found = []

    for instance in provider.tagged_instances(region):
        tags = tags_to_dict(instance.get("Tags"))
        if is_tunnel_resource(tags):
            found.append(FoundResource(
                service="ec2",
                resource_id=instance["InstanceId"],
                region=region,
                tags=tags,
                name=tags.get("Name"),
                reason=reason,
            ))

    for group in provider.tagged_security_groups(region):
        tags = tags_to_dict(group.get("Tags"))
        if is_tunnel_resource(tags):
            found.append(FoundResource(
                service="sg",
                resource_id=group["GroupId"],
                region=region,
                tags=tags,
                name=group.get("GroupName"),
                reason=reason,
            ))

    for key_pair in provider.tagged_key_pairs(region):
        tags = tags_to_dict(key_pair.get("Tags"))
        if is_tunnel_resource(tags):
            found.append(FoundResource(
                service="key",
                resource_id=key_pair.get("KeyPairId") or key_pair["KeyName"],
                region=region,
                tags=tags,
                name=key_pair["KeyName"],
                reason=reason,
            ))

    return found


class OrphanSweeper:
    """Terminates and deletes every tagged resource in one or all regions."""

    def __init__(self, provider: Ec2Provider, retry_policy: Optional[RetryPolicy] = None,
                 group_delay: float = GROUP_DELETE_DELAY,
                 sleep: Callable[[float], None] = time.sleep):
        self.provider = provider
        self.retry_policy = retry_policy or RetryPolicy()
        self.group_delay = group_delay
        self.sleep = sleep

    def target_regions(self, region: Optional[str] = None) -> List[str]:
        if region:
            return [region]
        return self.provider.list_regions()

    def sweep(self, region: Optional[str] = None) -> CleanupReport:
        """
        Sweep one region, or every region the account can see.

        Args:
            region: Region code, or None for all regions

        Returns:
            CleanupReport
        """
        report = CleanupReport()
        if region:
            logger.info(f"Checking for orphaned VPN tunnel resources in region: {region}")
        else:
            logger.info("Checking for orphaned VPN tunnel resources in all regions...")

        try:
            targets = self.target_regions(region)
        except (ClientError, BotoCoreError) as e:
            report.warnings.append(f"Could not list regions: {e}")
            logger.warning(f"Could not list regions: {e}")
            return report

        for target in targets:
            logger.info(f"Checking region: {target}")
            report.regions_checked.append(target)
            try:
                found = list_tagged_resources(self.provider, target)
            except (ClientError, BotoCoreError) as e:
                report.warnings.append(f"{target}: {e}")
                logger.warning(f"Could not scan region {target}: {e}")
                continue

            if found:
                self.nuke_if_leftovers(found, report)

        return report

    def nuke_if_leftovers(self, found: List[FoundResource], report: Optional[CleanupReport] = None) -> CleanupReport:
        """
        Delete found resources: instances first, then groups, then key pairs.

        Args:
            found: Resources from ``list_tagged_resources`` (one region)
            report: Report to append to

        Returns:
            The report
        """
        report = report if report is not None else CleanupReport()
        instances = [r for r in found if r.service == "ec2"]
        groups = [r for r in found if r.service == "sg"]
        key_pairs = [r for r in found if r.service == "key"]

        if instances:
            region = instances[0].region
            logger.info(f"Found orphaned instances in {region}: {' '.join(r.resource_id for r in instances)}")
            for resource in instances:
                logger.info(f"Terminating orphaned instance: {resource.resource_id}")
                self._record(report, resource, lambda r=resource: self.provider.terminate_instance(r.region, r.resource_id))

        if groups:
            region = groups[0].region
            logger.info(f"Found orphaned security groups in {region}: {' '.join(r.name or r.resource_id for r in groups)}")
            if instances:
                # Groups cannot be deleted while terminating instances still reference them
                self.sleep(self.group_delay)
            for resource in groups:
                logger.info(f"Deleting orphaned security group: {resource.name or resource.resource_id}")
                self._delete_group(resource, report)

        if key_pairs:
            region = key_pairs[0].region
            logger.info(f"Found orphaned key pairs in {region}: {' '.join(r.name for r in key_pairs)}")
            for resource in key_pairs:
                logger.info(f"Deleting orphaned key pair: {resource.name}")
                self._record(report, resource, lambda r=resource: self.provider.delete_key_pair(r.region, r.name))

        return report

    def _record(self, report: CleanupReport, resource: FoundResource, operation: Callable[[], None]) -> None:
        label = f"{resource.service}:{resource.resource_id}"
        try:
            operation()
            report.removed.append(label)
        except ClientError as e:
            if is_not_found(e):
                return
            report.failed.append(label)
            logger.warning(f"Failed to delete {label}: {e}")
        except BotoCoreError as e:
            report.failed.append(label)
            logger.warning(f"Failed to delete {label}: {e}")

    def _delete_group(self, resource: FoundResource, report: CleanupReport) -> None:
        label = f"sg:{resource.resource_id}"

        def _delete():
            try:
                self.provider.delete_security_group(resource.region, group_id=resource.resource_id)
            except ClientError as e:
                if not is_not_found(e):
                    raise

        try:
            self.retry_policy.run(_delete, f"security group {resource.name or resource.resource_id}")
            report.removed.append(label)
        except CleanupPartialFailure as e:
            report.failed.append(label)
            report.warnings.append(str(e))
            logger.warning(f"Warning: {e}")
        except BotoCoreError as e:
            report.failed.append(label)
            logger.warning(f"Failed to delete {label}: {e}")
