"""
Resource provisioning: security group, ephemeral key pair and spot instance.
"""

import logging
import os
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from botocore.exceptions import BotoCoreError, ClientError

from .bootscript import render_user_data
from .config import TunnelConfig
from .errors import ProvisionError
from .ids import key_pair_name, new_session_suffix, security_group_name
from .provider import Ec2Provider, is_not_found
from .state import SessionState
from .tags import base_tags, instance_tags

logger = logging.getLogger(__name__)

SECURITY_GROUP_DESCRIPTION = "VPN Tunnel SSH access"


@dataclass
class Bundle:
    """
    Identifiers of one provisioned resource set.

    Fields fill in as provisioning advances, so a failed run leaves a partial
    bundle that teardown can still unwind.
    """
    region: str
    suffix: str
    security_group_name: Optional[str] = None
    security_group_id: Optional[str] = None
    key_name: Optional[str] = None
    key_file: Optional[Path] = None
    instance_id: Optional[str] = None
    created_at: float = field(default_factory=time.time)

    @property
    def is_live(self) -> bool:
        return all([self.instance_id, self.security_group_id, self.key_name, self.key_file])

    @property
    def is_empty(self) -> bool:
        return not any([self.instance_id, self.security_group_id, self.security_group_name, self.key_name])

    def to_state(self) -> SessionState:
        return SessionState(
            instance_id=self.instance_id,
            region=self.region,
            key_file=str(self.key_file),
            started_at=int(self.created_at),
            security_group_name=self.security_group_name,
            key_name=self.key_name,
            security_group_id=self.security_group_id,
        )

    @classmethod
    def from_state(cls, state: SessionState) -> "Bundle":
        return cls(
            region=state.region,
            suffix="",
            security_group_name=state.security_group_name,
            security_group_id=state.security_group_id,
            key_name=state.key_name,
            key_file=Path(state.key_file) if state.key_file else None,
            instance_id=state.instance_id,
            created_at=float(state.started_at),
        )


def write_private_key(path: Path, material: str) -> Path:
    """Write key material readable and writable by the owner only."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.unlink(missing_ok=True)
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
    with os.fdopen(fd, "w") as f:
        f.write(material)
        if not material.endswith("\n"):
            f.write("\n")
    return path


class Provisioner:
    """Creates the tagged resource bundle for one session."""

    def __init__(self, provider: Ec2Provider, config: TunnelConfig):
        self.provider = provider
        self.config = config

    def provision(self, region: str, instance_type: Optional[str] = None,
                  idle_timeout: Optional[int] = None, bundle: Optional[Bundle] = None) -> Bundle:
        """
        Provision a security group, key pair and spot instance.

        Args:
            region: Validated region code
            instance_type: EC2 instance type
            idle_timeout: Idle timeout in minutes for the on-instance safety timer
            bundle: Bundle to fill in; callers pass their own so that an
                interrupted run can still be unwound

        Returns:
            Live Bundle

        Raises:
            ProvisionError: If any step fails; ``error.bundle`` holds what was created
        """
        instance_type = instance_type or self.config.instance_type
        idle_timeout = idle_timeout if idle_timeout is not None else self.config.idle_timeout
        if bundle is None:
            bundle = Bundle(region=region, suffix=new_session_suffix())
        suffix = bundle.suffix

        step = "render boot script"
        try:
            user_data = render_user_data(idle_timeout)

            step = "find base image"
            logger.info("Finding latest Ubuntu AMI...")
            image_id = self.provider.latest_image(region)
            logger.info(f"Using AMI: {image_id}")

            step = "create security group"
            self.ensure_security_group(bundle)

            step = "create key pair"
            self.create_key_pair(bundle)

            step = "launch instance"
            logger.info(f"Launching spot instance ({instance_type}) in {region}")
            bundle.instance_id = self.provider.run_spot_instance(
                region=region,
                image_id=image_id,
                instance_type=instance_type,
                key_name=bundle.key_name,
                group_id=bundle.security_group_id,
                user_data=user_data,
                tags=instance_tags(suffix),
                max_price=self.config.spot_max_price,
            )
            logger.info(f"Instance launched: {bundle.instance_id}")
        except (BotoCoreError, ClientError, LookupError, OSError, ValueError) as e:
            raise ProvisionError(f"Provisioning failed ({step}): {e}", bundle=bundle) from e

        if not bundle.is_live:
            raise ProvisionError("Provisioning returned an incomplete resource bundle", bundle=bundle)
        return bundle

    def ensure_security_group(self, bundle: Bundle) -> str:
        """Reuse the session's security group if it exists, otherwise create it."""
        name = security_group_name(bundle.suffix)
        bundle.security_group_name = name
        logger.info(f"Creating security group: {name}")

        group_id = self.provider.find_security_group(bundle.region, name)
        if group_id:
            logger.info(f"Security group {name} already exists")
            bundle.security_group_id = group_id
            return group_id

        group_id = self.provider.create_security_group(
            bundle.region, name, SECURITY_GROUP_DESCRIPTION, base_tags(bundle.suffix)
        )
        bundle.security_group_id = group_id
        self.provider.authorize_ssh(bundle.region, group_id)
        return group_id

    def create_key_pair(self, bundle: Bundle) -> Path:
        """Create a fresh key pair, replacing any stale one of the same name."""
        name = key_pair_name(bundle.suffix)
        key_file = self.config.key_file(name)
        logger.info(f"Creating SSH key pair: {name}")

        key_file.unlink(missing_ok=True)
        try:
            self.provider.delete_key_pair(bundle.region, name)
        except ClientError as e:
            if not is_not_found(e):
                raise

        material = self.provider.create_key_pair(bundle.region, name, base_tags(bundle.suffix))
        bundle.key_name = name
        bundle.key_file = key_file
        write_private_key(key_file, material)
        return bundle.key_file
