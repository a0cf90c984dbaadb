"""
Readiness polling: instance running, public address assigned, SSH reachable.
"""

import logging
import socket
import time
from pathlib import Path
from typing import Callable, Optional

import paramiko
from botocore.exceptions import BotoCoreError, ClientError, WaiterError
from tenacity import (
    RetryError,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    stop_after_delay,
    wait_fixed,
)

from .errors import NotReadyTimeout
from .provider import SSH_PORT, Ec2Provider

logger = logging.getLogger(__name__)

PROBE_INTERVAL = 10  # seconds
PROBE_TIMEOUT = 5  # seconds per connection attempt


class _NotReachable(Exception):
    """SSH probe failed - retry."""


def probe_ssh(host: str, key_file: Path, username: str = "ubuntu",
              timeout: float = PROBE_TIMEOUT) -> bool:
    """
    Check whether ``host`` accepts an authenticated SSH connection.

    Args:
        host: Public IP or hostname
        key_file: Private key for authentication
        username: Remote login user
        timeout: Connect, banner and auth timeout in seconds

    Returns:
        True if the connection authenticated, False otherwise
    """
    client = paramiko.SSHClient()
    client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
    try:
        client.connect(
            hostname=host,
            port=SSH_PORT,
            username=username,
            key_filename=str(key_file),
            timeout=timeout,
            banner_timeout=timeout,
            auth_timeout=timeout,
            allow_agent=False,
            look_for_keys=False,
        )
        return True
    except (paramiko.SSHException, OSError, EOFError) as e:
        logger.debug(f"SSH probe to {host} failed: {e}")
        return False
    finally:
        client.close()


def port_open(host: str, port: int = SSH_PORT, timeout: float = PROBE_TIMEOUT) -> bool:
    """Plain TCP reachability check."""
    try:
        with socket.create_connection((host, port), timeout=timeout):
            return True
    except OSError:
        return False


class ReadinessProber:
    """Waits until a provisioned instance can carry the tunnel."""

    def __init__(self, provider: Ec2Provider, username: str = "ubuntu",
                 interval: float = PROBE_INTERVAL,
                 probe: Callable[..., bool] = probe_ssh,
                 sleep: Callable[[float], None] = time.sleep):
        self.provider = provider
        self.username = username
        self.interval = interval
        self.probe = probe
        self.sleep = sleep

    def public_address(self, region: str, instance_id: str) -> Optional[str]:
        instance = self.provider.describe_instance(region, instance_id)
        if not instance:
            return None
        return instance.get("PublicIpAddress")

    def await_ready(self, bundle, timeout: int = 300) -> str:
        """
        Block until the bundle's instance answers SSH.

        Args:
            bundle: Provisioned bundle (region, instance id, key file)
            timeout: Overall budget in seconds for the SSH polling phase

        Returns:
            Public IP address of the instance

        Raises:
            NotReadyTimeout: If any phase does not complete in time
        """
        logger.info(f"Waiting for instance {bundle.instance_id} to be ready...")
        try:
            self.provider.wait_for_instance(bundle.region, bundle.instance_id, "running", timeout)
        except WaiterError as e:
            raise NotReadyTimeout(f"Instance {bundle.instance_id} did not reach running state: {e}") from e
        except (BotoCoreError, ClientError) as e:
            raise NotReadyTimeout(f"Could not query instance {bundle.instance_id}: {e}") from e

        max_attempts = max(1, int(timeout // self.interval))
        waited = {"seconds": 0}

        def _check() -> str:
            address = self.public_address(bundle.region, bundle.instance_id)
            if address and self.probe(address, bundle.key_file, username=self.username):
                return address
            raise _NotReachable(address)

        def _log_wait(retry_state):
            waited["seconds"] += self.interval
            logger.info(f"Waiting for SSH... ({int(waited['seconds'])}/{timeout}s)")

        retrying = Retrying(
            stop=stop_after_attempt(max_attempts) | stop_after_delay(timeout),
            wait=wait_fixed(self.interval),
            retry=retry_if_exception_type((_NotReachable, BotoCoreError, ClientError)),
            sleep=self.sleep,
            before_sleep=_log_wait,
        )
        try:
            address = retrying(_check)
        except RetryError as e:
            raise NotReadyTimeout(
                f"Instance failed to become ready within {timeout} seconds"
            ) from e.last_attempt.exception()

        logger.info(f"Instance is ready for SSH connections at {address}")
        return address
