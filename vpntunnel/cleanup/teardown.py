"""
Session-scoped teardown of the bundle recorded in session state.
"""

import logging
from pathlib import Path
from typing import Optional

from botocore.exceptions import BotoCoreError, ClientError, WaiterError

from ..errors import CleanupPartialFailure, StateCorrupted
from ..lock import SessionLock
from ..provider import Ec2Provider, is_not_found
from ..provision import Bundle
from ..retry import RetryPolicy
from ..state import SessionStore
from ..tunnel import TunnelSupervisor
from .models import CleanupReport

logger = logging.getLogger(__name__)

TERMINATE_TIMEOUT = 600  # seconds


class SessionTeardown:
    """Stops the tunnel, deletes the session's resources and clears state."""

    def __init__(self, provider: Ec2Provider, store: SessionStore,
                 supervisor: TunnelSupervisor, lock: Optional[SessionLock] = None,
                 retry_policy: Optional[RetryPolicy] = None,
                 terminate_timeout: int = TERMINATE_TIMEOUT):
        self.provider = provider
        self.store = store
        self.supervisor = supervisor
        self.lock = lock
        self.retry_policy = retry_policy or RetryPolicy()
        self.terminate_timeout = terminate_timeout

    def teardown_session(self) -> CleanupReport:
        """
        Tear down the active session. Safe to call when nothing is active.

        State is cleared last and unconditionally, even if resource deletion
        partially failed; leftovers are recovered by the orphan sweep.

        Returns:
            CleanupReport describing what was removed
        """
        logger.info("Cleaning up current session...")
        if self.lock is not None:
            self.lock.acquire(blocking=True)

        report = CleanupReport()
        try:
            try:
                report.tunnel_stopped = self.supervisor.stop_tunnel()
            except OSError as e:
                report.warnings.append(f"Could not stop sshuttle: {e}")
                logger.warning(f"Could not stop sshuttle: {e}")

            bundle = self.bundle_from_state()
            if bundle is not None:
                report.merge(self.teardown_bundle(bundle))
        finally:
            self.store.clear()
            report.state_cleared = True
            if self.lock is not None:
                self.lock.release()

        logger.info("Session cleanup completed")
        return report

    def bundle_from_state(self) -> Optional[Bundle]:
        """Rebuild the recorded bundle, falling back to whatever fields parse."""
        try:
            state = self.store.load()
        except StateCorrupted as e:
            logger.warning(f"{e}; cleaning up with the fields that remain")
            raw = self.store.load_lenient()
            if not raw.get("region"):
                logger.warning("State has no region; leaving leftovers to 'cleanup'")
                return None
            return Bundle(
                region=raw["region"],
                suffix="",
                security_group_name=raw.get("security_group_name"),
                security_group_id=raw.get("security_group_id"),
                key_name=raw.get("key_name"),
                key_file=Path(raw["key_file"]) if raw.get("key_file") else None,
                instance_id=raw.get("instance_id"),
            )
        if state is None:
            return None
        return Bundle.from_state(state)

    def teardown_bundle(self, bundle: Bundle) -> CleanupReport:
        """
        Delete the resources a (possibly partial) bundle references.

        Each step runs regardless of earlier failures.
        """
        report = CleanupReport()
        if bundle.is_empty and not bundle.key_file:
            return report

        logger.info("Cleaning up AWS resources...")
        region = bundle.region

        if bundle.instance_id and bundle.instance_id != "None":
            self._terminate_instance(region, bundle.instance_id, report)

        if bundle.key_name:
            self._delete_key_pair(region, bundle.key_name, report)
        if bundle.key_file:
            Path(bundle.key_file).unlink(missing_ok=True)

        if bundle.security_group_id or bundle.security_group_name:
            self._delete_security_group(region, bundle, report)

        return report

    def _terminate_instance(self, region: str, instance_id: str, report: CleanupReport) -> None:
        logger.info(f"Terminating instance: {instance_id}")
        try:
            self.provider.terminate_instance(region, instance_id)
        except ClientError as e:
            if not is_not_found(e):
                report.failed.append(f"instance:{instance_id}")
                logger.warning(f"Failed to terminate instance {instance_id}: {e}")
                return
            logger.info(f"Instance {instance_id} already gone")
        except BotoCoreError as e:
            report.failed.append(f"instance:{instance_id}")
            logger.warning(f"Failed to terminate instance {instance_id}: {e}")
            return

        logger.info("Waiting for instance to terminate...")
        try:
            self.provider.wait_for_instance(region, instance_id, "terminated", self.terminate_timeout)
        except (WaiterError, ClientError, BotoCoreError) as e:
            report.warnings.append(f"Instance {instance_id} not confirmed terminated: {e}")
            logger.warning(f"Instance {instance_id} not confirmed terminated: {e}")
        report.removed.append(f"instance:{instance_id}")

    def _delete_key_pair(self, region: str, key_name: str, report: CleanupReport) -> None:
        logger.info(f"Deleting key pair: {key_name}")
        try:
            self.provider.delete_key_pair(region, key_name)
            report.removed.append(f"key:{key_name}")
        except ClientError as e:
            if is_not_found(e):
                return
            report.failed.append(f"key:{key_name}")
            logger.warning(f"Failed to delete key pair {key_name}: {e}")
        except BotoCoreError as e:
            report.failed.append(f"key:{key_name}")
            logger.warning(f"Failed to delete key pair {key_name}: {e}")

    def _delete_security_group(self, region: str, bundle: Bundle, report: CleanupReport) -> None:
        label = bundle.security_group_id or bundle.security_group_name
        logger.info(f"Deleting security group: {bundle.security_group_name or label}")

        def _delete():
            try:
                self.provider.delete_security_group(
                    region, group_id=bundle.security_group_id, name=bundle.security_group_name
                )
            except ClientError as e:
                if not is_not_found(e):
                    raise

        try:
            self.retry_policy.run(_delete, f"security group {label}")
            report.removed.append(f"sg:{label}")
            logger.info("Security group deleted successfully")
        except CleanupPartialFailure as e:
            report.failed.append(f"sg:{label}")
            report.warnings.append(str(e))
            logger.warning(f"Warning: {e}")
        except BotoCoreError as e:
            report.failed.append(f"sg:{label}")
            logger.warning(f"Failed to delete security group {label}: {e}")
