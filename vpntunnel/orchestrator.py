"""
Main orchestrator for the tunnel session lifecycle.
"""

import logging
from typing import Any, Dict, Optional

from botocore.exceptions import BotoCoreError, ClientError

from .cleanup import OrphanSweeper, SessionTeardown
from .cleanup.models import CleanupReport
from .config import TunnelConfig, ensure_home
from .diagnostics import SshDiagnostics
from .errors import (
    ConfigError,
    ProvisionError,
    SessionActive,
    SessionCancelled,
    StateCorrupted,
    StateWriteError,
    TunnelError,
)
from .events import EventTypes, emit_event, get_last_event
from .ids import new_session_suffix
from .lock import SessionLock
from .preflight import check_dependencies
from .provider import Ec2Provider
from .provision import Bundle, Provisioner
from .readiness import ReadinessProber
from .regions import resolve_region
from .retry import RetryPolicy
from .state import SessionStore
from .tunnel import Cancellation, ExitCause, TunnelSupervisor, cause_for_signal

logger = logging.getLogger(__name__)

INACTIVE_MESSAGE = "No active VPN tunnel."


def format_runtime(seconds: int) -> str:
    return f"{seconds // 3600}h {seconds % 3600 // 60}m {seconds % 60}s"


class TunnelOrchestrator:
    """Wires the lifecycle components together for one invocation."""

    def __init__(self, config: TunnelConfig, provider: Optional[Ec2Provider] = None,
                 store: Optional[SessionStore] = None,
                 supervisor: Optional[TunnelSupervisor] = None,
                 prober: Optional[ReadinessProber] = None,
                 retry_policy: Optional[RetryPolicy] = None,
                 sweeper: Optional[OrphanSweeper] = None):
        self.config = config
        self.provider = provider or Ec2Provider()
        self.store = store or SessionStore(config)
        self.lock = SessionLock(config.lock_file)
        self.supervisor = supervisor or TunnelSupervisor(config, self.store)
        self.prober = prober or ReadinessProber(self.provider, username=config.ssh_user)
        self.provisioner = Provisioner(self.provider, config)
        self.teardown = SessionTeardown(
            self.provider, self.store, self.supervisor, lock=self.lock, retry_policy=retry_policy
        )
        self.sweeper = sweeper or OrphanSweeper(self.provider, retry_policy=retry_policy)

    def preflight(self) -> None:
        check_dependencies(self.provider)

    def start(self, region: str, instance_type: Optional[str] = None,
              idle_timeout: Optional[int] = None) -> Dict[str, Any]:
        """
        Provision a gateway, run the tunnel and tear everything down afterwards.

        Blocks for the lifetime of the tunnel. Teardown runs exactly once on
        every exit path: tunnel exit, SIGINT, SIGTERM or a failure.

        Args:
            region: Region alias or code
            instance_type: EC2 instance type override
            idle_timeout: Idle timeout override in minutes

        Returns:
            Result dictionary with the exit cause and cleanup report

        Raises:
            SessionActive: If a session is already recorded
            InvalidRegion, ProvisionError, NotReadyTimeout, TunnelLaunchError
        """
        config = self.config.with_overrides(instance_type, idle_timeout)
        try:
            ensure_home(config)
        except OSError as e:
            raise ConfigError(f"Cannot create state directory {config.home}: {e}") from e

        self.lock.acquire(blocking=False)
        try:
            if self.store.exists():
                raise SessionActive("VPN tunnel is already active. Use 'vpn-tunnel stop' first.")

            region_code = resolve_region(region, self.provider)
            logger.info(f"Starting VPN tunnel in region {region_code}...")
            emit_event(config, EventTypes.START, {
                "region": region_code,
                "input": region,
                "instance_type": config.instance_type,
                "idle_timeout": config.idle_timeout,
            })

            bundle = Bundle(region=region_code, suffix=new_session_suffix())
            cancellation = Cancellation(lambda: self._teardown_after_start(bundle))
            cause = None
            with cancellation:
                try:
                    cause = self._run_session(config, bundle, cancellation)
                except SessionCancelled as e:
                    cause = cancellation.cause or cause_for_signal(e.signum)
                    logger.info("Interrupted, cleaning up...")
                except TunnelError as e:
                    emit_event(config, EventTypes.ERROR, {"reason": str(e)})
                    raise
        finally:
            if self.lock.held:
                self.lock.release()

        emit_event(config, EventTypes.TUNNEL_EXITED, {"cause": cause.value})
        report = cancellation.result or CleanupReport()
        return {
            "status": "stopped",
            "cause": cause.value,
            "region": region_code,
            "instance_id": bundle.instance_id,
            "cleanup": report.to_dict(),
        }

    def _run_session(self, config: TunnelConfig, bundle: Bundle,
                     cancellation: Cancellation) -> ExitCause:
        try:
            self.provisioner.provision(
                bundle.region, config.instance_type, config.idle_timeout, bundle=bundle
            )
        except ProvisionError as e:
            emit_event(config, EventTypes.PROVISION_FAILED, {"reason": str(e)})
            raise

        try:
            self.store.save(bundle.to_state())
        except OSError as e:
            raise StateWriteError(f"Could not record session state: {e}") from e
        # Provisioning is done; a concurrent 'stop' may now take the lock
        self.lock.release()
        emit_event(config, EventTypes.PROVISIONED, {
            "instance_id": bundle.instance_id,
            "security_group": bundle.security_group_name,
            "key_name": bundle.key_name,
        })

        address = self.prober.await_ready(bundle, config.ready_timeout)
        emit_event(config, EventTypes.READY, {"address": address})

        return self.supervisor.run_tunnel(address, bundle.key_file, cancellation)

    def _teardown_after_start(self, bundle: Bundle) -> CleanupReport:
        emit_event(self.config, EventTypes.TEARDOWN_START, {"instance_id": bundle.instance_id})
        if self.store.exists():
            # Recorded in state; a no-op if another invocation already stopped it
            report = self.teardown.teardown_session()
        else:
            report = self.teardown.teardown_bundle(bundle)
        emit_event(self.config, EventTypes.TEARDOWN_DONE, report.to_dict())
        return report

    def stop(self) -> Dict[str, Any]:
        """Tear down the active session, if any."""
        if not self.store.exists() and self.supervisor.running_pid() is None:
            logger.info("No active VPN tunnel found.")
            return {"status": "inactive"}

        logger.info("Stopping VPN tunnel...")
        emit_event(self.config, EventTypes.TEARDOWN_START, {"trigger": "stop"})
        report = self.teardown.teardown_session()
        emit_event(self.config, EventTypes.TEARDOWN_DONE, report.to_dict())
        return {"status": "stopped", "cleanup": report.to_dict()}

    def status(self) -> Dict[str, Any]:
        """
        Report the active session.

        Makes no provider calls when no session is recorded.
        """
        if not self.store.exists():
            return {"active": False, "message": INACTIVE_MESSAGE}

        result: Dict[str, Any] = {"active": True}
        state = None
        try:
            state = self.store.load()
            fields = state.model_dump()
        except StateCorrupted as e:
            result["warning"] = str(e)
            fields = self.store.load_lenient()

        result.update({
            "instance_id": fields.get("instance_id"),
            "region": fields.get("region"),
            "started_at": fields.get("started_at"),
        })

        if fields.get("region") and fields.get("instance_id"):
            try:
                result["instance_state"] = self.provider.instance_state(fields["region"], fields["instance_id"])
            except (ClientError, BotoCoreError) as e:
                logger.debug(f"Could not describe instance: {e}")
                result["instance_state"] = "unknown"
        else:
            result["instance_state"] = "unknown"

        pid = self.store.read_pid()
        if pid is None:
            result["tunnel"] = "Not started"
        elif self.supervisor.is_alive(pid):
            result["tunnel"] = f"Running (PID: {pid})"
        else:
            result["tunnel"] = "Not running"
        result["tunnel_pid"] = pid

        if state is not None:
            result["runtime_seconds"] = state.runtime_seconds()

        last_event = get_last_event(self.config)
        if last_event:
            result["last_event"] = last_event.get("type")
        return result

    def cleanup(self) -> Dict[str, Any]:
        """Session teardown followed by an all-region orphan sweep."""
        logger.info("Performing cleanup of VPN tunnel resources...")
        session_report = self.teardown.teardown_session()

        logger.info("Performing comprehensive cleanup across all regions...")
        emit_event(self.config, EventTypes.GC_SCAN, {"regions": "all"})
        sweep_report = self.sweeper.sweep(None)
        emit_event(self.config, EventTypes.GC_CLEANED, {
            "removed": len(sweep_report.removed),
            "failed": len(sweep_report.failed),
        })
        logger.info("Complete cleanup finished")
        return {
            "status": "cleaned",
            "session": session_report.to_dict(),
            "sweep": sweep_report.to_dict(),
        }

    def debug(self):
        """
        Run SSH diagnostics against the active session.

        Raises:
            TunnelError: If no session is active
        """
        state = self.store.load()
        if state is None:
            raise TunnelError("No active VPN tunnel state found. Please start a tunnel first.")
        return SshDiagnostics(self.provider, username=self.config.ssh_user).run(state)
