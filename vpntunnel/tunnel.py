"""
sshuttle process supervision and the cancellation context around a session.
"""

import atexit
import logging
import os
import signal
import subprocess
import threading
import time
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from .config import TunnelConfig
from .errors import SessionCancelled, TunnelLaunchError
from .state import SessionStore

logger = logging.getLogger(__name__)

SSHUTTLE = "sshuttle"
DEFAULT_ROUTE = "0.0.0.0/0"
POLL_INTERVAL = 5  # seconds
LAUNCH_SETTLE = 3  # seconds
STOP_GRACE = 30  # seconds


class ExitCause(str, Enum):
    TUNNEL_EXITED = "tunnel_exited"
    INTERRUPTED = "interrupted"
    TERMINATED = "terminated"


def cause_for_signal(signum: int) -> ExitCause:
    if signum == signal.SIGTERM:
        return ExitCause.TERMINATED
    return ExitCause.INTERRUPTED


def pid_alive(pid: int) -> bool:
    """Check process liveness without signalling it."""
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists but owned by another user (sshuttle under sudo)
        return True
    return True


class Cancellation:
    """
    Funnels SIGINT, SIGTERM and interpreter exit into one teardown call.

    The first signal raises ``SessionCancelled`` so whatever blocking call is
    running unwinds to the caller's ``finally``; signals arriving after that
    are logged and ignored. ``run_teardown`` executes the teardown at most once.
    """

    SIGNALS = (signal.SIGINT, signal.SIGTERM)

    def __init__(self, teardown: Callable[[], Any]):
        self._teardown = teardown
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._done = False
        self._previous: Dict[int, Any] = {}
        self.cause: Optional[ExitCause] = None
        self.result: Any = None

    def install(self) -> "Cancellation":
        for signum in self.SIGNALS:
            self._previous[signum] = signal.signal(signum, self._handle)
        atexit.register(self.run_teardown)
        return self

    def uninstall(self) -> None:
        for signum, handler in self._previous.items():
            signal.signal(signum, handler)
        self._previous.clear()
        atexit.unregister(self.run_teardown)

    def _handle(self, signum, frame) -> None:
        if self._event.is_set():
            logger.warning(f"Received signal {signum} while shutting down, ignoring")
            return
        self.cancel(cause_for_signal(signum))
        raise SessionCancelled(signum)

    def cancel(self, cause: ExitCause) -> None:
        if self.cause is None:
            self.cause = cause
        self._event.set()

    def wait(self, timeout: float) -> bool:
        """Sleep up to ``timeout`` seconds; True if cancelled meanwhile."""
        return self._event.wait(timeout)

    def run_teardown(self) -> Any:
        with self._lock:
            if self._done:
                return self.result
            self._done = True
        self._event.set()
        self.result = self._teardown()
        return self.result

    def __enter__(self) -> "Cancellation":
        return self.install()

    def __exit__(self, exc_type, exc, tb) -> None:
        try:
            self.run_teardown()
        finally:
            self.uninstall()


class TunnelSupervisor:
    """Starts sshuttle against the gateway and blocks while it runs."""

    def __init__(self, config: TunnelConfig, store: SessionStore,
                 runner: Callable[..., subprocess.CompletedProcess] = subprocess.run,
                 is_alive: Callable[[int], bool] = pid_alive,
                 kill: Callable[[int, int], None] = os.kill,
                 sleep: Callable[[float], None] = time.sleep,
                 poll_interval: float = POLL_INTERVAL):
        self.config = config
        self.store = store
        self.runner = runner
        self.is_alive = is_alive
        self.kill = kill
        self.sleep = sleep
        self.poll_interval = poll_interval

    def build_command(self, address: str, key_file: Path) -> List[str]:
        ssh_cmd = (
            f"ssh -i {key_file} -o StrictHostKeyChecking=no "
            f"-o UserKnownHostsFile=/dev/null -o ServerAliveInterval=30"
        )
        return [
            SSHUTTLE,
            "--ssh-cmd", ssh_cmd,
            "-r", f"{self.config.ssh_user}@{address}",
            DEFAULT_ROUTE,
            f"--pidfile={self.config.pid_file}",
            "--daemon",
        ]

    def running_pid(self) -> Optional[int]:
        pid = self.store.read_pid()
        if pid and self.is_alive(pid):
            return pid
        return None

    def launch(self, address: str, key_file: Path) -> int:
        """
        Start sshuttle in daemon mode.

        Returns:
            PID of the daemonised sshuttle process

        Raises:
            TunnelLaunchError: If the process fails to start or dies immediately
        """
        logger.info(f"Starting sshuttle tunnel to {address}...")
        self.store.clear_pid()
        command = self.build_command(address, key_file)
        try:
            result = self.runner(command, capture_output=True, text=True, timeout=120)
        except (OSError, subprocess.SubprocessError) as e:
            raise TunnelLaunchError(f"Failed to start sshuttle tunnel: {e}") from e

        if result.returncode != 0:
            detail = (result.stderr or result.stdout or "").strip().splitlines()[-1:] or [""]
            raise TunnelLaunchError(
                f"Failed to start sshuttle tunnel (exit {result.returncode}) {detail[0]}".strip()
            )

        self.sleep(LAUNCH_SETTLE)
        pid = self.running_pid()
        if pid is None:
            raise TunnelLaunchError("Failed to start sshuttle tunnel: process is not running")

        logger.info(f"sshuttle tunnel started successfully (PID: {pid})")
        return pid

    def supervise(self, pid: int, cancellation: Cancellation) -> ExitCause:
        """Poll liveness until the tunnel exits or the session is cancelled."""
        logger.info(f"Monitoring sshuttle tunnel (PID: {pid})")
        logger.info("Press Ctrl+C to stop the VPN tunnel")
        try:
            while self.is_alive(pid):
                if cancellation.wait(self.poll_interval):
                    return cancellation.cause or ExitCause.INTERRUPTED
        except SessionCancelled as e:
            return cancellation.cause or cause_for_signal(e.signum)

        logger.info("sshuttle tunnel has stopped")
        return ExitCause.TUNNEL_EXITED

    def run_tunnel(self, address: str, key_file: Path, cancellation: Cancellation) -> ExitCause:
        """
        Launch the tunnel and block until it exits by any cause.

        Raises:
            TunnelLaunchError: If the launch fails; no supervision happens
        """
        pid = self.launch(address, key_file)
        return self.supervise(pid, cancellation)

    def stop_tunnel(self, grace: int = STOP_GRACE) -> bool:
        """
        Stop a running sshuttle: SIGTERM, then SIGKILL after ``grace`` seconds.

        Returns:
            True if a live process was signalled
        """
        pid = self.store.read_pid()
        if pid is None:
            return False

        signalled = False
        if self.is_alive(pid):
            logger.info(f"Stopping sshuttle tunnel (PID: {pid})")
            signalled = True
            try:
                self.kill(pid, signal.SIGTERM)
                waited = 0
                while self.is_alive(pid) and waited < grace:
                    self.sleep(1)
                    waited += 1
                if self.is_alive(pid):
                    logger.info("Force killing sshuttle process")
                    self.kill(pid, signal.SIGKILL)
            except ProcessLookupError:
                pass
            except PermissionError as e:
                logger.warning(f"Not permitted to signal sshuttle (PID: {pid}): {e}")

        self.store.clear_pid()
        return signalled
