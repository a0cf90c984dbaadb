"""
Tests for sshuttle supervision and the cancellation context.
"""

import signal
import subprocess
from pathlib import Path
from unittest.mock import Mock, call

import pytest

from vpntunnel.errors import SessionCancelled, TunnelLaunchError
from vpntunnel.tunnel import Cancellation, ExitCause, TunnelSupervisor, cause_for_signal


def _completed(returncode=0, stdout="", stderr=""):
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout, stderr=stderr)


def _supervisor(config, store, **kwargs):
    kwargs.setdefault("runner", Mock(return_value=_completed()))
    kwargs.setdefault("is_alive", Mock(return_value=True))
    kwargs.setdefault("kill", Mock())
    kwargs.setdefault("sleep", Mock())
    kwargs.setdefault("poll_interval", 0)
    return TunnelSupervisor(config, store, **kwargs)


class TestTunnelSupervisor:
    """Test the sshuttle launcher and monitor."""

    def test_build_command(self, config, store):
        command = _supervisor(config, store).build_command("203.0.113.10", Path("/keys/k.pem"))

        assert command[0] == "sshuttle"
        assert "ubuntu@203.0.113.10" in command
        assert "0.0.0.0/0" in command
        assert "--daemon" in command
        assert f"--pidfile={config.pid_file}" in command
        ssh_cmd = command[command.index("--ssh-cmd") + 1]
        assert "-i /keys/k.pem" in ssh_cmd
        assert "StrictHostKeyChecking=no" in ssh_cmd

    def test_launch_returns_daemon_pid(self, config, store):
        def runner(command, **kwargs):
            store.write_pid(4242)
            return _completed()

        supervisor = _supervisor(config, store, runner=runner)

        assert supervisor.launch("203.0.113.10", Path("/keys/k.pem")) == 4242

    def test_launch_nonzero_exit(self, config, store):
        runner = Mock(return_value=_completed(1, stderr="fatal: server died with error code 255"))
        supervisor = _supervisor(config, store, runner=runner)

        with pytest.raises(TunnelLaunchError, match="exit 1"):
            supervisor.launch("203.0.113.10", Path("/keys/k.pem"))

    def test_launch_missing_binary(self, config, store):
        runner = Mock(side_effect=FileNotFoundError("sshuttle"))
        supervisor = _supervisor(config, store, runner=runner)

        with pytest.raises(TunnelLaunchError):
            supervisor.launch("203.0.113.10", Path("/keys/k.pem"))

    def test_launch_process_died(self, config, store):
        def runner(command, **kwargs):
            store.write_pid(4242)
            return _completed()

        supervisor = _supervisor(config, store, runner=runner, is_alive=Mock(return_value=False))

        with pytest.raises(TunnelLaunchError, match="not running"):
            supervisor.launch("203.0.113.10", Path("/keys/k.pem"))

    def test_supervise_until_exit(self, config, store):
        is_alive = Mock(side_effect=[True, True, False])
        supervisor = _supervisor(config, store, is_alive=is_alive)
        cancellation = Cancellation(Mock())

        assert supervisor.supervise(4242, cancellation) == ExitCause.TUNNEL_EXITED
        assert is_alive.call_count == 3

    def test_supervise_cancelled(self, config, store):
        supervisor = _supervisor(config, store)
        cancellation = Cancellation(Mock())
        cancellation.cancel(ExitCause.TERMINATED)

        assert supervisor.supervise(4242, cancellation) == ExitCause.TERMINATED

    def test_stop_escalates_to_kill(self, config, store):
        store.write_pid(4242)
        kill = Mock()
        sleep = Mock()
        supervisor = _supervisor(config, store, kill=kill, sleep=sleep)

        assert supervisor.stop_tunnel(grace=30) is True

        assert kill.call_args_list == [call(4242, signal.SIGTERM), call(4242, signal.SIGKILL)]
        assert sleep.call_count == 30
        assert store.read_pid() is None

    def test_stop_graceful(self, config, store):
        store.write_pid(4242)
        kill = Mock()
        is_alive = Mock(side_effect=[True, True, False, False])
        supervisor = _supervisor(config, store, kill=kill, is_alive=is_alive)

        supervisor.stop_tunnel()

        kill.assert_called_once_with(4242, signal.SIGTERM)

    def test_stop_without_pid(self, config, store):
        kill = Mock()

        assert _supervisor(config, store, kill=kill).stop_tunnel() is False
        kill.assert_not_called()

    def test_stop_already_exited(self, config, store):
        store.write_pid(4242)
        kill = Mock(side_effect=ProcessLookupError())
        supervisor = _supervisor(config, store, kill=kill)

        supervisor.stop_tunnel()

        assert store.read_pid() is None


class TestCancellation:
    """Test the signal funnel."""

    def test_teardown_runs_once(self):
        teardown = Mock(return_value="report")
        cancellation = Cancellation(teardown)

        assert cancellation.run_teardown() == "report"
        assert cancellation.run_teardown() == "report"

        teardown.assert_called_once()

    def test_first_signal_raises_second_is_ignored(self):
        cancellation = Cancellation(Mock())

        with pytest.raises(SessionCancelled) as exc_info:
            cancellation._handle(signal.SIGINT, None)
        assert exc_info.value.signum == signal.SIGINT
        assert cancellation.cause == ExitCause.INTERRUPTED

        cancellation._handle(signal.SIGTERM, None)
        assert cancellation.cause == ExitCause.INTERRUPTED

    def test_context_restores_handlers(self):
        teardown = Mock()
        before = signal.getsignal(signal.SIGINT)

        with Cancellation(teardown) as cancellation:
            assert signal.getsignal(signal.SIGINT) == cancellation._handle

        assert signal.getsignal(signal.SIGINT) == before
        teardown.assert_called_once()

    def test_context_tears_down_on_error(self):
        teardown = Mock()

        with pytest.raises(RuntimeError):
            with Cancellation(teardown):
                raise RuntimeError("boom")

        teardown.assert_called_once()

    def test_cause_for_signal(self):
        assert cause_for_signal(signal.SIGTERM) == ExitCause.TERMINATED
        assert cause_for_signal(signal.SIGINT) == ExitCause.INTERRUPTED
