"""
Tests for readiness polling.
"""

from unittest.mock import Mock

import pytest
from botocore.exceptions import WaiterError

from vpntunnel.errors import NotReadyTimeout
from vpntunnel.provision import Bundle
from vpntunnel.readiness import ReadinessProber


@pytest.fixture
def bundle(tmp_path):
    return Bundle(
        region="eu-west-1",
        suffix="1700000000",
        security_group_id="sg-0abc",
        key_name="vpn-tunnel-key-1700000000",
        key_file=tmp_path / "k.pem",
        instance_id="i-0abc",
    )


class TestReadinessProber:
    """Test SSH readiness polling with a fake probe and clock."""

    def test_ready_after_retries(self, provider, bundle):
        probe = Mock(side_effect=[False, False, True])
        sleep = Mock()
        prober = ReadinessProber(provider, interval=10, probe=probe, sleep=sleep)

        address = prober.await_ready(bundle, timeout=300)

        assert address == "203.0.113.10"
        assert probe.call_count == 3
        assert sleep.call_count == 2
        provider.wait_for_instance.assert_called_once_with("eu-west-1", "i-0abc", "running", 300)
        probe.assert_called_with("203.0.113.10", bundle.key_file, username="ubuntu")

    def test_timeout(self, provider, bundle):
        probe = Mock(return_value=False)
        prober = ReadinessProber(provider, interval=10, probe=probe, sleep=Mock())

        with pytest.raises(NotReadyTimeout, match="within 30 seconds"):
            prober.await_ready(bundle, timeout=30)

        assert probe.call_count == 3

    def test_waits_for_public_address(self, provider, bundle):
        provider.describe_instance.side_effect = [
            {"InstanceId": "i-0abc"},
            {"InstanceId": "i-0abc", "PublicIpAddress": "203.0.113.10"},
        ]
        probe = Mock(return_value=True)
        prober = ReadinessProber(provider, interval=10, probe=probe, sleep=Mock())

        assert prober.await_ready(bundle, timeout=60) == "203.0.113.10"
        assert probe.call_count == 1

    def test_waiter_failure(self, provider, bundle):
        provider.wait_for_instance.side_effect = WaiterError(
            name="InstanceRunning", reason="Max attempts exceeded", last_response={}
        )
        probe = Mock()
        prober = ReadinessProber(provider, probe=probe, sleep=Mock())

        with pytest.raises(NotReadyTimeout, match="running state"):
            prober.await_ready(bundle)

        probe.assert_not_called()

    def test_transient_describe_errors_are_retried(self, provider, bundle, make_client_error):
        provider.describe_instance.side_effect = [
            make_client_error("RequestLimitExceeded"),
            {"PublicIpAddress": "203.0.113.10"},
        ]
        prober = ReadinessProber(provider, interval=10, probe=Mock(return_value=True), sleep=Mock())

        assert prober.await_ready(bundle, timeout=60) == "203.0.113.10"
