"""
Tests for the self-terminating boot script.
"""

import pytest

from vpntunnel.bootscript import (
    CHECK_INTERVAL_MINUTES,
    TEMPLATE_VERSION,
    SafetyTimer,
    load_template,
    render_user_data,
)


class TestRenderUserData:
    """Test boot script rendering."""

    def test_hard_timeout_is_twice_idle_timeout(self):
        script = render_user_data(10)

        assert "shutdown -h +20" in script

    def test_hard_shutdown_armed_before_package_install(self):
        script = render_user_data(10)

        assert script.index("shutdown -h +20") < script.index("apt-get")
        assert "at now" not in script

    def test_default_idle_timeout(self):
        assert "shutdown -h +60" in render_user_data(30)

    def test_idle_check_parameters(self):
        script = render_user_data(30)

        assert "IDLE_THRESHOLD=90" in script
        assert "IDLE_DURATION=1800" in script
        assert f"*/{CHECK_INTERVAL_MINUTES} * * * *" in script
        assert "vmstat" in script

    def test_no_placeholders_left(self):
        script = render_user_data(15)

        assert "@{" not in script
        assert f"boot script v{TEMPLATE_VERSION}" in script

    def test_starts_with_shebang(self):
        assert render_user_data(5).startswith("#!/bin/bash")

    def test_custom_timer(self):
        timer = SafetyTimer(idle_timeout=10, idle_threshold=95, check_interval_minutes=1)

        script = render_user_data(10, timer)

        assert "IDLE_THRESHOLD=95" in script
        assert "*/1 * * * *" in script

    @pytest.mark.parametrize("idle_timeout", [0, -5])
    def test_rejects_non_positive(self, idle_timeout):
        with pytest.raises(ValueError, match="must be positive"):
            render_user_data(idle_timeout)


def test_template_is_packaged():
    assert "@{hard_timeout_minutes}" in load_template()
