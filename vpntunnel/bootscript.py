"""
Rendering of the self-terminating boot script shipped as instance user data.

The script is a versioned template (``templates/user_data.sh``) so the safety
timer can be checked without talking to EC2.
"""

import string
from dataclasses import dataclass
from importlib import resources

TEMPLATE_VERSION = "3"
TEMPLATE_NAME = "user_data.sh"

IDLE_THRESHOLD = 90  # percent CPU idle
IDLE_DURATION = 1800  # seconds of continuous idleness
CHECK_INTERVAL_MINUTES = 5


class _BootTemplate(string.Template):
    # "$" belongs to bash inside the script
    delimiter = "@"


@dataclass(frozen=True)
class SafetyTimer:
    """Parameters of the on-instance termination logic."""
    idle_timeout: int  # minutes
    idle_threshold: int = IDLE_THRESHOLD
    idle_duration: int = IDLE_DURATION
    check_interval_minutes: int = CHECK_INTERVAL_MINUTES

    @property
    def hard_timeout_minutes(self) -> int:
        """Absolute shutdown delay after boot, twice the idle timeout."""
        return 2 * self.idle_timeout


def load_template() -> str:
    return resources.files("vpntunnel").joinpath("templates").joinpath(TEMPLATE_NAME).read_text()


def render_user_data(idle_timeout: int, timer: SafetyTimer = None) -> str:
    """
    Render the boot script for a given idle timeout.

    Args:
        idle_timeout: Idle timeout in minutes
        timer: Optional fully specified timer parameters

    Returns:
        Shell script text (boto3 base64-encodes it on launch)

    Raises:
        ValueError: If the idle timeout is not positive
    """
    if idle_timeout <= 0:
        raise ValueError(f"Idle timeout must be positive, got {idle_timeout}")
    timer = timer or SafetyTimer(idle_timeout=idle_timeout)

    return _BootTemplate(load_template()).substitute(
        template_version=TEMPLATE_VERSION,
        idle_threshold=timer.idle_threshold,
        idle_duration=timer.idle_duration,
        check_interval_minutes=timer.check_interval_minutes,
        hard_timeout_minutes=timer.hard_timeout_minutes,
    )
