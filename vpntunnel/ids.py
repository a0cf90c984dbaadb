"""
Resource naming utilities.
"""

import time
from typing import Optional

SECURITY_GROUP_BASE = "vpn-tunnel-sg"
KEY_PAIR_BASE = "vpn-tunnel-key"


def new_session_suffix(now: Optional[float] = None) -> str:
    """
    Generate the per-session name suffix (epoch seconds).

    Returns:
        str: Suffix shared by the session's security group and key pair
    """
    if now is None:
        now = time.time()
    return str(int(now))


def security_group_name(suffix: str) -> str:
    return f"{SECURITY_GROUP_BASE}-{suffix}"


def key_pair_name(suffix: str) -> str:
    return f"{KEY_PAIR_BASE}-{suffix}"
