"""
Runtime configuration read from the environment.
"""

import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Optional

from .errors import ConfigError

DEFAULT_INSTANCE_TYPE = "t3.nano"
DEFAULT_IDLE_TIMEOUT = 30  # minutes
DEFAULT_READY_TIMEOUT = 300  # seconds
DEFAULT_SPOT_MAX_PRICE = "0.10"
DEFAULT_SSH_USER = "ubuntu"


@dataclass(frozen=True)
class TunnelConfig:
    """Settings shared by every command."""
    home: Path
    instance_type: str = DEFAULT_INSTANCE_TYPE
    idle_timeout: int = DEFAULT_IDLE_TIMEOUT
    ready_timeout: int = DEFAULT_READY_TIMEOUT
    spot_max_price: str = DEFAULT_SPOT_MAX_PRICE
    ssh_user: str = DEFAULT_SSH_USER

    @property
    def state_file(self) -> Path:
        return self.home / "active.state"

    @property
    def pid_file(self) -> Path:
        return self.home / "sshuttle.pid"

    @property
    def lock_file(self) -> Path:
        return self.home / "session.lock"

    @property
    def events_file(self) -> Path:
        return self.home / "events.ndjson"

    def key_file(self, key_name: str) -> Path:
        return self.home / f"{key_name}.pem"

    def with_overrides(self, instance_type: Optional[str] = None,
                       idle_timeout: Optional[int] = None) -> "TunnelConfig":
        """Return a copy with CLI flags applied on top of the environment."""
        changes = {}
        if instance_type:
            changes["instance_type"] = instance_type
        if idle_timeout is not None:
            changes["idle_timeout"] = idle_timeout
        return replace(self, **changes)


def get_tunnel_home() -> Path:
    """
    Get the directory holding session state and key material.

    Returns:
        Path: State directory (not created)
    """
    home = os.environ.get("VPN_TUNNEL_HOME") or str(Path.home() / ".vpn-tunnel")
    return Path(home).expanduser().resolve()


def _int_env(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}")


def load_config() -> TunnelConfig:
    """
    Build the configuration from ``VPN_TUNNEL_*`` environment variables.

    Returns:
        TunnelConfig with defaults for anything unset
    """
    return TunnelConfig(
        home=get_tunnel_home(),
        instance_type=os.environ.get("VPN_TUNNEL_INSTANCE_TYPE") or DEFAULT_INSTANCE_TYPE,
        idle_timeout=_int_env("VPN_TUNNEL_IDLE_TIMEOUT", DEFAULT_IDLE_TIMEOUT),
        ready_timeout=_int_env("VPN_TUNNEL_READY_TIMEOUT", DEFAULT_READY_TIMEOUT),
        spot_max_price=os.environ.get("VPN_TUNNEL_SPOT_MAX_PRICE") or DEFAULT_SPOT_MAX_PRICE,
        ssh_user=os.environ.get("VPN_TUNNEL_SSH_USER") or DEFAULT_SSH_USER,
    )


def ensure_home(config: TunnelConfig) -> Path:
    """Create the state directory with owner-only permissions."""
    config.home.mkdir(parents=True, exist_ok=True)
    os.chmod(config.home, 0o700)
    return config.home
