"""
Durable session state for the single active tunnel.
"""

import json
import logging
import os
import time
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import BaseModel, ValidationError, field_validator

from .config import TunnelConfig
from .errors import StateCorrupted

logger = logging.getLogger(__name__)

# Shell-style records written by earlier releases
LEGACY_KEYS = {
    "INSTANCE_ID": "instance_id",
    "REGION": "region",
    "KEY_FILE": "key_file",
    "STARTED_AT": "started_at",
    "ACTIVE_SECURITY_GROUP_NAME": "security_group_name",
    "ACTIVE_KEY_NAME": "key_name",
    "ACTIVE_SECURITY_GROUP_ID": "security_group_id",
}


class SessionState(BaseModel):
    """Identifiers of the active bundle plus bookkeeping for status."""
    instance_id: str
    region: str
    key_file: str
    started_at: int
    security_group_name: Optional[str] = None
    key_name: Optional[str] = None
    security_group_id: Optional[str] = None

    @field_validator("instance_id", "region", "key_file")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip() or value == "None":
            raise ValueError("must not be empty")
        return value

    def runtime_seconds(self, now: Optional[float] = None) -> int:
        if now is None:
            now = time.time()
        return max(0, int(now - self.started_at))


def parse_record(text: str) -> Dict[str, Any]:
    """
    Parse a state record into a flat dict.

    Accepts the JSON object written by ``SessionStore.save`` and legacy
    ``KEY=VALUE`` lines. Unknown keys are dropped.

    Args:
        text: Raw file contents

    Returns:
        Dict of recognised fields (possibly incomplete)

    Raises:
        StateCorrupted: If the text is neither format
    """
    stripped = text.strip()
    if not stripped:
        return {}

    if stripped.startswith("{"):
        try:
            data = json.loads(stripped)
        except json.JSONDecodeError as e:
            raise StateCorrupted(f"State file is not valid JSON: {e}")
        if not isinstance(data, dict):
            raise StateCorrupted("State file must hold a JSON object")
        return {k: v for k, v in data.items() if k in SessionState.model_fields and v is not None}

    record = {}
    for line in stripped.splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        if "=" not in line:
            raise StateCorrupted(f"Malformed state line: {line!r}")
        key, value = line.split("=", 1)
        field_name = LEGACY_KEYS.get(key.strip())
        if field_name and value.strip():
            record[field_name] = value.strip().strip('"')
    return record


class SessionStore:
    """File-backed store for at most one ``SessionState``."""

    def __init__(self, config: TunnelConfig):
        self.config = config

    @property
    def path(self) -> Path:
        return self.config.state_file

    def exists(self) -> bool:
        return self.path.exists() and self.path.stat().st_size > 0

    def save(self, state: SessionState) -> None:
        """Write the record atomically with owner-only permissions."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(".tmp")
        try:
            fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            with os.fdopen(fd, "w") as f:
                json.dump(state.model_dump(), f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
        except OSError:
            tmp_path.unlink(missing_ok=True)
            raise
        logger.debug(f"Saved session state for {state.instance_id}")

    def load_lenient(self) -> Dict[str, Any]:
        """
        Read whatever fields the record holds without validation.

        Returns:
            Dict of fields; empty if the file is missing or unreadable
        """
        if not self.exists():
            return {}
        try:
            return parse_record(self.path.read_text())
        except (StateCorrupted, OSError) as e:
            logger.warning(f"Could not read state file {self.path}: {e}")
            return {}

    def load(self) -> Optional[SessionState]:
        """
        Load the active session.

        Returns:
            SessionState, or None when no session is recorded

        Raises:
            StateCorrupted: If the record is missing required fields or malformed
        """
        if not self.exists():
            return None
        record = parse_record(self.path.read_text())
        try:
            return SessionState.model_validate(record)
        except ValidationError as e:
            fields = ", ".join(str(err["loc"][0]) for err in e.errors() if err.get("loc"))
            raise StateCorrupted(f"State file {self.path} is incomplete or malformed ({fields})")

    def clear(self) -> None:
        """Remove the record. Succeeds whether or not it exists."""
        self.path.unlink(missing_ok=True)
        self.path.with_suffix(".tmp").unlink(missing_ok=True)

    # Tunnel process handle

    def write_pid(self, pid: int) -> None:
        self.config.pid_file.parent.mkdir(parents=True, exist_ok=True)
        self.config.pid_file.write_text(f"{pid}\n")

    def read_pid(self) -> Optional[int]:
        try:
            raw = self.config.pid_file.read_text().strip()
        except FileNotFoundError:
            return None
        try:
            return int(raw)
        except ValueError:
            logger.warning(f"Ignoring malformed PID file {self.config.pid_file}")
            return None

    def clear_pid(self) -> None:
        self.config.pid_file.unlink(missing_ok=True)
