"""
Event journal in NDJSON format.
"""

import json
import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from .config import TunnelConfig

logger = logging.getLogger(__name__)

MAX_EVENTS = 500


def emit_event(config: TunnelConfig, event_type: str, data: Optional[Dict[str, Any]] = None) -> None:
    """
    Append an event to the journal.

    Journal write failures are logged and never interrupt the lifecycle.

    Args:
        config: Tunnel configuration (locates the journal)
        event_type: Event type (see ``EventTypes``)
        data: Event data
    """
    event = {
        "ts": datetime.now().isoformat(),
        "type": event_type,
        "data": data or {}
    }
    try:
        config.events_file.parent.mkdir(parents=True, exist_ok=True)
        with open(config.events_file, "a") as f:
            f.write(json.dumps(event) + "\n")
            f.flush()
        _trim_journal(config.events_file)
    except OSError as e:
        logger.debug(f"Could not write event {event_type}: {e}")


def _trim_journal(path: Path, keep: Optional[int] = None) -> None:
    """Keep only the newest ``keep`` lines (default ``MAX_EVENTS``)."""
    keep = keep or MAX_EVENTS
    with open(path, "r") as f:
        lines = f.readlines()
    if len(lines) <= keep:
        return
    tmp_path = path.with_suffix(".tmp")
    with open(tmp_path, "w") as f:
        f.writelines(lines[-keep:])
    os.replace(tmp_path, path)


def read_events(config: TunnelConfig) -> List[Dict[str, Any]]:
    """
    Read the most recent events from the journal.

    Returns:
        List of events, oldest first
    """
    if not config.events_file.exists():
        return []

    events = []
    with open(config.events_file, "r") as f:
        for line in f:
            line = line.strip()
            if line:
                try:
                    events.append(json.loads(line))
                except json.JSONDecodeError:
                    continue  # Skip malformed lines

    return events[-MAX_EVENTS:]


def get_last_event(config: TunnelConfig) -> Optional[Dict[str, Any]]:
    events = read_events(config)
    return events[-1] if events else None


class EventTypes:
    START = "START"
    PROVISIONED = "PROVISIONED"
    PROVISION_FAILED = "PROVISION_FAILED"
    READY = "READY"
    TUNNEL_EXITED = "TUNNEL_EXITED"
    TEARDOWN_START = "TEARDOWN_START"
    TEARDOWN_DONE = "TEARDOWN_DONE"
    GC_SCAN = "GC_SCAN"
    GC_CLEANED = "GC_CLEANED"
    ERROR = "ERROR"
