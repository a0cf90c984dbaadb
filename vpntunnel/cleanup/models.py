"""
Data models for cleanup and resource management.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional


@dataclass
class FoundResource:
    """Represents a tagged EC2 resource discovered by the orphan sweep."""
    service: str  # "ec2", "sg" or "key"
    resource_id: str
    region: str
    tags: Dict[str, str]
    name: Optional[str] = None
    reason: Optional[str] = None  # Why we think it belongs to vpn-tunnel


@dataclass
class CleanupReport:
    """Outcome of a teardown or sweep."""
    removed: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    regions_checked: List[str] = field(default_factory=list)
    tunnel_stopped: bool = False
    state_cleared: bool = False

    @property
    def ok(self) -> bool:
        return not self.failed

    def merge(self, other: "CleanupReport") -> "CleanupReport":
        self.removed.extend(other.removed)
        self.failed.extend(other.failed)
        self.warnings.extend(other.warnings)
        self.regions_checked.extend(other.regions_checked)
        self.tunnel_stopped = self.tunnel_stopped or other.tunnel_stopped
        self.state_cleared = self.state_cleared or other.state_cleared
        return self

    def to_dict(self) -> Dict:
        return {
            "removed": list(self.removed),
            "failed": list(self.failed),
            "warnings": list(self.warnings),
            "regions_checked": list(self.regions_checked),
            "tunnel_stopped": self.tunnel_stopped,
            "state_cleared": self.state_cleared,
        }
