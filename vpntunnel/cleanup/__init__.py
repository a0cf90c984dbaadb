"""
Cleanup utilities: session teardown and tag-based orphan sweep.
"""

from .models import CleanupReport, FoundResource
from .sweep import OrphanSweeper, list_tagged_resources
from .teardown import SessionTeardown

__all__ = [
    "CleanupReport",
    "FoundResource",
    "OrphanSweeper",
    "SessionTeardown",
    "list_tagged_resources",
]
