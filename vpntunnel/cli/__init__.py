"""Command-line interface for vpn-tunnel."""

from .main import main

__all__ = ["main"]
