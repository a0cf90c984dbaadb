"""
vpn-tunnel - Disposable EC2 gateways for sshuttle tunnels.

This package provisions a short-lived spot instance, routes local traffic
through it with sshuttle and tears every tagged resource down again when the
tunnel ends.
"""

__version__ = "0.1.0"
__author__ = "vpn-tunnel contributors"
