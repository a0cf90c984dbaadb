"""
SSH connectivity diagnostics for the active session.
"""

import logging
import os
import stat
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional

from botocore.exceptions import BotoCoreError, ClientError

from .provider import SSH_PORT, Ec2Provider
from .readiness import port_open, probe_ssh
from .state import SessionState

logger = logging.getLogger(__name__)


@dataclass
class Check:
    name: str
    ok: bool
    detail: str = ""
    hints: List[str] = field(default_factory=list)


@dataclass
class DiagnosticReport:
    instance_id: str
    region: str
    key_file: str
    instance_state: str = "unknown"
    public_ip: Optional[str] = None
    security_groups: List[str] = field(default_factory=list)
    checks: List[Check] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return all(check.ok for check in self.checks)

    def manual_command(self, username: str = "ubuntu") -> str:
        return f"ssh -i '{self.key_file}' -o StrictHostKeyChecking=no {username}@{self.public_ip}"


def _ssh_rules(group: dict) -> List[str]:
    rules = []
    for permission in group.get("IpPermissions", []):
        from_port = permission.get("FromPort")
        to_port = permission.get("ToPort")
        if from_port is None or not (from_port <= SSH_PORT <= (to_port or from_port)):
            continue
        for ip_range in permission.get("IpRanges", []):
            rules.append(f"{permission.get('IpProtocol')}/{SSH_PORT} from {ip_range.get('CidrIp')}")
    return rules


class SshDiagnostics:
    """Walks the usual failure points between here and the instance's sshd."""

    def __init__(self, provider: Ec2Provider, username: str = "ubuntu",
                 probe: Callable[..., bool] = probe_ssh,
                 tcp_check: Callable[[str], bool] = port_open):
        self.provider = provider
        self.username = username
        self.probe = probe
        self.tcp_check = tcp_check

    def run(self, state: SessionState) -> DiagnosticReport:
        report = DiagnosticReport(
            instance_id=state.instance_id,
            region=state.region,
            key_file=state.key_file,
        )

        try:
            instance = self.provider.describe_instance(state.region, state.instance_id)
        except (ClientError, BotoCoreError) as e:
            report.checks.append(Check("instance", False, f"Could not describe instance: {e}"))
            return report

        if instance is None:
            report.instance_state = "not-found"
            report.checks.append(Check("instance", False, "Instance no longer exists",
                                       ["Run 'vpn-tunnel stop' to clear the stale session"]))
            return report

        report.instance_state = instance.get("State", {}).get("Name", "unknown")
        report.public_ip = instance.get("PublicIpAddress")
        report.security_groups = [g["GroupId"] for g in instance.get("SecurityGroups", [])]

        if not report.public_ip:
            report.checks.append(Check("public_ip", False, "Instance has no public IP address", [
                "Instance is not in a public subnet",
                "Instance doesn't have a public IP assigned",
                "Instance is still starting up",
            ]))
            return report
        report.checks.append(Check("public_ip", True, report.public_ip))

        report.checks.append(self.check_key_file(Path(state.key_file)))
        report.checks.append(self.check_security_groups(state.region, report.security_groups))

        port_ok = self.tcp_check(report.public_ip)
        report.checks.append(Check("port", port_ok, f"Port {SSH_PORT} is {'open' if port_ok else 'not accessible'}", [] if port_ok else [
            "Security group doesn't allow SSH from your IP",
            "SSH service not running on instance",
            "Network routing issue",
        ]))

        if port_ok and Path(state.key_file).exists():
            ssh_ok = self.probe(report.public_ip, Path(state.key_file), username=self.username, timeout=15)
            report.checks.append(Check("ssh", ssh_ok, "SSH authentication " + ("succeeded" if ssh_ok else "failed"), [] if ssh_ok else [
                "SSH daemon not yet started",
                "Instance still booting",
                "The instance user data script may still be running",
            ]))

        return report

    def check_key_file(self, key_file: Path) -> Check:
        """Check the key exists and is mode 0600, fixing the mode if needed."""
        if not key_file.exists():
            return Check("key_file", False, f"Key file not found: {key_file}")

        mode = stat.S_IMODE(key_file.stat().st_mode)
        if mode != 0o600:
            logger.info(f"Fixing key file permissions ({oct(mode)} -> 0o600)")
            os.chmod(key_file, 0o600)
            return Check("key_file", True, f"Permissions were {oct(mode)[2:]}, fixed to 600")
        return Check("key_file", True, "Permissions 600")

    def check_security_groups(self, region: str, group_ids: List[str]) -> Check:
        if not group_ids:
            return Check("security_groups", False, "No security groups attached")
        try:
            groups = self.provider.describe_security_groups(region, group_ids)
        except (ClientError, BotoCoreError) as e:
            return Check("security_groups", False, f"Could not describe security groups: {e}")

        rules = [rule for group in groups for rule in _ssh_rules(group)]
        if not rules:
            return Check("security_groups", False, f"No port {SSH_PORT} ingress rule",
                         ["Security group doesn't allow SSH"])
        return Check("security_groups", True, "; ".join(rules))
