"""Main CLI entrypoint for vpn-tunnel."""

import json
import logging
import sys
from datetime import datetime
from typing import Any, Dict

import click
from botocore.exceptions import BotoCoreError, ClientError

from ..config import DEFAULT_IDLE_TIMEOUT, DEFAULT_INSTANCE_TYPE, load_config
from ..errors import DependencyMissing, TunnelError
from ..orchestrator import INACTIVE_MESSAGE, TunnelOrchestrator, format_runtime

logger = logging.getLogger(__name__)

# Failures reported as a single ERROR line instead of a traceback
OPERATOR_ERRORS = (TunnelError, ClientError, BotoCoreError, OSError)

LOG_FORMAT = "[%(asctime)s] %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

EPILOG = """
\b
Examples:
    vpn-tunnel start --region EU
    vpn-tunnel start --region us-west-2
    vpn-tunnel status
    vpn-tunnel stop
"""


def configure_logging(verbose: bool = False) -> None:
    """Send log records to stderr as timestamped single lines."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT,
        datefmt=DATE_FORMAT,
        stream=sys.stderr,
    )
    # botocore and paramiko are chatty at INFO
    for name in ("botocore", "boto3", "urllib3", "paramiko"):
        logging.getLogger(name).setLevel(logging.WARNING)


def _fail(message: str) -> None:
    """Print one timestamped diagnostic line and exit non-zero."""
    timestamp = datetime.now().strftime(DATE_FORMAT)
    click.echo(f"[{timestamp}] ERROR: {message}", err=True)
    sys.exit(1)


def _json_output(data: Dict[str, Any]) -> None:
    click.echo(json.dumps(data, indent=None, default=str))


def _orchestrator(ctx) -> TunnelOrchestrator:
    obj = ctx.obj
    if obj.get("orchestrator") is None:
        obj["orchestrator"] = TunnelOrchestrator(load_config())
    return obj["orchestrator"]


@click.group(context_settings={"help_option_names": ["-h", "--help"]}, epilog=EPILOG)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.option("--json", "output_json", is_flag=True, help="Output machine-readable JSON")
@click.pass_context
def main(ctx, verbose, output_json):
    """vpn-tunnel - Disposable EC2 gateway for sshuttle."""
    ctx.ensure_object(dict)
    ctx.obj["json"] = output_json
    configure_logging(verbose)


@main.command()
@click.option("--region", required=True, help="AWS region or alias (EU, US, ASIA, APAC)")
@click.option("--instance-type", "--instance-class", "instance_type", default=None,
              help=f"Instance type (default: {DEFAULT_INSTANCE_TYPE})")
@click.option("--idle-timeout", type=click.IntRange(min=1), default=None,
              help=f"Idle timeout in minutes (default: {DEFAULT_IDLE_TIMEOUT})")
@click.pass_context
def start(ctx, region, instance_type, idle_timeout):
    """Start VPN tunnel (blocks until the tunnel ends)."""
    try:
        orchestrator = _orchestrator(ctx)
        orchestrator.preflight()
        result = orchestrator.start(region, instance_type=instance_type, idle_timeout=idle_timeout)
    except OPERATOR_ERRORS as e:
        _fail(str(e))

    if ctx.obj["json"]:
        _json_output(result)
    else:
        click.echo(f"VPN tunnel stopped ({result['cause']})")
    if result["cleanup"]["failed"]:
        click.echo("Some resources could not be deleted; run 'vpn-tunnel cleanup'", err=True)


@main.command()
@click.pass_context
def stop(ctx):
    """Stop active VPN tunnel."""
    try:
        orchestrator = _orchestrator(ctx)
        orchestrator.preflight()
        result = orchestrator.stop()
    except OPERATOR_ERRORS as e:
        _fail(str(e))

    if ctx.obj["json"]:
        _json_output(result)


@main.command()
@click.pass_context
def status(ctx):
    """Show tunnel status."""
    try:
        orchestrator = _orchestrator(ctx)
        if orchestrator.store.exists():
            try:
                orchestrator.preflight()
            except DependencyMissing as e:
                # Status still reports the recorded session
                logger.warning(f"Warning: {e}")
        result = orchestrator.status()
    except OPERATOR_ERRORS as e:
        _fail(str(e))

    if ctx.obj["json"]:
        _json_output(result)
        return

    if not result["active"]:
        click.echo(INACTIVE_MESSAGE)
        return
    _print_status_human(result)


@main.command()
@click.pass_context
def cleanup(ctx):
    """Force cleanup of resources in every region."""
    try:
        orchestrator = _orchestrator(ctx)
        orchestrator.preflight()
        result = orchestrator.cleanup()
    except OPERATOR_ERRORS as e:
        _fail(str(e))

    if ctx.obj["json"]:
        _json_output(result)
        return
    sweep = result["sweep"]
    click.echo(f"Removed {len(result['session']['removed']) + len(sweep['removed'])} resources "
               f"across {len(sweep['regions_checked'])} regions")
    if sweep["failed"]:
        click.echo(f"Could not delete: {', '.join(sweep['failed'])}", err=True)


@main.command()
@click.pass_context
def debug(ctx):
    """Diagnose SSH connectivity to the active instance."""
    try:
        orchestrator = _orchestrator(ctx)
        orchestrator.preflight()
        report = orchestrator.debug()
    except OPERATOR_ERRORS as e:
        _fail(str(e))

    click.echo("=== VPN Tunnel SSH Debug ===")
    click.echo(f"Instance ID: {report.instance_id}")
    click.echo(f"Region: {report.region}")
    click.echo(f"Key file: {report.key_file}")
    click.echo(f"Instance State: {report.instance_state}")
    click.echo(f"Public IP: {report.public_ip or 'none'}")
    click.echo(f"Security Groups: {' '.join(report.security_groups)}")
    click.echo("")
    for check in report.checks:
        mark = click.style("✓", fg="green") if check.ok else click.style("✗", fg="red")
        click.echo(f"{mark} {check.name}: {check.detail}")
        for hint in check.hints:
            click.echo(f"    - {hint}")

    if report.public_ip:
        click.echo("")
        click.echo("You can also try manual SSH with:")
        click.echo(report.manual_command(orchestrator.config.ssh_user))
    if not report.ok:
        sys.exit(1)


def _print_status_human(status_info: Dict[str, Any]) -> None:
    click.echo("VPN Tunnel Status:")
    click.echo(f"  Instance ID: {status_info.get('instance_id')}")
    click.echo(f"  Region: {status_info.get('region')}")
    started_at = status_info.get("started_at")
    if started_at is not None:
        try:
            started = datetime.fromtimestamp(int(started_at)).strftime(DATE_FORMAT)
        except (TypeError, ValueError):
            started = str(started_at)
        click.echo(f"  Started: {started}")
    click.echo(f"  Instance State: {status_info.get('instance_state', 'unknown')}")
    click.echo(f"  sshuttle Status: {status_info.get('tunnel')}")
    if "runtime_seconds" in status_info:
        click.echo(f"  Runtime: {format_runtime(status_info['runtime_seconds'])}")
    if status_info.get("warning"):
        click.echo(f"  Warning: {status_info['warning']}")


if __name__ == "__main__":
    main()
