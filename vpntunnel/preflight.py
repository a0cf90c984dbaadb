"""
Pre-flight checks for the external collaborators.
"""

import logging
import shutil
from typing import Callable, Dict, Optional

from botocore.exceptions import BotoCoreError, ClientError, NoCredentialsError

from .errors import DependencyMissing
from .tunnel import SSHUTTLE

logger = logging.getLogger(__name__)


def check_tunnel_binary(which: Callable[[str], Optional[str]] = shutil.which) -> str:
    """
    Locate the sshuttle executable.

    Returns:
        Absolute path to sshuttle

    Raises:
        DependencyMissing: If sshuttle is not on PATH
    """
    path = which(SSHUTTLE)
    if not path:
        raise DependencyMissing("sshuttle not found. Please install sshuttle.")
    return path


def check_aws_credentials(provider) -> Dict:
    """
    Verify that ambient AWS credentials work.

    Returns:
        Caller identity (Account, Arn, UserId)

    Raises:
        DependencyMissing: If no credentials are configured or they are rejected
    """
    try:
        identity = provider.caller_identity()
    except NoCredentialsError:
        raise DependencyMissing("AWS credentials not configured. Run 'aws configure'.")
    except (ClientError, BotoCoreError) as e:
        raise DependencyMissing(f"AWS credentials not usable: {e}")
    logger.debug(f"Using AWS identity {identity.get('Arn')}")
    return identity


def check_dependencies(provider, which: Callable[[str], Optional[str]] = shutil.which) -> None:
    """Run every pre-flight check; nothing is touched before these pass."""
    check_tunnel_binary(which)
    check_aws_credentials(provider)
