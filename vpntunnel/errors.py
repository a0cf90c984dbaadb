"""
Exception taxonomy for tunnel lifecycle failures.
"""

from typing import Optional


class TunnelError(Exception):
    """Base class for all errors reported to the operator."""


class DependencyMissing(TunnelError):
    """A required external tool or credential is not available."""


class InvalidRegion(TunnelError):
    """The requested region could not be resolved or reached."""

    def __init__(self, value: str, region: str, reason: Optional[str] = None):
        self.value = value
        self.region = region
        message = f"Invalid or inaccessible AWS region: {region} (from input: {value})"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class ProvisionError(TunnelError):
    """A resource creation step failed.

    ``bundle`` holds whatever identifiers were obtained before the failure so
    the caller can unwind them.
    """

    def __init__(self, message: str, bundle=None):
        self.bundle = bundle
        super().__init__(message)


class NotReadyTimeout(TunnelError):
    """The instance did not become reachable in time."""


class TunnelLaunchError(TunnelError):
    """The sshuttle process could not be started."""


class CleanupPartialFailure(TunnelError):
    """A delete step exhausted its retries."""

    def __init__(self, resource: str, attempts: int, last_error: Optional[BaseException] = None):
        self.resource = resource
        self.attempts = attempts
        self.last_error = last_error
        message = f"Could not delete {resource} after {attempts} attempts"
        if last_error is not None:
            message = f"{message}: {last_error}"
        super().__init__(message)


class SessionActive(TunnelError):
    """A tunnel session is already active."""


class StateCorrupted(TunnelError):
    """The persisted session record is missing required fields or malformed."""


class SessionCancelled(TunnelError):
    """Raised from a signal handler to unwind the blocking call in progress."""

    def __init__(self, signum: int):
        self.signum = signum
        super().__init__(f"Cancelled by signal {signum}")


class ConfigError(TunnelError):
    """An environment setting or the state directory is unusable."""


class StateWriteError(TunnelError):
    """The session record could not be written."""
