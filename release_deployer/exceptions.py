"""
Exception hierarchy for release-deployer.

Every error raised by the deployment path derives from DeployerError so the
scheduler can log a failed cycle and move on to the next tick.
"""

from pathlib import Path
from typing import Any, Optional


class DeployerError(Exception):
    """Base class for all release-deployer errors."""


class ConfigError(DeployerError):
    """Configuration file is missing, unreadable, or incomplete."""


class PersistenceError(DeployerError):
    """Slot ledger could not be read or written."""


class LedgerCommitError(PersistenceError):
    """
    Ledger commit failed after the entry point was already switched.

    The live entry point and the ledger on disk disagree until the pending
    ledger is recovered on the next start.
    """

    def __init__(
        self, message: str, pending_path: Optional[Path] = None, ledger: Optional[Any] = None
    ):
        self.pending_path = pending_path
        # Ledger describing what the entry point now serves
        self.ledger = ledger
        super().__init__(message)


# Release feed


class ReleaseSourceError(DeployerError):
    """Release feed request failed."""


class RateLimited(ReleaseSourceError):
    """Release feed refused the request because of rate limiting."""


class ReleaseHTTPError(ReleaseSourceError):
    """Release feed returned an unexpected status or could not be reached."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class ReleaseDecodeError(ReleaseSourceError):
    """Release feed response body could not be decoded."""


# Staging


class StageError(DeployerError):
    """Staging a release into the inactive slot failed."""


class NoMatchingAsset(StageError):
    """No release asset matches the configured suffix."""


class DownloadError(StageError):
    """Asset download failed; no partial file is left at the final path."""


class ChecksumPolicyViolation(StageError):
    """Checksum verification was requested but could not be performed."""


class IntegrityFailure(StageError):
    """Downloaded file digest does not match the manifest."""

    def __init__(self, message: str, expected: str = "", actual: str = ""):
        self.expected = expected
        self.actual = actual
        super().__init__(message)


class ExtractError(StageError):
    """Archive could not be extracted into the slot directory."""


class InstallHookFailure(StageError):
    """Install command exited non-zero or timed out."""

    def __init__(self, message: str, returncode: Optional[int] = None):
        self.returncode = returncode
        super().__init__(message)


# Cutover / rollback


class CutoverError(DeployerError):
    """Staged release could not be made live."""


class HealthCheckTimeout(CutoverError):
    """Health endpoint did not report success before the deadline."""


class EntryPointSwitchError(CutoverError):
    """Live entry point symlink could not be replaced."""


class RollbackError(DeployerError):
    """Rollback to the previous slot failed."""


class InvalidRollbackTarget(RollbackError):
    """Previous slot was never staged and cannot be switched to."""
