"""Exception hierarchy for the cask artifact download-and-verify pipeline.

Every failure that leaves :class:`~CaskFetch.ArtifactDownload.download.ArtifactDownload`
is an :class:`ArtifactDownloadError` carrying the cask token, so calling
install/uninstall layers can render a message without digging through
transport or filesystem exceptions.  Lower level failures (lock contention,
missing cache entries, cooperative cancellation) have their own types so
strategies and the orchestrator can react to them before they are wrapped.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

__all__ = [
    "ArtifactDownloadError",
    "UnsupportedTransportError",
    "FetchFailedError",
    "QuarantineFailedError",
    "ChecksumMissingError",
    "ChecksumMismatchError",
    "ArtifactReadError",
    "DownloadStateError",
    "CacheBusyError",
    "CachedArtifactMissingError",
    "DownloadCancelledError",
    "ConfigError",
    "get_actionable_error_message",
]


class ArtifactDownloadError(RuntimeError):
    """Base exception for cask artifact download failures."""

    def __init__(self, message: str, *, token: Optional[str] = None) -> None:
        super().__init__(message)
        self.token = token


class UnsupportedTransportError(ArtifactDownloadError):
    """Raised when no download strategy matches a locator and transport hint."""

    def __init__(
        self,
        locator: str,
        using: object = None,
        *,
        token: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> None:
        self.locator = locator
        self.using = using
        subject = f"Cask '{token}'" if token else "artifact"
        if reason:
            detail = reason
        elif using is not None:
            detail = f"unknown download strategy {using!r}"
        else:
            detail = "no download strategy matches the URL"
        super().__init__(f"Cannot download {subject} from {locator!r}: {detail}", token=token)


class FetchFailedError(ArtifactDownloadError):
    """Raised when the download strategy fails to produce a cached artifact."""

    def __init__(self, token: str, cause: BaseException) -> None:
        self.cause = cause
        super().__init__(f"Download failed on Cask '{token}' with message: {cause}", token=token)


class QuarantineFailedError(ArtifactDownloadError):
    """Raised when a supported quarantine backend fails to mark or release a file."""

    def __init__(self, token: str, path: Path, cause: BaseException) -> None:
        self.path = Path(path)
        self.cause = cause
        super().__init__(
            f"Failed to update quarantine attributes of {self.path} for Cask '{token}': {cause}",
            token=token,
        )


class ChecksumMissingError(ArtifactDownloadError):
    """Raised when a checksum is required but absent or unparseable."""

    def __init__(
        self,
        token: str,
        expected: object = None,
        actual: Optional[str] = None,
    ) -> None:
        self.expected = expected
        self.actual = actual
        message = f"Cask '{token}' requires a checksum"
        if expected not in (None, ""):
            message = f"Cask '{token}' declares an unusable checksum {expected!r}"
        if actual:
            message += f"; the downloaded file has sha256 {actual}"
        super().__init__(message, token=token)


class ChecksumMismatchError(ArtifactDownloadError):
    """Raised when the downloaded artifact does not match the declared checksum."""

    def __init__(
        self,
        token: str,
        expected: str,
        actual: str,
        path: Optional[Path] = None,
    ) -> None:
        self.expected = expected
        self.actual = actual
        self.path = Path(path) if path is not None else None
        lines = [
            f"Checksum for Cask '{token}' does not match.",
            f"Expected: {expected}",
            f"  Actual: {actual}",
        ]
        if self.path is not None:
            lines.append(f"    File: {self.path}")
        lines.append(
            "To retry an incomplete download, clear the cached file and fetch again."
        )
        super().__init__("\n".join(lines), token=token)


class ArtifactReadError(ArtifactDownloadError):
    """Raised when a fetched artifact cannot be read for verification."""

    def __init__(self, token: str, path: Path, cause: BaseException) -> None:
        self.path = Path(path)
        self.cause = cause
        super().__init__(
            f"Cannot read downloaded file {self.path} of Cask '{token}': {cause}",
            token=token,
        )


class DownloadStateError(ArtifactDownloadError):
    """Raised when an orchestrator is reused after reaching a terminal state."""


class CacheBusyError(ArtifactDownloadError):
    """Raised when another writer holds the lock for a cached artifact."""

    def __init__(self, path: Path, *, waited_sec: float, token: Optional[str] = None) -> None:
        self.path = Path(path)
        self.waited_sec = waited_sec
        super().__init__(
            f"Cache entry {self.path} is locked by another download (waited {waited_sec:.1f}s)",
            token=token,
        )


class CachedArtifactMissingError(ArtifactDownloadError):
    """Raised by strategies when no completed download exists in the cache."""

    def __init__(self, path: Path, *, token: Optional[str] = None) -> None:
        self.path = Path(path)
        super().__init__(f"No cached download at {self.path}", token=token)


class DownloadCancelledError(ArtifactDownloadError):
    """Raised when a caller-supplied cancellation token stops a fetch."""


class ConfigError(RuntimeError):
    """Raised when settings files, overrides, or descriptor fields are invalid."""


def get_actionable_error_message(error: BaseException) -> str:
    """Return a short remediation hint for ``error``.

    The calling layer shows this below the error message itself.

    Examples:
        >>> get_actionable_error_message(DownloadStateError("used", token="x"))
        'Create a new ArtifactDownload for each fetch attempt.'
    """

    if isinstance(error, UnsupportedTransportError):
        return "Register a download strategy for this URL scheme or pass a supported 'using' hint."
    if isinstance(error, ChecksumMismatchError):
        return (
            "The download may be corrupted or the upstream file changed; "
            "clear the cache and retry, then update the declared checksum if the change is legitimate."
        )
    if isinstance(error, ChecksumMissingError):
        return "Declare a sha256 checksum or mark the cask as :no_check."
    if isinstance(error, ArtifactReadError):
        return "The cached file is missing or unreadable; clear the cache and fetch again."
    if isinstance(error, QuarantineFailedError):
        return "Check permissions on the cache directory or disable quarantine for this install."
    if isinstance(error, FetchFailedError):
        if isinstance(error.cause, CacheBusyError):
            return "Another install is downloading the same artifact; wait for it to finish."
        if isinstance(error.cause, DownloadCancelledError):
            return "The download was cancelled; start a new attempt when ready."
        return "Check network connectivity and the artifact URL, then retry."
    if isinstance(error, DownloadStateError):
        return "Create a new ArtifactDownload for each fetch attempt."
    return "Inspect the error details and retry."
