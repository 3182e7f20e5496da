"""Public API for downloading, quarantining, and verifying cask artifacts.

Installation workflows build an :class:`ArtifactReference` from a parsed cask,
hand it to :class:`ArtifactDownload`, and receive either the verified cached
path or an :class:`ArtifactDownloadError` carrying the cask token.
"""

from __future__ import annotations

from .cancellation import CancellationToken
from .checksums import (
    NO_CHECK,
    ExpectedChecksum,
    VerificationOutcome,
    VerificationResult,
    file_digest,
    parse_checksum,
    verify_checksum,
)
from .download import ArtifactDownload, ArtifactReference, DownloadState
from .errors import (
    ArtifactDownloadError,
    ArtifactReadError,
    CacheBusyError,
    CachedArtifactMissingError,
    ChecksumMismatchError,
    ChecksumMissingError,
    ConfigError,
    DownloadCancelledError,
    DownloadStateError,
    FetchFailedError,
    QuarantineFailedError,
    UnsupportedTransportError,
    get_actionable_error_message,
)
from .logging_config import setup_logging
from .quarantine import (
    QuarantineBackend,
    QuarantineContext,
    QuarantineIntent,
    UnavailableQuarantine,
    apply_quarantine,
)
from .settings import ArtifactDownloadSettings, get_default_settings, load_settings
from .strategies import (
    DEFAULT_REGISTRY,
    AbstractDownloadStrategy,
    DownloadStrategy,
    LocalFileStrategy,
    StrategyRegistry,
    load_strategy_plugins,
    register_strategy,
    resolve_strategy,
)

__version__ = "0.3.0"

__all__ = [
    "__version__",
    "ArtifactDownload",
    "ArtifactReference",
    "DownloadState",
    "CancellationToken",
    "NO_CHECK",
    "ExpectedChecksum",
    "VerificationOutcome",
    "VerificationResult",
    "file_digest",
    "parse_checksum",
    "verify_checksum",
    "ArtifactDownloadError",
    "ArtifactReadError",
    "CacheBusyError",
    "CachedArtifactMissingError",
    "ChecksumMismatchError",
    "ChecksumMissingError",
    "ConfigError",
    "DownloadCancelledError",
    "DownloadStateError",
    "FetchFailedError",
    "QuarantineFailedError",
    "UnsupportedTransportError",
    "get_actionable_error_message",
    "setup_logging",
    "QuarantineBackend",
    "QuarantineContext",
    "QuarantineIntent",
    "UnavailableQuarantine",
    "apply_quarantine",
    "ArtifactDownloadSettings",
    "get_default_settings",
    "load_settings",
    "DEFAULT_REGISTRY",
    "AbstractDownloadStrategy",
    "DownloadStrategy",
    "LocalFileStrategy",
    "StrategyRegistry",
    "load_strategy_plugins",
    "register_strategy",
    "resolve_strategy",
]
