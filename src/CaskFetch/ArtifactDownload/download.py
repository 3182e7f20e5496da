# === NAVMAP v1 ===
# {
#   "module": "CaskFetch.ArtifactDownload.download",
#   "purpose": "Fetch, quarantine, and verify one cask artifact",
#   "sections": [
#     {"id": "artifactreference", "name": "ArtifactReference", "anchor": "class-artifactreference", "kind": "class"},
#     {"id": "downloadstate", "name": "DownloadState", "anchor": "class-downloadstate", "kind": "class"},
#     {"id": "artifactdownload", "name": "ArtifactDownload", "anchor": "class-artifactdownload", "kind": "class"}
#   ]
# }
# === /NAVMAP ===

"""Download orchestration for cask artifacts.

:class:`ArtifactDownload` runs one fetch attempt through a fixed sequence::

    IDLE -> FETCHING -> MARKING -> VERIFYING -> DONE
                 \\-----------\\-----------\\--> FAILED

Marking is skipped when no quarantine intent was given and verification is
skipped when the caller opts out (cache warming, for example).  Every error
leaving the orchestrator is an :class:`ArtifactDownloadError` that carries the
cask token; transport and filesystem exceptions are chained as ``__cause__``.
A file that fails verification stays in the cache with its quarantine
marking so the caller can show it or clear it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Any, List, Mapping, Optional, Union

from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    stop_after_delay,
    wait_exponential,
)

from .cancellation import CancellationToken
from .checksums import (
    ChecksumDeclaration,
    VerificationOutcome,
    VerificationResult,
    is_no_check,
    verify_checksum,
)
from .errors import (
    ArtifactDownloadError,
    ArtifactReadError,
    CacheBusyError,
    CachedArtifactMissingError,
    ChecksumMismatchError,
    ChecksumMissingError,
    DownloadStateError,
    FetchFailedError,
    QuarantineFailedError,
    UnsupportedTransportError,
)
from .logging_config import LOGGER_NAME, CorrelationAdapter, generate_correlation_id
from .quarantine import (
    QuarantineBackend,
    QuarantineContext,
    QuarantineIntent,
    UnavailableQuarantine,
    apply_quarantine,
)
from .settings import ArtifactDownloadSettings, get_default_settings
from .strategies import AbstractDownloadStrategy, DownloadStrategy, StrategyRegistry, resolve_strategy

__all__ = ["ArtifactReference", "DownloadState", "ArtifactDownload"]

LOGGER = logging.getLogger(LOGGER_NAME)


@dataclass(frozen=True)
class ArtifactReference:
    """What to download for a cask.

    Attributes:
        token: Cask token, e.g. ``"firefox"``.
        version: Cask version string.
        url: Source locator of the artifact.
        sha256: Expected checksum declaration, or :data:`NO_CHECK`.
        using: Transport hint (kind name or strategy class); ``None`` detects from the URL.
        specs: Transport-specific options forwarded to the strategy.
        homepage: Cask homepage, recorded as quarantine provenance.
    """

    token: str
    version: str
    url: str
    sha256: ChecksumDeclaration = None
    using: Union[None, str, type] = None
    specs: Mapping[str, Any] = field(default_factory=dict)
    homepage: Optional[str] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "specs", MappingProxyType(dict(self.specs)))

    def __str__(self) -> str:
        return self.token


class DownloadState(Enum):
    """States of a single fetch attempt."""

    IDLE = "idle"
    FETCHING = "fetching"
    MARKING = "marking"
    VERIFYING = "verifying"
    DONE = "done"
    FAILED = "failed"


_TERMINAL_STATES = frozenset({DownloadState.DONE, DownloadState.FAILED})


class ArtifactDownload:
    """Fetch, quarantine, and verify the artifact of one cask.

    Instances are single-use: after :meth:`fetch_and_verify` reaches ``DONE``
    or ``FAILED`` a new instance is needed for another attempt.
    :meth:`clear_cache` and :meth:`cached_location_if_present` stay usable.

    Usage::

        download = ArtifactDownload(reference, quarantine=QuarantineIntent.MARK)
        path = download.fetch_and_verify()
    """

    def __init__(
        self,
        reference: ArtifactReference,
        *,
        quarantine: Union[QuarantineIntent, Optional[bool]] = QuarantineIntent.UNSPECIFIED,
        settings: Optional[ArtifactDownloadSettings] = None,
        registry: Optional[StrategyRegistry] = None,
        quarantine_backend: Optional[QuarantineBackend] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.reference = reference
        self.quarantine = (
            quarantine if isinstance(quarantine, QuarantineIntent) else QuarantineIntent.from_flag(quarantine)
        )
        self.settings = settings or get_default_settings()
        self.registry = registry
        self.quarantine_backend: QuarantineBackend = quarantine_backend or UnavailableQuarantine()
        self.correlation_id = generate_correlation_id()
        self.log = CorrelationAdapter(
            logger or LOGGER,
            {"cask": reference.token, "correlation_id": self.correlation_id},
        )
        self.state = DownloadState.IDLE
        self.history: List[DownloadState] = [DownloadState.IDLE]
        self.failure: Optional[ArtifactDownloadError] = None
        self.verification: Optional[VerificationResult] = None
        self._downloader: Optional[DownloadStrategy] = None

    def __repr__(self) -> str:
        return f"ArtifactDownload(token={self.reference.token!r}, state={self.state.value!r})"

    # --- Strategy ---

    @property
    def downloader(self) -> DownloadStrategy:
        """Strategy for this reference, resolved and built on first access."""

        if self._downloader is None:
            ref = self.reference
            strategy_cls = resolve_strategy(ref.url, ref.using, registry=self.registry, token=ref.token)
            kwargs = dict(ref.specs)
            if isinstance(strategy_cls, type) and issubclass(strategy_cls, AbstractDownloadStrategy):
                kwargs["lock_settings"] = self.settings.locks
            try:
                self._downloader = strategy_cls(
                    ref.url, ref.token, ref.version, cache=self.settings.cache.root, **kwargs
                )
            except TypeError as exc:
                raise UnsupportedTransportError(
                    ref.url,
                    ref.using,
                    token=ref.token,
                    reason=f"cannot configure {strategy_cls.__name__}: {exc}",
                ) from exc
        return self._downloader

    # --- Public operations ---

    def fetch_and_verify(
        self,
        verify: bool = True,
        *,
        timeout: Optional[float] = None,
        cancellation_token: Optional[CancellationToken] = None,
    ) -> Path:
        """Run the fetch attempt and return the local artifact path.

        Args:
            verify: Verify the checksum after fetching.
            timeout: Caller bound, in seconds, passed through to the transfer.
            cancellation_token: Caller-controlled cancellation passed through to the transfer.

        Returns:
            Path to the cached artifact.

        Raises:
            UnsupportedTransportError: If no strategy matches the reference.
            FetchFailedError: If the transfer fails, is cancelled, or the cache stays busy.
            QuarantineFailedError: If an available quarantine backend fails.
            ChecksumMismatchError: If the digest differs from the declaration.
            ChecksumMissingError: If the declaration is absent or unparseable.
            ArtifactReadError: If the fetched file cannot be read for verification.
            DownloadStateError: If this instance already ran.
        """

        if self.state is not DownloadState.IDLE:
            raise DownloadStateError(
                f"Download of Cask '{self.reference.token}' already {self.state.value}",
                token=self.reference.token,
            )

        try:
            self._transition(DownloadState.FETCHING)
            path = self._fetch(timeout=timeout, cancellation_token=cancellation_token)

            if self.quarantine is not QuarantineIntent.UNSPECIFIED:
                self._transition(DownloadState.MARKING)
                self._apply_quarantine(path)

            if verify:
                self._transition(DownloadState.VERIFYING)
                self.verify_download_integrity(path)
        except ArtifactDownloadError as exc:
            self.failure = exc
            self._transition(DownloadState.FAILED)
            raise
        except Exception as exc:
            failure = ArtifactDownloadError(
                f"Download of Cask '{self.reference.token}' failed while {self.state.value}: {exc}",
                token=self.reference.token,
            )
            self.failure = failure
            self._transition(DownloadState.FAILED)
            raise failure from exc

        self._transition(DownloadState.DONE)
        return path

    def verify_download_integrity(self, path: Path) -> VerificationResult:
        """Verify ``path`` against the reference's checksum declaration.

        Raises:
            ChecksumMismatchError: If the digests differ.
            ChecksumMissingError: If the declaration is absent or unparseable.
            ArtifactReadError: If ``path`` cannot be read.
        """

        ref = self.reference
        if not is_no_check(ref.sha256):
            self.log.info("Verifying checksum for Cask '%s'.", ref.token, extra={"stage": "verify"})
        try:
            result = verify_checksum(path, ref.sha256, token=ref.token, logger=self.log)
        except OSError as exc:
            self.log.error("artifact unreadable", extra={"stage": "verify", "path": str(path), "error": str(exc)})
            raise ArtifactReadError(ref.token, path, exc) from exc
        self.verification = result
        if result.outcome is VerificationOutcome.MISMATCH:
            raise ChecksumMismatchError(ref.token, result.expected, result.actual, result.path)
        if result.outcome is VerificationOutcome.MISSING_EXPECTED:
            raise ChecksumMissingError(ref.token, ref.sha256, result.actual)
        return result

    def clear_cache(self) -> None:
        """Remove this reference's cached artifact."""

        try:
            self.downloader.clear_cache()
        except ArtifactDownloadError:
            raise
        except Exception as exc:
            raise ArtifactDownloadError(
                f"Failed to clear cached download of Cask '{self.reference.token}': {exc}",
                token=self.reference.token,
            ) from exc
        self.log.info("cached download removed", extra={"stage": "cache"})

    def cached_location_if_present(self) -> Optional[Path]:
        """Return the cached artifact path, or None when nothing is cached."""

        try:
            return self.downloader.cached_location()
        except (CachedArtifactMissingError, FileNotFoundError):
            return None
        except ArtifactDownloadError:
            raise
        except Exception as exc:
            raise ArtifactDownloadError(
                f"Failed to locate cached download of Cask '{self.reference.token}': {exc}",
                token=self.reference.token,
            ) from exc

    # --- Steps ---

    def _transition(self, state: DownloadState) -> None:
        if self.state in _TERMINAL_STATES:
            raise DownloadStateError(
                f"Download of Cask '{self.reference.token}' already {self.state.value}",
                token=self.reference.token,
            )
        self.log.debug(
            "state transition",
            extra={"stage": "state", "from_state": self.state.value, "to_state": state.value},
        )
        self.state = state
        self.history.append(state)

    def _fetch(
        self,
        *,
        timeout: Optional[float],
        cancellation_token: Optional[CancellationToken],
    ) -> Path:
        downloader = self.downloader
        token = self.reference.token
        locks = self.settings.locks
        # One deadline for the whole step, shared by every busy-cache attempt.
        deadline = CancellationToken.with_timeout(timeout) if timeout is not None else None
        backoff = wait_exponential(multiplier=locks.busy_backoff_base_sec, max=locks.busy_backoff_max_sec)

        def _attempt() -> Path:
            if cancellation_token is not None:
                cancellation_token.raise_if_cancelled(token=token)
            remaining = None
            if deadline is not None:
                deadline.raise_if_cancelled(token=token)
                remaining = deadline.remaining()
            downloader.fetch(timeout=remaining, cancellation_token=cancellation_token)
            return downloader.cached_location()

        def _wait(retry_state: RetryCallState) -> float:
            delay = backoff(retry_state)
            if deadline is not None:
                delay = min(delay, deadline.remaining())
            return delay

        def _on_busy(retry_state: RetryCallState) -> None:
            self.log.warning(
                "cache entry busy, waiting for other download",
                extra={
                    "stage": "fetch",
                    "attempt": retry_state.attempt_number,
                    "sleep_sec": round(retry_state.next_action.sleep, 2) if retry_state.next_action else None,
                },
            )

        stop = stop_after_attempt(locks.busy_retry_attempts)
        if timeout is not None:
            stop = stop | stop_after_delay(timeout)
        retrying = Retrying(
            retry=retry_if_exception_type(CacheBusyError),
            stop=stop,
            wait=_wait,
            before_sleep=_on_busy,
            reraise=True,
        )
        try:
            path = retrying(_attempt)
        except Exception as exc:
            self.log.error("download failed", extra={"stage": "fetch", "error": str(exc)})
            raise FetchFailedError(token, exc) from exc
        self.log.info("artifact available", extra={"stage": "fetch", "path": str(path)})
        return Path(path)

    def _apply_quarantine(self, path: Path) -> None:
        ref = self.reference
        context = QuarantineContext(
            token=ref.token,
            version=ref.version,
            url=ref.url,
            homepage=ref.homepage,
            agent_name=self.settings.quarantine.agent_name,
        )
        try:
            apply_quarantine(self.quarantine, path, context, backend=self.quarantine_backend, logger=self.log)
        except Exception as exc:
            self.log.error("quarantine failed", extra={"stage": "quarantine", "error": str(exc)})
            raise QuarantineFailedError(ref.token, path, exc) from exc
