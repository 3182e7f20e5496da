"""In-process strategies and quarantine backends for the artifact_download tests."""

from __future__ import annotations

import hashlib
import time
from pathlib import Path
from typing import Any, Callable, List, Optional, Tuple

from CaskFetch.ArtifactDownload.errors import CacheBusyError, CachedArtifactMissingError
from CaskFetch.ArtifactDownload.quarantine import QuarantineContext
from CaskFetch.ArtifactDownload.strategies import AbstractDownloadStrategy

ARTIFACT_BYTES = b"CaskFetch test artifact\n" * 64


def sha256_of(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


class PayloadStrategy(AbstractDownloadStrategy):
    """Strategy writing ``specs["payload"]`` instead of talking to a server.

    ``specs["transfers"]`` (a list) records every transfer, ``specs["delay"]``
    slows the transfer down and ``specs["error"]`` is raised mid-transfer.
    """

    NAME = "fake"

    def _transfer(self, destination: Path, *, check_cancelled: Callable[[], None]) -> None:
        transfers = self.specs.get("transfers")
        if transfers is not None:
            transfers.append(self.url)
        delay = self.specs.get("delay", 0.0)
        if delay:
            time.sleep(delay)
        check_cancelled()
        error = self.specs.get("error")
        if error is not None:
            destination.write_bytes(b"partial")
            raise error
        destination.write_bytes(self.specs.get("payload", ARTIFACT_BYTES))


class FlakyCacheStrategy:
    """Duck-typed strategy reporting a busy cache ``busy_times`` times before succeeding."""

    def __init__(self, url: str, token: str, version: str, *, cache: Path, busy_times: int = 1, **_: Any):
        self.url = url
        self.token = token
        self.path = Path(cache) / f"{token}-{version}.bin"
        self.busy_times = busy_times
        self.calls = 0
        self.timeouts: List[Optional[float]] = []

    def fetch(self, *, timeout=None, cancellation_token=None) -> None:
        self.calls += 1
        self.timeouts.append(timeout)
        if self.calls <= self.busy_times:
            raise CacheBusyError(self.path, waited_sec=0.0, token=self.token)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_bytes(ARTIFACT_BYTES)

    def cached_location(self) -> Path:
        if not self.path.is_file():
            raise CachedArtifactMissingError(self.path, token=self.token)
        return self.path

    def clear_cache(self) -> None:
        self.path.unlink(missing_ok=True)


class RecordingQuarantine:
    """Quarantine backend that records calls into a shared event log."""

    def __init__(
        self,
        events: Optional[List[Tuple[str, Any]]] = None,
        *,
        available: bool = True,
        error: Optional[BaseException] = None,
    ) -> None:
        self.events: List[Tuple[str, Any]] = events if events is not None else []
        self._available = available
        self._error = error
        self.contexts: List[QuarantineContext] = []

    def available(self) -> bool:
        return self._available

    def mark(self, path: Path, context: QuarantineContext) -> None:
        self.events.append(("mark", Path(path)))
        self.contexts.append(context)
        if self._error is not None:
            raise self._error

    def release(self, path: Path) -> None:
        self.events.append(("release", Path(path)))
        if self._error is not None:
            raise self._error


class LocationStrategy:
    """Duck-typed strategy whose ``cached_location`` misbehaves on purpose.

    ``location`` selects the behaviour: ``"missing"`` reports a path that does
    not exist, ``"directory"`` reports a directory and ``"error"`` raises.
    """

    def __init__(self, url: str, token: str, version: str, *, cache: Path, location: str = "missing", **_: Any):
        self.cache = Path(cache)
        self.location = location

    def fetch(self, *, timeout=None, cancellation_token=None) -> None:
        self.cache.mkdir(parents=True, exist_ok=True)

    def cached_location(self) -> Path:
        if self.location == "error":
            raise RuntimeError("strategy state corrupted")
        if self.location == "directory":
            target = self.cache / "unpacked"
            target.mkdir(parents=True, exist_ok=True)
            return target
        return self.cache / "gone.bin"

    def clear_cache(self) -> None:
        pass
