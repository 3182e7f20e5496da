# === NAVMAP v1 ===
# {
#   "module": "CaskFetch.ArtifactDownload.locks",
#   "purpose": "Advisory file locks serialising writers of a cached artifact",
#   "sections": [
#     {"id": "artifact-lock", "name": "artifact_lock", "anchor": "function-artifact-lock", "kind": "function"},
#     {"id": "lock-metrics-snapshot", "name": "lock_metrics_snapshot", "anchor": "function-lock-metrics-snapshot", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""File-based locking for cached artifacts.

Responsibilities
----------------
- Map a cached artifact path to a lock file under ``<cache root>/.locks`` so
  concurrent installs of the same cask have at most one writer.
- Translate :class:`filelock.Timeout` into :class:`CacheBusyError`, which the
  orchestrator treats as a retryable wait.
- Record acquisition and hold timings for troubleshooting contention.

Design Notes
------------
- Locks default to :class:`filelock.FileLock`; ``LockSettings.use_soft_locks``
  switches to :class:`filelock.SoftFileLock` for filesystems without ``flock``.
- Lock files are named after a digest of the resolved target path, which keeps
  them short and independent of the artifact's file name.
"""

from __future__ import annotations

import contextlib
import hashlib
import logging
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Union

from filelock import FileLock, SoftFileLock, Timeout

from .errors import CacheBusyError
from .settings import LockSettings

__all__ = ["LOCK_DIR_NAME", "artifact_lock", "lock_file_for", "lock_metrics_snapshot"]

LOGGER = logging.getLogger(__name__)
logging.getLogger("filelock").setLevel(logging.INFO)

LOCK_DIR_NAME = ".locks"
_DEFAULT_LOCK_MODE = 0o644


@dataclass
class _LockMetrics:
    acquire_total: int = 0
    timeout_total: int = 0
    wait_ms_samples: List[float] = field(default_factory=list)
    hold_ms_samples: List[float] = field(default_factory=list)


_metrics_guard = threading.RLock()
_metrics = _LockMetrics()


def _hash_path(target: Path) -> str:
    return hashlib.sha256(str(target).encode("utf-8")).hexdigest()[:24]


def lock_file_for(target: Path, cache_root: Path) -> Path:
    """Return the lock file guarding ``target`` inside ``cache_root``."""

    resolved = Path(target).expanduser().resolve(strict=False)
    return Path(cache_root) / LOCK_DIR_NAME / f"artifact.{_hash_path(resolved)}.lock"


def _p95(samples: List[float]) -> float:
    ordered = sorted(samples)
    if not ordered:
        return 0.0
    return ordered[int((len(ordered) - 1) * 0.95)]


@contextlib.contextmanager
def artifact_lock(
    target: Path,
    *,
    cache_root: Path,
    settings: Optional[LockSettings] = None,
    token: Optional[str] = None,
    timeout: Optional[float] = None,
) -> Iterator[Path]:
    """Hold the writer lock for a cached artifact.

    Args:
        target: Final cache path of the artifact being written or removed.
        cache_root: Cache root whose ``.locks`` directory holds the lock file.
        settings: Lock timeout, poll interval, and lock flavour.
        token: Cask token for error context.
        timeout: Upper bound on the wait, in seconds; the shorter of this and
            ``settings.timeout_sec`` applies.

    Yields:
        Path of the lock file while the lock is held.

    Raises:
        CacheBusyError: If another writer holds the lock past the timeout.
    """

    settings = settings or LockSettings()
    lock_file = lock_file_for(target, cache_root)
    lock_file.parent.mkdir(parents=True, exist_ok=True)
    lock_cls = SoftFileLock if settings.use_soft_locks else FileLock
    wait_sec = settings.timeout_sec if timeout is None else max(min(settings.timeout_sec, timeout), 0.0)
    lock = lock_cls(str(lock_file), timeout=wait_sec, mode=_DEFAULT_LOCK_MODE, thread_local=False)

    start = time.monotonic()
    try:
        lock.acquire(timeout=wait_sec, poll_interval=settings.poll_interval_sec)
    except Timeout as exc:
        waited = time.monotonic() - start
        with _metrics_guard:
            _metrics.timeout_total += 1
            _metrics.wait_ms_samples.append(waited * 1000.0)
        LOGGER.info(
            "cache entry busy",
            extra={"stage": "lock", "cask": token, "lock_file": str(lock_file), "wait_sec": round(waited, 3)},
        )
        raise CacheBusyError(Path(target), waited_sec=waited, token=token) from exc

    acquired_at = time.monotonic()
    wait_ms = (acquired_at - start) * 1000.0
    LOGGER.debug(
        "lock acquired",
        extra={"stage": "lock", "cask": token, "lock_file": str(lock_file), "wait_ms": round(wait_ms, 3)},
    )
    try:
        yield lock_file
    finally:
        lock.release()
        hold_ms = (time.monotonic() - acquired_at) * 1000.0
        with _metrics_guard:
            _metrics.acquire_total += 1
            _metrics.wait_ms_samples.append(wait_ms)
            _metrics.hold_ms_samples.append(hold_ms)


def lock_metrics_snapshot(*, reset: bool = False) -> Dict[str, Union[int, float]]:
    """Return collected lock metrics, optionally clearing them."""

    global _metrics  # noqa: PLW0603

    with _metrics_guard:
        snapshot: Dict[str, Union[int, float]] = {
            "acquire_total": _metrics.acquire_total,
            "timeout_total": _metrics.timeout_total,
            "wait_ms_p95": _p95(_metrics.wait_ms_samples),
            "hold_ms_p95": _p95(_metrics.hold_ms_samples),
        }
        if reset:
            _metrics = _LockMetrics()
        return snapshot
