"""Quarantine (untrusted-origin) marking of downloaded artifacts.

The attribute storage itself lives in a platform backend supplied by the
caller; this module decides *whether* to call it.  Marking reflects where a
file came from, not whether it passed verification, so the orchestrator runs
:func:`apply_quarantine` before checksum verification and never rolls it back.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional, Protocol, runtime_checkable

__all__ = [
    "QuarantineIntent",
    "QuarantineContext",
    "QuarantineBackend",
    "UnavailableQuarantine",
    "apply_quarantine",
]

LOGGER = logging.getLogger(__name__)


class QuarantineIntent(Enum):
    """What the caller wants done with the quarantine marking of a download."""

    MARK = "mark"
    RELEASE = "release"
    UNSPECIFIED = "unspecified"

    @classmethod
    def from_flag(cls, flag: Optional[bool]) -> "QuarantineIntent":
        """Translate a ``--[no-]quarantine`` style flag; ``None`` means not given."""
        if flag is None:
            return cls.UNSPECIFIED
        return cls.MARK if flag else cls.RELEASE


@dataclass(slots=True, frozen=True)
class QuarantineContext:
    """Provenance recorded alongside a quarantine marking."""

    token: str
    version: str
    url: str
    homepage: Optional[str] = None
    agent_name: str = "CaskFetch"


@runtime_checkable
class QuarantineBackend(Protocol):
    """Platform capability that stores quarantine attributes."""

    def available(self) -> bool:
        """Return True when the platform supports quarantine attributes."""
        ...

    def mark(self, path: Path, context: QuarantineContext) -> None:
        """Attach an untrusted-origin marking to ``path``."""
        ...

    def release(self, path: Path) -> None:
        """Remove any untrusted-origin marking from ``path``."""
        ...


class UnavailableQuarantine:
    """Backend for platforms without quarantine support.

    Reports itself unavailable and leaves files untouched if called anyway.
    """

    def available(self) -> bool:
        return False

    def mark(self, path: Path, context: QuarantineContext) -> None:
        LOGGER.debug("quarantine unsupported, not marking", extra={"stage": "quarantine", "path": str(path)})

    def release(self, path: Path) -> None:
        LOGGER.debug("quarantine unsupported, not releasing", extra={"stage": "quarantine", "path": str(path)})


def apply_quarantine(
    intent: QuarantineIntent,
    path: Path,
    context: QuarantineContext,
    *,
    backend: QuarantineBackend,
    logger: Optional[logging.Logger] = None,
) -> None:
    """Mark or release ``path`` according to ``intent``.

    ``UNSPECIFIED`` and an unavailable backend are both no-ops.  Errors raised
    by an available backend propagate to the caller unchanged.
    """

    log = logger or LOGGER
    if intent is QuarantineIntent.UNSPECIFIED:
        return
    if not backend.available():
        log.debug(
            "quarantine unavailable, skipping",
            extra={"stage": "quarantine", "cask": context.token, "intent": intent.value},
        )
        return

    if intent is QuarantineIntent.MARK:
        backend.mark(Path(path), context)
    else:
        backend.release(Path(path))
    log.info(
        "quarantine %s",
        "applied" if intent is QuarantineIntent.MARK else "released",
        extra={"stage": "quarantine", "cask": context.token, "path": str(path)},
    )
