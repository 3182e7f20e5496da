"""Checksum parsing, digesting, and verification for downloaded artifacts.

Cask descriptors declare the expected digest either as a bare sha256 hex
string, an ``algorithm:value`` string, a ``{"algorithm", "value"}`` mapping,
or the :data:`NO_CHECK` sentinel for artifacts whose contents change between
releases.  :func:`verify_checksum` turns a local file plus that declaration into
a :class:`VerificationResult`; it never raises for a bad declaration and never
reports success for one.  Raising is left to the orchestrator, which wraps the
outcome with the cask token.

A declaration that is not a usable digest for its algorithm (blank, or a
short value such as ``"abc123"``) is classified as ``MISSING_EXPECTED``, not
``MISMATCH``.  Only a well-formed digest that differs from the file's digest
is a mismatch.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Mapping, Optional, Union

from .errors import ConfigError

__all__ = [
    "NO_CHECK",
    "NoCheck",
    "is_no_check",
    "ExpectedChecksum",
    "VerificationOutcome",
    "VerificationResult",
    "SUPPORTED_ALGORITHMS",
    "parse_checksum",
    "file_digest",
    "verify_checksum",
]

LOGGER = logging.getLogger(__name__)

_CHUNK_SIZE = 1 << 20
_DEFAULT_ALGORITHM = "sha256"

SUPPORTED_ALGORITHMS = {"md5": 32, "sha1": 40, "sha256": 64, "sha512": 128}


class NoCheck(Enum):
    """Sentinel type for casks that opt out of checksum verification."""

    NO_CHECK = ":no_check"

    def __repr__(self) -> str:
        return ":no_check"


NO_CHECK = NoCheck.NO_CHECK


def is_no_check(value: object) -> bool:
    """Return True for the :data:`NO_CHECK` sentinel in either of its spellings."""
    return value is NO_CHECK or (isinstance(value, str) and value.strip() in (NO_CHECK.value, "no_check"))


@dataclass(slots=True, frozen=True)
class ExpectedChecksum:
    """Expected digest declared by a cask."""

    algorithm: str
    value: str

    def to_known_hash(self) -> str:
        """Return the ``algorithm:value`` form."""

        return f"{self.algorithm}:{self.value}"

    def to_mapping(self) -> dict:
        return {"algorithm": self.algorithm, "value": self.value}

    def __str__(self) -> str:
        if self.algorithm == _DEFAULT_ALGORITHM:
            return self.value
        return self.to_known_hash()


ChecksumDeclaration = Union[NoCheck, ExpectedChecksum, str, Mapping[str, str], None]


class VerificationOutcome(Enum):
    """Classification of a verification attempt."""

    VERIFIED = "verified"
    SKIPPED = "skipped"
    MISMATCH = "mismatch"
    MISSING_EXPECTED = "missing_expected"


@dataclass(slots=True, frozen=True)
class VerificationResult:
    """Outcome of :func:`verify_checksum` with both digests for display."""

    outcome: VerificationOutcome
    path: Path
    expected: Optional[str] = None
    actual: Optional[str] = None
    algorithm: Optional[str] = None

    @property
    def ok(self) -> bool:
        """True for outcomes that let the artifact be used."""
        return self.outcome in (VerificationOutcome.VERIFIED, VerificationOutcome.SKIPPED)


def parse_checksum(value: object, *, context: str = "checksum") -> Union[NoCheck, ExpectedChecksum]:
    """Normalize a checksum declaration.

    Args:
        value: Declaration as found on the cask.
        context: Prefix for error messages.

    Returns:
        :data:`NO_CHECK` or a normalized :class:`ExpectedChecksum`.

    Raises:
        ConfigError: If the declaration is missing, of the wrong type, names an
            unsupported algorithm, or is not a hex digest of the right length.

    Examples:
        >>> parse_checksum("sha1:" + "A" * 40)
        ExpectedChecksum(algorithm='sha1', value='aaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaa')
        >>> parse_checksum(":no_check")
        :no_check
    """

    if is_no_check(value):
        return NO_CHECK
    return _parse_expected(value, context=context)


def _parse_expected(value: object, *, context: str) -> ExpectedChecksum:
    if isinstance(value, ExpectedChecksum):
        return _normalize(value.algorithm, value.value, context=context)
    if isinstance(value, str):
        text = value.strip()
        if ":" in text:
            algorithm, _, digest = text.partition(":")
            return _normalize(algorithm, digest, context=context)
        return _normalize(_DEFAULT_ALGORITHM, text, context=context)
    if isinstance(value, Mapping):
        algorithm = value.get("algorithm", _DEFAULT_ALGORITHM)
        digest = value.get("value")
        if not isinstance(algorithm, str):
            raise ConfigError(f"{context}: checksum algorithm must be a string")
        if not isinstance(digest, str):
            raise ConfigError(f"{context}: checksum value must be a string")
        return _normalize(algorithm, digest, context=context)
    if value is None:
        raise ConfigError(f"{context}: no checksum declared")
    raise ConfigError(f"{context}: checksum must be provided as a string or mapping")


def _normalize(algorithm: str, digest: str, *, context: str) -> ExpectedChecksum:
    name = algorithm.strip().lower()
    if name not in SUPPORTED_ALGORITHMS:
        raise ConfigError(f"{context}: unsupported checksum algorithm '{name}'")
    hexdigest = digest.strip().lower()
    if not hexdigest:
        raise ConfigError(f"{context}: checksum value is empty")
    if not re.fullmatch(rf"[0-9a-f]{{{SUPPORTED_ALGORITHMS[name]}}}", hexdigest):
        raise ConfigError(
            f"{context}: {name} checksum must be {SUPPORTED_ALGORITHMS[name]} hexadecimal characters"
        )
    return ExpectedChecksum(algorithm=name, value=hexdigest)


def file_digest(path: Path, algorithm: str = _DEFAULT_ALGORITHM) -> str:
    """Stream ``path`` through ``algorithm`` and return the hex digest."""

    hasher = hashlib.new(algorithm)
    with Path(path).open("rb") as handle:
        for chunk in iter(lambda: handle.read(_CHUNK_SIZE), b""):
            hasher.update(chunk)
    return hasher.hexdigest()


def verify_checksum(
    path: Path,
    expected: ChecksumDeclaration,
    *,
    token: Optional[str] = None,
    logger: Optional[logging.Logger] = None,
) -> VerificationResult:
    """Compare the digest of ``path`` with the declared checksum.

    Args:
        path: Local artifact to digest. Only read, never modified.
        expected: Checksum declaration from the cask.
        token: Cask token for log context.
        logger: Logger receiving the advisory warning for :data:`NO_CHECK`.

    Returns:
        :class:`VerificationResult` classified as ``SKIPPED`` for
        :data:`NO_CHECK`, ``MISSING_EXPECTED`` for an absent or unparseable
        declaration, ``VERIFIED`` or ``MISMATCH`` otherwise.
    """

    log = logger or LOGGER
    path = Path(path)
    if is_no_check(expected):
        log.warning(
            "No checksum defined for Cask '%s', skipping verification.",
            token,
            extra={"stage": "verify", "cask": token, "outcome": VerificationOutcome.SKIPPED.value},
        )
        return VerificationResult(outcome=VerificationOutcome.SKIPPED, path=path)

    try:
        checksum = _parse_expected(expected, context=f"Cask '{token}'")
    except ConfigError as exc:
        actual = file_digest(path)
        log.error(
            "checksum declaration unusable",
            extra={"stage": "verify", "cask": token, "error": str(exc)},
        )
        return VerificationResult(
            outcome=VerificationOutcome.MISSING_EXPECTED,
            path=path,
            expected=None if expected is None else str(expected),
            actual=actual,
            algorithm=_DEFAULT_ALGORITHM,
        )

    actual = file_digest(path, checksum.algorithm)
    matched = hmac.compare_digest(actual.encode("ascii"), checksum.value.encode("ascii"))
    outcome = VerificationOutcome.VERIFIED if matched else VerificationOutcome.MISMATCH
    log.log(
        logging.DEBUG if matched else logging.ERROR,
        "checksum %s",
        outcome.value,
        extra={
            "stage": "verify",
            "cask": token,
            "algorithm": checksum.algorithm,
            "expected": checksum.value,
            "actual": actual,
        },
    )
    return VerificationResult(
        outcome=outcome,
        path=path,
        expected=checksum.value,
        actual=actual,
        algorithm=checksum.algorithm,
    )
