# === NAVMAP v1 ===
# {
#   "module": "CaskFetch.ArtifactDownload.strategies",
#   "purpose": "Download strategy contract, cache helpers, and the strategy resolver registry",
#   "sections": [
#     {"id": "downloadstrategy", "name": "DownloadStrategy", "anchor": "class-downloadstrategy", "kind": "class"},
#     {"id": "abstractdownloadstrategy", "name": "AbstractDownloadStrategy", "anchor": "class-abstractdownloadstrategy", "kind": "class"},
#     {"id": "localfilestrategy", "name": "LocalFileStrategy", "anchor": "class-localfilestrategy", "kind": "class"},
#     {"id": "strategyregistry", "name": "StrategyRegistry", "anchor": "class-strategyregistry", "kind": "class"},
#     {"id": "resolve-strategy", "name": "resolve_strategy", "anchor": "function-resolve-strategy", "kind": "function"},
#     {"id": "load-strategy-plugins", "name": "load_strategy_plugins", "anchor": "function-load-strategy-plugins", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""Download strategies and the resolver that selects them.

A download strategy moves one artifact into the cache and can report or
forget where it put it.  Concrete network transports (curl, git, S3, ...) are
supplied by the installation workflow and registered in a
:class:`StrategyRegistry`; this module provides:

- the :class:`DownloadStrategy` protocol consumed by the orchestrator,
- :class:`AbstractDownloadStrategy`, which gives every transport the same
  content-addressed cache naming, writer lock, and atomic rename-into-place,
- :class:`LocalFileStrategy` for ``file://`` URLs,
- URL detection rules and hint lookup that map a locator to a strategy class.

Resolution is a pure function of ``(locator, using)`` and the registry's
contents; nothing is fetched while resolving.
"""

from __future__ import annotations

import hashlib
import logging
import os
import re
from dataclasses import dataclass
from importlib import metadata
from pathlib import Path, PurePosixPath
from types import MappingProxyType
from typing import (
    Any,
    Callable,
    Dict,
    Iterable,
    List,
    Mapping,
    Optional,
    Pattern,
    Protocol,
    Sequence,
    Type,
    Union,
    runtime_checkable,
)
from urllib.parse import unquote, urlparse
from urllib.request import url2pathname

from .cancellation import CancellationToken
from .errors import CachedArtifactMissingError, UnsupportedTransportError
from .locks import artifact_lock
from .settings import LockSettings

__all__ = [
    "DownloadStrategy",
    "AbstractDownloadStrategy",
    "LocalFileStrategy",
    "StrategyRule",
    "StrategyRegistry",
    "DEFAULT_URL_RULES",
    "DEFAULT_REGISTRY",
    "register_strategy",
    "resolve_strategy",
    "load_strategy_plugins",
]

LOGGER = logging.getLogger(__name__)

_COPY_CHUNK_SIZE = 1 << 20
_INCOMPLETE_SUFFIX = ".incomplete"
_UNSAFE_NAME_CHARS = re.compile(r"[^A-Za-z0-9._,+@-]+")
_KNOWN_DOUBLE_EXTENSIONS = (".tar.gz", ".tar.bz2", ".tar.xz", ".tar.zst", ".pkg.tar.zst")
_PLUGIN_GROUP = "caskfetch.download_strategy"


# --- Strategy Contract ---


@runtime_checkable
class DownloadStrategy(Protocol):
    """Capability that performs one artifact transfer into the cache."""

    def fetch(
        self,
        *,
        timeout: Optional[float] = None,
        cancellation_token: Optional[CancellationToken] = None,
    ) -> None:
        """Transfer the artifact, reusing a completed cache entry when present."""
        ...

    def cached_location(self) -> Path:
        """Return the path of the completed download or raise if there is none."""
        ...

    def clear_cache(self) -> None:
        """Remove cached state for this artifact."""
        ...


StrategyClass = Type[Any]


# --- Cache-Aware Base ---


def _sanitize(component: str) -> str:
    cleaned = _UNSAFE_NAME_CHARS.sub("_", component).strip("._")
    return cleaned or "unknown"


def _extension_for(url: str) -> str:
    name = PurePosixPath(unquote(urlparse(url).path)).name.lower()
    for double in _KNOWN_DOUBLE_EXTENSIONS:
        if name.endswith(double):
            return double
    suffix = PurePosixPath(name).suffix
    if suffix and re.fullmatch(r"\.[a-z0-9]{1,8}", suffix):
        return suffix
    return ""


class AbstractDownloadStrategy:
    """Shared cache handling for download strategies.

    Subclasses implement :meth:`_transfer`, which writes the artifact bytes to
    a temporary path; the base class owns naming, locking, short-circuiting
    on a completed entry, and promotion into place with :func:`os.replace`.

    The cache entry for an artifact is
    ``<cache>/<url digest>--<token>--<version><ext>`` so different URLs for the
    same token and version never collide.
    """

    NAME: str = "abstract"

    def __init__(
        self,
        url: str,
        token: str,
        version: str,
        *,
        cache: Path,
        lock_settings: Optional[LockSettings] = None,
        **specs: Any,
    ) -> None:
        self.url = url
        self.token = token
        self.version = str(version)
        self.cache = Path(cache)
        self.lock_settings = lock_settings or LockSettings()
        self.specs: Mapping[str, Any] = MappingProxyType(dict(specs))

    def __repr__(self) -> str:
        return f"{type(self).__name__}(url={self.url!r}, token={self.token!r}, version={self.version!r})"

    @property
    def cache_filename(self) -> str:
        url_digest = hashlib.sha256(self.url.encode("utf-8")).hexdigest()[:16]
        return f"{url_digest}--{_sanitize(self.token)}--{_sanitize(self.version)}{_extension_for(self.url)}"

    @property
    def artifact_path(self) -> Path:
        """Final cache path of the artifact, whether or not it exists yet."""
        return self.cache / self.cache_filename

    @property
    def incomplete_path(self) -> Path:
        return self.artifact_path.with_name(self.artifact_path.name + _INCOMPLETE_SUFFIX)

    def cached_location(self) -> Path:
        path = self.artifact_path
        if not path.is_file():
            raise CachedArtifactMissingError(path, token=self.token)
        return path

    def fetch(
        self,
        *,
        timeout: Optional[float] = None,
        cancellation_token: Optional[CancellationToken] = None,
    ) -> None:
        """Download into the cache unless a completed entry already exists.

        Args:
            timeout: Caller bound, in seconds, for the transfer.
            cancellation_token: Caller-controlled cooperative cancellation.

        Raises:
            CacheBusyError: If another writer holds the entry past the lock
                timeout or the caller's deadline, whichever comes first.
            DownloadCancelledError: If cancelled or the timeout elapsed mid-transfer.
        """

        if self.artifact_path.is_file():
            LOGGER.info(
                "already downloaded",
                extra={"stage": "fetch", "cask": self.token, "path": str(self.artifact_path)},
            )
            return

        tokens = [cancellation_token] if cancellation_token is not None else []
        if timeout is not None:
            tokens.append(CancellationToken.with_timeout(timeout))

        def check_cancelled() -> None:
            for candidate in tokens:
                candidate.raise_if_cancelled(token=self.token)

        deadlines = [left for left in (candidate.remaining() for candidate in tokens) if left is not None]
        check_cancelled()
        self.cache.mkdir(parents=True, exist_ok=True)
        with artifact_lock(
            self.artifact_path,
            cache_root=self.cache,
            settings=self.lock_settings,
            token=self.token,
            timeout=min(deadlines) if deadlines else None,
        ):
            # Another writer may have finished while we waited for the lock.
            if self.artifact_path.is_file():
                return
            check_cancelled()
            temp_path = self.incomplete_path
            try:
                self._transfer(temp_path, check_cancelled=check_cancelled)
                os.replace(temp_path, self.artifact_path)
            except BaseException:
                temp_path.unlink(missing_ok=True)
                raise
        LOGGER.info(
            "downloaded",
            extra={
                "stage": "fetch",
                "cask": self.token,
                "strategy": self.NAME,
                "path": str(self.artifact_path),
            },
        )

    def clear_cache(self) -> None:
        with artifact_lock(
            self.artifact_path,
            cache_root=self.cache,
            settings=self.lock_settings,
            token=self.token,
        ):
            self.artifact_path.unlink(missing_ok=True)
            self.incomplete_path.unlink(missing_ok=True)
        LOGGER.debug(
            "cache cleared",
            extra={"stage": "cache", "cask": self.token, "path": str(self.artifact_path)},
        )

    def _transfer(self, destination: Path, *, check_cancelled: Callable[[], None]) -> None:
        raise NotImplementedError


class LocalFileStrategy(AbstractDownloadStrategy):
    """Copy an artifact addressed by a ``file://`` URL into the cache."""

    NAME = "file"

    @property
    def source_path(self) -> Path:
        parsed = urlparse(self.url)
        if parsed.scheme != "file":
            return Path(self.url)
        return Path(url2pathname(parsed.path))

    def _transfer(self, destination: Path, *, check_cancelled: Callable[[], None]) -> None:
        with self.source_path.open("rb") as source, destination.open("wb") as target:
            for chunk in iter(lambda: source.read(_COPY_CHUNK_SIZE), b""):
                check_cancelled()
                target.write(chunk)
            target.flush()
            os.fsync(target.fileno())


# --- Resolver ---


@dataclass(frozen=True)
class StrategyRule:
    """URL pattern mapping a locator form to a transport kind."""

    kind: str
    pattern: Pattern[str]

    def matches(self, locator: str) -> bool:
        return bool(self.pattern.search(locator))


def _rule(kind: str, pattern: str) -> StrategyRule:
    return StrategyRule(kind=kind, pattern=re.compile(pattern, re.IGNORECASE))


DEFAULT_URL_RULES: Sequence[StrategyRule] = (
    _rule("git", r"^https?://github\.com/[^/]+/[^/]+\.git$"),
    _rule("git", r"^https?://.+\.git$"),
    _rule("git", r"^git://"),
    _rule("git", r"^git@"),
    _rule("svn", r"^https?://svn\."),
    _rule("svn", r"^svn(\+http)?://"),
    _rule("svn", r"^https?://(.+?\.)?sourceforge\.net/svnroot/"),
    _rule("hg", r"^https?://(.+?\.)?sourceforge\.net/hgweb/"),
    _rule("hg", r"^hg://"),
    _rule("bzr", r"^bzr://"),
    _rule("fossil", r"^fossil://"),
    _rule("s3", r"^s3://"),
    _rule("scp", r"^scp://"),
    _rule("curl", r"^https?://"),
    _rule("file", r"^file://"),
)


def _normalize_kind(value: str) -> str:
    return value.strip().lstrip(":").lower()


def _is_strategy_class(candidate: object) -> bool:
    if not isinstance(candidate, type):
        return False
    if issubclass(candidate, AbstractDownloadStrategy):
        return True
    return all(callable(getattr(candidate, name, None)) for name in ("fetch", "cached_location", "clear_cache"))


class StrategyRegistry:
    """Strategy classes keyed by transport kind plus ordered URL detection rules."""

    def __init__(self, rules: Iterable[StrategyRule] = ()) -> None:
        self._rules: List[StrategyRule] = list(rules)
        self._strategies: Dict[str, StrategyClass] = {}

    @classmethod
    def with_default_rules(cls) -> "StrategyRegistry":
        registry = cls(DEFAULT_URL_RULES)
        registry.register("file", LocalFileStrategy)
        return registry

    def copy(self) -> "StrategyRegistry":
        clone = StrategyRegistry(self._rules)
        clone._strategies = dict(self._strategies)
        return clone

    def register(
        self,
        kind: str,
        strategy_cls: StrategyClass,
        *,
        patterns: Iterable[str] = (),
    ) -> StrategyClass:
        """Register ``strategy_cls`` for ``kind`` and append any URL ``patterns``.

        New patterns are consulted before the built-in ``curl``/``file``
        catch-alls but after previously added rules.
        """

        name = _normalize_kind(kind)
        if not _is_strategy_class(strategy_cls):
            raise TypeError(f"{strategy_cls!r} does not implement fetch/cached_location/clear_cache")
        if name in self._strategies and self._strategies[name] is not strategy_cls:
            LOGGER.warning(
                "overriding download strategy",
                extra={"stage": "resolve", "kind": name, "strategy": strategy_cls.__name__},
            )
        self._strategies[name] = strategy_cls
        new_rules = [_rule(name, pattern) for pattern in patterns]
        if new_rules:
            split = len(self._rules)
            for index, existing in enumerate(self._rules):
                if existing.kind in ("curl", "file"):
                    split = index
                    break
            self._rules[split:split] = new_rules
        return strategy_cls

    def strategy(self, kind: str, *, patterns: Iterable[str] = ()) -> Callable[[StrategyClass], StrategyClass]:
        """Decorator form of :meth:`register`."""

        def deco(cls: StrategyClass) -> StrategyClass:
            return self.register(kind, cls, patterns=patterns)

        return deco

    def kinds(self) -> List[str]:
        return sorted(self._strategies)

    def detect_kind(self, locator: str) -> Optional[str]:
        """Return the transport kind of the first rule matching ``locator``."""

        for rule in self._rules:
            if rule.matches(locator):
                return rule.kind
        return None

    def resolve(
        self,
        locator: str,
        using: Union[None, str, StrategyClass] = None,
        *,
        token: Optional[str] = None,
    ) -> StrategyClass:
        """Select the strategy class for ``locator`` and the optional ``using`` hint.

        Args:
            locator: Source URL of the artifact.
            using: ``None`` to detect from the URL, a registered kind name
                (``"curl"`` or ``":curl"``), or a strategy class.
            token: Cask token for error context.

        Returns:
            Strategy class to instantiate.

        Raises:
            UnsupportedTransportError: If the locator is empty or nothing matches.
        """

        if not isinstance(locator, str) or not locator.strip():
            raise UnsupportedTransportError(str(locator or ""), using, token=token, reason="empty URL")
        locator = locator.strip()

        if using is None:
            kind = self.detect_kind(locator)
            if kind is None:
                raise UnsupportedTransportError(locator, None, token=token)
        elif isinstance(using, str):
            kind = _normalize_kind(using)
        elif _is_strategy_class(using):
            return using
        else:
            raise UnsupportedTransportError(
                locator, using, token=token, reason=f"invalid download strategy hint {using!r}"
            )

        strategy_cls = self._strategies.get(kind)
        if strategy_cls is None:
            raise UnsupportedTransportError(
                locator,
                using,
                token=token,
                reason=f"no download strategy registered for transport '{kind}'",
            )
        LOGGER.debug(
            "resolved download strategy",
            extra={"stage": "resolve", "cask": token, "kind": kind, "strategy": strategy_cls.__name__},
        )
        return strategy_cls


DEFAULT_REGISTRY = StrategyRegistry.with_default_rules()


def register_strategy(kind: str, *, patterns: Iterable[str] = ()) -> Callable[[StrategyClass], StrategyClass]:
    """Decorator registering a strategy class in :data:`DEFAULT_REGISTRY`."""

    return DEFAULT_REGISTRY.strategy(kind, patterns=patterns)


def resolve_strategy(
    locator: str,
    using: Union[None, str, StrategyClass] = None,
    *,
    registry: Optional[StrategyRegistry] = None,
    token: Optional[str] = None,
) -> StrategyClass:
    """Resolve a strategy class using ``registry`` (default: :data:`DEFAULT_REGISTRY`)."""

    return (registry or DEFAULT_REGISTRY).resolve(locator, using, token=token)


def load_strategy_plugins(
    registry: Optional[StrategyRegistry] = None,
    *,
    logger: Optional[logging.Logger] = None,
) -> List[str]:
    """Register strategies advertised under the ``caskfetch.download_strategy`` entry point group.

    Each entry point loads a strategy class; its ``NAME`` attribute (or the
    entry point name) becomes the transport kind and an optional
    ``URL_PATTERNS`` attribute adds detection rules.

    Returns:
        Kinds registered by this call.
    """

    target = registry or DEFAULT_REGISTRY
    log = logger or LOGGER
    registered: List[str] = []
    for entry in metadata.entry_points().select(group=_PLUGIN_GROUP):
        try:
            strategy_cls = entry.load()
            kind = getattr(strategy_cls, "NAME", None) or entry.name
            target.register(kind, strategy_cls, patterns=getattr(strategy_cls, "URL_PATTERNS", ()))
        except Exception as exc:  # pragma: no cover - plugin failures are unpredictable
            log.warning(
                "download strategy plugin failed",
                extra={"stage": "init", "plugin": entry.name, "error": str(exc)},
            )
            continue
        registered.append(_normalize_kind(kind))
        log.info("download strategy plugin registered", extra={"stage": "init", "kind": kind})
    return registered
