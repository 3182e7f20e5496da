"""Shared fixtures for the artifact_download test suite.

Every cache, lock, and log file lives under ``tmp_path``; the strategies and
quarantine backends used here come from ``fakes`` so the orchestrator runs
without network access.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, Dict

import pytest
from fakes import ARTIFACT_BYTES, PayloadStrategy, sha256_of

from CaskFetch.ArtifactDownload.download import ArtifactReference
from CaskFetch.ArtifactDownload.settings import (
    ArtifactDownloadSettings,
    invalidate_default_settings,
    load_settings,
)
from CaskFetch.ArtifactDownload.strategies import DEFAULT_REGISTRY, StrategyRegistry


@pytest.fixture(autouse=True)
def _reset_default_settings():
    invalidate_default_settings()
    yield
    invalidate_default_settings()


@pytest.fixture
def make_settings(tmp_path: Path) -> Callable[..., ArtifactDownloadSettings]:
    """Factory for settings rooted in ``tmp_path`` with near-zero backoff."""

    def _make(**locks: Any) -> ArtifactDownloadSettings:
        lock_overrides: Dict[str, Any] = {
            "timeout_sec": 2.0,
            "poll_interval_sec": 0.01,
            "busy_retry_attempts": 3,
            "busy_backoff_base_sec": 0.0,
            "busy_backoff_max_sec": 0.0,
        }
        lock_overrides.update(locks)
        return load_settings(
            use_env=False,
            overrides={
                "cache": {"root": tmp_path / "cache"},
                "locks": lock_overrides,
                "logging": {"emit_json_logs": False, "log_dir": tmp_path / "logs"},
            },
        )

    return _make


@pytest.fixture
def settings(make_settings) -> ArtifactDownloadSettings:
    return make_settings()


@pytest.fixture
def source_artifact(tmp_path: Path) -> Path:
    """A local artifact reachable through a ``file://`` URL."""

    source = tmp_path / "upstream" / "Example App 1.2.dmg"
    source.parent.mkdir(parents=True)
    source.write_bytes(ARTIFACT_BYTES)
    return source


@pytest.fixture
def make_reference(source_artifact: Path) -> Callable[..., ArtifactReference]:
    """Factory for references pointing at ``source_artifact`` by default."""

    def _make(**kwargs: Any) -> ArtifactReference:
        values: Dict[str, Any] = {
            "token": "example-app",
            "version": "1.2",
            "url": source_artifact.as_uri(),
            "sha256": sha256_of(ARTIFACT_BYTES),
            "homepage": "https://example.org/app",
        }
        values.update(kwargs)
        return ArtifactReference(**values)

    return _make


@pytest.fixture
def registry() -> StrategyRegistry:
    """Copy of the default registry with ``fake://`` URLs routed to ``PayloadStrategy``."""

    clone = DEFAULT_REGISTRY.copy()
    clone.register("fake", PayloadStrategy, patterns=[r"^fake://"])
    return clone
