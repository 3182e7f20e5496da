"""Artifact lock files and contention metrics."""

from __future__ import annotations

import time

import pytest

from CaskFetch.ArtifactDownload.errors import CacheBusyError
from CaskFetch.ArtifactDownload.locks import (
    LOCK_DIR_NAME,
    artifact_lock,
    lock_file_for,
    lock_metrics_snapshot,
)
from CaskFetch.ArtifactDownload.settings import LockSettings


@pytest.fixture(autouse=True)
def _reset_metrics():
    lock_metrics_snapshot(reset=True)
    yield
    lock_metrics_snapshot(reset=True)


def test_lock_file_lives_under_cache_root(tmp_path):
    target = tmp_path / "cache" / "abc--app--1.0.zip"
    lock_file = lock_file_for(target, tmp_path / "cache")
    assert lock_file.parent == tmp_path / "cache" / LOCK_DIR_NAME
    assert lock_file.name.startswith("artifact.") and lock_file.suffix == ".lock"
    assert lock_file == lock_file_for(target, tmp_path / "cache")
    assert lock_file != lock_file_for(target.with_name("other.zip"), tmp_path / "cache")


@pytest.mark.parametrize("use_soft_locks", [False, True])
def test_lock_is_exclusive(tmp_path, use_soft_locks):
    settings = LockSettings(timeout_sec=0.05, poll_interval_sec=0.01, use_soft_locks=use_soft_locks)
    target = tmp_path / "App.zip"
    with artifact_lock(target, cache_root=tmp_path, settings=settings) as lock_file:
        assert lock_file.parent.name == LOCK_DIR_NAME
        with pytest.raises(CacheBusyError) as excinfo:
            with artifact_lock(target, cache_root=tmp_path, settings=settings, token="app"):
                pass  # pragma: no cover
    assert excinfo.value.token == "app"
    assert excinfo.value.waited_sec >= 0.0
    with artifact_lock(target, cache_root=tmp_path, settings=settings):
        pass


def test_metrics_count_acquisitions_and_timeouts(tmp_path):
    settings = LockSettings(timeout_sec=0.02, poll_interval_sec=0.01)
    target = tmp_path / "App.zip"
    with artifact_lock(target, cache_root=tmp_path, settings=settings):
        with pytest.raises(CacheBusyError):
            with artifact_lock(target, cache_root=tmp_path, settings=settings):
                pass  # pragma: no cover
    snapshot = lock_metrics_snapshot()
    assert snapshot["acquire_total"] == 1
    assert snapshot["timeout_total"] == 1
    assert snapshot["hold_ms_p95"] >= 0.0


def test_caller_timeout_caps_lock_wait(tmp_path):
    settings = LockSettings(timeout_sec=5.0, poll_interval_sec=0.01)
    target = tmp_path / "App.zip"
    with artifact_lock(target, cache_root=tmp_path, settings=settings):
        started = time.monotonic()
        with pytest.raises(CacheBusyError) as excinfo:
            with artifact_lock(target, cache_root=tmp_path, settings=settings, timeout=0.05):
                pass  # pragma: no cover
        elapsed = time.monotonic() - started
    assert elapsed < 1.0
    assert excinfo.value.waited_sec < 1.0
