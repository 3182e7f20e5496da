"""Cancellation token behaviour."""

from __future__ import annotations

import threading
import time

import pytest

from CaskFetch.ArtifactDownload.cancellation import CancellationToken
from CaskFetch.ArtifactDownload.errors import DownloadCancelledError


def test_token_starts_uncancelled():
    token = CancellationToken()
    assert not token.is_cancelled()
    assert token.remaining() is None
    token.raise_if_cancelled(token="example-app")


def test_cancel_is_visible_across_threads():
    token = CancellationToken()
    thread = threading.Thread(target=token.cancel)
    thread.start()
    thread.join()
    assert token.is_cancelled()


def test_deadline_expires():
    token = CancellationToken.with_timeout(0.01)
    assert token.remaining() <= 0.01
    time.sleep(0.02)
    assert token.is_cancelled()
    assert token.remaining() == 0.0


def test_raise_if_cancelled_names_cask():
    token = CancellationToken()
    token.cancel()
    with pytest.raises(DownloadCancelledError) as excinfo:
        token.raise_if_cancelled(token="example-app")
    assert excinfo.value.token == "example-app"
    assert "Cask 'example-app'" in str(excinfo.value)
