"""Quarantine intent handling."""

from __future__ import annotations

import pytest
from fakes import RecordingQuarantine

from CaskFetch.ArtifactDownload.quarantine import (
    QuarantineBackend,
    QuarantineContext,
    QuarantineIntent,
    UnavailableQuarantine,
    apply_quarantine,
)

CONTEXT = QuarantineContext(token="example-app", version="1.2", url="https://example.org/App.dmg")


@pytest.mark.parametrize(
    ("flag", "intent"),
    [(None, QuarantineIntent.UNSPECIFIED), (True, QuarantineIntent.MARK), (False, QuarantineIntent.RELEASE)],
)
def test_intent_from_flag(flag, intent):
    assert QuarantineIntent.from_flag(flag) is intent


@pytest.mark.parametrize(
    ("intent", "available", "events"),
    [
        (QuarantineIntent.MARK, True, ["mark"]),
        (QuarantineIntent.RELEASE, True, ["release"]),
        (QuarantineIntent.UNSPECIFIED, True, []),
        (QuarantineIntent.MARK, False, []),
        (QuarantineIntent.RELEASE, False, []),
    ],
)
def test_apply_quarantine_behaviour_table(tmp_path, intent, available, events):
    backend = RecordingQuarantine(available=available)
    target = tmp_path / "App.dmg"
    target.write_bytes(b"data")

    apply_quarantine(intent, target, CONTEXT, backend=backend)

    assert [name for name, _ in backend.events] == events


def test_backend_errors_propagate(tmp_path):
    backend = RecordingQuarantine(error=PermissionError("denied"))
    with pytest.raises(PermissionError, match="denied"):
        apply_quarantine(QuarantineIntent.MARK, tmp_path / "App.dmg", CONTEXT, backend=backend)


def test_mark_receives_provenance(tmp_path):
    backend = RecordingQuarantine()
    apply_quarantine(QuarantineIntent.MARK, tmp_path / "App.dmg", CONTEXT, backend=backend)
    assert backend.contexts == [CONTEXT]
    assert CONTEXT.agent_name == "CaskFetch"


def test_unavailable_backend_satisfies_protocol():
    backend = UnavailableQuarantine()
    assert isinstance(backend, QuarantineBackend)
    assert isinstance(RecordingQuarantine(), QuarantineBackend)
    assert backend.available() is False


def test_unavailable_backend_calls_are_no_ops(tmp_path):
    target = tmp_path / "App.dmg"
    target.write_bytes(b"data")
    backend = UnavailableQuarantine()
    backend.mark(target, CONTEXT)
    backend.release(target)
    assert target.read_bytes() == b"data"
