"""Shared pytest configuration for the CaskFetch test suites.

Puts ``src`` on ``sys.path`` so the suites run against a plain checkout as
well as an editable install, and keeps ``CASKFETCH_*`` variables from the
developer's shell out of every test.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest

# --- Globals ---

ROOT = Path(__file__).resolve().parent.parent
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))


@pytest.fixture(autouse=True)
def _isolate_caskfetch_environment(monkeypatch):
    """Drop ``CASKFETCH_*`` environment variables for the duration of a test."""

    for name in list(os.environ):
        if name.upper().startswith("CASKFETCH_"):
            monkeypatch.delenv(name, raising=False)
    yield
