"""Shared fixtures for the mdtable test suite."""

from __future__ import annotations

import pytest

from mdtable.logging import set_log_dir


@pytest.fixture(autouse=True)
def _reset_event_sink():
    """Keep the process-wide event sink from leaking between tests."""
    set_log_dir(None)
    yield
    set_log_dir(None)


@pytest.fixture
def grid() -> list[list[str]]:
    """Three data rows: A = 1, 3, 5 and B = 2, 4, 6."""
    return [
        ["A", "B"],
        ["---", "---"],
        ["1", "2"],
        ["3", "4"],
        ["5", "6"],
    ]
