"""Shared fixtures."""

import pytest

from fakes import RecordingClient
from steelclock.core import logs


@pytest.fixture
def client():
    return RecordingClient()


@pytest.fixture(autouse=True)
def no_panic_file():
    """Keep panic reports out of the working directory."""
    previous = logs.get_panic_log()
    logs.set_panic_log(None)
    yield
    logs.set_panic_log(previous)
