"""Root conftest — shared fixtures and environment isolation."""

import os

import pytest

from optimistic.config import get_settings
from tests.fakes import FakeClock, FakeCredentials, RecordingNotifier, RecordingSleep

# Ensure tests never pick up a developer's real backend
os.environ.setdefault("OPTIMISTIC_API_BASE_URL", "http://test/api")


@pytest.fixture(autouse=True)
def _fresh_settings():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def credentials():
    return FakeCredentials()
