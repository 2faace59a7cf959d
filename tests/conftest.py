"""Shared fixtures: a frozen clock and default settings."""

import pytest

from scoreline.config import Settings
from scoreline.utils.clock import ManualClock

from factories import NOW, make_match


@pytest.fixture
def clock():
    return ManualClock(NOW)


@pytest.fixture
def settings():
    return Settings()


@pytest.fixture
def match():
    return make_match(1001, 33, 40)
