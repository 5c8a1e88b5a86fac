"""Shared fixtures for discovery tests."""

import pytest

from fm_discovery.config import DiscoveryConfig
from fm_discovery.registry.memory import InMemoryRegistry


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def registry(clock):
    return InMemoryRegistry(clock=clock)


@pytest.fixture
def config():
    # isolated from the real process environment
    return DiscoveryConfig({}, environ={})
