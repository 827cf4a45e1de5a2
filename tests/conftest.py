"""
Shared fixtures for MetricScope tests.
"""
import pytest

from metricscope.core.domain.settings import SystemSettings
from metricscope.core.services.cache import AnalyticsCache


class FakeClock:
    """Manually advanced replacement for time.monotonic."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def analytics_cache(clock):
    return AnalyticsCache.from_settings(SystemSettings(), clock=clock)
