"""
Pytest configuration and shared fixtures.
"""
import matplotlib

matplotlib.use("Agg")

import pytest  # noqa: E402

from auto_audiometry.utils.clock import ManualClock, VirtualTimer  # noqa: E402
from auto_audiometry.utils.config import ProtocolConfig  # noqa: E402

from .helpers import FixedRandom  # noqa: E402


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def timer(clock: ManualClock) -> VirtualTimer:
    return VirtualTimer(clock)


@pytest.fixture
def config() -> ProtocolConfig:
    return ProtocolConfig()


@pytest.fixture
def no_catch_rng() -> FixedRandom:
    """Random source that never triggers a catch trial."""
    return FixedRandom(0.99)
