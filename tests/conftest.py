import os
import sys

import pytest

# Add the repository root to the path for importing test helpers
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from node_maintenance.config import MaintenanceConfig, RetryBudget
from tests.fakes import TODAY, FakeHost, FakeSleep

# Common fixtures for all tests


@pytest.fixture
def today():
    return lambda: TODAY


@pytest.fixture
def fake_host():
    return FakeHost()


@pytest.fixture
def fake_sleep():
    return FakeSleep()


@pytest.fixture
def config():
    return MaintenanceConfig(
        required_artifacts=("/sys/fs/cgroup/kubepods.slice/a", "/sys/fs/cgroup/kubepods.slice/b"),
        retry_budget=RetryBudget(max_attempts=2, delay_seconds=60),
    )
