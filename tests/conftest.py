"""
Shared fixtures for tracker tests.
"""

import copy
import os

import pytest

from cloud_cost_tracker.config.loader import TrackerConfig
from cloud_cost_tracker.core.tracker import CostTracker
from cloud_cost_tracker.storage.repository import UsageRepository


TEST_COSTS = {
    "compute": {
        "unit": "time",
        "active": "flex-1c-256m",
        "instances": {
            "flex-1c-256m": {"per_second": 0.00000165},
        },
    },
    "postgres": {
        "unit": "time",
        "per_second": 0.00002944,
    },
    "cache": {
        "unit": "flat_monthly",
        "active": "250m",
        "tiers": {
            "250m": {"monthly": 6.00},
        },
        "estimated_operations_per_month": 10_000_000,
    },
    "websocket": {
        "unit": "flat_monthly",
        "monthly": 5.00,
        "estimated_messages_per_month": 1_000_000,
    },
    "bandwidth": {
        "unit": "count",
        "per_gb": 0.10,
    },
    "storage": {
        "unit": "count",
        "per_1k_operations": 0.0005,
    },
}


@pytest.fixture
def test_costs():
    return copy.deepcopy(TEST_COSTS)


@pytest.fixture
def db_path(tmp_path):
    return os.path.join(str(tmp_path), "test.db")


@pytest.fixture
def repository(db_path):
    repo = UsageRepository(db_path)
    repo.initialize_schema()
    return repo


@pytest.fixture
def tracker_config(db_path, test_costs):
    return TrackerConfig(
        enabled=True,
        environment="testing",
        environments=frozenset({"testing"}),
        log_events=True,
        database=db_path,
        costs=test_costs,
    )


@pytest.fixture
def tracker(tracker_config, repository):
    return CostTracker(tracker_config, repository)
