"""Shared pytest configuration and fixtures for gridfill tests."""

import pandas as pd
import pytest


def pytest_addoption(parser):
    parser.addoption(
        "--run-slow",
        action="store_true",
        default=False,
        help="Include tests marked @pytest.mark.slow (e.g. live Google Sheets)",
    )


def pytest_configure(config):
    config.addinivalue_line("markers", "slow: marks tests as slow (skipped unless --run-slow)")


def pytest_collection_modifyitems(config, items):
    if config.getoption("--run-slow"):
        return
    skip = pytest.mark.skip(reason="slow test, pass --run-slow to include")
    for item in items:
        if "slow" in item.keywords:
            item.add_marker(skip)


@pytest.fixture
def employees():
    return [
        {"name": "Alice", "salary": 5000, "department": "Engineering"},
        {"name": "Bob", "salary": 6000, "department": "Sales"},
        {"name": "Carol", "salary": 7000, "department": "Engineering"},
    ]


@pytest.fixture
def employees_frame(employees) -> pd.DataFrame:
    return pd.DataFrame(employees)


@pytest.fixture
def departments():
    return [
        {"name": "Engineering", "employees": [{"name": "Alice"}, {"name": "Carol"}]},
        {"name": "Sales", "employees": [{"name": "Bob"}]},
    ]
