"""Pytest configuration for Paranoia Toolkit."""

import pytest

from paranoia_toolkit.config import reset_configuration
from paranoia_toolkit.document.storage import MemoryDatabase, set_database


def pytest_configure(config):
    """Configure pytest with custom settings."""
    # Add custom markers
    config.addinivalue_line("markers", "sql: test runs against the SQL backend")


@pytest.fixture(autouse=True)
def paranoia_baseline():
    """Give every test the default configuration and an empty database."""
    reset_configuration()
    database = MemoryDatabase()
    set_database(database)
    yield database
    set_database(None)
    reset_configuration()
