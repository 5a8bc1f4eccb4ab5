"""
Pytest configuration and global fixtures.

This module provides shared fixtures used across all tests.
"""

import pytest

from lightgate.utils.config import Settings, get_settings
from lightgate.utils.retry import fixed_delay


@pytest.fixture
def test_settings() -> Settings:
    """Settings isolated from the environment and any .env file."""
    return Settings(
        _env_file=None,
        lnd_rest_url="https://lnd.test:8080",
        macaroon_hex="0201036c6e64",
        retry_delay_seconds=0.001,
    )


@pytest.fixture
def fast_retry():
    """Three additional attempts, without the one second wait."""
    return fixed_delay(max_retries=3, delay_seconds=0.001)


@pytest.fixture(autouse=True)
def clear_settings_cache():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
