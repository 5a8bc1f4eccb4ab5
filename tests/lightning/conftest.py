"""Shared test fixtures for Lightning Network tests."""

import httpx
import pytest

from lightgate.lightning.infrastructure.rest_gateway import LndRestGateway
from tests.lightning.helpers import MockGateway, Router


@pytest.fixture
def mock_gateway() -> MockGateway:
    return MockGateway()


@pytest.fixture
def router() -> Router:
    return Router()


@pytest.fixture
def gateway(router: Router) -> LndRestGateway:
    return LndRestGateway(
        "https://lnd.test:8080",
        "0201036c6e64",
        transport=httpx.MockTransport(router),
    )
