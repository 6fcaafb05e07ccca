"""
Pytest configuration and fixtures for the test suite.
"""
import pytest
from unittest.mock import AsyncMock, MagicMock

from quotadeck.models.auth import AuthFile
from quotadeck.services.api_client import ApiCallResult, ManagementAPIClient
from quotadeck.utils import log


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "asyncio: mark test as an async test"
    )


@pytest.fixture(autouse=True)
def no_log_file():
    """Keep test runs out of the user's log directory."""
    log.configure_logging(debug=False, to_file=False)
    yield
    log.close_log_file()


@pytest.fixture
def mock_api_client():
    """ManagementAPIClient with every network method mocked."""
    client = MagicMock(spec=ManagementAPIClient)
    client.api_base = "http://127.0.0.1:8317"
    client.base_url = "http://127.0.0.1:8317/v0/management"
    client.server_version = None
    client.fetch_auth_files = AsyncMock(return_value=[])
    client.delete_auth_file = AsyncMock(return_value=None)
    client.delete_all_auth_files = AsyncMock(return_value=None)
    client.upload_auth_file = AsyncMock(return_value=None)
    client.api_call = AsyncMock(return_value=ApiCallResult(status_code=200, body={}))
    client.get_oauth_url = AsyncMock()
    client.poll_oauth_status = AsyncMock()
    client.submit_oauth_callback = AsyncMock(return_value={"status": "ok"})

    generations = {}

    def begin_request(channel):
        generations[channel] = generations.get(channel, 0) + 1
        return generations[channel]

    client.begin_request.side_effect = begin_request
    client.is_current.side_effect = lambda channel, generation: generations.get(channel, 0) == generation
    return client


def make_auth_file(**fields) -> AuthFile:
    return AuthFile.model_validate(fields)


@pytest.fixture
def auth_file_factory():
    return make_auth_file
