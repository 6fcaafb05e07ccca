"""Tests for the per-provider upstream calls."""

import json

import pytest

from quotadeck.models.auth import AuthFile
from quotadeck.models.providers import ProviderType
from quotadeck.services.api_client import APIError, ApiCallResult
from quotadeck.services.quota_fetchers import (
    AntigravityQuotaFetcher,
    ClaudeCodeQuotaFetcher,
    CodexQuotaFetcher,
    CopilotQuotaFetcher,
    GeminiCLIQuotaFetcher,
    KiroQuotaFetcher,
    UnsupportedQuotaFetcher,
    create_fetchers,
    format_quota_error,
)
from quotadeck.services.quota_fetchers import antigravity, codex


class TestFormatQuotaError:

    def test_token_message(self):
        result = ApiCallResult(status_code=401, body={"error": {"message": "invalid token"}})
        assert format_quota_error(result) == "Token invalid or expired (401)"

    def test_access_denied(self):
        result = ApiCallResult(status_code=403, body={"message": "forbidden region"})
        assert format_quota_error(result) == "Access denied (403)"

    def test_rate_limit(self):
        assert format_quota_error(ApiCallResult(status_code=429)) == "Rate limit exceeded"

    def test_long_message_truncated(self):
        result = ApiCallResult(status_code=500, body_text="x" * 300, body="x" * 300)
        message = format_quota_error(result)
        assert len(message) == 100
        assert message.endswith("...")

    def test_status_only(self):
        assert format_quota_error(ApiCallResult(status_code=502)) == "HTTP 502"


def test_create_fetchers_covers_every_provider(mock_api_client):
    fetchers = create_fetchers(mock_api_client)
    assert set(fetchers) == set(ProviderType)
    assert isinstance(fetchers[ProviderType.UNKNOWN], UnsupportedQuotaFetcher)


@pytest.mark.asyncio
async def test_unsupported_provider(mock_api_client):
    result = await UnsupportedQuotaFetcher(mock_api_client).fetch_quota("idx")
    assert result.error == "Quota not supported for this provider"
    mock_api_client.api_call.assert_not_called()


@pytest.mark.asyncio
async def test_kiro_403_means_suspended(mock_api_client):
    mock_api_client.api_call.return_value = ApiCallResult(
        status_code=403, body={"reason": "TEMPORARILY_SUSPENDED"}
    )
    result = await KiroQuotaFetcher(mock_api_client).fetch_quota("idx")
    assert result.error is None
    assert result.plan == "Suspended"
    assert len(result.models) == 1
    assert result.models[0].name == "Kiro"
    assert result.models[0].percentage == 100
    assert result.models[0].reset_time == "Temporarily suspended"


@pytest.mark.asyncio
async def test_kiro_403_without_reason(mock_api_client):
    mock_api_client.api_call.return_value = ApiCallResult(status_code=403, body_text="denied", body="denied")
    result = await KiroQuotaFetcher(mock_api_client).fetch_quota("idx")
    assert result.models[0].reset_time == "Suspended"


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [401, 403])
async def test_copilot_auth_failures(mock_api_client, status):
    mock_api_client.api_call.return_value = ApiCallResult(status_code=status, body={})
    result = await CopilotQuotaFetcher(mock_api_client).fetch_quota("idx")
    assert result.error == "Token invalid or no Copilot subscription"


@pytest.mark.asyncio
async def test_claude_401(mock_api_client):
    mock_api_client.api_call.return_value = ApiCallResult(status_code=401, body={})
    result = await ClaudeCodeQuotaFetcher(mock_api_client).fetch_quota("idx")
    assert result.error == "Token expired, please re-authenticate"


@pytest.mark.asyncio
async def test_claude_request_shape(mock_api_client):
    mock_api_client.api_call.return_value = ApiCallResult(
        status_code=200, body={"five_hour": {"utilization": 40}}
    )
    result = await ClaudeCodeQuotaFetcher(mock_api_client).fetch_quota("idx-9")
    assert result.models[0].percentage == 60

    args, kwargs = mock_api_client.api_call.call_args
    assert args[:3] == ("idx-9", "GET", "https://api.anthropic.com/api/oauth/usage")
    assert kwargs["header"]["Authorization"] == "Bearer $TOKEN$"
    assert kwargs["header"]["anthropic-beta"] == "oauth-2025-04-20"


@pytest.mark.asyncio
async def test_transport_error_is_verbatim(mock_api_client):
    mock_api_client.api_call.side_effect = APIError("Connection failed: refused")
    result = await ClaudeCodeQuotaFetcher(mock_api_client).fetch_quota("idx")
    assert result.error == "Connection failed: refused"


@pytest.mark.asyncio
async def test_antigravity_tries_each_url(mock_api_client):
    mock_api_client.api_call.side_effect = [
        ApiCallResult(status_code=500, body={"error": "boom"}),
        ApiCallResult(status_code=200, body={"models": {}}),
        ApiCallResult(status_code=200, body={"models": {"gemini-2.5-flash": {"remainingFraction": 0.5}}}),
    ]
    result = await AntigravityQuotaFetcher(mock_api_client).fetch_quota("idx")
    assert [m.name for m in result.models] == ["Gemini 2.5 Flash"]

    urls = [call.args[2] for call in mock_api_client.api_call.call_args_list]
    assert urls == list(antigravity.QUOTA_URLS)
    assert all(call.kwargs["data"] == "{}" for call in mock_api_client.api_call.call_args_list)


@pytest.mark.asyncio
async def test_antigravity_reports_last_error(mock_api_client):
    mock_api_client.api_call.side_effect = [
        APIError("Request timed out"),
        ApiCallResult(status_code=429, body={}),
        ApiCallResult(status_code=503, body={"error": "unavailable"}),
    ]
    result = await AntigravityQuotaFetcher(mock_api_client).fetch_quota("idx")
    assert result.models == []
    assert result.error == "503 unavailable"


@pytest.mark.asyncio
async def test_antigravity_all_transport_errors(mock_api_client):
    mock_api_client.api_call.side_effect = APIError("down")
    result = await AntigravityQuotaFetcher(mock_api_client).fetch_quota("idx")
    assert result.error == "down"


@pytest.mark.asyncio
async def test_gemini_needs_project(mock_api_client):
    credential = AuthFile.model_validate({"id": "gemini-cli-a.json", "account": "a@example.com"})
    result = await GeminiCLIQuotaFetcher(mock_api_client).fetch_quota("idx", credential)
    assert result.error == "Project ID not found in file"
    mock_api_client.api_call.assert_not_called()


@pytest.mark.asyncio
async def test_gemini_posts_project(mock_api_client):
    mock_api_client.api_call.return_value = ApiCallResult(
        status_code=200, body={"buckets": [{"modelId": "gemini-2.5-pro", "remainingFraction": 1}]}
    )
    credential = AuthFile.model_validate({"id": "gemini-cli-a.json", "account": "a@example.com (proj-7)"})
    result = await GeminiCLIQuotaFetcher(mock_api_client).fetch_quota("idx", credential)
    assert result.models[0].percentage == 100
    assert json.loads(mock_api_client.api_call.call_args.kwargs["data"]) == {"project": "proj-7"}


@pytest.mark.asyncio
async def test_codex_account_header_and_plan_fallback(mock_api_client):
    mock_api_client.api_call.return_value = ApiCallResult(status_code=429, body={})
    credential = AuthFile.model_validate({
        "id": "codex-a.json",
        "plan_type": "Team",
        "id_token": {"chatgpt_account_id": "acc-42"},
    })
    result = await CodexQuotaFetcher(mock_api_client).fetch_quota("idx", credential)
    assert result.error == "Rate limit exceeded"
    assert result.plan == "team"

    header = mock_api_client.api_call.call_args.kwargs["header"]
    assert header[codex.ACCOUNT_ID_HEADER] == "acc-42"


@pytest.mark.asyncio
async def test_codex_without_credential_context(mock_api_client):
    mock_api_client.api_call.return_value = ApiCallResult(status_code=500, body={})
    result = await CodexQuotaFetcher(mock_api_client).fetch_quota("idx")
    assert result.plan == "Plus"
    assert codex.ACCOUNT_ID_HEADER not in mock_api_client.api_call.call_args.kwargs["header"]
