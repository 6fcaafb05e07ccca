"""Claude (Anthropic OAuth) quota fetcher."""

from typing import Any, Optional

from .base import BaseQuotaFetcher, coerce_payload, to_number, tolerant_parser
from ...models.auth import AuthFile
from ...models.providers import ProviderType
from ...models.quota import ProviderQuotaResult, QuotaModel
from ...utils.formatting import format_time_until

USAGE_URL = "https://api.anthropic.com/api/oauth/usage"

HEADERS = {
    "Authorization": "Bearer $TOKEN$",
    "Accept": "application/json",
    "anthropic-beta": "oauth-2025-04-20",  # required by the OAuth usage API
}

# (response key, model name)
USAGE_WINDOWS = (
    ("five_hour", "five-hour-session"),
    ("seven_day", "seven-day-weekly"),
    ("seven_day_sonnet", "seven-day-sonnet"),
    ("seven_day_opus", "seven-day-opus"),
)


def _reset(value: Any, now: Optional[float]) -> Optional[str]:
    if isinstance(value, str) and value:
        return format_time_until(value, now=now)
    return None


@tolerant_parser
def parse_claude(body: Any, now: Optional[float] = None) -> ProviderQuotaResult:
    """
    Parse the Anthropic OAuth usage response.

    Each window reports ``utilization`` as the percentage already used, so the
    remaining share is ``100 - utilization``. The optional ``extra_usage``
    block (pay-as-you-go credits) is reported only when enabled.
    """
    data = coerce_payload(body)
    if data is None:
        return ProviderQuotaResult(error="Invalid response format")

    if data.get("type") == "error" and data.get("error"):
        error = data["error"]
        message = error.get("message") if isinstance(error, dict) else None
        return ProviderQuotaResult(error=message or "API Error")

    models: list[QuotaModel] = []
    for key, name in USAGE_WINDOWS:
        usage = data.get(key)
        if not isinstance(usage, dict):
            continue
        utilization = to_number(usage.get("utilization"))
        if utilization is None:
            continue
        models.append(QuotaModel(
            name=name,
            percentage=100 - utilization,
            reset_time=_reset(usage.get("resets_at"), now),
        ))

    extra = data.get("extra_usage")
    if isinstance(extra, dict) and extra.get("is_enabled"):
        utilization = to_number(extra.get("utilization"))
        if utilization is not None:
            used, limit = extra.get("used_credits"), extra.get("monthly_limit")
            models.append(QuotaModel(
                name="extra-usage",
                percentage=100 - utilization,
                display_value=f"{used} / {limit}" if used is not None and limit is not None else None,
            ))

    if not models:
        return ProviderQuotaResult(error="No quota data found")
    return ProviderQuotaResult(models=models)


class ClaudeCodeQuotaFetcher(BaseQuotaFetcher):
    """Fetches Claude session and weekly utilization."""

    provider = ProviderType.ANTHROPIC

    def parse(self, body: Any, now: Optional[float] = None) -> ProviderQuotaResult:
        return parse_claude(body, now=now)

    async def fetch_quota(self, auth_index: str, credential: Optional[AuthFile] = None) -> ProviderQuotaResult:
        return await self._fetch_simple(
            auth_index,
            "GET",
            USAGE_URL,
            dict(HEADERS),
            status_errors={401: "Token expired, please re-authenticate"},
        )
