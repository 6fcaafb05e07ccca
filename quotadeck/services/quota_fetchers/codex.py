"""Codex (OpenAI) quota fetcher."""

import time
from typing import Any, Optional

from .base import BaseQuotaFetcher, coerce_payload, first_present, to_number, tolerant_parser
from ...models.auth import AuthFile
from ...models.providers import ProviderType
from ...models.quota import ProviderQuotaResult, QuotaModel
from ...utils.formatting import format_time_until, round_half_up

USAGE_URL = "https://chatgpt.com/backend-api/wham/usage"

HEADERS = {
    "Authorization": "Bearer $TOKEN$",
    "Content-Type": "application/json",
    "User-Agent": "codex_cli_rs/0.76.0 (Debian 13.0.0; x86_64) WindowsTerminal",
}

ACCOUNT_ID_HEADER = "Chatgpt-Account-Id"
DEFAULT_PLAN = "Plus"


def format_codex_reset_label(window: Optional[dict], now: Optional[float] = None) -> str:
    """Reset label from an absolute ``reset_at`` or a ``reset_after_seconds`` offset."""
    if not isinstance(window, dict):
        return "-"
    now = time.time() if now is None else now

    reset_at = to_number(first_present(window, "reset_at", "resetAt"))
    if reset_at is not None and reset_at > 0:
        return format_time_until(reset_at, now=now)

    reset_after = to_number(first_present(window, "reset_after_seconds", "resetAfterSeconds"))
    if reset_after is not None and reset_after > 0:
        return format_time_until(int(now + reset_after), now=now)
    return "-"


def _window_model(name: str, window: Any, now: Optional[float]) -> Optional[QuotaModel]:
    if not isinstance(window, dict):
        return None

    used = to_number(first_present(window, "used_percent", "usedPercent"))
    if used is not None:
        percentage = 100 - used
    else:
        remaining = to_number(first_present(window, "remaining_count", "remainingCount")) or 0
        total = to_number(first_present(window, "total_count", "totalCount"))
        total = 1 if total is None else total
        percentage = round_half_up(remaining / max(total, 1) * 100)

    reset = format_codex_reset_label(window, now=now)
    return QuotaModel(name=name, percentage=percentage, reset_time=None if reset == "-" else reset)


@tolerant_parser
def parse_codex(body: Any, now: Optional[float] = None) -> ProviderQuotaResult:
    """wham/usage response -> 5-hour, weekly and code review limits."""
    payload = coerce_payload(body)
    if payload is None:
        return ProviderQuotaResult()

    plan = first_present(payload, "plan_type", "planType") or DEFAULT_PLAN
    windows: list[tuple[str, Any]] = []

    rate_limit = first_present(payload, "rate_limit", "rateLimit")
    if isinstance(rate_limit, dict):
        windows.append(("5-hour limit", first_present(rate_limit, "primary_window", "primaryWindow")))
        windows.append(("Weekly limit", first_present(rate_limit, "secondary_window", "secondaryWindow")))
    else:
        windows.append(("5-hour limit", first_present(payload, "5_hour_window", "fiveHourWindow")))
        windows.append(("Weekly limit", first_present(payload, "weekly_window", "weeklyWindow")))

    review = first_present(payload, "code_review_rate_limit", "codeReviewRateLimit")
    if isinstance(review, dict):
        windows.append(("Code review limit", first_present(review, "primary_window", "primaryWindow")))
    else:
        windows.append(("Code review limit", first_present(payload, "code_review_window", "codeReviewWindow")))

    limits = [m for m in (_window_model(name, w, now) for name, w in windows) if m is not None]
    return ProviderQuotaResult(models=limits, plan=str(plan))


class CodexQuotaFetcher(BaseQuotaFetcher):
    """Fetches ChatGPT/Codex usage windows."""

    provider = ProviderType.CODEX

    def parse(self, body: Any, now: Optional[float] = None) -> ProviderQuotaResult:
        return parse_codex(body, now=now)

    async def fetch_quota(self, auth_index: str, credential: Optional[AuthFile] = None) -> ProviderQuotaResult:
        header = dict(HEADERS)
        account_id = credential.codex_account_id if credential else None
        if account_id:
            header[ACCOUNT_ID_HEADER] = account_id

        result = await self._fetch_simple(auth_index, "GET", USAGE_URL, header)
        if not result.plan:
            plan = credential.codex_plan_type if credential else None
            result.plan = plan or DEFAULT_PLAN
        return result
