"""Kiro (AWS CodeWhisperer) quota fetcher."""

from typing import Any, Optional

from .base import BaseQuotaFetcher, coerce_payload, first_present, to_number, tolerant_parser
from ..api_client import ApiCallResult
from ...models.auth import AuthFile
from ...models.providers import ProviderType
from ...models.quota import ProviderQuotaResult, QuotaModel
from ...utils.formatting import format_day_hour, round_half_up

USAGE_URL = (
    "https://codewhisperer.us-east-1.amazonaws.com/getUsageLimits"
    "?isEmailRequired=true&origin=AI_EDITOR&resourceType=AGENTIC_REQUEST"
)

HEADERS = {
    "Authorization": "Bearer $TOKEN$",
    "Content-Type": "application/json",
    "User-Agent": "aws-sdk-js/3.0.0 KiroIDE-0.1.0 os/windows lang/js md/nodejs/18.0.0",
    "x-amz-user-agent": "aws-sdk-js/3.0.0",
}


def _usage(info: dict, precise_key: str, key: str) -> int:
    value = to_number(first_present(info, precise_key, key))
    return round_half_up(value) if value is not None else 0


def _remaining_percentage(used: int, total: int) -> int:
    if total <= 0:
        return 0
    return max(0, round_half_up((total - used) / total * 100))


def _reset_label(epoch_seconds: Any, now: Optional[float]) -> Optional[str]:
    value = to_number(epoch_seconds)
    if not value:
        return None
    return format_day_hour(value, now=now)


@tolerant_parser
def parse_kiro(body: Any, now: Optional[float] = None) -> ProviderQuotaResult:
    """getUsageLimits response -> bonus (free trial) and base allowances."""
    payload = coerce_payload(body)
    if payload is None:
        return ProviderQuotaResult()

    subscription = payload.get("subscriptionInfo")
    plan = (subscription.get("subscriptionTitle") if isinstance(subscription, dict) else None) or "Standard"

    models: list[QuotaModel] = []
    breakdowns = payload.get("usageBreakdownList")
    for breakdown in breakdowns if isinstance(breakdowns, list) else []:
        if not isinstance(breakdown, dict):
            continue
        display_name = breakdown.get("displayName") or breakdown.get("resourceType") or "Usage"
        plural = breakdown.get("displayNamePlural") or f"{display_name}s"
        reset_time = _reset_label(
            breakdown.get("nextDateReset") or payload.get("nextDateReset"), now
        )

        trial = breakdown.get("freeTrialInfo")
        has_trial = isinstance(trial, dict) and trial.get("freeTrialStatus") == "ACTIVE"
        if has_trial:
            used = _usage(trial, "currentUsageWithPrecision", "currentUsage")
            total = _usage(trial, "usageLimitWithPrecision", "usageLimit")
            models.append(QuotaModel(
                name=f"Bonus {plural}",
                percentage=_remaining_percentage(used, total),
                reset_time=_reset_label(trial.get("freeTrialExpiry"), now),
            ))

        used = _usage(breakdown, "currentUsageWithPrecision", "currentUsage")
        total = _usage(breakdown, "usageLimitWithPrecision", "usageLimit")
        if total > 0:
            models.append(QuotaModel(
                name=f"Base {plural}" if has_trial else str(plural),
                percentage=_remaining_percentage(used, total),
                reset_time=reset_time,
            ))

    if not models:
        models.append(QuotaModel(name="kiro-standard", percentage=100))

    user_info = payload.get("userInfo")
    email = user_info.get("email") if isinstance(user_info, dict) else None
    return ProviderQuotaResult(models=models, plan=str(plan), email=email if isinstance(email, str) else None)


def suspended_result(result: ApiCallResult) -> ProviderQuotaResult:
    """A 403 from Kiro means the account is suspended, not a broken token."""
    body = result.body if isinstance(result.body, dict) else {}
    raw = body.get("reason")
    reason = raw.replace("_", " ").lower() if isinstance(raw, str) else ""
    reason = reason[:1].upper() + reason[1:] if reason else "Suspended"
    return ProviderQuotaResult(
        models=[QuotaModel(name="Kiro", percentage=100, reset_time=reason)],
        plan="Suspended",
    )


class KiroQuotaFetcher(BaseQuotaFetcher):
    """Fetches Kiro agentic request limits."""

    provider = ProviderType.KIRO

    def parse(self, body: Any, now: Optional[float] = None) -> ProviderQuotaResult:
        return parse_kiro(body, now=now)

    def handle_status(self, result: ApiCallResult) -> Optional[ProviderQuotaResult]:
        if result.status_code == 403:
            return suspended_result(result)
        return None

    async def fetch_quota(self, auth_index: str, credential: Optional[AuthFile] = None) -> ProviderQuotaResult:
        return await self._fetch_simple(auth_index, "GET", USAGE_URL, dict(HEADERS))
