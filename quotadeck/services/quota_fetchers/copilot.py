"""GitHub Copilot quota fetcher."""

from typing import Any, Optional

from .base import BaseQuotaFetcher, coerce_payload, to_number, tolerant_parser
from ...models.auth import AuthFile
from ...models.providers import ProviderType
from ...models.quota import ProviderQuotaResult, QuotaModel
from ...utils.formatting import format_time_until, round_half_up

ENTITLEMENT_URL = "https://api.github.com/copilot_internal/user"

HEADERS = {
    "Authorization": "Bearer $TOKEN$",
    "Accept": "application/vnd.github+json",
    "X-GitHub-Api-Version": "2022-11-28",
}

# (display name, snapshot key, entitlement assumed when missing)
SNAPSHOTS = (
    ("Chat", "chat", 50),
    ("Completions", "completions", 2000),
    ("Premium", "premium_interactions", 50),
)


def resolve_plan(access_type_sku: str, copilot_plan: str) -> str:
    sku = access_type_sku.lower()
    plan = copilot_plan.lower()

    if "enterprise" in sku or plan == "enterprise":
        return "Enterprise"
    if "business" in sku or plan == "business":
        return "Business"
    if "educational" in sku or "pro" in sku or "pro" in plan:
        return "Pro"
    if plan == "individual" and "free_limited" not in sku:
        return "Pro"
    if "free_limited" in sku or sku == "free" or "free" in plan:
        return "Free"
    if copilot_plan:
        return copilot_plan[:1].upper() + copilot_plan[1:]
    return "Unknown"


def _text(value: Any) -> str:
    return value if isinstance(value, str) else ""


def _clamped(value: float) -> int:
    return round_half_up(min(100, max(0, value)))


@tolerant_parser
def parse_copilot(body: Any, now: Optional[float] = None) -> ProviderQuotaResult:
    """copilot_internal/user response -> chat, completions and premium quotas."""
    payload = coerce_payload(body)
    if payload is None:
        return ProviderQuotaResult()

    plan = resolve_plan(_text(payload.get("access_type_sku")), _text(payload.get("copilot_plan")))

    reset_date = (
        _text(payload.get("quota_reset_date_utc"))
        or _text(payload.get("quota_reset_date"))
        or _text(payload.get("limited_user_reset_date"))
    )
    reset_time = format_time_until(reset_date, now=now) if reset_date else None

    models: list[QuotaModel] = []
    snapshots = payload.get("quota_snapshots")
    if isinstance(snapshots, dict):
        for name, key, default_total in SNAPSHOTS:
            snapshot = snapshots.get(key)
            if not isinstance(snapshot, dict) or snapshot.get("unlimited") is True:
                continue
            percent = to_number(snapshot.get("percent_remaining"))
            if percent is None:
                remaining = to_number(snapshot.get("remaining")) or 0
                total = to_number(snapshot.get("entitlement"))
                total = default_total if total is None else total
                percent = remaining / total * 100 if total > 0 else 100
            models.append(QuotaModel(name=name, percentage=_clamped(percent), reset_time=reset_time))

    if not models:
        limited = payload.get("limited_user_quotas")
        monthly = payload.get("monthly_quotas")
        if isinstance(limited, dict) and isinstance(monthly, dict):
            for name, key in (("Chat", "chat"), ("Completions", "completions")):
                remaining = to_number(limited.get(key)) or 0
                total = to_number(monthly.get(key)) or 0
                if total > 0:
                    models.append(QuotaModel(
                        name=name, percentage=_clamped(remaining / total * 100), reset_time=reset_time
                    ))

    if not models:
        models.append(QuotaModel(name="Copilot", percentage=100))

    return ProviderQuotaResult(models=models, plan=plan)


class CopilotQuotaFetcher(BaseQuotaFetcher):
    """Fetches Copilot entitlements and remaining quota snapshots."""

    provider = ProviderType.COPILOT

    def parse(self, body: Any, now: Optional[float] = None) -> ProviderQuotaResult:
        return parse_copilot(body, now=now)

    async def fetch_quota(self, auth_index: str, credential: Optional[AuthFile] = None) -> ProviderQuotaResult:
        return await self._fetch_simple(
            auth_index,
            "GET",
            ENTITLEMENT_URL,
            dict(HEADERS),
            status_errors={
                401: "Token invalid or no Copilot subscription",
                403: "Token invalid or no Copilot subscription",
            },
        )
