"""Antigravity quota fetcher."""

import json
from typing import Any, Optional

from .base import (
    BaseQuotaFetcher,
    coerce_payload,
    first_present,
    format_quota_error,
    to_number,
    tolerant_parser,
)
from ..api_client import APIError
from ...models.auth import AuthFile
from ...models.providers import ProviderType
from ...models.quota import ProviderQuotaResult, QuotaModel
from ...utils.formatting import format_time_until, round_half_up

QUOTA_URLS = (
    "https://daily-cloudcode-pa.googleapis.com/v1internal:fetchAvailableModels",
    "https://daily-cloudcode-pa.sandbox.googleapis.com/v1internal:fetchAvailableModels",
    "https://cloudcode-pa.googleapis.com/v1internal:fetchAvailableModels",
)

HEADERS = {
    "Authorization": "Bearer $TOKEN$",
    "Content-Type": "application/json",
    "User-Agent": "antigravity/1.11.5 windows/amd64",
}

EXCLUDED_IDS = {"tab_flash_lite_preview", "tab_jump_flash_lite_preview"}

KNOWN_NAMES = {
    "rev19-uic3-1p": "Gemini 2.5 Computer Use",
    "gemini-3-pro-image": "Gemini 3 Pro Image",
    "gemini-2.5-flash-lite": "Gemini 2.5 Flash Lite",
    "gemini-2.5-flash": "Gemini 2.5 Flash",
}

# Id lists that may reference models missing from the "models" map
_ID_LIST_KEYS = (
    "commandModelIds",
    "tabModelIds",
    "imageGenerationModelIds",
    "mqueryModelIds",
    "webSearchModelIds",
)


def _is_excluded(model_id: str) -> bool:
    return model_id.startswith("chat_") or model_id in EXCLUDED_IDS


def _remaining_fraction(model: dict) -> float:
    quota_info = first_present(model, "quotaInfo", "quota_info")
    source = quota_info if isinstance(quota_info, dict) else model
    fraction = to_number(first_present(source, "remainingFraction", "remaining_fraction", "remaining"))
    if fraction is not None:
        return fraction
    # No fraction but a reset time means the window is used up
    has_reset = isinstance(quota_info, dict) and bool(quota_info.get("resetTime") or quota_info.get("reset_time"))
    return 0 if has_reset else 1


def _referenced_ids(payload: dict) -> list[str]:
    ids: list[str] = []

    def add(values):
        if isinstance(values, list):
            ids.extend(v for v in values if isinstance(v, str))

    sorts = payload.get("agentModelSorts")
    if isinstance(sorts, list):
        for sort in sorts:
            groups = sort.get("groups") if isinstance(sort, dict) else None
            if isinstance(groups, list):
                for group in groups:
                    if isinstance(group, dict):
                        add(group.get("modelIds"))
    for key in _ID_LIST_KEYS:
        add(payload.get(key))
    default_id = payload.get("defaultAgentModelId")
    if default_id:
        add([default_id])
    return ids


@tolerant_parser
def parse_antigravity(body: Any, now: Optional[float] = None) -> ProviderQuotaResult:
    """fetchAvailableModels response -> models sorted by name."""
    payload = coerce_payload(body)
    if payload is None or not isinstance(payload.get("models"), dict):
        return ProviderQuotaResult()

    models_data: dict = payload["models"]
    models: list[QuotaModel] = []

    for key, model in models_data.items():
        if not isinstance(model, dict):
            continue
        if model.get("isInternal") is True or _is_excluded(key):
            continue

        name = model.get("displayName") or model.get("display_name") or KNOWN_NAMES.get(key, key)

        quota_info = first_present(model, "quotaInfo", "quota_info")
        source = quota_info if isinstance(quota_info, dict) else model
        reset = first_present(source, "resetTime", "reset_time")
        reset_time = format_time_until(reset, now=now) if isinstance(reset, str) else None

        models.append(QuotaModel(
            name=str(name),
            percentage=round_half_up(_remaining_fraction(model) * 100),
            reset_time=reset_time,
        ))

    seen = set(models_data)
    for model_id in _referenced_ids(payload):
        if model_id in seen or _is_excluded(model_id):
            continue
        seen.add(model_id)
        models.append(QuotaModel(name=KNOWN_NAMES.get(model_id, model_id), percentage=100))

    models.sort(key=lambda m: m.name.casefold())
    return ProviderQuotaResult(models=models)


class AntigravityQuotaFetcher(BaseQuotaFetcher):
    """Tries each fetchAvailableModels endpoint until one returns models."""

    provider = ProviderType.ANTIGRAVITY

    def parse(self, body: Any, now: Optional[float] = None) -> ProviderQuotaResult:
        return parse_antigravity(body, now=now)

    async def fetch_quota(self, auth_index: str, credential: Optional[AuthFile] = None) -> ProviderQuotaResult:
        last_error = ""
        for url in QUOTA_URLS:
            try:
                result = await self._call("POST", url, dict(HEADERS), json.dumps({}), auth_index=auth_index)
            except APIError as e:
                last_error = e.message
                continue
            if result.ok:
                parsed = self.parse(result.body)
                if parsed.models:
                    return parsed
            last_error = format_quota_error(result)
        return ProviderQuotaResult(error=last_error or "Failed to fetch quota")
