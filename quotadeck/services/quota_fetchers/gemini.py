"""Gemini CLI quota fetcher."""

import json
from typing import Any, Optional

from .base import BaseQuotaFetcher, coerce_payload, first_present, to_number, tolerant_parser
from ...models.auth import AuthFile
from ...models.providers import ProviderType
from ...models.quota import ProviderQuotaResult, QuotaModel
from ...utils.formatting import format_time_until, round_half_up

QUOTA_URL = "https://cloudcode-pa.googleapis.com/v1internal:retrieveUserQuota"

HEADERS = {
    "Authorization": "Bearer $TOKEN$",
    "Content-Type": "application/json",
}


@tolerant_parser
def parse_gemini_cli(body: Any, now: Optional[float] = None) -> ProviderQuotaResult:
    """retrieveUserQuota response -> one model per bucket."""
    payload = coerce_payload(body)
    buckets = payload.get("buckets") if payload else None
    if not isinstance(buckets, list):
        return ProviderQuotaResult()

    models = []
    for bucket in buckets:
        if not isinstance(bucket, dict):
            continue
        model_id = first_present(bucket, "modelId", "model_id")
        fraction = to_number(first_present(bucket, "remainingFraction", "remaining_fraction")) or 0
        reset = bucket.get("resetTime")
        models.append(QuotaModel(
            name=str(model_id) if model_id is not None else "Unknown",
            percentage=round_half_up(fraction * 100),
            reset_time=format_time_until(reset, now=now) if isinstance(reset, str) else None,
        ))
    return ProviderQuotaResult(models=models)


class GeminiCLIQuotaFetcher(BaseQuotaFetcher):
    """Per-model quota buckets of a Gemini CLI (Code Assist) project."""

    provider = ProviderType.GEMINI_CLI

    def parse(self, body: Any, now: Optional[float] = None) -> ProviderQuotaResult:
        return parse_gemini_cli(body, now=now)

    async def fetch_quota(self, auth_index: str, credential: Optional[AuthFile] = None) -> ProviderQuotaResult:
        project_id = credential.gemini_project_id if credential else None
        if not project_id:
            return ProviderQuotaResult(error="Project ID not found in file")
        return await self._fetch_simple(
            auth_index, "POST", QUOTA_URL, dict(HEADERS), data=json.dumps({"project": project_id})
        )
