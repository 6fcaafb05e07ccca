"""
Base quota fetcher class.

WORKFLOW OVERVIEW:
==================
Each provider has a module with two parts:
- parse_<provider>(body, now=None): turns the raw upstream JSON into a
  ProviderQuotaResult. Parsers are pure and never raise.
- <Provider>QuotaFetcher: performs the upstream request through the
  management server's signed call gateway and hands the body to the parser.

WORKFLOW:
1. QuotaViewModel classifies a credential and picks the fetcher
2. The fetcher sends method/url/headers to POST /api-call with the
   credential's auth index; the server substitutes $TOKEN$
3. A 2xx body goes to the parser; anything else becomes an error string
   via format_quota_error()
4. The view model writes the result into the credential's FileQuota
"""

import functools
import json
import math
import traceback
from abc import ABC, abstractmethod
from typing import Any, Callable, Optional

from ...models.auth import AuthFile
from ...models.providers import ProviderType
from ...models.quota import ProviderQuotaResult
from ...utils.log import log_with_timestamp
from ..api_client import APIError, ApiCallResult, ManagementAPIClient, get_api_call_error_message

PARSE_FAILED = "Failed to parse quota response"


def coerce_payload(body: Any) -> Optional[dict]:
    """The body as a JSON object, decoding JSON text first; None otherwise."""
    if isinstance(body, str):
        if not body.strip():
            return None
        try:
            body = json.loads(body)
        except ValueError:
            return None
    return body if isinstance(body, dict) else None


def to_number(value: Any) -> Optional[float]:
    """Finite number from a number or numeric string."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return value if math.isfinite(value) else None
    if isinstance(value, str) and value.strip():
        try:
            number = float(value.strip())
        except ValueError:
            return None
        return number if math.isfinite(number) else None
    return None


def first_present(mapping: dict, *keys: str) -> Any:
    """Value of the first key that is present and not None."""
    for key in keys:
        value = mapping.get(key)
        if value is not None:
            return value
    return None


def tolerant_parser(func: Callable[..., ProviderQuotaResult]) -> Callable[..., ProviderQuotaResult]:
    """Turn any unexpected exception inside a parser into an error result."""
    @functools.wraps(func)
    def wrapper(body: Any, now: Optional[float] = None) -> ProviderQuotaResult:
        try:
            return func(body, now=now)
        except Exception as e:
            log_with_timestamp(f"{func.__name__} failed: {e}", "[QuotaParser]")
            traceback.print_exc()
            return ProviderQuotaResult(error=PARSE_FAILED)
    return wrapper


def format_quota_error(result: ApiCallResult) -> str:
    """Short, displayable error for a non-2xx gateway result."""
    status = result.status_code
    message = get_api_call_error_message(result)

    if status in (401, 403):
        if any(word in message for word in ("token", "auth", "credential")):
            return f"Token invalid or expired ({status})"
        return f"Access denied ({status})"
    if status == 429:
        return "Rate limit exceeded"
    if len(message) > 100:
        return message[:97] + "..."
    return message


class BaseQuotaFetcher(ABC):
    """
    Base class for quota fetchers.

    Subclasses set ``provider`` and implement parse() and fetch_quota().
    Transport failures (APIError) become the error message verbatim; fetchers
    never raise for an upstream or gateway problem.
    """

    provider: ProviderType = ProviderType.UNKNOWN

    def __init__(self, api_client: ManagementAPIClient):
        self.api_client = api_client

    @abstractmethod
    def parse(self, body: Any, now: Optional[float] = None) -> ProviderQuotaResult:
        """Normalize a raw upstream body."""

    @abstractmethod
    async def fetch_quota(self, auth_index: str, credential: Optional[AuthFile] = None) -> ProviderQuotaResult:
        """Fetch and normalize quota for one credential."""

    async def _call(
        self, method: str, url: str, header: dict, data: Optional[str] = None, auth_index: str = ""
    ) -> ApiCallResult:
        return await self.api_client.api_call(auth_index, method, url, header=header, data=data)

    async def _fetch_simple(
        self,
        auth_index: str,
        method: str,
        url: str,
        header: dict,
        data: Optional[str] = None,
        status_errors: Optional[dict[int, str]] = None,
    ) -> ProviderQuotaResult:
        """One gateway call; 2xx is parsed, known statuses map to fixed errors."""
        try:
            result = await self._call(method, url, header, data, auth_index=auth_index)
        except APIError as e:
            return ProviderQuotaResult(error=e.message)
        if result.ok:
            return self.parse(result.body)
        special = self.handle_status(result)
        if special is not None:
            return special
        if status_errors and result.status_code in status_errors:
            return ProviderQuotaResult(error=status_errors[result.status_code])
        return ProviderQuotaResult(error=format_quota_error(result))

    def handle_status(self, result: ApiCallResult) -> Optional[ProviderQuotaResult]:
        """Hook for provider-specific non-2xx answers."""
        return None


class UnsupportedQuotaFetcher(BaseQuotaFetcher):
    """Credentials whose provider has no quota endpoint."""

    def parse(self, body: Any, now: Optional[float] = None) -> ProviderQuotaResult:
        return ProviderQuotaResult()

    async def fetch_quota(self, auth_index: str, credential: Optional[AuthFile] = None) -> ProviderQuotaResult:
        return ProviderQuotaResult(error="Quota not supported for this provider")
