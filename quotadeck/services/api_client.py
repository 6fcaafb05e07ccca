"""
Management API client for the CLIProxyAPI-style credential server.

Every request is sent to ``<api base>/v0/management`` with the management key
as a bearer token. The signed call gateway (``POST /api-call``) lets the
server perform an upstream HTTP request with a stored credential, replacing
the ``$TOKEN$`` placeholder in the supplied headers, so this process never
holds a provider token.
"""

import asyncio
import json
from dataclasses import dataclass, field
from typing import Any, Optional, Union

import aiohttp

from ..models.auth import AuthFile, OAuthStatusResponse, OAuthURLResponse
from ..models.connection import MANAGEMENT_API_PREFIX, normalize_api_base
from ..models.providers import ProviderType
from ..models.server import VERSION_HEADER_KEYS
from ..utils.log import log_debug, log_with_timestamp

REQUEST_TIMEOUT_SECONDS = 30


class APIError(Exception):
    """Transport failure or non-2xx answer from the management API."""

    def __init__(self, message: str, status: Optional[int] = None, data: Any = None):
        super().__init__(message)
        self.message = message
        self.status = status
        self.data = data


@dataclass
class ApiCallResult:
    """Outcome of one upstream request made through ``POST /api-call``."""
    status_code: int
    header: dict = field(default_factory=dict)
    body_text: str = ""
    body: Any = None

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


def normalize_body(raw: Any) -> tuple[str, Any]:
    """Return (body_text, body). String bodies are decoded as JSON when possible."""
    if raw is None:
        return "", None
    if isinstance(raw, str):
        if not raw.strip():
            return raw, None
        try:
            return raw, json.loads(raw)
        except ValueError:
            return raw, raw
    try:
        return json.dumps(raw), raw
    except (TypeError, ValueError):
        return str(raw), raw


def get_api_call_error_message(result: ApiCallResult) -> str:
    """Best human-readable message for a failed gateway call."""
    status = result.status_code
    body = result.body
    message = ""

    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict):
            message = error.get("message") or ""
        elif isinstance(error, str):
            message = error
        if not message and isinstance(body.get("message"), str):
            message = body["message"]
    elif isinstance(body, str):
        message = body

    if not isinstance(message, str):
        message = str(message)
    if not message and result.body_text:
        message = result.body_text

    if status and message:
        return f"{status} {message}".strip()
    if status:
        return f"HTTP {status}"
    return message or "Request failed"


def _read_header(headers, keys) -> Optional[str]:
    for key in keys:
        value = headers.get(key)
        if value and str(value).strip():
            return str(value).strip()
    return None


class ManagementAPIClient:
    """Async client for the management API (aiohttp)."""

    def __init__(
        self,
        api_base: str,
        management_key: Optional[str] = None,
        timeout: float = REQUEST_TIMEOUT_SECONDS,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.api_base = normalize_api_base(api_base)
        self.base_url = f"{self.api_base}{MANAGEMENT_API_PREFIX}"
        self.management_key = management_key
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self._session = session
        self._owns_session = session is None

        self.server_version: Optional[str] = None

        # channel -> generation of the most recent request on that channel
        self._generations: dict[str, int] = {}

    # ---- request generations -------------------------------------------

    def begin_request(self, channel: str) -> int:
        """Start a new request on a channel and return its generation."""
        generation = self._generations.get(channel, 0) + 1
        self._generations[channel] = generation
        return generation

    def is_current(self, channel: str, generation: int) -> bool:
        """True if no newer request began on the channel since ``generation``."""
        return self._generations.get(channel, 0) == generation

    # ---- transport -----------------------------------------------------

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
            self._owns_session = True
        return self._session

    def _headers(self) -> dict:
        headers = {"Accept": "application/json"}
        if self.management_key:
            headers["Authorization"] = f"Bearer {self.management_key}"
        return headers

    def _capture_server_info(self, headers):
        version = _read_header(headers, VERSION_HEADER_KEYS)
        if version and version != self.server_version:
            log_debug(f"Server version: {version}", "[APIClient]")
            self.server_version = version

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[dict] = None,
        json_body: Any = None,
        data: Any = None,
    ) -> Any:
        """Send one request and return the decoded JSON (or text) body.

        Raises:
            APIError: on network errors, timeouts and non-2xx answers
        """
        session = await self._get_session()
        url = f"{self.base_url}{path}"
        log_debug(f"{method} {path} {params or ''}", "[APIClient]")
        try:
            async with session.request(
                method,
                url,
                params=params,
                json=json_body,
                data=data,
                headers=self._headers(),
                timeout=self.timeout,
            ) as response:
                self._capture_server_info(response.headers)
                text = await response.text()
                payload = _decode(text)
                if response.status >= 400:
                    raise APIError(_error_message(payload, response), response.status, payload)
                return payload
        except asyncio.TimeoutError:
            raise APIError(f"Request timed out: {method} {path}")
        except aiohttp.ClientError as e:
            raise APIError(f"Connection failed: {e}")

    # ---- auth files ----------------------------------------------------

    async def fetch_auth_files(self) -> list[AuthFile]:
        """GET /auth-files. Entries that are not objects are skipped."""
        payload = await self._request("GET", "/auth-files")
        if isinstance(payload, dict):
            raw_files = payload.get("files") or []
        elif isinstance(payload, list):
            raw_files = payload
        else:
            raw_files = []
        return [AuthFile.model_validate(item) for item in raw_files if isinstance(item, dict)]

    async def delete_auth_file(self, name: str):
        await self._request("DELETE", "/auth-files", params={"name": name})

    async def delete_all_auth_files(self):
        await self._request("DELETE", "/auth-files", params={"all": "true"})

    async def upload_auth_file(self, filename: str, content: Union[dict, str, bytes]):
        """POST /auth-files as multipart, the file under the ``file`` field."""
        if isinstance(content, dict):
            content = json.dumps(content, indent=2)
        if isinstance(content, str):
            content = content.encode("utf-8")
        form = aiohttp.FormData()
        form.add_field("file", content, filename=filename, content_type="application/json")
        return await self._request("POST", "/auth-files", data=form)

    # ---- signed call gateway -------------------------------------------

    async def api_call(
        self,
        auth_index: str,
        method: str,
        url: str,
        header: Optional[dict] = None,
        data: Optional[str] = None,
    ) -> ApiCallResult:
        """Have the server perform an upstream request with a stored credential."""
        body = {"authIndex": auth_index, "method": method, "url": url}
        if header:
            body["header"] = dict(header)
        if data is not None:
            body["data"] = data
        payload = await self._request("POST", "/api-call", json_body=body)
        if not isinstance(payload, dict):
            payload = {}

        raw_status = payload.get("status_code", payload.get("statusCode", 0))
        try:
            status_code = int(raw_status or 0)
        except (TypeError, ValueError):
            status_code = 0
        upstream_headers = payload.get("header", payload.get("headers")) or {}
        body_text, decoded = normalize_body(payload.get("body"))
        return ApiCallResult(
            status_code=status_code,
            header=upstream_headers if isinstance(upstream_headers, dict) else {},
            body_text=body_text,
            body=decoded,
        )

    # ---- OAuth ---------------------------------------------------------

    async def get_oauth_url(
        self, provider: ProviderType, project_id: Optional[str] = None
    ) -> OAuthURLResponse:
        """GET /<provider>-auth-url."""
        path = provider.auth_url_path
        if not path:
            raise APIError(f"{provider.display_name} has no auth URL endpoint")
        params = {}
        if provider.supports_webui_auth:
            params["is_webui"] = "true"
        if provider.requires_project_id and project_id:
            params["project_id"] = project_id
        payload = await self._request("GET", path, params=params or None)
        return OAuthURLResponse.model_validate(payload if isinstance(payload, dict) else {})

    async def poll_oauth_status(self, state: str) -> OAuthStatusResponse:
        """GET /get-auth-status?state=..."""
        payload = await self._request("GET", "/get-auth-status", params={"state": state})
        return OAuthStatusResponse.model_validate(payload if isinstance(payload, dict) else {})

    async def submit_oauth_callback(self, provider: ProviderType, redirect_url: str) -> Any:
        """POST /oauth-callback with the redirect URL pasted by the user."""
        return await self._request(
            "POST",
            "/oauth-callback",
            json_body={"provider": provider.callback_name, "redirect_url": redirect_url},
        )

    async def close(self):
        if self._session and not self._session.closed and self._owns_session:
            await self._session.close()
        self._session = None


def _decode(text: str) -> Any:
    if not text or not text.strip():
        return None
    try:
        return json.loads(text)
    except ValueError:
        return text


def _error_message(payload: Any, response: aiohttp.ClientResponse) -> str:
    if isinstance(payload, dict):
        for key in ("error", "message"):
            value = payload.get(key)
            if isinstance(value, str) and value:
                return value
            if isinstance(value, dict) and value.get("message"):
                return str(value["message"])
    if isinstance(payload, str) and payload.strip():
        return payload.strip()[:200]
    reason = response.reason or "Request failed"
    log_with_timestamp(f"HTTP {response.status} without error body", "[APIClient]")
    return f"HTTP {response.status} {reason}"
