"""
GitHub Copilot device flow.

Used when the management server cannot start a Copilot login itself (no
``/github-auth-url`` endpoint on standard builds). The flow talks to GitHub
directly and hands the resulting token file to the server:

1. request_device_code(): get device_code, user_code and verification_uri
2. the user enters user_code at verification_uri
3. poll_for_token(): poll until GitHub issues an access token
4. fetch_user_info(): login / email / name for the file name
5. build_token_storage() + ManagementAPIClient.upload_auth_file()
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Optional

import aiohttp

from .api_client import ManagementAPIClient
from ..utils.log import log_debug, log_with_timestamp

GITHUB_CLIENT_ID = "Iv1.b507a08c87ecfe98"
DEVICE_CODE_URL = "https://github.com/login/device/code"
TOKEN_URL = "https://github.com/login/oauth/access_token"
USER_INFO_URL = "https://api.github.com/user"
SCOPE = "read:user user:email"
GRANT_TYPE = "urn:ietf:params:oauth:grant-type:device_code"

MIN_POLL_INTERVAL = 5.0
SLOW_DOWN_STEP = 5.0
MAX_POLL_DURATION = 15 * 60.0

EXPIRED_MESSAGE = "Device code expired. Please try again."


class DeviceFlowError(Exception):
    """The device flow ended without a token."""


class DeviceFlowCancelled(DeviceFlowError):
    """The caller stopped polling."""


@dataclass
class DeviceCode:
    device_code: str
    user_code: str
    verification_uri: str
    expires_in: int = 900
    interval: int = 5


@dataclass
class CopilotToken:
    access_token: str
    token_type: str = "bearer"
    scope: str = ""


@dataclass
class GitHubUser:
    login: str
    email: Optional[str] = None
    name: Optional[str] = None


def build_token_storage(token: CopilotToken, user: GitHubUser) -> tuple[dict, str]:
    """Auth file content and file name for an authorized account."""
    username = user.login or "github-user"
    storage = {
        "access_token": token.access_token,
        "token_type": token.token_type,
        "scope": token.scope,
        "username": username,
        "type": "github-copilot",
    }
    if user.email:
        storage["email"] = user.email
    if user.name:
        storage["name"] = user.name
    return storage, f"github-copilot-{username}.json"


class CopilotDeviceFlow:
    """GitHub OAuth device flow client (aiohttp)."""

    def __init__(self, session: Optional[aiohttp.ClientSession] = None,
                 timeout: float = 30, sleep=asyncio.sleep, clock=time.monotonic):
        self._session = session
        self._owns_session = session is None
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self._sleep = sleep
        self._clock = clock

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
            self._owns_session = True
        return self._session

    async def _post_form(self, url: str, form: dict, what: str, check_status: bool = True) -> dict:
        session = await self._get_session()
        try:
            async with session.post(url, data=form, headers={"Accept": "application/json"}) as response:
                if check_status and response.status >= 400:
                    text = await response.text()
                    raise DeviceFlowError(f"GitHub returned {response.status}: {text}")
                data = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise DeviceFlowError(f"Failed to {what}: {e}")
        except ValueError as e:
            raise DeviceFlowError(f"Failed to parse {what} response: {e}")
        if not isinstance(data, dict):
            raise DeviceFlowError(f"Failed to parse {what} response")
        return data

    async def request_device_code(self) -> DeviceCode:
        data = await self._post_form(
            DEVICE_CODE_URL, {"client_id": GITHUB_CLIENT_ID, "scope": SCOPE}, "request device code"
        )
        try:
            return DeviceCode(
                device_code=str(data["device_code"]),
                user_code=str(data["user_code"]),
                verification_uri=str(data["verification_uri"]),
                expires_in=int(data.get("expires_in") or 900),
                interval=int(data.get("interval") or 5),
            )
        except (KeyError, TypeError, ValueError):
            raise DeviceFlowError("Failed to parse device code response")

    async def poll_token_once(self, device_code: str) -> dict:
        return await self._post_form(
            TOKEN_URL,
            {"client_id": GITHUB_CLIENT_ID, "device_code": device_code, "grant_type": GRANT_TYPE},
            "poll for token",
            check_status=False,
        )

    async def poll_for_token(self, code: DeviceCode,
                             stop_event: Optional[asyncio.Event] = None) -> CopilotToken:
        """Poll until the user authorizes, the code expires or ``stop_event`` is set.

        Raises:
            DeviceFlowError: expired code, denied access or any other GitHub error
            DeviceFlowCancelled: stop_event was set
        """
        interval = max(float(code.interval), MIN_POLL_INTERVAL)
        deadline = self._clock() + min(float(code.expires_in), MAX_POLL_DURATION)

        while self._clock() < deadline:
            if stop_event is not None and stop_event.is_set():
                raise DeviceFlowCancelled("Authentication cancelled")
            await self._sleep(interval)
            if stop_event is not None and stop_event.is_set():
                raise DeviceFlowCancelled("Authentication cancelled")

            data = await self.poll_token_once(code.device_code)
            error = data.get("error")
            if error == "authorization_pending":
                continue
            if error == "slow_down":
                interval += SLOW_DOWN_STEP
                log_debug(f"GitHub asked to slow down, interval now {interval:.0f}s", "[CopilotAuth]")
                continue
            if error == "expired_token":
                raise DeviceFlowError(EXPIRED_MESSAGE)
            if error == "access_denied":
                raise DeviceFlowError("Access denied by user.")
            if error:
                raise DeviceFlowError(data.get("error_description") or error)

            if not data.get("access_token"):
                raise DeviceFlowError("Empty access token received")
            return CopilotToken(
                access_token=data["access_token"],
                token_type=data.get("token_type") or "bearer",
                scope=data.get("scope") or "",
            )

        raise DeviceFlowError(EXPIRED_MESSAGE)

    async def fetch_user_info(self, access_token: str) -> GitHubUser:
        session = await self._get_session()
        headers = {
            "Authorization": f"Bearer {access_token}",
            "Accept": "application/json",
            "User-Agent": "quotadeck",
        }
        try:
            async with session.get(USER_INFO_URL, headers=headers) as response:
                if response.status >= 400:
                    text = await response.text()
                    raise DeviceFlowError(f"GitHub returned {response.status}: {text}")
                data = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise DeviceFlowError(f"Failed to fetch user info: {e}")
        except ValueError as e:
            raise DeviceFlowError(f"Failed to parse user info: {e}")
        data = data if isinstance(data, dict) else {}
        return GitHubUser(login=data.get("login") or "", email=data.get("email"), name=data.get("name"))

    async def complete(self, code: DeviceCode, api_client: ManagementAPIClient,
                       stop_event: Optional[asyncio.Event] = None) -> str:
        """Poll, look up the user and upload the token file. Returns the file name."""
        token = await self.poll_for_token(code, stop_event)
        user = await self.fetch_user_info(token.access_token)
        storage, filename = build_token_storage(token, user)
        await api_client.upload_auth_file(filename, storage)
        log_with_timestamp(f"Uploaded {filename}", "[CopilotAuth]")
        return filename

    async def close(self):
        if self._session and not self._session.closed and self._owns_session:
            await self._session.close()
        self._session = None
