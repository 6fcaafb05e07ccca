"""
ProvidersViewModel - connected accounts and the account-linking flow.

WORKFLOW OVERVIEW:
==================
Each provider has its own ProviderConnectionState:

    idle -> waiting -> polling -> success
                          |
                          +----> error -> (start_auth again) -> waiting

start_auth() picks one of three completion strategies:
- State polling: the server returns a state token; GET /get-auth-status
  every few seconds until it reports ok/completed or error/failed.
- Count polling: no state token (Kiro's web page, Copilot without state);
  re-list credentials and succeed once more of that provider exist than
  when the flow started.
- Device flow: Copilot on servers without /github-auth-url; poll GitHub
  directly and upload the token file.

Each provider owns at most one PollHandle. Stopping a handle sets its stop
event: no further ticks start, and the result of a tick that is still in
flight is thrown away. close() also cancels the tasks.

Every start_auth() call is numbered per provider. cancel_auth(), close() and
a newer start_auth() bump the number, and a start that resumes with a stale
number leaves the state alone.
"""

import asyncio
import traceback
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

from ..models.auth import AuthFile, OAuthStatus, ProviderConnectionState
from ..models.connection import ConnectionConfig
from ..models.providers import ProviderType, classify
from ..models.server import supports_plus_providers
from ..services.api_client import APIError, ManagementAPIClient
from ..services.copilot_device_flow import CopilotDeviceFlow, DeviceCode, DeviceFlowCancelled, DeviceFlowError
from ..services.refresh_bus import RefreshBus
from ..utils.browser import open_browser
from ..utils.log import log_debug, log_with_timestamp

STATE_POLL_INTERVAL = 3.0
KIRO_POLL_INTERVAL = 2.0
COUNT_POLL_INTERVAL = 3.0

KIRO_OAUTH_PATH = "/v0/oauth/kiro"


@dataclass
class PollHandle:
    """A provider's polling task and the event that stops it."""
    task: asyncio.Task
    stop_event: asyncio.Event

    @property
    def active(self) -> bool:
        return not self.stop_event.is_set() and not self.task.done()

    def stop(self):
        self.stop_event.set()


@dataclass
class ProvidersViewModel:
    """View model for linking provider accounts and listing credentials."""

    api_client: ManagementAPIClient
    connection: Optional[ConnectionConfig] = None
    refresh_bus: Optional[RefreshBus] = None
    device_flow: Optional[CopilotDeviceFlow] = None
    open_url: Callable[[str], bool] = open_browser

    state_poll_interval: float = STATE_POLL_INTERVAL
    kiro_poll_interval: float = KIRO_POLL_INTERVAL
    count_poll_interval: float = COUNT_POLL_INTERVAL

    files: List[AuthFile] = field(default_factory=list)
    loading_files: bool = False
    files_error: Optional[str] = None
    selected_provider: Optional[ProviderType] = None

    _states: Dict[ProviderType, ProviderConnectionState] = field(default_factory=dict, init=False, repr=False)
    _polls: Dict[ProviderType, PollHandle] = field(default_factory=dict, init=False, repr=False)
    _polling_entered: set = field(default_factory=set, init=False, repr=False)
    _attempts: Dict[ProviderType, int] = field(default_factory=dict, init=False, repr=False)
    _update_callbacks: List[Callable] = field(default_factory=list, init=False, repr=False)

    # ---- observers -----------------------------------------------------

    def register_update_callback(self, callback: Callable):
        if callback not in self._update_callbacks:
            self._update_callbacks.append(callback)

    def unregister_update_callback(self, callback: Callable):
        if callback in self._update_callbacks:
            self._update_callbacks.remove(callback)

    def _notify_updated(self):
        for callback in list(self._update_callbacks):
            try:
                callback()
            except Exception as e:
                log_with_timestamp(f"Update callback failed: {e}", "[ProvidersViewModel]")
                traceback.print_exc()

    # ---- state ---------------------------------------------------------

    def state_for(self, provider: ProviderType) -> ProviderConnectionState:
        return self._states.get(provider) or ProviderConnectionState()

    @property
    def provider_states(self) -> Dict[ProviderType, ProviderConnectionState]:
        return dict(self._states)

    def _set_state(self, provider: ProviderType, **changes):
        self._states[provider] = self.state_for(provider).evolve(**changes)
        if changes.get("status") == OAuthStatus.POLLING:
            self._polling_entered.add(provider)
        log_debug(f"{provider.value}: {self._states[provider].status.value}", "[ProvidersViewModel]")
        self._notify_updated()

    def _fail(self, provider: ProviderType, message: str):
        log_with_timestamp(f"{provider.display_name} auth failed: {message}", "[ProvidersViewModel]")
        self._set_state(provider, status=OAuthStatus.ERROR, error=message)

    @property
    def api_base(self) -> str:
        return self.connection.api_base if self.connection else self.api_client.api_base

    def plus_providers_supported(self) -> bool:
        return supports_plus_providers(
            self.api_client.server_version,
            self.connection.installed_version if self.connection else None,
            self.connection.exe_path if self.connection else None,
        )

    # ---- credential list -----------------------------------------------

    async def load_files(self):
        """GET /auth-files into ``files``."""
        self.loading_files = True
        self.files_error = None
        self._notify_updated()
        try:
            self.files = await self.api_client.fetch_auth_files()
        except APIError as e:
            self.files_error = e.message
        finally:
            self.loading_files = False
            self._notify_updated()

    async def delete_file(self, name: str):
        try:
            await self.api_client.delete_auth_file(name)
        except APIError as e:
            self.files_error = e.message
            self._notify_updated()
            return
        log_with_timestamp(f"Deleted {name}", "[ProvidersViewModel]")
        await self.load_files()
        self._publish_refresh("delete")

    async def delete_all_files(self):
        try:
            await self.api_client.delete_all_auth_files()
        except APIError as e:
            self.files_error = e.message
            self._notify_updated()
            return
        await self.load_files()
        self._publish_refresh("delete-all")

    def grouped_files(self) -> List[Tuple[ProviderType, List[AuthFile]]]:
        """Credentials per provider, in enum order, non-empty groups only."""
        groups: Dict[ProviderType, List[AuthFile]] = {provider: [] for provider in ProviderType}
        for credential in self.files:
            groups[classify(credential)].append(credential)
        return [(provider, files) for provider, files in groups.items() if files]

    def _count(self, provider: ProviderType, files: List[AuthFile]) -> int:
        return sum(1 for credential in files if classify(credential) == provider)

    # ---- polling -------------------------------------------------------

    @property
    def active_polls(self) -> List[ProviderType]:
        return [provider for provider, handle in self._polls.items() if handle.active]

    def _stop_polling(self, provider: ProviderType):
        handle = self._polls.pop(provider, None)
        if handle is not None:
            handle.stop()

    def _start_polling(
        self,
        provider: ProviderType,
        interval: float,
        tick: Callable[[asyncio.Event], Awaitable[None]],
    ):
        self._stop_polling(provider)
        stop_event = asyncio.Event()
        task = asyncio.ensure_future(self._poll_loop(provider, interval, tick, stop_event))
        self._polls[provider] = PollHandle(task=task, stop_event=stop_event)

    async def _poll_loop(self, provider, interval, tick, stop_event: asyncio.Event):
        while not stop_event.is_set():
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval)
                return
            except asyncio.TimeoutError:
                pass
            try:
                await tick(stop_event)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                # A failed tick does not end the flow; the next one retries
                log_with_timestamp(f"Polling error for {provider.value}: {e}", "[ProvidersViewModel]")

    def _state_tick(self, provider: ProviderType, state: str):
        async def tick(stop_event: asyncio.Event):
            response = await self.api_client.poll_oauth_status(state)
            if stop_event.is_set():
                return
            if response.is_success:
                await self._complete(provider)
            elif response.is_failure:
                self._stop_polling(provider)
                self._fail(provider, response.error or response.message or "Authentication failed")
        return tick

    def _count_tick(self, provider: ProviderType, baseline: int):
        async def tick(stop_event: asyncio.Event):
            files = await self.api_client.fetch_auth_files()
            if stop_event.is_set():
                return
            if self._count(provider, files) > baseline:
                self.files = files
                await self._complete(provider, reload=False)
        return tick

    async def _complete(self, provider: ProviderType, reload: bool = True):
        """Successful link: stop polling, refresh lists everywhere."""
        self._stop_polling(provider)
        self._set_state(provider, status=OAuthStatus.SUCCESS, error=None)
        log_with_timestamp(f"{provider.display_name} connected", "[ProvidersViewModel]")
        if self.selected_provider == provider:
            self.selected_provider = None
        if reload:
            await self.load_files()
        else:
            self._notify_updated()
        self._publish_refresh(f"auth:{provider.value}")

    def _publish_refresh(self, reason: str):
        if self.refresh_bus is not None:
            self.refresh_bus.publish(reason)

    async def _baseline_count(self, provider: ProviderType) -> int:
        try:
            files = await self.api_client.fetch_auth_files()
        except APIError as e:
            log_with_timestamp(f"Using cached list for baseline: {e.message}", "[ProvidersViewModel]")
            files = self.files
        return self._count(provider, files)

    def _open(self, url: str):
        if not self.open_url(url):
            log_with_timestamp(f"Open this URL to continue: {url}", "[ProvidersViewModel]")

    # ---- auth flows ----------------------------------------------------

    def _begin_attempt(self, provider: ProviderType) -> int:
        attempt = self._attempts.get(provider, 0) + 1
        self._attempts[provider] = attempt
        return attempt

    def _is_current(self, provider: ProviderType, attempt: int) -> bool:
        return self._attempts.get(provider) == attempt

    async def start_auth(self, provider: ProviderType, project_id: Optional[str] = None):
        """Begin linking a new account for ``provider``."""
        attempt = self._begin_attempt(provider)
        if provider.is_plus_only and not self.plus_providers_supported():
            self._fail(provider, f"{provider.display_name} requires a CLIProxyAPI Plus server")
            return

        self._stop_polling(provider)
        self._polling_entered.discard(provider)
        self._states[provider] = ProviderConnectionState(status=OAuthStatus.WAITING)
        self.selected_provider = provider
        self._notify_updated()

        try:
            if provider == ProviderType.KIRO:
                await self._start_kiro_auth(attempt)
            elif provider == ProviderType.COPILOT:
                await self._start_copilot_auth(attempt)
            else:
                await self._start_oauth(provider, project_id, attempt)
        except Exception as e:
            if not self._is_current(provider, attempt):
                log_debug(f"Ignoring error from superseded {provider.value} start: {e}", "[ProvidersViewModel]")
                return
            if not isinstance(e, (APIError, DeviceFlowError)):
                traceback.print_exc()
            self._fail(provider, str(e) or type(e).__name__)

    async def _start_oauth(self, provider: ProviderType, project_id: Optional[str], attempt: int):
        response = await self.api_client.get_oauth_url(provider, project_id)
        if not self._is_current(provider, attempt):
            return
        url = response.url or response.auth_url
        if not url:
            raise APIError("No auth URL returned from server")

        self._set_state(provider, status=OAuthStatus.POLLING, url=url, state=response.state)
        self._open(url)
        if response.state:
            self._start_polling(provider, self.state_poll_interval, self._state_tick(provider, response.state))

    async def _start_kiro_auth(self, attempt: int):
        provider = ProviderType.KIRO
        url = f"{self.api_base}{KIRO_OAUTH_PATH}"
        baseline = await self._baseline_count(provider)
        if not self._is_current(provider, attempt):
            return
        self._open(url)
        self._set_state(provider, status=OAuthStatus.POLLING, url=url)
        self._start_polling(provider, self.kiro_poll_interval, self._count_tick(provider, baseline))

    async def _start_copilot_auth(self, attempt: int):
        provider = ProviderType.COPILOT
        # Counted before the server starts the flow so a fast login is not part of the baseline
        baseline = await self._baseline_count(provider)
        if not self._is_current(provider, attempt):
            return
        try:
            response = await self.api_client.get_oauth_url(provider)
        except APIError as e:
            if e.status == 404 and self._is_current(provider, attempt):
                log_with_timestamp("Server has no Copilot login; using GitHub device flow", "[ProvidersViewModel]")
                await self._start_copilot_device_flow(attempt)
                return
            raise
        if not self._is_current(provider, attempt):
            return

        url = response.url or response.verification_uri
        if not url:
            raise APIError("No verification URL returned from server")

        self._set_state(
            provider, status=OAuthStatus.POLLING, url=url, state=response.state, user_code=response.user_code
        )
        self._open(url)

        if response.state:
            self._start_polling(provider, self.state_poll_interval, self._state_tick(provider, response.state))
        else:
            self._start_polling(provider, self.count_poll_interval, self._count_tick(provider, baseline))

    async def _start_copilot_device_flow(self, attempt: int):
        provider = ProviderType.COPILOT
        if self.device_flow is None:
            self.device_flow = CopilotDeviceFlow()
        code = await self.device_flow.request_device_code()
        if not self._is_current(provider, attempt):
            return

        self._set_state(
            provider,
            status=OAuthStatus.POLLING,
            url=code.verification_uri,
            user_code=code.user_code,
            device_code=code.device_code,
            expires_in=code.expires_in,
            interval=code.interval,
        )
        self._open(code.verification_uri)

        self._stop_polling(provider)
        stop_event = asyncio.Event()
        task = asyncio.ensure_future(self._run_device_flow(code, stop_event))
        self._polls[provider] = PollHandle(task=task, stop_event=stop_event)

    async def _run_device_flow(self, code: DeviceCode, stop_event: asyncio.Event):
        provider = ProviderType.COPILOT
        try:
            await self.device_flow.complete(code, self.api_client, stop_event)
        except DeviceFlowCancelled:
            return
        except (DeviceFlowError, APIError) as e:
            if not stop_event.is_set():
                self._stop_polling(provider)
                self._fail(provider, str(e))
            return
        if not stop_event.is_set():
            await self._complete(provider)

    async def submit_callback(self, provider: ProviderType, redirect_url: str) -> bool:
        """Finish a flow with the redirect URL pasted by the user."""
        redirect_url = (redirect_url or "").strip()
        if not redirect_url or provider not in self._polling_entered:
            return False

        attempt = self._attempts.get(provider, 0)
        self._set_state(provider, status=OAuthStatus.WAITING)
        try:
            await self.api_client.submit_oauth_callback(provider, redirect_url)
        except APIError as e:
            if self._is_current(provider, attempt):
                self._fail(provider, e.message)
            return False
        if not self._is_current(provider, attempt):
            return False
        await self._complete(provider)
        return True

    def cancel_auth(self, provider: ProviderType):
        """Abandon the flow and go back to idle."""
        self._begin_attempt(provider)
        self._stop_polling(provider)
        self._polling_entered.discard(provider)
        self._states[provider] = ProviderConnectionState(status=OAuthStatus.IDLE)
        if self.selected_provider == provider:
            self.selected_provider = None
        self._notify_updated()

    async def close(self):
        """Stop and cancel every poll."""
        for provider in list(self._attempts):
            self._begin_attempt(provider)
        handles = list(self._polls.values())
        self._polls.clear()
        for handle in handles:
            handle.stop()
            handle.task.cancel()
        if handles:
            await asyncio.gather(*(handle.task for handle in handles), return_exceptions=True)
        if self.device_flow is not None:
            await self.device_flow.close()
