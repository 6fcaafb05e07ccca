"""
QuotaViewModel - state for the quota dashboard.

WORKFLOW OVERVIEW:
==================
1. load_credentials():
   - Lists credentials from the management API (GET /auth-files)
   - Classifies each one into a ProviderType and builds ProviderSections
   - Schedules fetch_quota() for every credential as its own task

2. fetch_quota(file_id):
   - Marks the entry loading, resolves the auth index and provider-specific
     context (Codex account id, Gemini project id)
   - Calls the provider's fetcher, which goes through POST /api-call
   - Writes the outcome back and notifies update callbacks

3. refresh_displayed():
   - Re-fetches every credential of the active provider tab

STATE:
sections is a tuple of frozen ProviderSections. Every write builds a new tuple
from the current one synchronously (no await in between), so concurrent
fetches for different credentials never overwrite each other's results.
"""

import asyncio
import dataclasses
import traceback
import uuid
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Tuple

from ..models.auth import AuthFile
from ..models.providers import ProviderType, classify
from ..models.quota import FileQuota, ProviderQuotaResult, ProviderSection
from ..services.api_client import APIError, ManagementAPIClient
from ..services.quota_fetchers import BaseQuotaFetcher, create_fetchers
from ..services.refresh_bus import RefreshBus
from ..utils.log import log_debug, log_with_timestamp
from ..utils.settings import SettingsManager

AUTH_FILES_CHANNEL = "auth-files"


@dataclass
class QuotaViewModel:
    """
    View model for credential quotas.

    UI INTEGRATION:
    Observers register with register_update_callback() and are called after
    every state change (list loaded, entry loading, entry finished).
    """

    api_client: ManagementAPIClient
    refresh_bus: Optional[RefreshBus] = None
    settings: Optional[SettingsManager] = None

    sections: Tuple[ProviderSection, ...] = ()
    loading: bool = False
    error: Optional[str] = None

    _active_tab: Optional[ProviderType] = field(default=None, init=False, repr=False)
    _fetchers: dict = field(default_factory=dict, init=False, repr=False)
    _update_callbacks: List[Callable] = field(default_factory=list, init=False, repr=False)
    _tasks: set = field(default_factory=set, init=False, repr=False)

    def __post_init__(self):
        self._fetchers = create_fetchers(self.api_client)
        if self.settings is not None:
            try:
                self._active_tab = ProviderType(self.settings.get("activeProviderTab"))
            except ValueError:
                self._active_tab = None
        if self.refresh_bus is not None:
            self.refresh_bus.subscribe(self._on_refresh_requested)

    # ---- observers -----------------------------------------------------

    def register_update_callback(self, callback: Callable):
        """Register a callback to be called when quota state changes."""
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
                name = getattr(callback, "__name__", repr(callback))
                log_with_timestamp(f"Update callback {name} failed: {e}", "[QuotaViewModel]")
                traceback.print_exc()

    # ---- lookups -------------------------------------------------------

    @staticmethod
    def classify(credential) -> ProviderType:
        return classify(credential)

    def fetcher_for(self, provider: ProviderType) -> BaseQuotaFetcher:
        return self._fetchers.get(provider) or self._fetchers[ProviderType.UNKNOWN]

    def section(self, provider: ProviderType) -> Optional[ProviderSection]:
        for section in self.sections:
            if section.provider == provider:
                return section
        return None

    def find_file(self, file_id: str) -> Optional[FileQuota]:
        for section in self.sections:
            for entry in section.files:
                if entry.file_id == file_id:
                    return entry
        return None

    @property
    def active_tab(self) -> Optional[ProviderType]:
        """Selected provider; falls back to the first section when it has no credentials."""
        if self._active_tab is not None and self.section(self._active_tab) is not None:
            return self._active_tab
        return self.sections[0].provider if self.sections else None

    def set_active_tab(self, provider: ProviderType):
        self._active_tab = provider
        if self.settings is not None:
            self.settings.set("activeProviderTab", provider.value)
        self._notify_updated()

    @property
    def displayed_files(self) -> Tuple[FileQuota, ...]:
        tab = self.active_tab
        section = self.section(tab) if tab is not None else None
        return section.files if section else ()

    # ---- loading -------------------------------------------------------

    @staticmethod
    def build_sections(files: List[AuthFile]) -> Tuple[ProviderSection, ...]:
        """Group credentials by provider; sections follow enum order, empty ones dropped."""
        grouped: dict[ProviderType, list[FileQuota]] = {provider: [] for provider in ProviderType}
        for credential in files:
            provider = classify(credential)
            grouped[provider].append(FileQuota(
                file_id=credential.id or credential.filename or uuid.uuid4().hex,
                filename=credential.display_name,
                provider=provider.label,
                provider_key=provider,
                credential=credential,
            ))
        return tuple(
            ProviderSection(provider=provider, display_name=provider.display_name, files=tuple(entries))
            for provider, entries in grouped.items()
            if entries
        )

    async def load_credentials(self):
        """List credentials, rebuild sections and start a fetch for each one."""
        generation = self.api_client.begin_request(AUTH_FILES_CHANNEL)
        self.loading = True
        self.error = None
        self._notify_updated()

        try:
            files = await self.api_client.fetch_auth_files()
        except APIError as e:
            if self.api_client.is_current(AUTH_FILES_CHANNEL, generation):
                log_with_timestamp(f"Failed to load credentials: {e.message}", "[QuotaViewModel]")
                self.error = e.message
                self.loading = False
                self._notify_updated()
            return

        if not self.api_client.is_current(AUTH_FILES_CHANNEL, generation):
            log_debug("Dropping stale credential list", "[QuotaViewModel]")
            return

        self.sections = self.build_sections(files)
        self.loading = False
        log_with_timestamp(
            f"Loaded {len(files)} credential(s) in {len(self.sections)} provider section(s)",
            "[QuotaViewModel]",
        )
        self._notify_updated()

        for credential in files:
            if credential.id:
                self._schedule_fetch(credential.id, credential)
                await asyncio.sleep(0)

    def _schedule_fetch(self, file_id: str, credential: Optional[AuthFile] = None) -> asyncio.Task:
        task = asyncio.ensure_future(self.fetch_quota(file_id, credential))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    # ---- fetching ------------------------------------------------------

    def _provider_of(self, file_id: str, credential: Optional[AuthFile]) -> Optional[ProviderType]:
        if credential is not None:
            provider = classify(credential)
            if provider != ProviderType.UNKNOWN:
                return provider
        for section in self.sections:
            if any(entry.file_id == file_id for entry in section.files):
                return section.provider
        return None

    def _update_file(self, provider: ProviderType, file_id: str, **changes):
        """Replace one FileQuota; sections and its section are rebuilt, not mutated."""
        updated = []
        changed = False
        for section in self.sections:
            if section.provider != provider:
                updated.append(section)
                continue
            files = []
            for entry in section.files:
                if entry.file_id == file_id:
                    entry = dataclasses.replace(entry, **changes)
                    changed = True
                files.append(entry)
            updated.append(dataclasses.replace(section, files=tuple(files)))
        if changed:
            self.sections = tuple(updated)
            self._notify_updated()

    async def fetch_quota(self, file_id: str, credential: Optional[AuthFile] = None):
        """Fetch quota for one credential and store the outcome on its entry."""
        provider = self._provider_of(file_id, credential)
        if provider is None:
            log_debug(f"No section holds {file_id}", "[QuotaViewModel]")
            return

        self._update_file(provider, file_id, loading=True, error=None)

        if credential is None:
            entry = self.find_file(file_id)
            credential = entry.credential if entry else None
        if credential is None:
            self._update_file(provider, file_id, loading=False, error="File not found")
            return

        auth_index = credential.resolved_auth_index
        if not auth_index:
            self._update_file(
                provider, file_id, loading=False, error="No auth index (auth_index, id or filename) found"
            )
            return

        try:
            result = await self.fetcher_for(provider).fetch_quota(auth_index, credential)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log_with_timestamp(f"Quota fetch for {file_id} failed: {e}", "[QuotaViewModel]")
            traceback.print_exc()
            result = ProviderQuotaResult(error=str(e) or type(e).__name__)

        self._write_result(provider, file_id, result)

    def _write_result(self, provider: ProviderType, file_id: str, result: ProviderQuotaResult):
        models = tuple(result.models)
        self._update_file(
            provider,
            file_id,
            loading=False,
            error=result.error,
            models=models,
            limits=models if provider == ProviderType.CODEX else None,
            plan=result.plan,
            email=result.email,
        )
        if result.error:
            log_debug(f"{provider.value} {file_id}: {result.error}", "[QuotaViewModel]")

    async def refresh_displayed(self):
        """Re-fetch every credential shown in the active tab."""
        tasks = [self._schedule_fetch(entry.file_id, entry.credential) for entry in self.displayed_files]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # ---- lifecycle -----------------------------------------------------

    def _on_refresh_requested(self, reason: str):
        return self.load_credentials()

    async def wait_for_pending(self):
        """Wait until every scheduled fetch has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self):
        """Cancel in-flight fetches and stop listening for refreshes."""
        if self.refresh_bus is not None:
            self.refresh_bus.unsubscribe(self._on_refresh_requested)
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
