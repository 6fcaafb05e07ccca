"""Tests for QuotaViewModel."""

import asyncio

import pytest

from quotadeck.models.auth import AuthFile
from quotadeck.models.providers import ProviderType
from quotadeck.services.api_client import APIError, ApiCallResult
from quotadeck.services.quota_fetchers import claude, codex, kiro
from quotadeck.services.refresh_bus import RefreshBus
from quotadeck.utils.settings import SettingsManager
from quotadeck.viewmodels.quota_viewmodel import QuotaViewModel


def _files(*entries):
    return [AuthFile.model_validate(raw) for raw in entries]


CODEX_FILE = {"id": "codex-a.json", "name": "codex-a.json", "provider": "codex", "auth_index": "1"}
CLAUDE_FILE = {"id": "claude-b.json", "name": "claude-b.json", "provider": "claude", "auth_index": "2"}
OTHER_FILE = {"id": "qwen-c.json", "name": "qwen-c.json", "provider": "qwen", "auth_index": "3"}


def _route(responses):
    """api_call side effect answering by upstream URL."""
    async def api_call(auth_index, method, url, header=None, data=None):
        for prefix, response in responses.items():
            if url.startswith(prefix):
                return response
        return ApiCallResult(status_code=404, body={})
    return api_call


@pytest.fixture
def view_model(mock_api_client):
    vm = QuotaViewModel(api_client=mock_api_client)
    yield vm


@pytest.mark.asyncio
async def test_load_builds_sections_and_fetches(view_model, mock_api_client):
    mock_api_client.fetch_auth_files.return_value = _files(OTHER_FILE, CLAUDE_FILE, CODEX_FILE)
    mock_api_client.api_call.side_effect = _route({
        codex.USAGE_URL: ApiCallResult(status_code=200, body={"rate_limit": {"primary_window": {"used_percent": 40}}}),
        claude.USAGE_URL: ApiCallResult(status_code=200, body={"five_hour": {"utilization": 25}}),
    })

    await view_model.load_credentials()
    await view_model.wait_for_pending()

    assert [s.provider for s in view_model.sections] == [
        ProviderType.CODEX, ProviderType.ANTHROPIC, ProviderType.UNKNOWN,
    ]
    assert view_model.loading is False
    assert view_model.error is None

    codex_entry = view_model.find_file("codex-a.json")
    assert codex_entry.loading is False
    assert codex_entry.provider == "Codex"
    assert codex_entry.models[0].percentage == 60
    assert codex_entry.limits == codex_entry.models
    assert codex_entry.plan == "Plus"

    claude_entry = view_model.find_file("claude-b.json")
    assert claude_entry.models[0].percentage == 75
    assert claude_entry.limits is None

    other = view_model.find_file("qwen-c.json")
    assert other.error == "Quota not supported for this provider"
    assert other.models == ()


@pytest.mark.asyncio
async def test_kiro_suspension_written_to_entry(view_model, mock_api_client):
    mock_api_client.fetch_auth_files.return_value = _files({"id": "kiro-a.json", "provider": "kiro"})
    mock_api_client.api_call.side_effect = _route({
        kiro.USAGE_URL: ApiCallResult(status_code=403, body={"reason": "TEMPORARILY_SUSPENDED"}),
    })

    await view_model.load_credentials()
    await view_model.wait_for_pending()

    entry = view_model.find_file("kiro-a.json")
    assert entry.error is None
    assert entry.plan == "Suspended"
    assert [(m.name, m.percentage, m.reset_time) for m in entry.models] == [
        ("Kiro", 100, "Temporarily suspended"),
    ]


@pytest.mark.asyncio
async def test_list_failure_sets_error(view_model, mock_api_client):
    mock_api_client.fetch_auth_files.side_effect = APIError("Invalid management key", 401)
    await view_model.load_credentials()
    assert view_model.error == "Invalid management key"
    assert view_model.loading is False
    assert view_model.sections == ()


@pytest.mark.asyncio
async def test_stale_list_is_dropped(view_model, mock_api_client):
    release_first = asyncio.Event()
    calls = []

    async def fetch_auth_files():
        calls.append(len(calls))
        if len(calls) == 1:
            await release_first.wait()
            return _files(OTHER_FILE)
        return _files(CODEX_FILE)

    mock_api_client.fetch_auth_files.side_effect = fetch_auth_files
    mock_api_client.api_call.return_value = ApiCallResult(status_code=500, body={})

    first = asyncio.ensure_future(view_model.load_credentials())
    await asyncio.sleep(0)
    await view_model.load_credentials()
    release_first.set()
    await first
    await view_model.wait_for_pending()

    assert [s.provider for s in view_model.sections] == [ProviderType.CODEX]


@pytest.mark.asyncio
async def test_concurrent_fetches_do_not_overwrite_each_other(view_model, mock_api_client):
    files = _files(
        {"id": "codex-1.json", "provider": "codex", "auth_index": "a"},
        {"id": "codex-2.json", "provider": "codex", "auth_index": "b"},
        {"id": "codex-3.json", "provider": "codex", "auth_index": "c"},
    )
    mock_api_client.fetch_auth_files.return_value = files
    gates = {"a": asyncio.Event(), "b": asyncio.Event(), "c": asyncio.Event()}
    used = {"a": 10, "b": 20, "c": 30}

    async def api_call(auth_index, method, url, header=None, data=None):
        await gates[auth_index].wait()
        return ApiCallResult(status_code=200, body={"rate_limit": {"primary_window": {"used_percent": used[auth_index]}}})

    mock_api_client.api_call.side_effect = api_call

    await view_model.load_credentials()
    entries = view_model.section(ProviderType.CODEX).files
    assert all(entry.loading for entry in entries)

    # Finish in reverse order of start
    for key in ("c", "a", "b"):
        gates[key].set()
        await asyncio.sleep(0)
    await view_model.wait_for_pending()

    percentages = {e.file_id: e.models[0].percentage for e in view_model.section(ProviderType.CODEX).files}
    assert percentages == {"codex-1.json": 90, "codex-2.json": 80, "codex-3.json": 70}
    assert not any(e.loading for e in view_model.section(ProviderType.CODEX).files)


@pytest.mark.asyncio
async def test_refresh_is_idempotent(view_model, mock_api_client):
    mock_api_client.fetch_auth_files.return_value = _files(CODEX_FILE, CLAUDE_FILE)
    mock_api_client.api_call.side_effect = _route({
        codex.USAGE_URL: ApiCallResult(status_code=200, body={"rate_limit": {"primary_window": {"used_percent": 5}}}),
        claude.USAGE_URL: ApiCallResult(status_code=401, body={}),
    })

    await view_model.load_credentials()
    await view_model.wait_for_pending()
    first = view_model.sections

    await view_model.refresh_displayed()
    assert view_model.sections == first
    assert view_model.find_file("claude-b.json").error == "Token expired, please re-authenticate"


@pytest.mark.asyncio
async def test_missing_auth_index(view_model, mock_api_client):
    credential = AuthFile.model_validate({"provider": "codex"})
    view_model.sections = view_model.build_sections([credential])
    file_id = view_model.sections[0].files[0].file_id

    await view_model.fetch_quota(file_id, credential)

    entry = view_model.find_file(file_id)
    assert entry.error == "No auth index (auth_index, id or filename) found"
    assert entry.loading is False
    mock_api_client.api_call.assert_not_called()


@pytest.mark.asyncio
async def test_unexpected_fetcher_failure_becomes_error(view_model, mock_api_client):
    mock_api_client.fetch_auth_files.return_value = _files(CLAUDE_FILE)
    mock_api_client.api_call.side_effect = RuntimeError("boom")

    await view_model.load_credentials()
    await view_model.wait_for_pending()

    assert view_model.find_file("claude-b.json").error == "boom"


@pytest.mark.asyncio
async def test_active_tab_and_refresh_displayed(mock_api_client, tmp_path):
    settings = SettingsManager(config_dir=tmp_path)
    view_model = QuotaViewModel(api_client=mock_api_client, settings=settings)
    mock_api_client.fetch_auth_files.return_value = _files(CODEX_FILE, CLAUDE_FILE)
    mock_api_client.api_call.return_value = ApiCallResult(status_code=500, body={})

    await view_model.load_credentials()
    await view_model.wait_for_pending()
    assert view_model.active_tab == ProviderType.CODEX

    view_model.set_active_tab(ProviderType.ANTHROPIC)
    assert settings.get("activeProviderTab") == "anthropic"
    assert [e.file_id for e in view_model.displayed_files] == ["claude-b.json"]

    mock_api_client.api_call.reset_mock()
    await view_model.refresh_displayed()
    assert mock_api_client.api_call.call_count == 1
    assert mock_api_client.api_call.call_args.args[0] == "2"

    restored = QuotaViewModel(api_client=mock_api_client, settings=settings)
    restored.sections = view_model.sections
    assert restored.active_tab == ProviderType.ANTHROPIC


@pytest.mark.asyncio
async def test_active_tab_falls_back_to_first_section(view_model):
    view_model.set_active_tab(ProviderType.KIRO)
    view_model.sections = view_model.build_sections(_files(CLAUDE_FILE))
    assert view_model.active_tab == ProviderType.ANTHROPIC


@pytest.mark.asyncio
async def test_refresh_bus_reloads(mock_api_client):
    bus = RefreshBus()
    view_model = QuotaViewModel(api_client=mock_api_client, refresh_bus=bus)
    mock_api_client.fetch_auth_files.return_value = _files(OTHER_FILE)

    bus.publish("auth:codex")
    await bus.wait_for_pending()
    await view_model.wait_for_pending()

    assert mock_api_client.fetch_auth_files.await_count == 1
    assert view_model.find_file("qwen-c.json") is not None

    await view_model.close()
    bus.publish("again")
    await bus.wait_for_pending()
    assert mock_api_client.fetch_auth_files.await_count == 1


@pytest.mark.asyncio
async def test_update_callbacks(view_model, mock_api_client):
    mock_api_client.fetch_auth_files.return_value = _files(OTHER_FILE)
    seen = []

    def on_update():
        seen.append(view_model.loading)

    def broken():
        raise ValueError("observer bug")

    view_model.register_update_callback(broken)
    view_model.register_update_callback(on_update)
    await view_model.load_credentials()
    await view_model.wait_for_pending()

    assert seen[0] is True
    assert len(seen) >= 3

    view_model.unregister_update_callback(on_update)
    count = len(seen)
    await view_model.refresh_displayed()
    assert len(seen) == count


@pytest.mark.asyncio
async def test_close_cancels_in_flight_fetches(view_model, mock_api_client):
    mock_api_client.fetch_auth_files.return_value = _files(CLAUDE_FILE)
    never = asyncio.Event()

    async def api_call(*args, **kwargs):
        await never.wait()

    mock_api_client.api_call.side_effect = api_call
    await view_model.load_credentials()
    await asyncio.sleep(0)
    await view_model.close()

    assert not view_model._tasks
    assert view_model.find_file("claude-b.json").loading is True
