"""Tests for provider classification and provider metadata."""

import pytest

from quotadeck.models.auth import AuthFile
from quotadeck.models.providers import ProviderType, classify


@pytest.mark.parametrize("filename,expected", [
    ("antigravity-user@example.com.json", ProviderType.ANTIGRAVITY),
    ("codex-user@example.com-plus.json", ProviderType.CODEX),
    ("gemini-cli-user@example.com.json", ProviderType.GEMINI_CLI),
    ("my-gemini-account.json", ProviderType.GEMINI_CLI),
    ("kiro-github.json", ProviderType.KIRO),
    ("github-copilot-octocat.json", ProviderType.COPILOT),
    ("claude-user@example.com.json", ProviderType.ANTHROPIC),
    ("backup-anthropic.json", ProviderType.ANTHROPIC),
])
def test_classify_by_filename(filename, expected):
    assert classify({"filename": filename}) == expected


@pytest.mark.parametrize("provider,expected", [
    ("Antigravity", ProviderType.ANTIGRAVITY),
    ("codex", ProviderType.CODEX),
    ("gemini", ProviderType.GEMINI_CLI),
    ("kiro", ProviderType.KIRO),
    ("github", ProviderType.COPILOT),
    ("github-copilot", ProviderType.COPILOT),
    ("claude", ProviderType.ANTHROPIC),
    ("qwen", ProviderType.UNKNOWN),
])
def test_classify_by_provider_field(provider, expected):
    assert classify({"filename": "account.json", "provider": provider}) == expected


def test_filename_wins_over_provider_field():
    assert classify({"filename": "codex-a.json", "provider": "claude"}) == ProviderType.CODEX


def test_name_used_when_filename_missing():
    assert classify({"name": "kiro-token.json"}) == ProviderType.KIRO


@pytest.mark.parametrize("credential", [
    None,
    {},
    {"filename": None, "provider": 5},
    {"filename": 12, "provider": ["codex"]},
    "codex-a.json",
    42,
    object(),
])
def test_classify_is_total(credential):
    assert isinstance(classify(credential), ProviderType)


def test_classify_accepts_auth_file():
    credential = AuthFile.model_validate({"name": "github-copilot-octocat.json", "provider": "copilot"})
    assert classify(credential) == ProviderType.COPILOT
    assert credential.provider_type == ProviderType.COPILOT


def test_every_provider_has_display_name():
    for provider in ProviderType:
        assert provider.display_name


def test_auth_url_paths():
    assert ProviderType.COPILOT.auth_url_path == "/github-auth-url"
    assert ProviderType.GEMINI_CLI.auth_url_path == "/gemini-cli-auth-url"
    assert ProviderType.KIRO.auth_url_path is None
    assert ProviderType.UNKNOWN.auth_url_path is None


def test_callback_name_maps_gemini_cli():
    assert ProviderType.GEMINI_CLI.callback_name == "gemini"
    assert ProviderType.CODEX.callback_name == "codex"


def test_plus_only_providers():
    assert {p for p in ProviderType if p.is_plus_only} == {ProviderType.COPILOT, ProviderType.KIRO}
