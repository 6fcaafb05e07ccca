"""Quota fetchers for each provider."""

from .base import BaseQuotaFetcher, UnsupportedQuotaFetcher, format_quota_error
from .antigravity import AntigravityQuotaFetcher, parse_antigravity
from .codex import CodexQuotaFetcher, format_codex_reset_label, parse_codex
from .gemini import GeminiCLIQuotaFetcher, parse_gemini_cli
from .kiro import KiroQuotaFetcher, parse_kiro
from .copilot import CopilotQuotaFetcher, parse_copilot
from .claude import ClaudeCodeQuotaFetcher, parse_claude
from ..api_client import ManagementAPIClient
from ...models.providers import ProviderType

FETCHERS: dict[ProviderType, type[BaseQuotaFetcher]] = {
    ProviderType.ANTIGRAVITY: AntigravityQuotaFetcher,
    ProviderType.CODEX: CodexQuotaFetcher,
    ProviderType.GEMINI_CLI: GeminiCLIQuotaFetcher,
    ProviderType.KIRO: KiroQuotaFetcher,
    ProviderType.COPILOT: CopilotQuotaFetcher,
    ProviderType.ANTHROPIC: ClaudeCodeQuotaFetcher,
}


def create_fetchers(api_client: ManagementAPIClient) -> dict[ProviderType, BaseQuotaFetcher]:
    """One fetcher per provider; UNKNOWN gets one that reports "not supported"."""
    fetchers: dict[ProviderType, BaseQuotaFetcher] = {
        provider: cls(api_client) for provider, cls in FETCHERS.items()
    }
    fetchers[ProviderType.UNKNOWN] = UnsupportedQuotaFetcher(api_client)
    return fetchers


__all__ = [
    "AntigravityQuotaFetcher",
    "BaseQuotaFetcher",
    "ClaudeCodeQuotaFetcher",
    "CodexQuotaFetcher",
    "CopilotQuotaFetcher",
    "FETCHERS",
    "GeminiCLIQuotaFetcher",
    "KiroQuotaFetcher",
    "UnsupportedQuotaFetcher",
    "create_fetchers",
    "format_codex_reset_label",
    "format_quota_error",
    "parse_antigravity",
    "parse_claude",
    "parse_codex",
    "parse_copilot",
    "parse_gemini_cli",
    "parse_kiro",
]
