"""Provider models."""

from enum import Enum
from typing import Any, Optional


class ProviderType(str, Enum):
    """Providers whose quota the dashboard reports."""

    ANTIGRAVITY = "antigravity"
    CODEX = "codex"
    GEMINI_CLI = "gemini-cli"
    KIRO = "kiro"
    COPILOT = "copilot"
    ANTHROPIC = "anthropic"
    UNKNOWN = "unknown"

    @property
    def display_name(self) -> str:
        """Human-readable display name."""
        names = {
            ProviderType.ANTIGRAVITY: "Antigravity",
            ProviderType.CODEX: "Codex (OpenAI)",
            ProviderType.GEMINI_CLI: "Gemini CLI",
            ProviderType.KIRO: "Kiro (CodeWhisperer)",
            ProviderType.COPILOT: "GitHub Copilot",
            ProviderType.ANTHROPIC: "Claude (Anthropic)",
            ProviderType.UNKNOWN: "Other",
        }
        return names[self]

    @property
    def label(self) -> str:
        """Short label stored on each quota entry (e.g. "Gemini-cli")."""
        return self.value[:1].upper() + self.value[1:]

    @property
    def auth_url_path(self) -> Optional[str]:
        """Management API path that starts an OAuth flow, if the server has one."""
        paths = {
            ProviderType.ANTIGRAVITY: "/antigravity-auth-url",
            ProviderType.CODEX: "/codex-auth-url",
            ProviderType.GEMINI_CLI: "/gemini-cli-auth-url",
            ProviderType.ANTHROPIC: "/anthropic-auth-url",
            # Copilot's device flow lives under the GitHub name on the server
            ProviderType.COPILOT: "/github-auth-url",
        }
        return paths.get(self)

    @property
    def callback_name(self) -> str:
        """Provider name expected by POST /oauth-callback."""
        if self is ProviderType.GEMINI_CLI:
            return "gemini"
        return self.value

    @property
    def supports_webui_auth(self) -> bool:
        """Whether the auth-url endpoint accepts is_webui for this provider."""
        return self in {
            ProviderType.CODEX,
            ProviderType.ANTHROPIC,
            ProviderType.ANTIGRAVITY,
            ProviderType.GEMINI_CLI,
            ProviderType.KIRO,
        }

    @property
    def requires_project_id(self) -> bool:
        """Whether starting auth needs a Google Cloud project id."""
        return self is ProviderType.GEMINI_CLI

    @property
    def is_plus_only(self) -> bool:
        """Whether only CLIProxyAPI Plus builds can link this provider."""
        return self in {ProviderType.COPILOT, ProviderType.KIRO}


# Filename rules run first, then the free-text provider field.
_FILENAME_RULES = (
    (ProviderType.ANTIGRAVITY, ("antigravity-",), ("antigravity",)),
    (ProviderType.CODEX, ("codex-",), ("codex",)),
    (ProviderType.GEMINI_CLI, ("gemini-cli-",), ("gemini",)),
    (ProviderType.KIRO, ("kiro-",), ("kiro",)),
    (ProviderType.COPILOT, ("github-copilot-",), ("copilot",)),
    (ProviderType.ANTHROPIC, ("claude-",), ("claude", "anthropic")),
)

_PROVIDER_RULES = (
    (ProviderType.ANTIGRAVITY, ("antigravity",)),
    (ProviderType.CODEX, ("codex",)),
    (ProviderType.GEMINI_CLI, ("gemini",)),
    (ProviderType.KIRO, ("kiro",)),
    (ProviderType.COPILOT, ("copilot", "github")),
    (ProviderType.ANTHROPIC, ("claude", "anthropic")),
)


def _text(value: Any) -> str:
    return value.lower() if isinstance(value, str) else ""


def classify(credential: Any) -> ProviderType:
    """Map a credential to exactly one ProviderType.

    Works on AuthFile instances as well as raw dicts. Never raises: anything
    that matches no rule (including None) is UNKNOWN.
    """
    if credential is None:
        return ProviderType.UNKNOWN

    if isinstance(credential, dict):
        getter = credential.get
    else:
        def getter(key):
            return getattr(credential, key, None)

    filename = _text(getter("filename")) or _text(getter("name")) or _text(getter("id"))
    for provider, prefixes, substrings in _FILENAME_RULES:
        if filename.startswith(prefixes) or any(s in filename for s in substrings):
            return provider

    provider_field = _text(getter("provider"))
    for provider, substrings in _PROVIDER_RULES:
        if any(s in provider_field for s in substrings):
            return provider

    return ProviderType.UNKNOWN
