"""Data models."""

from .providers import ProviderType, classify
from .auth import (
    AuthFile,
    OAuthStatus,
    OAuthStatusResponse,
    OAuthURLResponse,
    ProviderConnectionState,
)
from .quota import FileQuota, ProviderQuotaResult, ProviderSection, QuotaModel
from .server import supports_plus_providers

__all__ = [
    "AuthFile",
    "FileQuota",
    "OAuthStatus",
    "OAuthStatusResponse",
    "OAuthURLResponse",
    "ProviderConnectionState",
    "ProviderQuotaResult",
    "ProviderSection",
    "ProviderType",
    "QuotaModel",
    "classify",
    "supports_plus_providers",
]
