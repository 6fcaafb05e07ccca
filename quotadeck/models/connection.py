"""Management server connection configuration."""

import os
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlsplit

import keyring
from keyring.errors import KeyringError

from ..utils.log import log_with_timestamp
from ..utils.settings import SettingsManager

KEYRING_SERVICE = "quotadeck"
MANAGEMENT_API_PREFIX = "/v0/management"
DEFAULT_API_BASE = "http://127.0.0.1:8317"


def normalize_api_base(value: Optional[str]) -> str:
    """Reduce user input to ``scheme://host[:port]``.

    Trailing slashes and a pasted management prefix are dropped, and a bare
    host gets ``http://``.
    """
    base = (value or "").strip()
    if not base:
        return ""
    if "://" not in base:
        base = f"http://{base}"
    base = base.rstrip("/")
    if base.lower().endswith(MANAGEMENT_API_PREFIX):
        base = base[: -len(MANAGEMENT_API_PREFIX)].rstrip("/")
    parts = urlsplit(base)
    if not parts.netloc:
        return ""
    return f"{parts.scheme}://{parts.netloc}{parts.path}".rstrip("/")


@dataclass
class ConnectionConfig:
    """Where the management server lives and how to authenticate to it."""
    api_base: str = DEFAULT_API_BASE
    management_key: Optional[str] = None
    installed_version: Optional[str] = None
    exe_path: Optional[str] = None

    @property
    def management_url(self) -> str:
        return f"{self.api_base}{MANAGEMENT_API_PREFIX}"

    @property
    def is_valid(self) -> bool:
        return bool(self.api_base)

    @classmethod
    def load(cls, settings: SettingsManager) -> "ConnectionConfig":
        """Build the config from settings, keyring, then env overrides."""
        api_base = normalize_api_base(
            os.environ.get("QUOTADECK_API_BASE") or settings.get("apiBase") or DEFAULT_API_BASE
        )
        management_key = os.environ.get("QUOTADECK_MANAGEMENT_KEY") or load_management_key(api_base)
        return cls(
            api_base=api_base,
            management_key=management_key,
            installed_version=settings.get("installedServerVersion"),
            exe_path=settings.get("serverExecutablePath"),
        )

    def save(self, settings: SettingsManager):
        """Persist the API base; the key goes to the keyring, never to settings.json."""
        settings.set("apiBase", self.api_base)
        if self.management_key:
            save_management_key(self.api_base, self.management_key)


def _key_name(api_base: str) -> str:
    return f"management_key_{api_base or 'default'}"


def load_management_key(api_base: str) -> Optional[str]:
    try:
        return keyring.get_password(KEYRING_SERVICE, _key_name(api_base))
    except KeyringError as e:
        log_with_timestamp(f"Keyring unavailable: {e}", "[Connection]")
        return None


def save_management_key(api_base: str, management_key: str) -> bool:
    try:
        keyring.set_password(KEYRING_SERVICE, _key_name(api_base), management_key)
        return True
    except KeyringError as e:
        log_with_timestamp(f"Could not store management key: {e}", "[Connection]")
        return False


def delete_management_key(api_base: str):
    try:
        keyring.delete_password(KEYRING_SERVICE, _key_name(api_base))
    except KeyringError:
        # PasswordDeleteError (nothing stored) is a KeyringError too
        pass
