"""Authentication models."""

import base64
import binascii
import json
import math
import re
from enum import Enum
from typing import Any, Optional, Union
from pydantic import BaseModel, ConfigDict, model_validator

from .providers import ProviderType, classify

_PROJECT_RE = re.compile(r"\(([^()]+)\)")


def _normalize_string(value: Any) -> Optional[str]:
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        return value.strip() or None
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float) and math.isfinite(value):
        return str(int(value)) if value.is_integer() else str(value)
    return None


def parse_id_token_payload(value: Any) -> Optional[dict]:
    """Claims of an id_token given as a dict, JSON text or a JWT."""
    if isinstance(value, dict):
        return value
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    try:
        parsed = json.loads(text)
        if isinstance(parsed, dict):
            return parsed
    except ValueError:
        pass

    segments = text.split(".")
    if len(segments) < 2:
        return None
    segment = segments[1]
    try:
        decoded = base64.urlsafe_b64decode(segment + "=" * (-len(segment) % 4))
        parsed = json.loads(decoded.decode("utf-8"))
    except (binascii.Error, ValueError):
        return None
    return parsed if isinstance(parsed, dict) else None


class OAuthStatus(str, Enum):
    """OAuth flow status."""
    IDLE = "idle"
    WAITING = "waiting"
    POLLING = "polling"
    SUCCESS = "success"
    ERROR = "error"


class ProviderConnectionState(BaseModel):
    """State of one provider's account-linking flow."""
    model_config = ConfigDict(frozen=True)

    status: OAuthStatus = OAuthStatus.IDLE
    url: Optional[str] = None
    state: Optional[str] = None
    error: Optional[str] = None
    user_code: Optional[str] = None
    device_code: Optional[str] = None
    expires_in: Optional[int] = None
    interval: Optional[int] = None

    def evolve(self, **changes: Any) -> "ProviderConnectionState":
        """Return a copy with the given fields replaced."""
        return self.model_copy(update=changes)


class AuthFile(BaseModel):
    """Auth file (credential) from the Management API.

    The server attaches provider-specific fields freely, so unknown keys are
    kept and reachable through ``get()``.
    """
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: str = ""
    filename: str = ""
    provider: str = ""
    label: Optional[str] = None
    status: Optional[str] = None
    disabled: Optional[bool] = None
    email: Optional[str] = None
    account: Optional[str] = None
    auth_index: Optional[str] = None
    plan_type: Optional[str] = None
    id_token: Optional[Union[dict, str]] = None
    metadata: Optional[dict] = None
    attributes: Optional[dict] = None

    @model_validator(mode="before")
    @classmethod
    def _normalize_aliases(cls, data: Any) -> Any:
        """Accept the camelCase and legacy spellings the server emits."""
        if not isinstance(data, dict):
            return data
        data = dict(data)
        if not data.get("filename") and isinstance(data.get("name"), str):
            data["filename"] = data["name"]
        if data.get("auth_index") is None and data.get("authIndex") is not None:
            data["auth_index"] = data["authIndex"]
        if data.get("plan_type") is None and data.get("planType") is not None:
            data["plan_type"] = data["planType"]
        auth_index = data.get("auth_index")
        if auth_index is not None and not isinstance(auth_index, str):
            data["auth_index"] = _normalize_string(auth_index)
        for key in ("id", "filename", "provider"):
            if data.get(key) is None:
                data.pop(key, None)
            elif not isinstance(data[key], str):
                data[key] = str(data[key])
        for key in ("metadata", "attributes"):
            if data.get(key) is not None and not isinstance(data[key], dict):
                data[key] = None
        if data.get("id_token") is not None and not isinstance(data["id_token"], (dict, str)):
            data["id_token"] = None
        for key in ("label", "status", "email", "account", "plan_type"):
            if key in data and data[key] is not None and not isinstance(data[key], str):
                data[key] = _normalize_string(data[key])
        if "disabled" in data and not isinstance(data["disabled"], bool):
            data["disabled"] = None
        return data

    def get(self, key: str, default: Any = None) -> Any:
        """Look up a declared or extra field by name."""
        if key in type(self).model_fields:
            value = getattr(self, key)
            return default if value is None else value
        extra = self.model_extra or {}
        return extra.get(key, default)

    @property
    def resolved_auth_index(self) -> Optional[str]:
        """Handle the server uses to find this credential in /api-call."""
        for value in (self.auth_index, self.get("authIndex"), self.id, self.filename):
            text = _normalize_string(value)
            if text:
                return text
        return None

    def _sources(self) -> list[dict]:
        return [source for source in (self.metadata, self.attributes) if isinstance(source, dict)]

    @property
    def codex_account_id(self) -> Optional[str]:
        """ChatGPT account id carried in the id_token claims."""
        candidates = [self.id_token] + [source.get("id_token") for source in self._sources()]
        for candidate in candidates:
            claims = parse_id_token_payload(candidate)
            if claims:
                account_id = _normalize_string(
                    claims.get("chatgpt_account_id", claims.get("chatgptAccountId"))
                )
                if account_id:
                    return account_id
        return None

    @property
    def codex_plan_type(self) -> Optional[str]:
        """Lowercased plan type from the credential, its id_token or metadata."""
        candidates: list[Any] = [self.plan_type, self.get("planType")]
        token = self.id_token if isinstance(self.id_token, dict) else None
        if token:
            candidates += [token.get("plan_type"), token.get("planType")]
        for source in self._sources():
            candidates += [source.get("plan_type"), source.get("planType")]
            nested = source.get("id_token")
            if isinstance(nested, dict):
                candidates += [nested.get("plan_type"), nested.get("planType")]
        for candidate in candidates:
            plan = _normalize_string(candidate)
            if plan:
                return plan.lower()
        return None

    @property
    def gemini_project_id(self) -> Optional[str]:
        """Project id from the trailing "(project)" of the account label."""
        candidates = [self.account] + [source.get("account") for source in self._sources()]
        for candidate in candidates:
            if not isinstance(candidate, str):
                continue
            matches = _PROJECT_RE.findall(candidate)
            if matches and matches[-1].strip():
                return matches[-1].strip()
        return None

    @property
    def provider_type(self) -> ProviderType:
        """Provider classification of this credential."""
        return classify(self)

    @property
    def display_name(self) -> str:
        """Filename without the gmail suffix and .json extension."""
        name = self.filename or self.id or "unknown"
        return re.sub(r"\.json$", "", name.replace("_gmail_com", ""))


class OAuthURLResponse(BaseModel):
    """Response of GET /{provider}-auth-url."""
    model_config = ConfigDict(extra="allow")

    status: Optional[str] = None
    url: Optional[str] = None
    auth_url: Optional[str] = None
    verification_uri: Optional[str] = None
    state: Optional[str] = None
    user_code: Optional[str] = None
    device_code: Optional[str] = None
    expires_in: Optional[int] = None
    interval: Optional[int] = None
    error: Optional[str] = None

    @property
    def resolved_url(self) -> Optional[str]:
        """The URL the user should open."""
        return self.url or self.auth_url or self.verification_uri


class OAuthStatusResponse(BaseModel):
    """Response of GET /get-auth-status."""
    model_config = ConfigDict(extra="allow")

    status: str = ""
    completed: Optional[bool] = None
    failed: Optional[bool] = None
    error: Optional[str] = None
    message: Optional[str] = None

    @property
    def is_success(self) -> bool:
        return self.status in ("ok", "completed") or bool(self.completed)

    @property
    def is_failure(self) -> bool:
        return self.status in ("error", "failed") or bool(self.failed)
