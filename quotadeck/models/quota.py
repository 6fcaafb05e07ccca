"""
Quota data models.

DATA STRUCTURES:
- QuotaModel: remaining quota for one model/window of an account
- ProviderQuotaResult: what a provider parser (or upstream call) produces
- FileQuota: one credential joined with its latest fetch outcome
- ProviderSection: FileQuotas grouped under one provider

FileQuota and ProviderSection are frozen. State changes produce new objects
via dataclasses.replace(), so a writer never mutates an object another
coroutine is holding.
"""

import math
from dataclasses import dataclass, field
from typing import Optional, Tuple

from .auth import AuthFile
from .providers import ProviderType


def clamp_percentage(value) -> float:
    """Clamp a remaining percentage to [0, 100]; non-numbers become 0."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0
    if not math.isfinite(number):
        return 0
    number = max(0.0, min(100.0, number))
    return int(number) if number.is_integer() else number


@dataclass
class QuotaModel:
    """
    Remaining quota for a single model or usage window.

    Fields:
        name: Model name or window label
        percentage: Remaining capacity (0-100), never the consumed share
        reset_time: Relative duration until reset (e.g. "4h 20m") or "Ready"
        display_value: Optional absolute figure such as "12 / 50"
    """
    name: str
    percentage: float
    reset_time: Optional[str] = None
    display_value: Optional[str] = None

    def __post_init__(self):
        self.percentage = clamp_percentage(self.percentage)


@dataclass
class ProviderQuotaResult:
    """Normalized quota for one account, as produced by a provider parser."""
    models: list[QuotaModel] = field(default_factory=list)
    plan: Optional[str] = None
    email: Optional[str] = None
    error: Optional[str] = None

    @property
    def limits(self) -> list[QuotaModel]:
        """Codex names its windows "limits"; same list as models."""
        return self.models


@dataclass(frozen=True)
class FileQuota:
    """One credential and the outcome of its most recent quota fetch."""
    file_id: str
    filename: str
    provider: str
    provider_key: ProviderType
    loading: bool = False
    error: Optional[str] = None
    models: Optional[Tuple[QuotaModel, ...]] = None
    limits: Optional[Tuple[QuotaModel, ...]] = None
    plan: Optional[str] = None
    email: Optional[str] = None
    credential: Optional[AuthFile] = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class ProviderSection:
    """All credentials of one provider."""
    provider: ProviderType
    display_name: str
    files: Tuple[FileQuota, ...] = ()
