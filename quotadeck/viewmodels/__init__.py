"""ViewModels for QuotaDeck."""

from .quota_viewmodel import QuotaViewModel
from .providers_viewmodel import PollHandle, ProvidersViewModel

__all__ = [
    "PollHandle",
    "ProvidersViewModel",
    "QuotaViewModel",
]
