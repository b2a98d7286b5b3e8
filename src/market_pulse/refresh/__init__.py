"""Background refresh: one-shot service and periodic scheduler."""

from market_pulse.refresh.scheduler import RefreshScheduler
from market_pulse.refresh.service import HistorySource, RefreshService

__all__ = [
    "HistorySource",
    "RefreshScheduler",
    "RefreshService",
]
