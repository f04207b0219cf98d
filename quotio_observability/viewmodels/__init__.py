"""View models for Quotio observability."""

from .logs_viewmodel import LogFilterCriteria, LogsViewModel
from .observability_viewmodel import (
    Feedback,
    LogsTab,
    NavigationPage,
    ObservabilityViewModel,
    RequestFilterCriteria,
)
from .usage_stats_viewmodel import StatsTab, UsageStatsViewModel

__all__ = [
    "LogFilterCriteria",
    "LogsViewModel",
    "Feedback",
    "LogsTab",
    "NavigationPage",
    "ObservabilityViewModel",
    "RequestFilterCriteria",
    "StatsTab",
    "UsageStatsViewModel",
]
