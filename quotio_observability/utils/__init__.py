"""Utility functions for Quotio observability."""

from .dates import parse_iso_date, seconds_between, to_utc
from .feature_flags import FeatureFlagManager
from .log import log_with_timestamp
from .settings import SettingsManager

__all__ = [
    "parse_iso_date",
    "seconds_between",
    "to_utc",
    "FeatureFlagManager",
    "log_with_timestamp",
    "SettingsManager",
]
