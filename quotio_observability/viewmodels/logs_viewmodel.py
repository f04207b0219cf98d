"""Proxy log view model (the "Proxy logs" tab of the logs screen)."""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

import aiohttp

from ..models.logs import LogEntry, LogLevel
from ..services.api_client import APIError, ManagementAPIClient
from ..utils.log import log_with_timestamp
from .base import UpdateNotifier

MAX_LOG_ENTRIES = 50


@dataclass
class LogFilterCriteria:
    """Proxy log filters: level first, then free-text over the message."""
    level: Optional[LogLevel] = None
    search_text: str = ""


def filter_logs(logs: List[LogEntry], criteria: LogFilterCriteria) -> List[LogEntry]:
    result = logs
    if criteria.level is not None:
        result = [entry for entry in result if entry.level == criteria.level]
    search = criteria.search_text.strip().lower()
    if search:
        result = [entry for entry in result if search in entry.message.lower()]
    return result


@dataclass
class LogsViewModel(UpdateNotifier):
    """Incrementally fetched proxy log lines, capped to the newest entries."""

    api_client: Optional[ManagementAPIClient] = None
    max_entries: int = MAX_LOG_ENTRIES

    logs: List[LogEntry] = field(default_factory=list)
    is_refreshing: bool = False
    has_loaded_once: bool = False
    refresh_error: Optional[str] = None
    last_log_timestamp: Optional[int] = None

    def configure(self, base_url: str, auth_key: str):
        """Configure the API client for fetching logs."""
        self.api_client = ManagementAPIClient(base_url=base_url, auth_key=auth_key)

    @property
    def is_configured(self) -> bool:
        return self.api_client is not None

    async def refresh_logs(self):
        """Fetch lines newer than the last seen server timestamp."""
        if self.api_client is None:
            self.refresh_error = "Log service is not configured"
            self._notify_updated()
            return

        self.is_refreshing = True
        try:
            response = await self.api_client.fetch_logs(after=self.last_log_timestamp)
            if response.lines:
                now = datetime.now()
                self.logs.extend(
                    LogEntry(timestamp=now, level=LogLevel.from_line(line), message=line)
                    for line in response.lines
                )
                if len(self.logs) > self.max_entries:
                    self.logs = self.logs[-self.max_entries:]
            self.last_log_timestamp = response.latest_timestamp
            self.refresh_error = None
            self.has_loaded_once = True
        except (APIError, aiohttp.ClientError, asyncio.TimeoutError) as e:
            self.refresh_error = str(e)
            log_with_timestamp(f"Log refresh failed: {e}", self.log_prefix, logging.DEBUG)
        finally:
            self.is_refreshing = False
        self._notify_updated()

    async def clear_logs(self):
        """Clear the proxy's log buffer and the local copy."""
        if self.api_client is None:
            return
        try:
            await self.api_client.clear_logs()
        except (APIError, aiohttp.ClientError, asyncio.TimeoutError) as e:
            self.refresh_error = str(e)
        else:
            self.logs = []
            self.last_log_timestamp = None
            self.refresh_error = None
            self.has_loaded_once = True
        self._notify_updated()

    def filtered_logs(self, criteria: LogFilterCriteria) -> List[LogEntry]:
        return filter_logs(self.logs, criteria)

    def reset(self):
        """Reset state when disconnecting."""
        self.logs = []
        self.last_log_timestamp = None
        self.is_refreshing = False
        self.has_loaded_once = False
        self.refresh_error = None
        self.api_client = None
        self._notify_updated()
