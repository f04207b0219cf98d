"""Proxy log models."""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class LogLevel(str, Enum):
    """Severity inferred from a proxy log line."""
    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"

    @classmethod
    def from_line(cls, line: str) -> "LogLevel":
        if "error" in line or "ERROR" in line:
            return cls.ERROR
        if "warn" in line or "WARN" in line:
            return cls.WARN
        if "debug" in line or "DEBUG" in line:
            return cls.DEBUG
        return cls.INFO


@dataclass(frozen=True)
class LogEntry:
    """One proxy log line as displayed on the logs screen."""
    timestamp: datetime
    level: LogLevel
    message: str
    id: str = field(default_factory=lambda: str(uuid.uuid4()))


class LogsResponse(BaseModel):
    """Response of GET /logs."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    lines: Optional[List[str]] = None
    line_count: Optional[int] = Field(default=None, alias="line-count")
    latest_timestamp: Optional[int] = Field(default=None, alias="latest-timestamp")
