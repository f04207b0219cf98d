"""Request log models for tracking API requests."""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, List, Dict, Any
from enum import Enum


class RequestStatus(str, Enum):
    """Request status."""
    SUCCESS = "success"
    ERROR = "error"


class RequestStatusFilter(str, Enum):
    """Status-class filter of the requests list (by HTTP status range)."""
    ALL = "all"
    SUCCESS = "success"
    CLIENT_ERROR = "clientError"
    SERVER_ERROR = "serverError"

    def matches(self, status_code: Optional[int]) -> bool:
        code = status_code or 0
        if self is RequestStatusFilter.SUCCESS:
            return 200 <= code < 300
        if self is RequestStatusFilter.CLIENT_ERROR:
            return 400 <= code < 500
        if self is RequestStatusFilter.SERVER_ERROR:
            return 500 <= code < 600
        return True


class FallbackAttemptOutcome(str, Enum):
    """Outcome of one hop of a fallback route."""
    FAILED = "failed"
    SUCCESS = "success"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class FallbackAttempt:
    """One provider/model hop tried while serving a virtual model."""
    provider: str
    model_id: str
    outcome: FallbackAttemptOutcome
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "provider": self.provider,
            "model_id": self.model_id,
            "outcome": self.outcome.value,
            "reason": self.reason,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FallbackAttempt":
        return cls(
            provider=data["provider"],
            model_id=data["model_id"],
            outcome=FallbackAttemptOutcome(data.get("outcome", "failed")),
            reason=data.get("reason"),
        )


@dataclass(frozen=True)
class RequestLog:
    """Log entry for an API request. Immutable once recorded."""
    timestamp: datetime
    method: str  # GET, POST, etc.
    endpoint: str  # API endpoint path
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    request_id: Optional[str] = None  # assigned by the proxy
    provider: Optional[str] = None
    model: Optional[str] = None
    source: Optional[str] = None  # client subsystem (codex, cli, ...)
    source_raw: Optional[str] = None
    account_hint: Optional[str] = None
    request_payload_snippet: Optional[str] = None  # redacted and truncated
    resolved_model: Optional[str] = None
    resolved_provider: Optional[str] = None
    input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None
    duration_ms: Optional[int] = None
    status_code: Optional[int] = None
    request_size: Optional[int] = None  # bytes
    response_size: Optional[int] = None  # bytes
    error_message: Optional[str] = None
    fallback_attempts: Optional[List[FallbackAttempt]] = None
    fallback_started_from_cache: bool = False

    @property
    def is_success(self) -> bool:
        return self.status_code is not None and 200 <= self.status_code < 300

    @property
    def status(self) -> RequestStatus:
        """Get request status."""
        return RequestStatus.SUCCESS if self.is_success else RequestStatus.ERROR

    @property
    def total_tokens(self) -> Optional[int]:
        """Total tokens (input + output)."""
        if self.input_tokens is not None and self.output_tokens is not None:
            return self.input_tokens + self.output_tokens
        return None

    @property
    def has_fallback_route(self) -> bool:
        """Served by a different model than the one requested."""
        return bool(self.resolved_model) and self.resolved_model != self.model

    @property
    def short_request_id(self) -> Optional[str]:
        if not self.request_id:
            return None
        return self.request_id[:8]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "request_id": self.request_id,
            "method": self.method,
            "endpoint": self.endpoint,
            "provider": self.provider,
            "model": self.model,
            "source": self.source,
            "source_raw": self.source_raw,
            "account_hint": self.account_hint,
            "request_payload_snippet": self.request_payload_snippet,
            "resolved_model": self.resolved_model,
            "resolved_provider": self.resolved_provider,
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "duration_ms": self.duration_ms,
            "status_code": self.status_code,
            "request_size": self.request_size,
            "response_size": self.response_size,
            "error_message": self.error_message,
            "fallback_attempts": (
                [attempt.to_dict() for attempt in self.fallback_attempts]
                if self.fallback_attempts else None
            ),
            "fallback_started_from_cache": self.fallback_started_from_cache,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RequestLog":
        attempts = data.get("fallback_attempts")
        kwargs = {}
        if data.get("id"):
            kwargs["id"] = data["id"]
        return cls(
            timestamp=datetime.fromisoformat(data["timestamp"]),
            method=data["method"],
            endpoint=data["endpoint"],
            request_id=data.get("request_id"),
            provider=data.get("provider"),
            model=data.get("model"),
            source=data.get("source"),
            source_raw=data.get("source_raw"),
            account_hint=data.get("account_hint"),
            request_payload_snippet=data.get("request_payload_snippet"),
            resolved_model=data.get("resolved_model"),
            resolved_provider=data.get("resolved_provider"),
            input_tokens=data.get("input_tokens"),
            output_tokens=data.get("output_tokens"),
            duration_ms=data.get("duration_ms"),
            status_code=data.get("status_code"),
            request_size=data.get("request_size"),
            response_size=data.get("response_size"),
            error_message=data.get("error_message"),
            fallback_attempts=[FallbackAttempt.from_dict(a) for a in attempts] if attempts else None,
            fallback_started_from_cache=bool(data.get("fallback_started_from_cache", False)),
            **kwargs,
        )


@dataclass
class RequestStats:
    """Aggregate statistics for requests."""
    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    total_tokens: int = 0
    total_input_tokens: int = 0
    total_output_tokens: int = 0
    total_duration_ms: int = 0
    total_request_size: int = 0
    total_response_size: int = 0
    requests_by_provider: Dict[str, int] = field(default_factory=dict)
    requests_by_model: Dict[str, int] = field(default_factory=dict)

    @classmethod
    def from_requests(cls, requests: List[RequestLog]) -> "RequestStats":
        """Aggregate over a request collection."""
        stats = cls()
        for entry in requests:
            stats.total_requests += 1

            if entry.is_success:
                stats.successful_requests += 1
            else:
                stats.failed_requests += 1

            if entry.input_tokens:
                stats.total_input_tokens += entry.input_tokens
            if entry.output_tokens:
                stats.total_output_tokens += entry.output_tokens
            if entry.total_tokens:
                stats.total_tokens += entry.total_tokens
            if entry.duration_ms:
                stats.total_duration_ms += entry.duration_ms
            if entry.request_size:
                stats.total_request_size += entry.request_size
            if entry.response_size:
                stats.total_response_size += entry.response_size

            if entry.provider:
                stats.requests_by_provider[entry.provider] = stats.requests_by_provider.get(entry.provider, 0) + 1

            model = entry.resolved_model or entry.model
            if model:
                stats.requests_by_model[model] = stats.requests_by_model.get(model, 0) + 1
        return stats

    @property
    def success_rate(self) -> float:
        """Success rate as percentage."""
        if self.total_requests == 0:
            return 0.0
        return (self.successful_requests / self.total_requests) * 100.0

    @property
    def average_duration_ms(self) -> float:
        """Average request duration in milliseconds."""
        if self.total_requests == 0:
            return 0.0
        return self.total_duration_ms / self.total_requests

    @property
    def average_tokens_per_request(self) -> float:
        """Average tokens per request."""
        if self.total_requests == 0:
            return 0.0
        return self.total_tokens / self.total_requests

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_requests": self.total_requests,
            "successful_requests": self.successful_requests,
            "failed_requests": self.failed_requests,
            "success_rate": self.success_rate,
            "total_tokens": self.total_tokens,
            "total_input_tokens": self.total_input_tokens,
            "total_output_tokens": self.total_output_tokens,
            "average_duration_ms": self.average_duration_ms,
            "requests_by_provider": dict(self.requests_by_provider),
            "requests_by_model": dict(self.requests_by_model),
        }
