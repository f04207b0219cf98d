"""Usage statistics models (aggregate snapshot from the proxy API)."""

from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class TokenUsage(BaseModel):
    """Token counters attached to a single request detail."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None
    total_tokens: Optional[int] = None


class UsageDetail(BaseModel):
    """One request-level record inside a model bucket."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    timestamp: Optional[str] = None
    source: Optional[str] = None
    auth_index: Optional[str] = None
    failed: Optional[bool] = None
    tokens: Optional[TokenUsage] = None


class ModelUsageSnapshot(BaseModel):
    """Per-model usage counters."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    total_requests: Optional[int] = None
    total_tokens: Optional[int] = None
    details: Optional[List[UsageDetail]] = None


class APIUsageSnapshot(BaseModel):
    """Per-API-key usage counters."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    total_requests: Optional[int] = None
    total_tokens: Optional[int] = None
    models: Optional[Dict[str, ModelUsageSnapshot]] = None


class UsageData(BaseModel):
    """Usage statistics data."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    total_requests: Optional[int] = Field(None, alias="total_requests")
    success_count: Optional[int] = Field(None, alias="success_count")
    failure_count: Optional[int] = Field(None, alias="failure_count")
    total_tokens: Optional[int] = Field(None, alias="total_tokens")
    input_tokens: Optional[int] = Field(None, alias="input_tokens")
    output_tokens: Optional[int] = Field(None, alias="output_tokens")
    apis: Optional[Dict[str, APIUsageSnapshot]] = None

    @property
    def success_rate(self) -> float:
        """Calculate success rate percentage."""
        if not self.total_requests or self.total_requests == 0:
            return 0.0
        if not self.success_count:
            return 0.0
        return (self.success_count / self.total_requests) * 100


class UsageStats(BaseModel):
    """Usage statistics response."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    usage: Optional[UsageData] = None
    failed_requests: Optional[int] = Field(None, alias="failed_requests")
