"""Authentication models."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict

from ..utils.dates import parse_iso_date


class AuthFile(BaseModel):
    """Auth file (configured provider account) from Management API.

    Read-only from the observability core: it is only used as lookup
    evidence when correlating a request with the account that served it.
    """
    model_config = ConfigDict(extra="ignore")

    id: str
    name: str
    provider: str
    status: str = "unknown"
    status_message: Optional[str] = None
    disabled: bool = False
    unavailable: bool = False
    source: Optional[str] = None
    email: Optional[str] = None
    account: Optional[str] = None
    auth_index: Optional[str] = None
    error_kind: Optional[str] = None
    error_reason: Optional[str] = None
    frozen_until: Optional[str] = None
    disabled_by_policy: Optional[bool] = None

    @property
    def is_ready(self) -> bool:
        """Whether this auth file is ready to use."""
        return (
            self.status == "ready"
            and not self.disabled
            and not self.unavailable
        )

    @property
    def normalized_error_kind(self) -> Optional[str]:
        """Lowercased error kind, or None when the account reports no error."""
        if not self.error_kind or not self.error_kind.strip():
            return None
        return self.error_kind.strip().lower().replace(" ", "_")

    @property
    def human_readable_status(self) -> Optional[str]:
        if self.status_message and self.status_message.strip():
            return self.status_message.strip()
        if self.status and self.status != "unknown":
            return self.status
        return None

    @property
    def frozen_until_date(self) -> Optional[datetime]:
        return parse_iso_date(self.frozen_until)


class AuthFilesResponse(BaseModel):
    """Response containing auth files."""
    files: list[AuthFile]
