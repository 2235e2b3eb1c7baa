"""
External (Google) session models.
"""
from datetime import datetime, timedelta, timezone
from enum import Enum
from pydantic import BaseModel, Field
from typing import Optional


class AuthState(str, Enum):
    """Per-subject Google authorization state."""
    UNAUTHENTICATED = "unauthenticated"
    AUTHORIZATION_PENDING = "authorization_pending"
    AUTHENTICATED = "authenticated"
    EXPIRED = "expired"


class ExternalSession(BaseModel):
    """Google credentials held for one subject. Never leaves the session manager."""
    subject_id: str
    access_token: str
    refresh_token: Optional[str] = None
    expiry: datetime
    # When the current access token was obtained
    issued_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def is_expired(self, now: datetime, skew_seconds: int = 0) -> bool:
        return now + timedelta(seconds=skew_seconds) >= self.expiry
