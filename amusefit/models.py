from __future__ import annotations
import enum
from datetime import datetime

from pydantic import BaseModel, Field


class Purpose(str, enum.Enum):
    reset_password = "reset_password"
    find_id = "find_id"
    email_verify = "email_verify"


class Channel(str, enum.Enum):
    email = "email"
    sms = "sms"


class VerificationRecord(BaseModel):
    """One outstanding code for a (contact, purpose) pair."""
    contact: str
    purpose: Purpose
    channel: Channel
    code: str = Field(pattern=r"^\d{6}$")
    created_at: datetime
    expires_at: datetime
    attempts: int = 0
    verified: bool = False

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at

    def seconds_left(self, now: datetime) -> int:
        return max(0, int((self.expires_at - now).total_seconds()))


def record_key(contact: str, purpose: Purpose) -> str:
    return f"verify:{purpose.value}:{contact}"


class VerifyReason(str, enum.Enum):
    verified = "verified"
    not_found = "not_found"
    expired = "expired"
    attempts_exceeded = "attempts_exceeded"
    mismatch = "mismatch"
    already_verified = "already_verified"


class VerifyResult(BaseModel):
    verified: bool
    reason: VerifyReason
    attempts: int = 0
    remaining: int = 0


class RenderedMessage(BaseModel):
    subject: str
    text: str
    html: str | None = None
    code: str | None = None  # for template-driven providers (EmailJS)


class ProviderReceipt(BaseModel):
    provider: str
    message_id: str | None = None


class DispatchResult(BaseModel):
    success: bool
    message: str
    provider_used: str | None = None
    attempted: list[str] = Field(default_factory=list)
