import re
from typing import Any, Dict, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

from ...models import Purpose

EMAIL_PURPOSES = {Purpose.reset_password, Purpose.email_verify}
SMS_PURPOSES = {Purpose.find_id, Purpose.reset_password}

# Korean mobile numbers: 010/011/016/017/018/019 + 7 or 8 digits
PHONE_RE = re.compile(r"^01[016789]\d{7,8}$")


def normalize_email(v: str) -> str:
    return v.strip().lower()


def normalize_phone(v: str) -> str:
    return re.sub(r"[-\s]", "", v or "")


class _EmailIn(BaseModel):
    email: EmailStr
    purpose: Purpose

    @field_validator("email")
    @classmethod
    def lower(cls, v):
        return normalize_email(str(v))

    @field_validator("purpose")
    @classmethod
    def email_purpose(cls, v):
        if v not in EMAIL_PURPOSES:
            raise ValueError("purpose must be reset_password or email_verify")
        return v


class _SmsIn(BaseModel):
    phone: str
    purpose: Purpose

    @field_validator("phone")
    @classmethod
    def valid_phone(cls, v):
        v = normalize_phone(v)
        if not PHONE_RE.match(v):
            raise ValueError("invalid phone number")
        return v

    @field_validator("purpose")
    @classmethod
    def sms_purpose(cls, v):
        if v not in SMS_PURPOSES:
            raise ValueError("purpose must be find_id or reset_password")
        return v


class SendEmailCodeIn(_EmailIn):
    pass


class VerifyEmailCodeIn(_EmailIn):
    code: str = Field(min_length=6, max_length=6)


class SendSmsCodeIn(_SmsIn):
    pass


class VerifySmsCodeIn(_SmsIn):
    code: str = Field(min_length=6, max_length=6)


class SendCodeOut(BaseModel):
    success: bool
    message: str


class VerifyCodeOut(BaseModel):
    verified: bool
    message: str
    data: Optional[Dict[str, Any]] = None


class DevCodeOut(BaseModel):
    success: bool
    message: str
    code: Optional[str] = None
    timeLeft: Optional[int] = None
