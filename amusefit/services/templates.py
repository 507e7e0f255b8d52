from __future__ import annotations

from ..models import Channel, Purpose, RenderedMessage

BRAND = "AmuseFit"

PURPOSE_LABELS = {
    Purpose.reset_password: "비밀번호 재설정",
    Purpose.find_id: "ID 찾기",
    Purpose.email_verify: "이메일 인증",
}

SMS_TEMPLATE = "[{brand}] {label} 인증번호: {code} ({minutes}분간 유효)"

EMAIL_TEXT_TEMPLATE = (
    "[{brand}] {label}\n\n"
    "인증번호: {code}\n\n"
    "이 인증번호는 {minutes}분간 유효합니다.\n"
    "인증번호를 타인에게 알려주지 마세요.\n"
    "본인이 요청하지 않았다면 이 메일을 무시하세요."
)

EMAIL_HTML_TEMPLATE = """
<div style="max-width: 500px; margin: 0 auto; padding: 20px; font-family: Arial, sans-serif;">
  <h2 style="color: #8B4513; text-align: center;">{brand}</h2>
  <div style="background: #f8f9fa; padding: 20px; border-radius: 8px; text-align: center;">
    <h3>{label}</h3>
    <p>인증번호를 안내드립니다:</p>
    <div style="background: white; padding: 15px; border: 2px solid #8B4513; border-radius: 5px; margin: 15px 0;">
      <span style="font-size: 28px; font-weight: bold; color: #8B4513; letter-spacing: 4px;">{code}</span>
    </div>
    <p style="color: #666;">이 인증번호는 <strong>{minutes}분간</strong> 유효합니다.</p>
  </div>
  <p style="color: #6c757d; font-size: 12px; text-align: center; margin-top: 20px;">
    본인이 요청하지 않았다면 이 메일을 무시하세요. 본 메일은 발신전용입니다.
  </p>
</div>
"""


def _minutes(ttl_seconds: int) -> int:
    return max(1, round(ttl_seconds / 60))


def render(purpose: Purpose, channel: Channel, code: str, ttl_seconds: int) -> RenderedMessage:
    ctx = {
        "brand": BRAND,
        "label": PURPOSE_LABELS[purpose],
        "code": code,
        "minutes": _minutes(ttl_seconds),
    }
    subject = "[{brand}] {label} 인증번호".format(**ctx)
    if channel is Channel.sms:
        return RenderedMessage(subject=subject, text=SMS_TEMPLATE.format(**ctx), code=code)
    return RenderedMessage(
        subject=subject,
        text=EMAIL_TEXT_TEMPLATE.format(**ctx),
        html=EMAIL_HTML_TEMPLATE.format(**ctx),
        code=code,
    )
