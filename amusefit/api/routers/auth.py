from __future__ import annotations
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import JSONResponse

from ...config import Settings
from ...domain.schemas.verification import (
    DevCodeOut,
    SendCodeOut,
    SendEmailCodeIn,
    SendSmsCodeIn,
    VerifyCodeOut,
    VerifyEmailCodeIn,
    VerifySmsCodeIn,
    normalize_email,
    normalize_phone,
)
from ...errors import CooldownActive
from ...models import Channel, Purpose, VerifyReason, VerifyResult
from ...services.code_store import CodeStore
from ...services.dispatcher import Dispatcher
from ...services.rate_limit import limit_code_request, limit_code_verify
from ..deps import get_app_settings, get_code_store, get_dispatcher

router = APIRouter(prefix="/api/auth", tags=["auth"])
log = logging.getLogger(__name__)

VERIFY_MESSAGES = {
    VerifyReason.verified: "인증이 완료되었습니다.",
    VerifyReason.not_found: "인증번호를 다시 요청해주세요.",
    VerifyReason.expired: "인증번호가 만료되었습니다. 다시 요청해주세요.",
    VerifyReason.attempts_exceeded: "인증 시도 횟수를 초과했습니다. 다시 요청해주세요.",
    VerifyReason.already_verified: "이미 사용된 인증번호입니다.",
}


def _verify_message(result: VerifyResult, max_attempts: int) -> str:
    if result.reason is VerifyReason.mismatch:
        return f"인증번호가 일치하지 않습니다. ({result.attempts}/{max_attempts}회)"
    return VERIFY_MESSAGES[result.reason]


def _dev_error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=DevCodeOut(success=False, message=message).model_dump(exclude_none=True),
    )


async def _send_code(
    contact: str,
    purpose: Purpose,
    channel: Channel,
    ttl_seconds: int,
    store: CodeStore,
    dispatcher: Dispatcher,
):
    try:
        code = await store.issue(contact, purpose, ttl_seconds, channel=channel)
    except CooldownActive as exc:
        return JSONResponse(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            content=SendCodeOut(success=False, message=f"잠시 후 다시 요청해주세요. ({exc.retry_after}초)").model_dump(),
            headers={"Retry-After": str(exc.retry_after)},
        )

    result = await dispatcher.dispatch(contact, code, purpose, channel, ttl_seconds=ttl_seconds)
    if not result.success:
        # undelivered code must not block a retry through the cooldown
        await store.clear(contact, purpose)
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content=SendCodeOut(success=False, message=result.message).model_dump(),
        )
    return SendCodeOut(success=True, message=result.message)


async def _verify_code(contact: str, purpose: Purpose, code: str, data_key: str, store: CodeStore):
    result = await store.verify(contact, purpose, code)
    message = _verify_message(result, store.max_attempts)
    if not result.verified:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=VerifyCodeOut(verified=False, message=message).model_dump(exclude_none=True),
        )
    return VerifyCodeOut(verified=True, message=message, data={data_key: contact, "purpose": purpose.value})


@router.post("/send-email-code", response_model=SendCodeOut, dependencies=[Depends(limit_code_request)])
async def send_email_code(
    payload: SendEmailCodeIn,
    S: Settings = Depends(get_app_settings),
    store: CodeStore = Depends(get_code_store),
    dispatcher: Dispatcher = Depends(get_dispatcher),
):
    return await _send_code(payload.email, payload.purpose, Channel.email, S.EMAIL_CODE_TTL_SEC, store, dispatcher)


@router.post("/verify-email-code", response_model=VerifyCodeOut, response_model_exclude_none=True,
             dependencies=[Depends(limit_code_verify)])
async def verify_email_code(payload: VerifyEmailCodeIn, store: CodeStore = Depends(get_code_store)):
    return await _verify_code(payload.email, payload.purpose, payload.code, "email", store)


@router.post("/send-sms-code", response_model=SendCodeOut, dependencies=[Depends(limit_code_request)])
async def send_sms_code(
    payload: SendSmsCodeIn,
    S: Settings = Depends(get_app_settings),
    store: CodeStore = Depends(get_code_store),
    dispatcher: Dispatcher = Depends(get_dispatcher),
):
    return await _send_code(payload.phone, payload.purpose, Channel.sms, S.SMS_CODE_TTL_SEC, store, dispatcher)


@router.post("/verify-sms-code", response_model=VerifyCodeOut, response_model_exclude_none=True,
             dependencies=[Depends(limit_code_verify)])
async def verify_sms_code(payload: VerifySmsCodeIn, store: CodeStore = Depends(get_code_store)):
    return await _verify_code(payload.phone, payload.purpose, payload.code, "phone", store)


@router.get("/dev-get-code", response_model=DevCodeOut, response_model_exclude_none=True)
async def dev_get_code(
    request: Request,
    purpose: Purpose,
    email: Optional[str] = Query(default=None),
    phone: Optional[str] = Query(default=None),
    S: Settings = Depends(get_app_settings),
    store: CodeStore = Depends(get_code_store),
):
    if not S.dev_tools_enabled:
        return _dev_error(status.HTTP_403_FORBIDDEN, "Production에서는 사용할 수 없습니다")
    if email:
        contact = normalize_email(email)
    elif phone:
        contact = normalize_phone(phone)
    else:
        return _dev_error(status.HTTP_400_BAD_REQUEST, "이메일 또는 전화번호를 입력해주세요")

    found = await store.peek(contact, purpose)
    if found is None:
        return DevCodeOut(success=False, message="발송된 인증번호가 없습니다.")
    code, time_left = found
    log.info("dev code lookup for %s (%s) from %s", contact, purpose.value, request.client.host if request.client else "unknown")
    return DevCodeOut(
        success=True,
        code=code,
        message=f"남은 시간: {time_left // 60}분 {time_left % 60}초",
        timeLeft=time_left,
    )


@router.get("/provider-status")
async def provider_status(dispatcher: Dispatcher = Depends(get_dispatcher)):
    return dispatcher.status()
