from __future__ import annotations
import asyncio
import logging
from typing import Dict, Iterable, List

import httpx

from ..config import Settings
from ..errors import AllProvidersFailed, ProviderError
from ..models import Channel, DispatchResult, Purpose, RenderedMessage
from ..observability.metrics import PROVIDER_LATENCY, PROVIDER_SENDS
from .code_store import mask_code
from .providers.base import ConsoleProvider, NotificationProvider
from .providers.email import (
    BrevoProvider,
    EmailJSProvider,
    GmailProvider,
    MailgunProvider,
    OutlookProvider,
    ResendProvider,
    SendGridProvider,
)
from .providers.sms import AligoSmsProvider, NhnCloudSmsProvider, TwilioSmsProvider
from .templates import render

logger = logging.getLogger(__name__)

SENT_MESSAGES = {
    Channel.email: "인증번호가 이메일로 발송되었습니다.",
    Channel.sms: "인증번호가 SMS로 발송되었습니다.",
}
DEV_SENT_MESSAGE = "인증번호가 발송되었습니다. (개발 모드)"
FAILED_MESSAGE = "인증번호 발송에 실패했습니다. 잠시 후 다시 시도해주세요."


class Dispatcher:
    """Tries each configured provider of a channel in priority order.

    When every provider fails (or none is configured) the console provider is
    used only if console_fallback was switched on explicitly.
    """

    def __init__(
        self,
        providers: Iterable[NotificationProvider],
        *,
        console_fallback: bool,
        timeout_sec: float = 8.0,
    ) -> None:
        self.providers: List[NotificationProvider] = list(providers)
        self.console = ConsoleProvider() if console_fallback else None
        self.timeout_sec = timeout_sec

    def chain(self, channel: Channel) -> List[NotificationProvider]:
        return [p for p in self.providers if p.channel is channel]

    async def dispatch(
        self,
        contact: str,
        code: str,
        purpose: Purpose,
        channel: Channel,
        *,
        ttl_seconds: int,
    ) -> DispatchResult:
        message = render(purpose, channel, code, ttl_seconds)
        try:
            provider, attempted = await self._deliver(contact, message, channel)
        except AllProvidersFailed as exc:
            if self.console is None:
                logger.error("%s; code %s for %s not delivered", exc, mask_code(code), contact)
                return DispatchResult(success=False, message=FAILED_MESSAGE, attempted=exc.attempted)
            logger.warning("%s; falling back to console delivery", exc)
            await self.console.send(contact, message)
            PROVIDER_SENDS.labels(provider=self.console.name, outcome="sent").inc()
            return DispatchResult(
                success=True,
                message=DEV_SENT_MESSAGE,
                provider_used=self.console.name,
                attempted=exc.attempted,
            )
        return DispatchResult(
            success=True,
            message=SENT_MESSAGES[channel],
            provider_used=provider,
            attempted=attempted,
        )

    async def _deliver(self, contact: str, message: RenderedMessage, channel: Channel) -> tuple[str, List[str]]:
        attempted: List[str] = []
        for provider in self.chain(channel):
            if not provider.configured:
                logger.debug("skipping %s: not configured", provider.name)
                PROVIDER_SENDS.labels(provider=provider.name, outcome="skipped").inc()
                continue
            attempted.append(provider.name)
            try:
                with PROVIDER_LATENCY.labels(provider=provider.name).time():
                    receipt = await asyncio.wait_for(provider.send(contact, message), timeout=self.timeout_sec)
            except asyncio.TimeoutError:
                logger.warning("%s timed out after %ss sending to %s", provider.name, self.timeout_sec, contact)
                PROVIDER_SENDS.labels(provider=provider.name, outcome="timeout").inc()
                continue
            except ProviderError as exc:
                logger.warning("%s; trying next provider", exc)
                PROVIDER_SENDS.labels(provider=provider.name, outcome="error").inc()
                continue
            except Exception as exc:
                logger.exception("%s raised unexpectedly: %s", provider.name, exc)
                PROVIDER_SENDS.labels(provider=provider.name, outcome="error").inc()
                continue

            PROVIDER_SENDS.labels(provider=provider.name, outcome="sent").inc()
            logger.info("%s delivered %s message to %s (id=%s)", provider.name, channel.value, contact, receipt.message_id)
            return provider.name, attempted

        raise AllProvidersFailed(channel.value, attempted)

    def status(self) -> Dict[str, object]:
        out: Dict[str, object] = {
            channel.value: [p.name for p in self.chain(channel) if p.configured] for channel in Channel
        }
        out["console_fallback"] = self.console is not None
        return out


def _nhn_sender_number(S: Settings) -> str:
    if S.NHN_SMS_APP_KEY:
        return S.NHN_SMS_SENDER_NUMBER
    return S.TOAST_SMS_SEND_NUMBER or S.NHN_SMS_SENDER_NUMBER


def build_providers(settings: Settings, http: httpx.AsyncClient) -> List[NotificationProvider]:
    """Every known provider in priority order; unconfigured ones are skipped at send time."""
    S = settings
    return [
        # email
        BrevoProvider(http, api_key=S.BREVO_API_KEY, from_address=S.EMAIL_FROM_ADDRESS, from_name=S.EMAIL_FROM_NAME),
        ResendProvider(http, api_key=S.RESEND_API_KEY, sender=S.RESEND_FROM),
        SendGridProvider(http, api_key=S.SENDGRID_API_KEY, from_address=S.EMAIL_FROM_ADDRESS, from_name=S.EMAIL_FROM_NAME),
        MailgunProvider(http, api_key=S.MAILGUN_API_KEY, domain=S.MAILGUN_DOMAIN, from_name=S.EMAIL_FROM_NAME),
        EmailJSProvider(
            http,
            service_id=S.EMAILJS_SERVICE_ID,
            template_id=S.EMAILJS_TEMPLATE_ID,
            public_key=S.EMAILJS_PUBLIC_KEY,
            from_name=S.EMAIL_FROM_NAME,
        ),
        GmailProvider(user=S.GMAIL_USER, password=S.GMAIL_APP_PASSWORD, from_name=S.EMAIL_FROM_NAME),
        OutlookProvider(user=S.OUTLOOK_USER, password=S.OUTLOOK_PASSWORD, from_name=S.EMAIL_FROM_NAME),
        # sms
        NhnCloudSmsProvider(
            http,
            app_key=S.NHN_SMS_APP_KEY or S.TOAST_SMS_APP_KEY,
            secret_key=S.NHN_SMS_SECRET_KEY or S.TOAST_SMS_SECRET_KEY,
            sender_number=_nhn_sender_number(S),
        ),
        TwilioSmsProvider(
            account_sid=S.TWILIO_ACCOUNT_SID,
            auth_token=S.TWILIO_AUTH_TOKEN,
            from_number=S.TWILIO_PHONE_NUMBER,
        ),
        AligoSmsProvider(http, api_key=S.ALIGO_API_KEY, user_id=S.ALIGO_USER_ID, sender_number=S.ALIGO_SENDER_NUMBER),
    ]


def build_dispatcher(settings: Settings, http: httpx.AsyncClient) -> Dispatcher:
    if settings.ENV == "prod" and settings.CONSOLE_DELIVERY_FALLBACK:
        logger.warning("console delivery fallback is enabled in prod; codes may be written to logs")
    return Dispatcher(
        build_providers(settings, http),
        console_fallback=settings.console_fallback_enabled,
        timeout_sec=settings.PROVIDER_TIMEOUT_SEC,
    )
