from __future__ import annotations

import asyncio
import logging
from typing import Optional

import httpx
from twilio.base.exceptions import TwilioException
from twilio.rest import Client

from ...errors import ProviderError
from ...models import Channel, ProviderReceipt, RenderedMessage
from .base import HttpProvider, NotificationProvider

logger = logging.getLogger(__name__)


def to_e164_kr(phone: str) -> str:
    """01012345678 -> +821012345678; numbers already in +form pass through."""
    if phone.startswith("+"):
        return phone
    if phone.startswith("0"):
        return "+82" + phone[1:]
    return "+" + phone


class NhnCloudSmsProvider(HttpProvider):
    """NHN Cloud (formerly Toast) SMS v3.0."""

    name = "nhn"
    channel = Channel.sms

    def __init__(
        self, http: httpx.AsyncClient, *, app_key: Optional[str], secret_key: Optional[str], sender_number: str
    ) -> None:
        super().__init__(http)
        self._app_key = app_key
        self._secret_key = secret_key
        self._sender_number = sender_number

    @property
    def configured(self) -> bool:
        return bool(self._app_key and self._secret_key)

    async def _send(self, contact: str, message: RenderedMessage) -> ProviderReceipt:
        resp = await self._post(
            f"https://api-sms.cloud.toast.com/sms/v3.0/appKeys/{self._app_key}/sender/sms",
            headers={"X-Secret-Key": self._secret_key},
            json={
                "body": message.text,
                "sendNo": self._sender_number,
                "recipientList": [{"recipientNo": contact}],
                "userId": "amusefit-system",
            },
        )
        data = self._json(resp)
        header = data.get("header") or {}
        if header.get("isSuccessful") is False:
            raise ProviderError(self.name, str(header.get("resultMessage") or "request rejected"))
        request_id = ((data.get("body") or {}).get("data") or {}).get("requestId") or header.get("requestId")
        return ProviderReceipt(provider=self.name, message_id=request_id)


class AligoSmsProvider(HttpProvider):
    name = "aligo"
    channel = Channel.sms
    URL = "https://apis.aligo.in/send/"

    def __init__(
        self, http: httpx.AsyncClient, *, api_key: Optional[str], user_id: Optional[str], sender_number: str
    ) -> None:
        super().__init__(http)
        self._api_key = api_key
        self._user_id = user_id
        self._sender_number = sender_number

    @property
    def configured(self) -> bool:
        return bool(self._api_key and self._user_id)

    async def _send(self, contact: str, message: RenderedMessage) -> ProviderReceipt:
        resp = await self._post(
            self.URL,
            data={
                "key": self._api_key,
                "user_id": self._user_id,
                "sender": self._sender_number,
                "receiver": contact,
                "msg": message.text,
                "msg_type": "SMS",
            },
        )
        data = self._json(resp)
        # aligo reports errors with HTTP 200 and a result_code other than 1
        if str(data.get("result_code")) != "1":
            raise ProviderError(self.name, str(data.get("message") or "request rejected"))
        msg_id = data.get("msg_id")
        return ProviderReceipt(provider=self.name, message_id=str(msg_id) if msg_id is not None else None)


class TwilioSmsProvider(NotificationProvider):
    """Thin wrapper around the Twilio REST client with async-friendly send."""

    name = "twilio"
    channel = Channel.sms

    def __init__(
        self,
        *,
        account_sid: Optional[str],
        auth_token: Optional[str],
        from_number: Optional[str],
        client: Optional[Client] = None,
    ) -> None:
        self._from_number = from_number
        if client is not None:
            self._client: Optional[Client] = client
        elif account_sid and auth_token and from_number:
            self._client = Client(account_sid, auth_token)
        else:
            self._client = None
            missing = [
                key
                for key, value in [
                    ("TWILIO_ACCOUNT_SID", account_sid),
                    ("TWILIO_AUTH_TOKEN", auth_token),
                    ("TWILIO_PHONE_NUMBER", from_number),
                ]
                if not value
            ]
            if len(missing) < 3:
                logger.info("Twilio SMS disabled; missing settings: %s", ", ".join(missing))

    @property
    def configured(self) -> bool:
        return bool(self._client and self._from_number)

    async def _send(self, contact: str, message: RenderedMessage) -> ProviderReceipt:
        loop = asyncio.get_running_loop()
        try:
            sent = await loop.run_in_executor(
                None,
                lambda: self._client.messages.create(  # type: ignore[union-attr]
                    from_=self._from_number,
                    to=to_e164_kr(contact),
                    body=message.text,
                ),
            )
        except TwilioException as exc:
            raise ProviderError(self.name, str(exc)) from exc
        return ProviderReceipt(provider=self.name, message_id=getattr(sent, "sid", None))
