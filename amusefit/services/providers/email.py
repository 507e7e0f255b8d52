"""Email delivery adapters.

REST providers go through the shared httpx client; Gmail and Outlook use
SMTP with STARTTLS in a worker thread.
"""
from __future__ import annotations
import asyncio
import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional

import httpx

from ...errors import ProviderError
from ...models import Channel, ProviderReceipt, RenderedMessage
from .base import HttpProvider, NotificationProvider

logger = logging.getLogger(__name__)

# Avoid blocking a worker thread forever if SMTP is slow or unreachable
SMTP_TIMEOUT_SECONDS = 15


class BrevoProvider(HttpProvider):
    name = "brevo"
    channel = Channel.email
    URL = "https://api.brevo.com/v3/smtp/email"

    def __init__(self, http: httpx.AsyncClient, *, api_key: Optional[str], from_address: str, from_name: str) -> None:
        super().__init__(http)
        self._api_key = api_key
        self._from_address = from_address
        self._from_name = from_name

    @property
    def configured(self) -> bool:
        return bool(self._api_key)

    async def _send(self, contact: str, message: RenderedMessage) -> ProviderReceipt:
        resp = await self._post(
            self.URL,
            headers={"api-key": self._api_key, "Accept": "application/json"},
            json={
                "sender": {"name": self._from_name, "email": self._from_address},
                "to": [{"email": contact}],
                "subject": message.subject,
                "htmlContent": message.html or message.text,
                "textContent": message.text,
            },
        )
        data = self._json(resp)
        return ProviderReceipt(provider=self.name, message_id=data.get("messageId"))


class ResendProvider(HttpProvider):
    name = "resend"
    channel = Channel.email
    URL = "https://api.resend.com/emails"

    def __init__(self, http: httpx.AsyncClient, *, api_key: Optional[str], sender: str) -> None:
        super().__init__(http)
        self._api_key = api_key
        self._sender = sender

    @property
    def configured(self) -> bool:
        return bool(self._api_key)

    async def _send(self, contact: str, message: RenderedMessage) -> ProviderReceipt:
        payload = {"from": self._sender, "to": [contact], "subject": message.subject, "text": message.text}
        if message.html:
            payload["html"] = message.html
        resp = await self._post(self.URL, headers={"Authorization": f"Bearer {self._api_key}"}, json=payload)
        data = self._json(resp)
        return ProviderReceipt(provider=self.name, message_id=data.get("id"))


class SendGridProvider(HttpProvider):
    name = "sendgrid"
    channel = Channel.email
    URL = "https://api.sendgrid.com/v3/mail/send"

    def __init__(self, http: httpx.AsyncClient, *, api_key: Optional[str], from_address: str, from_name: str) -> None:
        super().__init__(http)
        self._api_key = api_key
        self._from_address = from_address
        self._from_name = from_name

    @property
    def configured(self) -> bool:
        return bool(self._api_key)

    async def _send(self, contact: str, message: RenderedMessage) -> ProviderReceipt:
        # text/plain has to precede text/html
        content = [{"type": "text/plain", "value": message.text}]
        if message.html:
            content.append({"type": "text/html", "value": message.html})
        resp = await self._post(
            self.URL,
            headers={"Authorization": f"Bearer {self._api_key}"},
            json={
                "personalizations": [{"to": [{"email": contact}], "subject": message.subject}],
                "from": {"email": self._from_address, "name": self._from_name},
                "content": content,
            },
        )
        # 202 Accepted with an empty body
        return ProviderReceipt(provider=self.name, message_id=resp.headers.get("x-message-id"))


class MailgunProvider(HttpProvider):
    name = "mailgun"
    channel = Channel.email

    def __init__(
        self, http: httpx.AsyncClient, *, api_key: Optional[str], domain: Optional[str], from_name: str
    ) -> None:
        super().__init__(http)
        self._api_key = api_key
        self._domain = domain
        self._from_name = from_name

    @property
    def configured(self) -> bool:
        return bool(self._api_key and self._domain)

    async def _send(self, contact: str, message: RenderedMessage) -> ProviderReceipt:
        data = {
            "from": f"{self._from_name} <noreply@{self._domain}>",
            "to": contact,
            "subject": message.subject,
            "text": message.text,
        }
        if message.html:
            data["html"] = message.html
        resp = await self._post(
            f"https://api.mailgun.net/v3/{self._domain}/messages",
            auth=("api", self._api_key),
            data=data,
        )
        body = self._json(resp)
        return ProviderReceipt(provider=self.name, message_id=body.get("id"))


class EmailJSProvider(HttpProvider):
    name = "emailjs"
    channel = Channel.email
    URL = "https://api.emailjs.com/api/v1.0/email/send"

    def __init__(
        self,
        http: httpx.AsyncClient,
        *,
        service_id: Optional[str],
        template_id: Optional[str],
        public_key: Optional[str],
        from_name: str,
    ) -> None:
        super().__init__(http)
        self._service_id = service_id
        self._template_id = template_id
        self._public_key = public_key
        self._from_name = from_name

    @property
    def configured(self) -> bool:
        return bool(self._service_id and self._template_id and self._public_key)

    async def _send(self, contact: str, message: RenderedMessage) -> ProviderReceipt:
        # EmailJS answers with a plain "OK" body
        await self._post(
            self.URL,
            json={
                "service_id": self._service_id,
                "template_id": self._template_id,
                "user_id": self._public_key,
                "template_params": {
                    "to_email": contact,
                    "from_name": self._from_name,
                    "subject": message.subject,
                    "message": message.text,
                    "verification_code": message.code,
                },
            },
        )
        return ProviderReceipt(provider=self.name)


class SmtpProvider(NotificationProvider):
    """Authenticated SMTP submission (port 587 + STARTTLS)."""

    channel = Channel.email
    host: str
    port: int = 587

    def __init__(self, *, user: Optional[str], password: Optional[str], from_name: str) -> None:
        self._user = user
        self._password = password
        self._from_name = from_name

    @property
    def configured(self) -> bool:
        return bool(self._user and self._password)

    def _build(self, contact: str, message: RenderedMessage) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = message.subject
        msg["From"] = f"{self._from_name} <{self._user}>"
        msg["To"] = contact
        msg.attach(MIMEText(message.text, "plain", "utf-8"))
        if message.html:
            msg.attach(MIMEText(message.html, "html", "utf-8"))
        return msg

    def _send_blocking(self, contact: str, message: RenderedMessage) -> None:
        msg = self._build(contact, message)
        with smtplib.SMTP(self.host, self.port, timeout=SMTP_TIMEOUT_SECONDS) as server:
            server.starttls()
            server.login(self._user, self._password)
            server.sendmail(self._user, [contact], msg.as_string())

    async def _send(self, contact: str, message: RenderedMessage) -> ProviderReceipt:
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, self._send_blocking, contact, message)
        except smtplib.SMTPAuthenticationError as exc:
            raise ProviderError(self.name, f"login failed: {exc}") from exc
        except (smtplib.SMTPException, OSError) as exc:
            raise ProviderError(self.name, f"{type(exc).__name__}: {exc}") from exc
        return ProviderReceipt(provider=self.name)


class GmailProvider(SmtpProvider):
    name = "gmail"
    host = "smtp.gmail.com"


class OutlookProvider(SmtpProvider):
    name = "outlook"
    host = "smtp-mail.outlook.com"
