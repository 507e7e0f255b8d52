from __future__ import annotations
import abc
import logging
from typing import Any, ClassVar

import httpx

from ...errors import ProviderError, ProviderUnavailable
from ...models import Channel, ProviderReceipt, RenderedMessage

logger = logging.getLogger(__name__)


class NotificationProvider(abc.ABC):
    """One third-party delivery service for one channel."""

    name: ClassVar[str]
    channel: ClassVar[Channel]

    @property
    @abc.abstractmethod
    def configured(self) -> bool: ...

    async def send(self, contact: str, message: RenderedMessage) -> ProviderReceipt:
        """Deliver the message or raise ProviderError / ProviderUnavailable."""
        if not self.configured:
            raise ProviderUnavailable(self.name)
        return await self._send(contact, message)

    @abc.abstractmethod
    async def _send(self, contact: str, message: RenderedMessage) -> ProviderReceipt: ...


class HttpProvider(NotificationProvider):
    """Base for REST providers; the AsyncClient is shared and owned by the app."""

    def __init__(self, http: httpx.AsyncClient) -> None:
        self._http = http

    async def _post(self, url: str, **kwargs: Any) -> httpx.Response:
        try:
            resp = await self._http.post(url, **kwargs)
        except httpx.HTTPError as exc:
            raise ProviderError(self.name, f"{type(exc).__name__}: {exc}") from exc
        if resp.status_code < 200 or resp.status_code >= 300:
            raise ProviderError(self.name, resp.text[:300], status_code=resp.status_code)
        return resp

    def _json(self, resp: httpx.Response) -> dict:
        try:
            data = resp.json()
        except ValueError as exc:
            raise ProviderError(self.name, "malformed JSON response", status_code=resp.status_code) from exc
        if not isinstance(data, dict):
            raise ProviderError(self.name, "unexpected response shape", status_code=resp.status_code)
        return data


class ConsoleProvider:
    """Development delivery: writes the rendered message to the log instead of sending it."""

    name = "console"

    async def send(self, contact: str, message: RenderedMessage) -> ProviderReceipt:
        logger.warning("[DEV] delivery to %s | %s | %s", contact, message.subject, message.text)
        return ProviderReceipt(provider=self.name)
