import asyncio
import os

# settings are read at import time; pin the test environment first
os.environ.setdefault("ENV", "test")
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("CODE_STORE_BACKEND", "memory")

from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

import httpx
import pytest
import pytest_asyncio

from amusefit.config import Settings
from amusefit.main import create_app
from amusefit.errors import ProviderError
from amusefit.models import Channel, ProviderReceipt, RenderedMessage
from amusefit.repos.code_records import InMemoryRecordStore
from amusefit.services.code_store import CodeStore
from amusefit.services.dispatcher import Dispatcher
from amusefit.services.providers.base import NotificationProvider


class FakeClock:
    """Injected clock; tests move time with advance()."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class StubProvider(NotificationProvider):
    """Records calls; fails with a 500-style ProviderError when fail=True."""

    def __init__(self, name: str, *, channel: Channel = Channel.email, fail: bool = False,
                 configured: bool = True, delay: float = 0, calls: list | None = None):
        self.name = name
        self.channel = channel
        self.fail = fail
        self._configured = configured
        self.delay = delay
        self.sent: list[tuple[str, RenderedMessage]] = []
        # shared call log to assert ordering across providers
        self.calls = calls if calls is not None else []

    @property
    def configured(self) -> bool:
        return self._configured

    async def _send(self, contact: str, message: RenderedMessage) -> ProviderReceipt:
        self.calls.append(self.name)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise ProviderError(self.name, "Internal Server Error", status_code=500)
        self.sent.append((contact, message))
        return ProviderReceipt(provider=self.name, message_id=f"{self.name}-1")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def records(clock):
    return InMemoryRecordStore(clock)


@pytest.fixture
def store(records, clock):
    return CodeStore(records, clock=clock, max_attempts=3)


def make_settings(**overrides) -> Settings:
    base = dict(
        ENV="test",
        CODE_STORE_BACKEND="memory",
        CODE_RESEND_COOLDOWN_SEC=60,
        RL_CODE_REQ_PER_IP_10S=100,
        RL_CODE_VERIFY_PER_IP_10S=100,
    )
    base.update(overrides)
    return Settings(**base)


@pytest.fixture
def app_factory(records, clock):
    """Yields an async context factory: async with app_factory(**settings) as client."""
    @asynccontextmanager
    async def _factory(dispatcher: Dispatcher | None = None, **overrides):
        settings = make_settings(**overrides)
        store = CodeStore(
            records,
            clock=clock,
            max_attempts=settings.CODE_MAX_ATTEMPTS,
            cooldown_sec=settings.CODE_RESEND_COOLDOWN_SEC,
        )
        app = create_app(
            settings,
            code_store=store,
            dispatcher=dispatcher or Dispatcher([], console_fallback=True),
            start_sweeper=False,
        )
        async with app.router.lifespan_context(app):
            transport = httpx.ASGITransport(app=app)
            async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
                yield client

    return _factory


@pytest_asyncio.fixture
async def client(app_factory):
    async with app_factory() as c:
        yield c
