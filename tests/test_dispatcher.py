import logging

import httpx
import pytest

from amusefit.models import Channel, Purpose
from amusefit.services.dispatcher import Dispatcher, build_dispatcher
from amusefit.services.templates import render
from tests.conftest import StubProvider, make_settings

pytestmark = pytest.mark.asyncio

EMAIL = "creator@amusefit.co.kr"


async def test_falls_back_to_next_provider_in_order():
    calls = []
    a = StubProvider("provider_a", fail=True, calls=calls)
    b = StubProvider("provider_b", calls=calls)
    dispatcher = Dispatcher([a, b], console_fallback=False)

    result = await dispatcher.dispatch(EMAIL, "482913", Purpose.reset_password, Channel.email, ttl_seconds=600)

    assert result.success is True
    assert result.provider_used == "provider_b"
    assert result.attempted == ["provider_a", "provider_b"]
    assert calls == ["provider_a", "provider_b"]
    contact, message = b.sent[0]
    assert contact == EMAIL and "482913" in message.text


async def test_first_success_stops_the_chain():
    a = StubProvider("provider_a")
    b = StubProvider("provider_b")
    dispatcher = Dispatcher([a, b], console_fallback=False)

    result = await dispatcher.dispatch(EMAIL, "482913", Purpose.reset_password, Channel.email, ttl_seconds=600)

    assert result.provider_used == "provider_a"
    assert b.calls == []


async def test_no_configured_provider_uses_console(caplog):
    idle = StubProvider("brevo", configured=False)
    dispatcher = Dispatcher([idle], console_fallback=True)

    with caplog.at_level(logging.WARNING):
        result = await dispatcher.dispatch(EMAIL, "735104", Purpose.email_verify, Channel.email, ttl_seconds=600)

    assert result.success is True
    assert result.provider_used == "console"
    assert result.attempted == []
    assert idle.calls == []
    assert "735104" in caplog.text


async def test_console_message_matches_rendered_template(caplog):
    dispatcher = Dispatcher([], console_fallback=True)

    with caplog.at_level(logging.WARNING):
        await dispatcher.dispatch("01012345678", "246810", Purpose.find_id, Channel.sms, ttl_seconds=300)

    expected = render(Purpose.find_id, Channel.sms, "246810", 300).text
    assert expected == "[AmuseFit] ID 찾기 인증번호: 246810 (5분간 유효)"
    assert expected in caplog.text


async def test_all_failed_without_console_fallback_reports_failure():
    a = StubProvider("provider_a", fail=True)
    dispatcher = Dispatcher([a], console_fallback=False)

    result = await dispatcher.dispatch(EMAIL, "482913", Purpose.reset_password, Channel.email, ttl_seconds=600)

    assert result.success is False
    assert result.provider_used is None
    assert result.attempted == ["provider_a"]


async def test_slow_provider_is_abandoned_after_timeout():
    slow = StubProvider("slow", delay=1.0)
    fast = StubProvider("fast")
    dispatcher = Dispatcher([slow, fast], console_fallback=False, timeout_sec=0.05)

    result = await dispatcher.dispatch(EMAIL, "482913", Purpose.reset_password, Channel.email, ttl_seconds=600)

    assert result.provider_used == "fast"
    assert slow.sent == []


async def test_unexpected_exception_moves_on():
    class Broken(StubProvider):
        async def _send(self, contact, message):
            raise KeyError("messageId")

    dispatcher = Dispatcher([Broken("broken"), StubProvider("ok")], console_fallback=False)

    result = await dispatcher.dispatch(EMAIL, "482913", Purpose.reset_password, Channel.email, ttl_seconds=600)

    assert result.provider_used == "ok"


async def test_channels_use_their_own_chain():
    mail = StubProvider("mail", channel=Channel.email)
    sms = StubProvider("sms", channel=Channel.sms)
    dispatcher = Dispatcher([mail, sms], console_fallback=False)

    result = await dispatcher.dispatch("01012345678", "482913", Purpose.find_id, Channel.sms, ttl_seconds=300)

    assert result.provider_used == "sms"
    assert mail.calls == []


async def test_build_dispatcher_reflects_configuration():
    settings = make_settings(
        BREVO_API_KEY="xkeysib-test",
        MAILGUN_API_KEY="key-test",  # no domain -> not configured
        TOAST_SMS_APP_KEY="app",
        TOAST_SMS_SECRET_KEY="secret",
        ALIGO_API_KEY="aligo",
        ALIGO_USER_ID="amusefit",
    )
    async with httpx.AsyncClient() as http:
        dispatcher = build_dispatcher(settings, http)

    status = dispatcher.status()
    assert status["email"] == ["brevo"]
    assert status["sms"] == ["nhn", "aligo"]
    assert status["console_fallback"] is True


async def test_prod_defaults_to_no_console_fallback():
    async with httpx.AsyncClient() as http:
        dispatcher = build_dispatcher(make_settings(ENV="prod"), http)

    assert dispatcher.console is None
    result = await dispatcher.dispatch(EMAIL, "482913", Purpose.reset_password, Channel.email, ttl_seconds=600)
    assert result.success is False
