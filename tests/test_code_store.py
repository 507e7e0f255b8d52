import asyncio
from datetime import timedelta

import pytest

from amusefit.errors import CooldownActive
from amusefit.models import Channel, Purpose, VerifyReason, record_key
from amusefit.repos.code_records import InMemoryRecordStore
from amusefit.services import code_store as code_store_mod
from amusefit.services.code_store import CodeStore, generate_code, mask_code

pytestmark = pytest.mark.asyncio

EMAIL = "creator@amusefit.co.kr"
PHONE = "01012345678"


async def test_issue_then_verify_with_correct_code(store):
    code = await store.issue(EMAIL, Purpose.reset_password, 600, channel=Channel.email)

    result = await store.verify(EMAIL, Purpose.reset_password, code)

    assert result.verified is True
    assert result.reason is VerifyReason.verified
    assert await store.is_verified(EMAIL, Purpose.reset_password)


async def test_generated_codes_are_six_digits():
    for _ in range(200):
        code = generate_code()
        assert len(code) == 6 and code.isdigit()
        assert 100000 <= int(code) <= 999999


async def test_mismatch_counts_attempts_and_fourth_try_is_rejected(store, records):
    code = await store.issue(PHONE, Purpose.find_id, 300, channel=Channel.sms)
    wrong = "000000"

    for expected_attempts in (1, 2, 3):
        result = await store.verify(PHONE, Purpose.find_id, wrong)
        assert result.reason is VerifyReason.mismatch
        assert result.attempts == expected_attempts
        assert result.remaining == 3 - expected_attempts

    result = await store.verify(PHONE, Purpose.find_id, code)
    assert result.verified is False
    assert result.reason is VerifyReason.attempts_exceeded
    assert await records.get(record_key(PHONE, Purpose.find_id)) is None


async def test_expired_code_is_rejected_and_removed(store, records, clock):
    code = await store.issue(EMAIL, Purpose.reset_password, 600, channel=Channel.email)
    clock.advance(601)

    result = await store.verify(EMAIL, Purpose.reset_password, code)

    assert result.reason is VerifyReason.expired
    assert await records.get(record_key(EMAIL, Purpose.reset_password)) is None
    # a second call sees nothing at all
    again = await store.verify(EMAIL, Purpose.reset_password, code)
    assert again.reason is VerifyReason.not_found


async def test_code_still_valid_at_exact_expiry(store, clock):
    code = await store.issue(EMAIL, Purpose.reset_password, 600, channel=Channel.email)
    clock.advance(600)

    result = await store.verify(EMAIL, Purpose.reset_password, code)

    assert result.verified is True


async def test_reissue_replaces_previous_code(store, monkeypatch):
    codes = iter(["111111", "222222"])
    monkeypatch.setattr(code_store_mod, "generate_code", lambda: next(codes))

    first = await store.issue(EMAIL, Purpose.reset_password, 600, channel=Channel.email)
    second = await store.issue(EMAIL, Purpose.reset_password, 600, channel=Channel.email)

    assert first == "111111" and second == "222222"
    stale = await store.verify(EMAIL, Purpose.reset_password, first)
    assert stale.reason is VerifyReason.mismatch
    fresh = await store.verify(EMAIL, Purpose.reset_password, second)
    assert fresh.verified is True


async def test_is_verified_lifecycle(store, clock):
    assert await store.is_verified(EMAIL, Purpose.email_verify) is False

    code = await store.issue(EMAIL, Purpose.email_verify, 600, channel=Channel.email)
    assert await store.is_verified(EMAIL, Purpose.email_verify) is False

    await store.verify(EMAIL, Purpose.email_verify, code)
    assert await store.is_verified(EMAIL, Purpose.email_verify) is True

    clock.advance(601)
    assert await store.is_verified(EMAIL, Purpose.email_verify) is False


async def test_verified_code_cannot_be_used_twice(store):
    code = await store.issue(EMAIL, Purpose.reset_password, 600, channel=Channel.email)
    await store.verify(EMAIL, Purpose.reset_password, code)

    result = await store.verify(EMAIL, Purpose.reset_password, code)

    assert result.verified is False
    assert result.reason is VerifyReason.already_verified
    # proof of verification is kept until the dependent step clears it
    assert await store.is_verified(EMAIL, Purpose.reset_password)


async def test_clear_removes_verified_record(store):
    code = await store.issue(EMAIL, Purpose.reset_password, 600, channel=Channel.email)
    await store.verify(EMAIL, Purpose.reset_password, code)

    await store.clear(EMAIL, Purpose.reset_password)

    assert await store.is_verified(EMAIL, Purpose.reset_password) is False
    result = await store.verify(EMAIL, Purpose.reset_password, code)
    assert result.reason is VerifyReason.not_found


async def test_purposes_are_independent(store):
    reset = await store.issue(PHONE, Purpose.reset_password, 300, channel=Channel.sms)
    find = await store.issue(PHONE, Purpose.find_id, 300, channel=Channel.sms)

    assert (await store.verify(PHONE, Purpose.find_id, find)).verified
    assert await store.is_verified(PHONE, Purpose.reset_password) is False
    assert (await store.verify(PHONE, Purpose.reset_password, reset)).verified


async def test_cooldown_blocks_rapid_reissue(records, clock):
    store = CodeStore(records, clock=clock, cooldown_sec=60)
    await store.issue(EMAIL, Purpose.reset_password, 600, channel=Channel.email)

    clock.advance(20)
    with pytest.raises(CooldownActive) as exc:
        await store.issue(EMAIL, Purpose.reset_password, 600, channel=Channel.email)
    assert exc.value.retry_after == 40

    # other purposes have their own window
    await store.issue(EMAIL, Purpose.email_verify, 600, channel=Channel.email)

    clock.advance(40)
    await store.issue(EMAIL, Purpose.reset_password, 600, channel=Channel.email)


async def test_cooldown_ignores_expired_record(records, clock):
    store = CodeStore(records, clock=clock, cooldown_sec=60)
    await store.issue(EMAIL, Purpose.reset_password, 30, channel=Channel.email)
    clock.advance(31)

    await store.issue(EMAIL, Purpose.reset_password, 600, channel=Channel.email)


async def test_sweep_removes_only_expired(store, records, clock):
    await store.issue("short@amusefit.co.kr", Purpose.reset_password, 60, channel=Channel.email)
    await store.issue("long@amusefit.co.kr", Purpose.reset_password, 600, channel=Channel.email)
    clock.advance(120)

    removed = await store.sweep()

    assert removed == 1
    assert len(records) == 1
    assert await records.get(record_key("long@amusefit.co.kr", Purpose.reset_password)) is not None


async def test_concurrent_wrong_guesses_respect_attempt_ceiling(store):
    await store.issue(EMAIL, Purpose.reset_password, 600, channel=Channel.email)

    results = await asyncio.gather(*[store.verify(EMAIL, Purpose.reset_password, "000000") for _ in range(10)])

    reasons = [r.reason for r in results]
    assert reasons.count(VerifyReason.mismatch) == 3
    assert reasons.count(VerifyReason.attempts_exceeded) == 1
    assert reasons.count(VerifyReason.not_found) == 6


async def test_peek_reports_code_and_time_left(store, clock):
    code = await store.issue(EMAIL, Purpose.reset_password, 600, channel=Channel.email)
    clock.advance(75)

    assert await store.peek(EMAIL, Purpose.reset_password) == (code, 525)

    clock.advance(600)
    assert await store.peek(EMAIL, Purpose.reset_password) is None


async def test_counter_window_resets(clock):
    records = InMemoryRecordStore(clock)
    assert await records.hit("rl:x", 10) == (1, 10)
    clock.advance(4)
    assert await records.hit("rl:x", 10) == (2, 6)
    clock.advance(7)
    assert await records.hit("rl:x", 10) == (1, 10)


async def test_mask_code_hides_all_but_prefix():
    assert mask_code("123456") == "12****"


async def test_issue_requires_an_explicit_channel(store):
    with pytest.raises(TypeError):
        await store.issue(PHONE, Purpose.find_id, 300)


async def test_sweep_waits_for_the_key_lock(store, records, clock):
    await store.issue(EMAIL, Purpose.reset_password, 60, channel=Channel.email)
    clock.advance(61)
    key = record_key(EMAIL, Purpose.reset_password)

    async with records.lock(key):
        task = asyncio.create_task(store.sweep())
        for _ in range(5):
            await asyncio.sleep(0)
        assert not task.done()
        assert await records.get(key) is not None

    assert await task == 1
    assert await records.get(key) is None


async def test_sweep_keeps_record_reissued_after_scan(store, records, clock):
    await store.issue(EMAIL, Purpose.reset_password, 60, channel=Channel.email)
    clock.advance(61)
    key = record_key(EMAIL, Purpose.reset_password)

    async with records.lock(key):
        task = asyncio.create_task(store.sweep())
        for _ in range(5):
            await asyncio.sleep(0)
        # the key was already listed as expired; replace it the way issue() does
        stale = await records.get(key)
        now = clock()
        fresh = stale.model_copy(update={"code": "654321", "created_at": now, "expires_at": now + timedelta(seconds=600)})
        await records.set(key, fresh, now)

    assert await task == 0
    assert (await records.get(key)).code == "654321"
    assert (await store.verify(EMAIL, Purpose.reset_password, "654321")).verified
