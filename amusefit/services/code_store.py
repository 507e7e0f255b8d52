from __future__ import annotations
import hmac
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Tuple

from ..errors import CooldownActive
from ..models import Channel, Purpose, VerificationRecord, VerifyReason, VerifyResult, record_key
from ..observability.metrics import CODES_ISSUED, CODES_SWEPT, CODES_VERIFIED
from ..repos.code_records import RecordStore

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_code() -> str:
    # 100000..999999 so the code never loses a leading zero in numeric inputs
    return str(100000 + secrets.randbelow(900000))


def mask_code(code: str) -> str:
    return code[:2] + "*" * (len(code) - 2)


class CodeStore:
    """Issues, checks and expires verification codes keyed by (contact, purpose).

    Every read-modify-write on a key runs under the record store's per-key lock,
    so concurrent verifies cannot under-count attempts and the sweeper never
    deletes a record a verify is evaluating.
    """

    def __init__(
        self,
        records: RecordStore,
        *,
        clock: Clock = utcnow,
        max_attempts: int = 3,
        cooldown_sec: int = 0,
    ) -> None:
        self.records = records
        self.clock = clock
        self.max_attempts = max_attempts
        self.cooldown_sec = cooldown_sec

    async def issue(
        self,
        contact: str,
        purpose: Purpose,
        ttl_seconds: int,
        *,
        channel: Channel,
    ) -> str:
        """Create a fresh code, replacing any previous one for the key.

        Raises CooldownActive when the previous live code is younger than
        cooldown_sec.
        """
        key = record_key(contact, purpose)
        async with self.records.lock(key):
            now = self.clock()
            if self.cooldown_sec > 0:
                prev = await self.records.get(key)
                if prev and not prev.is_expired(now):
                    age = (now - prev.created_at).total_seconds()
                    if age < self.cooldown_sec:
                        raise CooldownActive(retry_after=max(1, int(self.cooldown_sec - age)))

            code = generate_code()
            record = VerificationRecord(
                contact=contact,
                purpose=purpose,
                channel=channel,
                code=code,
                created_at=now,
                expires_at=now + timedelta(seconds=ttl_seconds),
            )
            await self.records.set(key, record, now)

        CODES_ISSUED.labels(channel=channel.value, purpose=purpose.value).inc()
        logger.info("issued %s code for %s (%s), ttl=%ss", channel.value, contact, purpose.value, ttl_seconds)
        return code

    async def verify(self, contact: str, purpose: Purpose, supplied_code: str) -> VerifyResult:
        key = record_key(contact, purpose)
        async with self.records.lock(key):
            result = await self._verify_locked(key, supplied_code)

        CODES_VERIFIED.labels(purpose=purpose.value, reason=result.reason.value).inc()
        if result.verified:
            logger.info("verification succeeded for %s (%s)", contact, purpose.value)
        else:
            logger.info(
                "verification failed for %s (%s): %s attempts=%s",
                contact, purpose.value, result.reason.value, result.attempts,
            )
        return result

    async def _verify_locked(self, key: str, supplied_code: str) -> VerifyResult:
        record = await self.records.get(key)
        if record is None:
            return VerifyResult(verified=False, reason=VerifyReason.not_found)

        now = self.clock()
        if record.is_expired(now):
            await self.records.delete(key)
            return VerifyResult(verified=False, reason=VerifyReason.expired, attempts=record.attempts)

        if record.verified:
            return VerifyResult(verified=False, reason=VerifyReason.already_verified, attempts=record.attempts)

        if record.attempts >= self.max_attempts:
            await self.records.delete(key)
            return VerifyResult(verified=False, reason=VerifyReason.attempts_exceeded, attempts=record.attempts)

        if not hmac.compare_digest(record.code.encode(), (supplied_code or "").strip().encode()):
            record.attempts += 1
            await self.records.set(key, record, now)
            return VerifyResult(
                verified=False,
                reason=VerifyReason.mismatch,
                attempts=record.attempts,
                remaining=self.max_attempts - record.attempts,
            )

        record.verified = True
        await self.records.set(key, record, now)
        return VerifyResult(
            verified=True,
            reason=VerifyReason.verified,
            attempts=record.attempts,
            remaining=self.max_attempts - record.attempts,
        )

    async def is_verified(self, contact: str, purpose: Purpose) -> bool:
        record = await self.records.get(record_key(contact, purpose))
        return bool(record and record.verified and not record.is_expired(self.clock()))

    async def clear(self, contact: str, purpose: Purpose) -> None:
        key = record_key(contact, purpose)
        async with self.records.lock(key):
            await self.records.delete(key)

    async def peek(self, contact: str, purpose: Purpose) -> Optional[Tuple[str, int]]:
        """Outstanding code and seconds left; development lookups only."""
        key = record_key(contact, purpose)
        async with self.records.lock(key):
            record = await self.records.get(key)
            if record is None:
                return None
            now = self.clock()
            if record.is_expired(now):
                await self.records.delete(key)
                return None
            return record.code, record.seconds_left(now)

    async def sweep(self) -> int:
        removed = 0
        for key in await self.records.expired_keys(self.clock()):
            async with self.records.lock(key):
                # re-check: the key may have been re-issued since the scan
                record = await self.records.get(key)
                if record is not None and record.is_expired(self.clock()):
                    await self.records.delete(key)
                    removed += 1
        if removed:
            CODES_SWEPT.inc(removed)
        return removed
