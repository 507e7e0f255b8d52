from __future__ import annotations
import asyncio
import logging
from typing import Optional

from ..services.code_store import CodeStore

log = logging.getLogger("worker.code_sweeper")


class CodeSweeper:
    """Periodically drops expired verification codes.

    verify/is_verified check expiry on their own; the sweep only bounds memory.
    """

    def __init__(self, store: CodeStore, interval_sec: float) -> None:
        self.store = store
        self.interval_sec = interval_sec
        self._task: Optional[asyncio.Task] = None

    async def run_once(self) -> int:
        removed = await self.store.sweep()
        if removed:
            log.info(f"swept {removed} expired verification codes")
        return removed

    async def run_forever(self) -> None:
        while True:
            await asyncio.sleep(self.interval_sec)
            try:
                await self.run_once()
            except Exception as e:
                log.exception("code_sweeper error: %s", e)

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if not self.running:
            self._task = asyncio.create_task(self.run_forever(), name="code-sweeper")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
