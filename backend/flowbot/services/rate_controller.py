# /flowbot/services/rate_controller.py

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Optional

from flowbot.config.settings import settings
from flowbot.services.cache_service import KeyValueStore
from flowbot.utils.metrics import send_wait_histogram

# Outbound pacing: a per-chat cooldown between two sends to the same chat and
# a fixed-window token bucket shared by every chat. The bucket is refilled by
# a background task; tokens are taken synchronously right before the send.

logger = logging.getLogger(__name__)


def epoch_ms() -> int:
    return int(time.time() * 1000)


class RateController:
    def __init__(
        self,
        store: KeyValueStore,
        per_chat_cooldown_ms: Optional[int] = None,
        global_max_per_interval: Optional[int] = None,
        global_interval_ms: Optional[int] = None,
        test_mode: Optional[bool] = None,
        now: Callable[[], int] = epoch_ms,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.store = store
        self.test_mode = settings.is_test if test_mode is None else test_mode
        self.per_chat_cooldown_ms = (
            settings.rate_per_chat_cooldown_ms if per_chat_cooldown_ms is None else per_chat_cooldown_ms
        )
        self.global_max_per_interval = global_max_per_interval or settings.throttle_global_max
        self.global_interval_ms = global_interval_ms or settings.throttle_global_interval_ms
        self.now = now
        self.sleep = sleep
        self._tokens = self.global_max_per_interval
        self._refill_task: Optional[asyncio.Task] = None

    @property
    def tokens(self) -> int:
        return self._tokens

    @property
    def running(self) -> bool:
        return self._refill_task is not None and not self._refill_task.done()

    async def start(self):
        if self.test_mode or self.running:
            return
        self._tokens = self.global_max_per_interval
        self._refill_task = asyncio.create_task(self._refill_loop())
        logger.info(
            f"Rate controller started: {self.global_max_per_interval} sends per "
            f"{self.global_interval_ms} ms, {self.per_chat_cooldown_ms} ms per-chat cooldown."
        )

    async def stop(self):
        task, self._refill_task = self._refill_task, None
        if task is not None:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        self._tokens = self.global_max_per_interval

    def refill(self) -> None:
        self._tokens = self.global_max_per_interval

    async def _refill_loop(self):
        while True:
            await asyncio.sleep(self.global_interval_ms / 1000)
            self.refill()

    async def cooldown_remaining_ms(self, chat_id: str) -> int:
        raw = await self.store.get(chat_id)
        if raw is None:
            return 0
        try:
            last = int(raw)
        except ValueError:
            return 0
        return max(0, last + self.per_chat_cooldown_ms - self.now())

    async def with_send(self, chat_id: str, fn: Callable[[], Awaitable[Any]]) -> Any:
        """
        Run `fn` once the chat's cooldown has passed and a global token is
        available. The chat is timestamped even when `fn` raises.
        """
        if self.test_mode:
            return await fn()
        await self.start()

        started = time.monotonic()
        wait_ms = await self.cooldown_remaining_ms(chat_id)
        if wait_ms > 0:
            await self.sleep(wait_ms / 1000)

        while self._tokens <= 0:
            await self.sleep(max(5, self.global_interval_ms // 4) / 1000)
        self._tokens -= 1
        send_wait_histogram.observe(time.monotonic() - started)

        try:
            return await fn()
        finally:
            if self.per_chat_cooldown_ms > 0:
                await self.store.set(chat_id, str(self.now()), ttl_ms=self.per_chat_cooldown_ms)
