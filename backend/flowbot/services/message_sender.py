# /flowbot/services/message_sender.py

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Sequence

from flowbot.config.settings import settings
from flowbot.models.flow import Content
from flowbot.services.rate_controller import RateController
from flowbot.utils.metrics import outbound_messages

# The outbound side of the bot is one `send(chat_id, content)` coroutine.
# Cross-cutting behaviour (metrics, rate limiting, human-like pacing) is added
# by transformers, each wrapping the previous send, composed once at startup.

logger = logging.getLogger(__name__)

Send = Callable[[str, Content], Awaitable[Any]]
SendTransformer = Callable[[Send], Send]


class ResponseDelayManager:
    """
    Cumulative per-chat reply delay: base, base*factor, base*factor^2, ...
    until reset() is called for the chat (usually when a flow starts over).
    """

    def __init__(self, base_delay_ms: Optional[int] = None, factor: Optional[float] = None):
        self.base_delay_ms = settings.response_base_delay_ms if base_delay_ms is None else base_delay_ms
        self.factor = settings.response_delay_factor if factor is None else factor
        if self.base_delay_ms <= 0:
            raise ValueError("base_delay_ms must be greater than zero")
        if self.factor <= 1:
            raise ValueError("factor must be greater than 1 for a cumulative delay")
        self._delays: Dict[str, float] = {}

    def next_delay(self, chat_id: str) -> float:
        current = self._delays.get(chat_id, self.base_delay_ms)
        self._delays[chat_id] = current * self.factor
        return current

    def reset(self, chat_id: str) -> None:
        self._delays.pop(chat_id, None)

    def clear(self) -> None:
        self._delays.clear()


def observed() -> SendTransformer:
    """Count every send and log failures before re-raising them."""
    def transform(send: Send) -> Send:
        async def observed_send(chat_id: str, content: Content) -> Any:
            try:
                result = await send(chat_id, content)
            except Exception as e:
                outbound_messages.labels(status="error").inc()
                logger.error(f"Failed to send message to {chat_id}: {e}")
                raise
            outbound_messages.labels(status="success").inc()
            return result
        return observed_send
    return transform


def rate_limited(controller: RateController) -> SendTransformer:
    def transform(send: Send) -> Send:
        async def rate_limited_send(chat_id: str, content: Content) -> Any:
            return await controller.with_send(chat_id, lambda: send(chat_id, content))
        return rate_limited_send
    return transform


def delayed(delay_manager: ResponseDelayManager, sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep) -> SendTransformer:
    def transform(send: Send) -> Send:
        async def delayed_send(chat_id: str, content: Content) -> Any:
            delay_ms = delay_manager.next_delay(chat_id)
            if delay_ms > 0:
                await sleep(delay_ms / 1000)
            return await send(chat_id, content)
        return delayed_send
    return transform


def build_send_pipeline(base: Send, transformers: Sequence[SendTransformer]) -> Send:
    """
    Wrap `base` with each transformer in order; the last one listed runs
    first. `[rate_limited(rc), delayed(dm)]` therefore delays, then waits for
    the rate limit, then sends.
    """
    send = base
    for transform in transformers:
        send = transform(send)
    return send
