# backend/tests/unit/test_message_sender.py

import pytest
from unittest.mock import AsyncMock

from flowbot.services.cache_service import InMemoryKeyValueStore
from flowbot.services.message_sender import (
    ResponseDelayManager,
    build_send_pipeline,
    delayed,
    observed,
    rate_limited,
)
from flowbot.services.rate_controller import RateController


def test_delay_grows_until_reset():
    manager = ResponseDelayManager(base_delay_ms=1000, factor=1.5)
    assert manager.next_delay("c1") == 1000
    assert manager.next_delay("c1") == 1500
    assert manager.next_delay("c1") == 2250
    assert manager.next_delay("c2") == 1000

    manager.reset("c1")
    assert manager.next_delay("c1") == 1000
    manager.clear()
    assert manager.next_delay("c2") == 1000


@pytest.mark.parametrize("base, factor", [(0, 1.5), (-1, 2), (1000, 1), (1000, 0.5)])
def test_delay_manager_rejects_bad_configuration(base, factor):
    with pytest.raises(ValueError):
        ResponseDelayManager(base_delay_ms=base, factor=factor)


@pytest.mark.asyncio
async def test_pipeline_order_is_delay_then_rate_limit_then_send():
    events = []

    async def base(chat_id, content):
        events.append(("send", chat_id, content))
        return "ok"

    async def record_sleep(seconds):
        events.append(("sleep", seconds))

    controller = RateController(InMemoryKeyValueStore(), test_mode=True)
    real_with_send = controller.with_send

    async def tracking_with_send(chat_id, fn):
        events.append(("rate", chat_id))
        return await real_with_send(chat_id, fn)

    controller.with_send = tracking_with_send
    manager = ResponseDelayManager(base_delay_ms=2000, factor=2)
    send = build_send_pipeline(base, [rate_limited(controller), delayed(manager, sleep=record_sleep)])

    assert await send("c1", "olá") == "ok"
    assert events == [("sleep", 2.0), ("rate", "c1"), ("send", "c1", "olá")]


@pytest.mark.asyncio
async def test_observed_reraises_failures():
    base = AsyncMock(side_effect=RuntimeError("boom"))
    send = build_send_pipeline(base, [observed()])
    with pytest.raises(RuntimeError):
        await send("c1", "oi")
    base.assert_awaited_once_with("c1", "oi")
