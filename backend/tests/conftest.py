# backend/tests/conftest.py

import os

import pytest
from dotenv import load_dotenv
from unittest.mock import AsyncMock, MagicMock

# Load the test environment FIRST, before any flowbot imports, so Settings is
# built in test mode (in-memory stores, no throttling).
load_dotenv(dotenv_path=os.path.join(os.path.dirname(__file__), ".env.test"))

from flowbot.services.cache_service import InMemoryKeyValueStore  # noqa: E402
from flowbot.services.flow_session_service import FlowSessionService  # noqa: E402
from flowbot.services.prompt_tracker import PromptTracker  # noqa: E402
from flowbot.services.recovery_service import (  # noqa: E402
    ConversationRecoveryService,
    ConversationStateRepository,
)
from flowbot.services.state_store import FlowStateStore  # noqa: E402
from flowbot.workflows.definitions import build_flow_registry  # noqa: E402
from flowbot.workflows.engine import FlowEngine  # noqa: E402

CHAT_ID = "5511987654321@c.us"


class FakeClock:
    """Epoch-millisecond clock that only moves when told to."""

    def __init__(self, start: int = 1_700_000_000_000):
        self.value = start

    def __call__(self) -> int:
        return self.value

    def advance(self, ms: int) -> None:
        self.value += ms


@pytest.fixture
def chat_id():
    return CHAT_ID


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def kv_store():
    return InMemoryKeyValueStore()


@pytest.fixture
def flow_engine():
    return FlowEngine(FlowStateStore(InMemoryKeyValueStore(), ttl_seconds=1800))


@pytest.fixture
def recovery(clock):
    return ConversationRecoveryService(ConversationStateRepository(InMemoryKeyValueStore()), now=clock)


@pytest.fixture
def prompts(clock):
    return PromptTracker(InMemoryKeyValueStore(), window_ms=60_000, now=clock)


@pytest.fixture
def flow_registry():
    return build_flow_registry()


@pytest.fixture
def session_service(flow_registry, recovery, prompts):
    return FlowSessionService(
        flow_registry,
        recovery,
        prompts,
        menu_flow_enabled=True,
        lock_duration_ms=15 * 60 * 1000,
        suggestion_threshold=0.45,
        confirmation_threshold=0.75,
        notify_when_locked=False,
    )


@pytest.fixture
def send_safe():
    return AsyncMock(return_value=None)


@pytest.fixture
def reset_delay():
    return MagicMock()


@pytest.fixture
def build_context(chat_id, flow_engine, send_safe, reset_delay):
    """Returns a factory for FlowAdvanceContext dicts bound to the shared mocks."""
    def _build(text: str):
        return {
            "chat_id": chat_id,
            "input": text,
            "flow_engine": flow_engine,
            "send_safe": send_safe,
            "reset_delay": reset_delay,
        }
    return _build
