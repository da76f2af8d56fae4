# /flowbot/services/prompt_tracker.py

import json
import logging
import time
from typing import Callable, Optional

from flowbot.config.settings import settings
from flowbot.services.cache_service import KeyValueStore

# Remembers which flow last showed a numbered menu to a chat, so a late
# numeric reply can re-enter that flow after the flow state has expired.

logger = logging.getLogger(__name__)


def epoch_ms() -> int:
    return int(time.time() * 1000)


class PromptTracker:
    def __init__(
        self,
        store: KeyValueStore,
        window_ms: Optional[int] = None,
        ttl_ms: Optional[int] = None,
        now: Callable[[], int] = epoch_ms,
    ):
        self.store = store
        self.window_ms = window_ms if window_ms is not None else settings.flow_prompt_window_ms
        self.ttl_ms = ttl_ms if ttl_ms is not None else max(settings.flow_ttl_seconds * 1000, self.window_ms)
        self.now = now

    async def remember(self, chat_id: str, flow_key: Optional[str] = None) -> None:
        payload = json.dumps({"at": self.now(), "flow_key": flow_key})
        # The entry outlives the window so a stale key can still name the flow
        await self.store.set(chat_id, payload, ttl_ms=self.ttl_ms)

    async def clear(self, chat_id: str) -> None:
        await self.store.delete(chat_id)

    async def get(self, chat_id: str) -> Optional[dict]:
        raw = await self.store.get(chat_id)
        if raw is None:
            return None
        try:
            entry = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning(f"Discarding undecodable prompt entry for {chat_id}")
            return None
        return entry if isinstance(entry, dict) else None

    async def is_recent(self, chat_id: str) -> bool:
        entry = await self.get(chat_id)
        if not entry:
            return False
        return self.now() - int(entry.get("at", 0)) <= self.window_ms

    async def recent_flow_key(self, chat_id: str) -> Optional[str]:
        """The flow key remembered for `chat_id`, if it was shown within the window."""
        if not await self.is_recent(chat_id):
            return None
        entry = await self.get(chat_id)
        return entry.get("flow_key") if entry else None

    async def last_flow_key(self, chat_id: str) -> Optional[str]:
        """The remembered flow key regardless of the recency window."""
        entry = await self.get(chat_id)
        return entry.get("flow_key") if entry else None
