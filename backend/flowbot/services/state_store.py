# /flowbot/services/state_store.py

import logging
from typing import Optional

from pydantic import ValidationError

from flowbot.config.settings import settings
from flowbot.models.flow import FlowState
from flowbot.services.cache_service import KeyValueStore, create_key_value_store

logger = logging.getLogger(__name__)


class FlowStateStore:
    """
    chat_id -> FlowState with a sliding TTL. Every `set` re-arms the expiry,
    so a conversation expires FLOW_TTL_SECONDS after its last transition.
    The whole FlowState (definition included) is stored as JSON.
    """

    def __init__(self, store: KeyValueStore, ttl_seconds: Optional[int] = None):
        self.store = store
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else settings.flow_ttl_seconds

    async def get(self, chat_id: str) -> Optional[FlowState]:
        raw = await self.store.get(chat_id)
        if raw is None:
            return None
        try:
            return FlowState.model_validate_json(raw)
        except ValidationError as e:
            logger.warning(f"Discarding undecodable flow state for {chat_id}: {e}")
            return None

    async def set(self, chat_id: str, state: FlowState) -> None:
        await self.store.set(chat_id, state.model_dump_json(), ttl_ms=self.ttl_seconds * 1000)

    async def clear(self, chat_id: str) -> None:
        await self.store.delete(chat_id)

    async def has(self, chat_id: str) -> bool:
        return await self.get(chat_id) is not None


def create_store(
    driver: Optional[str] = None,
    redis_client=None,
    ttl_seconds: Optional[int] = None,
) -> FlowStateStore:
    """Build the flow state store on the configured key-value backend."""
    backend = create_key_value_store(driver, redis_client=redis_client, prefix=settings.flow_redis_prefix)
    return FlowStateStore(backend, ttl_seconds=ttl_seconds)
