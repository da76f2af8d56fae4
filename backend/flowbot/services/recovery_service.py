# /flowbot/services/recovery_service.py

import logging
import time
from typing import Callable, Optional

from pydantic import ValidationError

from flowbot.config.settings import settings
from flowbot.models.conversation import (
    AttemptStatus,
    ConversationState,
    LockStatus,
    PendingSuggestion,
)
from flowbot.services.cache_service import KeyValueStore
from flowbot.utils.metrics import flow_recovery_events

# This service tracks how a conversation is coping with the menu: consecutive
# invalid inputs, the escalation phase, a fuzzy suggestion awaiting a yes/no
# and a temporary lock once the bot hands the chat over to a human.

logger = logging.getLogger(__name__)

FALLBACK_AFTER_ATTEMPTS = 2
LOCK_AFTER_ATTEMPTS = 3


def epoch_ms() -> int:
    return int(time.time() * 1000)


class ConversationStateRepository:
    """JSON-serialized ConversationState per chat on an injected key-value store."""

    def __init__(self, store: KeyValueStore, ttl_ms: Optional[int] = None):
        self.store = store
        self.ttl_ms = ttl_ms

    async def get(self, chat_id: str) -> Optional[ConversationState]:
        raw = await self.store.get(chat_id)
        if raw is None:
            return None
        try:
            return ConversationState.model_validate_json(raw)
        except ValidationError as e:
            logger.warning(f"Discarding undecodable recovery state for {chat_id}: {e}")
            return None

    async def save(self, chat_id: str, state: ConversationState, ttl_ms: Optional[int] = None) -> None:
        await self.store.set(chat_id, state.model_dump_json(), ttl_ms=ttl_ms or self.ttl_ms)

    async def delete(self, chat_id: str) -> None:
        await self.store.delete(chat_id)


class ConversationRecoveryService:
    def __init__(
        self,
        repository: ConversationStateRepository,
        now: Callable[[], int] = epoch_ms,
    ):
        self.repository = repository
        self.now = now

    async def get_state(self, chat_id: str) -> ConversationState:
        state = await self.repository.get(chat_id)
        return state if state is not None else ConversationState(updated_at=self.now())

    async def _save(self, chat_id: str, state: ConversationState) -> None:
        state.updated_at = self.now()
        ttl_ms = None
        if state.locked_until is not None:
            # Keep the entry alive at least as long as the lock it carries
            ttl_ms = max(state.locked_until - state.updated_at, 0) + (self.repository.ttl_ms or 0)
        await self.repository.save(chat_id, state, ttl_ms=ttl_ms)

    async def record_valid_selection(self, chat_id: str) -> None:
        state = await self.get_state(chat_id)
        state.attempts = 0
        state.phase = "initial"
        state.pending_suggestion = None
        state.locked_until = None
        state.lock_notice_sent = False
        await self._save(chat_id, state)
        flow_recovery_events.labels(event="valid_selection").inc()

    async def record_invalid_attempt(self, chat_id: str, keep_pending_suggestion: bool = False) -> AttemptStatus:
        """
        Count one invalid input. Two or more move the conversation into the
        fallback phase. The pending suggestion is dropped unless
        `keep_pending_suggestion` is set.
        """
        state = await self.get_state(chat_id)
        state.attempts += 1
        if state.attempts >= FALLBACK_AFTER_ATTEMPTS:
            state.phase = "fallback"
        if not keep_pending_suggestion:
            state.pending_suggestion = None
        await self._save(chat_id, state)
        flow_recovery_events.labels(event="invalid_attempt").inc()
        return AttemptStatus(attempts=state.attempts, phase=state.phase)

    async def get_attempts(self, chat_id: str) -> int:
        return (await self.get_state(chat_id)).attempts

    async def set_pending_suggestion(self, chat_id: str, suggestion: PendingSuggestion) -> None:
        state = await self.get_state(chat_id)
        state.pending_suggestion = suggestion
        await self._save(chat_id, state)
        flow_recovery_events.labels(event="suggestion").inc()

    async def peek_pending_suggestion(self, chat_id: str) -> Optional[PendingSuggestion]:
        return (await self.get_state(chat_id)).pending_suggestion

    async def consume_pending_suggestion(self, chat_id: str) -> Optional[PendingSuggestion]:
        state = await self.get_state(chat_id)
        suggestion = state.pending_suggestion
        if suggestion is not None:
            state.pending_suggestion = None
            await self._save(chat_id, state)
        return suggestion

    async def lock(self, chat_id: str, locked_until: int) -> None:
        state = await self.get_state(chat_id)
        state.locked_until = int(locked_until)
        state.lock_notice_sent = False
        await self._save(chat_id, state)
        flow_recovery_events.labels(event="locked").inc()
        logger.info(f"Conversation {chat_id} locked until {locked_until}.")

    async def unlock(self, chat_id: str) -> None:
        state = await self.repository.get(chat_id)
        if state is None or state.locked_until is None:
            return
        state.locked_until = None
        state.lock_notice_sent = False
        await self._save(chat_id, state)

    async def get_lock_status(self, chat_id: str) -> LockStatus:
        """
        Report the lock for `chat_id`, lifting it when its deadline has passed.
        Only the read that lifts the lock reports `released=True`.
        """
        state = await self.repository.get(chat_id)
        if state is None or state.locked_until is None:
            return LockStatus(locked=False)

        now = self.now()
        if now >= state.locked_until:
            locked_until = state.locked_until
            state.locked_until = None
            state.lock_notice_sent = False
            await self._save(chat_id, state)
            flow_recovery_events.labels(event="released").inc()
            return LockStatus(locked=False, locked_until=locked_until, released=True)

        return LockStatus(locked=True, remaining_ms=state.locked_until - now, locked_until=state.locked_until)

    async def acknowledge_lock_notice(self, chat_id: str) -> bool:
        """True only for the first call per lock while the lock is active."""
        state = await self.repository.get(chat_id)
        if state is None or state.locked_until is None or state.lock_notice_sent:
            return False
        if self.now() >= state.locked_until:
            return False
        state.lock_notice_sent = True
        await self._save(chat_id, state)
        return True

    async def reset(self, chat_id: str) -> None:
        await self.repository.delete(chat_id)


def create_recovery_service(store: KeyValueStore, now: Callable[[], int] = epoch_ms) -> ConversationRecoveryService:
    repository = ConversationStateRepository(store, ttl_ms=settings.flow_ttl_seconds * 1000)
    return ConversationRecoveryService(repository, now=now)
