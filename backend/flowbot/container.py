# /flowbot/container.py

import logging
from typing import Any, Awaitable, Callable, Mapping, Optional

from flowbot.config.settings import Settings, settings as default_settings
from flowbot.models.config import FlowTexts, MenuTemplates
from flowbot.models.conversation import InboundMessage
from flowbot.models.flow import Content
from flowbot.services.cache_service import (
    InMemoryKeyValueStore,
    KeyValueStore,
    create_key_value_store,
    create_redis_client,
)
from flowbot.services.command_registry import create_command_registry
from flowbot.services.flow_session_service import FlowSessionService
from flowbot.services.message_router import MessageRouter, MessageRouterDeps, RoutedMessage
from flowbot.services.message_sender import (
    ResponseDelayManager,
    build_send_pipeline,
    delayed,
    observed,
    rate_limited,
)
from flowbot.services.prompt_tracker import PromptTracker
from flowbot.services.rate_controller import RateController
from flowbot.services.recovery_service import ConversationRecoveryService, ConversationStateRepository, epoch_ms
from flowbot.services.state_store import FlowStateStore
from flowbot.workflows.definitions import build_flow_registry
from flowbot.workflows.engine import FlowEngine

# Composition root: builds every component once from Settings and exposes the
# single entry point the transport calls for each inbound message.

logger = logging.getLogger(__name__)

GROUP_SUFFIX = "@g.us"
STATUS_BROADCAST = "status@broadcast"
RATE_REDIS_PREFIX = "flowbot:rate:"


class ApplicationContainer:
    def __init__(
        self,
        transport_send: Callable[[str, Content], Awaitable[Any]],
        config: Optional[Settings] = None,
        flows: Optional[Mapping[str, Any]] = None,
        texts: Optional[FlowTexts] = None,
        now: Callable[[], int] = epoch_ms,
        redis_client=None,
    ):
        self.settings = config or default_settings
        cfg = self.settings

        self.redis = redis_client
        if self.redis is None and cfg.flow_store == "redis" and not cfg.is_test:
            self.redis = create_redis_client(cfg.redis_url)

        self.flow_kv = self._store(cfg.flow_redis_prefix)
        self.recovery_kv = self._store(cfg.recovery_redis_prefix)
        self.prompt_kv = self._store(cfg.prompt_redis_prefix)
        self.rate_kv = self._store(RATE_REDIS_PREFIX)

        self.registry = build_flow_registry(overrides=flows)
        self.flow_engine = FlowEngine(FlowStateStore(self.flow_kv, ttl_seconds=cfg.flow_ttl_seconds))
        self.recovery = ConversationRecoveryService(
            ConversationStateRepository(self.recovery_kv, ttl_ms=cfg.flow_ttl_seconds * 1000),
            now=now,
        )
        self.prompts = PromptTracker(self.prompt_kv, window_ms=cfg.flow_prompt_window_ms, now=now)
        self.texts = texts or FlowTexts()
        self.flow_session_service = FlowSessionService(
            self.registry,
            self.recovery,
            self.prompts,
            texts=self.texts,
            menus=MenuTemplates(),
            menu_flow_enabled=cfg.menu_flow,
            lock_duration_ms=cfg.lock_duration_ms,
            suggestion_threshold=cfg.fuzzy_suggestion_threshold,
            confirmation_threshold=cfg.fuzzy_confirmation_threshold,
            notify_when_locked=cfg.notify_when_locked,
        )

        self.rate_controller = RateController(
            self.rate_kv,
            per_chat_cooldown_ms=cfg.rate_per_chat_cooldown_ms,
            global_max_per_interval=cfg.throttle_global_max,
            global_interval_ms=cfg.throttle_global_interval_ms,
            test_mode=cfg.is_test,
        )
        self.delay_manager = ResponseDelayManager(cfg.response_base_delay_ms, cfg.response_delay_factor)
        transformers = [observed(), rate_limited(self.rate_controller)]
        if not cfg.is_test:
            transformers.append(delayed(self.delay_manager))
        self.send_safe = build_send_pipeline(transport_send, transformers)

        self.command_registry = create_command_registry(
            self.flow_session_service,
            self.flow_engine,
            self.send_safe,
            texts=self.texts,
            reset_delay=self.delay_manager.reset,
        )
        self.router = MessageRouter(
            MessageRouterDeps(
                command_registry=self.command_registry,
                flow_engine=self.flow_engine,
                flow_session_service=self.flow_session_service,
                recovery=self.recovery,
                send_safe=self.send_safe,
                reset_delay=self.delay_manager.reset,
                notify_when_locked=cfg.notify_when_locked,
            )
        )

    def _store(self, prefix: str) -> KeyValueStore:
        driver = "redis" if self.redis is not None else "memory"
        return create_key_value_store(driver, redis_client=self.redis, prefix=prefix)

    async def start(self):
        await self.rate_controller.start()
        logger.info(f"Flow core started with flows: {', '.join(sorted(self.registry))}")

    async def stop(self):
        await self.rate_controller.stop()
        for store in (self.flow_kv, self.recovery_kv, self.prompt_kv, self.rate_kv):
            if isinstance(store, InMemoryKeyValueStore):
                await store.close()
        if self.redis is not None:
            await self.redis.aclose()
        self.delay_manager.clear()
        logger.info("Flow core stopped.")

    def is_owner(self, message: InboundMessage) -> bool:
        owner = self.settings.owner_id
        if not owner:
            return False
        return message.chat_id == owner or message.author == owner

    async def handle_incoming(self, message: InboundMessage) -> bool:
        """
        Entry point for the transport. Group, status and broadcast traffic is
        dropped, as are the bot's own messages unless they come from the owner
        with ALLOW_SELF_ADMIN set.
        """
        sender = message.chat_id or ""
        recipient = message.to or ""
        if sender.endswith(GROUP_SUFFIX) or recipient.endswith(GROUP_SUFFIX):
            return False
        if STATUS_BROADCAST in (sender, recipient):
            return False
        if message.is_status or message.is_broadcast:
            return False

        is_owner = self.is_owner(message)
        if message.from_me and not (self.settings.allow_self_admin and is_owner):
            return False

        raw = message.body or ""
        routed = RoutedMessage(
            chat_id=sender,
            raw_body=raw,
            normalized_body=raw.strip().lower(),
            from_self=message.from_me,
            is_owner=is_owner,
        )
        return await self.router.route(routed)
