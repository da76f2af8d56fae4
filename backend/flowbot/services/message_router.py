# /flowbot/services/message_router.py

from typing import Callable, Optional

import structlog
from pydantic import BaseModel

from flowbot.services.command_registry import CommandContext, CommandRegistry
from flowbot.services.flow_session_service import FlowAdvanceContext, FlowSessionService, SendSafe
from flowbot.services.recovery_service import ConversationRecoveryService
from flowbot.workflows.engine import FlowEngine

# Inbound messages run through a chain of handlers:
#   lock guard -> commands -> flow -> discard
# Each handler either consumes the message or passes it on.

logger = structlog.get_logger(__name__)


class RoutedMessage(BaseModel):
    chat_id: str
    raw_body: str = ""
    normalized_body: str = ""
    from_self: bool = False
    is_owner: bool = False


class MessageRouterDeps:
    def __init__(
        self,
        command_registry: CommandRegistry,
        flow_engine: FlowEngine,
        flow_session_service: FlowSessionService,
        recovery: ConversationRecoveryService,
        send_safe: SendSafe,
        reset_delay: Optional[Callable[[str], None]] = None,
        notify_when_locked: bool = False,
    ):
        self.command_registry = command_registry
        self.flow_engine = flow_engine
        self.flow_session_service = flow_session_service
        self.recovery = recovery
        self.send_safe = send_safe
        self.reset_delay = reset_delay
        self.notify_when_locked = notify_when_locked


class MessageHandler:
    def __init__(self):
        self._next: Optional["MessageHandler"] = None

    def set_next(self, handler: Optional["MessageHandler"]) -> "MessageHandler":
        self._next = handler
        return handler or self

    async def handle_next(self, deps: MessageRouterDeps, message: RoutedMessage) -> bool:
        if self._next is None:
            return False
        return await self._next.handle(deps, message)

    async def handle(self, deps: MessageRouterDeps, message: RoutedMessage) -> bool:
        raise NotImplementedError


class LockGuardHandler(MessageHandler):
    """Swallows everything while the conversation is locked."""

    async def handle(self, deps: MessageRouterDeps, message: RoutedMessage) -> bool:
        status = await deps.recovery.get_lock_status(message.chat_id)
        if status.locked:
            logger.info("message_suppressed_while_locked", chat_id=message.chat_id, remaining_ms=status.remaining_ms)
            if deps.notify_when_locked and await deps.recovery.acknowledge_lock_notice(message.chat_id):
                await deps.send_safe(message.chat_id, deps.flow_session_service.texts.invalid_while_locked)
            return True
        if status.released:
            await deps.recovery.reset(message.chat_id)
            await deps.send_safe(message.chat_id, deps.flow_session_service.texts.resumed_notice)
        return await self.handle_next(deps, message)


class CommandMessageHandler(MessageHandler):
    async def handle(self, deps: MessageRouterDeps, message: RoutedMessage) -> bool:
        if not message.normalized_body.startswith("!"):
            return await self.handle_next(deps, message)
        context = CommandContext(chat_id=message.chat_id, is_owner=message.is_owner, from_self=message.from_self)
        if await deps.command_registry.run(message.normalized_body, context):
            return True
        return await self.handle_next(deps, message)


class FlowMessageHandler(MessageHandler):
    async def handle(self, deps: MessageRouterDeps, message: RoutedMessage) -> bool:
        if not message.normalized_body or message.normalized_body.startswith("!") or not message.chat_id:
            return await self.handle_next(deps, message)
        context: FlowAdvanceContext = {
            "chat_id": message.chat_id,
            "input": message.normalized_body,
            "flow_engine": deps.flow_engine,
            "send_safe": deps.send_safe,
        }
        if deps.reset_delay is not None:
            context["reset_delay"] = deps.reset_delay
        if await deps.flow_session_service.advance_or_restart(context):
            return True
        return await self.handle_next(deps, message)


class DiscardMessageHandler(MessageHandler):
    async def handle(self, deps: MessageRouterDeps, message: RoutedMessage) -> bool:
        logger.debug("message_discarded", chat_id=message.chat_id)
        return False


class MessageRouter:
    def __init__(self, deps: MessageRouterDeps):
        self.deps = deps
        self.head = LockGuardHandler()
        self.head.set_next(CommandMessageHandler()).set_next(FlowMessageHandler()).set_next(DiscardMessageHandler())

    async def route(self, message: RoutedMessage) -> bool:
        """
        Route one message. Unexpected errors are logged and answered with the
        generic flow error when possible; they never reach the transport.
        """
        log = logger.bind(chat_id=message.chat_id)
        try:
            return await self.head.handle(self.deps, message)
        except Exception:
            log.exception("message_routing_failed")
            try:
                await self.deps.send_safe(message.chat_id, self.deps.flow_session_service.texts.generic_flow_error)
            except Exception as e:
                log.warning("generic_error_reply_failed", error=str(e))
            return False
