# /flowbot/services/command_registry.py

import logging
from typing import Awaitable, Callable, Dict, Iterable, Optional

from pydantic import BaseModel

from flowbot.models.config import FlowTexts
from flowbot.services.flow_session_service import FlowAdvanceContext, FlowSessionService, SendSafe
from flowbot.workflows.definitions import CATALOG_FLOW_KEY, MENU_FLOW_KEY
from flowbot.workflows.engine import FlowEngine

# Text commands ("!menu", "!fluxo", ...) mapped to async handlers. A handler
# returns True when it consumed the message; False lets the router carry on.

logger = logging.getLogger(__name__)


class CommandContext(BaseModel):
    chat_id: str
    is_owner: bool = False
    from_self: bool = False


CommandHandler = Callable[[CommandContext], Awaitable[bool]]


class CommandRegistry:
    def __init__(self):
        self._handlers: Dict[str, CommandHandler] = {}

    def register(self, aliases: Iterable[str], handler: CommandHandler) -> None:
        for alias in aliases:
            self._handlers[alias.strip().lower()] = handler

    def commands(self):
        return sorted(self._handlers)

    async def run(self, command: str, context: CommandContext) -> bool:
        handler = self._handlers.get(command.strip().lower())
        if handler is None:
            return False
        return bool(await handler(context))


def create_command_registry(
    session: FlowSessionService,
    flow_engine: FlowEngine,
    send_safe: SendSafe,
    texts: Optional[FlowTexts] = None,
    reset_delay: Optional[Callable[[str], None]] = None,
) -> CommandRegistry:
    """Register the built-in conversation commands."""
    texts = texts or session.texts
    registry = CommandRegistry()

    def flow_context(chat_id: str, command: str) -> FlowAdvanceContext:
        context: FlowAdvanceContext = {
            "chat_id": chat_id,
            "input": command,
            "flow_engine": flow_engine,
            "send_safe": send_safe,
        }
        if reset_delay is not None:
            context["reset_delay"] = reset_delay
        return context

    async def start(context: CommandContext, flow_key: str, command: str) -> bool:
        await session.recovery.reset(context.chat_id)
        if not await session.start_flow(flow_context(context.chat_id, command), flow_key):
            await session.clear_prompt(context.chat_id)
            await send_safe(context.chat_id, texts.flow_unavailable)
        return True

    async def menu(context: CommandContext) -> bool:
        if context.from_self:
            return False
        if not session.menu_flow_enabled:
            await session.clear_prompt(context.chat_id)
            await send_safe(context.chat_id, texts.welcome)
            return True
        return await start(context, MENU_FLOW_KEY, "!menu")

    async def catalog(context: CommandContext) -> bool:
        if context.from_self:
            return False
        return await start(context, CATALOG_FLOW_KEY, "!fluxo")

    async def cancel(context: CommandContext) -> bool:
        if context.from_self:
            return False
        await flow_engine.cancel(context.chat_id)
        await session.clear_prompt(context.chat_id)
        await session.recovery.reset(context.chat_id)
        await send_safe(context.chat_id, texts.flow_cancelled)
        return True

    registry.register(["!menu", "!lista"], menu)
    registry.register(["!fluxo"], catalog)
    registry.register(["!cancelar"], cancel)
    return registry
