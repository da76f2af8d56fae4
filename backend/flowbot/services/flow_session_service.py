# /flowbot/services/flow_session_service.py

import logging
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, TypedDict

from flowbot.config import strings
from flowbot.config.settings import settings
from flowbot.models.config import FlowTexts, MenuTemplates
from flowbot.models.conversation import AttemptStatus, PendingSuggestion
from flowbot.models.flow import Content, FlowNode, FlowOption, FlowState, FlowModule
from flowbot.services.prompt_tracker import PromptTracker
from flowbot.services.recovery_service import LOCK_AFTER_ATTEMPTS, ConversationRecoveryService
from flowbot.utils.errors import UnknownFlowError
from flowbot.utils.text import is_affirmative, is_negative, is_numeric_reply
from flowbot.workflows import engine as flow_engine
from flowbot.workflows.definitions import CATALOG_FLOW_KEY, MENU_FLOW_KEY
from flowbot.workflows.engine import FlowEngine, format_options
from flowbot.workflows.matcher import build_option_matcher

# This service sits between the router and the flow engine. It decides what
# a piece of user text means for the conversation (lock, suggestion answer,
# fallback choice, menu selection, restart) and sends every reply.

logger = logging.getLogger(__name__)

SendSafe = Callable[[str, Content], Awaitable[Any]]


class _FlowAdvanceContextBase(TypedDict):
    chat_id: str
    input: str
    flow_engine: FlowEngine
    send_safe: SendSafe


class FlowAdvanceContext(_FlowAdvanceContextBase, total=False):
    """Everything one call to advance_or_restart needs from the caller."""
    reset_delay: Callable[[str], None]


class StaticRestartStrategy:
    """Always restarts the same flow."""

    def __init__(self, module: FlowModule):
        self.module = module

    @property
    def key(self) -> str:
        return self.module.key

    def resolve(self) -> FlowModule:
        return self.module


class ConditionalRestartStrategy:
    """Restarts `module` while `is_enabled()` holds, otherwise defers to `fallback`."""

    def __init__(self, module: FlowModule, is_enabled: Callable[[], bool], fallback: StaticRestartStrategy):
        self.module = module
        self.is_enabled = is_enabled
        self.fallback = fallback

    @property
    def key(self) -> str:
        return self.module.key

    def resolve(self) -> FlowModule:
        if self.is_enabled():
            return self.module
        return self.fallback.resolve()


def build_restart_strategies(registry: Mapping[str, FlowModule], menu_flow_enabled: Callable[[], bool]) -> Dict[str, Any]:
    """
    Strategies keyed by flow key. The catalog always restarts itself; the menu
    restarts itself only while the menu flow is enabled.
    """
    if CATALOG_FLOW_KEY not in registry:
        raise UnknownFlowError(f"Unknown flow: {CATALOG_FLOW_KEY}")
    catalog = StaticRestartStrategy(registry[CATALOG_FLOW_KEY])
    strategies: Dict[str, Any] = {CATALOG_FLOW_KEY: catalog}
    if MENU_FLOW_KEY in registry:
        strategies[MENU_FLOW_KEY] = ConditionalRestartStrategy(registry[MENU_FLOW_KEY], menu_flow_enabled, catalog)
    for key, module in registry.items():
        strategies.setdefault(key, StaticRestartStrategy(module))
    return strategies


def format_prompt(prompt: Optional[str], options: Optional[List[str]] = None) -> str:
    """Prompt followed by one numbered option per line; either part may be empty."""
    prompt = prompt or ""
    options = options or []
    if prompt and options:
        return prompt + "\n" + "\n".join(options)
    if options:
        return "\n".join(options)
    return prompt


def _fallback_options(menus: MenuTemplates) -> List[FlowOption]:
    return [
        FlowOption(id=row.id, text=row.title)
        for section in menus.fallback.sections
        for row in section.rows
    ]


class FlowSessionService:
    def __init__(
        self,
        registry: Mapping[str, FlowModule],
        recovery: ConversationRecoveryService,
        prompts: PromptTracker,
        texts: Optional[FlowTexts] = None,
        menus: Optional[MenuTemplates] = None,
        menu_flow_enabled: Optional[bool] = None,
        lock_duration_ms: Optional[int] = None,
        suggestion_threshold: Optional[float] = None,
        confirmation_threshold: Optional[float] = None,
        notify_when_locked: Optional[bool] = None,
    ):
        self.registry = dict(registry)
        self.recovery = recovery
        self.prompts = prompts
        self.texts = texts or FlowTexts()
        self.menus = menus or MenuTemplates()
        self.menu_flow_enabled = settings.menu_flow if menu_flow_enabled is None else menu_flow_enabled
        self.lock_duration_ms = lock_duration_ms or settings.lock_duration_ms
        self.suggestion_threshold = suggestion_threshold or settings.fuzzy_suggestion_threshold
        self.confirmation_threshold = confirmation_threshold or settings.fuzzy_confirmation_threshold
        self.notify_when_locked = settings.notify_when_locked if notify_when_locked is None else notify_when_locked
        self.strategies = build_restart_strategies(self.registry, lambda: self.menu_flow_enabled)
        self.fallback_matcher = build_option_matcher(_fallback_options(self.menus), allow_index=False)

    @property
    def default_strategy(self):
        return self.strategies.get(MENU_FLOW_KEY) or self.strategies[CATALOG_FLOW_KEY]

    # ------------------------------------------------------------------ prompts

    async def remember_prompt(self, chat_id: str, flow_key: Optional[str] = None) -> None:
        await self.prompts.remember(chat_id, flow_key)

    async def clear_prompt(self, chat_id: str) -> None:
        await self.prompts.clear(chat_id)

    async def recent_flow_key(self, chat_id: str) -> Optional[str]:
        key = await self.prompts.recent_flow_key(chat_id)
        return key if key in self.strategies else None

    async def send_prompt(self, context: FlowAdvanceContext, node: FlowNode, flow_key: Optional[str]) -> None:
        """
        List nodes go out as their prompt followed by the interactive menu;
        every other node as one text with numbered options.
        """
        chat_id = context["chat_id"]
        send = context["send_safe"]
        if node.kind == "list" and node.menu is not None:
            if node.prompt:
                await send(chat_id, node.prompt)
            await send(chat_id, node.menu)
        else:
            text = format_prompt(node.prompt, format_options(node))
            if text:
                await send(chat_id, text)
        await self.remember_prompt(chat_id, flow_key)

    # ------------------------------------------------------------------ starts

    async def start_flow(self, context: FlowAdvanceContext, flow_key: Optional[str] = None) -> bool:
        """
        Start `flow_key` (or the default flow) and send its first prompt.
        Returns False when the flow is unknown or fails validation.
        """
        strategy = self.strategies.get(flow_key) if flow_key else self.default_strategy
        if strategy is None:
            logger.warning(f"No restart strategy for flow '{flow_key}'.")
            return False
        module = strategy.resolve()
        chat_id = context["chat_id"]
        result = await context["flow_engine"].start(chat_id, module.flow)
        if not result["ok"]:
            logger.warning(f"Flow '{module.key}' could not be started for {chat_id}: {result.get('details')}")
            return False
        await self.send_prompt(context, result["node"], module.key)
        reset_delay = context.get("reset_delay")
        if reset_delay is not None:
            reset_delay(chat_id)
        return True

    async def _restart_or_resume(self, context: FlowAdvanceContext, text: str) -> bool:
        chat_id = context["chat_id"]
        send = context["send_safe"]

        recent_key = await self.recent_flow_key(chat_id)
        if recent_key and is_numeric_reply(text):
            await send(chat_id, self.texts.expired_flow)
            if await self.start_flow(context, recent_key):
                return True
            await self.clear_prompt(chat_id)
            await send(chat_id, self.texts.flow_unavailable)
            return True

        if await self.start_flow(context):
            return True

        last_key = await self.prompts.last_flow_key(chat_id)
        if last_key in self.strategies and last_key != self.default_strategy.key:
            if await self.start_flow(context, last_key):
                return True

        await self.clear_prompt(chat_id)
        await send(chat_id, self.texts.flow_unavailable)
        return True

    # ------------------------------------------------------------------ recovery

    async def _lock(self, context: FlowAdvanceContext) -> None:
        chat_id = context["chat_id"]
        await self.recovery.lock(chat_id, self.recovery.now() + self.lock_duration_ms)

    async def _apply_ladder(self, context: FlowAdvanceContext, status: AttemptStatus, node: Optional[FlowNode]) -> bool:
        """
        1st invalid input: retry text and the current menu again.
        2nd: fallback menu (wait for an agent / back to the main menu).
        3rd: close the flow and lock the conversation.
        """
        chat_id = context["chat_id"]
        send = context["send_safe"]

        if status.attempts >= LOCK_AFTER_ATTEMPTS:
            await self.recovery.reset(chat_id)
            await self._lock(context)
            await context["flow_engine"].cancel(chat_id)
            await self.clear_prompt(chat_id)
            await send(chat_id, self.texts.fallback_closure)
            await send(chat_id, self.texts.locked_notice)
            return True

        if status.phase == "fallback":
            await send(chat_id, self.texts.fallback_retry)
            await send(chat_id, self.menus.fallback)
            return True

        if node is None:
            await send(chat_id, self.texts.friendly_retry)
            return True
        if node.kind == "list":
            await send(chat_id, self.texts.friendly_retry)
            if node.menu is not None:
                await send(chat_id, node.menu)
            else:
                await send(chat_id, format_prompt(node.prompt, format_options(node)))
        else:
            await send(chat_id, self.texts.invalid_option)
            await send(chat_id, format_prompt(node.prompt, format_options(node)))
        return True

    async def _current_node(self, context: FlowAdvanceContext) -> Optional[FlowNode]:
        state = await context["flow_engine"].get_state(context["chat_id"])
        if state is None:
            return None
        return state.flow.nodes.get(state.current)

    async def _handle_fallback_choice(self, context: FlowAdvanceContext, text: str) -> bool:
        match = self.fallback_matcher.match_exact(text)
        if match is None:
            return False

        chat_id = context["chat_id"]
        if match.option.id == strings.FALLBACK_WAIT_FOR_AGENT:
            await context["flow_engine"].cancel(chat_id)
            await self.clear_prompt(chat_id)
            await self.recovery.reset(chat_id)
            await context["send_safe"](chat_id, self.texts.awaiting_agent)
            await self._lock(context)
            return True

        await self.recovery.reset(chat_id)
        await context["flow_engine"].cancel(chat_id)
        if not await self.start_flow(context):
            await context["send_safe"](chat_id, self.texts.flow_unavailable)
        return True

    async def _suggest(self, context: FlowAdvanceContext, text: str, node: FlowNode) -> bool:
        suggestion = build_option_matcher(node.options).suggest(text, self.suggestion_threshold)
        if suggestion is None:
            return False

        chat_id = context["chat_id"]
        send = context["send_safe"]
        await self.recovery.set_pending_suggestion(
            chat_id,
            PendingSuggestion(
                option_id=suggestion.option.id,
                option_text=suggestion.option.text,
                confidence=suggestion.confidence,
            ),
        )
        await send(chat_id, self.texts.suggestion_for(suggestion.option.text))
        if suggestion.confidence < self.confirmation_threshold:
            await send(chat_id, self.texts.suggestion_confirm_hint)
            if node.menu is not None:
                await send(chat_id, node.menu)
        return True

    # ------------------------------------------------------------------ entry point

    async def advance_or_restart(self, context: FlowAdvanceContext) -> bool:
        """
        Handle one inbound text for the conversation.

        Returns False only when there is nothing to handle (no chat id or an
        empty input); every other path replies, or deliberately stays silent
        while the conversation is locked, and returns True.
        """
        chat_id = context.get("chat_id")
        text = (context.get("input") or "").strip()
        if not chat_id or not text:
            return False
        send = context["send_safe"]
        engine: FlowEngine = context["flow_engine"]

        lock = await self.recovery.get_lock_status(chat_id)
        if lock.locked:
            if self.notify_when_locked and await self.recovery.acknowledge_lock_notice(chat_id):
                await send(chat_id, self.texts.invalid_while_locked)
            return True
        if lock.released:
            await self.recovery.reset(chat_id)
            await send(chat_id, self.texts.resumed_notice)

        confirmed = False
        pending = await self.recovery.peek_pending_suggestion(chat_id)
        if pending is not None:
            if is_affirmative(text):
                await self.recovery.consume_pending_suggestion(chat_id)
                text = pending.option_id
                confirmed = True
            elif is_negative(text):
                await self.recovery.consume_pending_suggestion(chat_id)
                status = await self.recovery.record_invalid_attempt(chat_id)
                return await self._apply_ladder(context, status, await self._current_node(context))

        recovery_state = await self.recovery.get_state(chat_id)
        if not confirmed and recovery_state.phase == "fallback":
            if await self._handle_fallback_choice(context, text):
                return True

        state: Optional[FlowState] = await engine.get_state(chat_id)
        if state is None:
            return await self._restart_or_resume(context, text)

        node = state.flow.nodes.get(state.current)
        result = await engine.advance(chat_id, text)

        if not result["ok"]:
            error = result.get("error")
            if error == flow_engine.INVALID_INPUT:
                # Every unmatched input counts, suggested or not
                status = await self.recovery.record_invalid_attempt(chat_id)
                if (
                    node is not None
                    and node.kind == "list"
                    and status.phase == "initial"
                    and await self._suggest(context, text, node)
                ):
                    return True
                return await self._apply_ladder(context, status, node)
            if error == flow_engine.NO_ACTIVE_FLOW:
                return await self._restart_or_resume(context, text)

            logger.warning(f"Flow error '{error}' for {chat_id} at node '{result.get('node_id')}'.")
            await self.clear_prompt(chat_id)
            try:
                await engine.cancel(chat_id)
            except Exception as e:
                logger.warning(f"Cancelling the broken flow for {chat_id} failed: {e}")
            await send(chat_id, self.texts.generic_flow_error)
            return True

        await self.recovery.record_valid_selection(chat_id)
        target = state.flow.nodes.get(result["node_id"])

        if result["terminal"]:
            await self.clear_prompt(chat_id)
            prompt = result.get("prompt")
            if target is not None and target.lock_on_complete:
                if prompt:
                    await send(chat_id, prompt)
                await self._lock(context)
                await send(chat_id, self.texts.locked_notice)
                return True
            if prompt:
                await send(chat_id, prompt)
            reset_delay = context.get("reset_delay")
            if reset_delay is not None:
                reset_delay(chat_id)
            return True

        flow_key = await self.prompts.last_flow_key(chat_id)
        if target is not None:
            await self.send_prompt(context, target, flow_key)
        else:
            text_prompt = format_prompt(result.get("prompt"), result.get("options"))
            if text_prompt:
                await send(chat_id, text_prompt)
            await self.remember_prompt(chat_id, flow_key)
        return True
