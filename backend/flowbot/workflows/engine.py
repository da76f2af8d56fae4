# /flowbot/workflows/engine.py

"""
Flow execution engine.

This module owns the per-conversation state machine:
    Inactive --start--> Active(node) --advance*--> Inactive

- start() validates the definition and places the conversation on the start node
- advance() matches raw input exactly against the current node's options
- Terminal nodes, missing nodes and dangling edges end the conversation's flow
- cancel() is always safe, whether or not a flow is active

The engine never sends messages and never applies fuzzy matching; both are
the session service's job. Results are plain dicts so callers can branch on
`ok` / `error` without importing engine types.
"""

import logging
from typing import Any, List, Mapping, Optional, TypedDict, Union

from flowbot.models.flow import FlowDefinition, FlowNode, FlowState
from flowbot.services.state_store import FlowStateStore
from flowbot.utils.errors import FlowDefinitionError
from flowbot.utils.metrics import flow_transitions
from flowbot.workflows.matcher import build_option_matcher
from flowbot.workflows.validator import describe_result, load_flow_definition, validate_option_flow

logger = logging.getLogger(__name__)

# Error codes surfaced to callers
NO_ACTIVE_FLOW = "sem_fluxo_ativo"
NO_NODE = "no_node"
INVALID_INPUT = "input_invalido"
MISSING_NEXT = "next_inexistente"
INVALID_FLOW = "fluxo_invalido"


class StartResult(TypedDict, total=False):
    """Result of FlowEngine.start."""
    ok: bool
    node: FlowNode
    node_id: str
    error: str
    details: List[str]


class AdvanceResult(TypedDict, total=False):
    """
    Result of FlowEngine.advance.

    ok=True carries `terminal`, `prompt`, `node_id` and, for non-terminal
    nodes, the numbered `options`. ok=False carries `error` plus `expected`
    (input_invalido) or the offending `node_id`.
    """
    ok: bool
    terminal: bool
    prompt: Optional[str]
    options: List[str]
    node_id: str
    error: str
    expected: List[str]


def format_options(node: FlowNode) -> List[str]:
    return [f"{position}. {option.text}" for position, option in enumerate(node.options, start=1)]


class FlowEngine:
    def __init__(self, store: FlowStateStore):
        self.store = store

    async def start(self, chat_id: str, flow: Union[FlowDefinition, Mapping[str, Any]]) -> StartResult:
        """
        Validate `flow` and place the conversation on its start node.

        An invalid flow leaves any previous state for the chat untouched.
        """
        try:
            definition = load_flow_definition(flow)
        except FlowDefinitionError as e:
            flow_transitions.labels(result="invalid_flow").inc()
            return {"ok": False, "error": INVALID_FLOW, "details": e.errors}

        validation = validate_option_flow(definition)
        if not validation["ok"]:
            flow_transitions.labels(result="invalid_flow").inc()
            logger.warning(f"Refusing to start invalid flow for {chat_id}: {describe_result(validation)}")
            return {"ok": False, "error": INVALID_FLOW, "details": validation["errors"]}

        await self.store.set(chat_id, FlowState(flow=definition, current=definition.start))
        flow_transitions.labels(result="started").inc()
        return {"ok": True, "node": definition.nodes[definition.start], "node_id": definition.start}

    async def advance(self, chat_id: str, input_raw: Optional[str]) -> AdvanceResult:
        """
        Apply one user input to the active flow.

        Args:
            chat_id: Conversation identifier
            input_raw: Raw user text; matched by id, position, alias or text

        Returns:
            AdvanceResult. Invalid input keeps the state; every terminal or
            data-integrity outcome clears it.
        """
        state = await self.store.get(chat_id)
        if state is None:
            flow_transitions.labels(result="no_active_flow").inc()
            return {"ok": False, "error": NO_ACTIVE_FLOW}

        nodes = state.flow.nodes
        node = nodes.get(state.current)
        if node is None:
            await self.store.clear(chat_id)
            flow_transitions.labels(result="no_node").inc()
            logger.warning(f"Active node '{state.current}' missing from flow for {chat_id}; state cleared.")
            return {"ok": False, "error": NO_NODE, "node_id": state.current}

        if not node.options:
            return await self._finish(chat_id, node, state.current)

        match = build_option_matcher(node.options).match(input_raw)
        if match is None:
            flow_transitions.labels(result="invalid_input").inc()
            return {
                "ok": False,
                "error": INVALID_INPUT,
                "expected": [option.text for option in node.options],
                "node_id": state.current,
            }

        next_id = match.option.next
        if not next_id:
            return await self._finish(chat_id, node, state.current)

        target = nodes.get(next_id)
        if target is None:
            await self.store.clear(chat_id)
            flow_transitions.labels(result="missing_next").inc()
            logger.warning(f"Option '{match.option.id}' of '{state.current}' points at missing node '{next_id}'.")
            return {"ok": False, "error": MISSING_NEXT, "node_id": next_id}

        if target.is_terminal:
            return await self._finish(chat_id, target, next_id)

        await self.store.set(chat_id, FlowState(flow=state.flow, current=next_id))
        flow_transitions.labels(result="advanced").inc()
        return {
            "ok": True,
            "terminal": False,
            "prompt": target.prompt,
            "options": format_options(target),
            "node_id": next_id,
        }

    async def _finish(self, chat_id: str, node: FlowNode, node_id: str) -> AdvanceResult:
        await self.store.clear(chat_id)
        flow_transitions.labels(result="completed").inc()
        return {"ok": True, "terminal": True, "prompt": node.prompt, "node_id": node_id}

    async def is_active(self, chat_id: str) -> bool:
        return await self.store.has(chat_id)

    async def get_state(self, chat_id: str) -> Optional[FlowState]:
        return await self.store.get(chat_id)

    async def cancel(self, chat_id: str) -> None:
        await self.store.clear(chat_id)
        flow_transitions.labels(result="cancelled").inc()
