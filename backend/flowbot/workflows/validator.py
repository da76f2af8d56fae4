# /flowbot/workflows/validator.py

"""
Pure validation functions for flow definitions.

This module provides deterministic, side-effect-free checks that run once
when a flow is registered or started, never per advance:
- Option-level checks (ids, texts, aliases, next targets)
- Node-level invariants (prompt, terminal, options)
- Graph checks (start node, dangling edges, reachability, cycles)

Cycles are reported as warnings only: menus are expected to loop back
("Voltar") to earlier nodes.

All functions are:
- Pure (no side effects)
- Deterministic (same input = same output)
- No logging
- No state mutation
"""

from typing import Any, Dict, List, Mapping, Optional, Sequence, Set, TypedDict

from pydantic import ValidationError

from flowbot.models.flow import FlowDefinition, FlowOption, NormalizedFlowOption
from flowbot.utils.errors import FlowDefinitionError
from flowbot.utils.text import normalize_text
from flowbot.workflows.matcher import build_option_matcher, normalize_option


class OptionsValidationResult(TypedDict):
    """Result of validating the options of a single node."""
    ok: bool
    errors: List[str]
    warnings: List[str]
    options: List[NormalizedFlowOption]


class FlowStats(TypedDict):
    nodes: int
    reachable: int


class FlowValidationResult(TypedDict):
    """Result of validating a whole flow definition."""
    ok: bool
    errors: List[str]
    warnings: List[str]
    stats: FlowStats


def validate_answer_options(
    options: Sequence[FlowOption],
    require_at_least_one_correct: bool = False,
    unique_text: bool = True,
) -> OptionsValidationResult:
    """
    Validate the option list of one node.

    Args:
        options: The node's options
        require_at_least_one_correct: Demand at least one option flagged correct
        unique_text: Reject texts that collide case-insensitively

    Returns:
        OptionsValidationResult; `options` holds the normalized view only when ok
    """
    errors: List[str] = []
    warnings: List[str] = []
    normalized = [normalize_option(option, index) for index, option in enumerate(options)]
    ids: Set[str] = set()
    texts: Set[str] = set()
    has_correct = False

    for option in normalized:
        if not option.id:
            errors.append(f"Option[{option.original_index}] has no id.")
        elif option.id in ids:
            errors.append(f"Duplicate id: '{option.id}'.")
        else:
            ids.add(option.id)

        normalized_text = normalize_text(option.text)
        if not option.text:
            errors.append(f"Option[{option.original_index}] has no text.")
        elif unique_text:
            if normalized_text in texts:
                errors.append(f"Duplicate text (case-insensitive): '{option.text}'.")
            else:
                texts.add(normalized_text)

        collisions = [alias for alias in option.aliases if normalize_text(alias) == normalized_text]
        if collisions:
            warnings.append(
                f"Option '{option.id}' has aliases equal to its main text: {', '.join(collisions)}"
            )

        if option.next is not None and not option.next:
            errors.append(f"Option '{option.id}' has an invalid next (empty string).")

        if option.correct:
            has_correct = True

    if require_at_least_one_correct and not has_correct:
        errors.append("At least one option must be marked as correct.")

    return {
        "ok": not errors,
        "errors": errors,
        "warnings": warnings,
        "options": normalized if not errors else [],
    }


def _find_cycles(start: str, outgoing: Mapping[str, Sequence[str]]) -> List[List[str]]:
    """White/gray/black DFS from `start`, returning every back-edge cycle path."""
    color: Dict[str, int] = {start: 1}  # 0 white, 1 gray, 2 black
    cycles: List[List[str]] = []
    path: List[str] = [start]
    stack = [iter(outgoing.get(start, ()))]

    while stack:
        target = next(stack[-1], None)
        if target is None:
            stack.pop()
            color[path.pop()] = 2
            continue
        state = color.get(target, 0)
        if state == 1:
            cycles.append(path[path.index(target):] + [target])
        elif state == 0:
            color[target] = 1
            path.append(target)
            stack.append(iter(outgoing.get(target, ())))
    return cycles


def validate_option_flow(
    flow: FlowDefinition,
    require_at_least_one_correct: bool = False,
) -> FlowValidationResult:
    """
    Validate a flow definition before it may be entered by the engine.

    Args:
        flow: The flow definition
        require_at_least_one_correct: Forwarded to the per-node options check

    Returns:
        FlowValidationResult with stats {nodes, reachable}
    """
    errors: List[str] = []
    warnings: List[str] = []
    start = flow.start
    nodes = flow.nodes

    if not start:
        return {"ok": False, "errors": ["Flow start must be a non-empty string."], "warnings": [], "stats": {"nodes": len(nodes), "reachable": 0}}
    if start not in nodes:
        errors.append(f"Start node '{start}' does not exist in the flow.")

    outgoing: Dict[str, List[str]] = {}
    for node_id, node in nodes.items():
        if not node.terminal and not (node.prompt or "").strip():
            errors.append(f"Node '{node_id}' has no prompt.")
        if node.terminal and node.options:
            errors.append(f"Terminal node '{node_id}' must not have options.")
        if not node.terminal and not node.options:
            errors.append(f"Non-terminal node '{node_id}' must have at least one option.")

        result = validate_answer_options(node.options, require_at_least_one_correct=require_at_least_one_correct)
        errors.extend(f"Node '{node_id}': {error}" for error in result["errors"])
        warnings.extend(f"Node '{node_id}': {warning}" for warning in result["warnings"])

        targets: List[str] = []
        for option in node.options:
            if not option.next:
                continue
            if option.next not in targets:
                targets.append(option.next)
            if option.next not in nodes:
                errors.append(f"Node '{node_id}': next '{option.next}' does not exist.")
        outgoing[node_id] = targets

    # Reachability from start
    visited: Set[str] = set()
    stack = [start]
    while stack:
        current = stack.pop()
        if current in visited or current not in nodes:
            continue
        visited.add(current)
        stack.extend(outgoing.get(current, ()))
    for node_id in nodes:
        if node_id not in visited:
            errors.append(f"Node '{node_id}' is unreachable from '{start}'.")

    if start in nodes:
        cycles = _find_cycles(start, outgoing)
        if cycles:
            warnings.append(
                "Cycle(s) detected: " + " | ".join(" -> ".join(path) for path in cycles)
            )

    return {
        "ok": not errors,
        "errors": errors,
        "warnings": warnings,
        "stats": {"nodes": len(nodes), "reachable": len(visited)},
    }


def simulate_flow(flow: FlowDefinition, inputs: Sequence[str], max_steps: int = 100) -> Dict[str, Any]:
    """
    Walk a flow with scripted user inputs using exact matching only.

    The walk ends at the decision node whose choice leads to a terminal node
    (or has no next). Returns {ok, ended, end_at, transcript} on success and
    {ok: False, error, expected?, transcript} otherwise.
    """
    transcript: List[Dict[str, Any]] = []
    pending = list(inputs)
    current = flow.start

    for _ in range(max_steps):
        node = flow.nodes.get(current)
        if node is None:
            return {"ok": False, "error": f"Node '{current}' does not exist.", "transcript": transcript}

        transcript.append({"node_id": current, "prompt": node.prompt})
        if node.is_terminal:
            return {"ok": True, "ended": True, "end_at": current, "transcript": transcript}

        expected = [option.text for option in node.options]
        if not pending:
            return {
                "ok": False,
                "error": f"No input left for node '{current}'.",
                "expected": expected,
                "transcript": transcript,
            }
        user_input = pending.pop(0)
        match = build_option_matcher(node.options).match_exact(user_input)
        if match is None:
            return {
                "ok": False,
                "error": f"Input '{user_input}' does not match any option of '{current}'.",
                "expected": expected,
                "transcript": transcript,
            }

        transcript.append({"choose": match.option.id, "by": match.matched_by, "input": user_input})
        next_id = match.option.next
        if not next_id:
            return {"ok": True, "ended": True, "end_at": current, "transcript": transcript}
        next_node = flow.nodes.get(next_id)
        if next_node is not None and next_node.is_terminal:
            return {"ok": True, "ended": True, "end_at": current, "transcript": transcript}
        current = next_id

    return {"ok": False, "error": "max_steps exceeded (possible loop).", "transcript": transcript}


def load_flow_definition(raw: Any) -> FlowDefinition:
    """
    Convert a raw mapping (e.g. parsed JSON) into a FlowDefinition.

    Raises:
        FlowDefinitionError: when the payload does not fit the schema
    """
    if isinstance(raw, FlowDefinition):
        return raw
    try:
        return FlowDefinition.model_validate(raw)
    except ValidationError as e:
        messages = [
            f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
            for error in e.errors()
        ]
        raise FlowDefinitionError("Invalid flow definition", messages) from e


def describe_result(result: Optional[FlowValidationResult]) -> str:
    if not result:
        return ""
    return "; ".join(result["errors"] + result["warnings"])
