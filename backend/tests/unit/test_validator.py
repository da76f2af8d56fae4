# backend/tests/unit/test_validator.py

import pytest

from flowbot.models.flow import FlowOption
from flowbot.utils.errors import FlowDefinitionError
from flowbot.workflows.definitions import CATALOG_FLOW, MENU_FLOW
from flowbot.workflows.validator import (
    load_flow_definition,
    simulate_flow,
    validate_answer_options,
    validate_option_flow,
)

SIMPLE_FLOW = {
    "start": "a",
    "nodes": {
        "a": {"prompt": "P", "options": [{"id": "x", "text": "Go", "next": "b"}]},
        "b": {"prompt": "End", "terminal": True},
    },
}

CYCLIC_FLOW = {
    "start": "s",
    "nodes": {
        "s": {"prompt": "S", "options": [{"id": "to_t", "text": "Para T", "next": "t"}]},
        "t": {
            "prompt": "T",
            "options": [
                {"id": "to_s", "text": "Voltar", "next": "s"},
                {"id": "end", "text": "Fim", "next": "fim"},
            ],
        },
        "fim": {"prompt": "Tchau", "terminal": True},
    },
}


# --- Options ---

def test_valid_options_are_returned_normalized():
    result = validate_answer_options([FlowOption(id="a", text="A"), FlowOption(id="b", text="B")])
    assert result["ok"] is True
    assert [option.original_index for option in result["options"]] == [0, 1]


def test_duplicate_ids_and_texts_are_errors():
    result = validate_answer_options([
        FlowOption(id="a", text="Sim"),
        FlowOption(id="a", text="SIM"),
    ])
    assert result["ok"] is False
    assert "Duplicate id: 'a'." in result["errors"]
    assert any(error.startswith("Duplicate text") for error in result["errors"])
    assert result["options"] == []


def test_duplicate_texts_allowed_when_not_unique():
    result = validate_answer_options(
        [FlowOption(id="a", text="Sim"), FlowOption(id="b", text="sim")],
        unique_text=False,
    )
    assert result["ok"] is True


def test_missing_id_and_text():
    result = validate_answer_options([FlowOption()])
    assert "Option[0] has no id." in result["errors"]
    assert "Option[0] has no text." in result["errors"]


def test_alias_equal_to_text_is_a_warning():
    result = validate_answer_options([FlowOption(id="a", text="Sim", aliases=["sim", "s"])])
    assert result["ok"] is True
    assert len(result["warnings"]) == 1


def test_empty_next_is_an_error():
    result = validate_answer_options([FlowOption(id="a", text="A", next="   ")])
    assert result["ok"] is False


def test_at_least_one_correct():
    options = [FlowOption(id="a", text="A"), FlowOption(id="b", text="B")]
    assert validate_answer_options(options, require_at_least_one_correct=True)["ok"] is False
    options[1] = FlowOption(id="b", text="B", correct=True)
    assert validate_answer_options(options, require_at_least_one_correct=True)["ok"] is True


# --- Flows ---

def test_simple_flow_is_valid():
    result = validate_option_flow(load_flow_definition(SIMPLE_FLOW))
    assert result["ok"] is True
    assert result["stats"] == {"nodes": 2, "reachable": 2}


def test_cycle_is_a_warning_not_an_error():
    result = validate_option_flow(load_flow_definition(CYCLIC_FLOW))
    assert result["ok"] is True
    assert result["errors"] == []
    assert len(result["warnings"]) == 1
    assert result["warnings"][0].startswith("Cycle(s) detected: ")
    assert "s -> t -> s" in result["warnings"][0]


def test_missing_start():
    flow = load_flow_definition({"start": "nope", "nodes": SIMPLE_FLOW["nodes"]})
    result = validate_option_flow(flow)
    assert result["ok"] is False
    assert "Start node 'nope' does not exist in the flow." in result["errors"]


def test_dangling_next():
    flow = load_flow_definition({
        "start": "a",
        "nodes": {"a": {"prompt": "P", "options": [{"id": "x", "text": "Go", "next": "ghost"}]}},
    })
    result = validate_option_flow(flow)
    assert "Node 'a': next 'ghost' does not exist." in result["errors"]


def test_unreachable_node():
    nodes = dict(SIMPLE_FLOW["nodes"])
    nodes["d"] = {"prompt": "Sozinho", "terminal": True}
    result = validate_option_flow(load_flow_definition({"start": "a", "nodes": nodes}))
    assert "Node 'd' is unreachable from 'a'." in result["errors"]


def test_node_invariants():
    flow = load_flow_definition({
        "start": "a",
        "nodes": {
            "a": {"options": [{"id": "x", "text": "Go", "next": "b"}]},
            "b": {"prompt": "B", "terminal": True, "options": [{"id": "y", "text": "Y"}]},
        },
    })
    errors = validate_option_flow(flow)["errors"]
    assert "Node 'a' has no prompt." in errors
    assert "Terminal node 'b' must not have options." in errors


def test_option_errors_are_prefixed_with_node():
    flow = load_flow_definition({
        "start": "a",
        "nodes": {
            "a": {"prompt": "P", "options": [{"id": "x", "text": "Go"}, {"id": "x", "text": "Ir"}]},
        },
    })
    assert "Node 'a': Duplicate id: 'x'." in validate_option_flow(flow)["errors"]


@pytest.mark.parametrize("raw", [MENU_FLOW, CATALOG_FLOW])
def test_default_flows_are_valid(raw):
    assert validate_option_flow(load_flow_definition(raw))["ok"] is True


def test_load_flow_definition_rejects_bad_payload():
    with pytest.raises(FlowDefinitionError) as exc_info:
        load_flow_definition({"nodes": {}})
    assert any(message.startswith("start") for message in exc_info.value.errors)


# --- Simulation ---

def test_simulate_flow_reaches_end():
    result = simulate_flow(load_flow_definition(SIMPLE_FLOW), ["Go"])
    assert result["ok"] is True
    assert result["end_at"] == "a"
    assert result["transcript"][1] == {"choose": "x", "by": "text", "input": "Go"}


def test_simulate_flow_reports_unknown_input():
    result = simulate_flow(load_flow_definition(SIMPLE_FLOW), ["nonsense"])
    assert result["ok"] is False
    assert result["expected"] == ["Go"]


def test_simulate_flow_guards_loops():
    result = simulate_flow(load_flow_definition(CYCLIC_FLOW), ["1", "1"] * 10, max_steps=5)
    assert result["ok"] is False
    assert "max_steps" in result["error"]


def _chain(length, loop_back=False):
    nodes = {}
    for i in range(length):
        next_id = f"n{i + 1}"
        if i == length - 1:
            next_id = "n0" if loop_back else "fim"
        nodes[f"n{i}"] = {"prompt": f"Passo {i}", "options": [{"id": "seguir", "text": "Seguir", "next": next_id}]}
    nodes["fim"] = {"prompt": "Fim", "terminal": True}
    return {"start": "n0", "nodes": nodes}


def test_long_linear_flow_validates():
    result = validate_option_flow(load_flow_definition(_chain(3000)))
    assert result["ok"] is True
    assert result["warnings"] == []
    assert result["stats"]["reachable"] == 3001


def test_long_cycle_is_reported_once():
    result = validate_option_flow(load_flow_definition(_chain(3000, loop_back=True)))
    assert result["ok"] is False  # 'fim' is unreachable
    assert len(result["warnings"]) == 1
    assert result["warnings"][0].endswith("n2999 -> n0")
