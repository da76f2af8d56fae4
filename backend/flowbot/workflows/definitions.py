# /flowbot/workflows/definitions.py

"""
Default flow definitions.

This module defines flows as pure data (no logic). Each flow specifies:
- start: The first node id
- nodes: A dictionary mapping node ids to node definitions

Each node defines:
- prompt: Text sent when the node is entered
- options: Selectable options, each pointing at a next node (or ending the flow)
- terminal: Whether reaching the node ends the flow
- kind / menu: 'list' nodes also carry an interactive list template
- lock_on_complete: Terminal nodes that hand the chat over to a human
"""

from typing import Any, Dict, Mapping, Optional, Union

from flowbot.config import strings
from flowbot.models.flow import FlowDefinition, FlowModule
from flowbot.utils.errors import UnknownFlowError
from flowbot.workflows.validator import load_flow_definition

MENU_FLOW_KEY = "menu"
CATALOG_FLOW_KEY = "catalog"

MENU_FLOW: Dict[str, Any] = {
    "start": "inicio",
    "nodes": {
        "inicio": {
            "id": "inicio",
            "kind": "list",
            "prompt": strings.WELCOME_TEXT,
            "menu": strings.INITIAL_MENU_TEMPLATE,
            "options": [
                {"id": "orcamento", "text": "Solicitar orçamento", "aliases": ["1"], "next": "orcamento"},
                {"id": "andamento", "text": "Verificar andamento da OS", "aliases": ["2"], "next": "andamento"},
                {"id": "localizacao", "text": "Localização e horário", "aliases": ["3"], "next": "localizacao"},
                {"id": "outras", "text": "Outras informações", "aliases": ["4"], "next": "outras"},
            ],
        },
        "orcamento": {"id": "orcamento", "prompt": strings.RESPONSE_ORCAMENTO, "terminal": True},
        "andamento": {"id": "andamento", "prompt": strings.RESPONSE_ANDAMENTO, "terminal": True},
        "localizacao": {"id": "localizacao", "prompt": strings.RESPONSE_LOCALIZACAO, "terminal": True},
        "outras": {
            "id": "outras",
            "prompt": strings.RESPONSE_OUTRAS,
            "terminal": True,
            "lock_on_complete": True,
        },
    },
}

CATALOG_FLOW: Dict[str, Any] = {
    "start": "inicio",
    "nodes": {
        "inicio": {
            "id": "inicio",
            "prompt": strings.WELCOME_TEXT,
            "options": [
                {"id": "consertos", "text": "Consertos", "aliases": ["1"], "next": "consertos"},
                {"id": "produtos", "text": "Produtos", "aliases": ["2"], "next": "produtos"},
                {"id": "atendente", "text": "Falar com atendente", "aliases": ["3"], "next": "atendente"},
            ],
        },
        "consertos": {
            "id": "consertos",
            "prompt": "Tipos de conserto:",
            "options": [
                {"id": "sola", "text": "Troca de sola", "aliases": ["1"], "next": "final"},
                {"id": "costura", "text": "Reparo de costura", "aliases": ["2"], "next": "final"},
                {"id": "voltar", "text": "Voltar", "aliases": ["3"], "next": "inicio"},
            ],
        },
        "produtos": {
            "id": "produtos",
            "prompt": "Produtos disponíveis:",
            "options": [
                {"id": "cadarco", "text": "Cadarços", "aliases": ["1"], "next": "final"},
                {"id": "palmilha", "text": "Palmilhas", "aliases": ["2"], "next": "final"},
                {"id": "voltar", "text": "Voltar", "aliases": ["3"], "next": "inicio"},
            ],
        },
        "atendente": {"id": "atendente", "prompt": "Ok, conectando com um atendente...", "terminal": True},
        "final": {"id": "final", "prompt": "Perfeito! Vamos seguir com essa opção. Algo mais?", "terminal": True},
    },
}

DEFAULT_FLOWS: Dict[str, Dict[str, Any]] = {
    MENU_FLOW_KEY: MENU_FLOW,
    CATALOG_FLOW_KEY: CATALOG_FLOW,
}


def build_flow_registry(
    raw_flows: Mapping[str, Union[FlowModule, FlowDefinition, Mapping[str, Any]]] = DEFAULT_FLOWS,
    overrides: Optional[Mapping[str, Union[FlowDefinition, Mapping[str, Any]]]] = None,
) -> Dict[str, FlowModule]:
    """
    Resolve raw flow data into FlowModule entries once, at load time.

    Raises:
        FlowDefinitionError: when an entry does not fit the flow schema
    """
    registry: Dict[str, FlowModule] = {}
    merged = dict(raw_flows)
    merged.update(overrides or {})
    for key, entry in merged.items():
        if isinstance(entry, FlowModule):
            registry[key] = FlowModule(key=key, flow=entry.flow)
        else:
            registry[key] = FlowModule(key=key, flow=load_flow_definition(entry))
    return registry


def get_flow(registry: Mapping[str, FlowModule], key: str) -> FlowDefinition:
    module = registry.get(key)
    if module is None:
        raise UnknownFlowError(f"Unknown flow: {key}")
    return module.flow
