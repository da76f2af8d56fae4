# /flowbot/models/flow.py

from typing import Optional, List, Dict, Literal, Union
from pydantic import BaseModel, ConfigDict, Field, field_validator

from flowbot.utils.text import normalize_text


class MenuRow(BaseModel):
    """One selectable row of an interactive list message."""
    id: str = Field(..., description="Row identifier, usually the option id")
    title: str = Field(..., description="Row title shown to the user")
    description: Optional[str] = Field(default=None, description="Secondary row text")


class MenuSection(BaseModel):
    title: str = Field(..., description="Section header")
    rows: List[MenuRow] = Field(default_factory=list, description="Rows in this section")


class MenuTemplate(BaseModel):
    """
    Interactive list content. The core never renders it; it is handed to the
    transport unchanged next to the plain-text prompt.
    """
    title: str = Field(..., description="List title")
    body: str = Field(..., description="List body text")
    button_text: str = Field(..., description="Label of the button that opens the list")
    sections: List[MenuSection] = Field(default_factory=list, description="List sections")

    def option_ids(self) -> List[str]:
        return [row.id for section in self.sections for row in section.rows]


# Anything the transport knows how to deliver.
Content = Union[str, MenuTemplate]


class FlowOption(BaseModel):
    """A labeled edge from a node to another node."""
    id: str = Field(default="", description="Option identifier, unique within its node")
    text: str = Field(default="", description="Label shown to the user")
    next: Optional[str] = Field(default=None, description="Target node id; absent ends the flow")
    aliases: List[str] = Field(default_factory=list, description="Extra spellings that select this option")
    correct: bool = Field(default=False, description="Marks the option as a correct answer")

    @field_validator("id", "text", mode="before")
    @classmethod
    def strip_label(cls, v):
        if v is None:
            return ""
        return str(v).strip()

    @field_validator("next", mode="before")
    @classmethod
    def strip_next(cls, v):
        if isinstance(v, str):
            return v.strip()
        return v

    @field_validator("aliases", mode="before")
    @classmethod
    def dedupe_aliases(cls, v):
        """
        Trim aliases, drop empty and non-string entries and keep only the first
        spelling of aliases that normalize to the same text.
        """
        if not isinstance(v, (list, tuple)):
            return []
        seen = set()
        aliases = []
        for alias in v:
            if not isinstance(alias, str):
                continue
            alias = alias.strip()
            key = normalize_text(alias)
            if not key or key in seen:
                continue
            seen.add(key)
            aliases.append(alias)
        return aliases


class FlowNode(BaseModel):
    """One step of a flow: either terminal or carrying selectable options."""
    id: Optional[str] = Field(default=None, description="Node id, informative only")
    prompt: Optional[str] = Field(default=None, description="Text sent when the node is entered")
    terminal: bool = Field(default=False, description="Reaching this node ends the flow")
    options: List[FlowOption] = Field(default_factory=list, description="Selectable options")
    kind: Literal["list", "text"] = Field(default="text", description="'list' marks a menu-type node")
    menu: Optional[MenuTemplate] = Field(default=None, description="Interactive list sent after the prompt")
    lock_on_complete: bool = Field(default=False, description="Lock the conversation once this terminal is delivered")

    @field_validator("options", mode="before")
    @classmethod
    def none_means_no_options(cls, v):
        return [] if v is None else v

    @property
    def is_terminal(self) -> bool:
        return self.terminal or not self.options


class FlowDefinition(BaseModel):
    """A directed graph of nodes with a designated start node."""
    start: str = Field(..., description="Id of the first node")
    nodes: Dict[str, FlowNode] = Field(default_factory=dict, description="Nodes by id")


class FlowModule(BaseModel):
    """Registry entry: a flow definition under a stable key."""
    key: str = Field(..., description="Registry key, e.g. 'menu'")
    flow: FlowDefinition = Field(..., description="The flow definition")


class FlowState(BaseModel):
    """
    Per-conversation position inside a flow. The whole definition travels
    with the state so a flow edited after a conversation started keeps
    serving the version the user saw.
    """
    flow: FlowDefinition = Field(..., description="Flow being executed")
    current: str = Field(..., description="Id of the active node")


class NormalizedFlowOption(BaseModel):
    """Immutable matcher view of a FlowOption."""
    original_index: int = Field(..., description="Position of the option in its node (0-based)")
    id: str
    text: str
    next: Optional[str] = None
    aliases: List[str] = Field(default_factory=list)
    correct: bool = False

    model_config = ConfigDict(frozen=True)
