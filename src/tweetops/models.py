from dataclasses import dataclass, field
from typing import Any, Dict, Union


@dataclass(frozen=True)
class ToolDescriptor:
    """A named remote procedure and the JSON Schema of its arguments."""

    name: str
    description: str = ""
    input_schema: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class UserTurn:
    text: str


@dataclass(frozen=True)
class ModelTextTurn:
    text: str


@dataclass(frozen=True)
class ModelToolCallTurn:
    """The model asked for a tool; recorded before the tool runs."""

    call_id: str
    tool_name: str
    arguments: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ToolResultTurn:
    """Outcome of one ModelToolCallTurn. is_error marks a stand-in error text."""

    call_id: str
    tool_name: str
    text: str
    is_error: bool = False


Turn = Union[UserTurn, ModelTextTurn, ModelToolCallTurn, ToolResultTurn]
