import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Type

from mcp import types
from pydantic import BaseModel, ValidationError

from ..errors import (
    SchemaValidationError,
    ToolError,
    ToolExecutionError,
    ToolNotFoundError,
)
from ..models import ToolDescriptor

logger = logging.getLogger(__name__)


class NoArguments(BaseModel):
    """Argument model for tools that take no parameters."""


@dataclass
class ToolContext:
    """Per-call information handed to tool handlers."""

    session_id: str | None = None
    # notify(level, data, logger_name) pushes an MCP log notification to the session.
    notify: Callable[[str, Any, str | None], bool] | None = None


Handler = Callable[[Any, ToolContext], Awaitable[str]]


@dataclass(frozen=True)
class RegisteredTool:
    name: str
    description: str
    arguments: Type[BaseModel]
    handler: Handler
    descriptor: ToolDescriptor = field(init=False)

    def __post_init__(self) -> None:
        object.__setattr__(
            self,
            "descriptor",
            ToolDescriptor(
                name=self.name,
                description=self.description,
                input_schema=self.arguments.model_json_schema(by_alias=True),
            ),
        )


def text_result(text: str) -> types.CallToolResult:
    return types.CallToolResult(content=[types.TextContent(type="text", text=text)])


def _field_name(error: Dict[str, Any]) -> str:
    loc = error.get("loc") or ()
    return ".".join(str(part) for part in loc) or "arguments"


class ToolRegistry:
    """Fixed set of named, schema-validated tools, listed in registration order."""

    def __init__(self) -> None:
        self._tools: Dict[str, RegisteredTool] = {}

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def register(
        self,
        name: str,
        description: str,
        arguments: Type[BaseModel] = NoArguments,
    ) -> Callable[[Handler], Handler]:
        """Decorator registering an async handler under a unique name."""

        def decorator(handler: Handler) -> Handler:
            if name in self._tools:
                raise ValueError(f"Tool {name} is already registered")
            self._tools[name] = RegisteredTool(name, description, arguments, handler)
            return handler

        return decorator

    def list(self) -> List[ToolDescriptor]:
        return [tool.descriptor for tool in self._tools.values()]

    async def invoke(
        self,
        name: str,
        arguments: Dict[str, Any] | None = None,
        context: ToolContext | None = None,
    ) -> types.CallToolResult:
        """Validate arguments and run the named tool.

        Raises:
            ToolNotFoundError: no tool is registered under name.
            SchemaValidationError: arguments do not match the tool's schema;
                the handler is not called.
            ToolExecutionError: the handler failed.
        """
        tool = self._tools.get(name)
        if tool is None:
            raise ToolNotFoundError(name)

        try:
            args = tool.arguments.model_validate(arguments or {})
        except ValidationError as e:
            first = e.errors()[0]
            raise SchemaValidationError(name, _field_name(first), first["msg"]) from e

        logger.info("Executing tool: %s", name)
        try:
            text = await tool.handler(args, context or ToolContext())
        except ToolError:
            raise
        except Exception as e:
            logger.exception("Tool %s failed", name)
            raise ToolExecutionError(str(e)) from e

        return text_result(text)
