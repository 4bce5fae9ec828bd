"""OpenAI chat-completions boundary: request rendering and response decoding."""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Sequence, Union

from openai import AsyncOpenAI

from ..errors import MalformedResponseError
from ..models import ModelTextTurn, ModelToolCallTurn, ToolResultTurn, Turn, UserTurn
from ..settings import Settings, get_settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TextPart:
    text: str


@dataclass(frozen=True)
class ToolCallPart:
    call_id: str
    name: str
    arguments: Dict[str, Any] = field(default_factory=dict)


ModelPart = Union[TextPart, ToolCallPart]


def _decode_arguments(name: str, raw: Any) -> Dict[str, Any]:
    if raw is None or raw == "":
        return {}
    if isinstance(raw, dict):
        return raw
    try:
        value = json.loads(raw)
    except (TypeError, json.JSONDecodeError) as e:
        raise MalformedResponseError(f"Invalid arguments for tool call {name}: {e}") from e
    if not isinstance(value, dict):
        raise MalformedResponseError(f"Arguments for tool call {name} are not an object")
    return value


def parse_completion(response: Any) -> List[ModelPart]:
    """Decode a chat completion into ordered model parts.

    Text (if any) comes first, followed by tool calls in the order the model
    emitted them.

    Raises:
        MalformedResponseError: no choices, a choice without a message, a
            non-sequence `tool_calls`, or undecodable tool-call arguments.
    """
    choices = getattr(response, "choices", None)
    if not choices:
        raise MalformedResponseError("No response from model")

    message = getattr(choices[0], "message", None)
    if message is None:
        raise MalformedResponseError("No content in model response")

    tool_calls = getattr(message, "tool_calls", None)
    if tool_calls is not None and not isinstance(tool_calls, (list, tuple)):
        raise MalformedResponseError("Invalid tool call format in model response")

    parts: List[ModelPart] = []
    content = getattr(message, "content", None)
    if isinstance(content, str) and content:
        parts.append(TextPart(content))

    for tc in tool_calls or []:
        function = getattr(tc, "function", None)
        name = getattr(function, "name", None)
        if not name:
            raise MalformedResponseError("Tool call without a function name")
        parts.append(
            ToolCallPart(
                call_id=getattr(tc, "id", None) or f"call_{len(parts)}",
                name=name,
                arguments=_decode_arguments(name, getattr(function, "arguments", None)),
            )
        )
    return parts


def render_messages(turns: Iterable[Turn], system_prompt: str | None = None) -> List[Dict[str, Any]]:
    """Render conversation turns as chat-completions messages.

    A tool result whose call was trimmed out of the window is skipped, since
    the API rejects tool messages that do not answer a preceding call.
    """
    messages: List[Dict[str, Any]] = []
    if system_prompt:
        messages.append({"role": "system", "content": system_prompt})

    open_calls: set[str] = set()
    for turn in turns:
        if isinstance(turn, UserTurn):
            messages.append({"role": "user", "content": turn.text})
        elif isinstance(turn, ModelTextTurn):
            messages.append({"role": "assistant", "content": turn.text})
        elif isinstance(turn, ModelToolCallTurn):
            open_calls.add(turn.call_id)
            messages.append(
                {
                    "role": "assistant",
                    "content": None,
                    "tool_calls": [
                        {
                            "id": turn.call_id,
                            "type": "function",
                            "function": {
                                "name": turn.tool_name,
                                "arguments": json.dumps(turn.arguments),
                            },
                        }
                    ],
                }
            )
        elif isinstance(turn, ToolResultTurn):
            if turn.call_id not in open_calls:
                continue
            open_calls.discard(turn.call_id)
            messages.append(
                {"role": "tool", "tool_call_id": turn.call_id, "content": turn.text}
            )
    return messages


class ChatBackend:
    """Thin async wrapper around the OpenAI chat-completions endpoint."""

    def __init__(
        self,
        client: AsyncOpenAI,
        model: str,
        temperature: float = 0.0,
    ) -> None:
        self._client = client
        self.model = model
        self.temperature = temperature

    @classmethod
    def from_settings(cls, settings: Settings | None = None, model: str | None = None) -> "ChatBackend":
        settings = settings or get_settings()
        settings.require_llm_credentials()
        client = AsyncOpenAI(
            api_key=settings.openai_api_key,
            base_url=settings.openai_base_url,
        )
        return cls(client, model or settings.model, settings.temperature)

    async def complete(
        self,
        messages: List[Dict[str, Any]],
        tools: Sequence[Dict[str, Any]],
    ) -> Any:
        logger.debug("Requesting completion with %d messages", len(messages))
        kwargs: Dict[str, Any] = {}
        if tools:
            kwargs = {"tools": list(tools), "tool_choice": "auto"}
        return await self._client.chat.completions.create(
            model=self.model,
            messages=messages,
            temperature=self.temperature,
            **kwargs,
        )

    async def close(self) -> None:
        await self._client.close()
