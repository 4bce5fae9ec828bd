import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, List, Protocol, Sequence

from openai import OpenAIError

from ..errors import MalformedResponseError, ToolError, ToolNotFoundError
from ..models import (
    ModelTextTurn,
    ModelToolCallTurn,
    ToolDescriptor,
    ToolResultTurn,
    UserTurn,
)
from .history import ConversationHistory
from .llm import TextPart, ToolCallPart, parse_completion, render_messages
from .schema import adapt_tool

logger = logging.getLogger(__name__)


class ToolClient(Protocol):
    async def list_tools(self) -> List[ToolDescriptor]: ...

    async def call_tool(self, name: str, arguments: Dict[str, Any]) -> str: ...


class CompletionBackend(Protocol):
    async def complete(
        self, messages: List[Dict[str, Any]], tools: Sequence[Dict[str, Any]]
    ) -> Any: ...


@dataclass(frozen=True)
class AgentEvent:
    """Something the loop wants shown to the user.

    kind is one of "text", "tool_call", "tool_result" or "error".
    """

    kind: str
    text: str
    tool_name: str | None = None


class TweetOpsAgent:
    """Drives one conversation: model rounds, tool calls and bounded history."""

    def __init__(
        self,
        tools: ToolClient,
        llm: CompletionBackend,
        *,
        history_limit: int = 10,
        max_tool_rounds: int = 5,
        system_prompt: str | None = None,
    ) -> None:
        self._tools = tools
        self._llm = llm
        self.history = ConversationHistory(history_limit)
        self.max_tool_rounds = max_tool_rounds
        self.system_prompt = system_prompt
        self._descriptors: Dict[str, ToolDescriptor] = {}
        self._declarations: List[Dict[str, Any]] = []

    @property
    def tool_names(self) -> List[str]:
        return list(self._descriptors)

    @property
    def declarations(self) -> List[Dict[str, Any]]:
        return list(self._declarations)

    async def load_tools(self) -> List[ToolDescriptor]:
        """Fetch the server's tools once and cache their adapted declarations."""
        descriptors = await self._tools.list_tools()
        self._descriptors = {d.name: d for d in descriptors}
        self._declarations = [adapt_tool(d) for d in descriptors]
        logger.info("Available tools: %s", self.tool_names)
        return descriptors

    async def call_tool_directly(self, name: str, arguments: Dict[str, Any]) -> str:
        """Run one tool without the model. Conversation history is not touched.

        Raises:
            ToolNotFoundError: name is not among the cached tools.
            ToolError: the call failed.
        """
        if name not in self._descriptors:
            raise ToolNotFoundError(name)
        logger.info("Calling tool directly: %s", name)
        return await self._tools.call_tool(name, arguments)

    async def run_exchange(self, user_message: str) -> AsyncIterator[AgentEvent]:
        """Process one user message to completion, yielding display events.

        Each round sends the whole history plus tool declarations to the
        model. Any round that requested tools is followed by another round so
        the model can use the results, up to max_tool_rounds. History is
        trimmed to its limit when the exchange ends, however it ends.
        """
        logger.debug("User message: %s", user_message[:200])
        self.history.append(UserTurn(user_message))
        try:
            for round_number in range(1, self.max_tool_rounds + 1):
                messages = render_messages(self.history, self.system_prompt)
                try:
                    response = await self._llm.complete(messages, self._declarations)
                except OpenAIError as e:
                    logger.error("Completion request failed: %s", e)
                    error = f"Error: {e}"
                    self.history.append(ModelTextTurn(error))
                    yield AgentEvent("error", error)
                    return

                try:
                    parts = parse_completion(response)
                except MalformedResponseError as e:
                    logger.warning("Malformed model response: %s", e)
                    yield AgentEvent("error", str(e))
                    return

                called_tools = False
                for part in parts:
                    if isinstance(part, TextPart):
                        self.history.append(ModelTextTurn(part.text))
                        yield AgentEvent("text", part.text)
                    elif isinstance(part, ToolCallPart):
                        called_tools = True
                        async for event in self._run_tool_call(part):
                            yield event

                if not called_tools:
                    return
                logger.debug("Round %d used tools; asking model again", round_number)

            logger.warning("Stopped after %d tool rounds without a final answer", self.max_tool_rounds)
            yield AgentEvent(
                "error",
                f"Stopped after {self.max_tool_rounds} tool rounds without a final answer.",
            )
        finally:
            # A call left open by an escaping error still gets its answer turn.
            for pending in self.history.pending_tool_calls():
                logger.error("Tool call %s was interrupted", pending.tool_name)
                self.history.append(
                    ToolResultTurn(
                        pending.call_id,
                        pending.tool_name,
                        f"Error calling tool {pending.tool_name}: call was interrupted",
                        is_error=True,
                    )
                )
            dropped = self.history.trim()
            if dropped:
                logger.debug("Dropped %d old turn(s) from history", dropped)

    async def _run_tool_call(self, part: ToolCallPart) -> AsyncIterator[AgentEvent]:
        # Record the request before running it so the model's intent survives a failure.
        self.history.append(ModelToolCallTurn(part.call_id, part.name, part.arguments))
        yield AgentEvent("tool_call", f"{part.name}({part.arguments})", tool_name=part.name)

        if part.name not in self._descriptors:
            logger.warning("Model requested unknown tool %s", part.name)
            error = f"Error: Tool {part.name} not found."
            self.history.append(ToolResultTurn(part.call_id, part.name, error, is_error=True))
            yield AgentEvent("error", error, tool_name=part.name)
            return

        try:
            text = await self._tools.call_tool(part.name, part.arguments)
        except ToolError as e:
            logger.error("Error calling tool %s: %s", part.name, e)
            error = f"Error calling tool {part.name}: {e}"
            self.history.append(ToolResultTurn(part.call_id, part.name, error, is_error=True))
            yield AgentEvent("error", error, tool_name=part.name)
            return

        self.history.append(ToolResultTurn(part.call_id, part.name, text))
        yield AgentEvent("tool_result", text, tool_name=part.name)
