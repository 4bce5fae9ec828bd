"""Chat-side orchestration for TweetOps.

The agent drives an OpenAI chat model with function calling against the
tools served by the TweetOps MCP server, keeping a bounded conversation
history between user messages.
"""

from .agent import AgentEvent, TweetOpsAgent
from .history import ConversationHistory
from .llm import ChatBackend, parse_completion, render_messages
from .mcp_client import ToolServerClient, content_to_text
from .schema import adapt_tool, sanitize_schema

__all__ = [
    "AgentEvent",
    "ChatBackend",
    "ConversationHistory",
    "ToolServerClient",
    "TweetOpsAgent",
    "adapt_tool",
    "content_to_text",
    "parse_completion",
    "render_messages",
    "sanitize_schema",
]
