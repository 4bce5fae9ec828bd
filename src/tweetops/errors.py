"""Exception hierarchy shared by the tool server and the chat client."""


class TweetOpsError(Exception):
    """Base class for all TweetOps errors."""


class ConfigurationError(TweetOpsError):
    """Required startup configuration is missing. Fatal."""


class ServerConnectionError(TweetOpsError, ConnectionError):
    """The chat client could not establish an MCP session. Fatal."""


class InvalidSessionError(TweetOpsError):
    """A non-initialization request carried a missing or unknown session id."""


class MalformedResponseError(TweetOpsError):
    """A completion response could not be decoded into model parts."""


class TwitterServiceError(TweetOpsError):
    """A call against the Twitter API failed."""


class ToolError(TweetOpsError):
    """Base class for failures local to a single tool call."""


class ToolNotFoundError(ToolError):
    def __init__(self, name: str) -> None:
        super().__init__(f"Tool {name} not found.")
        self.name = name


class SchemaValidationError(ToolError):
    def __init__(self, tool: str, field: str, message: str) -> None:
        super().__init__(f"Invalid arguments for tool {tool}: {field}: {message}")
        self.tool = tool
        self.field = field


class ToolExecutionError(ToolError):
    """The tool ran and failed; carries the original message."""


class ScheduleInThePastError(ToolError):
    def __init__(self, text: str, schedule_time: str) -> None:
        super().__init__(
            f"Cannot schedule tweet {text!r}: {schedule_time} is in the past"
        )
        self.text = text
        self.schedule_time = schedule_time
