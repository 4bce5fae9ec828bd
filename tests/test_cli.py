import io
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from click.testing import CliRunner
from rich.console import Console

from tweetops.agent import AgentEvent, TweetOpsAgent
from tweetops.cli import handle_line, main
from tweetops.errors import ServerConnectionError, ToolExecutionError, ToolNotFoundError
from tweetops.settings import Settings


@pytest.fixture
def out() -> Console:
    """Console writing to a buffer."""
    return Console(file=io.StringIO(), width=200, color_system=None)


def output(console: Console) -> str:
    return console.file.getvalue()


@pytest.fixture
def agent() -> MagicMock:
    m = MagicMock(spec=TweetOpsAgent)
    m.call_tool_directly = AsyncMock(return_value="Tweet created successfully: hi")
    return m


@pytest.mark.asyncio
@pytest.mark.parametrize("line", ["quit", "QUIT", "  Quit  "])
async def test_quit(agent: MagicMock, out: Console, line: str) -> None:
    assert await handle_line(agent, line, out) is False


@pytest.mark.asyncio
async def test_tweet_command(agent: MagicMock, out: Console) -> None:
    assert await handle_line(agent, "!tweet hi", out) is True
    agent.call_tool_directly.assert_awaited_once_with("tweet", {"tweet": "hi"})
    agent.run_exchange.assert_not_called()
    assert "Tweet created successfully: hi" in output(out)


@pytest.mark.asyncio
async def test_tweet_command_needs_text(agent: MagicMock, out: Console) -> None:
    await handle_line(agent, "!tweet   ", out)
    agent.call_tool_directly.assert_not_called()
    assert "Please provide tweet text" in output(out)


@pytest.mark.asyncio
async def test_tweet_command_error(agent: MagicMock, out: Console) -> None:
    agent.call_tool_directly.side_effect = ToolExecutionError("Failed to create tweet")
    assert await handle_line(agent, "!tweet hi", out) is True
    assert "Error creating tweet: Failed to create tweet" in output(out)


@pytest.mark.asyncio
async def test_tool_command_with_json(agent: MagicMock, out: Console) -> None:
    agent.call_tool_directly.return_value = "Recent Tweets: []"
    await handle_line(agent, '!tool getUserTweets {"maxResults": 5}', out)
    agent.call_tool_directly.assert_awaited_once_with("getUserTweets", {"maxResults": 5})
    assert "Tool Response: Recent Tweets: []" in output(out)


@pytest.mark.asyncio
async def test_tool_command_without_args(agent: MagicMock, out: Console) -> None:
    await handle_line(agent, "!tool getUserProfile", out)
    agent.call_tool_directly.assert_awaited_once_with("getUserProfile", {})


@pytest.mark.asyncio
async def test_tool_command_unknown_tool(agent: MagicMock, out: Console) -> None:
    agent.call_tool_directly.side_effect = ToolNotFoundError("X")
    await handle_line(agent, "!tool X {}", out)
    assert "Tool X not found" in output(out)
    agent.run_exchange.assert_not_called()


@pytest.mark.asyncio
@pytest.mark.parametrize("line", ["!tool tweet {bad", "!tool tweet [1]"])
async def test_tool_command_bad_arguments(agent: MagicMock, out: Console, line: str) -> None:
    await handle_line(agent, line, out)
    agent.call_tool_directly.assert_not_called()
    assert "Error in direct tool call" in output(out)


@pytest.mark.asyncio
async def test_free_text_goes_to_model(agent: MagicMock, out: Console) -> None:
    async def exchange(message):
        yield AgentEvent("tool_call", "multiply({'a': 2, 'b': 3})", tool_name="multiply")
        yield AgentEvent("tool_result", "2 multiplied by 3 is 6", tool_name="multiply")
        yield AgentEvent("text", "The result is 6.")

    agent.run_exchange = MagicMock(side_effect=exchange)
    assert await handle_line(agent, "What is 2 multiplied by 3?", out) is True
    agent.run_exchange.assert_called_once_with("What is 2 multiplied by 3?")
    text = output(out)
    assert "Tool call: multiply({'a': 2, 'b': 3})" in text
    assert "Model: The result is 6." in text


def test_missing_llm_key_is_fatal() -> None:
    with patch("tweetops.cli.get_settings", return_value=Settings(_env_file=None, openai_api_key=None)):
        result = CliRunner().invoke(main, ["--server-url", "http://localhost:1/mcp"])
    assert result.exit_code == 1
    assert "OPENAI_API_KEY is not set" in result.output


def test_connection_failure_is_fatal() -> None:
    settings = Settings(_env_file=None, openai_api_key="sk-test")
    client = MagicMock()
    client.connect = AsyncMock(side_effect=ServerConnectionError("Failed to connect to server: refused"))
    client.close = AsyncMock()
    llm = SimpleNamespace(close=AsyncMock())
    with (
        patch("tweetops.cli.get_settings", return_value=settings),
        patch("tweetops.cli.ToolServerClient", return_value=client),
        patch("tweetops.cli.ChatBackend.from_settings", return_value=llm),
    ):
        result = CliRunner().invoke(main, [])
    assert result.exit_code == 1
    assert "Failed to connect to server" in result.output
    client.close.assert_awaited_once()
    llm.close.assert_awaited_once()


def test_lost_connection_while_listing_tools_is_fatal() -> None:
    """A transport failure after connecting exits cleanly instead of crashing."""
    settings = Settings(_env_file=None, openai_api_key="sk-test")
    client = MagicMock()
    client.connect = AsyncMock()
    client.list_tools = AsyncMock(side_effect=ServerConnectionError("Lost connection to server: reset"))
    client.close = AsyncMock()
    llm = SimpleNamespace(close=AsyncMock())
    with (
        patch("tweetops.cli.get_settings", return_value=settings),
        patch("tweetops.cli.ToolServerClient", return_value=client),
        patch("tweetops.cli.ChatBackend.from_settings", return_value=llm),
    ):
        result = CliRunner().invoke(main, [])
    assert result.exit_code == 1
    assert result.exception is None or isinstance(result.exception, SystemExit)
    assert "Lost connection to server" in result.output
    client.close.assert_awaited_once()
