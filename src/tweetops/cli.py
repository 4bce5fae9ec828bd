"""
Command-line chat client for the TweetOps MCP server.
"""

import asyncio
import json
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

import click
from rich.console import Console
from rich.markup import escape

from . import __version__
from .agent import ChatBackend, ToolServerClient, TweetOpsAgent
from .errors import ConfigurationError, ServerConnectionError, ToolError
from .settings import get_settings

console = Console()

QUIT = "quit"
TWEET_PREFIX = "!tweet"
TOOL_PREFIX = "!tool"

STYLES = {
    "text": "bold green",
    "tool_call": "cyan",
    "tool_result": "bright_black",
    "error": "red",
}
LABELS = {
    "text": "Model",
    "tool_call": "Tool call",
    "tool_result": "Tool response",
    "error": "Error",
}


def setup_client_logging() -> logging.Logger:
    logs_dir = Path("logs")
    logs_dir.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger("tweetops")
    if logger.handlers:
        return logging.getLogger("tweetops.client")

    logger.setLevel(get_settings().log_level)
    fmt = logging.Formatter("%(asctime)s %(levelname)s %(name)s - %(message)s")

    # Console output belongs to the chat; logs go to file only.
    fh = RotatingFileHandler(logs_dir / "client.log", maxBytes=2_000_000, backupCount=3)
    fh.setFormatter(fmt)
    logger.addHandler(fh)
    return logging.getLogger("tweetops.client")


def print_banner(out: Console, tool_names: list[str]) -> None:
    out.print("Type your queries or [cyan]quit[/cyan] to exit.")
    out.print(f"To create a tweet, start your message with [cyan]{TWEET_PREFIX}[/cyan] followed by the text.")
    out.print(
        f"To call a tool directly, start with [cyan]{TOOL_PREFIX}[/cyan] followed by the tool name "
        "and JSON arguments."
    )
    out.print(f"Example: {TWEET_PREFIX} Hello world!")
    out.print(f'Example: {TOOL_PREFIX} getUserTweets {{"maxResults": 5}}')
    out.print(f"Available tools: {', '.join(tool_names)}")


async def handle_line(agent: TweetOpsAgent, line: str, out: Console = console) -> bool:
    """Handle one line of user input. Returns False when the user quits."""
    message = line.strip()
    if message.lower() == QUIT:
        return False
    if not message:
        return True

    if message.startswith(TWEET_PREFIX):
        text = message[len(TWEET_PREFIX):].strip()
        if not text:
            out.print(f"Please provide tweet text after {TWEET_PREFIX} command")
            return True
        try:
            reply = await agent.call_tool_directly("tweet", {"tweet": text})
        except ToolError as e:
            out.print(f"[red]Error creating tweet:[/red] {escape(str(e))}")
            return True
        out.print(f"[bright_black]Tweet Response:[/bright_black] {escape(reply)}")
        return True

    if message.startswith(TOOL_PREFIX):
        rest = message[len(TOOL_PREFIX):].strip()
        name, _, raw_args = rest.partition(" ")
        if not name:
            out.print(f"Please provide a tool name after {TOOL_PREFIX} command")
            return True
        try:
            arguments = json.loads(raw_args) if raw_args.strip() else {}
        except json.JSONDecodeError as e:
            out.print(f"[red]Error in direct tool call:[/red] invalid JSON arguments ({escape(str(e))})")
            return True
        if not isinstance(arguments, dict):
            out.print("[red]Error in direct tool call:[/red] arguments must be a JSON object")
            return True
        try:
            reply = await agent.call_tool_directly(name, arguments)
        except ToolError as e:
            out.print(f"[red]Error in direct tool call:[/red] {escape(str(e))}")
            return True
        out.print(f"[bright_black]Tool Response:[/bright_black] {escape(reply)}")
        return True

    async for event in agent.run_exchange(message):
        style = STYLES.get(event.kind, "")
        label = LABELS.get(event.kind, event.kind)
        out.print(f"[{style}]{label}:[/{style}] ", end="")
        out.print(event.text, markup=False, highlight=False)
    return True


async def chat(server_url: str, model: str | None) -> int:
    """Connect, load tools and run the prompt loop. Returns the exit code."""
    logger = setup_client_logging()
    settings = get_settings()
    try:
        llm = ChatBackend.from_settings(settings, model=model)
    except ConfigurationError as e:
        console.print(f"[red]Configuration error:[/red] {escape(str(e))}")
        return 1

    client = ToolServerClient(server_url)
    agent = TweetOpsAgent(
        client,
        llm,
        history_limit=settings.history_limit,
        max_tool_rounds=settings.max_tool_rounds,
        system_prompt=settings.agent_system_prompt,
    )
    try:
        try:
            await client.connect()
            console.print(f"[green]Connected[/green] to {escape(server_url)}")
            await agent.load_tools()
        except ServerConnectionError as e:
            logger.error("%s", e)
            console.print(f"[red]Error:[/red] {escape(str(e))}")
            return 1
        if not agent.tool_names:
            console.print("No tools available.")
            return 0
        print_banner(console, agent.tool_names)

        while True:
            try:
                line = await asyncio.to_thread(console.input, "\n[bold]Query:[/bold] ")
            except (EOFError, KeyboardInterrupt):
                break
            try:
                if not await handle_line(agent, line):
                    break
            except ServerConnectionError as e:
                logger.error("Lost connection to server: %s", e)
                console.print(f"[red]Error:[/red] {escape(str(e))}")
                return 1
        return 0
    finally:
        await client.close()
        await llm.close()
        console.print("Disconnected from MCP server")


@click.command()
@click.version_option(version=__version__, prog_name="tweetops")
@click.option("--server-url", default=None, help="MCP endpoint (default: SERVER_URL setting)")
@click.option("--model", default=None, help="Chat model name (default: MODEL setting)")
def main(server_url: str | None, model: str | None) -> None:
    """
    Chat with an LLM that can use the TweetOps Twitter tools.

    \b
        tweetops
        tweetops --server-url http://localhost:8000/mcp --model gpt-4o
    """
    url = server_url or get_settings().server_url
    sys.exit(asyncio.run(chat(url, model)))


if __name__ == "__main__":
    main()
