from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigurationError


class Settings(BaseSettings):
    """Application configuration."""

    host: str = "0.0.0.0"
    port: int = 8000
    debug: bool = False
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    server_url: str = "http://localhost:8000/mcp"

    model: str = "gpt-4o-mini"
    temperature: float = 0.0
    max_tool_rounds: int = 5
    history_limit: int = 10
    openai_api_key: str | None = None
    openai_base_url: str | None = "https://api.openai.com/v1"

    agent_system_prompt: str = (
        "You are an assistant that manages a Twitter account through the "
        "available tools.\n"
        "Call a tool whenever the user asks for something a tool can do, "
        "then answer briefly using the tool result.\n"
        "Never post, delete or schedule tweets the user did not ask for."
    )

    twitter_api_key: str | None = None
    twitter_api_secret: str | None = None
    twitter_access_token: str | None = None
    twitter_access_token_secret: str | None = None

    session_idle_timeout_seconds: float = 1800.0
    session_reap_interval_seconds: float = 60.0

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="",
        extra="ignore",
    )

    def require_llm_credentials(self) -> None:
        """Fail fast when the chat client has no LLM credential."""
        _require(self, ["openai_api_key"])

    def require_twitter_credentials(self) -> None:
        """Fail fast when the tool server cannot authenticate against Twitter."""
        _require(
            self,
            [
                "twitter_api_key",
                "twitter_api_secret",
                "twitter_access_token",
                "twitter_access_token_secret",
            ],
        )


def _require(settings: Settings, fields: list[str]) -> None:
    missing = [
        f"{name.upper()} is not set"
        for name in fields
        if not (getattr(settings, name) or "").strip()
    ]
    if missing:
        raise ConfigurationError("; ".join(missing))


_SETTINGS: Settings | None = None


def get_settings() -> Settings:
    """Return the application settings singleton (loaded from env / .env)."""
    global _SETTINGS
    if _SETTINGS is None:
        _SETTINGS = Settings()
    return _SETTINGS
