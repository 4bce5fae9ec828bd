from unittest.mock import MagicMock, patch

import pytest

from tweetops.errors import ConfigurationError
from tweetops.services.twitter import TwitterService
from tweetops.settings import Settings

TWITTER_ENV = {
    "twitter_api_key": "key",
    "twitter_api_secret": "secret",
    "twitter_access_token": "token",
    "twitter_access_token_secret": "token-secret",
}


def test_defaults() -> None:
    settings = Settings(_env_file=None)
    assert settings.server_url == "http://localhost:8000/mcp"
    assert settings.history_limit == 10
    assert settings.max_tool_rounds == 5


def test_missing_twitter_credentials_are_all_named() -> None:
    settings = Settings(_env_file=None, twitter_api_key="key", twitter_api_secret="  ")
    with pytest.raises(ConfigurationError) as exc_info:
        settings.require_twitter_credentials()
    message = str(exc_info.value)
    assert "TWITTER_API_KEY" not in message
    assert "TWITTER_API_SECRET is not set" in message
    assert "TWITTER_ACCESS_TOKEN is not set" in message
    assert "TWITTER_ACCESS_TOKEN_SECRET is not set" in message


def test_complete_credentials_pass() -> None:
    Settings(_env_file=None, openai_api_key="sk", **TWITTER_ENV).require_twitter_credentials()
    Settings(_env_file=None, openai_api_key="sk").require_llm_credentials()


def test_twitter_service_from_settings() -> None:
    """The tweepy client is built with OAuth 1.0a user credentials."""
    with patch("tweetops.services.twitter.tweepy.Client") as client_cls:
        client_cls.return_value = MagicMock()
        service = TwitterService.from_settings(Settings(_env_file=None, **TWITTER_ENV))
    assert isinstance(service, TwitterService)
    client_cls.assert_called_once_with(
        consumer_key="key",
        consumer_secret="secret",
        access_token="token",
        access_token_secret="token-secret",
    )


def test_twitter_service_requires_credentials() -> None:
    with pytest.raises(ConfigurationError):
        TwitterService.from_settings(Settings(_env_file=None))
