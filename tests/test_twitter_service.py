from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
import requests
import tweepy

from tweetops.errors import TwitterServiceError
from tweetops.services.twitter import TwitterService


@pytest.fixture
def tweepy_client() -> MagicMock:
    """Mock tweepy.Client returning v2-style responses."""
    m = MagicMock(spec=tweepy.Client)
    m.create_tweet.return_value = SimpleNamespace(data={"id": "1", "text": "hello"})
    m.delete_tweet.return_value = SimpleNamespace(data={"deleted": True})
    m.get_me.return_value = SimpleNamespace(
        data=SimpleNamespace(data={"id": "42", "username": "tweetops"})
    )
    m.get_users_tweets.return_value = SimpleNamespace(
        data=[SimpleNamespace(data={"id": "1", "text": "hello"})]
    )
    return m


@pytest.fixture
def service(tweepy_client: MagicMock) -> TwitterService:
    return TwitterService(tweepy_client)


@pytest.mark.asyncio
async def test_create_tweet(service: TwitterService, tweepy_client: MagicMock) -> None:
    assert await service.create_tweet("hello") == {"id": "1", "text": "hello"}
    tweepy_client.create_tweet.assert_called_once_with(text="hello")


@pytest.mark.asyncio
async def test_delete_tweet(service: TwitterService, tweepy_client: MagicMock) -> None:
    assert await service.delete_tweet("1") == {"deleted": True}
    tweepy_client.delete_tweet.assert_called_once_with("1")


@pytest.mark.asyncio
async def test_user_profile_unwraps_model(service: TwitterService) -> None:
    assert await service.get_user_profile() == {"id": "42", "username": "tweetops"}


@pytest.mark.asyncio
async def test_user_tweets_use_own_id(service: TwitterService, tweepy_client: MagicMock) -> None:
    tweets = await service.get_user_tweets(5)
    assert tweets == [{"id": "1", "text": "hello"}]
    args, kwargs = tweepy_client.get_users_tweets.call_args
    assert args == ("42",)
    assert kwargs["max_results"] == 5


@pytest.mark.asyncio
async def test_user_tweets_empty_timeline(service: TwitterService, tweepy_client: MagicMock) -> None:
    tweepy_client.get_users_tweets.return_value = SimpleNamespace(data=None)
    assert await service.get_user_tweets() == []


@pytest.mark.asyncio
async def test_api_errors_are_wrapped(service: TwitterService, tweepy_client: MagicMock) -> None:
    tweepy_client.create_tweet.side_effect = tweepy.TweepyException("rate limited")
    with pytest.raises(TwitterServiceError, match="Failed to create tweet"):
        await service.create_tweet("hello")


@pytest.mark.asyncio
async def test_network_errors_are_wrapped(service: TwitterService, tweepy_client: MagicMock) -> None:
    """Connection failures inside tweepy surface as requests exceptions."""
    tweepy_client.delete_tweet.side_effect = requests.ConnectionError("connection reset")
    with pytest.raises(TwitterServiceError, match="Failed to delete tweet"):
        await service.delete_tweet("1")
