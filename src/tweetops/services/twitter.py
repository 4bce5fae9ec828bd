import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Sequence, Set

import requests
import tweepy

from ..errors import ScheduleInThePastError, TwitterServiceError
from ..settings import Settings, get_settings

logger = logging.getLogger(__name__)

USER_FIELDS = ["created_at", "description", "public_metrics", "username", "name"]
TWEET_FIELDS = ["created_at", "public_metrics"]


def _as_dict(obj: Any) -> Any:
    """Unwrap tweepy model objects (User, Tweet) into their raw payload."""
    return getattr(obj, "data", obj)


class TwitterService:
    """Async facade over the blocking tweepy v2 client (OAuth 1.0a user context)."""

    def __init__(self, client: tweepy.Client) -> None:
        self._client = client

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "TwitterService":
        """Build the service from settings.

        Raises:
            ConfigurationError: any of the four Twitter credentials is missing.
        """
        settings = settings or get_settings()
        settings.require_twitter_credentials()
        client = tweepy.Client(
            consumer_key=settings.twitter_api_key,
            consumer_secret=settings.twitter_api_secret,
            access_token=settings.twitter_access_token,
            access_token_secret=settings.twitter_access_token_secret,
        )
        return cls(client)

    async def _call(self, action: str, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        try:
            return await asyncio.to_thread(func, *args, **kwargs)
        except (tweepy.TweepyException, requests.RequestException) as e:
            logger.error("Error trying to %s: %s", action, e)
            raise TwitterServiceError(f"Failed to {action}") from e

    async def create_tweet(self, text: str) -> Dict[str, Any]:
        response = await self._call("create tweet", self._client.create_tweet, text=text)
        logger.info("Tweet created successfully: %s", response.data)
        return dict(response.data or {})

    async def delete_tweet(self, tweet_id: str) -> Dict[str, Any]:
        response = await self._call("delete tweet", self._client.delete_tweet, tweet_id)
        logger.info("Tweet %s deleted: %s", tweet_id, response.data)
        return dict(response.data or {})

    async def get_user_profile(self) -> Dict[str, Any]:
        response = await self._call(
            "fetch user profile", self._client.get_me, user_fields=USER_FIELDS
        )
        return dict(_as_dict(response.data) or {})

    async def get_user_tweets(self, max_results: int = 10) -> List[Dict[str, Any]]:
        profile = await self.get_user_profile()
        response = await self._call(
            "fetch user tweets",
            self._client.get_users_tweets,
            profile["id"],
            max_results=max_results,
            tweet_fields=TWEET_FIELDS,
        )
        return [_as_dict(t) for t in response.data or []]


@dataclass(frozen=True)
class ScheduledTweet:
    text: str
    scheduled_for: datetime


@dataclass(frozen=True)
class ScheduleOutcome:
    """Result of one detached scheduled post."""

    text: str
    scheduled_for: datetime
    tweet_id: str | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _utc(value: datetime) -> datetime:
    # Naive timestamps are taken as server-local time.
    if value.tzinfo is None:
        value = value.astimezone()
    return value.astimezone(timezone.utc)


class TweetScheduler:
    """Posts tweets at a later time from background tasks.

    Each scheduled tweet gets its own asyncio task. Outcomes are reported
    through an optional completion callback and are never awaited by the
    request that created them.
    """

    def __init__(
        self,
        twitter: TwitterService,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._twitter = twitter
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._tasks: Set[asyncio.Task[ScheduleOutcome]] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def schedule(
        self,
        tweets: Sequence[ScheduledTweet],
        on_complete: Callable[[ScheduleOutcome], None] | None = None,
    ) -> List[Dict[str, Any]]:
        """Start one background post per tweet and describe what was scheduled.

        Every timestamp is checked before anything is scheduled, so a request
        is either accepted whole or rejected whole.

        Raises:
            ScheduleInThePastError: a scheduled time is not in the future.
        """
        now = self._clock()
        delays = []
        for tweet in tweets:
            when = _utc(tweet.scheduled_for)
            delay = (when - now).total_seconds()
            if delay <= 0:
                raise ScheduleInThePastError(tweet.text, when.isoformat())
            delays.append((tweet, when, delay))

        scheduled = []
        for tweet, when, delay in delays:
            task = asyncio.create_task(self._post_later(tweet.text, when, delay))
            self._tasks.add(task)
            task.add_done_callback(lambda t: self._finished(t, on_complete))
            logger.info("Tweet scheduled for %s (in %.0fs)", when.isoformat(), delay)
            scheduled.append(
                {
                    "text": tweet.text,
                    "scheduleTime": when.isoformat(),
                    "delaySeconds": round(delay),
                    "status": "scheduled",
                }
            )
        return scheduled

    async def _post_later(self, text: str, when: datetime, delay: float) -> ScheduleOutcome:
        await asyncio.sleep(delay)
        try:
            data = await self._twitter.create_tweet(text)
        except TwitterServiceError as e:
            return ScheduleOutcome(text=text, scheduled_for=when, error=str(e))
        except Exception as e:
            # Nobody awaits this task; the outcome is the only report of the failure.
            logger.exception("Unexpected error posting scheduled tweet")
            return ScheduleOutcome(text=text, scheduled_for=when, error=f"Failed to create tweet: {e}")
        return ScheduleOutcome(text=text, scheduled_for=when, tweet_id=data.get("id"))

    def _finished(
        self,
        task: "asyncio.Task[ScheduleOutcome]",
        on_complete: Callable[[ScheduleOutcome], None] | None,
    ) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        outcome = task.result()
        if outcome.ok:
            logger.info("Scheduled tweet posted: id=%s", outcome.tweet_id)
        else:
            logger.error("Scheduled tweet failed: %s", outcome.error)
        if on_complete is not None:
            on_complete(outcome)

    async def shutdown(self) -> None:
        """Cancel every pending post."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info("Cancelled %d pending scheduled tweet(s)", len(tasks))
