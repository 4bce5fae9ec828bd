"""Twitter tools exposed by the TweetOps MCP server."""

import json
from datetime import datetime
from typing import Any, Dict, List, Tuple

from pydantic import BaseModel, Field

from ..services.twitter import ScheduledTweet, ScheduleOutcome, TweetScheduler, TwitterService
from .registry import ToolContext, ToolRegistry

SCHEDULER_LOGGER = "tweetops.scheduler"


class TweetArgs(BaseModel):
    tweet: str = Field(min_length=1, max_length=280, description="Text of the tweet")


class UserTweetsArgs(BaseModel):
    max_results: int = Field(
        default=10,
        ge=5,
        le=100,
        alias="maxResults",
        description="How many recent tweets to return",
    )


class DeleteTweetArgs(BaseModel):
    tweet_id: str = Field(min_length=1, alias="tweetId", description="ID of the tweet")


class ScheduledTweetArgs(BaseModel):
    text: str = Field(min_length=1, max_length=280)
    schedule_time: datetime = Field(
        alias="scheduleTime",
        description="ISO 8601 timestamp; without an offset it is server-local time",
    )


class ScheduleTweetsArgs(BaseModel):
    tweets: List[ScheduledTweetArgs] = Field(min_length=1)


def _dumps(value: Any) -> str:
    return json.dumps(value, indent=2, default=str)


def outcome_log(outcome: ScheduleOutcome) -> Tuple[str, Dict[str, Any]]:
    """MCP log level and payload describing a finished scheduled post."""
    data: Dict[str, Any] = {
        "text": outcome.text,
        "scheduleTime": outcome.scheduled_for.isoformat(),
        "status": "posted" if outcome.ok else "failed",
    }
    if outcome.tweet_id:
        data["tweetId"] = outcome.tweet_id
    if outcome.error:
        data["error"] = outcome.error
    return ("info" if outcome.ok else "error"), data


def build_registry(twitter: TwitterService, scheduler: TweetScheduler) -> ToolRegistry:
    """Register the Twitter tool set against the given backends."""
    registry = ToolRegistry()

    @registry.register("tweet", "create a tweet", TweetArgs)
    async def tweet(args: TweetArgs, context: ToolContext) -> str:
        created = await twitter.create_tweet(args.tweet)
        return f"Tweet created successfully: {created.get('text', args.tweet)}"

    @registry.register("currentTime", "returns the current server time")
    async def current_time(args: Any, context: ToolContext) -> str:
        return f"The current server time is {datetime.now().astimezone():%Y-%m-%d %H:%M:%S %Z}"

    @registry.register("getUserProfile", "retrieve a Twitter user's profile")
    async def get_user_profile(args: Any, context: ToolContext) -> str:
        profile = await twitter.get_user_profile()
        return f"User Profile: {_dumps(profile)}"

    @registry.register("getUserTweets", "retrieve a user's recent tweets", UserTweetsArgs)
    async def get_user_tweets(args: UserTweetsArgs, context: ToolContext) -> str:
        tweets = await twitter.get_user_tweets(args.max_results)
        return f"Recent Tweets: {_dumps(tweets)}"

    @registry.register("deleteTweet", "delete a specific tweet by ID", DeleteTweetArgs)
    async def delete_tweet(args: DeleteTweetArgs, context: ToolContext) -> str:
        result = await twitter.delete_tweet(args.tweet_id)
        return f"Tweet deleted successfully: {json.dumps(result, default=str)}"

    @registry.register(
        "scheduleTweets",
        "schedule multiple tweets for future posting",
        ScheduleTweetsArgs,
    )
    async def schedule_tweets(args: ScheduleTweetsArgs, context: ToolContext) -> str:
        on_complete = None
        if context.notify is not None:
            notify = context.notify

            def on_complete(outcome: ScheduleOutcome) -> None:
                level, data = outcome_log(outcome)
                notify(level, data, SCHEDULER_LOGGER)

        results = scheduler.schedule(
            [ScheduledTweet(t.text, t.schedule_time) for t in args.tweets],
            on_complete=on_complete,
        )
        return f"Tweets scheduled successfully: {_dumps(results)}"

    return registry
