import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from tweetops.errors import ScheduleInThePastError, TwitterServiceError
from tweetops.services.twitter import (
    ScheduledTweet,
    ScheduleOutcome,
    TweetScheduler,
    TwitterService,
)

NOW = datetime(2030, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def twitter() -> MagicMock:
    m = MagicMock(spec=TwitterService)
    m.create_tweet = AsyncMock(return_value={"id": "99", "text": "soon"})
    return m


@pytest.fixture
def scheduler(twitter: MagicMock) -> TweetScheduler:
    """Scheduler whose clock is frozen at NOW."""
    return TweetScheduler(twitter, clock=lambda: NOW)


@pytest.mark.asyncio
async def test_past_time_rejects_whole_request(scheduler: TweetScheduler, twitter: MagicMock) -> None:
    """One past timestamp rejects the request before anything is scheduled."""
    tweets = [
        ScheduledTweet("future", NOW + timedelta(hours=1)),
        ScheduledTweet("past", NOW - timedelta(seconds=1)),
    ]
    with pytest.raises(ScheduleInThePastError) as exc_info:
        scheduler.schedule(tweets)
    assert exc_info.value.text == "past"
    assert scheduler.pending == 0
    twitter.create_tweet.assert_not_called()


@pytest.mark.asyncio
async def test_schedule_reports_and_posts_later(scheduler: TweetScheduler, twitter: MagicMock) -> None:
    """A scheduled tweet is described immediately and posted after its delay."""
    outcomes: list[ScheduleOutcome] = []
    done = asyncio.Event()

    def on_complete(outcome: ScheduleOutcome) -> None:
        outcomes.append(outcome)
        done.set()

    when = NOW + timedelta(milliseconds=20)
    result = scheduler.schedule([ScheduledTweet("soon", when)], on_complete=on_complete)

    assert result == [
        {
            "text": "soon",
            "scheduleTime": when.isoformat(),
            "delaySeconds": 0,
            "status": "scheduled",
        }
    ]
    assert scheduler.pending == 1

    await asyncio.wait_for(done.wait(), timeout=2.0)
    twitter.create_tweet.assert_awaited_once_with("soon")
    assert outcomes[0].ok
    assert outcomes[0].tweet_id == "99"
    assert scheduler.pending == 0


@pytest.mark.asyncio
async def test_failed_post_is_reported(scheduler: TweetScheduler, twitter: MagicMock) -> None:
    twitter.create_tweet.side_effect = TwitterServiceError("Failed to create tweet")
    done = asyncio.Event()
    outcomes: list[ScheduleOutcome] = []

    def on_complete(outcome: ScheduleOutcome) -> None:
        outcomes.append(outcome)
        done.set()

    scheduler.schedule([ScheduledTweet("soon", NOW + timedelta(milliseconds=10))], on_complete)
    await asyncio.wait_for(done.wait(), timeout=2.0)
    assert not outcomes[0].ok
    assert outcomes[0].error == "Failed to create tweet"


@pytest.mark.asyncio
async def test_unexpected_post_error_is_still_reported(scheduler: TweetScheduler, twitter: MagicMock) -> None:
    """Errors outside the Twitter error type still produce a failed outcome."""
    twitter.create_tweet.side_effect = ConnectionResetError("connection reset by peer")
    done = asyncio.Event()
    outcomes: list[ScheduleOutcome] = []

    def on_complete(outcome: ScheduleOutcome) -> None:
        outcomes.append(outcome)
        done.set()

    scheduler.schedule([ScheduledTweet("soon", NOW + timedelta(milliseconds=10))], on_complete)
    await asyncio.wait_for(done.wait(), timeout=2.0)
    assert not outcomes[0].ok
    assert "connection reset by peer" in outcomes[0].error
    assert scheduler.pending == 0


@pytest.mark.asyncio
async def test_shutdown_cancels_pending(scheduler: TweetScheduler, twitter: MagicMock) -> None:
    on_complete = MagicMock()
    scheduler.schedule([ScheduledTweet("later", NOW + timedelta(hours=1))], on_complete)
    assert scheduler.pending == 1
    await scheduler.shutdown()
    assert scheduler.pending == 0
    on_complete.assert_not_called()
    twitter.create_tweet.assert_not_called()


@pytest.mark.asyncio
async def test_naive_time_is_local(twitter: MagicMock) -> None:
    """Timestamps without an offset are read as server-local time."""
    local_now = datetime.now()
    scheduler = TweetScheduler(twitter, clock=lambda: local_now.astimezone(timezone.utc))
    result = scheduler.schedule([ScheduledTweet("x", local_now + timedelta(hours=2))])
    assert result[0]["delaySeconds"] == 7200
    await scheduler.shutdown()
