"""Log fan-out and command-line parsing."""

from __future__ import annotations

import asyncio
import re
from pathlib import Path

import pytest

from gallery_crawler.cli import _build_target, parse_args
from gallery_crawler.logstream import CLOSED, ChannelSink, LogBroker, stamp
from gallery_crawler.models import CrawlTarget
from gallery_crawler.server import log_events

STAMPED = re.compile(r"^\[\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}\.\d{3}Z\] hello$")


def test_stamp_prefixes_utc_timestamp() -> None:
    assert STAMPED.match(stamp("hello"))


def test_lines_reach_only_matching_identity() -> None:
    async def scenario():
        broker = LogBroker()
        mine = broker.subscribe("a")
        other = broker.subscribe("b")
        ChannelSink(broker, "a").on_log("hello")
        return mine, other

    mine, other = asyncio.run(scenario())
    assert STAMPED.match(mine.get_nowait())
    assert other.empty()


def test_full_listener_is_dropped_without_blocking() -> None:
    async def scenario():
        broker = LogBroker(max_queue=1)
        queue = broker.subscribe("a")
        broker.publish("a", "one")
        broker.publish("a", "two")
        return broker, queue

    broker, queue = asyncio.run(scenario())
    assert broker.listener_count("a") == 0
    assert queue.get_nowait() is CLOSED
    assert queue.empty()


def test_dropped_listener_stream_ends() -> None:
    async def scenario():
        broker = LogBroker(max_queue=1)
        queue = broker.subscribe("a")
        events = log_events(broker, "a", queue)
        greeting = await events.__anext__()
        broker.publish("a", "one")
        broker.publish("a", "two")
        assert queue.qsize() == 1
        rest = [event async for event in events]
        return greeting, rest, broker

    greeting, rest, broker = asyncio.run(scenario())
    assert "Connected to logs" in greeting["data"]
    assert rest == []
    assert broker.listener_count("a") == 0


def test_unsubscribe_forgets_identity() -> None:
    async def scenario():
        broker = LogBroker()
        queue = broker.subscribe("a")
        broker.unsubscribe("a", queue)
        broker.unsubscribe("missing", queue)
        broker.publish("a", "nobody listens")
        return broker

    assert asyncio.run(scenario()).listener_count("a") == 0


def test_bare_arguments_default_to_run() -> None:
    args = parse_args(["jihyo", "1", "3", "--output", "out"])
    assert args.command == "run"
    assert args.output == Path("out")
    assert _build_target(args) == CrawlTarget.idol("jihyo", 1, 3)


def test_creator_and_post_commands() -> None:
    creator = parse_args(["creator", "maker", "--start", "2"])
    assert _build_target(creator) == CrawlTarget.creator("maker", 2, None)

    post = parse_args(["post", "https://idolfap.com/post/1/", "--name", "nayeon"])
    assert _build_target(post) == CrawlTarget.post("nayeon", "https://idolfap.com/post/1/")


@pytest.mark.parametrize(
    "argv",
    [
        ["run", "jihyo", "3", "1"],
        ["run", "jihyo", "0", "1"],
        ["creator", "maker", "--start", "4", "--end", "2"],
    ],
)
def test_invalid_ranges_exit(argv) -> None:
    with pytest.raises(SystemExit):
        parse_args(argv)
