"""End-to-end tests for feedsync.feed.FeedSession on a virtual clock."""

from __future__ import annotations

import pytest

from feedsync.config import Settings
from feedsync.errors import FeedInactiveError
from feedsync.feed import FeedSession
from feedsync.models import FeedConfig, ItemRecord
from feedsync.renderer import RecordingRenderer
from feedsync.scheduler import ManualScheduler
from feedsync.transport import LocalChannel, StaticFetcher


def _page(**scores) -> list[ItemRecord]:
    return [ItemRecord(id=k, score=float(v), data={"tweetId": k}) for k, v in scores.items()]


def _session(page=None, catalog=None, window_size=5):
    page = page if page is not None else _page(A=10, B=8, C=6, D=4, E=2)
    fetcher = StaticFetcher(records=page + (catalog or []), page=page)
    renderer = RecordingRenderer()
    channel = LocalChannel()
    session = FeedSession(
        fetcher=fetcher,
        channel=channel,
        renderer=renderer,
        scheduler=ManualScheduler(),
        settings=Settings(window_size=window_size, page_size=window_size),
    )
    return session, renderer, channel, fetcher


def _score(item_id, score, ts, feed_type="HOT"):
    return {"feedType": feed_type, "tweetId": item_id, "score": score, "timestamp": ts}


@pytest.mark.asyncio
async def test_activate_loads_first_page_and_subscribes():
    session, renderer, channel, fetcher = _session()
    await session.activate(FeedConfig("hot"))

    assert session.get_order() == ["A", "B", "C", "D", "E"]
    assert channel.rooms == {"HOT"}
    assert renderer.of_kind("insert") == [["A", "B", "C", "D", "E"]]


@pytest.mark.asyncio
async def test_score_updates_reorder_once():
    session, renderer, channel, fetcher = _session()
    await session.activate(FeedConfig("hot"))

    assert session.handle_score_update(_score("B", 3, 100))
    assert session.handle_score_update(_score("E", 9, 100))
    assert not session.handle_score_update({"feedType": "HOT", "tweetId": "B"})
    await session.idle()

    assert session.get_order() == ["A", "E", "C", "D", "B"]
    assert len(renderer.of_kind("reorder")) == 1

    assert not session.handle_score_update(_score("B", 20, 99))
    await session.idle()
    assert session.window.scores["B"] == 3


@pytest.mark.asyncio
async def test_config_change_discards_pending_work():
    session, renderer, channel, fetcher = _session()
    await session.activate(FeedConfig("hot"))
    old_window = session.window

    session.handle_score_update(_score("E", 99, 1))
    await session.change_config(FeedConfig("top", "7d"))
    await session.scheduler.advance(1.0)

    assert old_window.order == ["A", "B", "C", "D", "E"]
    assert session.window is not old_window
    assert session.get_order() == ["A", "B", "C", "D", "E"]
    assert channel.rooms == {"TOP_7D"}
    assert ("unsubscribe", "HOT") in channel.log
    assert renderer.of_kind("reorder") == []


@pytest.mark.asyncio
async def test_bump_mode_has_no_room():
    session, renderer, channel, fetcher = _session()
    await session.activate(FeedConfig("hot"))
    await session.change_config(FeedConfig("bump"))
    assert channel.rooms == set()


@pytest.mark.asyncio
async def test_vote_bumps_items_to_top():
    catalog = _page(X=0)
    session, renderer, channel, fetcher = _session(catalog=catalog)
    await session.activate(FeedConfig("bump"))

    session.handle_vote_update({"tweetId": "C", "data": {"timestamp": 1, "realtimeNetImpact": 1.0}})
    session.handle_vote_update({"tweetId": "X", "data": {"timestamp": 2}})
    await session.scheduler.advance(0.35)
    await session.idle()

    assert session.get_order() == ["X", "C", "A", "B", "D"]
    assert fetcher.calls == [["X"]]


@pytest.mark.asyncio
async def test_vote_impact_reported_for_visible_items():
    session, renderer, channel, fetcher = _session()
    await session.activate(FeedConfig("hot"))

    assert session.handle_vote_update({"tweetId": "A", "data": {"timestamp": 1, "realtimeNetImpact": 2.0}})
    assert not session.handle_vote_update({"tweetId": "Z", "data": {"timestamp": 1, "realtimeNetImpact": 2.0}})
    session.handle_vote_update({"tweetId": "A", "data": {"timestamp": 2, "realtimeNetImpact": 2.0004}})

    assert renderer.of_kind("impact") == [("A", 0.0, 2.0)]


@pytest.mark.asyncio
async def test_new_posts():
    session, renderer, channel, fetcher = _session(catalog=_page(F=0))
    await session.activate(FeedConfig("new"))
    assert channel.rooms == {"NEW"}

    complete = {"tweetId": "N", "timestamp": 1, "tweet": {"tweetId": "N", "author": {"handle": "n"}}}
    assert session.handle_new_post(complete)
    assert session.get_order() == ["N", "A", "B", "C", "D"]

    assert session.handle_new_post({"tweetId": "C", "timestamp": 2})
    assert session.get_order() == ["C", "N", "A", "B", "D"]

    assert session.handle_new_post({"tweetId": "F", "timestamp": 3})
    assert session.get_order()[0] == "C"
    await session.scheduler.advance(1.6)
    assert session.get_order() == ["F", "C", "N", "A", "B"]


@pytest.mark.asyncio
async def test_new_post_ignored_outside_new_mode():
    session, renderer, channel, fetcher = _session()
    await session.activate(FeedConfig("hot"))
    assert not session.handle_new_post({"tweetId": "N", "timestamp": 1})


@pytest.mark.asyncio
async def test_load_more_paginates():
    page = _page(A=5, B=4, C=3, D=2, E=1, F=0.5, G=0.1)
    session, renderer, channel, fetcher = _session(page=page, window_size=5)
    await session.activate(FeedConfig("hot"))
    assert session.has_more
    await session.load_more()
    assert session.get_order() == ["A", "B", "C", "D", "E", "F", "G"]
    assert session.window.target_size == 7
    assert not session.has_more


@pytest.mark.asyncio
async def test_inactive_session():
    session, renderer, channel, fetcher = _session()
    assert session.get_order() == []
    assert not session.handle_score_update(_score("A", 1, 1))
    with pytest.raises(FeedInactiveError):
        await session.change_config(FeedConfig("top"))

    await session.activate(FeedConfig("hot"))
    await session.deactivate()
    assert not session.active
    assert channel.rooms == set()


def _pinned_page() -> list[ItemRecord]:
    page = _page(A=10, B=8, C=6, D=4)
    page.insert(1, ItemRecord(id="P", score=0.0, is_pinned=True, data={"tweetId": "P"}))
    return page


@pytest.mark.asyncio
async def test_pin_holds_slot_in_hot_mode():
    session, renderer, channel, fetcher = _session(page=_pinned_page())
    await session.activate(FeedConfig("hot"))
    assert session.window.pinned_id == "P"

    session.handle_score_update(_score("D", 5, 1))
    await session.idle()
    assert session.get_order() == ["A", "B", "C", "P", "D"]


@pytest.mark.asyncio
async def test_pinned_item_sorted_by_score_in_top_mode():
    session, renderer, channel, fetcher = _session(page=_pinned_page())
    await session.activate(FeedConfig("top", "24h"))
    assert session.window.pinned_id is None

    session.handle_score_update(_score("D", 5, 1, feed_type="TOP_24H"))
    await session.idle()
    assert session.get_order() == ["A", "B", "C", "D", "P"]
