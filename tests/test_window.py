"""Tests for feedsync.window — comparator, pinned slot, window bookkeeping."""

import random

from feedsync.models import ItemRecord
from feedsync.window import RankedWindow, RankEntry, compare, rank, rank_changes, splice_pinned


def _ids(entries):
    return [e.item_id for e in entries]


def test_score_descending():
    entries = [RankEntry("a", 1.0, position=0), RankEntry("b", 3.0, position=1), RankEntry("c", 2.0, position=2)]
    assert _ids(rank(entries)) == ["b", "c", "a"]


def test_tie_break_key_ascending_on_equal_scores():
    entries = [
        RankEntry("a", 5.0, "post-9", position=0),
        RankEntry("b", 5.0, "post-1", position=1),
    ]
    assert _ids(rank(entries)) == ["b", "a"]


def test_missing_tie_break_falls_back_to_position():
    entries = [
        RankEntry("a", 5.0, "", position=1),
        RankEntry("b", 5.0, "post-1", position=0),
    ]
    assert _ids(rank(entries)) == ["b", "a"]


def test_id_is_last_resort():
    a = RankEntry("a", 5.0, position=0)
    b = RankEntry("b", 5.0, position=0)
    assert compare(a, b) < 0
    assert compare(b, a) > 0
    assert compare(a, a) == 0


def test_rank_matches_tuple_sort_when_keys_known():
    rng = random.Random(7)
    for _ in range(50):
        entries = [
            RankEntry(f"id{i}", float(rng.randint(0, 5)), f"k{rng.randint(0, 3)}", position=i)
            for i in range(rng.randint(1, 15))
        ]
        expected = sorted(entries, key=lambda e: (-e.score, e.tie_break_key, e.position, e.item_id))
        assert _ids(rank(entries)) == _ids(expected)


def test_resort_is_stable():
    entries = [RankEntry(f"id{i}", 1.0, position=i) for i in range(6)]
    once = rank(entries)
    again = rank([RankEntry(e.item_id, e.score, e.tie_break_key, idx) for idx, e in enumerate(once)])
    assert _ids(once) == _ids(again)


def test_splice_pinned():
    assert splice_pinned(["a", "b", "c", "d"], "p", 3) == ["a", "b", "c", "p", "d"]
    assert splice_pinned(["a"], "p", 3) == ["a", "p"]
    assert splice_pinned(["a", "b"], None, 3) == ["a", "b"]


def test_rank_changes():
    changes = rank_changes(["a", "b", "c"], ["c", "a", "b", "x"])
    assert changes["c"].direction == "up" and changes["c"].magnitude == 2
    assert changes["a"].direction == "down" and changes["a"].magnitude == 1
    assert "x" not in changes


def test_is_newer():
    w = RankedWindow(target_size=5)
    assert w.is_newer("a", 1)
    w.last_update["a"] = 10
    assert not w.is_newer("a", 10)
    assert not w.is_newer("a", 9)
    assert w.is_newer("a", 11)


def test_remember_tracks_single_pin():
    w = RankedWindow(target_size=5)
    w.remember(ItemRecord("p1", 1.0, is_pinned=True))
    w.remember(ItemRecord("p2", 1.0, is_pinned=True))
    assert w.pinned_id == "p1"


def test_pin_ignored_when_disabled():
    w = RankedWindow(target_size=5, pin_enabled=False)
    w.remember(ItemRecord("p1", 1.0, is_pinned=True))
    assert w.pinned_id is None


def test_sortable_capacity_reserves_pin_slot():
    w = RankedWindow(target_size=5)
    w.remember(ItemRecord("p", 1.0, is_pinned=True))
    w.order = ["a", "p"]
    assert w.sortable_capacity == 4
    assert w.sortable_ids() == ["a"]


def test_forget_keeps_timestamp_guard():
    w = RankedWindow(target_size=5)
    w.remember(ItemRecord("a", 2.0, tie_break_key="k"))
    w.last_update["a"] = 5
    w.forget("a")
    assert "a" not in w.scores
    assert "a" not in w.tie_break
    assert w.last_update["a"] == 5
