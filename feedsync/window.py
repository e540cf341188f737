"""Materialized feed window and the server-compatible ordering comparator."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from functools import cmp_to_key

from feedsync.models import ItemRecord, RankChange

logger = logging.getLogger(__name__)


@dataclass
class RankEntry:
    item_id: str
    score: float
    tie_break_key: str = ""
    position: int = 0


def compare(a: RankEntry, b: RankEntry) -> int:
    """Order two entries the way the ranking API orders feed entries.

    Score descending, then tie-break key ascending when both are known and
    differ, then original position, then id. The last two keys make the order
    total so re-sorting an unchanged window never moves anything.
    """
    if a.score != b.score:
        return -1 if a.score > b.score else 1
    if a.tie_break_key and b.tie_break_key and a.tie_break_key != b.tie_break_key:
        return -1 if a.tie_break_key < b.tie_break_key else 1
    if a.position != b.position:
        return a.position - b.position
    if a.item_id != b.item_id:
        return -1 if a.item_id < b.item_id else 1
    return 0


def rank(entries: list[RankEntry]) -> list[RankEntry]:
    """Return entries sorted by :func:`compare`."""
    return sorted(entries, key=cmp_to_key(compare))


def splice_pinned(sortable: list[str], pinned_id: str | None, index: int) -> list[str]:
    """Put the pinned id back at its fixed slot, or at the end of a short list."""
    if pinned_id is None:
        return list(sortable)
    at = min(index, len(sortable))
    return sortable[:at] + [pinned_id] + sortable[at:]


def rank_changes(old_order: list[str], new_order: list[str]) -> dict[str, RankChange]:
    """Position changes for ids present in both orders (positive magnitude, with direction)."""
    old_index = {item_id: idx for idx, item_id in enumerate(old_order)}
    changes: dict[str, RankChange] = {}
    for new_idx, item_id in enumerate(new_order):
        old_idx = old_index.get(item_id)
        if old_idx is None or old_idx == new_idx:
            continue
        moved = old_idx - new_idx
        changes[item_id] = RankChange(direction="up" if moved > 0 else "down", magnitude=abs(moved))
    return changes


@dataclass
class RankedWindow:
    target_size: int
    pinned_index: int = 3
    pin_enabled: bool = True
    order: list[str] = field(default_factory=list)
    scores: dict[str, float] = field(default_factory=dict)
    last_update: dict[str, float] = field(default_factory=dict)
    tie_break: dict[str, str] = field(default_factory=dict)
    records: dict[str, ItemRecord] = field(default_factory=dict)
    pinned_id: str | None = None

    def __len__(self) -> int:
        return len(self.order)

    def contains(self, item_id: str) -> bool:
        return item_id in self.order

    def is_newer(self, item_id: str, timestamp: float) -> bool:
        """True if ``timestamp`` would advance the guard for ``item_id``."""
        existing = self.last_update.get(item_id)
        return existing is None or timestamp > existing

    @property
    def sortable_capacity(self) -> int:
        """Slots left for score-ordered items once the pin takes its slot."""
        if self.pinned_id is not None and self.pinned_id in self.order:
            return max(self.target_size - 1, 0)
        return self.target_size

    def sortable_ids(self) -> list[str]:
        return [i for i in self.order if i != self.pinned_id]

    def entry(self, item_id: str, position: int) -> RankEntry:
        return RankEntry(
            item_id=item_id,
            score=self.scores.get(item_id, 0.0),
            tie_break_key=self.tie_break.get(item_id, ""),
            position=position,
        )

    def entries(self) -> list[RankEntry]:
        return [self.entry(item_id, idx) for idx, item_id in enumerate(self.sortable_ids())]

    def remember(self, record: ItemRecord, score: float | None = None, allow_pin: bool = True) -> None:
        """Store what the window needs to know about ``record`` (not its position)."""
        self.records[record.id] = record
        self.scores[record.id] = record.score if score is None else score
        if record.tie_break_key:
            self.tie_break[record.id] = record.tie_break_key
        if record.is_pinned and self.pin_enabled and allow_pin:
            if self.pinned_id is None or self.pinned_id == record.id:
                self.pinned_id = record.id
            else:
                logger.warning(
                    "Ignoring second pinned item %s (already pinned: %s)", record.id, self.pinned_id
                )

    def forget(self, item_id: str) -> None:
        """Drop everything known about an evicted item except its timestamp guard."""
        # last_update is never shrunk; it lives as long as the window (one session).
        self.records.pop(item_id, None)
        self.scores.pop(item_id, None)
        self.tie_break.pop(item_id, None)
        if self.pinned_id == item_id:
            self.pinned_id = None

    def snapshot(self) -> list[str]:
        return list(self.order)

    def clear(self) -> None:
        self.order.clear()
        self.scores.clear()
        self.last_update.clear()
        self.tie_break.clear()
        self.records.clear()
        self.pinned_id = None
