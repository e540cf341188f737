"""Reconciliation of flushed lane batches into the ranked window.

Every pass computes the full target order from merged final values, commits
it to the window, and only then tells the renderer. The window is the source
of truth; the renderer replays a transition that has already happened.
"""

from __future__ import annotations

import logging

from feedsync.animation import AnimationGate
from feedsync.lanes import Batch
from feedsync.models import (
    BumpUpdate,
    InsertionUpdate,
    ItemRecord,
    NewItemUpdate,
    Reconciliation,
    ScoreUpdate,
    Transition,
)
from feedsync.renderer import Renderer
from feedsync.session import SessionGuard
from feedsync.transport import Fetcher
from feedsync.window import RankedWindow, RankEntry, rank, rank_changes, splice_pinned

logger = logging.getLogger(__name__)


class ReconciliationEngine:
    def __init__(
        self,
        window: RankedWindow,
        guard: SessionGuard,
        fetcher: Fetcher,
        renderer: Renderer,
        gate: AnimationGate,
    ):
        self.window = window
        self.guard = guard
        self.fetcher = fetcher
        self.renderer = renderer
        self.gate = gate

    # ------------------------------------------------------------------
    # Score-ranked modes
    # ------------------------------------------------------------------

    def reconcile_scores(self, batch: Batch[ScoreUpdate]) -> Reconciliation:
        """Apply score deltas and re-rank the current membership."""
        applied = 0
        for item_id, update in batch.updates.items():
            if not self.window.contains(item_id):
                logger.debug("Score update for %s arrived after it left the window", item_id)
                continue
            if not self.window.is_newer(item_id, update.timestamp):
                logger.debug("Ignoring older score update for %s", item_id)
                continue
            self.window.scores[item_id] = update.score
            self.window.last_update[item_id] = update.timestamp
            applied += 1

        logger.info("Flushing %d score updates (%d applied)", len(batch), applied)
        if not applied:
            return Reconciliation()

        sortable = [e.item_id for e in rank(self.window.entries())]
        return self._commit(self._with_pin(sortable))

    async def reconcile_insertions(self, batch: Batch[InsertionUpdate]) -> Reconciliation:
        """Admit items from outside the window that now rank inside it."""
        candidates = self._outsiders(batch.updates)

        records = await self._resolve(list(candidates), batch.session)
        if records is None:
            return Reconciliation()
        # Another pass may have admitted some of these while the fetch was in flight.
        candidates = self._outsiders(candidates)

        entries = self.window.entries()
        offset = len(entries)
        for idx, (item_id, update) in enumerate(candidates.items()):
            record = records.get(item_id)
            if record is None:
                continue
            entries.append(RankEntry(item_id, update.score, record.tie_break_key, offset + idx))

        ranked = [e.item_id for e in rank(entries)][: self.window.sortable_capacity]
        inserted = [i for i in ranked if i in candidates]
        for item_id in inserted:
            update = candidates[item_id]
            self.window.remember(records[item_id], score=update.score, allow_pin=False)
            self.window.last_update[item_id] = update.timestamp

        logger.info(
            "Insertion flush: %d candidates, %d resolved, %d admitted",
            len(candidates),
            len(records),
            len(inserted),
        )
        return self._commit(self._with_pin(ranked), inserted=inserted, highlighted=inserted)

    def _outsiders(self, updates: dict[str, InsertionUpdate]) -> dict[str, InsertionUpdate]:
        """Newer updates for ids not in the window; ids already inside take the score directly."""
        outsiders: dict[str, InsertionUpdate] = {}
        for item_id, update in updates.items():
            if not self.window.is_newer(item_id, update.timestamp):
                continue
            if self.window.contains(item_id):
                self.window.scores[item_id] = update.score
                self.window.last_update[item_id] = update.timestamp
                continue
            outsiders[item_id] = update
        return outsiders

    def _with_pin(self, sortable: list[str]) -> list[str]:
        pinned = self.window.pinned_id if self.window.pinned_id in self.window.order else None
        return splice_pinned(sortable, pinned, self.window.pinned_index)

    # ------------------------------------------------------------------
    # Recency modes (bump / new)
    # ------------------------------------------------------------------

    async def reconcile_recent(self, batch: Batch[BumpUpdate] | Batch[NewItemUpdate]) -> Reconciliation:
        """Move bumped or newly posted items to the top, most recent first."""
        by_recency = list(reversed(batch.updates.items()))
        missing = [item_id for item_id, _ in by_recency if not self.window.contains(item_id)]

        records = await self._resolve(missing, batch.session)
        if records is None:
            return Reconciliation()

        front: list[str] = []
        timestamps: dict[str, float] = {}
        for item_id, update in by_recency:
            if not self.window.is_newer(item_id, update.timestamp):
                continue
            if self.window.contains(item_id) or item_id in records:
                front.append(item_id)
                timestamps[item_id] = update.timestamp

        logger.info("Flushing %d '%s' updates, moving %d to top", len(batch), batch.lane, len(front))
        return self._prepend(front, records, timestamps)

    def admit_at_top(self, record: ItemRecord, timestamp: float) -> Reconciliation:
        """Insert a fully described new item at the top without a fetch."""
        if not self.window.is_newer(record.id, timestamp):
            return Reconciliation()
        return self._prepend([record.id], {record.id: record}, {record.id: timestamp})

    def move_to_top(self, item_id: str, timestamp: float) -> Reconciliation:
        if not self.window.contains(item_id) or not self.window.is_newer(item_id, timestamp):
            return Reconciliation()
        return self._prepend([item_id], {}, {item_id: timestamp})

    def _prepend(
        self,
        front: list[str],
        records: dict[str, ItemRecord],
        timestamps: dict[str, float],
    ) -> Reconciliation:
        if not front:
            return Reconciliation()

        old_order = self.window.order
        moved = set(front)
        new_order = (front + [i for i in old_order if i not in moved])[: self.window.target_size]
        kept = set(new_order)

        inserted = [i for i in front if i in kept and not self.window.contains(i)]
        for item_id in inserted:
            self.window.remember(records[item_id], allow_pin=False)
        for item_id in front:
            if item_id in kept:
                self.window.last_update[item_id] = timestamps[item_id]

        return self._commit(new_order, inserted=inserted, highlighted=[i for i in front if i in kept])

    # ------------------------------------------------------------------
    # Page loads
    # ------------------------------------------------------------------

    def load_page(self, records: list[ItemRecord]) -> Reconciliation:
        """Append a page in server order; the window grows to hold it."""
        inserted: list[str] = []
        for record in records:
            if self.window.contains(record.id) or record.id in inserted:
                continue
            self.window.remember(record)
            inserted.append(record.id)

        if not inserted:
            return Reconciliation()

        self.window.order = self.window.order + inserted
        self.window.target_size = max(self.window.target_size, len(self.window.order))
        self.renderer.on_insert(inserted, {i: self.window.records[i] for i in inserted})
        logger.info("Loaded %d items into window (size %d)", len(inserted), len(self.window.order))
        return Reconciliation(inserted=inserted)

    # ------------------------------------------------------------------
    # Shared helpers
    # ------------------------------------------------------------------

    async def _resolve(self, ids: list[str], session: int) -> dict[str, ItemRecord] | None:
        """Fetch records for ``ids``; None if the session moved on while waiting."""
        fetched: list[ItemRecord] = []
        if ids:
            try:
                fetched = await self.fetcher.fetch_by_ids(ids)
            except Exception as exc:
                logger.warning("Failed to fetch %d items for insertion: %s", len(ids), exc)
                fetched = []

        if self.guard.is_stale(session):
            logger.info("Feed session changed during fetch, discarding batch")
            return None

        wanted = set(ids)
        records = {r.id: r for r in fetched if r.id in wanted}
        if len(records) < len(wanted):
            logger.warning("Could not resolve %d of %d items", len(wanted) - len(records), len(wanted))
        return records

    def _commit(
        self,
        new_order: list[str],
        inserted: list[str] | None = None,
        highlighted: list[str] | None = None,
    ) -> Reconciliation:
        old_order = self.window.snapshot()
        if new_order == old_order:
            logger.debug("Order unchanged, skipping reorder")
            return Reconciliation()

        kept = set(new_order)
        evicted = [i for i in old_order if i not in kept]
        self.window.order = list(new_order)
        for item_id in evicted:
            self.window.forget(item_id)

        transition = Transition(
            old_order=old_order,
            new_order=list(new_order),
            rank_changes=rank_changes(old_order, new_order),
            highlighted=list(highlighted or []),
        )
        result = Reconciliation(transition=transition, inserted=list(inserted or []), evicted=evicted)
        logger.info(
            "Committed order: %d moved, %d inserted, %d evicted",
            len(transition.rank_changes),
            len(result.inserted),
            len(evicted),
        )

        if evicted:
            self.renderer.on_evict(evicted)
        if result.inserted:
            self.renderer.on_insert(result.inserted, {i: self.window.records[i] for i in result.inserted})
        self.gate.submit(transition)
        return result
