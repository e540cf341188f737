"""Four independent debounce lanes in front of the reconciliation engine.

score      ids already in the window, score-ranked modes       500 ms
bump       vote activity in bump mode (move to top)            300 ms
new-item   incomplete new posts in new mode (need a fetch)     1500 ms, 10 ids
insertion  score updates for ids outside the window            1500 ms, 10 ids

Lanes read window membership and timestamps to route and reject events; only
the engine writes the window.
"""

from __future__ import annotations

import logging

from feedsync.config import Settings, settings as default_settings
from feedsync.engine import ReconciliationEngine
from feedsync.lanes import DebounceLane
from feedsync.models import (
    BumpUpdate,
    FeedConfig,
    InsertionUpdate,
    NewItemUpdate,
    ScoreUpdate,
)
from feedsync.scheduler import Scheduler
from feedsync.session import SessionGuard

logger = logging.getLogger(__name__)

SCORE = "score"
BUMP = "bump"
NEW_ITEM = "new-item"
INSERTION = "insertion"


class UpdateCoalescer:
    def __init__(
        self,
        engine: ReconciliationEngine,
        guard: SessionGuard,
        scheduler: Scheduler,
        config: FeedConfig,
        settings: Settings | None = None,
    ):
        cfg = settings or default_settings
        self.engine = engine
        self.guard = guard
        self.config = config

        self.score_lane: DebounceLane[ScoreUpdate] = DebounceLane(
            SCORE, cfg.score_debounce_ms / 1000, scheduler, self._flush_scores
        )
        self.bump_lane: DebounceLane[BumpUpdate] = DebounceLane(
            BUMP, cfg.bump_debounce_ms / 1000, scheduler, self._flush_bumps, requeue=True
        )
        self.new_item_lane: DebounceLane[NewItemUpdate] = DebounceLane(
            NEW_ITEM,
            cfg.insertion_debounce_ms / 1000,
            scheduler,
            self._flush_new_items,
            capacity=cfg.max_pending_insertions,
            requeue=True,
        )
        self.insertion_lane: DebounceLane[InsertionUpdate] = DebounceLane(
            INSERTION,
            cfg.insertion_debounce_ms / 1000,
            scheduler,
            self._flush_insertions,
            capacity=cfg.max_pending_insertions,
        )

    @property
    def lanes(self) -> list[DebounceLane]:
        return [self.score_lane, self.bump_lane, self.new_item_lane, self.insertion_lane]

    def _is_stale_event(self, item_id: str, timestamp: float) -> bool:
        if not self.engine.window.is_newer(item_id, timestamp):
            logger.debug("Ignoring older update for %s (ts %s)", item_id, timestamp)
            return True
        return False

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def offer_score(self, update: ScoreUpdate) -> bool:
        """Route a score update to the score lane or, for outsiders, the insertion lane."""
        expected = self.config.feed_type if self.config.is_score_ranked else None
        if update.feed_type != expected:
            logger.debug("Ignoring score update: wrong feed type (expected %s, got %s)", expected, update.feed_type)
            return False
        if self._is_stale_event(update.item_id, update.timestamp):
            return False

        session = self.guard.current()
        if self.engine.window.contains(update.item_id):
            return self.score_lane.offer(update.item_id, update, session)

        logger.debug("Item %s not in window, queuing for insertion", update.item_id)
        insertion = InsertionUpdate(item_id=update.item_id, score=update.score, timestamp=update.timestamp)
        return self.insertion_lane.offer(update.item_id, insertion, session)

    def offer_bump(self, item_id: str, timestamp: float) -> bool:
        if self.config.sort_type != "bump":
            return False
        if self._is_stale_event(item_id, timestamp):
            return False
        needs_fetch = not self.engine.window.contains(item_id)
        if needs_fetch:
            logger.debug("Bumped item %s not in window, will fetch on flush", item_id)
        update = BumpUpdate(item_id=item_id, timestamp=timestamp, needs_fetch=needs_fetch)
        return self.bump_lane.offer(item_id, update, self.guard.current())

    def offer_new_item(self, item_id: str, timestamp: float) -> bool:
        if self.config.sort_type != "new":
            return False
        if self._is_stale_event(item_id, timestamp):
            return False
        update = NewItemUpdate(item_id=item_id, timestamp=timestamp)
        return self.new_item_lane.offer(item_id, update, self.guard.current())

    # ------------------------------------------------------------------
    # Flushes (timer callbacks)
    # ------------------------------------------------------------------

    def _flush_scores(self) -> None:
        batch = self.score_lane.flush(self.guard.current())
        if batch is None:
            return
        self.engine.reconcile_scores(batch)

    async def _flush_bumps(self) -> None:
        batch = self.bump_lane.flush(self.guard.current())
        if batch is None:
            return
        await self.engine.reconcile_recent(batch)

    async def _flush_new_items(self) -> None:
        batch = self.new_item_lane.flush(self.guard.current())
        if batch is None:
            return
        await self.engine.reconcile_recent(batch)

    async def _flush_insertions(self) -> None:
        batch = self.insertion_lane.flush(self.guard.current())
        if batch is None:
            return
        await self.engine.reconcile_insertions(batch)

    def clear(self) -> None:
        for lane in self.lanes:
            lane.clear()
