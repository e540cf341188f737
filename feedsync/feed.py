"""One live feed: window, lanes, engine and animation gate for a configuration.

A FeedSession is created by the host and lives as long as the feed tab is
open. Each configuration change builds a fresh window and lane set under a
new session number; anything still in flight from the old configuration finds
its session stale and drops out.
"""

from __future__ import annotations

import logging

from feedsync.animation import AnimationGate
from feedsync.coalescer import UpdateCoalescer
from feedsync.config import Settings, settings as default_settings
from feedsync.engine import ReconciliationEngine
from feedsync.errors import FeedInactiveError
from feedsync.events import parse_new_post, parse_score_update, parse_vote_update
from feedsync.models import FeedConfig, Reconciliation, VoteUpdate
from feedsync.renderer import Renderer
from feedsync.scheduler import AsyncioScheduler, Scheduler
from feedsync.session import SessionGuard
from feedsync.transport import Fetcher, PushChannel
from feedsync.window import RankedWindow

logger = logging.getLogger(__name__)


class FeedSession:
    def __init__(
        self,
        fetcher: Fetcher,
        channel: PushChannel,
        renderer: Renderer,
        scheduler: Scheduler | None = None,
        settings: Settings | None = None,
    ):
        self.fetcher = fetcher
        self.channel = channel
        self.renderer = renderer
        self.scheduler = scheduler or AsyncioScheduler()
        self.settings = settings or default_settings
        self.guard = SessionGuard()
        self.gate = AnimationGate(renderer, self.scheduler)

        self.config: FeedConfig | None = None
        self.window: RankedWindow | None = None
        self.engine: ReconciliationEngine | None = None
        self.coalescer: UpdateCoalescer | None = None
        self.cursor: str | None = None
        self.has_more = False
        self.impacts: dict[str, float] = {}
        self._room: str | None = None

    @property
    def active(self) -> bool:
        return self.config is not None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def activate(self, config: FeedConfig) -> Reconciliation:
        """Start showing a feed: subscribe to its room and load the first page."""
        if self.active:
            return await self.change_config(config)
        logger.info("Activating feed (sort: %s, period: %s)", config.sort_type, config.top_period)
        self._build(config)
        await self._subscribe()
        return await self.load_more()

    async def change_config(self, config: FeedConfig) -> Reconciliation:
        """Switch sort type, period or filter. Pending work for the old one is discarded."""
        if not self.active:
            raise FeedInactiveError("change_config called before activate")
        logger.info("Feed configuration changed to %s", config)
        self._teardown()
        self._build(config)
        await self._subscribe()
        return await self.load_more()

    async def deactivate(self) -> None:
        if not self.active:
            return
        logger.info("Deactivating feed")
        self._teardown()
        await self._unsubscribe()
        self.config = None
        self.window = None
        self.engine = None
        self.coalescer = None

    def _teardown(self) -> None:
        self.guard.advance()
        if self.coalescer is not None:
            self.coalescer.clear()
        self.gate.reset()
        self.impacts.clear()

    def _build(self, config: FeedConfig) -> None:
        self.config = config
        self.window = RankedWindow(
            target_size=self.settings.window_size,
            pinned_index=self.settings.pinned_index,
            pin_enabled=config.honors_pin,
        )
        self.engine = ReconciliationEngine(self.window, self.guard, self.fetcher, self.renderer, self.gate)
        self.coalescer = UpdateCoalescer(self.engine, self.guard, self.scheduler, config, self.settings)
        self.cursor = None
        self.has_more = True

    async def _subscribe(self) -> None:
        feed_type = self.config.feed_type
        if self._room and self._room != feed_type:
            await self._unsubscribe()
        if feed_type is None:
            logger.info("Feed type '%s' has no realtime room", self.config.sort_type)
            return
        if self._room == feed_type:
            return
        if await self.channel.subscribe(feed_type):
            self._room = feed_type
        else:
            logger.warning("Failed to subscribe to feed room %s", feed_type)

    async def _unsubscribe(self) -> None:
        if not self._room:
            return
        logger.info("Unsubscribing from feed room %s", self._room)
        await self.channel.unsubscribe(self._room)
        self._room = None

    async def load_more(self) -> Reconciliation:
        """Fetch the next page and append it to the window (scroll pagination)."""
        if not self.active:
            raise FeedInactiveError("load_more called before activate")
        if not self.has_more:
            return Reconciliation()

        session = self.guard.current()
        page = await self.fetcher.fetch_page(self.config, self.cursor, self.settings.page_size)
        if self.guard.is_stale(session):
            logger.info("Feed session changed while loading a page, discarding it")
            return Reconciliation()

        self.cursor = page.next_cursor
        self.has_more = page.has_more
        return self.engine.load_page(page.items)

    # ------------------------------------------------------------------
    # Push events
    # ------------------------------------------------------------------

    def handle_score_update(self, message: dict) -> bool:
        if not self.active:
            logger.debug("Ignoring score update: feed inactive")
            return False
        update = parse_score_update(message)
        if update is None:
            return False
        return self.coalescer.offer_score(update)

    def handle_vote_update(self, message: dict) -> bool:
        """Vote activity: bumps in bump mode, impact display for items on screen."""
        if not self.active:
            logger.debug("Ignoring vote update: feed inactive")
            return False
        vote = parse_vote_update(message)
        if vote is None:
            return False

        in_window = self.window.contains(vote.item_id)
        accepted = False
        if self.config.sort_type == "bump":
            accepted = self.coalescer.offer_bump(vote.item_id, vote.timestamp)
        elif not in_window:
            logger.debug("Ignoring vote update for %s: not in window", vote.item_id)
            return False

        if in_window:
            self._track_impact(vote)
        return accepted or in_window

    def _track_impact(self, vote: VoteUpdate) -> None:
        previous = vote.previous_impact
        if previous is None:
            previous = self.impacts.get(vote.item_id, 0.0)
        if abs(previous - vote.impact) < self.settings.impact_epsilon:
            return
        self.impacts[vote.item_id] = vote.impact
        self.renderer.on_impact(vote.item_id, previous, vote.impact)

    def handle_new_post(self, message: dict) -> bool:
        if not self.active:
            logger.debug("Ignoring new post: feed inactive")
            return False
        if self.config.sort_type != "new":
            logger.debug("Ignoring new post: not in new mode")
            return False
        event = parse_new_post(message)
        if event is None:
            return False

        if self.window.contains(event.item_id):
            self.engine.move_to_top(event.item_id, event.timestamp)
            return True
        if event.record is not None:
            self.engine.admit_at_top(event.record, event.timestamp)
            return True
        logger.debug("Incomplete new post %s, queuing for fetch", event.item_id)
        return self.coalescer.offer_new_item(event.item_id, event.timestamp)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_order(self) -> list[str]:
        return self.window.snapshot() if self.window is not None else []

    async def idle(self) -> None:
        """Wait for pending lane timers, fetches and animations to finish."""
        await self.scheduler.drain()
