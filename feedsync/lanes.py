"""Debounced, capacity-bounded buffers for one category of push update."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Generic, TypeVar

from feedsync.scheduler import Scheduler, TimerHandle

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class Batch(Generic[T]):
    lane: str
    session: int
    updates: dict[str, T]

    def __len__(self) -> int:
        return len(self.updates)

    def ids(self) -> list[str]:
        return list(self.updates)


class DebounceLane(Generic[T]):
    """Collect updates keyed by item id and hand them over after a quiet period.

    Every accepted update restarts the timer (debounce, not throttle). Within
    a batch a later update for the same id replaces the earlier one, unless
    its timestamp is not newer. With ``capacity`` set, updates for ids that
    are not already pending are dropped once the lane is full. With
    ``requeue`` set, a replaced id moves to the end of the arrival order.
    """

    def __init__(
        self,
        name: str,
        quiet_period: float,
        scheduler: Scheduler,
        on_fire: Callable[[], Any],
        capacity: int | None = None,
        requeue: bool = False,
    ):
        self.name = name
        self.quiet_period = quiet_period
        self.capacity = capacity
        self.requeue = requeue
        self.pending: dict[str, T] = {}
        self._scheduler = scheduler
        self._on_fire = on_fire
        self._timer: TimerHandle | None = None
        self._session: int | None = None

    def __len__(self) -> int:
        return len(self.pending)

    @property
    def scheduled(self) -> bool:
        return self._timer is not None

    def is_full(self) -> bool:
        return self.capacity is not None and len(self.pending) >= self.capacity

    def offer(self, item_id: str, update: T, session: int) -> bool:
        existing = self.pending.get(item_id)
        if existing is None and self.is_full():
            logger.info("Lane '%s' at capacity (%d), dropping %s", self.name, self.capacity, item_id)
            return False
        if existing is not None and update.timestamp <= existing.timestamp:  # type: ignore[attr-defined]
            logger.debug("Lane '%s' already holds a newer update for %s", self.name, item_id)
            return False

        if self.requeue:
            self.pending.pop(item_id, None)
        self.pending[item_id] = update
        self._reschedule(session)
        logger.debug("Lane '%s' queued %s (pending: %d)", self.name, item_id, len(self.pending))
        return True

    def _reschedule(self, session: int) -> None:
        if self._timer is not None:
            self._timer.cancel()
        self._session = session
        self._timer = self._scheduler.call_later(self.quiet_period, self._fire)

    def _fire(self) -> Any:
        self._timer = None
        return self._on_fire()

    def flush(self, current_session: int) -> Batch[T] | None:
        """Take the pending batch, or discard it if it belongs to an old session."""
        updates, self.pending = self.pending, {}
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if not updates:
            return None
        if self._session != current_session:
            logger.info(
                "Feed session changed, discarding %d pending '%s' updates", len(updates), self.name
            )
            return None
        return Batch(lane=self.name, session=current_session, updates=updates)

    def clear(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self.pending.clear()
        self._session = None
