"""At most one reorder animation at a time, with a single pending slot."""

from __future__ import annotations

import logging

from feedsync.models import Transition
from feedsync.renderer import Renderer
from feedsync.scheduler import Scheduler
from feedsync.window import rank_changes

logger = logging.getLogger(__name__)


class AnimationGate:
    """Serialize reorder transitions.

    While an animation plays, newly submitted transitions collapse into one
    pending transition that starts from the order the pending slot already
    started from and ends at the latest order. When the running animation
    completes, the pending one (if any) plays next.
    """

    def __init__(self, renderer: Renderer, scheduler: Scheduler):
        self._renderer = renderer
        self._scheduler = scheduler
        self.animating = False
        self.pending: Transition | None = None
        self.played = 0

    def submit(self, transition: Transition) -> None:
        if self.animating:
            self.pending = self._merge(self.pending, transition)
            logger.debug("Animation in progress, queued reorder")
            return
        self.animating = True
        self._scheduler.spawn(self._play(transition))

    @staticmethod
    def _merge(pending: Transition | None, transition: Transition) -> Transition | None:
        if pending is None:
            return transition
        if pending.old_order == transition.new_order:
            return None
        highlighted = list(dict.fromkeys(pending.highlighted + transition.highlighted))
        return Transition(
            old_order=pending.old_order,
            new_order=transition.new_order,
            rank_changes=rank_changes(pending.old_order, transition.new_order),
            highlighted=[i for i in highlighted if i in transition.new_order],
        )

    async def _play(self, transition: Transition) -> None:
        current: Transition | None = transition
        try:
            while current is not None:
                self.played += 1
                try:
                    await self._renderer.on_reorder(current)
                except Exception as exc:
                    # The order is already committed; a broken animation must not wedge the gate.
                    logger.error("Reorder animation failed: %r", exc)
                current, self.pending = self.pending, None
                if current is not None:
                    logger.debug("Processing queued reorder")
        finally:
            self.animating = False

    def reset(self) -> None:
        self.pending = None
