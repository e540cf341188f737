from __future__ import annotations

import logging

logger = logging.getLogger(__name__)


class SessionGuard:
    """Monotonic marker for the current feed configuration.

    Work scheduled under one session and finishing under another is stale and
    must not touch the window. Nothing is cancelled here; callers capture
    :meth:`current` when they schedule and ask :meth:`is_stale` when they run.
    """

    def __init__(self, start: int = 0):
        self._session = start

    def current(self) -> int:
        return self._session

    def advance(self) -> int:
        self._session += 1
        logger.debug("Feed session advanced to %d", self._session)
        return self._session

    def is_stale(self, captured: int) -> bool:
        return captured != self._session
