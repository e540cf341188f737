"""Renderer interface: the visual side of a committed reconciliation pass."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

from feedsync.models import ItemRecord, Transition

logger = logging.getLogger(__name__)


class Renderer(ABC):
    """Receives ordered-diff events. The window is already committed when these fire."""

    @abstractmethod
    async def on_reorder(self, transition: Transition) -> None:
        """Play a transition; returning signals visual completion."""

    @abstractmethod
    def on_insert(self, ids: list[str], records: dict[str, ItemRecord]) -> None: ...

    @abstractmethod
    def on_evict(self, ids: list[str]) -> None: ...

    def on_impact(self, item_id: str, previous: float, current: float) -> None:
        return None


class RecordingRenderer(Renderer):
    """Keeps every event in ``events`` as ``(kind, payload)`` tuples."""

    def __init__(self):
        self.events: list[tuple[str, object]] = []

    async def on_reorder(self, transition: Transition) -> None:
        logger.info(
            "Reorder: %d position changes (%d items)",
            len(transition.rank_changes),
            len(transition.new_order),
        )
        self.events.append(("reorder", transition))

    def on_insert(self, ids: list[str], records: dict[str, ItemRecord]) -> None:
        logger.info("Insert: %s", ", ".join(ids))
        self.events.append(("insert", list(ids)))

    def on_evict(self, ids: list[str]) -> None:
        logger.info("Evict: %s", ", ".join(ids))
        self.events.append(("evict", list(ids)))

    def on_impact(self, item_id: str, previous: float, current: float) -> None:
        self.events.append(("impact", (item_id, previous, current)))

    def of_kind(self, kind: str) -> list[object]:
        return [payload for k, payload in self.events if k == kind]
