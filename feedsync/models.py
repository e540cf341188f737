from __future__ import annotations

from dataclasses import dataclass, field

SORT_TYPES = ("hot", "top", "bump", "new")
TOP_PERIODS = ("8h", "24h", "3d", "7d", "30d")
DEFAULT_TOP_FEED_TYPE = "TOP_24H"


@dataclass
class ItemRecord:
    id: str
    score: float = 0.0
    tie_break_key: str = ""
    is_pinned: bool = False
    data: dict = field(default_factory=dict)


@dataclass
class FeedConfig:
    sort_type: str = "hot"
    top_period: str = "24h"
    following_only: bool = False

    @property
    def feed_type(self) -> str | None:
        """Push room name for this configuration, None when the mode has no room."""
        if self.sort_type == "hot":
            return "HOT"
        if self.sort_type == "top":
            if self.top_period in TOP_PERIODS:
                return f"TOP_{self.top_period.upper()}"
            return DEFAULT_TOP_FEED_TYPE
        if self.sort_type == "new":
            return "NEW"
        # bump rides on the global vote stream
        return None

    @property
    def is_score_ranked(self) -> bool:
        return self.sort_type in ("hot", "top")

    @property
    def honors_pin(self) -> bool:
        """Only the hot feed keeps a pinned item at its fixed slot; top sorts it by score."""
        return self.sort_type == "hot"


@dataclass
class FeedPage:
    items: list[ItemRecord]
    has_more: bool
    next_cursor: str | None = None


@dataclass
class ScoreUpdate:
    item_id: str
    score: float
    timestamp: float
    feed_type: str | None = None


@dataclass
class InsertionUpdate:
    item_id: str
    score: float
    timestamp: float


@dataclass
class BumpUpdate:
    """A vote-driven move to the top.

    ``needs_fetch`` records whether the id was outside the window when the
    vote arrived; it is for logging only. The engine re-reads membership at
    flush time, since the item may have been evicted or loaded meanwhile.
    """

    item_id: str
    timestamp: float
    needs_fetch: bool = False


@dataclass
class NewItemUpdate:
    item_id: str
    timestamp: float


@dataclass
class VoteUpdate:
    item_id: str
    timestamp: float
    impact: float = 0.0
    previous_impact: float | None = None


@dataclass
class NewPostEvent:
    item_id: str
    timestamp: float
    record: ItemRecord | None = None


@dataclass
class RankChange:
    direction: str
    magnitude: int


@dataclass
class Transition:
    old_order: list[str]
    new_order: list[str]
    rank_changes: dict[str, RankChange] = field(default_factory=dict)
    highlighted: list[str] = field(default_factory=list)


@dataclass
class Reconciliation:
    """Outcome of one reconciliation pass, already committed to the window."""

    transition: Transition | None = None
    inserted: list[str] = field(default_factory=list)
    evicted: list[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return self.transition is not None or bool(self.inserted) or bool(self.evicted)
