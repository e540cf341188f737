"""Parse push payloads and API item dicts into feedsync models.

Anything malformed is logged and returned as None; the caller drops it.
"""

from __future__ import annotations

import logging
import math
from typing import Any

from feedsync.models import ItemRecord, NewPostEvent, ScoreUpdate, VoteUpdate

logger = logging.getLogger(__name__)

# Fields a new-post payload must carry to be rendered without a fetch.
COMPLETE_RECORD_FIELDS = ("author",)


def _is_finite(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def _item_id(payload: dict) -> str | None:
    item_id = payload.get("itemId", payload.get("tweetId"))
    if isinstance(item_id, str) and item_id:
        return item_id
    return None


def record_from_payload(payload: Any) -> ItemRecord | None:
    """Convert an API item dict into an ItemRecord, or None if it has no usable id."""
    if not isinstance(payload, dict):
        return None
    item_id = _item_id(payload)
    if item_id is None:
        return None

    score = payload.get("feedScore", payload.get("score"))
    tie_break = payload.get("postId", payload.get("id"))
    return ItemRecord(
        id=item_id,
        score=float(score) if _is_finite(score) else 0.0,
        tie_break_key=str(tie_break) if tie_break not in (None, "") else "",
        is_pinned=payload.get("isPinned") is True,
        data=payload,
    )


def is_complete_record(payload: Any) -> bool:
    return (
        isinstance(payload, dict)
        and _item_id(payload) is not None
        and all(payload.get(f) for f in COMPLETE_RECORD_FIELDS)
    )


def parse_score_update(message: Any) -> ScoreUpdate | None:
    if not isinstance(message, dict):
        logger.warning("Ignoring malformed score update payload: %r", message)
        return None

    feed_type = message.get("feedType")
    item_id = _item_id(message)
    score = message.get("score")
    timestamp = message.get("timestamp")
    if not isinstance(feed_type, str) or item_id is None or not _is_finite(score) or not _is_finite(timestamp):
        logger.warning("Ignoring malformed score update payload: %r", message)
        return None

    return ScoreUpdate(item_id=item_id, score=float(score), timestamp=float(timestamp), feed_type=feed_type)


def parse_vote_update(message: Any) -> VoteUpdate | None:
    """Vote (impact) updates carry their numbers either flat or under ``data``."""
    if not isinstance(message, dict):
        logger.warning("Ignoring malformed vote update payload: %r", message)
        return None

    data = message.get("data") if isinstance(message.get("data"), dict) else message
    item_id = _item_id(message)
    timestamp = data.get("timestamp")
    if item_id is None or not _is_finite(timestamp):
        logger.warning("Ignoring malformed vote update payload: %r", message)
        return None

    impact = data.get("realtimeNetImpact")
    previous = data.get("previousRealtimeNetImpact")
    return VoteUpdate(
        item_id=item_id,
        timestamp=float(timestamp),
        impact=float(impact) if _is_finite(impact) else 0.0,
        previous_impact=float(previous) if _is_finite(previous) else None,
    )


def parse_new_post(message: Any) -> NewPostEvent | None:
    if not isinstance(message, dict):
        logger.warning("Ignoring malformed new post payload: %r", message)
        return None

    item_id = _item_id(message)
    timestamp = message.get("timestamp")
    if item_id is None or not _is_finite(timestamp):
        logger.warning("Ignoring malformed new post payload: %r", message)
        return None

    item = message.get("item", message.get("tweet"))
    record = record_from_payload(item) if is_complete_record(item) else None
    if record is not None and record.id != item_id:
        logger.warning("New post %s carries a record for %s, fetching instead", item_id, record.id)
        record = None
    return NewPostEvent(item_id=item_id, timestamp=float(timestamp), record=record)
