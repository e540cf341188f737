"""Transport collaborators: item fetching and push-room management."""

from __future__ import annotations

import logging
import math
from abc import ABC, abstractmethod

import httpx

from feedsync.config import settings
from feedsync.errors import FeedValidationError
from feedsync.events import record_from_payload
from feedsync.models import FeedConfig, FeedPage, ItemRecord

logger = logging.getLogger(__name__)


class Fetcher(ABC):
    @abstractmethod
    async def fetch_by_ids(self, ids: list[str]) -> list[ItemRecord]:
        """Resolve ids to records. Unknown ids are omitted, never an error."""

    @abstractmethod
    async def fetch_page(self, config: FeedConfig, cursor: str | None = None, limit: int = 20) -> FeedPage: ...


class PushChannel(ABC):
    @abstractmethod
    async def subscribe(self, feed_type: str) -> bool: ...

    @abstractmethod
    async def unsubscribe(self, feed_type: str) -> bool: ...


def validate_page(data: object, config: FeedConfig) -> FeedPage:
    """Check a raw feed page and convert it, raising FeedValidationError on any mismatch."""
    if not isinstance(data, dict):
        raise FeedValidationError("Feed payload must be an object")

    items = data.get("tweets", data.get("items"))
    has_more = data.get("hasMore")
    next_cursor = data.get("nextCursor")

    if not isinstance(items, list):
        raise FeedValidationError("Feed payload must include an item list")
    if not isinstance(has_more, bool):
        raise FeedValidationError("Feed payload hasMore must be boolean")
    if not (next_cursor is None or isinstance(next_cursor, str)):
        raise FeedValidationError("Feed payload nextCursor must be string or null")
    if has_more and (not isinstance(next_cursor, str) or not next_cursor.strip()):
        raise FeedValidationError("Feed payload hasMore=true requires non-empty nextCursor")

    if config.is_score_ranked:
        for item in items:
            score = item.get("feedScore") if isinstance(item, dict) else None
            if not isinstance(score, (int, float)) or isinstance(score, bool) or not math.isfinite(score):
                raise FeedValidationError("Ranking feeds require numeric feedScore on every item")

    records = [r for r in (record_from_payload(item) for item in items) if r is not None]
    return FeedPage(items=records, has_more=has_more, next_cursor=next_cursor)


class HttpFetcher(Fetcher):
    """Fetch items from the feed API over HTTP."""

    def __init__(self, base_url: str | None = None, token: str | None = None, timeout: float | None = None):
        self.base_url = (base_url or settings.api_base_url).rstrip("/")
        self.token = token
        self.timeout = timeout if timeout is not None else settings.api_timeout

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def fetch_by_ids(self, ids: list[str]) -> list[ItemRecord]:
        if not ids:
            return []

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.post(
                    f"{self.base_url}/tweets-by-ids",
                    json={"tweetIds": ids, "useSourceUrls": True},
                    headers=self._headers(),
                )
                resp.raise_for_status()
                payload = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Failed to fetch %d items by id: %s", len(ids), exc)
            return []

        items = payload.get("tweets", []) if isinstance(payload, dict) else []
        records = [r for r in (record_from_payload(item) for item in items) if r is not None]
        logger.info("Fetched %d of %d requested items", len(records), len(ids))
        return records

    async def fetch_page(self, config: FeedConfig, cursor: str | None = None, limit: int = 20) -> FeedPage:
        body: dict = {
            "sortType": config.sort_type,
            "cursor": cursor,
            "limit": limit,
            "followingOnly": config.following_only,
            "useSourceUrls": True,
        }
        if config.sort_type == "top":
            body["period"] = config.top_period

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            resp = await client.post(f"{self.base_url}/feed", json=body, headers=self._headers())
            resp.raise_for_status()
            page = validate_page(resp.json(), config)

        logger.info("Loaded %d items (hasMore: %s)", len(page.items), page.has_more)
        return page


class StaticFetcher(Fetcher):
    """Serve records from memory. Used by the replay CLI and tests."""

    def __init__(self, records: list[ItemRecord] | None = None, page: list[ItemRecord] | None = None):
        self.records: dict[str, ItemRecord] = {r.id: r for r in records or []}
        self.page = list(page or [])
        self.calls: list[list[str]] = []

    def add(self, record: ItemRecord) -> None:
        self.records[record.id] = record

    async def fetch_by_ids(self, ids: list[str]) -> list[ItemRecord]:
        self.calls.append(list(ids))
        return [self.records[i] for i in ids if i in self.records]

    async def fetch_page(self, config: FeedConfig, cursor: str | None = None, limit: int = 20) -> FeedPage:
        start = int(cursor) if cursor else 0
        items = self.page[start : start + limit]
        end = start + len(items)
        has_more = end < len(self.page)
        return FeedPage(items=items, has_more=has_more, next_cursor=str(end) if has_more else None)


class LocalChannel(PushChannel):
    """Room bookkeeping without a socket. Events are delivered by calling the feed directly."""

    def __init__(self):
        self.rooms: set[str] = set()
        self.log: list[tuple[str, str]] = []

    async def subscribe(self, feed_type: str) -> bool:
        self.rooms.add(feed_type)
        self.log.append(("subscribe", feed_type))
        return True

    async def unsubscribe(self, feed_type: str) -> bool:
        self.rooms.discard(feed_type)
        self.log.append(("unsubscribe", feed_type))
        return True
