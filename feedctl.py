"""feedctl — inspect and replay ranked-feed reconciliation offline."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path

import click

from feedsync.config import Settings, settings
from feedsync.events import record_from_payload
from feedsync.feed import FeedSession
from feedsync.models import SORT_TYPES, TOP_PERIODS, FeedConfig, ItemRecord, Transition
from feedsync.renderer import RecordingRenderer
from feedsync.scheduler import ManualScheduler
from feedsync.transport import LocalChannel, StaticFetcher
from feedsync.window import RankedWindow, rank, splice_pinned

EVENT_HANDLERS = {
    "score": "handle_score_update",
    "vote": "handle_vote_update",
    "new_post": "handle_new_post",
}


@click.group()
@click.option("--log-level", default=None, help="Override FEEDSYNC_LOG_LEVEL.")
def cli(log_level):
    """feedsync — real-time ranked feed reconciliation.

        \b
        feedctl.py order seed.json               # comparator order of a seed window
        feedctl.py replay seed.json events.jsonl # replay timed push events
        feedctl.py config                        # effective settings
    """
    logging.basicConfig(
        level=(log_level or settings.log_level).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# ---------------------------------------------------------------------------
# Seed files
# ---------------------------------------------------------------------------


def _load_seed(path: Path) -> tuple[list[ItemRecord], list[ItemRecord]]:
    """Read ``{"items": [...], "catalog": [...]}`` (or a bare item list).

    ``items`` is the first page, ``catalog`` holds records only reachable by id.
    """
    data = json.loads(path.read_text())
    if isinstance(data, list):
        data = {"items": data}
    items = [r for r in (record_from_payload(d) for d in data.get("items", [])) if r is not None]
    catalog = [r for r in (record_from_payload(d) for d in data.get("catalog", [])) if r is not None]
    return items, catalog


def _load_events(path: Path) -> list[dict]:
    events = []
    for lineno, line in enumerate(path.read_text().splitlines(), start=1):
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        try:
            events.append(json.loads(line))
        except ValueError as exc:
            raise click.ClickException(f"{path}:{lineno}: invalid JSON ({exc})")
    events.sort(key=lambda e: e.get("at", 0))
    return events


def _print_transition(transition: Transition) -> None:
    click.echo(f"  reorder  {' '.join(transition.old_order)}")
    click.echo(f"        -> {' '.join(transition.new_order)}")
    for item_id, change in transition.rank_changes.items():
        arrow = "+" if change.direction == "up" else "-"
        click.echo(f"           {item_id:<12} {arrow}{change.magnitude}")


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@cli.command()
@click.argument("seed", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--sort", "sort_type", type=click.Choice(SORT_TYPES), default="hot")
def order(seed, sort_type):
    """Print the comparator order of the items in SEED."""
    items, _ = _load_seed(seed)
    window = RankedWindow(
        target_size=len(items),
        pinned_index=settings.pinned_index,
        pin_enabled=FeedConfig(sort_type).honors_pin,
    )
    for record in items:
        window.remember(record)
    window.order = [r.id for r in items]

    ranked = [e.item_id for e in rank(window.entries())]
    final = splice_pinned(ranked, window.pinned_id, window.pinned_index)
    for idx, item_id in enumerate(final):
        pin = " (pinned)" if item_id == window.pinned_id else ""
        click.echo(f"  {idx:>3}. {window.scores.get(item_id, 0.0):>10.3f}  {item_id}{pin}")


@cli.command()
@click.argument("seed", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("events", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--sort", "sort_type", type=click.Choice(SORT_TYPES), default="hot")
@click.option("--period", type=click.Choice(TOP_PERIODS), default="24h", help="Period for the top feed.")
@click.option("--window", "window_size", default=None, type=int, help="Target window size.")
def replay(seed, events, sort_type, period, window_size):
    """Replay timed push EVENTS (JSONL, ``at`` in ms) against the window in SEED."""
    items, catalog = _load_seed(seed)
    overrides = {"window_size": window_size} if window_size else {}
    cfg = Settings(**{**settings.model_dump(), **overrides})

    renderer = RecordingRenderer()
    session = FeedSession(
        fetcher=StaticFetcher(records=items + catalog, page=items),
        channel=LocalChannel(),
        renderer=renderer,
        scheduler=ManualScheduler(),
        settings=cfg.model_copy(update={"page_size": max(len(items), 1)}),
    )

    asyncio.run(_replay(session, FeedConfig(sort_type=sort_type, top_period=period), _load_events(events)))

    click.echo("Events:")
    for kind, payload in renderer.events:
        if kind == "reorder":
            _print_transition(payload)
        elif kind == "impact":
            item_id, previous, current = payload
            click.echo(f"  impact   {item_id} {previous:+.3f} -> {current:+.3f}")
        else:
            click.echo(f"  {kind:<8} {' '.join(payload)}")
    click.echo(f"\nFinal order ({len(session.get_order())}): {' '.join(session.get_order())}")


async def _replay(session: FeedSession, config: FeedConfig, events: list[dict]) -> None:
    scheduler = session.scheduler
    await session.activate(config)
    for event in events:
        at = float(event.get("at", 0)) / 1000
        if at > scheduler.now():
            await scheduler.advance(at - scheduler.now())
        handler = EVENT_HANDLERS.get(event.get("type", "score"))
        if handler is None:
            click.echo(f"Skipping event of unknown type: {event.get('type')!r}", err=True)
            continue
        getattr(session, handler)(event)
    await session.idle()


@cli.command("config")
def show_config():
    """Show the effective settings."""
    for key, value in settings.model_dump().items():
        click.echo(f"  {key:<24} {value}")


if __name__ == "__main__":
    cli()
