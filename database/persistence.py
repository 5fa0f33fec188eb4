"""
Persistence gateway: moves the store's state in and out of a Storage.

Three independent records are kept, each rewritten in full on change:

    flashcard_collections  JSON array of Collection
    flashcard_cards        JSON array of Card
    flashcard_stats        JSON object (Stats)

Reads never fail startup: a missing, unreadable or malformed record falls back
to its default and the problem is logged. Writes never raise: a failed write
is logged and dropped.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Callable, Iterable

from database.storage import Storage, StorageError
from store.models import Card, Collection, Stats
from store.stats import roll_over

logger = logging.getLogger(__name__)

COLLECTIONS_KEY = 'flashcard_collections'
CARDS_KEY = 'flashcard_cards'
STATS_KEY = 'flashcard_stats'

RECORD_KEYS = (COLLECTIONS_KEY, CARDS_KEY, STATS_KEY)


@dataclass
class LoadedState:
    collections: dict[str, Collection] = field(default_factory=dict)
    cards: dict[str, Card] = field(default_factory=dict)
    stats: Stats = field(default_factory=Stats)
    # records that must be written back right away (e.g. after a day rollover)
    dirty: set[str] = field(default_factory=set)


def load_state(storage: Storage, today: date) -> LoadedState:
    state = LoadedState()

    collections = _load_list(storage, COLLECTIONS_KEY, Collection.from_dict)
    if collections is not None:
        state.collections = {c.id: c for c in collections}

    cards = _load_list(storage, CARDS_KEY, Card.from_dict)
    if cards is not None:
        state.cards = {c.id: c for c in cards}

    raw_stats = _read_json(storage, STATS_KEY)
    stats = None
    if raw_stats is not None:
        try:
            if not isinstance(raw_stats, dict):
                raise TypeError(f"expected an object, got {type(raw_stats).__name__}")
            stats = Stats.from_dict(raw_stats)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Ignoring malformed record {STATS_KEY}: {e}")

    if stats is None:
        state.stats = Stats(last_updated=today)
    else:
        state.stats = roll_over(stats, today)
        if state.stats is not stats:
            logger.info(f"New day since {stats.last_updated}: daily counters reset")
            state.dirty.add(STATS_KEY)

    logger.info(
        f"Loaded {len(state.collections)} collections, {len(state.cards)} cards"
    )
    return state


def save_collections(storage: Storage, collections: Iterable[Collection]) -> None:
    _write_json(storage, COLLECTIONS_KEY, [c.to_dict() for c in collections])


def save_cards(storage: Storage, cards: Iterable[Card]) -> None:
    _write_json(storage, CARDS_KEY, [c.to_dict() for c in cards])


def save_stats(storage: Storage, stats: Stats) -> None:
    _write_json(storage, STATS_KEY, stats.to_dict())


# ── private helpers ──────────────────────────────────────────

def _read_json(storage: Storage, key: str) -> Any:
    try:
        text = storage.read(key)
    except StorageError as e:
        logger.warning(f"Could not read {key}, using default: {e}")
        return None

    if text is None:
        return None

    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        logger.warning(f"Record {key} is not valid JSON, using default: {e}")
        return None


def _load_list(storage: Storage, key: str, decode: Callable[[dict], Any]) -> list | None:
    raw = _read_json(storage, key)
    if raw is None:
        return None

    if not isinstance(raw, list):
        logger.warning(f"Record {key} is not a list, using default")
        return None

    try:
        return [decode(entry) for entry in raw]
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        logger.warning(f"Record {key} has a malformed entry, using default: {e}")
        return None


def _write_json(storage: Storage, key: str, payload: Any) -> None:
    try:
        storage.write(key, json.dumps(payload, ensure_ascii=False))
    except StorageError as e:
        logger.warning(f"Dropped write of {key}: {e}")
