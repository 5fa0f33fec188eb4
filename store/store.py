"""
The flashcard store: the one object that owns collections, cards and stats.

Handlers get the instance from context.bot_data['store'] and go through the
operations below; nothing else mutates state.

Every operation runs in a transaction over a draft copy. Derived counters
(Collection.card_count, Stats.total_cards, Stats.hard_cards) are only ever
changed by the draft's link / unlink / relink methods, so they cannot drift
apart from the cards they count. On success the draft replaces the live state
and each changed record is written through the persistence gateway; on error
the live state is left as it was and nothing is written.
"""

import logging
from contextlib import contextmanager
from dataclasses import replace
from datetime import date, datetime
from typing import Any, Callable, Iterator

import database.persistence as persistence
import store.stats as stats_ops
from database.storage import Storage
from store.errors import NotFound
from store.models import DIFFICULTIES, Card, Collection, Stats, new_id, truncate_ms, utcnow
from store.snapshot import ImportResult, export_document, parse_document
from utils.srs import check_outcome, schedule

logger = logging.getLogger(__name__)

Listener = Callable[[str, str | None], None]

COLLECTION_FIELDS = ('name', 'description')
CARD_FIELDS = ('front', 'back', 'collection_id', 'difficulty', 'next_review_date', 'review_count')


class _Draft:
    """Working copy of the state for one transaction."""

    def __init__(self, collections: dict[str, Collection], cards: dict[str, Card], stats: Stats):
        self.collections = dict(collections)
        self.cards = dict(cards)
        self.stats = stats
        self.dirty: set[str] = set()

    def put_collection(self, collection: Collection) -> None:
        self.collections[collection.id] = collection
        self.dirty.add(persistence.COLLECTIONS_KEY)

    def drop_collection(self, collection_id: str) -> None:
        del self.collections[collection_id]
        self.dirty.add(persistence.COLLECTIONS_KEY)

    def link(self, card: Card) -> None:
        """Add a new card and count it everywhere it is counted."""
        self.cards[card.id] = card
        self._bump_collection(card.collection_id, +1)
        self.set_stats(stats_ops.count_card(self.stats, card, +1))
        self.dirty.add(persistence.CARDS_KEY)

    def unlink(self, card: Card) -> None:
        del self.cards[card.id]
        self._bump_collection(card.collection_id, -1)
        self.set_stats(stats_ops.count_card(self.stats, card, -1))
        self.dirty.add(persistence.CARDS_KEY)

    def relink(self, old: Card, new: Card) -> None:
        """Replace a card in place, moving its counts if membership or difficulty changed."""
        self.cards[new.id] = new
        if old.collection_id != new.collection_id:
            self._bump_collection(old.collection_id, -1)
            self._bump_collection(new.collection_id, +1)
        if old.difficulty != new.difficulty:
            self.set_stats(stats_ops.mark_difficulty(self.stats, new.id, new.difficulty))
        self.dirty.add(persistence.CARDS_KEY)

    def set_stats(self, stats: Stats) -> None:
        if stats != self.stats:
            self.stats = stats
            self.dirty.add(persistence.STATS_KEY)

    def _bump_collection(self, collection_id: str, delta: int) -> None:
        collection = self.collections.get(collection_id)
        if collection is None:
            # orphan card from an imported snapshot: nothing to count against
            return
        self.put_collection(replace(collection, card_count=max(0, collection.card_count + delta)))


class FlashcardStore:
    def __init__(self, storage: Storage, clock: Callable[[], datetime] = utcnow):
        self._storage = storage
        self._clock = clock
        self._listeners: list[Listener] = []

        loaded = persistence.load_state(storage, self._today())
        self._collections = loaded.collections
        self._cards = loaded.cards
        self._stats = loaded.stats
        self._write(loaded.dirty)

        for problem in self.verify():
            logger.warning(f"Loaded state is inconsistent: {problem}")

    # ── Read access ───────────────────────────────────────────

    @property
    def collections(self) -> list[Collection]:
        return list(self._collections.values())

    @property
    def cards(self) -> list[Card]:
        return list(self._cards.values())

    @property
    def stats(self) -> Stats:
        return self._stats

    def current_stats(self) -> Stats:
        """Stats as of today: stale daily counters read as zero until the next write."""
        return stats_ops.roll_over(self._stats, self._today())

    def get_collection(self, collection_id: str) -> Collection:
        try:
            return self._collections[collection_id]
        except KeyError:
            raise NotFound('collection', collection_id) from None

    def get_card(self, card_id: str) -> Card:
        try:
            return self._cards[card_id]
        except KeyError:
            raise NotFound('card', card_id) from None

    def cards_in_collection(self, collection_id: str) -> list[Card]:
        return [c for c in self._cards.values() if c.collection_id == collection_id]

    def cards_for_review(self, collection_id: str | None = None, now: datetime | None = None) -> list[Card]:
        """Due cards in insertion order; optionally only those of one collection."""
        now = now or self._now()
        return [
            card for card in self._cards.values()
            if (collection_id is None or card.collection_id == collection_id)
            and card.is_due(now)
        ]

    def due_count(self, collection_id: str | None = None) -> int:
        return len(self.cards_for_review(collection_id))

    def verify(self) -> list[str]:
        return stats_ops.find_drift(self._stats, self._collections.values(), self._cards.values())

    # ── Notifications ─────────────────────────────────────────

    def subscribe(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def _notify(self, event: str, record_id: str | None) -> None:
        for listener in self._listeners:
            listener(event, record_id)

    # ── Collections ───────────────────────────────────────────

    def add_collection(self, name: str, description: str = '') -> Collection:
        with self._transaction() as draft:
            collection = Collection(
                id=new_id(draft.collections),
                name=name,
                description=description,
                created_at=self._now(),
            )
            draft.put_collection(collection)

        logger.info(f"Added collection {collection.id} ({name!r})")
        self._notify('collection_added', collection.id)
        return collection

    def update_collection(self, collection_id: str, **fields: Any) -> Collection:
        _check_fields(fields, COLLECTION_FIELDS, 'collection')
        with self._transaction() as draft:
            collection = replace(self.get_collection(collection_id), **fields)
            draft.put_collection(collection)

        logger.info(f"Updated collection {collection_id}: {sorted(fields)}")
        self._notify('collection_updated', collection_id)
        return collection

    def delete_collection(self, collection_id: str) -> None:
        with self._transaction() as draft:
            self.get_collection(collection_id)
            doomed = self.cards_in_collection(collection_id)
            for card in doomed:
                draft.unlink(card)
            draft.drop_collection(collection_id)

        logger.info(f"Deleted collection {collection_id} with {len(doomed)} cards")
        self._notify('collection_deleted', collection_id)

    # ── Cards ─────────────────────────────────────────────────

    def add_card(self, collection_id: str, front: str, back: str) -> Card:
        with self._transaction() as draft:
            self.get_collection(collection_id)
            card = Card(
                id=new_id(draft.cards),
                collection_id=collection_id,
                front=front,
                back=back,
                created_at=self._now(),
            )
            draft.link(card)
            draft.set_stats(stats_ops.note_added(draft.stats))

        logger.info(f"Added card {card.id} to collection {collection_id}")
        self._notify('card_added', card.id)
        return card

    def update_card(self, card_id: str, **fields: Any) -> Card:
        _check_fields(fields, CARD_FIELDS, 'card')
        if 'difficulty' in fields and fields['difficulty'] not in DIFFICULTIES:
            raise ValueError(f"unknown difficulty: {fields['difficulty']!r}")
        if fields.get('next_review_date') is not None:
            fields['next_review_date'] = truncate_ms(fields['next_review_date'])
        if 'review_count' in fields:
            fields['review_count'] = max(0, int(fields['review_count']))

        with self._transaction() as draft:
            old = self.get_card(card_id)
            if 'collection_id' in fields:
                self.get_collection(fields['collection_id'])
            card = replace(old, **fields)
            draft.relink(old, card)

        logger.info(f"Updated card {card_id}: {sorted(fields)}")
        self._notify('card_updated', card_id)
        return card

    def delete_card(self, card_id: str) -> None:
        with self._transaction() as draft:
            draft.unlink(self.get_card(card_id))

        logger.info(f"Deleted card {card_id}")
        self._notify('card_deleted', card_id)

    # ── Review ────────────────────────────────────────────────

    def record_review(self, card_id: str, outcome: str) -> Card:
        """Apply a review outcome to a card and count it in today's stats."""
        check_outcome(outcome)
        with self._transaction() as draft:
            old = self.get_card(card_id)
            next_review_date, difficulty = schedule(self._now(), outcome)
            card = replace(
                old,
                next_review_date=next_review_date,
                difficulty=difficulty,
                review_count=old.review_count + 1,
            )
            draft.relink(old, card)
            # a hard card may already carry 'hard' but must still be in the set
            draft.set_stats(stats_ops.mark_difficulty(draft.stats, card_id, difficulty))
            draft.set_stats(stats_ops.note_reviewed(draft.stats))

        logger.info(f"Card {card_id}: {outcome}, next due {card.next_review_date.isoformat()}")
        self._notify('card_reviewed', card_id)
        return card

    # ── Snapshot ──────────────────────────────────────────────

    def export_snapshot(self) -> str:
        return export_document(self._collections.values(), self._cards.values(), self._now())

    def import_snapshot(self, text: str | bytes) -> ImportResult:
        """Replace every collection and card with the snapshot's. Stats totals are recomputed."""
        collections, cards = parse_document(text)

        with self._transaction() as draft:
            counts: dict[str, int] = {}
            for card in cards:
                counts[card.collection_id] = counts.get(card.collection_id, 0) + 1

            draft.collections = {
                c.id: replace(c, card_count=counts.get(c.id, 0)) for c in collections
            }
            draft.cards = {c.id: c for c in cards}
            draft.set_stats(stats_ops.rebuild(draft.stats, cards))
            draft.dirty.update(persistence.RECORD_KEYS)

        logger.info(f"Imported snapshot: {len(collections)} collections, {len(cards)} cards")
        self._notify('snapshot_imported', None)
        return ImportResult(collections=len(collections), cards=len(cards))

    # ── Transaction & commit ──────────────────────────────────

    def _now(self) -> datetime:
        return truncate_ms(self._clock())

    def _today(self) -> date:
        return self._now().date()

    @contextmanager
    def _transaction(self) -> Iterator[_Draft]:
        draft = _Draft(self._collections, self._cards, self._stats)
        draft.set_stats(stats_ops.roll_over(draft.stats, self._today()))

        yield draft

        self._collections = draft.collections
        self._cards = draft.cards
        self._stats = draft.stats
        self._write(draft.dirty)

    def _write(self, dirty: set[str]) -> None:
        if persistence.COLLECTIONS_KEY in dirty:
            persistence.save_collections(self._storage, self._collections.values())
        if persistence.CARDS_KEY in dirty:
            persistence.save_cards(self._storage, self._cards.values())
        if persistence.STATS_KEY in dirty:
            persistence.save_stats(self._storage, self._stats)


def _check_fields(fields: dict[str, Any], allowed: tuple[str, ...], kind: str) -> None:
    unknown = sorted(set(fields) - set(allowed))
    if unknown:
        raise ValueError(f"cannot update {kind} field(s): {', '.join(unknown)}")
