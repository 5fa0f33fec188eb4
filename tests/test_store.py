"""
Tests for store/store.py — every mutation, the counters it maintains,
and what reaches storage. Uses MemoryStorage and a hand-driven clock.
"""
import json
from datetime import datetime, timedelta, timezone

import pytest

from database.storage import MemoryStorage, StorageError
from store.errors import InvalidOutcome, NotFound
from store.models import EASY, HARD, MEDIUM
from store.store import FlashcardStore

START = datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc)


# ── Fixtures ──────────────────────────────────────────────────

class Clock:
    def __init__(self, now=START):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture()
def clock():
    return Clock()


@pytest.fixture()
def storage():
    return MemoryStorage()


@pytest.fixture()
def store(storage, clock):
    return FlashcardStore(storage, clock=clock)


@pytest.fixture()
def spanish(store):
    return store.add_collection('Spanish', 'Basic words')


def _stored(storage, key):
    return json.loads(storage.records[key])


class RecordingStorage(MemoryStorage):
    def __init__(self):
        super().__init__()
        self.writes = []

    def write(self, key, value):
        self.writes.append(key)
        super().write(key, value)


# ── Collections ───────────────────────────────────────────────

class TestCollections:
    def test_add(self, store, spanish):
        assert spanish.name == 'Spanish'
        assert spanish.description == 'Basic words'
        assert spanish.card_count == 0
        assert spanish.created_at == START
        assert store.get_collection(spanish.id) == spanish

    def test_ids_are_unique(self, store):
        ids = {store.add_collection(f'c{i}').id for i in range(20)}
        assert len(ids) == 20

    def test_insertion_order(self, store):
        names = ['b', 'a', 'c']
        for name in names:
            store.add_collection(name)
        assert [c.name for c in store.collections] == names

    def test_update(self, store, spanish):
        updated = store.update_collection(spanish.id, name='Español', description='')
        assert updated.name == 'Español'
        assert updated.description == ''
        assert store.get_collection(spanish.id).name == 'Español'

    def test_update_keeps_card_count(self, store, spanish):
        store.add_card(spanish.id, 'hola', 'hello')
        assert store.update_collection(spanish.id, name='X').card_count == 1

    def test_update_rejects_derived_fields(self, store, spanish):
        with pytest.raises(ValueError):
            store.update_collection(spanish.id, card_count=10)
        assert store.get_collection(spanish.id).card_count == 0

    def test_update_missing(self, store):
        with pytest.raises(NotFound):
            store.update_collection('nope', name='x')

    def test_delete_cascades(self, store, spanish):
        other = store.add_collection('Other')
        store.add_card(spanish.id, 'hola', 'hello')
        store.add_card(spanish.id, 'adios', 'bye')
        kept = store.add_card(other.id, 'q', 'a')

        store.delete_collection(spanish.id)

        assert [c.id for c in store.collections] == [other.id]
        assert store.cards == [kept]
        assert store.stats.total_cards == 1
        assert store.verify() == []

    def test_delete_cascade_clears_hard_cards(self, store, spanish):
        card = store.add_card(spanish.id, 'hola', 'hello')
        store.record_review(card.id, 'hard')
        store.delete_collection(spanish.id)
        assert store.stats.hard_cards == frozenset()

    def test_delete_missing(self, store):
        with pytest.raises(NotFound) as exc:
            store.delete_collection('nope')
        assert exc.value.kind == 'collection'
        assert exc.value.record_id == 'nope'


# ── Cards ─────────────────────────────────────────────────────

class TestCards:
    def test_add(self, store, spanish):
        card = store.add_card(spanish.id, 'hola', 'hello')
        assert card.collection_id == spanish.id
        assert card.difficulty == MEDIUM
        assert card.next_review_date is None
        assert card.review_count == 0
        assert store.get_collection(spanish.id).card_count == 1
        assert store.stats.total_cards == 1
        assert store.stats.today_added == 1

    def test_add_to_missing_collection(self, store):
        with pytest.raises(NotFound):
            store.add_card('nope', 'q', 'a')
        assert store.cards == []
        assert store.stats.total_cards == 0
        assert store.stats.today_added == 0

    def test_new_card_is_due(self, store, spanish):
        card = store.add_card(spanish.id, 'hola', 'hello')
        assert store.cards_for_review() == [card]

    def test_update_content(self, store, spanish):
        card = store.add_card(spanish.id, 'hola', 'hello')
        updated = store.update_card(card.id, front='¡hola!', back='hi')
        assert updated.front == '¡hola!'
        assert updated.back == 'hi'
        assert updated.created_at == card.created_at

    def test_move_between_collections(self, store, spanish):
        other = store.add_collection('Other')
        card = store.add_card(spanish.id, 'hola', 'hello')

        store.update_card(card.id, collection_id=other.id)

        assert store.get_collection(spanish.id).card_count == 0
        assert store.get_collection(other.id).card_count == 1
        assert store.verify() == []

    def test_move_to_missing_collection(self, store, spanish):
        card = store.add_card(spanish.id, 'hola', 'hello')
        with pytest.raises(NotFound):
            store.update_card(card.id, collection_id='nope')
        assert store.get_card(card.id).collection_id == spanish.id

    def test_update_difficulty_tracks_hard_set(self, store, spanish):
        card = store.add_card(spanish.id, 'hola', 'hello')
        store.update_card(card.id, difficulty=HARD)
        assert store.stats.hard_cards == {card.id}
        store.update_card(card.id, difficulty=EASY)
        assert store.stats.hard_cards == frozenset()

    def test_update_bad_difficulty(self, store, spanish):
        card = store.add_card(spanish.id, 'hola', 'hello')
        with pytest.raises(ValueError):
            store.update_card(card.id, difficulty='impossible')

    def test_update_unknown_field(self, store, spanish):
        card = store.add_card(spanish.id, 'hola', 'hello')
        with pytest.raises(ValueError):
            store.update_card(card.id, id='other')

    def test_update_missing(self, store):
        with pytest.raises(NotFound):
            store.update_card('nope', front='x')

    def test_delete(self, store, spanish):
        card = store.add_card(spanish.id, 'hola', 'hello')
        store.record_review(card.id, 'hard')

        store.delete_card(card.id)

        assert store.cards == []
        assert store.get_collection(spanish.id).card_count == 0
        assert store.stats.total_cards == 0
        assert store.stats.hard_cards == frozenset()

    def test_delete_missing(self, store):
        with pytest.raises(NotFound) as exc:
            store.delete_card('nope')
        assert exc.value.kind == 'card'

    def test_cards_in_collection(self, store, spanish):
        other = store.add_collection('Other')
        a = store.add_card(spanish.id, 'a', 'a')
        store.add_card(other.id, 'b', 'b')
        assert store.cards_in_collection(spanish.id) == [a]


# ── Review ────────────────────────────────────────────────────

class TestReview:
    def test_known(self, store, spanish, clock):
        card = store.add_card(spanish.id, 'hola', 'hello')
        reviewed = store.record_review(card.id, 'known')
        assert reviewed.next_review_date == START + timedelta(days=7)
        assert reviewed.difficulty == EASY
        assert reviewed.review_count == 1
        assert store.stats.today_reviewed == 1

    def test_later(self, store, spanish):
        card = store.add_card(spanish.id, 'hola', 'hello')
        reviewed = store.record_review(card.id, 'later')
        assert reviewed.next_review_date == START + timedelta(days=1)
        assert reviewed.difficulty == MEDIUM

    def test_hard(self, store, spanish):
        card = store.add_card(spanish.id, 'hola', 'hello')
        reviewed = store.record_review(card.id, 'hard')
        assert reviewed.next_review_date == START + timedelta(minutes=10)
        assert reviewed.difficulty == HARD
        assert store.stats.hard_cards == {card.id}

    def test_hard_then_known_leaves_hard_set(self, store, spanish, clock):
        card = store.add_card(spanish.id, 'hola', 'hello')
        store.record_review(card.id, 'hard')
        clock.advance(minutes=10)
        store.record_review(card.id, 'known')
        assert store.stats.hard_cards == frozenset()
        assert store.get_card(card.id).review_count == 2

    def test_reviewed_card_leaves_due_list(self, store, spanish, clock):
        card = store.add_card(spanish.id, 'hola', 'hello')
        store.record_review(card.id, 'hard')
        assert store.cards_for_review() == []

        clock.advance(minutes=9)
        assert store.due_count() == 0
        clock.advance(minutes=1)
        assert [c.id for c in store.cards_for_review()] == [card.id]

    def test_invalid_outcome_changes_nothing(self, store, spanish, storage):
        card = store.add_card(spanish.id, 'hola', 'hello')
        before = dict(storage.records)

        with pytest.raises(InvalidOutcome):
            store.record_review(card.id, 'meh')

        assert store.get_card(card.id) == card
        assert store.stats.today_reviewed == 0
        assert storage.records == before

    def test_missing_card(self, store):
        with pytest.raises(NotFound):
            store.record_review('nope', 'known')

    def test_move_keeps_schedule(self, store, spanish):
        other = store.add_collection('Other')
        card = store.add_card(spanish.id, 'hola', 'hello')
        reviewed = store.record_review(card.id, 'known')
        moved = store.update_card(card.id, collection_id=other.id)
        assert moved.next_review_date == reviewed.next_review_date


class TestDueQuery:
    def test_filter_by_collection(self, store, spanish):
        other = store.add_collection('Other')
        a = store.add_card(spanish.id, 'a', 'a')
        store.add_card(other.id, 'b', 'b')
        assert store.cards_for_review(spanish.id) == [a]
        assert store.due_count(other.id) == 1
        assert store.due_count() == 2

    def test_explicit_now(self, store, spanish):
        card = store.add_card(spanish.id, 'a', 'a')
        store.record_review(card.id, 'later')
        assert store.cards_for_review(now=START + timedelta(days=1)) != []
        assert store.cards_for_review(now=START + timedelta(hours=23)) == []

    def test_due_exactly_at_boundary(self, store, spanish):
        card = store.add_card(spanish.id, 'a', 'a')
        reviewed = store.record_review(card.id, 'known')
        assert store.cards_for_review(now=reviewed.next_review_date) != []


# ── Daily rollover ────────────────────────────────────────────

class TestDailyRollover:
    def test_first_write_of_new_day_resets(self, store, spanish, clock):
        card = store.add_card(spanish.id, 'a', 'a')
        store.record_review(card.id, 'later')
        assert store.stats.today_added == 1
        assert store.stats.today_reviewed == 1

        clock.advance(days=1)
        store.add_card(spanish.id, 'b', 'b')

        assert store.stats.today_added == 1
        assert store.stats.today_reviewed == 0
        assert store.stats.total_cards == 2
        assert store.stats.last_updated == clock.now.date()

    def test_current_stats_is_a_view(self, store, spanish, clock):
        store.add_card(spanish.id, 'a', 'a')
        clock.advance(days=1)
        assert store.current_stats().today_added == 0
        assert store.stats.today_added == 1

    def test_reload_on_new_day(self, storage, clock):
        first = FlashcardStore(storage, clock=clock)
        collection = first.add_collection('A')
        first.add_card(collection.id, 'q', 'a')

        clock.advance(days=2)
        second = FlashcardStore(storage, clock=clock)
        assert second.stats.today_added == 0
        assert _stored(storage, 'flashcard_stats')['todayAdded'] == 0


# ── Consistency ───────────────────────────────────────────────

class TestConsistency:
    def test_counts_hold_through_mixed_operations(self, store, clock):
        a = store.add_collection('A')
        b = store.add_collection('B')
        cards = [store.add_card(a.id, f'q{i}', 'x') for i in range(5)]
        store.record_review(cards[0].id, 'hard')
        store.record_review(cards[1].id, 'hard')
        store.update_card(cards[1].id, collection_id=b.id)
        store.delete_card(cards[2].id)
        clock.advance(minutes=15)
        store.record_review(cards[0].id, 'known')
        store.delete_collection(b.id)

        assert store.verify() == []
        assert store.get_collection(a.id).card_count == 3
        assert store.stats.total_cards == 3
        assert store.stats.hard_cards == frozenset()

    def test_drift_on_load_is_logged(self, caplog):
        storage = MemoryStorage({
            'flashcard_collections': json.dumps([{'id': 'c1', 'name': 'A', 'cardCount': 4}]),
        })
        store = FlashcardStore(storage, clock=Clock())
        assert store.verify() != []
        assert 'inconsistent' in caplog.text


# ── Persistence ───────────────────────────────────────────────

class TestPersistence:
    def test_writes_only_changed_records(self, clock):
        storage = RecordingStorage()
        store = FlashcardStore(storage, clock=clock)

        storage.writes.clear()
        store.add_collection('A')
        assert storage.writes == ['flashcard_collections']

        storage.writes.clear()
        store.update_collection(store.collections[0].id, name='B')
        assert storage.writes == ['flashcard_collections']

    def test_add_card_writes_all_three(self, clock):
        storage = RecordingStorage()
        store = FlashcardStore(storage, clock=clock)
        collection = store.add_collection('A')

        storage.writes.clear()
        store.add_card(collection.id, 'q', 'a')
        assert sorted(storage.writes) == ['flashcard_cards', 'flashcard_collections', 'flashcard_stats']

    def test_failed_operation_writes_nothing(self, clock):
        storage = RecordingStorage()
        store = FlashcardStore(storage, clock=clock)

        storage.writes.clear()
        with pytest.raises(NotFound):
            store.add_card('nope', 'q', 'a')
        assert storage.writes == []

    def test_reload_restores_everything(self, storage, clock):
        first = FlashcardStore(storage, clock=clock)
        collection = first.add_collection('Spanish', 'words')
        card = first.add_card(collection.id, 'hola', 'hello')
        first.record_review(card.id, 'hard')

        second = FlashcardStore(storage, clock=clock)
        assert second.collections == first.collections
        assert second.cards == first.cards
        assert second.stats == first.stats

    def test_write_failure_keeps_memory_state(self, clock, caplog):
        class ReadOnly(MemoryStorage):
            def write(self, key, value):
                raise StorageError("read-only")

        store = FlashcardStore(ReadOnly(), clock=clock)
        collection = store.add_collection('A')
        assert store.get_collection(collection.id) == collection
        assert 'read-only' in caplog.text


# ── Listeners ─────────────────────────────────────────────────

class TestListeners:
    def test_events(self, store):
        events = []
        store.subscribe(lambda event, record_id: events.append((event, record_id)))

        collection = store.add_collection('A')
        card = store.add_card(collection.id, 'q', 'a')
        store.record_review(card.id, 'known')
        store.update_card(card.id, front='Q')
        store.delete_card(card.id)
        store.update_collection(collection.id, name='B')
        store.delete_collection(collection.id)

        assert events == [
            ('collection_added', collection.id),
            ('card_added', card.id),
            ('card_reviewed', card.id),
            ('card_updated', card.id),
            ('card_deleted', card.id),
            ('collection_updated', collection.id),
            ('collection_deleted', collection.id),
        ]

    def test_no_event_on_failure(self, store):
        events = []
        store.subscribe(lambda event, record_id: events.append(event))
        with pytest.raises(NotFound):
            store.delete_card('nope')
        assert events == []

    def test_listener_sees_committed_state(self, store):
        seen = []
        store.subscribe(lambda event, record_id: seen.append(len(store.collections)))
        store.add_collection('A')
        assert seen == [1]
