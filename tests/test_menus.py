"""
Tests for the text/markup builders in handlers/: pure functions over a store,
no Telegram network calls, no async.
"""
import json
from collections import Counter
from datetime import datetime, timezone
from types import SimpleNamespace

import pytest

from bot import forget_missing_collections
from database.storage import MemoryStorage
from handlers.collections import COLLECTIONS_PER_PAGE, build_collections_page, check_name, find_by_name
from handlers.manage import CARDS_PER_PAGE, build_collection_detail
from handlers.review import build_answer, build_front, build_picker, build_summary
from handlers.start import build_main_menu
from handlers.stats import HARD_CARDS_SHOWN, build_stats_text
from handlers.transfer import build_import_preview, import_error_text
from store.errors import FormatError, NotFound, ParseError
from store.snapshot import MAX_ID_BYTES
from store.store import FlashcardStore
from utils.srs import HARD, KNOWN, LATER

NOW = datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc)


@pytest.fixture()
def store():
    return FlashcardStore(MemoryStorage(), clock=lambda: NOW)


def _callbacks(markup):
    return [button.callback_data for row in markup.inline_keyboard for button in row]


# ── Main menu ─────────────────────────────────────────────────

class TestMainMenu:
    def test_empty(self, store):
        text, markup = build_main_menu(store)
        assert 'No cards yet' in text
        assert _callbacks(markup) == ['add_card', 'review', 'my_collections', 'stats', 'backup', 'help']

    def test_due_count_shown(self, store):
        collection = store.add_collection('A')
        store.add_card(collection.id, 'q1', 'a')
        store.add_card(collection.id, 'q2', 'a')
        text, markup = build_main_menu(store)
        assert '2 cards to review' in text
        assert '2 due' in markup.inline_keyboard[0][1].text

    def test_all_caught_up(self, store):
        collection = store.add_collection('A')
        card = store.add_card(collection.id, 'q', 'a')
        store.record_review(card.id, KNOWN)
        text, _ = build_main_menu(store)
        assert 'All caught up' in text

    def test_active_collection_escaped(self, store):
        collection = store.add_collection('<b>Tags</b>')
        text, _ = build_main_menu(store, collection.id)
        assert '&lt;b&gt;Tags&lt;/b&gt;' in text

    def test_unknown_active_ignored(self, store):
        text, _ = build_main_menu(store, 'gone')
        assert 'Active' not in text


# ── Stats ─────────────────────────────────────────────────────

class TestStatsText:
    def test_counts(self, store):
        collection = store.add_collection('Spanish')
        a = store.add_card(collection.id, 'a', 'a')
        store.add_card(collection.id, 'b', 'b')
        store.record_review(a.id, HARD)

        text = build_stats_text(store)
        assert 'Reviewed today: 1' in text
        assert 'Added today: 2' in text
        assert 'Total: 2' in text
        assert 'Hard: 1' in text
        assert 'Due now: 1' in text
        assert 'Spanish' in text

    def test_no_collections(self, store):
        assert 'No collections yet' in build_stats_text(store)

    def test_lists_hard_cards_with_collection(self, store):
        collection = store.add_collection('Spanish')
        hard = store.add_card(collection.id, 'perro', 'dog')
        store.add_card(collection.id, 'gato', 'cat')
        store.record_review(hard.id, HARD)

        text = build_stats_text(store)
        assert 'perro → dog' in text
        assert '(Spanish)' in text
        assert 'gato' not in text

    def test_orphan_hard_card_shows_placeholder(self, store):
        store.import_snapshot(json.dumps({
            'collections': [],
            'cards': [{'id': 'k1', 'collectionId': 'gone', 'front': 'q &', 'back': 'a', 'difficulty': 'hard'}],
        }))
        text = build_stats_text(store)
        assert 'q &amp; → a' in text
        assert '(—)' in text

    def test_no_hard_cards(self, store):
        assert 'No hard cards' in build_stats_text(store)

    def test_hard_list_is_capped(self, store):
        collection = store.add_collection('A')
        for i in range(HARD_CARDS_SHOWN + 3):
            store.update_card(store.add_card(collection.id, f'q{i}', 'a').id, difficulty=HARD)
        text = build_stats_text(store)
        assert '…and 3 more' in text
        assert f'q{HARD_CARDS_SHOWN} ' not in text

    def test_easy_and_hard_per_collection(self, store):
        spanish = store.add_collection('Spanish')
        german = store.add_collection('German')
        a = store.add_card(spanish.id, 'a', 'a')
        b = store.add_card(spanish.id, 'b', 'b')
        store.add_card(spanish.id, 'c', 'c')
        store.record_review(a.id, KNOWN)
        store.record_review(b.id, HARD)
        store.add_card(german.id, 'd', 'd')

        lines = build_stats_text(store).split('Collections\n', 1)[1].split('\n')
        assert 'Spanish' in lines[0]
        assert lines[1].strip() == '✅ 1 easy  \U0001f534 1 hard'
        assert 'German' in lines[2]
        assert lines[3].strip() == '✅ 0 easy  \U0001f534 0 hard'


# ── Collections list ──────────────────────────────────────────

class TestCollectionsPage:
    def test_single_page(self, store):
        store.add_collection('A')
        header, markup = build_collections_page(store, 0)
        assert '(' not in header
        assert 'new_collection' in _callbacks(markup)

    def test_pagination(self, store):
        for i in range(COLLECTIONS_PER_PAGE + 2):
            store.add_collection(f'c{i}')
        header, markup = build_collections_page(store, 1)
        assert '(2/2)' in header
        callbacks = _callbacks(markup)
        assert 'cols_page_0' in callbacks
        assert 'cols_page_2' not in callbacks

    def test_page_clamped(self, store):
        store.add_collection('A')
        header, _ = build_collections_page(store, 99)
        assert header == '\U0001f4da Collections'

    def test_active_pinned(self, store):
        collection = store.add_collection('A')
        _, markup = build_collections_page(store, 0, collection.id)
        assert markup.inline_keyboard[0][0].text.startswith('\U0001f4cc')


class TestNames:
    def test_check_name(self):
        assert check_name('') is not None
        assert check_name('x' * 51) is not None
        assert check_name('Spanish') is None

    def test_find_by_name_ignores_case(self, store):
        collection = store.add_collection('Spanish')
        assert find_by_name(store, 'SPANISH') == collection
        assert find_by_name(store, 'German') is None


# ── Collection detail ─────────────────────────────────────────

class TestCollectionDetail:
    def test_lists_cards(self, store):
        collection = store.add_collection('Spanish', 'words & phrases')
        card = store.add_card(collection.id, 'hola', 'hello')
        store.record_review(card.id, HARD)

        text, markup, card_ids = build_collection_detail(store, collection.id)
        assert '1. hola \U0001f534' in text
        assert 'words &amp; phrases' in text
        assert card_ids == [card.id]
        callbacks = _callbacks(markup)
        assert f'card_edit_pick_{collection.id}' in callbacks
        assert f'col_pin_{collection.id}' in callbacks

    def test_review_button_only_when_due(self, store):
        collection = store.add_collection('A')
        card = store.add_card(collection.id, 'q', 'a')
        _, markup, _ = build_collection_detail(store, collection.id)
        assert f'review_col_{collection.id}' in _callbacks(markup)

        store.record_review(card.id, KNOWN)
        _, markup, _ = build_collection_detail(store, collection.id)
        assert f'review_col_{collection.id}' not in _callbacks(markup)

    def test_pages(self, store):
        collection = store.add_collection('A')
        for i in range(CARDS_PER_PAGE + 1):
            store.add_card(collection.id, f'q{i}', 'a')
        text, markup, card_ids = build_collection_detail(store, collection.id, page=1)
        assert len(card_ids) == 1
        assert '(2/2)' in text
        assert f'col_page_{collection.id}_0' in _callbacks(markup)

    def test_active_hides_pin(self, store):
        collection = store.add_collection('A')
        text, markup, _ = build_collection_detail(store, collection.id, active_id=collection.id)
        assert 'Active collection' in text
        assert f'col_pin_{collection.id}' not in _callbacks(markup)

    def test_missing(self, store):
        with pytest.raises(NotFound):
            build_collection_detail(store, 'gone')


# ── Review screens ────────────────────────────────────────────

class TestReviewScreens:
    def test_picker(self, store):
        a = store.add_collection('A')
        b = store.add_collection('B')
        store.add_card(a.id, 'q', 'a')
        store.add_card(b.id, 'q', 'a')
        store.add_card(b.id, 'q', 'a')

        due = Counter(card.collection_id for card in store.cards_for_review())
        text, markup = build_picker(store, due, 3)
        assert '3 cards due' in text
        assert _callbacks(markup) == [f'review_col_{a.id}', f'review_col_{b.id}', 'review_all']

    def test_front_hides_back(self, store):
        collection = store.add_collection('A')
        card = store.add_card(collection.id, 'x < y', 'secret')
        text, markup = build_front(store, card, '1/1')
        assert 'x &lt; y' in text
        assert 'secret' not in text
        assert _callbacks(markup) == ['show_answer', 'cancel_review']

    def test_answer_offers_three_outcomes(self, store):
        collection = store.add_collection('A')
        card = store.add_card(collection.id, 'q', 'a')
        text, markup = build_answer(store, card, '1/1')
        assert 'a' in text
        outcome_row = markup.inline_keyboard[0]
        assert [b.callback_data for b in outcome_row] == ['rate_known', 'rate_later', 'rate_hard']
        assert '7d' in outcome_row[0].text
        assert '1d' in outcome_row[1].text
        assert '10m' in outcome_row[2].text

    def test_orphan_card_shows_placeholder(self, store):
        store.import_snapshot(
            '{"collections": [], "cards": [{"id": "k1", "collectionId": "gone", "front": "q", "back": "a"}]}'
        )
        text, _ = build_front(store, store.get_card('k1'), '1/1')
        assert '—' in text

    def test_summary(self):
        text = build_summary({KNOWN: 2, HARD: 1})
        assert '3 cards reviewed' in text
        assert '10m' in text

    def test_summary_without_hard(self):
        text = build_summary({KNOWN: 1, LATER: 1})
        assert '10m' not in text

    def test_summary_empty(self):
        assert build_summary({}) == '\U0001f389 Done!'


# ── Backup ────────────────────────────────────────────────────

class TestBackupTexts:
    def test_preview_counts(self, store):
        store.add_collection('A')
        text = build_import_preview(store, 3, 10)
        assert '1 collection' in text
        assert '3 collections and 10 cards' in text

    def test_error_texts(self):
        assert 'not valid JSON' in import_error_text(ParseError('x'))
        assert 'missing thing' in import_error_text(FormatError('missing thing'))


# ── Active collection bookkeeping ─────────────────────────────

class TestForgetMissingCollections:
    def test_unpins_deleted(self, store):
        kept = store.add_collection('Kept')
        doomed = store.add_collection('Doomed')
        application = SimpleNamespace(user_data={
            1: {'active_collection_id': doomed.id},
            2: {'active_collection_id': kept.id},
            3: {},
        })
        store.subscribe(forget_missing_collections(application, store))

        store.delete_collection(doomed.id)

        assert 'active_collection_id' not in application.user_data[1]
        assert application.user_data[2]['active_collection_id'] == kept.id

    def test_unpins_after_import(self, store):
        collection = store.add_collection('A')
        application = SimpleNamespace(user_data={1: {'active_collection_id': collection.id}})
        store.subscribe(forget_missing_collections(application, store))

        store.import_snapshot('{"collections": [], "cards": []}')

        assert application.user_data[1] == {}


# ── Button payload size ───────────────────────────────────────

class TestCallbackDataFits:
    def test_longest_ids_fit_telegram_limit(self, store):
        long_id = 'c' * MAX_ID_BYTES
        cards = [
            {'id': f'{i:0{MAX_ID_BYTES}d}', 'collectionId': long_id, 'front': 'q', 'back': 'a'}
            for i in range(CARDS_PER_PAGE * 3)
        ]
        store.import_snapshot(json.dumps({
            'collections': [{'id': long_id, 'name': 'Long'}, {'id': 'other', 'name': 'Other'}],
            'cards': cards + [{'id': 'k', 'collectionId': 'other', 'front': 'q', 'back': 'a'}],
        }))

        markups = [
            build_collection_detail(store, long_id, page=1)[1],
            build_collections_page(store, 0)[1],
            build_picker(store, Counter(card.collection_id for card in store.cards_for_review()), 16)[1],
        ]
        callbacks = [data for markup in markups for data in _callbacks(markup)]
        assert f'col_del_ask_{long_id}' in callbacks
        assert f'col_page_{long_id}_2' in callbacks
        assert all(len(data.encode('utf-8')) <= 64 for data in callbacks)
