import html

from telegram import Update, InlineKeyboardMarkup
from telegram.ext import ContextTypes

from store.errors import NotFound
from store.models import EASY, HARD, Card
from store.store import FlashcardStore
from utils.constants import MENU_ROW
from utils.telegram_helpers import get_store, safe_edit_text, safe_send_text
from utils.utils import truncate

# Telegram caps a message at 4096 characters
HARD_CARDS_SHOWN = 10


def _collection_lines(store: FlashcardStore) -> str:
    if not store.collections:
        return "  <i>No collections yet</i>"

    lines = []
    for collection in store.collections:
        cards = store.cards_in_collection(collection.id)
        easy = sum(1 for card in cards if card.difficulty == EASY)
        hard = sum(1 for card in cards if card.difficulty == HARD)
        due = store.due_count(collection.id)
        due_part = f"  ·  {due} due" if due else ""
        lines.append(
            f"  {html.escape(truncate(collection.name, 30))}  ·  {collection.card_count}{due_part}\n"
            f"    ✅ {easy} easy  \U0001f534 {hard} hard"
        )
    return '\n'.join(lines)


def hard_cards(store: FlashcardStore) -> list[Card]:
    """Cards in the stats hard set, in store order."""
    hard_ids = store.current_stats().hard_cards
    return [card for card in store.cards if card.id in hard_ids]


def _hard_card_lines(store: FlashcardStore) -> str:
    cards = hard_cards(store)
    if not cards:
        return "  <i>No hard cards</i>"

    lines = []
    for card in cards[:HARD_CARDS_SHOWN]:
        try:
            collection_name = truncate(store.get_collection(card.collection_id).name, 20)
        except NotFound:
            collection_name = "—"
        lines.append(
            f"  • {html.escape(truncate(card.front, 30))} → {html.escape(truncate(card.back, 30))}"
            f"  <i>({html.escape(collection_name)})</i>"
        )
    if len(cards) > HARD_CARDS_SHOWN:
        lines.append(f"  <i>…and {len(cards) - HARD_CARDS_SHOWN} more</i>")
    return '\n'.join(lines)


def build_stats_text(store: FlashcardStore) -> str:
    stats = store.current_stats()
    return (
        f"\U0001f4ca Stats · {stats.last_updated.strftime('%b %d')}\n\n"
        f"\U0001f9e0 Reviewed today: {stats.today_reviewed}\n"
        f"\U0001f195 Added today: {stats.today_added}\n\n"
        f"\U0001f4da Total: {stats.total_cards}\n"
        f"\U0001f534 Hard: {len(stats.hard_cards)}\n"
        f"\U0001f514 Due now: {store.due_count()}\n\n"
        f"\U0001f534 Hard cards\n"
        f"{_hard_card_lines(store)}\n\n"
        f"\U0001f4c1 Collections\n"
        f"{_collection_lines(store)}"
    )


async def stats_entry(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    await query.answer()

    text = build_stats_text(get_store(context))
    await safe_edit_text(query, text, reply_markup=InlineKeyboardMarkup([MENU_ROW]))


async def stats_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """/stats slash command: send a fresh stats message."""
    text = build_stats_text(get_store(context))
    await safe_send_text(update.message, text, reply_markup=InlineKeyboardMarkup([MENU_ROW]))
