import html
import logging
from collections import Counter

from telegram import Update, InlineKeyboardButton, InlineKeyboardMarkup, CallbackQuery
from telegram.ext import (
    ContextTypes, ConversationHandler,
    CommandHandler, CallbackQueryHandler,
)

from handlers.start import force_start, menu_exit
from store.errors import NotFound
from store.models import Card
from store.store import FlashcardStore
from utils.constants import ReviewState, ID_PATTERN, MENU_ROW
from utils.srs import HARD, KNOWN, LATER, OUTCOMES, next_interval_label
from utils.telegram_helpers import callback_arg, get_store, safe_edit_text, safe_send_text
from utils.utils import plural, truncate

OUTCOME_LABELS = {
    KNOWN: "✅ Known",
    LATER: "\U0001f552 Later",
    HARD: "\U0001f534 Hard",
}

_NOTHING_DUE = "✨ Nothing due — you're all caught up!"


async def review_entry(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    """Entry point: user clicks 'Review'."""
    query = update.callback_query
    await query.answer()

    store = get_store(context)
    cards = store.cards_for_review()

    if not cards:
        await safe_edit_text(query, _NOTHING_DUE, reply_markup=InlineKeyboardMarkup([MENU_ROW]))
        return ConversationHandler.END

    # Group by collection to decide whether to show picker
    due_by_collection = Counter(card.collection_id for card in cards)

    if len(due_by_collection) > 1:
        text, markup = build_picker(store, due_by_collection, len(cards))
        await safe_edit_text(query, text, reply_markup=markup)
        return ReviewState.COLLECTION_PICKER

    # Single collection: start immediately
    return await _start_review(query, context, cards)


def build_picker(store: FlashcardStore, due_by_collection: Counter, total: int) -> tuple[str, InlineKeyboardMarkup]:
    buttons: list[list[InlineKeyboardButton]] = []
    for collection in store.collections:
        count = due_by_collection.get(collection.id)
        if not count:
            continue
        buttons.append([InlineKeyboardButton(
            f"\U0001f4da {truncate(collection.name, 30)}  ·  {count} due",
            callback_data=f'review_col_{collection.id}',
        )])
    buttons.append([InlineKeyboardButton(
        f"▶ All collections · {total} due",
        callback_data='review_all',
    )])

    text = f"\U0001f9e0 {plural(total, 'card')} due\n\nChoose a collection:"
    return text, InlineKeyboardMarkup(buttons)


async def review_collection_selected(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    """User picked one collection, from the picker or from the collection page."""
    query = update.callback_query
    await query.answer()

    collection_id = callback_arg(query.data, 'review_col_')
    cards = get_store(context).cards_for_review(collection_id)
    if not cards:
        await safe_edit_text(query, _NOTHING_DUE, reply_markup=InlineKeyboardMarkup([MENU_ROW]))
        return ConversationHandler.END

    return await _start_review(query, context, cards)


async def review_all_collections(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    query = update.callback_query
    await query.answer()

    cards = get_store(context).cards_for_review()
    if not cards:
        await safe_edit_text(query, _NOTHING_DUE, reply_markup=InlineKeyboardMarkup([MENU_ROW]))
        return ConversationHandler.END

    return await _start_review(query, context, cards)


async def review_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """/review slash command: sends a message with a Review button."""
    count = get_store(context).due_count()

    if count == 0:
        await safe_send_text(update.message, _NOTHING_DUE)
        return

    await safe_send_text(
        update.message,
        f"\U0001f9e0 {plural(count, 'card')} due",
        reply_markup=InlineKeyboardMarkup([
            [InlineKeyboardButton('▶ Review', callback_data='review')]
        ]),
    )


async def show_answer(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    """User taps 'Show answer': reveal back + outcome buttons."""
    query = update.callback_query
    await query.answer()

    card = _current_card(context)
    if card is None:
        return await _finish_review(query, context)

    text, markup = build_answer(get_store(context), card, _progress(context))
    await safe_edit_text(query, text, reply_markup=markup)
    return ReviewState.RATING


async def rate_card(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    """User picks an outcome: reschedule the card, move to the next one."""
    query = update.callback_query
    await query.answer()

    outcome = callback_arg(query.data, 'rate_')
    card = _current_card(context)
    if card is None:
        return await _finish_review(query, context)

    try:
        get_store(context).record_review(card.id, outcome)
    except NotFound:
        logging.info(f"Card {card.id} vanished mid-review")
    else:
        outcomes = context.user_data.setdefault('review_outcomes', {})
        outcomes[outcome] = outcomes.get(outcome, 0) + 1

    context.user_data['review_index'] = context.user_data.get('review_index', 0) + 1
    return await _show_front(query, context)


async def delete_in_review(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    query = update.callback_query
    card = _current_card(context)
    if card is not None:
        try:
            get_store(context).delete_card(card.id)
        except NotFound:
            logging.info(f"Card {card.id} already gone")
    await query.answer("\U0001f5d1️ Card deleted")

    context.user_data['review_index'] = context.user_data.get('review_index', 0) + 1
    return await _show_front(query, context)


async def cancel_review(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    """User stops mid-review. Works for both callback button and /cancel command."""
    reviewed = sum(context.user_data.get('review_outcomes', {}).values())
    _cleanup_review_data(context)

    text = f"⏹ Stopped after {plural(reviewed, 'card')}"
    markup = InlineKeyboardMarkup([MENU_ROW])

    if update.callback_query:
        await update.callback_query.answer()
        await safe_edit_text(update.callback_query, text, reply_markup=markup)
    else:
        await safe_send_text(update.message, text, reply_markup=markup)

    return ConversationHandler.END


# ── Rendering ─────────────────────────────────────────────────

def build_front(store: FlashcardStore, card: Card, progress: str) -> tuple[str, InlineKeyboardMarkup]:
    text = f"{html.escape(card.front)}\n\n<i>{_collection_name(store, card)}  ·  {progress}</i>"
    markup = InlineKeyboardMarkup([
        [InlineKeyboardButton("\U0001f440 Show answer", callback_data='show_answer')],
        [InlineKeyboardButton("⏹ Stop", callback_data='cancel_review')],
    ])
    return text, markup


def build_answer(store: FlashcardStore, card: Card, progress: str) -> tuple[str, InlineKeyboardMarkup]:
    text = (
        f"{html.escape(card.front)}\n\n"
        f"\U0001f4a1 {html.escape(card.back)}\n\n"
        f"<i>{_collection_name(store, card)}  ·  {progress}</i>"
    )
    markup = InlineKeyboardMarkup([
        [
            InlineKeyboardButton(
                f"{OUTCOME_LABELS[outcome]} {next_interval_label(outcome)}",
                callback_data=f'rate_{outcome}',
            )
            for outcome in OUTCOMES
        ],
        [
            InlineKeyboardButton("\U0001f5d1️ Delete", callback_data='review_delete'),
            InlineKeyboardButton("⏹ Stop", callback_data='cancel_review'),
        ],
    ])
    return text, markup


def build_summary(outcomes: dict[str, int]) -> str:
    total = sum(outcomes.values())
    if total == 0:
        return "\U0001f389 Done!"
    parts = [f"{OUTCOME_LABELS[o]} {outcomes[o]}" for o in OUTCOMES if outcomes.get(o)]
    text = f"\U0001f389 Done! {plural(total, 'card')} reviewed\n\n" + '\n'.join(parts)
    if outcomes.get(HARD):
        text += f"\n\n<i>Hard cards come back in {next_interval_label(HARD)}.</i>"
    return text


def _collection_name(store: FlashcardStore, card: Card) -> str:
    try:
        return html.escape(store.get_collection(card.collection_id).name)
    except NotFound:
        return "—"


def _progress(context: ContextTypes.DEFAULT_TYPE) -> str:
    index = context.user_data.get('review_index', 0)
    return f"{index + 1}/{len(context.user_data.get('review_ids', []))}"


def _current_card(context: ContextTypes.DEFAULT_TYPE) -> Card | None:
    """The card at review_index, skipping any deleted since the session began."""
    store = get_store(context)
    ids = context.user_data.get('review_ids', [])
    index = context.user_data.get('review_index', 0)

    while index < len(ids):
        try:
            card = store.get_card(ids[index])
        except NotFound:
            index += 1
            continue
        context.user_data['review_index'] = index
        return card

    context.user_data['review_index'] = index
    return None


async def _start_review(query: CallbackQuery, context: ContextTypes.DEFAULT_TYPE, cards: list[Card]) -> int:
    """Set up review state and show the first card."""
    context.user_data['review_ids'] = [card.id for card in cards]
    context.user_data['review_index'] = 0
    context.user_data['review_outcomes'] = {}

    return await _show_front(query, context)


async def _show_front(query: CallbackQuery, context: ContextTypes.DEFAULT_TYPE) -> int:
    card = _current_card(context)
    if card is None:
        return await _finish_review(query, context)

    text, markup = build_front(get_store(context), card, _progress(context))
    await safe_edit_text(query, text, reply_markup=markup)
    return ReviewState.SHOWING_FRONT


def build_finish_markup(can_restart: bool) -> InlineKeyboardMarkup:
    buttons: list[list[InlineKeyboardButton]] = []
    if can_restart:
        buttons.append([InlineKeyboardButton("\U0001f501 Review again", callback_data='review_again')])
    buttons.append([
        InlineKeyboardButton("\U0001f4dd New Card", callback_data='add_card'),
        InlineKeyboardButton("\U0001f3e0 Menu", callback_data='main_menu'),
    ])
    return InlineKeyboardMarkup(buttons)


async def _finish_review(query: CallbackQuery, context: ContextTypes.DEFAULT_TYPE) -> int:
    """Show review summary and end conversation."""
    text = build_summary(context.user_data.get('review_outcomes', {}))
    finished_ids = context.user_data.get('review_ids', [])
    _cleanup_review_data(context)

    context.user_data['review_last_ids'] = finished_ids
    await safe_edit_text(query, text, reply_markup=build_finish_markup(bool(finished_ids)))
    return ConversationHandler.END


async def review_again(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    """Restart the session that just finished, due or not."""
    query = update.callback_query
    await query.answer()

    store = get_store(context)
    cards = []
    for card_id in context.user_data.pop('review_last_ids', []):
        try:
            cards.append(store.get_card(card_id))
        except NotFound:
            continue

    if not cards:
        await safe_edit_text(query, "\U0001f5c3 Those cards are gone.", reply_markup=InlineKeyboardMarkup([MENU_ROW]))
        return ConversationHandler.END

    return await _start_review(query, context, cards)


def _cleanup_review_data(context: ContextTypes.DEFAULT_TYPE) -> None:
    context.user_data.pop('review_ids', None)
    context.user_data.pop('review_index', None)
    context.user_data.pop('review_outcomes', None)


review_handler = ConversationHandler(
    entry_points=[
        CallbackQueryHandler(review_entry, pattern='^review$'),
        CallbackQueryHandler(review_collection_selected, pattern=rf'^review_col_{ID_PATTERN}$'),
        CallbackQueryHandler(review_again, pattern='^review_again$'),
    ],
    per_message=False,
    states={
        ReviewState.COLLECTION_PICKER: [
            CallbackQueryHandler(review_collection_selected, pattern=rf'^review_col_{ID_PATTERN}$'),
            CallbackQueryHandler(review_all_collections, pattern='^review_all$'),
        ],
        ReviewState.SHOWING_FRONT: [
            CallbackQueryHandler(show_answer, pattern='^show_answer$'),
            CallbackQueryHandler(cancel_review, pattern='^cancel_review$'),
        ],
        ReviewState.RATING: [
            CallbackQueryHandler(rate_card, pattern=f"^rate_({'|'.join(OUTCOMES)})$"),
            CallbackQueryHandler(delete_in_review, pattern='^review_delete$'),
            CallbackQueryHandler(cancel_review, pattern='^cancel_review$'),
        ],
    },
    fallbacks=[
        CommandHandler('cancel', cancel_review),
        CommandHandler('start', force_start),
        CallbackQueryHandler(menu_exit, pattern='^main_menu$'),
    ],
)
