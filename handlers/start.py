import html
import logging

from telegram import Update, InlineKeyboardButton, InlineKeyboardMarkup
from telegram.ext import ApplicationHandlerStop, ContextTypes, ConversationHandler

from config import OWNER_ID
from store.store import FlashcardStore
from utils.telegram_helpers import get_store, safe_edit_text, safe_send_text
from utils.utils import plural


def build_main_menu(store: FlashcardStore, active_collection_id: str | None = None) -> tuple[str, InlineKeyboardMarkup]:
    """
    Returns (message_text, markup) for the main menu.
    Text includes a one-line summary when there are cards.
    """
    total = len(store.cards)
    due = store.due_count()

    if total == 0:
        text = "\U0001f4da <b>Flashcards</b>\n\n<i>No cards yet — add your first one!</i>"
    elif due == 0:
        text = f"✅ <b>All caught up!</b>\n\n<i>{plural(total, 'card')} in your collections</i>"
    else:
        text = f"\U0001f9e0 <b>{plural(due, 'card')} to review</b>\n\n<i>{total} cards total</i>"

    active = next((c for c in store.collections if c.id == active_collection_id), None)
    if active:
        text += f"\n\U0001f4cc Active: <b>{html.escape(active.name)}</b>"

    review_label = f'\U0001f9e0 Review · {due} due' if due > 0 else '\U0001f9e0 Review'
    markup = InlineKeyboardMarkup([
        [
            InlineKeyboardButton('\U0001f4dd New Card', callback_data='add_card'),
            InlineKeyboardButton(review_label, callback_data='review'),
        ],
        [
            InlineKeyboardButton('\U0001f4da Collections', callback_data='my_collections'),
            InlineKeyboardButton('\U0001f4ca Stats', callback_data='stats'),
        ],
        [
            InlineKeyboardButton('\U0001f4be Backup', callback_data='backup'),
            InlineKeyboardButton('❓ How it works', callback_data='help'),
        ],
    ])

    return text, markup


def menu_for(context: ContextTypes.DEFAULT_TYPE) -> tuple[str, InlineKeyboardMarkup]:
    return build_main_menu(get_store(context), context.user_data.get('active_collection_id'))


async def reject_strangers(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Runs before every other handler; drops updates that are not from the owner."""
    if OWNER_ID is None:
        return
    user = update.effective_user
    if user is None or user.id != OWNER_ID:
        logging.info(f"Ignoring update from non-owner {user.id if user else None}")
        raise ApplicationHandlerStop


async def start(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    logging.info("Started /start")

    name = update.effective_user.first_name
    text, markup = menu_for(context)
    await safe_send_text(
        update.message,
        f"Hey {html.escape(name)} \U0001f44b\n\n{text}",
        reply_markup=markup,
    )


_CONV_KEYS = (
    # add-card flow
    'cur_collection_id', 'cards_added',
    # collection flows
    'new_collection_name', 'editing_collection_id', 'editing_collection_field',
    'manage_collection_id', 'manage_page', 'manage_page_card_ids',
    # card edit flow
    'editing_card_id',
    # review flow
    'review_ids', 'review_index', 'review_outcomes', 'review_last_ids',
    # import flow
    'pending_import',
)


async def _reset_and_send_menu(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Clear all in-progress conversation state and send a fresh main menu."""
    for key in _CONV_KEYS:
        context.user_data.pop(key, None)
    text, markup = menu_for(context)
    await safe_send_text(update.message, text, reply_markup=markup)


async def force_start(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    """ConversationHandler fallback: abort current flow and show main menu."""
    await _reset_and_send_menu(update, context)
    return ConversationHandler.END


async def clear_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """/clear: reset any stuck state and show a fresh main menu."""
    await _reset_and_send_menu(update, context)


async def main_menu(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Callback handler for the 'Menu' button (outside conversation)."""
    query = update.callback_query
    await query.answer()

    text, markup = menu_for(context)
    await safe_edit_text(query, text, reply_markup=markup)


async def menu_exit(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    """'Menu' pressed inside a conversation: leave it and show the menu."""
    for key in _CONV_KEYS:
        context.user_data.pop(key, None)
    await main_menu(update, context)
    return ConversationHandler.END
