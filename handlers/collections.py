import html
import logging

from telegram import Update, InlineKeyboardButton, InlineKeyboardMarkup, CallbackQuery, Message
from telegram.ext import (
    ContextTypes, ConversationHandler,
    MessageHandler, CommandHandler, CallbackQueryHandler, filters,
)

from handlers.start import force_start, menu_exit
from store.models import Collection
from store.store import FlashcardStore
from utils.constants import (
    CollectionState, COLLECTION_NAME_MAX, COLLECTION_DESCRIPTION_MAX, MENU_ROW,
)
from utils.telegram_helpers import get_store, safe_edit_text, safe_send_text
from utils.utils import truncate

COLLECTIONS_PER_PAGE = 5

_EMPTY_TEXT = (
    "\U0001f4da No collections yet\n\n"
    "Create one to start adding cards."
)
_EMPTY_MARKUP = InlineKeyboardMarkup([
    [InlineKeyboardButton("➕ New collection", callback_data='new_collection')],
    MENU_ROW,
])


# ── Collection list ───────────────────────────────────────────

def _collection_button(store: FlashcardStore, collection: Collection, active_id: str | None) -> InlineKeyboardButton:
    """Build a single collection row button."""
    due = store.due_count(collection.id)
    due_part = f"  ❗ {due} due" if due > 0 else ""
    pin = "\U0001f4cc " if collection.id == active_id else ""
    label = f"{pin}\U0001f4da {truncate(collection.name, 30)} · {collection.card_count} cards{due_part}"
    return InlineKeyboardButton(label, callback_data=f"col_open_{collection.id}")


def build_collections_page(
    store: FlashcardStore,
    page: int,
    active_id: str | None = None,
) -> tuple[str, InlineKeyboardMarkup]:
    collections = store.collections
    total_pages = max(1, (len(collections) + COLLECTIONS_PER_PAGE - 1) // COLLECTIONS_PER_PAGE)
    page = max(0, min(page, total_pages - 1))

    start = page * COLLECTIONS_PER_PAGE
    page_collections = collections[start:start + COLLECTIONS_PER_PAGE]

    if total_pages > 1:
        header = f"\U0001f4da Collections ({page + 1}/{total_pages})"
    else:
        header = "\U0001f4da Collections"

    buttons: list[list[InlineKeyboardButton]] = [
        [_collection_button(store, c, active_id)] for c in page_collections
    ]

    if total_pages > 1:
        nav: list[InlineKeyboardButton] = []
        if page > 0:
            nav.append(InlineKeyboardButton("←", callback_data=f'cols_page_{page - 1}'))
        if page < total_pages - 1:
            nav.append(InlineKeyboardButton("→", callback_data=f'cols_page_{page + 1}'))
        buttons.append(nav)

    buttons.append([InlineKeyboardButton("➕ New collection", callback_data='new_collection')])
    buttons.append(MENU_ROW)

    return header, InlineKeyboardMarkup(buttons)


async def show_collections(query: CallbackQuery, context: ContextTypes.DEFAULT_TYPE, page: int = 0) -> None:
    store = get_store(context)
    if not store.collections:
        await safe_edit_text(query, _EMPTY_TEXT, reply_markup=_EMPTY_MARKUP)
        return

    header, markup = build_collections_page(store, page, context.user_data.get('active_collection_id'))
    await safe_edit_text(query, header, reply_markup=markup)


async def my_collections_entry(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Entry point from main menu: show first page of collections."""
    query = update.callback_query
    await query.answer()
    await show_collections(query, context)


async def collections_page(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    await query.answer()

    page = int(query.data.rsplit('_', 1)[1])  # cols_page_N
    await show_collections(query, context, page)


async def collections_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """/collections slash command: send a fresh collection list."""
    store = get_store(context)
    if not store.collections:
        await safe_send_text(update.message, _EMPTY_TEXT, reply_markup=_EMPTY_MARKUP)
        return

    header, markup = build_collections_page(store, 0, context.user_data.get('active_collection_id'))
    await safe_send_text(update.message, header, reply_markup=markup)


# ── New collection conversation ───────────────────────────────

def check_name(name: str) -> str | None:
    """Returns a complaint for the user, or None if the name is fine."""
    if not name:
        return "⚠️ Name can't be empty. Try again:"
    if len(name) > COLLECTION_NAME_MAX:
        return f"⚠️ Too long — {COLLECTION_NAME_MAX} characters max. Try again:"
    return None


def find_by_name(store: FlashcardStore, name: str) -> Collection | None:
    folded = name.casefold()
    return next((c for c in store.collections if c.name.casefold() == folded), None)


async def new_collection_entry(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    query = update.callback_query
    await query.answer()

    await safe_edit_text(query, "✏️ Name for the new collection:\n<i>/cancel to abort</i>")
    return CollectionState.AWAITING_NAME


async def receive_name(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    name = (update.message.text or '').strip()

    complaint = check_name(name)
    if complaint:
        await safe_send_text(update.message, complaint)
        return CollectionState.AWAITING_NAME

    if find_by_name(get_store(context), name):
        await safe_send_text(
            update.message,
            f"⚠️ \"{html.escape(name)}\" already exists. Pick a different name:"
        )
        return CollectionState.AWAITING_NAME

    context.user_data['new_collection_name'] = name
    await safe_send_text(
        update.message,
        "\U0001f4dd Add a short description, or /skip",
    )
    return CollectionState.AWAITING_DESCRIPTION


async def receive_description(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    description = (update.message.text or '').strip()
    if len(description) > COLLECTION_DESCRIPTION_MAX:
        await safe_send_text(
            update.message,
            f"⚠️ Too long — {COLLECTION_DESCRIPTION_MAX} characters max. Try again or /skip:"
        )
        return CollectionState.AWAITING_DESCRIPTION
    return await _create(update.message, context, description)


async def skip_description(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    return await _create(update.message, context, '')


async def _create(message: Message, context: ContextTypes.DEFAULT_TYPE, description: str) -> int:
    name = context.user_data.pop('new_collection_name', None)
    if not name:
        await safe_send_text(message, "⚠️ Session expired — please start over.")
        return ConversationHandler.END

    collection = get_store(context).add_collection(name, description)
    # A fresh collection is almost always where the next cards go
    context.user_data['active_collection_id'] = collection.id
    logging.info(f"Collection {collection.id} created from chat")

    await safe_send_text(
        message,
        f"✅ Collection <b>{html.escape(name)}</b> created and set as active.",
        reply_markup=InlineKeyboardMarkup([
            [InlineKeyboardButton("\U0001f4dd Add cards", callback_data='add_card')],
            [InlineKeyboardButton("\U0001f4da Collections", callback_data='my_collections')],
        ]),
    )
    return ConversationHandler.END


async def cancel_new_collection(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    context.user_data.pop('new_collection_name', None)
    await safe_send_text(
        update.message,
        "✖ Cancelled",
        reply_markup=InlineKeyboardMarkup([MENU_ROW]),
    )
    return ConversationHandler.END


new_collection_handler = ConversationHandler(
    entry_points=[CallbackQueryHandler(new_collection_entry, pattern='^new_collection$')],
    per_message=False,
    states={
        CollectionState.AWAITING_NAME: [
            MessageHandler(filters.TEXT & ~filters.COMMAND, receive_name),
        ],
        CollectionState.AWAITING_DESCRIPTION: [
            CommandHandler('skip', skip_description),
            MessageHandler(filters.TEXT & ~filters.COMMAND, receive_description),
        ],
    },
    fallbacks=[
        CommandHandler('cancel', cancel_new_collection),
        CommandHandler('start', force_start),
        CallbackQueryHandler(menu_exit, pattern='^main_menu$'),
    ],
)
