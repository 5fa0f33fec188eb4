import html
import logging

from telegram import Update, InlineKeyboardButton, InlineKeyboardMarkup, CallbackQuery
from telegram.ext import (
    ContextTypes, ConversationHandler,
    MessageHandler, CommandHandler, CallbackQueryHandler, filters,
)

from handlers.start import force_start, menu_exit
from store.errors import NotFound
from utils.constants import AddCardState, CARD_SIDE_MAX, ID_PATTERN, MENU_ROW
from utils.telegram_helpers import callback_arg, get_store, safe_edit_text, safe_send_text
from utils.utils import collection_buttons, parse_text, plural

CONTENT_HINT = "<i>Use <code>front | back</code> or put the answer on the next line</i>"


def _content_markup() -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup([
        [
            InlineKeyboardButton("\U0001f4c1 Change", callback_data='change_collection'),
            InlineKeyboardButton("✔ Done", callback_data='done_adding'),
        ],
    ])


async def add_card_entry(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    query = update.callback_query
    await query.answer()

    store = get_store(context)
    context.user_data['cards_added'] = 0

    if not store.collections:
        await safe_edit_text(
            query,
            "\U0001f4da Cards live in collections — create one first.",
            reply_markup=InlineKeyboardMarkup([
                [InlineKeyboardButton("➕ New collection", callback_data='new_collection')],
                MENU_ROW,
            ]),
        )
        return ConversationHandler.END

    active_id = context.user_data.get('active_collection_id')
    try:
        collection = store.get_collection(active_id) if active_id else None
    except NotFound:
        logging.info(f"Active collection {active_id} is gone")
        context.user_data.pop('active_collection_id', None)
        collection = None

    if collection is None and len(store.collections) == 1:
        collection = store.collections[0]

    if collection is None:
        return await _ask_collection(query, context)

    context.user_data['cur_collection_id'] = collection.id
    await safe_edit_text(
        query,
        f"\U0001f4dd Send me a card\n\n{CONTENT_HINT}\n\n"
        f"\U0001f4c1 {html.escape(collection.name)}",
        reply_markup=_content_markup(),
    )
    return AddCardState.AWAITING_CONTENT


async def _ask_collection(query: CallbackQuery, context: ContextTypes.DEFAULT_TYPE) -> int:
    buttons = collection_buttons(get_store(context).collections, 'pick_col')
    buttons.append(MENU_ROW)
    await safe_edit_text(query, "\U0001f4c1 Which collection?", reply_markup=InlineKeyboardMarkup(buttons))
    return AddCardState.AWAITING_COLLECTION


async def change_collection(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    query = update.callback_query
    await query.answer()
    return await _ask_collection(query, context)


async def picked_collection(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    query = update.callback_query
    await query.answer()

    collection_id = callback_arg(query.data, 'pick_col_')
    try:
        collection = get_store(context).get_collection(collection_id)
    except NotFound:
        return await _ask_collection(query, context)

    context.user_data['cur_collection_id'] = collection.id
    context.user_data['active_collection_id'] = collection.id

    await safe_edit_text(
        query,
        f"\U0001f4dd Send me a card\n\n{CONTENT_HINT}\n\n"
        f"\U0001f4c1 {html.escape(collection.name)}",
        reply_markup=_content_markup(),
    )
    return AddCardState.AWAITING_CONTENT


async def receive_content(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    sides = parse_text(update.message.text or '')

    if not sides['front'] or not sides['back']:
        await safe_send_text(
            update.message,
            f"⚠️ A card needs a front and a back.\n\n{CONTENT_HINT}",
        )
        return AddCardState.AWAITING_CONTENT

    if len(sides['front']) > CARD_SIDE_MAX or len(sides['back']) > CARD_SIDE_MAX:
        await safe_send_text(update.message, f"⚠️ Each side can be {CARD_SIDE_MAX} characters max.")
        return AddCardState.AWAITING_CONTENT

    store = get_store(context)
    collection_id = context.user_data.get('cur_collection_id')
    try:
        store.add_card(collection_id, sides['front'], sides['back'])
    except NotFound:
        await safe_send_text(
            update.message,
            "⚠️ That collection was deleted. Pick another one from the menu.",
            reply_markup=InlineKeyboardMarkup([MENU_ROW]),
        )
        context.user_data.pop('cur_collection_id', None)
        return ConversationHandler.END

    context.user_data['cards_added'] = context.user_data.get('cards_added', 0) + 1
    collection = store.get_collection(collection_id)

    await safe_send_text(
        update.message,
        f"✅ Saved to <b>{html.escape(collection.name)}</b> "
        f"({plural(collection.card_count, 'card')})\n\n"
        f"<i>Send the next one, or tap Done.</i>",
        reply_markup=_content_markup(),
    )
    return AddCardState.AWAITING_CONTENT


async def done_adding(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    query = update.callback_query
    await query.answer()

    added = context.user_data.pop('cards_added', 0)
    context.user_data.pop('cur_collection_id', None)

    await safe_edit_text(
        query,
        f"\U0001f44d Added {plural(added, 'card')}",
        reply_markup=InlineKeyboardMarkup([
            [InlineKeyboardButton("\U0001f9e0 Review", callback_data='review')],
            MENU_ROW,
        ]),
    )
    return ConversationHandler.END


async def cancel_add(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    added = context.user_data.pop('cards_added', 0)
    context.user_data.pop('cur_collection_id', None)

    await safe_send_text(
        update.message,
        f"✖ Stopped after {plural(added, 'card')}",
        reply_markup=InlineKeyboardMarkup([MENU_ROW]),
    )
    return ConversationHandler.END


add_card_handler = ConversationHandler(
    entry_points=[CallbackQueryHandler(add_card_entry, pattern='^add_card$')],
    per_message=False,
    states={
        AddCardState.AWAITING_COLLECTION: [
            CallbackQueryHandler(picked_collection, pattern=rf'^pick_col_{ID_PATTERN}$'),
        ],
        AddCardState.AWAITING_CONTENT: [
            CallbackQueryHandler(change_collection, pattern='^change_collection$'),
            CallbackQueryHandler(done_adding, pattern='^done_adding$'),
            MessageHandler(filters.TEXT & ~filters.COMMAND, receive_content),
        ],
    },
    fallbacks=[
        CommandHandler('cancel', cancel_add),
        CommandHandler('start', force_start),
        CallbackQueryHandler(menu_exit, pattern='^main_menu$'),
    ],
)
