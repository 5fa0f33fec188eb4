import html
import logging

from telegram import Update, InlineKeyboardButton, InlineKeyboardMarkup, CallbackQuery, Message
from telegram.ext import (
    ContextTypes, ConversationHandler,
    MessageHandler, CommandHandler, CallbackQueryHandler, filters,
)

from handlers.collections import check_name, find_by_name, show_collections
from handlers.start import force_start, menu_exit
from store.errors import NotFound
from store.models import HARD
from store.store import FlashcardStore
from utils.constants import (
    ManageState, COLLECTION_DESCRIPTION_MAX, CARD_SIDE_MAX, ID_PATTERN, MENU_ROW,
)
from utils.telegram_helpers import callback_arg, get_store, safe_edit_text, safe_send_text
from utils.utils import parse_text, plural, truncate

CARDS_PER_PAGE = 5
FRONT_MAX = 30

_BACK_TO_LIST = InlineKeyboardMarkup([
    [InlineKeyboardButton('\U0001f4da Collections', callback_data='my_collections')]
])


def build_collection_detail(
    store: FlashcardStore,
    collection_id: str,
    page: int = 0,
    active_id: str | None = None,
) -> tuple[str, InlineKeyboardMarkup, list[str]]:
    """
    Returns (text, markup, ids of the cards listed on this page).
    Raises NotFound if the collection is gone.
    """
    collection = store.get_collection(collection_id)
    cards = store.cards_in_collection(collection_id)
    due = store.due_count(collection_id)

    total = len(cards)
    total_pages = max(1, (total + CARDS_PER_PAGE - 1) // CARDS_PER_PAGE)
    page = max(0, min(page, total_pages - 1))

    start = page * CARDS_PER_PAGE
    page_cards = cards[start:start + CARDS_PER_PAGE]

    lines = []
    for i, card in enumerate(page_cards, start=1):
        marker = ' \U0001f534' if card.difficulty == HARD else ''
        lines.append(f"{i}. {html.escape(truncate(card.front, FRONT_MAX))}{marker}")
    card_list = '\n'.join(lines) if lines else '<i>No cards yet</i>'

    header = f"<b>\U0001f4da {html.escape(collection.name)}</b> · {plural(total, 'card')}"
    if total_pages > 1:
        header += f"  ({page + 1}/{total_pages})"
    if due:
        header += f"\n\U0001f514 {due} due"
    if collection.id == active_id:
        header += "\n\U0001f4cc Active collection"
    if collection.description:
        header += f"\n<i>{html.escape(collection.description)}</i>"

    text = f"{header}\n\n{card_list}"

    buttons: list[list[InlineKeyboardButton]] = []

    if total_pages > 1:
        nav: list[InlineKeyboardButton] = []
        if page > 0:
            nav.append(InlineKeyboardButton('←', callback_data=f'col_page_{collection_id}_{page - 1}'))
        if page < total_pages - 1:
            nav.append(InlineKeyboardButton('→', callback_data=f'col_page_{collection_id}_{page + 1}'))
        buttons.append(nav)

    if due:
        buttons.append([InlineKeyboardButton(f'\U0001f9e0 Review {due}', callback_data=f'review_col_{collection_id}')])

    if total > 0:
        buttons.append([
            InlineKeyboardButton('✏️ Edit card', callback_data=f'card_edit_pick_{collection_id}'),
            InlineKeyboardButton('\U0001f5d1️ Delete card', callback_data=f'card_del_pick_{collection_id}'),
        ])

    if collection.id != active_id:
        buttons.append([InlineKeyboardButton('\U0001f4cc Set active', callback_data=f'col_pin_{collection_id}')])

    buttons.append([
        InlineKeyboardButton('✏️ Rename', callback_data=f'col_rename_{collection_id}'),
        InlineKeyboardButton('\U0001f4dd Description', callback_data=f'col_describe_{collection_id}'),
    ])
    buttons.append([
        InlineKeyboardButton('\U0001f5d1️ Delete collection', callback_data=f'col_del_ask_{collection_id}'),
    ])
    buttons.append([InlineKeyboardButton('\U0001f4da Collections', callback_data='my_collections')])

    return text, InlineKeyboardMarkup(buttons), [card.id for card in page_cards]


def _remember_page(context: ContextTypes.DEFAULT_TYPE, collection_id: str, page: int, card_ids: list[str]) -> None:
    context.user_data['manage_collection_id'] = collection_id
    context.user_data['manage_page'] = page
    context.user_data['manage_page_card_ids'] = card_ids


async def _show_detail(query: CallbackQuery, context: ContextTypes.DEFAULT_TYPE, collection_id: str, page: int = 0) -> None:
    try:
        text, markup, card_ids = build_collection_detail(
            get_store(context), collection_id, page, context.user_data.get('active_collection_id')
        )
    except NotFound:
        await safe_edit_text(query, "Collection not found.", reply_markup=_BACK_TO_LIST)
        return

    _remember_page(context, collection_id, page, card_ids)
    await safe_edit_text(query, text, reply_markup=markup)


async def _send_detail(message: Message, context: ContextTypes.DEFAULT_TYPE) -> None:
    collection_id = context.user_data.get('manage_collection_id')
    page = context.user_data.get('manage_page', 0)
    try:
        text, markup, card_ids = build_collection_detail(
            get_store(context), collection_id, page, context.user_data.get('active_collection_id')
        )
    except NotFound:
        await safe_send_text(message, "Collection not found.", reply_markup=_BACK_TO_LIST)
        return

    _remember_page(context, collection_id, page, card_ids)
    await safe_send_text(message, text, reply_markup=markup)


# ── Standalone callbacks ──────────────────────────────────────

async def collection_open(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    await query.answer()
    await _show_detail(query, context, callback_arg(query.data, 'col_open_'))


async def collection_cards_page(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    await query.answer()
    collection_id, page = callback_arg(query.data, 'col_page_').rsplit('_', 1)
    await _show_detail(query, context, collection_id, int(page))


async def collection_pin(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    collection_id = callback_arg(query.data, 'col_pin_')
    context.user_data['active_collection_id'] = collection_id
    await query.answer("\U0001f4cc Set as active")
    await _show_detail(query, context, collection_id, context.user_data.get('manage_page', 0))


async def collection_delete_confirm(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    await query.answer()
    collection_id = callback_arg(query.data, 'col_del_ask_')

    store = get_store(context)
    try:
        collection = store.get_collection(collection_id)
    except NotFound:
        await safe_edit_text(query, "Collection not found.", reply_markup=_BACK_TO_LIST)
        return

    count = collection.card_count
    await safe_edit_text(
        query,
        f"\U0001f5d1️ Delete <b>{html.escape(collection.name)}</b> and its {plural(count, 'card')}?\n"
        f"<i>This cannot be undone.</i>",
        reply_markup=InlineKeyboardMarkup([
            [
                InlineKeyboardButton('Yes, delete', callback_data=f'col_del_yes_{collection_id}'),
                InlineKeyboardButton('Cancel', callback_data=f'col_open_{collection_id}'),
            ]
        ]),
    )


async def collection_delete_yes(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    await query.answer()
    collection_id = callback_arg(query.data, 'col_del_yes_')

    try:
        get_store(context).delete_collection(collection_id)
    except NotFound:
        logging.info(f"Collection {collection_id} already gone")

    context.user_data.pop('manage_collection_id', None)
    context.user_data.pop('manage_page', None)
    context.user_data.pop('manage_page_card_ids', None)

    # Straight back to the list
    await show_collections(query, context)


# ── Rename / describe collection conversation ─────────────────

async def start_edit_collection(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    query = update.callback_query
    await query.answer()

    if query.data.startswith('col_rename_'):
        field, collection_id = 'name', callback_arg(query.data, 'col_rename_')
    else:
        field, collection_id = 'description', callback_arg(query.data, 'col_describe_')

    try:
        collection = get_store(context).get_collection(collection_id)
    except NotFound:
        await safe_edit_text(query, "Collection not found.", reply_markup=_BACK_TO_LIST)
        return ConversationHandler.END

    context.user_data['editing_collection_id'] = collection_id
    context.user_data['editing_collection_field'] = field

    current = getattr(collection, field)
    shown = f"<code>{html.escape(current)}</code>" if current else "<i>(empty)</i>"
    prompt = "New name?" if field == 'name' else "New description? /skip to clear it."
    await safe_edit_text(query, f"✏️ Now: {shown}\n\n{prompt}\n<i>/cancel to abort</i>")
    return ManageState.EDIT_COLLECTION_FIELD


async def receive_collection_field(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    value = (update.message.text or '').strip()
    field = context.user_data.get('editing_collection_field', 'name')
    collection_id = context.user_data.get('editing_collection_id')
    store = get_store(context)

    if field == 'name':
        complaint = check_name(value)
        if complaint:
            await safe_send_text(update.message, complaint)
            return ManageState.EDIT_COLLECTION_FIELD
        same_name = find_by_name(store, value)
        if same_name and same_name.id != collection_id:
            await safe_send_text(update.message, f"⚠️ \"{html.escape(value)}\" already exists. Try again:")
            return ManageState.EDIT_COLLECTION_FIELD
    elif len(value) > COLLECTION_DESCRIPTION_MAX:
        await safe_send_text(update.message, f"⚠️ Too long — {COLLECTION_DESCRIPTION_MAX} characters max. Try again:")
        return ManageState.EDIT_COLLECTION_FIELD

    return await _save_collection_field(update.message, context, value)


async def clear_description(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    if context.user_data.get('editing_collection_field') != 'description':
        await safe_send_text(update.message, "A name is required. Send one or /cancel:")
        return ManageState.EDIT_COLLECTION_FIELD
    return await _save_collection_field(update.message, context, '')


async def _save_collection_field(message: Message, context: ContextTypes.DEFAULT_TYPE, value: str) -> int:
    collection_id = context.user_data.pop('editing_collection_id', None)
    field = context.user_data.pop('editing_collection_field', 'name')

    try:
        get_store(context).update_collection(collection_id, **{field: value})
    except NotFound:
        await safe_send_text(message, "Collection not found.", reply_markup=_BACK_TO_LIST)
        return ConversationHandler.END

    context.user_data['manage_collection_id'] = collection_id
    await safe_send_text(message, "✔️ Saved")
    await _send_detail(message, context)
    return ConversationHandler.END


# ── Pick card to edit conversation ────────────────────────────

def _picked_card_id(context: ContextTypes.DEFAULT_TYPE, text: str) -> str | None:
    """Card id for a 1-based number on the current page."""
    card_ids = context.user_data.get('manage_page_card_ids', [])
    try:
        n = int(text.strip())
    except ValueError:
        return None
    if not (1 <= n <= len(card_ids)):
        return None
    return card_ids[n - 1]


def _page_size(context: ContextTypes.DEFAULT_TYPE) -> int:
    return len(context.user_data.get('manage_page_card_ids', []))


async def pick_card_to_edit_entry(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    query = update.callback_query
    await query.answer()
    context.user_data['manage_collection_id'] = callback_arg(query.data, 'card_edit_pick_')

    count = _page_size(context)
    await safe_edit_text(
        query,
        f"✏️ <b>Edit which card?</b>\n\nSend a number 1–{count}.\n<i>/cancel to abort</i>",
    )
    return ManageState.PICK_CARD_TO_EDIT


async def receive_pick_edit(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    picked = _picked_card_id(context, update.message.text)
    if picked is None:
        await safe_send_text(update.message, f"❌ Send a number between 1 and {_page_size(context)}:")
        return ManageState.PICK_CARD_TO_EDIT

    try:
        card = get_store(context).get_card(picked)
    except NotFound:
        await safe_send_text(update.message, "Card not found.", reply_markup=_BACK_TO_LIST)
        return ConversationHandler.END

    context.user_data['editing_card_id'] = card.id
    copyable = f"{card.front} | {card.back}" if card.back else card.front
    await safe_send_text(
        update.message,
        f"✏️ <b>Edit card</b>\n\n"
        f"<code>{html.escape(copyable)}</code>\n\n"
        f"<i>Tap the text above to copy, edit and send.\n/cancel to abort</i>",
    )
    return ManageState.EDIT_CARD_CONTENT


async def receive_edit_content(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    sides = parse_text(update.message.text or '')
    if not sides['front'] or not sides['back']:
        await safe_send_text(update.message, "⚠️ Both sides are needed: <code>front | back</code>")
        return ManageState.EDIT_CARD_CONTENT
    if len(sides['front']) > CARD_SIDE_MAX or len(sides['back']) > CARD_SIDE_MAX:
        await safe_send_text(update.message, f"⚠️ Each side can be {CARD_SIDE_MAX} characters max.")
        return ManageState.EDIT_CARD_CONTENT

    card_id = context.user_data.pop('editing_card_id', None)
    try:
        get_store(context).update_card(card_id, front=sides['front'], back=sides['back'])
    except NotFound:
        await safe_send_text(update.message, "Card not found.", reply_markup=_BACK_TO_LIST)
        return ConversationHandler.END

    await safe_send_text(update.message, "✔️ Card updated")
    await _send_detail(update.message, context)
    return ConversationHandler.END


# ── Pick card to delete conversation ──────────────────────────

async def pick_card_to_delete_entry(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    query = update.callback_query
    await query.answer()
    context.user_data['manage_collection_id'] = callback_arg(query.data, 'card_del_pick_')

    count = _page_size(context)
    await safe_edit_text(
        query,
        f"\U0001f5d1️ <b>Delete which card?</b>\n\nSend a number 1–{count}.\n<i>/cancel to abort</i>",
    )
    return ManageState.PICK_CARD_TO_DELETE


async def receive_pick_delete(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    picked = _picked_card_id(context, update.message.text)
    if picked is None:
        await safe_send_text(update.message, f"❌ Send a number between 1 and {_page_size(context)}:")
        return ManageState.PICK_CARD_TO_DELETE

    try:
        get_store(context).delete_card(picked)
    except NotFound:
        logging.info(f"Card {picked} already gone")

    await safe_send_text(update.message, "\U0001f5d1️ Card deleted")
    await _send_detail(update.message, context)
    return ConversationHandler.END


async def cancel_manage(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    context.user_data.pop('editing_card_id', None)
    context.user_data.pop('editing_collection_id', None)
    context.user_data.pop('editing_collection_field', None)

    await safe_send_text(update.message, "✖ Cancelled", reply_markup=InlineKeyboardMarkup([MENU_ROW]))
    return ConversationHandler.END


# ── ConversationHandlers ──────────────────────────────────────

_FALLBACKS = [
    CommandHandler('cancel', cancel_manage),
    CommandHandler('start', force_start),
    CallbackQueryHandler(menu_exit, pattern='^main_menu$'),
]

edit_collection_handler = ConversationHandler(
    entry_points=[
        CallbackQueryHandler(start_edit_collection, pattern=rf'^col_rename_{ID_PATTERN}$'),
        CallbackQueryHandler(start_edit_collection, pattern=rf'^col_describe_{ID_PATTERN}$'),
    ],
    per_message=False,
    states={
        ManageState.EDIT_COLLECTION_FIELD: [
            CommandHandler('skip', clear_description),
            MessageHandler(filters.TEXT & ~filters.COMMAND, receive_collection_field),
        ],
    },
    fallbacks=_FALLBACKS,
)

pick_edit_handler = ConversationHandler(
    entry_points=[CallbackQueryHandler(pick_card_to_edit_entry, pattern=rf'^card_edit_pick_{ID_PATTERN}$')],
    per_message=False,
    states={
        ManageState.PICK_CARD_TO_EDIT: [
            MessageHandler(filters.TEXT & ~filters.COMMAND, receive_pick_edit),
        ],
        ManageState.EDIT_CARD_CONTENT: [
            MessageHandler(filters.TEXT & ~filters.COMMAND, receive_edit_content),
        ],
    },
    fallbacks=_FALLBACKS,
)

pick_delete_handler = ConversationHandler(
    entry_points=[CallbackQueryHandler(pick_card_to_delete_entry, pattern=rf'^card_del_pick_{ID_PATTERN}$')],
    per_message=False,
    states={
        ManageState.PICK_CARD_TO_DELETE: [
            MessageHandler(filters.TEXT & ~filters.COMMAND, receive_pick_delete),
        ],
    },
    fallbacks=_FALLBACKS,
)
