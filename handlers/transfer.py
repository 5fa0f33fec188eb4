"""
Backup: export everything as a JSON document, or restore one.

Import replaces all collections and cards, so the file is parsed and
previewed first and only applied after the user confirms.
"""

import logging

from telegram import Update, InlineKeyboardButton, InlineKeyboardMarkup, Message
from telegram.ext import (
    ContextTypes, ConversationHandler,
    MessageHandler, CommandHandler, CallbackQueryHandler, filters,
)

from config import IMPORT_MAX_BYTES
from handlers.start import force_start, menu_exit
from store.errors import ParseError, SnapshotError
from store.models import utcnow
from store.snapshot import parse_document
from store.store import FlashcardStore
from utils.constants import TransferState, MENU_ROW
from utils.telegram_helpers import get_store, safe_edit_text, safe_send_document, safe_send_text
from utils.utils import plural

logger = logging.getLogger(__name__)

_BACKUP_TEXT = (
    "\U0001f4be <b>Backup</b>\n\n"
    "Export sends every collection and card as a JSON file.\n"
    "Import restores such a file and <b>replaces</b> what is here now."
)


def import_error_text(error: SnapshotError) -> str:
    if isinstance(error, ParseError):
        return "❌ Import failed: that is not valid JSON."
    return f"❌ Import failed: not a flashcards backup ({error})."


def build_import_preview(store: FlashcardStore, collections: int, cards: int) -> str:
    return (
        f"♻️ Replace your {plural(len(store.collections), 'collection')} "
        f"and {plural(len(store.cards), 'card')}\n"
        f"with {plural(collections, 'collection')} and {plural(cards, 'card')} from the file?\n\n"
        f"<i>Today's counters are kept.</i>"
    )


async def backup_entry(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    await query.answer()

    await safe_edit_text(
        query,
        _BACKUP_TEXT,
        reply_markup=InlineKeyboardMarkup([
            [
                InlineKeyboardButton("⬇️ Export", callback_data='export_snapshot'),
                InlineKeyboardButton("⬆️ Import", callback_data='import_snapshot'),
            ],
            MENU_ROW,
        ]),
    )


# ── Export ────────────────────────────────────────────────────

async def _send_export(message: Message, context: ContextTypes.DEFAULT_TYPE) -> None:
    store = get_store(context)
    document = store.export_snapshot()
    filename = f"flashcards-{utcnow().date().isoformat()}.json"

    logger.info(f"Exporting {len(store.collections)} collections, {len(store.cards)} cards")
    await safe_send_document(
        message,
        document.encode('utf-8'),
        filename,
        caption=f"\U0001f4be {plural(len(store.collections), 'collection')}, {plural(len(store.cards), 'card')}",
        reply_markup=InlineKeyboardMarkup([MENU_ROW]),
    )


async def export_entry(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    await query.answer()
    await _send_export(query.message, context)


async def export_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """/export slash command."""
    await _send_export(update.message, context)


# ── Import conversation ───────────────────────────────────────

_SEND_FILE_PROMPT = (
    "⬆️ Send the backup <b>.json</b> file (or paste its text).\n"
    "<i>/cancel to abort</i>"
)


async def import_entry(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    query = update.callback_query
    await query.answer()
    await safe_edit_text(query, _SEND_FILE_PROMPT)
    return TransferState.AWAITING_FILE


async def import_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    await safe_send_text(update.message, _SEND_FILE_PROMPT)
    return TransferState.AWAITING_FILE


async def receive_file(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    document = update.message.document

    if document.file_size and document.file_size > IMPORT_MAX_BYTES:
        await safe_send_text(
            update.message,
            f"❌ File too large ({document.file_size // 1024} KB). "
            f"The limit is {IMPORT_MAX_BYTES // 1024} KB.",
        )
        return TransferState.AWAITING_FILE

    tg_file = await document.get_file()
    data = bytes(await tg_file.download_as_bytearray())
    logger.info(f"Received import file {document.file_name!r} ({len(data)} bytes)")

    return await _preview(update.message, context, data)


async def receive_pasted(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    return await _preview(update.message, context, (update.message.text or '').encode('utf-8'))


async def _preview(message: Message, context: ContextTypes.DEFAULT_TYPE, data: bytes) -> int:
    try:
        collections, cards = parse_document(data)
    except SnapshotError as e:
        logger.info(f"Rejected import: {e}")
        await safe_send_text(message, f"{import_error_text(e)}\n\nSend another file or /cancel.")
        return TransferState.AWAITING_FILE

    context.user_data['pending_import'] = data
    await safe_send_text(
        message,
        build_import_preview(get_store(context), len(collections), len(cards)),
        reply_markup=InlineKeyboardMarkup([
            [
                InlineKeyboardButton("Yes, replace", callback_data='import_yes'),
                InlineKeyboardButton("Cancel", callback_data='import_no'),
            ]
        ]),
    )
    return TransferState.CONFIRM_IMPORT


async def confirm_import(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    query = update.callback_query
    await query.answer()

    data = context.user_data.pop('pending_import', None)
    if data is None:
        await safe_edit_text(query, "⚠️ Session expired — please start over.",
                             reply_markup=InlineKeyboardMarkup([MENU_ROW]))
        return ConversationHandler.END

    try:
        result = get_store(context).import_snapshot(data)
    except SnapshotError as e:
        await safe_edit_text(query, import_error_text(e), reply_markup=InlineKeyboardMarkup([MENU_ROW]))
        return ConversationHandler.END

    await safe_edit_text(
        query,
        f"✅ Imported {plural(result.collections, 'collection')} and {plural(result.cards, 'card')}",
        reply_markup=InlineKeyboardMarkup([MENU_ROW]),
    )
    return ConversationHandler.END


async def cancel_import(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    context.user_data.pop('pending_import', None)
    text = "✖ Import cancelled — nothing changed"
    markup = InlineKeyboardMarkup([MENU_ROW])

    if update.callback_query:
        await update.callback_query.answer()
        await safe_edit_text(update.callback_query, text, reply_markup=markup)
    else:
        await safe_send_text(update.message, text, reply_markup=markup)
    return ConversationHandler.END


import_handler = ConversationHandler(
    entry_points=[
        CallbackQueryHandler(import_entry, pattern='^import_snapshot$'),
        CommandHandler('import', import_command),
    ],
    per_message=False,
    states={
        TransferState.AWAITING_FILE: [
            MessageHandler(filters.Document.ALL, receive_file),
            MessageHandler(filters.TEXT & ~filters.COMMAND, receive_pasted),
        ],
        TransferState.CONFIRM_IMPORT: [
            CallbackQueryHandler(confirm_import, pattern='^import_yes$'),
            CallbackQueryHandler(cancel_import, pattern='^import_no$'),
        ],
    },
    fallbacks=[
        CommandHandler('cancel', cancel_import),
        CommandHandler('start', force_start),
        CallbackQueryHandler(menu_exit, pattern='^main_menu$'),
    ],
)
