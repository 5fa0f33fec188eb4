import logging

logging.basicConfig(
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    level=logging.INFO
)

from telegram import Update
from telegram.error import BadRequest, Forbidden, TimedOut, NetworkError
from telegram.ext import (
    Application,
    ApplicationBuilder,
    CommandHandler,
    CallbackQueryHandler,
    ContextTypes,
    TypeHandler,
)

from config import TG_BOT_TOKEN, PROXY_URL, DB_PATH
from database.storage import SqliteStorage
from store.store import FlashcardStore
import handlers.cards as hand_card
import handlers.collections as hand_cols
import handlers.help as hand_help
import handlers.manage as hand_manage
import handlers.review as hand_review
import handlers.start as hand_start
import handlers.stats as hand_stats
import handlers.transfer as hand_transfer
from utils.constants import ID_PATTERN


def forget_missing_collections(application: Application, store: FlashcardStore):
    """Store listener: drop pinned collections that no longer exist."""
    def listener(event: str, record_id: str | None) -> None:
        if event not in ('collection_deleted', 'snapshot_imported'):
            return
        existing = {collection.id for collection in store.collections}
        for user_data in application.user_data.values():
            active_id = user_data.get('active_collection_id')
            if active_id is not None and active_id not in existing:
                user_data.pop('active_collection_id', None)
                logging.info(f"Unpinned missing collection {active_id}")

    return listener


def main() -> None:
    logging.info("Running main")

    storage = SqliteStorage(DB_PATH)
    storage.init()
    store = FlashcardStore(storage)

    builder = ApplicationBuilder().token(TG_BOT_TOKEN)
    if PROXY_URL:
        builder = builder.proxy(PROXY_URL).get_updates_proxy(PROXY_URL)
    application = builder.build()

    application.bot_data['store'] = store
    store.subscribe(forget_missing_collections(application, store))

    # Owner check runs before everything else
    application.add_handler(TypeHandler(Update, hand_start.reject_strangers), group=-1)

    # Conversations
    application.add_handler(CommandHandler('start', hand_start.start))
    application.add_handler(hand_card.add_card_handler)
    application.add_handler(hand_review.review_handler)
    application.add_handler(hand_cols.new_collection_handler)
    application.add_handler(hand_manage.edit_collection_handler)
    application.add_handler(hand_manage.pick_edit_handler)
    application.add_handler(hand_manage.pick_delete_handler)
    application.add_handler(hand_transfer.import_handler)

    # Slash commands
    application.add_handler(CommandHandler('review', hand_review.review_command))
    application.add_handler(CommandHandler('stats', hand_stats.stats_command))
    application.add_handler(CommandHandler('collections', hand_cols.collections_command))
    application.add_handler(CommandHandler('export', hand_transfer.export_command))
    application.add_handler(CommandHandler('help', hand_help.help_command))
    application.add_handler(CommandHandler('clear', hand_start.clear_command))

    # Standalone callback handlers
    application.add_handler(CallbackQueryHandler(hand_start.main_menu, pattern='^main_menu$'))
    application.add_handler(CallbackQueryHandler(hand_stats.stats_entry, pattern='^stats$'))
    application.add_handler(CallbackQueryHandler(hand_help.help_entry, pattern='^help$'))
    application.add_handler(CallbackQueryHandler(hand_transfer.backup_entry, pattern='^backup$'))
    application.add_handler(CallbackQueryHandler(hand_transfer.export_entry, pattern='^export_snapshot$'))

    # Collections
    application.add_handler(CallbackQueryHandler(hand_cols.my_collections_entry, pattern='^my_collections$'))
    application.add_handler(CallbackQueryHandler(hand_cols.collections_page, pattern=r'^cols_page_\d+$'))

    # Collection detail
    application.add_handler(CallbackQueryHandler(hand_manage.collection_open, pattern=rf'^col_open_{ID_PATTERN}$'))
    application.add_handler(CallbackQueryHandler(hand_manage.collection_cards_page, pattern=rf'^col_page_{ID_PATTERN}_\d+$'))
    application.add_handler(CallbackQueryHandler(hand_manage.collection_pin, pattern=rf'^col_pin_{ID_PATTERN}$'))
    application.add_handler(CallbackQueryHandler(hand_manage.collection_delete_confirm, pattern=rf'^col_del_ask_{ID_PATTERN}$'))
    application.add_handler(CallbackQueryHandler(hand_manage.collection_delete_yes, pattern=rf'^col_del_yes_{ID_PATTERN}$'))

    application.add_error_handler(error_handler)
    application.run_polling()


async def error_handler(update: object, context: ContextTypes.DEFAULT_TYPE):
    """Global error handler: logs the error and tries to notify the user."""
    error = context.error
    logging.error(f"Update {update} caused error: {error}", exc_info=error)

    if isinstance(error, Forbidden):
        # User blocked the bot
        logging.warning(f"Bot was blocked by user: {error}")
        return

    if isinstance(error, (TimedOut, NetworkError)):
        logging.warning(f"Network issue: {error}")
        return

    if isinstance(error, BadRequest):
        msg = str(error).lower()
        if "message is not modified" in msg:
            # User tapped the same button twice
            return
        if "message to edit not found" in msg or "message to delete not found" in msg:
            return
        logging.warning(f"Bad request: {error}")

    if isinstance(update, Update) and update.effective_chat:
        try:
            await context.bot.send_message(
                chat_id=update.effective_chat.id,
                text="⚠️ Something went wrong. Try /start to reset."
            )
        except (BadRequest, Forbidden, TimedOut, NetworkError) as e:
            logging.warning(f"Could not notify user about the error: {e}")


if __name__ == '__main__':
    logging.info("Starting app")
    main()
