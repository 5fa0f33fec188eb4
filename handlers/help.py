from telegram import Update, InlineKeyboardButton, InlineKeyboardMarkup
from telegram.ext import ContextTypes

from utils.srs import HARD, KNOWN, LATER, next_interval_label
from utils.telegram_helpers import safe_edit_text, safe_send_text


HELP_TEXT = (
    "<b>❓ How it works</b>\n\n"
    "1. Create a collection and add cards to it\n"
    "2. Send <code>front | back</code> or two lines to make a card\n"
    "3. Hit Review when cards are due\n"
    "4. Pick how it went:\n"
    f"   ✅ Known — back in {next_interval_label(KNOWN)}\n"
    f"   \U0001f552 Later — back in {next_interval_label(LATER)}\n"
    f"   \U0001f534 Hard — back in {next_interval_label(HARD)}\n\n"
    "Use Backup to export everything as a JSON file or restore one.\n"
    "/cancel leaves any flow, /clear resets a stuck one."
)

_MARKUP = InlineKeyboardMarkup([
    [InlineKeyboardButton("Menu", callback_data='main_menu')]
])


async def help_entry(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    await query.answer()
    await safe_edit_text(query, HELP_TEXT, reply_markup=_MARKUP)


async def help_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    await safe_send_text(update.message, HELP_TEXT, reply_markup=_MARKUP)
