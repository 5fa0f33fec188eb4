"""
Safe wrappers for Telegram API calls, plus access to the shared store.

Every handler uses these instead of raw query.edit_message_text / bot.send_message.
If the API call fails, these recover gracefully instead of crashing the handler.

All callers must:
  - Pass parse_mode='HTML' (the default here)
  - Wrap every piece of user-supplied text in html.escape() before embedding it
    in a format string. User content = card.front, card.back, collection.name,
    collection.description, or anything read back from an imported snapshot.

Safe pattern:
    await safe_edit_text(query, f"Collection: <b>{html.escape(collection.name)}</b>")
"""

import logging
from typing import Any

from telegram import CallbackQuery, InlineKeyboardMarkup, Message
from telegram.error import BadRequest, Forbidden, TimedOut, NetworkError
from telegram.ext import ContextTypes

from store.store import FlashcardStore

logger = logging.getLogger(__name__)


def get_store(context: ContextTypes.DEFAULT_TYPE) -> FlashcardStore:
    """The application's single store, placed in bot_data at startup."""
    return context.bot_data['store']


def callback_arg(data: str, prefix: str) -> str:
    """'col_open_ab12' with prefix 'col_open_' -> 'ab12'"""
    return data[len(prefix):] if data.startswith(prefix) else data


async def safe_edit_text(
    query: CallbackQuery,
    text: str,
    reply_markup: InlineKeyboardMarkup | None = None,
    parse_mode: str = 'HTML',
) -> bool:
    """Edit a callback query's message text. Falls back to reply on failure."""
    try:
        await query.edit_message_text(text, reply_markup=reply_markup, parse_mode=parse_mode)
        return True
    except BadRequest as e:
        msg = str(e).lower()
        if "message is not modified" in msg:
            return True  # same content, harmless
        if "message to edit not found" not in msg:
            logger.warning(f"safe_edit_text BadRequest: {e}")
        return await _fallback_reply(query, text, reply_markup, parse_mode)
    except (TimedOut, NetworkError) as e:
        logger.warning(f"safe_edit_text network error: {e}")
        return False


async def safe_send_text(
    target: Message | tuple[int, Any],
    text: str,
    reply_markup: InlineKeyboardMarkup | None = None,
    parse_mode: str = 'HTML',
) -> bool:
    """Send a text message. target can be Message or (chat_id, bot) tuple."""
    try:
        if hasattr(target, 'reply_text'):
            await target.reply_text(text, reply_markup=reply_markup, parse_mode=parse_mode)  # type: ignore[union-attr]
        else:
            chat_id, bot = target
            await bot.send_message(chat_id=chat_id, text=text, reply_markup=reply_markup, parse_mode=parse_mode)
        return True
    except Forbidden:
        logger.warning("Bot was blocked by user")
        return False
    except (TimedOut, NetworkError) as e:
        logger.warning(f"safe_send_text network error: {e}")
        return False
    except BadRequest as e:
        logger.warning(f"safe_send_text BadRequest: {e}")
        return False


async def safe_send_document(
    target: Message,
    data: bytes,
    filename: str,
    caption: str | None = None,
    reply_markup: InlineKeyboardMarkup | None = None,
) -> bool:
    """Send raw bytes as a file attachment."""
    try:
        await target.reply_document(
            document=data,
            filename=filename,
            caption=caption,
            reply_markup=reply_markup,
            parse_mode='HTML',
        )
        return True
    except Forbidden:
        logger.warning("Bot was blocked by user")
        return False
    except (TimedOut, NetworkError) as e:
        logger.warning(f"safe_send_document network error: {e}")
        return False
    except BadRequest as e:
        logger.warning(f"safe_send_document BadRequest: {e}")
        return False


async def _fallback_reply(
    query: CallbackQuery,
    text: str,
    reply_markup: InlineKeyboardMarkup | None,
    parse_mode: str = 'HTML',
) -> bool:
    """When edit fails, try sending a new message instead."""
    try:
        await query.message.reply_text(text, reply_markup=reply_markup, parse_mode=parse_mode)
        return True
    except (BadRequest, Forbidden, TimedOut, NetworkError) as e:
        logger.warning(f"_fallback_reply also failed: {e}")
        return False
