from telegram import InlineKeyboardButton

from store.models import Collection


def parse_text(content: str) -> dict[str, str]:
    """
    Split a message into card sides.

    `front | back` splits on the first pipe; otherwise the first non-blank
    line is the front and the remaining lines are the back.

    returns: {'front': str, 'back': str}
    """
    text = content.strip()

    if '|' in text:
        front, back = text.split('|', 1)
        return {'front': front.strip(), 'back': back.strip()}

    if '\n' in text:
        lines = [line.strip() for line in text.split('\n') if line.strip()]
        if len(lines) >= 2:
            return {'front': lines[0], 'back': '\n'.join(lines[1:])}

    return {'front': text, 'back': ''}


def truncate(text: str, max_len: int) -> str:
    text = ' '.join(text.split())
    return text if len(text) <= max_len else text[:max_len - 1] + '…'


def plural(count: int, word: str) -> str:
    return f"{count} {word}{'s' if count != 1 else ''}"


def collection_buttons(collections: list[Collection], prefix: str) -> list[list[InlineKeyboardButton]]:
    buttons: list[list[InlineKeyboardButton]] = []
    for collection in collections:
        buttons.append([
            InlineKeyboardButton(
                f"\U0001f4da {truncate(collection.name, 40)}",
                callback_data=f"{prefix}_{collection.id}"
            )
        ])
    return buttons
