from enum import auto, IntEnum
from telegram import InlineKeyboardButton

COLLECTION_NAME_MAX = 50
COLLECTION_DESCRIPTION_MAX = 300
CARD_SIDE_MAX = 1000

# Record ids are hex from the store, but imported snapshots may carry any
# non-blank token of up to 48 bytes; so callback prefixes must never be a
# prefix of one another
ID_PATTERN = r'\S+'


class AddCardState(IntEnum):
    AWAITING_COLLECTION = auto()
    AWAITING_CONTENT = auto()


class CollectionState(IntEnum):
    AWAITING_NAME = auto()
    AWAITING_DESCRIPTION = auto()


class ReviewState(IntEnum):
    COLLECTION_PICKER = auto()
    SHOWING_FRONT = auto()
    RATING = auto()


class ManageState(IntEnum):
    EDIT_COLLECTION_FIELD = auto()
    PICK_CARD_TO_EDIT = auto()
    EDIT_CARD_CONTENT = auto()
    PICK_CARD_TO_DELETE = auto()


class TransferState(IntEnum):
    AWAITING_FILE = auto()
    CONFIRM_IMPORT = auto()


MENU_ROW = [InlineKeyboardButton("\U0001f3e0 Menu", callback_data='main_menu')]
