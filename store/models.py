"""
Records held by the flashcard store.

All three are frozen dataclasses: the store swaps whole records instead of
mutating them, so a failed operation can never leave half-applied state.
to_dict / from_dict convert to the camelCase JSON shape used for storage and
snapshots.
"""

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any

EASY = 'easy'
MEDIUM = 'medium'
HARD = 'hard'
DIFFICULTIES = (EASY, MEDIUM, HARD)


# ── Timestamps ────────────────────────────────────────────────

def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def truncate_ms(moment: datetime) -> datetime:
    """Drop sub-millisecond precision so a timestamp survives a JSON round-trip."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.replace(microsecond=moment.microsecond // 1000 * 1000)


def format_timestamp(moment: datetime) -> str:
    """2024-05-01T10:00:00.000Z"""
    moment = truncate_ms(moment).astimezone(timezone.utc)
    return moment.isoformat(timespec='milliseconds').replace('+00:00', 'Z')


def parse_timestamp(value: str) -> datetime:
    if not isinstance(value, str):
        raise TypeError(f"timestamp must be a string, got {type(value).__name__}")
    text = value.strip()
    if text.endswith(('Z', 'z')):
        text = text[:-1] + '+00:00'
    return truncate_ms(datetime.fromisoformat(text))


def _optional_timestamp(value: Any) -> datetime | None:
    if value is None or value == '':
        return None
    return parse_timestamp(value)


def _count(value: Any) -> int:
    # bool is an int subclass; refuse it so `true` never becomes 1
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"count must be an integer, got {value!r}")
    return max(0, value)


def _text(value: Any) -> str:
    if not isinstance(value, str):
        raise TypeError(f"expected a string, got {value!r}")
    return value


def new_id(taken=()) -> str:
    while True:
        candidate = uuid.uuid4().hex[:12]
        if candidate not in taken:
            return candidate


# ── Records ───────────────────────────────────────────────────

@dataclass(frozen=True)
class Collection:
    """
    A named group of cards.

    card_count is a cache of how many cards point at this collection; only
    the store's transaction path is allowed to change it.
    """

    id: str
    name: str
    description: str = ''
    card_count: int = 0
    created_at: datetime = field(default_factory=lambda: truncate_ms(utcnow()))

    def to_dict(self) -> dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'cardCount': self.card_count,
            'createdAt': format_timestamp(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> 'Collection':
        created_at = data.get('createdAt')
        return cls(
            id=_text(data['id']),
            name=_text(data['name']),
            description=_text(data.get('description') or ''),
            card_count=_count(data.get('cardCount', 0)),
            created_at=parse_timestamp(created_at) if created_at else truncate_ms(utcnow()),
        )


@dataclass(frozen=True)
class Card:
    """A front/back pair with its own review schedule."""

    id: str
    collection_id: str
    front: str
    back: str
    difficulty: str = MEDIUM
    next_review_date: datetime | None = None
    review_count: int = 0
    created_at: datetime = field(default_factory=lambda: truncate_ms(utcnow()))

    def is_due(self, now: datetime) -> bool:
        return self.next_review_date is None or self.next_review_date <= now

    def to_dict(self) -> dict[str, Any]:
        return {
            'id': self.id,
            'collectionId': self.collection_id,
            'front': self.front,
            'back': self.back,
            'difficulty': self.difficulty,
            'nextReviewDate': (
                format_timestamp(self.next_review_date) if self.next_review_date else None
            ),
            'reviewCount': self.review_count,
            'createdAt': format_timestamp(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> 'Card':
        difficulty = data.get('difficulty', MEDIUM)
        if difficulty not in DIFFICULTIES:
            raise ValueError(f"unknown difficulty: {difficulty!r}")
        created_at = data.get('createdAt')
        return cls(
            id=_text(data['id']),
            collection_id=_text(data['collectionId']),
            front=_text(data['front']),
            back=_text(data['back']),
            difficulty=difficulty,
            next_review_date=_optional_timestamp(data.get('nextReviewDate')),
            review_count=_count(data.get('reviewCount', 0)),
            created_at=parse_timestamp(created_at) if created_at else truncate_ms(utcnow()),
        )


@dataclass(frozen=True)
class Stats:
    """
    Process-wide counters derived from store mutations.

    hard_cards holds ids only; the cards themselves belong to the store.
    """

    today_reviewed: int = 0
    today_added: int = 0
    total_cards: int = 0
    hard_cards: frozenset[str] = frozenset()
    last_updated: date = field(default_factory=lambda: utcnow().date())

    def to_dict(self) -> dict[str, Any]:
        return {
            'todayReviewed': self.today_reviewed,
            'todayAdded': self.today_added,
            'totalCards': self.total_cards,
            'hardCards': sorted(self.hard_cards),
            'lastUpdated': self.last_updated.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> 'Stats':
        hard_cards = data.get('hardCards') or []
        if not isinstance(hard_cards, list):
            raise TypeError(f"hardCards must be a list, got {hard_cards!r}")
        last_updated = data.get('lastUpdated')
        return cls(
            today_reviewed=_count(data.get('todayReviewed', 0)),
            today_added=_count(data.get('todayAdded', 0)),
            total_cards=_count(data.get('totalCards', 0)),
            hard_cards=frozenset(_text(card_id) for card_id in hard_cards),
            # older records stored a full ISO timestamp here
            last_updated=date.fromisoformat(last_updated[:10]) if last_updated else utcnow().date(),
        )
