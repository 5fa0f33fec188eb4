"""
Statistics reducers.

Every function takes a Stats record and returns a new one; nothing here
touches storage. The store calls these from inside its transaction so the
counters move in the same step as the cards they describe.
"""

from collections import Counter
from dataclasses import replace
from datetime import date
from typing import Iterable

from store.models import HARD, Card, Collection, Stats


def roll_over(stats: Stats, today: date) -> Stats:
    """Zero the daily counters on the first operation of a new day."""
    if stats.last_updated == today:
        return stats
    return replace(stats, today_reviewed=0, today_added=0, last_updated=today)


def count_card(stats: Stats, card: Card, delta: int) -> Stats:
    """Account for a card entering (+1) or leaving (-1) the store."""
    total = max(0, stats.total_cards + delta)
    if delta < 0:
        hard_cards = stats.hard_cards - {card.id}
    elif card.difficulty == HARD:
        hard_cards = stats.hard_cards | {card.id}
    else:
        hard_cards = stats.hard_cards
    return replace(stats, total_cards=total, hard_cards=hard_cards)


def mark_difficulty(stats: Stats, card_id: str, difficulty: str) -> Stats:
    if difficulty == HARD:
        if card_id in stats.hard_cards:
            return stats
        return replace(stats, hard_cards=stats.hard_cards | {card_id})
    if card_id not in stats.hard_cards:
        return stats
    return replace(stats, hard_cards=stats.hard_cards - {card_id})


def note_added(stats: Stats) -> Stats:
    return replace(stats, today_added=stats.today_added + 1)


def note_reviewed(stats: Stats) -> Stats:
    return replace(stats, today_reviewed=stats.today_reviewed + 1)


def rebuild(stats: Stats, cards: Iterable[Card]) -> Stats:
    """Recompute totals from scratch. Only an import replaces cards wholesale."""
    cards = list(cards)
    return replace(
        stats,
        total_cards=len(cards),
        hard_cards=frozenset(card.id for card in cards if card.difficulty == HARD),
    )


def find_drift(stats: Stats, collections: Iterable[Collection], cards: Iterable[Card]) -> list[str]:
    """List every derived counter that disagrees with the records it summarizes."""
    cards = list(cards)
    problems: list[str] = []

    members = Counter(card.collection_id for card in cards)
    for collection in collections:
        actual = members.get(collection.id, 0)
        if collection.card_count != actual:
            problems.append(
                f"collection {collection.id}: card_count={collection.card_count}, actual={actual}"
            )

    if stats.total_cards != len(cards):
        problems.append(f"total_cards={stats.total_cards}, actual={len(cards)}")

    hard = {card.id for card in cards if card.difficulty == HARD}
    if set(stats.hard_cards) != hard:
        missing = sorted(hard - stats.hard_cards)
        extra = sorted(stats.hard_cards - hard)
        problems.append(f"hard_cards drift: missing={missing}, extra={extra}")

    return problems
