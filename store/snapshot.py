"""
Portable JSON snapshot of collections and cards.

    {"collections": [...], "cards": [...], "exportedAt": "2024-05-01T10:00:00.000Z"}

Stats are not part of a snapshot; the importer recomputes the totals.
"""

import json
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable

from store.errors import FormatError, ParseError
from store.models import Card, Collection, format_timestamp

# Ids end up in chat button payloads, which are capped at 64 bytes
# including the longest action prefix
MAX_ID_BYTES = 48


@dataclass(frozen=True)
class ImportResult:
    collections: int
    cards: int


def export_document(
    collections: Iterable[Collection],
    cards: Iterable[Card],
    exported_at: datetime,
) -> str:
    data = {
        'collections': [collection.to_dict() for collection in collections],
        'cards': [card.to_dict() for card in cards],
        'exportedAt': format_timestamp(exported_at),
    }
    return json.dumps(data, indent=2, ensure_ascii=False)


def parse_document(text: str | bytes) -> tuple[list[Collection], list[Card]]:
    """
    Decode a snapshot without touching any state.

    Raises ParseError if the text is not JSON, FormatError if it is JSON but
    not a snapshot (missing arrays, malformed entries, duplicate ids).
    """
    try:
        data = json.loads(text)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ParseError(f"not valid JSON: {e}") from e

    if not isinstance(data, dict):
        raise FormatError("snapshot must be a JSON object")

    raw_collections = data.get('collections')
    raw_cards = data.get('cards')
    if not isinstance(raw_collections, list) or not isinstance(raw_cards, list):
        raise FormatError("snapshot needs both a 'collections' and a 'cards' array")

    collections = _decode_all(raw_collections, Collection, 'collection')
    cards = _decode_all(raw_cards, Card, 'card')
    return collections, cards


def _decode_all(entries: list[Any], record_type: type, label: str) -> list:
    records = []
    seen: set[str] = set()

    for position, entry in enumerate(entries):
        if not isinstance(entry, dict):
            raise FormatError(f"{label} #{position + 1} is not an object")
        try:
            record = record_type.from_dict(entry)
        except KeyError as e:
            raise FormatError(f"{label} #{position + 1} is missing {e.args[0]!r}") from e
        except (TypeError, ValueError) as e:
            raise FormatError(f"{label} #{position + 1} is malformed: {e}") from e

        _check_id(record.id, label, position)
        if record.id in seen:
            raise FormatError(f"duplicate {label} id: {record.id}")
        seen.add(record.id)
        records.append(record)

    return records


def _check_id(record_id: str, label: str, position: int) -> None:
    if not record_id or any(ch.isspace() for ch in record_id):
        raise FormatError(f"{label} #{position + 1} has an empty id or one containing whitespace")
    if len(record_id.encode('utf-8')) > MAX_ID_BYTES:
        raise FormatError(f"{label} #{position + 1} id is longer than {MAX_ID_BYTES} bytes")
