"""
Error kinds raised by the flashcard core.

Handlers catch FlashcardError and turn it into a short message for the user;
nothing here is fatal to the process.
"""


class FlashcardError(Exception):
    """Base class for every error the core raises on purpose."""


class NotFound(FlashcardError, LookupError):
    """An operation referenced a collection or card id that does not exist."""

    def __init__(self, kind: str, record_id: str):
        super().__init__(f"{kind} not found: {record_id}")
        self.kind = kind
        self.record_id = record_id


class InvalidOutcome(FlashcardError, ValueError):
    """A review outcome other than known / later / hard."""

    def __init__(self, outcome: object):
        super().__init__(f"invalid review outcome: {outcome!r}")
        self.outcome = outcome


class SnapshotError(FlashcardError):
    """Import of a snapshot document failed."""


class ParseError(SnapshotError):
    """The snapshot text is not valid JSON."""


class FormatError(SnapshotError, ValueError):
    """The snapshot is valid JSON but not shaped like a snapshot."""
