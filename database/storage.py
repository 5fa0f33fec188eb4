"""
Storage backends for the persistence gateway.

The store never talks to SQLite directly: it goes through a Storage, so any
durable key/value substrate can be swapped in without touching core logic.
"""

import logging
import sqlite3
from abc import ABC, abstractmethod

import database.database as db

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """A backend failed to read or write a record."""


class Storage(ABC):
    """
    Key/value contract: each key holds one record's full JSON text.

    Implementations:
        - SqliteStorage: the `records` table of a local SQLite file.
        - MemoryStorage: a plain dict, for tests and throwaway sessions.
    """

    @abstractmethod
    def read(self, key: str) -> str | None:
        """Return the stored text, or None if the key was never written."""

    @abstractmethod
    def write(self, key: str, value: str) -> None:
        """Replace the stored text for key."""


class SqliteStorage(Storage):
    def __init__(self, db_path: str | None = None):
        self.db_path = db_path

    def init(self) -> None:
        db.init_db(self.db_path)
        logger.info(f"Storage ready at {self.db_path or db.DB_PATH}")

    def read(self, key: str) -> str | None:
        try:
            return db.read_record(key, self.db_path)
        except sqlite3.Error as e:
            raise StorageError(f"could not read {key}: {e}") from e

    def write(self, key: str, value: str) -> None:
        try:
            db.write_record(key, value, self.db_path)
        except sqlite3.Error as e:
            raise StorageError(f"could not write {key}: {e}") from e


class MemoryStorage(Storage):
    def __init__(self, records: dict[str, str] | None = None):
        self.records = dict(records or {})

    def read(self, key: str) -> str | None:
        return self.records.get(key)

    def write(self, key: str, value: str) -> None:
        self.records[key] = value
