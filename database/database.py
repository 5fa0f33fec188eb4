import logging
import sqlite3
from contextlib import contextmanager

from database.schema import record_schema
from config import DB_PATH


# RECORD COMMANDS ==========================================

def read_record(record_key, db_path=None):
    with get_db(db_path) as conn:
        cursor = conn.cursor()
        cursor.execute('SELECT value FROM records WHERE record_key = ?', (record_key,))
        row = cursor.fetchone()
        if row:
            return row['value']
        return None


def write_record(record_key, value, db_path=None):
    with get_db(db_path) as conn:
        cursor = conn.cursor()
        cursor.execute(
            """INSERT INTO records (record_key, value) VALUES (?, ?)
               ON CONFLICT(record_key) DO UPDATE
               SET value = excluded.value, updated_at = datetime('now')
            """,
            (record_key, value)
        )
        logging.debug(f"Wrote record {record_key} ({len(value)} bytes)")


# DB CONNECTION ==============================================

@contextmanager
def get_db(db_path=None):
    conn = sqlite3.connect(db_path or DB_PATH)
    conn.row_factory = sqlite3.Row

    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def init_db(db_path=None):
    with get_db(db_path) as conn:
        conn.execute(record_schema)
