# ======================= RECORDS ==========================

# One row per persisted record; the value is the record's full JSON text.
# Keys: flashcard_collections, flashcard_cards, flashcard_stats

record_schema = '''
    CREATE TABLE IF NOT EXISTS records (
        record_key TEXT PRIMARY KEY,
        value TEXT NOT NULL,

        -- Metadata
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
'''
