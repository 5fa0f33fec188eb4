import logging
import os
from dotenv import load_dotenv

load_dotenv()

TG_BOT_TOKEN = os.getenv('TELEGRAM_BOT_TOKEN')
PROXY_URL = os.getenv('PROXY_URL')

DB_PATH = os.getenv('FLASHCARDS_DB_PATH') or os.path.join(
    os.path.dirname(os.path.abspath(__file__)), 'flashcards.db'
)

# Single-user bot: when set, updates from any other Telegram account are dropped
OWNER_ID = int(os.getenv('OWNER_ID')) if os.getenv('OWNER_ID') else None

IMPORT_MAX_BYTES = int(os.getenv('IMPORT_MAX_BYTES', 5 * 1024 * 1024))

logging.basicConfig(
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    level=logging.INFO
)
