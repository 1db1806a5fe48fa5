"""Configuration constants for the text polishing (polish) module."""

from dataclasses import dataclass
from pathlib import Path
import os


@dataclass(frozen=True)
class ChunkConfig:
    max_tokens: int
    chars_per_token: int


CHARS_PER_TOKEN = 4
MAX_CHUNK_TOKENS = int(os.getenv("POLISH_MAX_CHUNK_TOKENS", "3000"))
CHUNK_CFG = ChunkConfig(max_tokens=MAX_CHUNK_TOKENS, chars_per_token=CHARS_PER_TOKEN)

DEFAULT_MODE = "standard"
DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_DIALECT = "US English"

ALLOWED_MODELS = {
    "gpt-4o-mini",
    "gpt-4o",
    "gpt-4.1",
    "gpt-4.1-mini",
    "gpt-4-turbo",
}

DIALECTS = {
    "US English",
    "UK English",
    "Canadian English",
    "Australian English",
}

MAX_OUTPUT_TOKENS = 4000
REQUEST_TIMEOUT = 300

MAX_ATTEMPTS = 3
RETRY_DELAY_SECONDS = 2.0

HISTORY_CAPACITY = 5

OPENAI_BASE_URL = os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1")
REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
MAX_WORKERS = int(os.getenv("POLISH_MAX_WORKERS", "2"))

DATA_DIR = Path(os.getenv("POLISH_DATA_DIR", Path.home() / ".scholardraft"))
SETTINGS_FILENAME = "config.json"
CREDENTIAL_FILENAME = "secure_key.dat"
DRAFT_BACKUP_FILENAME = "draft_backup.json"
PROMPTS_PATH = Path(__file__).with_name("prompts.json")

SECRET_PASSPHRASE_ENV = "POLISH_SECRET_PASSPHRASE"
API_KEY_PREFIX = "sk-"

HISTORY_EXPORT_HEADERS = ["Version", "Timestamp", "Original", "Revised"]
