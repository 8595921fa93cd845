"""Centralized configuration: all env vars in one place."""
import os
import logging
from dotenv import load_dotenv

load_dotenv()

# --- Server ---
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "3001"))
ENVIRONMENT = os.getenv("ENVIRONMENT", "development")
ALLOWED_ORIGINS = os.getenv("ALLOWED_ORIGINS", "")
DEFAULT_ALLOWED_ORIGINS = [
    "http://localhost:3001",
    "http://localhost:5173",
    "http://127.0.0.1:5173",
]

# --- WebSocket Security ---
WS_RATE_LIMIT_PER_SEC = 20  # max messages per second per connection
MAX_WS_MESSAGE_SIZE = 256 * 1024  # bytes, question payloads can be large

# --- Devices ---
DEVICE_GRACE_PERIOD_SECONDS = float(os.getenv("DEVICE_GRACE_PERIOD_SECONDS", "600"))  # 10 minutes
MAX_DISPLAY_NAME_LENGTH = 50
MAX_LOCALE_LENGTH = 16
DEFAULT_LOCALE = os.getenv("DEFAULT_LOCALE", "en")

# --- Category voting ---
MAX_CATEGORY_SELECTIONS = 5
MAX_CATEGORY_NAME_LENGTH = 50
CATEGORY_TALLY_LIMIT = 10

# --- Game ---
DEFAULT_TIMER_SECONDS = 60
DEFAULT_QUESTION_POINTS = 10
DEFAULT_LOW_TIME_THRESHOLD = 10
DEFAULT_CRITICAL_TIME_THRESHOLD = 5
COUNTDOWN_TICK_SECONDS = float(os.getenv("COUNTDOWN_TICK_SECONDS", "1.0"))

# --- Game settings ranges (inclusive) ---
QUESTION_COUNT_RANGE = (1, 50)
TIMER_DURATION_RANGE = (5, 300)
MAX_CATEGORY_SELECTIONS_RANGE = (1, 10)
TOP_CATEGORIES_RANGE = (1, 10)
LOW_TIME_THRESHOLD_RANGE = (1, 120)
CRITICAL_TIME_THRESHOLD_RANGE = (1, 60)

# --- Monitoring ---
STATS_LOG_INTERVAL_SECONDS = int(os.getenv("STATS_LOG_INTERVAL_SECONDS", "30"))

# --- Logging ---
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FILE = os.getenv("LOG_FILE", "")  # empty = stdout only


def get_allowed_origins() -> list[str]:
    if ALLOWED_ORIGINS.strip():
        return [o.strip() for o in ALLOWED_ORIGINS.split(",") if o.strip()]
    return list(DEFAULT_ALLOWED_ORIGINS)


def setup_logging():
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if LOG_FILE:
        handlers.append(logging.FileHandler(LOG_FILE))
    logging.basicConfig(
        level=getattr(logging, LOG_LEVEL, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=handlers,
    )
