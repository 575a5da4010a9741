"""Centralized configuration: all env vars in one place."""
import os
import string
import logging
from dotenv import load_dotenv

load_dotenv()

# --- Server ---
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "8000"))
ALLOWED_ORIGINS = os.getenv("ALLOWED_ORIGINS", "")

# --- WebSocket Security ---
WS_RATE_LIMIT_PER_SEC = 10
MAX_WS_MESSAGE_SIZE = 4096  # bytes
MAX_NAME_LENGTH = 20
MAX_AVATAR_LENGTH = 10

# --- Rooms ---
NEW_ROOM_SENTINEL = "new"
ROOM_ID_LENGTH = 9
ROOM_ID_ALPHABET = string.ascii_lowercase + string.digits
MAX_ROOM_ID_ATTEMPTS = 10
MAX_ROOMS = int(os.getenv("MAX_ROOMS", "200"))
ROOM_TTL_SECONDS = int(os.getenv("ROOM_TTL_SECONDS", "1800"))
FINISHED_ROOM_TTL_SECONDS = int(os.getenv("FINISHED_ROOM_TTL_SECONDS", "300"))
CLEANUP_INTERVAL_SECONDS = 60

# --- Game ---
MIN_PLAYERS = 6
MIN_TEAM_SIZE = 3
MIN_COUCH_SEATS = 2
COUCH_DIVISOR = 3  # one couch seat per three players
RECONNECT_GRACE_SECONDS = float(os.getenv("RECONNECT_GRACE_SECONDS", "10"))
CALL_HISTORY_LIMIT = 50

# --- Logging ---
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FILE = os.getenv("LOG_FILE", "")


def setup_logging():
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if LOG_FILE:
        handlers.append(logging.FileHandler(LOG_FILE))
    logging.basicConfig(
        level=getattr(logging, LOG_LEVEL, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=handlers,
    )
