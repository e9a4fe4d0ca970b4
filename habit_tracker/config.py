import os
from datetime import timedelta, timezone
from pathlib import Path

from dotenv import load_dotenv

ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / ".env")
load_dotenv()

APP_TITLE = "Habit Tracker"

MONGO_URL = os.environ.get("MONGO_URL", "")
DB_NAME = os.environ.get("DB_NAME", "habit_tracker")

# Required: startup fails while it is empty
JWT_SECRET = os.environ.get("JWT_SECRET", "")
JWT_ALGORITHM = "HS256"
USER_TOKEN_TTL = timedelta(days=7)
ADMIN_TOKEN_TTL = timedelta(hours=24)

GOOGLE_CLIENT_ID = os.environ.get("GOOGLE_CLIENT_ID", "")

# Admin login is disabled while either value is empty
ADMIN_USERNAME = os.environ.get("ADMIN_USERNAME", "")
ADMIN_PASSWORD = os.environ.get("ADMIN_PASSWORD", "")

CORS_ORIGINS = [o.strip() for o in os.environ.get("CORS_ORIGINS", "*").split(",") if o.strip()] or ["*"]

UPLOAD_DIR = os.environ.get("UPLOAD_DIR") or str(ROOT_DIR / "uploads")

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()

# Canonical calendar for "today" and month boundaries (India Standard Time)
CALENDAR_TZ = timezone(timedelta(hours=5, minutes=30), "IST")

SUBSCRIPTION_LENGTH = timedelta(days=365)
SCREENSHOT_MAX_UPLOAD_BYTES = 5 * 1024 * 1024
SCREENSHOT_MAX_STORED_BYTES = 150 * 1024
