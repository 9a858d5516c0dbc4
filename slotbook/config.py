import os
import warnings
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

ENV = os.getenv("ENV", "development")

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./slotbook.db")

# Connection pool (ignored for SQLite)
DB_POOL_SIZE = int(os.getenv("DB_POOL_SIZE", "10"))
DB_MAX_OVERFLOW = int(os.getenv("DB_MAX_OVERFLOW", "20"))
DB_POOL_RECYCLE = int(os.getenv("DB_POOL_RECYCLE", "300"))
DB_LOG_SLOW_QUERIES = os.getenv("DB_LOG_SLOW_QUERIES", "false").lower() == "true"
DB_SLOW_QUERY_THRESHOLD = float(os.getenv("DB_SLOW_QUERY_THRESHOLD", "1.0"))

# Identity provider token verification
SECRET_KEY = os.getenv("SECRET_KEY")
if not SECRET_KEY:
    warnings.warn(
        "SECRET_KEY not set! Using insecure default - DO NOT USE IN PRODUCTION", RuntimeWarning, stacklevel=2
    )
    SECRET_KEY = "INSECURE-DEV-KEY-CHANGE-IN-PRODUCTION"  # noqa: S105 - Dev fallback only
ALGORITHM = os.getenv("ALGORITHM", "HS256")

LOG_FILE = os.getenv("LOG_FILE", "app.log")

CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

# Booking lifecycle
PLATFORM_FEE_RATE = os.getenv("PLATFORM_FEE_RATE", "0.10")
CANCELLATION_WINDOW_MINUTES = int(os.getenv("CANCELLATION_WINDOW_MINUTES", "720"))  # 12 hours
RESCHEDULE_REQUEST_TTL_HOURS = int(os.getenv("RESCHEDULE_REQUEST_TTL_HOURS", "72"))
VISITOR_RESCHEDULE_LIMIT = int(os.getenv("VISITOR_RESCHEDULE_LIMIT", "1"))
EXPIRY_SWEEP_INTERVAL_SECONDS = float(os.getenv("EXPIRY_SWEEP_INTERVAL_SECONDS", "60"))
ENABLE_EXPIRY_WORKER = os.getenv("ENABLE_EXPIRY_WORKER", "true").lower() == "true"

# Chat
MESSAGE_PAGE_SIZE = int(os.getenv("MESSAGE_PAGE_SIZE", "50"))
MESSAGE_PAGE_MAX = int(os.getenv("MESSAGE_PAGE_MAX", "100"))
CHAT_WINDOW_CAP = int(os.getenv("CHAT_WINDOW_CAP", "100"))
RECONNECT_BASE_DELAY_SECONDS = float(os.getenv("RECONNECT_BASE_DELAY_SECONDS", "2.0"))
RECONNECT_MAX_DELAY_SECONDS = float(os.getenv("RECONNECT_MAX_DELAY_SECONDS", "30.0"))
RECONNECT_MAX_ATTEMPTS = int(os.getenv("RECONNECT_MAX_ATTEMPTS", "5"))
