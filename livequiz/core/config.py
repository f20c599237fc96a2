import os
from dotenv import load_dotenv

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./livequiz.db")

# Fix for SQLAlchemy requiring 'postgresql://' instead of 'postgres://'
if DATABASE_URL.startswith("postgres://"):
    DATABASE_URL = DATABASE_URL.replace("postgres://", "postgresql://", 1)

# Uploaded question images (writable, next to the app or /tmp on read-only hosts)
if os.environ.get("VERCEL"):
    UPLOAD_DIR = os.getenv("UPLOAD_DIR", "/tmp/uploads")
else:
    UPLOAD_DIR = os.getenv("UPLOAD_DIR", os.path.join(os.getcwd(), "uploads"))
PUBLIC_UPLOAD_PREFIX = os.getenv("PUBLIC_UPLOAD_PREFIX", "/uploads")

SESSION_CODE_LENGTH = int(os.getenv("SESSION_CODE_LENGTH", "6"))
MAX_CODE_ATTEMPTS = int(os.getenv("MAX_CODE_ATTEMPTS", "10"))
DEFAULT_TIME_LIMIT = int(os.getenv("DEFAULT_TIME_LIMIT", "30"))

# Reconciliation polls that back up the push channel (seconds)
HOST_POLL_SECONDS = float(os.getenv("HOST_POLL_SECONDS", "5"))
PARTICIPANT_POLL_SECONDS = float(os.getenv("PARTICIPANT_POLL_SECONDS", "10"))

# Janitor for abandoned sessions
SESSION_STALE_MINUTES = int(os.getenv("SESSION_STALE_MINUTES", "30"))
JANITOR_INTERVAL_SECONDS = float(os.getenv("JANITOR_INTERVAL_SECONDS", "300"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
