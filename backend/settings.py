import os

from dotenv import load_dotenv

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./gateflow.db")

SECRET_KEY = os.getenv("SECRET_KEY", "supersecretkey")
ALGORITHM = "HS256"
ADMIN_USERNAME = os.getenv("ADMIN_USERNAME", "admin")
ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD", "admin123")
ADMIN_TOKEN_HOURS = int(os.getenv("ADMIN_TOKEN_HOURS", "12"))
SCANNER_TOKEN_HOURS = int(os.getenv("SCANNER_TOKEN_HOURS", "12"))
AUTH_DISABLED = os.getenv("AUTH_DISABLED", "true").lower() == "true"

# Store writes are committed in chunks no larger than this.
WRITE_BATCH_SIZE = int(os.getenv("WRITE_BATCH_SIZE", "450"))

IMPORT_MAX_PAGES = int(os.getenv("IMPORT_MAX_PAGES", "50"))
IMPORT_PER_PAGE = int(os.getenv("IMPORT_PER_PAGE", "100"))
IMPORT_TIMEOUT_SECONDS = float(os.getenv("IMPORT_TIMEOUT_SECONDS", "20"))
DEFAULT_IMPORT_INTERVAL_MINUTES = int(os.getenv("DEFAULT_IMPORT_INTERVAL_MINUTES", "5"))

HISTOGRAM_BUCKET_MINUTES = int(os.getenv("HISTOGRAM_BUCKET_MINUTES", "30"))
DISPLAY_TIMEZONE = os.getenv("DISPLAY_TIMEZONE", "UTC")

APP_STATE_FILE = os.getenv("APP_STATE_FILE", "data/app_state.json")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FORMAT = os.getenv("LOG_FORMAT", "human")
LOG_FILE = os.getenv("LOG_FILE") or None
