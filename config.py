import os
from pathlib import Path
from dotenv import load_dotenv

# Get the directory containing this file
BASE_DIR = Path(__file__).resolve().parent

# Load .env file explicitly from the correct path
load_dotenv(BASE_DIR / '.env')

APP_NAME = os.getenv("APP_NAME", "BuzzarFeed")
APP_VERSION = os.getenv("APP_VERSION", "1.0.0")
APP_DESCRIPTION = os.getenv("APP_DESCRIPTION", "Discover the Flavors of BGC Night Market")
BASE_URL = os.getenv("BASE_URL", "http://localhost:8000").rstrip("/")

SECRET_KEY = os.getenv("SECRET_KEY", "change-me-in-production")
DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{BASE_DIR / 'buzzarfeed.db'}")

# Sessions
SESSION_COOKIE = os.getenv("SESSION_NAME", "buzzarfeed_session")
SESSION_LIFETIME = int(os.getenv("SESSION_LIFETIME", "3600"))
CSRF_TOKEN_LENGTH = int(os.getenv("CSRF_TOKEN_LENGTH", "32"))
RESET_TOKEN_HOURS = 1

# Pagination
ITEMS_PER_PAGE = int(os.getenv("ITEMS_PER_PAGE", "12"))

# Uploads
UPLOAD_DIR = os.getenv("UPLOAD_DIR", str(BASE_DIR / "uploads"))
MAX_FILE_SIZE = int(os.getenv("MAX_FILE_SIZE", str(5 * 1024 * 1024)))  # 5MB
ALLOWED_IMAGE_TYPES = {"image/jpeg", "image/png", "image/webp", "image/gif"}
ALLOWED_DOCUMENT_TYPES = ALLOWED_IMAGE_TYPES | {"application/pdf"}

# Mail
MAIL_DRIVER = os.getenv("MAIL_DRIVER", "log")
MAIL_HOST = os.getenv("MAIL_HOST", "smtp.gmail.com")
MAIL_PORT = int(os.getenv("MAIL_PORT", "587"))
MAIL_USERNAME = os.getenv("MAIL_USERNAME", "")
MAIL_PASSWORD = os.getenv("MAIL_PASSWORD", "")
MAIL_ENCRYPTION = os.getenv("MAIL_ENCRYPTION", "tls")
MAIL_FROM_ADDRESS = os.getenv("MAIL_FROM_ADDRESS", "noreply@buzzarfeed.com")
MAIL_FROM_NAME = os.getenv("MAIL_FROM_NAME", APP_NAME)

# Comma separated emails promoted to admin by migrate_db.py
ADMINS = os.getenv("ADMINS", "")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
DEVELOPMENT_MODE = os.getenv("APP_ENV", "production") == "development"
# Serve the 503 page for every request while enabled
MAINTENANCE_MODE = os.getenv("MAINTENANCE_MODE", "false").lower() in ("1", "true", "yes")

TEMPLATES_DIR = BASE_DIR / "templates"
STATIC_DIR = BASE_DIR / "static"

# Create directories if they don't exist
os.makedirs(UPLOAD_DIR, exist_ok=True)