import os

from dotenv import load_dotenv

load_dotenv()

# Database configuration
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./fanout.db")

# Retry configuration
DB_RETRY_ATTEMPTS = int(os.getenv("DB_RETRY_ATTEMPTS", "3"))
DB_RETRY_MIN_WAIT = int(os.getenv("DB_RETRY_MIN_WAIT", "1"))
DB_RETRY_MAX_WAIT = int(os.getenv("DB_RETRY_MAX_WAIT", "10"))

# Cleanup jobs
MAX_CONCURRENT = int(os.getenv("MAX_CONCURRENT", "3"))
CRON_KEY = os.getenv("CRON_KEY", "")
POST_MAX_AGE_DAYS = int(os.getenv("POST_MAX_AGE_DAYS", "30"))
INACTIVE_ACCOUNT_DAYS = int(os.getenv("INACTIVE_ACCOUNT_DAYS", "30"))
LIST_USERS_PAGE_SIZE = int(os.getenv("LIST_USERS_PAGE_SIZE", "1000"))

# Moderation
SHOUT_RATIO = float(os.getenv("SHOUT_RATIO", "0.5"))
MODERATION_MASK = os.getenv("MODERATION_MASK", "****")
BLOCKLIST = [
    w.strip().lower()
    for w in os.getenv("BLOCKLIST", "damn,crap,shit,fuck,bastard,asshole").split(",")
    if w.strip()
]
BLUR_RADIUS = int(os.getenv("BLUR_RADIUS", "18"))

# Object storage directory; storage targets are skipped when unset
STORAGE_ROOT = os.getenv("STORAGE_ROOT", "")

# Mail relay (Mailgun)
MAILGUN_API_KEY = os.getenv("MAILGUN_API_KEY", "")
MAILGUN_DOMAIN = os.getenv("MAILGUN_DOMAIN", "")
REPORT_RECIPIENT = os.getenv("REPORT_RECIPIENT", "moderation@localhost")
SITE_URL = os.getenv("SITE_URL", "https://friendly-pix.com")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
