# config/settings.py
#
#   loading environment variables (database path, look-ahead window, webhook secret) from .env

import os
from dotenv import load_dotenv

load_dotenv()  # loads .env into environment


# storage
DB_PATH = os.getenv("SCHEDULER_DB_PATH", "route_scheduler.db")
DB_RETRY_ATTEMPTS = int(os.getenv("DB_RETRY_ATTEMPTS", "3"))
DB_RETRY_DELAY = float(os.getenv("DB_RETRY_DELAY", "0.1"))

# scheduling
LOOKAHEAD_DAYS = int(os.getenv("SCHEDULE_LOOKAHEAD_DAYS", "14"))
APP_TIMEZONE = os.getenv("APP_TIMEZONE", "America/Regina")
DEFAULT_ORG_ID = os.getenv("DEFAULT_ORG_ID", "default")

# billing webhooks
BILLING_WEBHOOK_SECRET = os.getenv("BILLING_WEBHOOK_SECRET")
BILLING_SIGNATURE_TOLERANCE = int(os.getenv("BILLING_SIGNATURE_TOLERANCE", "300"))

# checks
if LOOKAHEAD_DAYS < 1:
    raise RuntimeError("SCHEDULE_LOOKAHEAD_DAYS must be at least 1!")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# api server
API_HOST = os.getenv("API_HOST", "0.0.0.0")
API_PORT = int(os.getenv("API_PORT", "8000"))
