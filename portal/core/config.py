import os

# Database configuration
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./portal.db")

# Registration identifiers are keyed by the calendar day in this timezone
PORTAL_TIMEZONE = os.getenv("PORTAL_TIMEZONE", "Asia/Kolkata")

# "redis" or "database"
SEQUENCE_BACKEND = os.getenv("PORTAL_SEQUENCE_BACKEND", "redis")

TRANSITION_ATTEMPTS = int(os.getenv("PORTAL_TRANSITION_ATTEMPTS", "3"))

# Fan-out queues
OUTBOX_SIZE = int(os.getenv("PORTAL_OUTBOX_SIZE", "1000"))
SUBSCRIBER_QUEUE_SIZE = int(os.getenv("PORTAL_SUBSCRIBER_QUEUE_SIZE", "100"))
# Registrations whose last delivered version is remembered for ordering
VERSION_CACHE_SIZE = int(os.getenv("PORTAL_VERSION_CACHE_SIZE", "10000"))
FANOUT_RELAY = os.getenv("PORTAL_FANOUT_RELAY", "false").lower() in ("1", "true", "yes")

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_PATH = os.getenv("LOG_PATH")


def get_database_url():
    return DATABASE_URL


def get_timezone_name():
    return PORTAL_TIMEZONE
