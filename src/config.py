"""
Service configuration, read from the environment (.env supported).
"""

import os


def _flag(name, default):
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _database_uri():
    if os.environ.get("DATABASE_URL"):
        return os.environ["DATABASE_URL"]
    db_user = os.environ.get("DB_USER", "entry_svc_user")
    db_pass = os.environ.get("DB_PASS", "password")
    db_host = os.environ.get("DB_HOST", "entry-db")
    db_name = os.environ.get("DB_NAME", "entry_db")
    return f"postgresql://{db_user}:{db_pass}@{db_host}/{db_name}"


def load_config():
    return {
        "SQLALCHEMY_DATABASE_URI": _database_uri(),
        "SQLALCHEMY_TRACK_MODIFICATIONS": False,
        "JWT_SECRET_KEY": os.environ.get("JWT_SECRET", "dev-secret-change-me"),
        "CREDENTIAL_SECRET": os.environ.get("CREDENTIAL_SECRET", "dev-credential-secret-change-me"),
        "TICKET_EXPIRY_GRACE_HOURS": int(os.environ.get("TICKET_EXPIRY_GRACE_HOURS", 24)),
        "WRISTBAND_DEFAULT_TTL_DAYS": int(os.environ.get("WRISTBAND_DEFAULT_TTL_DAYS", 365)),
        "ORDER_PENDING_TTL_HOURS": int(os.environ.get("ORDER_PENDING_TTL_HOURS", 24)),
        "APPROVAL_REQUIRES_PAYMENT": _flag("APPROVAL_REQUIRES_PAYMENT", True),
        "NOTIFICATION_SERVICE_URL": os.environ.get("NOTIFICATION_SERVICE_URL"),
        "STRIPE_WEBHOOK_SECRET": os.environ.get("STRIPE_WEBHOOK_SECRET", "whsec_test_secret"),
        "STORE_RETRY_ATTEMPTS": int(os.environ.get("STORE_RETRY_ATTEMPTS", 3)),
        "LOG_LEVEL": os.environ.get("LOG_LEVEL", "INFO").upper(),
    }
