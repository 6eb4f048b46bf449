"""
Configuration module for the signature batch service
"""

import os
from pathlib import Path


def env_bool(key: str, default: bool = False) -> bool:
    """Get boolean value from environment variable"""
    value = os.getenv(key, str(default)).lower()
    return value in ("true", "1", "yes", "on")


def _read_version_from_repo(default: str = "dev") -> str:
    try:
        # repo root: sigbatch/.. (two parents up)
        version_file = Path(__file__).resolve().parents[1] / "VERSION"
        v = version_file.read_text(encoding="utf-8").strip()
        if v:
            return v
    except OSError:
        pass
    return os.getenv("APP_VERSION", default)


API_VERSION = _read_version_from_repo()
APP_NAME = os.getenv("APP_NAME", "sigbatch")

# API configuration
API_PREFIX = "/v1"
APP_PORT = int(os.getenv("APP_PORT", "8000"))

# Storage configuration
DATA_DIR = Path(os.getenv("DATA_DIR", "./data"))
DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{DATA_DIR / 'sigbatch.db'}")
ARTIFACT_DIR = Path(os.getenv("ARTIFACT_DIR", str(DATA_DIR / "exports")))

# Template store
TEMPLATES_DIR = Path(os.getenv("TEMPLATES_DIR", str(Path(__file__).resolve().parents[1] / "templates")))
DEFAULT_TEMPLATE = os.getenv("DEFAULT_TEMPLATE", "signature_default.html")

# Batch export configuration
EXPORT_CHUNK_SIZE = int(os.getenv("EXPORT_CHUNK_SIZE", "50"))
EXPORT_RETENTION_MINUTES = int(os.getenv("EXPORT_RETENTION_MINUTES", "60"))
EXPORT_SWEEP_INTERVAL_SEC = int(os.getenv("EXPORT_SWEEP_INTERVAL_SEC", "300"))
EXPORT_QUEUE_MAX_DEPTH = int(os.getenv("EXPORT_QUEUE_MAX_DEPTH", "1000"))
EXPORT_STREAM_BLOCK_BYTES = int(os.getenv("EXPORT_STREAM_BLOCK_BYTES", "65536"))
EXPORT_RESUME_ON_STARTUP = env_bool("EXPORT_RESUME_ON_STARTUP", True)

# Bulk dispatch configuration
DISPATCH_MAX_ITEMS = int(os.getenv("DISPATCH_MAX_ITEMS", "500"))
DISPATCH_ITEM_DELAY_SEC = float(os.getenv("DISPATCH_ITEM_DELAY_SEC", "0.5"))
DISPATCH_BATCH_EVERY = int(os.getenv("DISPATCH_BATCH_EVERY", "10"))
DISPATCH_BATCH_PAUSE_SEC = float(os.getenv("DISPATCH_BATCH_PAUSE_SEC", "2"))

# Mail configuration
MAIL_TRANSPORT = os.getenv("MAIL_TRANSPORT", "smtp").lower()  # smtp|http|log
MAIL_FROM_EMAIL = os.getenv("MAIL_FROM_EMAIL", "no-reply@localhost")
MAIL_FROM_NAME = os.getenv("MAIL_FROM_NAME", "Signature Admin")
MAIL_SUBJECT = os.getenv("MAIL_SUBJECT", "Your New Email Signature")
MAIL_TIMEOUT_SEC = int(os.getenv("MAIL_TIMEOUT_SEC", "10"))
MAIL_RETRIES = int(os.getenv("MAIL_RETRIES", "1"))
MAIL_RETRY_BACKOFF_SEC = float(os.getenv("MAIL_RETRY_BACKOFF_SEC", "1"))

SMTP_HOST = os.getenv("SMTP_HOST", "localhost")
SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
SMTP_AUTH = env_bool("SMTP_AUTH", True)
SMTP_USER = os.getenv("SMTP_USER", "")
SMTP_PASSWORD = os.getenv("SMTP_PASSWORD", "")
SMTP_SECURE = os.getenv("SMTP_SECURE", "tls").lower()  # tls|ssl|none

MAIL_RELAY_URL = os.getenv("MAIL_RELAY_URL", "")
MAIL_RELAY_TOKEN = os.getenv("MAIL_RELAY_TOKEN", "")
MAIL_RELAY_VERIFY_TLS = env_bool("MAIL_RELAY_VERIFY_TLS", True)

# Logging configuration
ENVIRONMENT = os.getenv("ENVIRONMENT", "development")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FORMAT = os.getenv("LOG_FORMAT", "json")
LOG_EXCLUDE_PATHS = set(os.getenv("LOG_EXCLUDE_PATHS", "/v1/health,/v1/metrics/prometheus").split(","))

# Admin configuration
ADMIN_MAIL_LOG_MAX = int(os.getenv("ADMIN_MAIL_LOG_MAX", "500"))

# CORS configuration
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
