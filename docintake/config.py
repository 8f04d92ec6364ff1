"""
Configuration module for the document intake scheduler
"""

# Application configuration
import os
from pathlib import Path

def env_bool(key: str, default: bool = False) -> bool:
    """Get boolean value from environment variable"""
    value = os.getenv(key, str(default)).lower()
    return value in ("true", "1", "yes", "on")

def _read_version_from_repo(default: str = "dev") -> str:
    try:
        # repo root: docintake/.. (two parents up)
        version_file = Path(__file__).resolve().parents[1] / "VERSION"
        v = version_file.read_text(encoding="utf-8").strip()
        if v:
            return v
    except OSError:
        pass
    return os.getenv("APP_VERSION", default)

API_VERSION = _read_version_from_repo()

# Database configuration
sqlite_path = os.getenv("SQLITE_PATH", "./docintake.db")
DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{sqlite_path}")

# API configuration
API_PREFIX = "/v1"
API_KEY = os.getenv("API_KEY", "TEST_ADMIN_KEY")
USER_API_KEYS = {k.strip() for k in os.getenv("USER_API_KEYS", "").split(",") if k.strip()}
APP_PORT = int(os.getenv("APP_PORT", "8000"))

# Logging configuration
ENVIRONMENT = os.getenv("ENVIRONMENT", "development")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FORMAT = os.getenv("LOG_FORMAT", "json")

# Extraction collaborator
EXTRACTION_URL = os.getenv("EXTRACTION_URL", "http://localhost:9000/extract")
EXTRACTION_API_KEY = os.getenv("EXTRACTION_API_KEY", "")
EXTRACTION_HTTP_TIMEOUT_SEC = float(os.getenv("EXTRACTION_HTTP_TIMEOUT_SEC", "300"))
EXTRACTION_CACHE_SIZE = int(os.getenv("EXTRACTION_CACHE_SIZE", "50"))

# Dispatcher configuration
DISPATCH_MAX_PARALLEL = int(os.getenv("DISPATCH_MAX_PARALLEL", "5"))
EXTRACT_TIMEOUT_SIMPLE_MS = int(os.getenv("EXTRACT_TIMEOUT_SIMPLE_MS", "60000"))
EXTRACT_TIMEOUT_COMPLEX_MS = int(os.getenv("EXTRACT_TIMEOUT_COMPLEX_MS", "120000"))
COMPLEX_FILE_TYPES = {
    t.strip().lower()
    for t in os.getenv("COMPLEX_FILE_TYPES", "pdf,tif,tiff").split(",")
    if t.strip()
}

# Rate limiting
RATE_LIMIT_WARN_RATIO = float(os.getenv("RATE_LIMIT_WARN_RATIO", "0.8"))

# Job worker
JOB_TRIGGER_ENABLED = env_bool("JOB_TRIGGER_ENABLED", True)

# Export bookkeeping
EXPORT_TIMEOUT_MINUTES = int(os.getenv("EXPORT_TIMEOUT_MINUTES", "10"))

# Offline replay queue (client side)
REPLAY_MAX_RETRIES = int(os.getenv("REPLAY_MAX_RETRIES", "3"))
REPLAY_RETRY_DELAY_SECONDS = float(os.getenv("REPLAY_RETRY_DELAY_SECONDS", "5"))
REPLAY_STORE_PATH = os.getenv("REPLAY_STORE_PATH", "./pending_actions.json")
REPLAY_BASE_URL = os.getenv("REPLAY_BASE_URL", "http://localhost:8000")

# Background loops started with the application
BACKGROUND_LOOPS_ENABLED = env_bool("BACKGROUND_LOOPS_ENABLED", True)
WORKER_POLL_INTERVAL_SEC = float(os.getenv("WORKER_POLL_INTERVAL_SEC", "5"))
EXPORT_SWEEP_INTERVAL_SEC = float(os.getenv("EXPORT_SWEEP_INTERVAL_SEC", "60"))
SHUTDOWN_DRAIN_TIMEOUT_SEC = float(os.getenv("SHUTDOWN_DRAIN_TIMEOUT_SEC", "5"))
