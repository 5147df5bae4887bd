import os
from pathlib import Path


BASE_DIR = Path(__file__).resolve().parent.parent


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "default-secret-key")
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", f"sqlite:///{BASE_DIR / 'offmark.db'}"
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SCHEDULER_ENABLED = os.environ.get("SCHEDULER_ENABLED", "1") == "1"
    REMOTE_BASE_URL = os.environ.get("REMOTE_BASE_URL", "")
    REMOTE_API_TOKEN = os.environ.get("REMOTE_API_TOKEN", "")
    REMOTE_TIMEOUT = float(os.environ.get("REMOTE_TIMEOUT", "10"))
    PROBE_TIMEOUT = float(os.environ.get("PROBE_TIMEOUT", "5"))
    REACHABILITY_CACHE_TTL_SECONDS = float(
        os.environ.get("REACHABILITY_CACHE_TTL_SECONDS", "30")
    )
    REACHABILITY_RATE_LIMIT_SECONDS = float(
        os.environ.get("REACHABILITY_RATE_LIMIT_SECONDS", "5")
    )
    UNDO_WINDOW_SECONDS = float(os.environ.get("UNDO_WINDOW_SECONDS", "3"))
    UNDO_RESULT_RETENTION_SECONDS = float(
        os.environ.get("UNDO_RESULT_RETENTION_SECONDS", "60")
    )
    SYNC_STATUS_DISPLAY_SECONDS = float(
        os.environ.get("SYNC_STATUS_DISPLAY_SECONDS", "3")
    )
    # 0 keeps failed records queued forever.
    SYNC_MAX_ATTEMPTS = int(os.environ.get("SYNC_MAX_ATTEMPTS", "0"))
    AUTO_SYNC_ON_RECONNECT = os.environ.get("AUTO_SYNC_ON_RECONNECT", "1") == "1"
    AUTO_SYNC_INTERVAL_MINUTES = int(
        os.environ.get("AUTO_SYNC_INTERVAL_MINUTES", "15")
    )


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SCHEDULER_ENABLED = False
    AUTO_SYNC_ON_RECONNECT = False
    REMOTE_BASE_URL = "https://readeck.test"
    REMOTE_API_TOKEN = "test-token"
    SYNC_MAX_ATTEMPTS = 0
