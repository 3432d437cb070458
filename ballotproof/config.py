"""
BALLOTPROOF — Configuration.
Shared settings and paths for the entire codebase.
"""

import os
from pathlib import Path

# Base Paths
BALLOTPROOF_DIR = Path.home() / ".ballotproof"

# Database Configuration
DEFAULT_DB_PATH = BALLOTPROOF_DIR / "ballotproof.db"
DB_PATH = os.environ.get("BALLOTPROOF_DB", str(DEFAULT_DB_PATH))

# Security Configuration
ALLOWED_ORIGINS = os.environ.get(
    "BALLOTPROOF_ALLOWED_ORIGINS", "http://localhost:3000"
).split(",")

# ─── Root Push (ledger synchronisation) ──────────────────────────────
PUSH_MAX_ATTEMPTS = int(os.environ.get("BALLOTPROOF_PUSH_MAX_ATTEMPTS", "5"))
PUSH_BACKOFF_BASE = float(os.environ.get("BALLOTPROOF_PUSH_BACKOFF_BASE", "0.5"))
PUSH_BACKOFF_MAX = float(os.environ.get("BALLOTPROOF_PUSH_BACKOFF_MAX", "30"))
PUSH_CONFIRM_TIMEOUT = float(os.environ.get("BALLOTPROOF_PUSH_CONFIRM_TIMEOUT", "10"))

# Seconds a voter is told to wait while a new root is pending on the ledger
RETRY_AFTER = int(os.environ.get("BALLOTPROOF_RETRY_AFTER", "5"))

LOG_LEVEL = os.environ.get("BALLOTPROOF_LOG_LEVEL", "INFO")


def reload() -> None:
    """Re-read every setting from the environment."""
    global DB_PATH, ALLOWED_ORIGINS, PUSH_MAX_ATTEMPTS, PUSH_BACKOFF_BASE
    global PUSH_BACKOFF_MAX, PUSH_CONFIRM_TIMEOUT, RETRY_AFTER, LOG_LEVEL

    DB_PATH = os.environ.get("BALLOTPROOF_DB", str(DEFAULT_DB_PATH))
    ALLOWED_ORIGINS = os.environ.get(
        "BALLOTPROOF_ALLOWED_ORIGINS", "http://localhost:3000"
    ).split(",")
    PUSH_MAX_ATTEMPTS = int(os.environ.get("BALLOTPROOF_PUSH_MAX_ATTEMPTS", "5"))
    PUSH_BACKOFF_BASE = float(os.environ.get("BALLOTPROOF_PUSH_BACKOFF_BASE", "0.5"))
    PUSH_BACKOFF_MAX = float(os.environ.get("BALLOTPROOF_PUSH_BACKOFF_MAX", "30"))
    PUSH_CONFIRM_TIMEOUT = float(os.environ.get("BALLOTPROOF_PUSH_CONFIRM_TIMEOUT", "10"))
    RETRY_AFTER = int(os.environ.get("BALLOTPROOF_RETRY_AFTER", "5"))
    LOG_LEVEL = os.environ.get("BALLOTPROOF_LOG_LEVEL", "INFO")
