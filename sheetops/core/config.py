"""
Configuration for the downtime sheet core.
Everything is read from the environment (a local .env file is honoured).
"""

import os

from dotenv import load_dotenv

load_dotenv()

# Phase registry database
DB_PATH = os.getenv("DB_PATH", "./data/phases.db")

DEBUG = os.getenv("DEBUG", "false").lower() == "true"

# Google Sheets transport
SHEETS_API_BASE = os.getenv("SHEETS_API_BASE", "https://sheets.googleapis.com").rstrip("/")
SHEETS_TIMEOUT_SEC = float(os.getenv("SHEETS_TIMEOUT_SEC", "30"))
SHEETS_MAX_RETRIES = int(os.getenv("SHEETS_MAX_RETRIES", "4"))
SHEETS_BACKOFF_BASE_SEC = float(os.getenv("SHEETS_BACKOFF_BASE_SEC", "1.0"))
VALUE_INPUT_OPTION = "USER_ENTERED"

# Delegated write credential
OAUTH_SCOPE = os.getenv("OAUTH_SCOPE", "https://www.googleapis.com/auth/spreadsheets")
TOKEN_TTL_MS = int(os.getenv("TOKEN_TTL_MS", "3600000"))  # fixed one hour window
AUTH_FLOW_TIMEOUT_SEC = float(os.getenv("AUTH_FLOW_TIMEOUT_SEC", "300"))

# Tab layout conventions
NO_UPTIME_HEADER_ROW = int(os.getenv("NO_UPTIME_HEADER_ROW", "0"))
ESCALATION_HEADER_ROW = int(os.getenv("ESCALATION_HEADER_ROW", "3"))  # headers live in row 4
DOWNTIME_HEADER_ROW = int(os.getenv("DOWNTIME_HEADER_ROW", "0"))

# Write behaviour
APPEND_PACING_SEC = float(os.getenv("APPEND_PACING_SEC", "0.3"))
APPEND_CONFLICT_RETRIES = int(os.getenv("APPEND_CONFLICT_RETRIES", "3"))
REVALIDATE_BEFORE_WRITE = os.getenv("REVALIDATE_BEFORE_WRITE", "true").lower() == "true"

VERSION = "0.4.0"


def get_google_api_key():
    """Read-only API key used by every read path."""
    return os.getenv("GOOGLE_API_KEY", "")


def get_google_client_id():
    """OAuth client id handed to the consent UI."""
    return os.getenv("GOOGLE_CLIENT_ID", "")


def debug_enabled():
    """Check if debug mode is enabled."""
    return os.getenv("DEBUG", "false").lower() == "true"


def view_header_rows():
    """Default header row index per view name."""
    return {
        "no-uptime": NO_UPTIME_HEADER_ROW,
        "escalation": ESCALATION_HEADER_ROW,
        "downtime": DOWNTIME_HEADER_ROW,
    }


def validate_config():
    """Validate configuration and return any issues."""
    issues = []

    if not get_google_api_key():
        issues.append("GOOGLE_API_KEY is not set; sheet reads will fail")

    if not get_google_client_id():
        issues.append("GOOGLE_CLIENT_ID is not set; writes cannot be authorised")

    if SHEETS_MAX_RETRIES < 0:
        issues.append("SHEETS_MAX_RETRIES must be >= 0")

    if TOKEN_TTL_MS <= 0:
        issues.append("TOKEN_TTL_MS must be > 0")

    for name, value in view_header_rows().items():
        if value < 0:
            issues.append(f"Header row for view '{name}' must be >= 0")

    return issues
