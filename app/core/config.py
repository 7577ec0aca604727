# app/core/config.py
"""Environment-driven settings for the facility tquery application."""

import os
from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: bool = False) -> bool:
    return os.getenv(name, str(default)).lower() in ("1", "true", "yes", "on")


DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./facility_tquery.db")

APPLICATION_ID = os.environ.get("APPLICATION_ID", "Unknown")

# When enabled the generated SQL is attached to tquery responses and fatal errors.
TQUERY_DEBUG = _env_bool("TQUERY_DEBUG")

# Appends schema columns missing from the table configuration (export only).
TQUERY_DEV_MODE = _env_bool("TQUERY_DEV_MODE")

TQUERY_DEFAULT_PAGE_SIZE = int(os.getenv("TQUERY_DEFAULT_PAGE_SIZE", "50"))
TQUERY_MAX_PAGE_SIZE = int(os.getenv("TQUERY_MAX_PAGE_SIZE", "1000"))
TQUERY_EXPORT_MAX_ROWS = int(os.getenv("TQUERY_EXPORT_MAX_ROWS", "50000"))
