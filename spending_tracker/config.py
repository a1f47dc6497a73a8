"""Configuration management for the spending tracker.

This module centralizes all configuration values including paths,
limits, and environment variable overrides.
"""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path
from typing import Optional, TextIO

# Base project root - assumes this file is in spending_tracker/
_PROJECT_ROOT = Path(__file__).parent.parent.resolve()

# Data directories
DATA_DIR = Path(os.getenv("SPENDING_TRACKER_DATA_DIR", _PROJECT_ROOT / "data"))

# Database
DB_PATH = Path(
    os.getenv("SPENDING_TRACKER_DB_PATH", DATA_DIR / "spending.db")
).resolve()

# Budget configuration file (JSON)
BUDGET_CONFIG_PATH = Path(
    os.getenv("SPENDING_TRACKER_BUDGET_CONFIG", DATA_DIR / "budget-config.json")
).resolve()

LOG_LEVEL = os.getenv("SPENDING_TRACKER_LOG_LEVEL", "INFO")
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

# Query limits
DEFAULT_PAGE_SIZE = 100
MAX_PAGE_SIZE = 1000

# Row validation limits
MAX_AMOUNT = 999999.99
MAX_DESCRIPTION_LENGTH = 500
MAX_CATEGORY_LENGTH = 100

# Import limits
MAX_CSV_SIZE = 10 * 1024 * 1024
IMPORT_LOCK_TIMEOUT = 30.0

# Seconds a loaded budget config stays fresh
CONFIG_CACHE_TTL = 300.0

# Upper bounds for the dashboard and spending-pattern windows
MAX_STATS_DAYS = 366
MAX_STATS_MONTHS = 60


def configure_logging(level: Optional[str] = None, stream: Optional[TextIO] = None) -> logging.Logger:
    """Configure root logging with a single stream handler (stdout by default).

    Unknown level names fall back to INFO.
    """
    name = (level or LOG_LEVEL).upper()
    numeric = logging.getLevelName(name)
    if not isinstance(numeric, int):
        numeric = logging.INFO

    logging.basicConfig(
        level=numeric,
        format=LOG_FORMAT,
        handlers=[logging.StreamHandler(stream or sys.stdout)],
        force=True,
    )
    return logging.getLogger("spending_tracker")
