"""Runtime configuration read from the environment.

A local ``.env`` file is loaded first so development setups do not need to
export anything.
"""

from __future__ import annotations

import logging
import os

from dotenv import load_dotenv

from spendwise.aggregation import SUPPORTED_WINDOWS

load_dotenv()


def normalize_currency(value: str) -> str:
    normalized = value.strip().upper()
    if len(normalized) != 3 or not normalized.isalpha():
        raise ValueError("Currency must be a 3-letter ISO 4217 code.")
    return normalized


def get_default_currency() -> str:
    raw = os.getenv("DEFAULT_CURRENCY", "EUR")
    try:
        return normalize_currency(raw)
    except ValueError:
        return "EUR"


def get_default_window() -> int:
    raw = os.getenv("DEFAULT_WINDOW_MONTHS", "6")
    try:
        months = int(raw)
    except ValueError:
        return 6
    return months if months in SUPPORTED_WINDOWS else 6


DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./spendwise.db")
FRONTEND_ORIGIN = os.getenv("FRONTEND_ORIGIN", "http://localhost:3000")
DEFAULT_CURRENCY = get_default_currency()
DEFAULT_WINDOW_MONTHS = get_default_window()
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()


def configure_logging(level: str | None = None) -> None:
    logging.basicConfig(
        level=level or LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
