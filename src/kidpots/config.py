"""Configuration constants for KidPots, read from the environment."""
from __future__ import annotations

import os

from dotenv import load_dotenv

load_dotenv()


def _int_env(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise RuntimeError(f"{name} must be an integer") from exc


DATABASE_URL = os.environ.get("KIDPOTS_DATABASE_URL", "sqlite:///kidpots.db")
DEFAULT_APR_BASIS_POINTS = _int_env("KIDPOTS_DEFAULT_APR_BP", 200)
DEFAULT_INVEST_THRESHOLD_CENTS = _int_env("KIDPOTS_DEFAULT_INVEST_THRESHOLD_CENTS", 5000)
DEFAULT_PAYOUT_WEEKDAY = _int_env("KIDPOTS_DEFAULT_PAYOUT_WEEKDAY", 1)
DONATE_POLICY_AGE = _int_env("KIDPOTS_DONATE_POLICY_AGE", 7)
MAX_CONTENTION_RETRIES = _int_env("KIDPOTS_MAX_RETRIES", 3)
RETRY_BASE_DELAY_SECONDS = 0.01
LOG_PATH = os.environ.get("KIDPOTS_LOG_PATH") or None
DEFAULT_LOCALE = os.environ.get("KIDPOTS_LOCALE", "de")
CURRENCY_SYMBOL = os.environ.get("KIDPOTS_CURRENCY_SYMBOL", "CHF")
OWNER_HEADER = "X-Owner-Id"

__all__ = [
    "CURRENCY_SYMBOL",
    "DATABASE_URL",
    "DEFAULT_APR_BASIS_POINTS",
    "DEFAULT_INVEST_THRESHOLD_CENTS",
    "DEFAULT_LOCALE",
    "DEFAULT_PAYOUT_WEEKDAY",
    "DONATE_POLICY_AGE",
    "LOG_PATH",
    "MAX_CONTENTION_RETRIES",
    "OWNER_HEADER",
    "RETRY_BASE_DELAY_SECONDS",
]
