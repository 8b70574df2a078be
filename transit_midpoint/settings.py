"""
Environment-driven configuration. Values come from the process environment,
optionally seeded from a .env file in the working directory.
"""

import os
from typing import List, Optional

from dotenv import load_dotenv

load_dotenv()

PLACEHOLDER_API_KEY = "your_api_key_here"


def _as_bool(val: Optional[str], default: bool = False) -> bool:
    if val is None:
        return default
    return val.strip().lower() in ("1", "true", "yes", "on")


def _as_int(val: Optional[str], default: int) -> int:
    try:
        return int(val) if val not in (None, "") else default
    except ValueError:
        return default


def _as_float(val: Optional[str], default: float) -> float:
    try:
        return float(val) if val not in (None, "") else default
    except ValueError:
        return default


def _api_key(name: str) -> Optional[str]:
    value = os.getenv(name)
    if not value or value == PLACEHOLDER_API_KEY:
        return None
    return value


class Settings:
    def __init__(self) -> None:
        # Providers
        self.GOOGLE_MAPS_API_KEY: Optional[str] = _api_key("GOOGLE_MAPS_API_KEY")
        self.HERE_API_KEY: Optional[str] = _api_key("HERE_API_KEY")
        self.PROVIDER_ORDER: List[str] = [
            p.strip().lower() for p in os.getenv("PROVIDER_ORDER", "google,here").split(",") if p.strip()
        ]
        self.REQUEST_TIMEOUT_SECONDS: float = _as_float(os.getenv("REQUEST_TIMEOUT_SECONDS"), 30.0)
        self.GOOGLE_CONCURRENT_PARTIES: bool = _as_bool(os.getenv("GOOGLE_CONCURRENT_PARTIES"), True)
        self.HERE_CONCURRENT_PARTIES: bool = _as_bool(os.getenv("HERE_CONCURRENT_PARTIES"), False)

        # Budgets
        self.GOOGLE_MONTHLY_REQUEST_CAP: int = _as_int(os.getenv("GOOGLE_MONTHLY_REQUEST_CAP"), 2000)
        self.HERE_MONTHLY_BUDGET: float = _as_float(os.getenv("HERE_MONTHLY_BUDGET"), 80.0)
        self.HERE_FREE_MONTHLY_REQUESTS: int = _as_int(os.getenv("HERE_FREE_MONTHLY_REQUESTS"), 250_000)
        self.HERE_COST_PER_REQUEST: float = _as_float(os.getenv("HERE_COST_PER_REQUEST"), 0.001)
        self.BUDGET_DB_PATH: str = os.getenv(
            "BUDGET_DB_PATH",
            os.path.join(os.path.dirname(os.path.abspath(__file__)), "..", "data", "budget.sqlite"),
        )

        # Pacing
        self.GOOGLE_REQUEST_DELAY_MS: int = _as_int(os.getenv("GOOGLE_REQUEST_DELAY_MS"), 0)
        self.HERE_REQUEST_DELAY_MS: int = _as_int(os.getenv("HERE_REQUEST_DELAY_MS"), 500)
        self.THROTTLE_BACKOFF_SECONDS: float = _as_float(os.getenv("THROTTLE_BACKOFF_SECONDS"), 2.0)

        # Candidates & scoring
        self.MAX_HUB_CANDIDATES: int = _as_int(os.getenv("MAX_HUB_CANDIDATES"), 5)
        self.HUBS_FILE: Optional[str] = os.getenv("HUBS_FILE") or None
        self.RING_RADIUS_M: float = _as_float(os.getenv("RING_RADIUS_M"), 1000.0)
        self.RING_CANDIDATE_COUNT: int = _as_int(os.getenv("RING_CANDIDATE_COUNT"), 4)
        self.FAIRNESS_WEIGHT: float = _as_float(os.getenv("FAIRNESS_WEIGHT"), 3.0)
        self.TRANSFER_WEIGHT_SECONDS: float = _as_float(os.getenv("TRANSFER_WEIGHT_SECONDS"), 300.0)

        # Server
        self.LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()
        self.LOG_FILE: Optional[str] = os.getenv("LOG_FILE", "app.log") or None
        self.HOST: str = os.getenv("HOST", "0.0.0.0")
        self.PORT: int = _as_int(os.getenv("PORT"), 5001)


settings = Settings()
