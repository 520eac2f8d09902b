"""
Runtime settings read from the environment.

Call load_env() first so values from .env are visible here. Logging is
configured separately by get_logger() from VENUEDESK_LOG_LEVEL and
VENUEDESK_LOG_DIR.
"""

import os
from dataclasses import dataclass
from pathlib import Path


RESTRICTED_CATEGORY = "Nightclub"
AUTO_APPROVE_NOTE = "Auto-approved (admin/moderator edit)"
WORKER_CREATION_POINTS = 20
WORKER_UPDATE_POINTS = 5


@dataclass
class Settings:
    """Engine and adapter configuration."""

    db_path: Path = Path("data/venuedesk.db")
    restricted_category: str = RESTRICTED_CATEGORY
    store_retries: int = 2
    store_retry_delay: float = 0.2
    breaker_threshold: int = 5
    breaker_timeout: int = 30

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            db_path=Path(os.getenv("VENUEDESK_DB_PATH", "data/venuedesk.db")),
            restricted_category=os.getenv("VENUEDESK_RESTRICTED_CATEGORY", RESTRICTED_CATEGORY),
            store_retries=int(os.getenv("VENUEDESK_STORE_RETRIES", "2")),
            store_retry_delay=float(os.getenv("VENUEDESK_STORE_RETRY_DELAY", "0.2")),
            breaker_threshold=int(os.getenv("VENUEDESK_BREAKER_THRESHOLD", "5")),
            breaker_timeout=int(os.getenv("VENUEDESK_BREAKER_TIMEOUT", "30")),
        )
