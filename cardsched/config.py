from __future__ import annotations

import os
from pathlib import Path
from typing import Final

from dotenv import load_dotenv


load_dotenv()

ROOT_DIR: Final[Path] = Path(__file__).resolve().parents[1]
DATA_DIR: Final[Path] = Path(os.getenv("DATA_DIR", str(ROOT_DIR / "data")))
DATA_DIR.mkdir(parents=True, exist_ok=True)
DB_PATH: Final[Path] = Path(os.getenv("CARDSCHED_DB", str(DATA_DIR / "cardsched.db")))

LOG_LEVEL: Final[str] = os.getenv("LOG_LEVEL", "WARNING").upper()

REVIEW_LIMIT_PER_DAY: Final[int] = int(os.getenv("REVIEW_LIMIT_PER_DAY", "50"))
DEFAULT_PILE_SIZE_LIMIT: Final[int] = int(os.getenv("DEFAULT_PILE_SIZE_LIMIT", "10"))
DEFAULT_SNOOZE_HOURS: Final[int] = int(os.getenv("DEFAULT_SNOOZE_HOURS", "24"))

# Review scheduler
SECONDS_PER_DAY: Final[int] = 86400
INITIAL_EASE: Final[float] = 2.5
MIN_EASE: Final[float] = 1.3
INITIAL_INTERVAL_DAYS: Final[int] = 1
MAX_INTERVAL_DAYS: Final[int] = 3650
HARD_MULTIPLIER: Final[float] = 1.2
EASY_BONUS: Final[float] = 1.3

# Ease adjustments per recall quality
EASE_DELTAS: Final[dict[str, float]] = {
    "again": -0.20,
    "hard": -0.15,
    "medium": 0.0,
    "easy": 0.15,
}

DRAW_PILE_PREFIX: Final[str] = "draw_pile:"
MANUAL_PROVENANCE: Final[str] = "manual"

# Command line defaults
DEFAULT_USER_ID: Final[str] = os.getenv("CARDSCHED_USER", "")
DEFAULT_LANGUAGE_ID: Final[str] = os.getenv("CARDSCHED_LANGUAGE", "")
