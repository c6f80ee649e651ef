from __future__ import annotations

import logging
import os
from pathlib import Path

from dotenv import load_dotenv

PROJECT_ROOT = Path(__file__).resolve().parent.parent

# Load optional .env from project root
load_dotenv(PROJECT_ROOT / ".env", override=False)

APP_TITLE: str = os.getenv("OBEATTAIN_APP_TITLE", "Outcome Attainment Calculation Engine")

# Default to a local SQLite database file in ./data
_default_sqlite_path = (PROJECT_ROOT / "data" / "obeattain.db").as_posix()
DATABASE_URL: str = os.getenv("OBEATTAIN_DATABASE_URL", f"sqlite:///{_default_sqlite_path}")

SQL_ECHO: bool = os.getenv("OBEATTAIN_SQL_ECHO", "0").strip().lower() in {"1", "true", "yes"}

LOG_LEVEL: str = os.getenv("OBEATTAIN_LOG_LEVEL", "WARNING").strip().upper()
LOG_FILE: str | None = os.getenv("OBEATTAIN_LOG_FILE") or None
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Academic year stamped on write-back rows when the caller does not pass one.
DEFAULT_ACADEMIC_YEAR: str = os.getenv("OBEATTAIN_ACADEMIC_YEAR", "2023-24")

# Used when a course has no target percentage configured.
DEFAULT_TARGET_PERCENTAGE: float = 50.0


def configure_logging(level: str | None = None) -> int:
    """Install the root handler once, for command-line entry points.

    Library code only ever calls ``logging.getLogger(__name__)``; nothing is
    configured at import time.
    """
    level_name = (level or LOG_LEVEL).upper()
    actual_level = logging.getLevelName(level_name)
    if not isinstance(actual_level, int):
        actual_level = logging.WARNING

    kwargs: dict[str, object] = {"level": actual_level, "format": LOG_FORMAT}
    if LOG_FILE:
        kwargs["filename"] = LOG_FILE
    logging.basicConfig(**kwargs)
    return actual_level
