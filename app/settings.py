from __future__ import annotations

import logging
from pathlib import Path
from zoneinfo import ZoneInfo

from decouple import config


DATA_DIR = Path(config("PAYROLL_DATA_DIR", default=str(Path(__file__).resolve().parent / "data")))
DATA_DIR.mkdir(parents=True, exist_ok=True)
EXPORT_DIR = DATA_DIR / "exports"
DATABASE_URL = config("PAYROLL_DATABASE_URL", default=f"sqlite:///{(DATA_DIR / 'backoffice.db').as_posix()}")

# Single store deployment.
DEFAULT_STORE_ID = config("PAYROLL_STORE_ID", default="main")
BUSINESS_TIMEZONE_NAME = config("PAYROLL_TIMEZONE", default="Australia/Melbourne")
BUSINESS_TZ = ZoneInfo(BUSINESS_TIMEZONE_NAME)

MATCH_WINDOW_HOURS = config("PAYROLL_MATCH_WINDOW_HOURS", default=6, cast=int)
MANUAL_DEVICE_TAG = "MANUAL_CREATE"
WEB_DEVICE_TAG = "web"

LOG_LEVEL = config("PAYROLL_LOG_LEVEL", default="INFO").upper()
LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str | None = None) -> None:
    """Install the root handler once; later calls only adjust the level."""
    root = logging.getLogger()
    resolved = getattr(logging, (level or LOG_LEVEL).upper(), logging.INFO)
    if not root.handlers:
        logging.basicConfig(level=resolved, format=LOG_FORMAT)
    root.setLevel(resolved)
