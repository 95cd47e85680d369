"""Timestamps in the application timezone (Asia/Jakarta unless APP_TIMEZONE says otherwise)."""

import os
from datetime import datetime
from zoneinfo import ZoneInfo

APP_TIMEZONE = ZoneInfo(os.getenv("APP_TIMEZONE", "Asia/Jakarta"))


def now() -> datetime:
    return datetime.now(APP_TIMEZONE)
