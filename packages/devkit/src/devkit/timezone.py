from __future__ import annotations

from datetime import datetime
import os
import time
from zoneinfo import ZoneInfo

JST_ZONE = ZoneInfo("Asia/Tokyo")

_configured = False


def configure_jst_timezone() -> None:
    global _configured
    if _configured:
        return
    os.environ["TZ"] = "Asia/Tokyo"
    if hasattr(time, "tzset"):
        time.tzset()
    _configured = True


def now_jst() -> datetime:
    return datetime.now(JST_ZONE)
