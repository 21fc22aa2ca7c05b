from __future__ import annotations

from datetime import datetime, timezone
from functools import lru_cache
from typing import Optional
from zoneinfo import ZoneInfo

from .config import settings


@lru_cache(maxsize=8)
def _zone(name: str) -> ZoneInfo:
    return ZoneInfo(name)


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def now_local(tz_name: Optional[str] = None) -> datetime:
    """Farm-local wall clock, for display only; the loop itself runs on UTC."""
    return now_utc().astimezone(_zone(tz_name or settings.timezone))


def age_seconds(observed_at: Optional[datetime], now: Optional[datetime] = None) -> Optional[float]:
    if observed_at is None:
        return None
    return max(0.0, ((now or now_utc()) - observed_at).total_seconds())
