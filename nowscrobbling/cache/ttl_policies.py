"""
TTL configuration per data type and the fallback TTL rule.
"""
from enum import Enum
from typing import Dict

MINUTE = 60
HOUR = 60 * MINUTE
DAY = 24 * HOUR
WEEK = 7 * DAY

MIN_TTL_SECONDS = 10
FALLBACK_MULTIPLIER = 3
FALLBACK_MAX_TTL = WEEK


class DataType(Enum):
    """Kinds of upstream data with different freshness needs."""
    NOW_PLAYING = "now_playing"
    HISTORY = "history"
    TOP_WEEKLY = "top_weekly"
    TOP_MONTHLY = "top_monthly"
    TOP_QUARTERLY = "top_quarterly"
    TOP_HALF_YEAR = "top_half_year"
    TOP_YEARLY = "top_yearly"
    TOP_ALLTIME = "top_alltime"
    RATINGS = "ratings"
    FAVORITES = "favorites"


# Primary TTL by data type (in seconds)
TTL_CONFIG: Dict[DataType, int] = {
    DataType.NOW_PLAYING: 30,
    DataType.HISTORY: 5 * MINUTE,
    DataType.TOP_WEEKLY: HOUR,
    DataType.TOP_MONTHLY: 2 * HOUR,
    DataType.TOP_QUARTERLY: 6 * HOUR,
    DataType.TOP_HALF_YEAR: 12 * HOUR,
    DataType.TOP_YEARLY: DAY,
    DataType.TOP_ALLTIME: DAY,
    DataType.RATINGS: DAY,
    DataType.FAVORITES: DAY,
}

LASTFM_PERIODS: Dict[str, DataType] = {
    "7day": DataType.TOP_WEEKLY,
    "1month": DataType.TOP_MONTHLY,
    "3month": DataType.TOP_QUARTERLY,
    "6month": DataType.TOP_HALF_YEAR,
    "12month": DataType.TOP_YEARLY,
    "overall": DataType.TOP_ALLTIME,
}


def clamp_ttl(ttl) -> int:
    """Reject zero/negative/garbage TTLs by clamping them to the minimum."""
    try:
        ttl = int(ttl)
    except (TypeError, ValueError):
        return MIN_TTL_SECONDS
    return max(ttl, MIN_TTL_SECONDS)


def get_fallback_ttl(primary_ttl: int) -> int:
    """
    Fallback copies outlive the primary entry: min(one week, 3 x primary).

    Returns:
        TTL in seconds for the <key>_fallback entry
    """
    return min(FALLBACK_MAX_TTL, FALLBACK_MULTIPLIER * clamp_ttl(primary_ttl))


def get_ttl_for_type(data_type: DataType) -> int:
    return TTL_CONFIG.get(data_type, 5 * MINUTE)


def get_type_for_period(period: str) -> DataType:
    """Map a Last.fm period name to its data type (unknown periods count as weekly)."""
    return LASTFM_PERIODS.get(period, DataType.TOP_WEEKLY)
