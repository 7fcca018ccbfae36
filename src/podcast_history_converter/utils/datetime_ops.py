from datetime import datetime
from typing import Optional

import pytz


def get_utc_now_formatted() -> str:
    """Get the current UTC time formatted as a string."""
    return datetime.now(pytz.utc).strftime("%Y-%m-%d %H:%M:%S%z")


def get_utc_now_millis() -> int:
    """Get the current UTC time as epoch milliseconds."""
    return to_millis(datetime.now(pytz.utc))


def from_millis(value: Optional[float]) -> Optional[datetime]:
    """Convert an epoch-milliseconds column to an aware UTC datetime.

    Zero, negative and NULL values mean "not set" in both player databases.
    """
    if value is None or value <= 0:
        return None
    return datetime.fromtimestamp(value / 1000, tz=pytz.utc)


def to_millis(dt: Optional[datetime]) -> Optional[int]:
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = pytz.utc.localize(dt)
    return int(dt.timestamp() * 1000)
