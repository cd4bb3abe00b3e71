from datetime import datetime, timezone
from typing import Optional, Union


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def now_iso() -> str:
    """ISO-8601 UTC with milliseconds and a trailing Z."""
    return iso_z(utc_now())


def iso_z(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def epoch_to_iso(seconds: Optional[Union[int, float]]) -> Optional[str]:
    """Epoch seconds (Telegram's `date` field) to ISO-8601 UTC."""
    if seconds is None:
        return None
    try:
        return iso_z(datetime.fromtimestamp(float(seconds), tz=timezone.utc))
    except (TypeError, ValueError, OverflowError, OSError):
        return None
