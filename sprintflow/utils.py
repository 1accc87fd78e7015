from datetime import datetime, timezone


def utcnow() -> datetime:
    """
    Current UTC time as a naive datetime.

    All timestamps are stored naive-UTC so values compare equal after a
    round trip through SQLite.
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


def whole_minutes(seconds: float) -> int:
    """Convert seconds to whole minutes, rounding half up"""
    if seconds <= 0:
        return 0
    return int((seconds + 30) // 60)
