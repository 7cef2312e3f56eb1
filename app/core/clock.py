from datetime import datetime, timezone


def utcnow() -> datetime:
    """
    Current time in UTC as a naive datetime.

    Timestamp columns are TIMESTAMP WITHOUT TIME ZONE, so values are
    stored as plain UTC regardless of the database session timezone.
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)
