from datetime import date, datetime, timezone


def utcnow() -> datetime:
    """Return the current UTC time as a timezone-aware datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    """Make a naive datetime timezone-aware (UTC). Already-aware datetimes pass through.

    MongoDB stores datetimes without tzinfo (naive). Wrap values read from a
    document with ensure_utc() before comparing them with utcnow().
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def as_utc(dt: datetime | None) -> datetime | None:
    """None-safe UTC conversion for JSON serialization at API boundaries."""
    if dt is None:
        return None
    return ensure_utc(dt)


def parse_birth_date(value: str) -> date | None:
    """Parse a YYYY-MM-DD birth date. Returns None for malformed input."""
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except (ValueError, TypeError):
        return None


def is_adult(birth: date, today: date | None = None, min_age: int = 18) -> bool:
    today = today or utcnow().date()
    age = today.year - birth.year - ((today.month, today.day) < (birth.month, birth.day))
    return age >= min_age


def round_money(amount: float) -> float:
    return round(float(amount), 2)
