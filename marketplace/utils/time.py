"""Time utilities."""
from datetime import UTC, datetime, timezone


def utcnow() -> datetime:
    """Return current UTC time with timezone awareness."""

    return datetime.now(tz=UTC)


def epoch_millis(moment: datetime | None = None) -> int:
    """Return milliseconds since the epoch for ``moment`` (defaults to now)."""

    moment = moment or utcnow()
    return int(moment.astimezone(timezone.utc).timestamp() * 1000)


__all__ = ["utcnow", "epoch_millis"]
