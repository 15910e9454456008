from datetime import datetime, timezone

from flask import current_app


def utcnow() -> datetime:
    """Naive UTC timestamp, the form the database stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class SystemClock:
    def now(self) -> datetime:
        return utcnow()


def get_clock():
    return current_app.extensions["clock"]


def now() -> datetime:
    return get_clock().now()
