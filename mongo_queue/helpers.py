"""
Token and timestamp helpers.

Timestamps are ISO-8601 strings with millisecond precision in UTC, so
they order lexicographically inside MongoDB queries.
"""
import datetime as dt
import secrets


def token() -> str:
    """Random 32-char hex token used for ack values."""
    return secrets.token_hex(16)


def _format(moment: dt.datetime) -> str:
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def now() -> str:
    return _format(dt.datetime.now(dt.UTC))


def now_plus_secs(secs: float) -> str:
    return _format(dt.datetime.now(dt.UTC) + dt.timedelta(seconds=secs))
