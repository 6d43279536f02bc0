"""Day-window and date helpers.

Meal timestamps are epoch milliseconds.  A calendar day in the
configured timezone maps to the closed window
``[start_of_day(d), start_of_day(d + 1) - 1]``.
"""

from __future__ import annotations

import datetime as _dt


def now_ms() -> int:
    """Current time as epoch milliseconds."""
    return int(_dt.datetime.now(_dt.timezone.utc).timestamp() * 1000)


def today_local(tz: _dt.tzinfo) -> _dt.date:
    """Today's date in the given timezone."""
    return _dt.datetime.now(tz).date()


def start_of_day_ms(d: _dt.date, tz: _dt.tzinfo) -> int:
    """Epoch milliseconds of local midnight at the start of *d*."""
    midnight = _dt.datetime.combine(d, _dt.time.min, tzinfo=tz)
    return int(midnight.timestamp() * 1000)


def day_window(d: _dt.date, tz: _dt.tzinfo) -> tuple[int, int]:
    """Return ``(start_ms, end_ms)`` for *d*, both inclusive.

    The end is one millisecond before the next day's midnight, so DST
    days are 23 or 25 hours long.
    """
    start = start_of_day_ms(d, tz)
    end = start_of_day_ms(d + _dt.timedelta(days=1), tz) - 1
    return start, end


def local_date_from_ms(ts_ms: int, tz: _dt.tzinfo) -> _dt.date:
    """Convert an epoch-millisecond timestamp to a local date in *tz*."""
    return _dt.datetime.fromtimestamp(ts_ms / 1000, tz=tz).date()


def shift_date(current: _dt.date, days: int, today: _dt.date) -> _dt.date:
    """Move *current* by *days*, refusing to go past *today*.

    Returns *current* unchanged when the move would land in the future.
    """
    candidate = current + _dt.timedelta(days=days)
    if candidate > today:
        return current
    return candidate


def last_7_days(today: _dt.date) -> list[_dt.date]:
    """Return the last 7 dates ending with *today* (descending order).

    Example: if today is Wed Jun 19, returns [Jun 19, Jun 18, ..., Jun 13].
    """
    return [today - _dt.timedelta(days=i) for i in range(7)]
