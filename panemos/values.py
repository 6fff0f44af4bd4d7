# Panemos
# Copyright (C) 2025 Jelmer Vernooĳ <jelmer@jelmer.uk>, et al.
#
# This program is free software; you can redistribute it and/or
# modify it under the terms of the GNU General Public License
# as published by the Free Software Foundation; version 3
# of the License or (at your option) any later version of
# the License.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU General Public License for more details.
#
# You should have received a copy of the GNU General Public License
# along with this program; if not, write to the Free Software
# Foundation, Inc., 51 Franklin Street, Fifth Floor, Boston,
# MA  02110-1301, USA.

"""Value codecs and wall-clock arithmetic.

Instants are whole seconds since the Unix epoch. Every helper that works
with local time takes the calculation timezone as an argument: any object
with an ``offset_seconds_at(instant)`` method, or None for UTC.
"""

import calendar
import logging
from datetime import date, datetime, time, timedelta
from typing import Optional, Protocol, Union

from dateutil.relativedelta import relativedelta
from icalendar.prop import vDate, vDatetime, vDuration, vUTCOffset

logger = logging.getLogger(__name__)

EPOCH = datetime(1970, 1, 1)

DATE_FORMAT = "%Y%m%d"
DATETIME_FORMAT = "%Y%m%dT%H%M%S"

DurationLike = Union[str, timedelta, relativedelta]

DATE_PARTS = ("year", "month", "day", "hour", "minute", "second")


class OffsetSource(Protocol):
    def offset_seconds_at(self, instant: int) -> int: ...


def offset_seconds(tz: Optional[OffsetSource], instant: int) -> int:
    """UTC offset in force at an instant; no timezone means no correction."""
    if tz is None:
        return 0
    return tz.offset_seconds_at(instant)


def timegm(dt: datetime) -> int:
    """Interpret a naive datetime as UTC."""
    return calendar.timegm(dt.timetuple())


def utc_instant(dt: datetime) -> int:
    """Instant of an aware datetime."""
    return calendar.timegm(dt.utctimetuple())


def to_local(instant: int, tz: Optional[OffsetSource] = None) -> datetime:
    """Wall-clock time of an instant, as a naive datetime."""
    return EPOCH + timedelta(seconds=instant + offset_seconds(tz, instant))


def from_local(dt: datetime, tz: Optional[OffsetSource] = None) -> int:
    """Instant of a wall-clock time.

    The offset is looked up twice, so that a time just after a transition
    resolves with the offset of the new period.
    """
    naive = timegm(dt)
    guess = naive - offset_seconds(tz, naive)
    return naive - offset_seconds(tz, guess)


def parse_date(value: str) -> Optional[date]:
    try:
        return vDate.from_ical(value)
    except ValueError:
        logger.warning("Invalid date value %r", value)
        return None


def parse_datetime(value: str, tz: Optional[OffsetSource] = None) -> Optional[int]:
    """Parse a DATE or DATE-TIME value into an instant.

    Values with a trailing Z are UTC, others are wall-clock times in ``tz``.
    A DATE value is midnight of that day.
    """
    value = value.strip()
    if len(value) == 8:
        d = parse_date(value)
        if d is None:
            return None
        return from_local(datetime.combine(d, time()), tz)
    try:
        dt = vDatetime.from_ical(value)
    except ValueError:
        logger.warning("Invalid date-time value %r", value)
        return None
    if dt.tzinfo is not None:
        return utc_instant(dt)
    return from_local(dt, tz)


def is_date_value(value: str, params=None) -> bool:
    if params is not None and params.get("VALUE", "").upper() == "DATE":
        return True
    return len(value.strip()) == 8


def parse_duration(value: str) -> Optional[timedelta]:
    try:
        return vDuration.from_ical(value.strip())
    except ValueError:
        logger.warning("Invalid duration value %r", value)
        return None


def format_duration(duration: Union[int, timedelta]) -> str:
    if not isinstance(duration, timedelta):
        duration = timedelta(seconds=duration)
    return vDuration(duration).to_ical().decode("ascii")


def parse_offset(value: str) -> Optional[int]:
    """Parse a UTC offset such as ``+0200`` into seconds."""
    try:
        return int(vUTCOffset.from_ical(value.strip()).total_seconds())
    except ValueError:
        logger.warning("Invalid UTC offset %r", value)
        return None


def format_offset(seconds: int) -> str:
    return vUTCOffset(timedelta(seconds=seconds)).to_ical()


def format_instant(
    instant: int, fmt: str = DATETIME_FORMAT, tz: Optional[OffsetSource] = None
) -> str:
    return to_local(instant, tz).strftime(fmt)


def format_utc(instant: int) -> str:
    return format_instant(instant, DATETIME_FORMAT + "Z")


def _as_delta(duration: DurationLike) -> Optional[Union[timedelta, relativedelta]]:
    if isinstance(duration, str):
        return parse_duration(duration)
    return duration


def _shift(instant: int, delta, sign: int, tz: Optional[OffsetSource]) -> int:
    if isinstance(delta, relativedelta):
        local = to_local(instant, tz)
        return from_local(local + delta if sign > 0 else local - delta, tz)
    if delta < timedelta(0):
        delta = -delta
        sign = -sign
    # Days are nominal and keep the wall-clock time, the rest is exact.
    local = to_local(instant, tz) + sign * timedelta(days=delta.days)
    return from_local(local, tz) + sign * delta.seconds


def add_interval(
    instant: int, duration: DurationLike, tz: Optional[OffsetSource] = None
) -> int:
    """Add a duration, keeping the wall-clock time stable across transitions.

    Returns: the new instant, or the unchanged instant if the duration is
        not valid
    """
    delta = _as_delta(duration)
    if delta is None:
        return instant
    return _shift(instant, delta, 1, tz)


def sub_interval(
    instant: int, duration: DurationLike, tz: Optional[OffsetSource] = None
) -> int:
    delta = _as_delta(duration)
    if delta is None:
        return instant
    return _shift(instant, delta, -1, tz)


def get_part(instant: int, part: str, tz: Optional[OffsetSource] = None) -> int:
    if part not in DATE_PARTS:
        raise ValueError(f"unknown date part {part!r}")
    return getattr(to_local(instant, tz), part)


def set_part(
    instant: int, part: str, value: int, tz: Optional[OffsetSource] = None
) -> int:
    """Replace one wall-clock field of an instant."""
    if part not in DATE_PARTS:
        raise ValueError(f"unknown date part {part!r}")
    local = to_local(instant, tz)
    try:
        local = local.replace(**{part: value})
    except ValueError:
        logger.warning("Can not set %s to %d on %s", part, value, local)
        return instant
    return from_local(local, tz)


def truncate_day(instant: int, tz: Optional[OffsetSource] = None) -> int:
    """Instant of local midnight of the day an instant falls on."""
    local = to_local(instant, tz)
    return from_local(datetime.combine(local.date(), time()), tz)


def calc_duration(start: int, end: int, tz: Optional[OffsetSource] = None) -> int:
    """Nominal duration between two instants.

    An offset change between both instants is not counted, so that one
    calendar day is always 86400 seconds.
    """
    return end - start + offset_seconds(tz, end) - offset_seconds(tz, start)
