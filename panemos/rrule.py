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

"""Recurrence rule expansion.

See https://www.rfc-editor.org/rfc/rfc5545#section-3.3.10
"""

import calendar
import logging
import re
from collections.abc import Iterable
from datetime import date, datetime, time, timedelta
from enum import IntEnum
from typing import Optional

from dateutil.relativedelta import relativedelta
from icalendar.prop import vDatetime

from .config import DEFAULT_LIMITS, ExpansionLimits
from .values import (
    OffsetSource,
    format_utc,
    from_local,
    parse_date,
    timegm,
    to_local,
    truncate_day,
    utc_instant,
)

logger = logging.getLogger(__name__)


class Frequency(IntEnum):
    """Recurrence frequencies, ordered from fine to coarse."""

    SECONDLY = 1
    MINUTELY = 2
    HOURLY = 3
    DAILY = 4
    WEEKLY = 5
    MONTHLY = 6
    YEARLY = 7


# Indexed by datetime.weekday()
WEEKDAYS = ("MO", "TU", "WE", "TH", "FR", "SA", "SU")

SUNDAY = 6

_BYDAY_RE = re.compile(r"^([+-]?\d{1,2})?(MO|TU|WE|TH|FR|SA|SU)$")

_UNIT_SECONDS = {
    Frequency.SECONDLY: 1,
    Frequency.MINUTELY: 60,
    Frequency.HOURLY: 3600,
}

_TIME_FIELDS = {
    "hour": ("by_hour", Frequency.HOURLY),
    "minute": ("by_minute", Frequency.MINUTELY),
    "second": ("by_second", Frequency.SECONDLY),
}


class ExclusionSet:
    """Instants excluded from a recurrence set.

    Exact instants only blank an occurrence at that very instant; days
    (given as the instant of local midnight) blank every occurrence on
    that calendar day.
    """

    def __init__(self, instants=None, days=None) -> None:
        self.instants = set(instants or [])
        self.days = set(days or [])

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.instants!r}, {self.days!r})"

    def __bool__(self) -> bool:
        return bool(self.instants or self.days)

    def add(self, instant: int, whole_day: bool = False) -> None:
        if whole_day:
            self.days.add(instant)
        else:
            self.instants.add(instant)

    def excludes(self, instant: int, tz: Optional[OffsetSource] = None) -> bool:
        if instant in self.instants:
            return True
        return bool(self.days) and truncate_day(instant, tz) in self.days


def _days_in_year(year: int) -> int:
    return 366 if calendar.isleap(year) else 365


def _days_in_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def _week_one_start(year: int, week_start: int) -> date:
    jan1 = date(year, 1, 1)
    offset = (jan1.weekday() - week_start) % 7
    # Week one is the first week with at least four days in the year.
    if offset <= 3:
        return jan1 - timedelta(days=offset)
    return jan1 + timedelta(days=7 - offset)


def week_number(d: date, week_start: int) -> tuple[int, int, int]:
    """Week number of a date.

    Returns: tuple with the week based year, the week number and the
        number of weeks in that year
    """
    year = d.year
    if d < _week_one_start(year, week_start):
        year -= 1
    elif d >= _week_one_start(year + 1, week_start):
        year += 1
    first = _week_one_start(year, week_start)
    weeks = (_week_one_start(year + 1, week_start) - first).days // 7
    return year, (d - first).days // 7 + 1, weeks


def _match_signed(value: int, size: int, candidates: Iterable[int]) -> bool:
    for n in candidates:
        if n > 0 and n == value:
            return True
        if n < 0 and size + n + 1 == value:
            return True
    return False


class RecurrenceRule:
    """A parsed RRULE value.

    Structural errors mark the rule as fatal; a fatal rule never produces
    occurrences. Values out of range are dropped with a warning.
    """

    def __init__(self, text: Optional[str] = None) -> None:
        self.text = text
        self.freq: Optional[Frequency] = None
        self.until: Optional[int] = None
        self.count: Optional[int] = None
        self.interval = 1
        self.by_second: Optional[list[int]] = None
        self.by_minute: Optional[list[int]] = None
        self.by_hour: Optional[list[int]] = None
        self.by_day: Optional[list[tuple[Optional[int], int]]] = None
        self.by_month_day: Optional[list[int]] = None
        self.by_year_day: Optional[list[int]] = None
        self.by_week_no: Optional[list[int]] = None
        self.by_month: Optional[list[int]] = None
        self.by_set_pos: Optional[list[int]] = None
        self.week_start = SUNDAY
        self.fatal = False
        self.errors: list[str] = []
        self.warnings: list[str] = []
        if text is not None:
            self._parse(text)

    @classmethod
    def parse(cls, text: str) -> "RecurrenceRule":
        return cls(text)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.text!r})"

    def _fail(self, message: str) -> None:
        self.fatal = True
        self.errors.append(message)
        logger.error("Invalid recurrence rule %r: %s", self.text, message)

    def _warn(self, message: str) -> None:
        self.warnings.append(message)
        logger.warning("Recurrence rule %r: %s", self.text, message)

    def _parse_int(self, key: str, value: str) -> Optional[int]:
        try:
            return int(value)
        except ValueError:
            self._warn(f"{key} is not a number: {value!r}")
            return None

    def _parse_int_list(
        self, key: str, value: str, lowest: int, highest: int, signed: bool = False
    ) -> Optional[list[int]]:
        result = []
        for item in value.split(","):
            n = self._parse_int(key, item.strip())
            if n is None:
                return None
            if signed:
                valid = n != 0 and lowest <= abs(n) <= highest
            else:
                valid = lowest <= n <= highest
            if not valid:
                self._warn(f"{key} value {n} out of range")
                return None
            result.append(n)
        return result

    def _parse_by_day(self, value: str) -> Optional[list[tuple[Optional[int], int]]]:
        result = []
        for item in value.split(","):
            m = _BYDAY_RE.match(item.strip().upper())
            if m is None:
                self._fail(f"invalid BYDAY value {item!r}")
                return None
            ordinal = int(m.group(1)) if m.group(1) else None
            if ordinal is not None and not 1 <= abs(ordinal) <= 53:
                self._warn(f"BYDAY ordinal {ordinal} out of range")
                return None
            result.append((ordinal, WEEKDAYS.index(m.group(2))))
        return result

    def _parse_until(self, value: str) -> Optional[int]:
        if len(value) == 8:
            d = parse_date(value)
            if d is None:
                return None
            return timegm(datetime.combine(d, time(23, 59, 59)))
        try:
            dt = vDatetime.from_ical(value)
        except ValueError:
            return None
        if dt.tzinfo is not None:
            return utc_instant(dt)
        return timegm(dt)

    def _parse(self, text: str) -> None:
        text = text.strip()
        if text.upper().startswith("RRULE:"):
            text = text[len("RRULE:") :]
        for part in text.split(";"):
            if not part.strip():
                continue
            key, _, value = part.partition("=")
            key = key.strip().upper()
            value = value.strip()
            if key == "FREQ":
                try:
                    self.freq = Frequency[value.upper()]
                except KeyError:
                    self._fail(f"unknown frequency {value!r}")
            elif key == "UNTIL":
                self.until = self._parse_until(value)
                if self.until is None:
                    self._fail(f"invalid UNTIL value {value!r}")
            elif key == "COUNT":
                self.count = self._parse_int(key, value)
                if self.count is not None and self.count < 1:
                    self._warn(f"COUNT must be positive, not {self.count}")
                    self.count = 1
            elif key == "INTERVAL":
                interval = self._parse_int(key, value)
                if interval is None:
                    interval = 1
                elif interval < 1:
                    self._warn(f"INTERVAL must be positive, not {interval}")
                    interval = 1
                self.interval = interval
            elif key == "BYSECOND":
                self.by_second = self._parse_int_list(key, value, 0, 59)
            elif key == "BYMINUTE":
                self.by_minute = self._parse_int_list(key, value, 0, 59)
            elif key == "BYHOUR":
                self.by_hour = self._parse_int_list(key, value, 0, 23)
            elif key == "BYDAY":
                self.by_day = self._parse_by_day(value)
            elif key == "BYMONTHDAY":
                self.by_month_day = self._parse_int_list(key, value, 1, 31, True)
            elif key == "BYYEARDAY":
                self.by_year_day = self._parse_int_list(key, value, 1, 366, True)
            elif key == "BYWEEKNO":
                self.by_week_no = self._parse_int_list(key, value, 1, 53, True)
            elif key == "BYMONTH":
                self.by_month = self._parse_int_list(key, value, 1, 12)
            elif key == "BYSETPOS":
                self.by_set_pos = self._parse_int_list(key, value, 1, 366, True)
            elif key == "WKST":
                if value.upper() in WEEKDAYS:
                    self.week_start = WEEKDAYS.index(value.upper())
                else:
                    self._warn(f"invalid WKST value {value!r}")
            else:
                logger.debug("Ignoring unknown recurrence rule part %r", key)
        if self.freq is None and not self.fatal:
            self._fail("FREQ missing")
        if self.until is not None and self.count is not None:
            self._fail("UNTIL and COUNT are mutually exclusive")
        if self.by_week_no is not None and self.freq not in (None, Frequency.YEARLY):
            self._fail("BYWEEKNO is only valid with FREQ=YEARLY")

    def has_filters(self) -> bool:
        return any(
            f is not None
            for f in (
                self.by_month,
                self.by_week_no,
                self.by_year_day,
                self.by_month_day,
                self.by_day,
                self.by_hour,
                self.by_minute,
                self.by_second,
            )
        )

    def to_ical(self) -> str:
        if self.freq is None:
            return ""
        parts = [f"FREQ={self.freq.name}"]
        if self.until is not None:
            parts.append(f"UNTIL={format_utc(self.until)}")
        if self.count is not None:
            parts.append(f"COUNT={self.count}")
        if self.interval != 1:
            parts.append(f"INTERVAL={self.interval}")
        for key, values in (
            ("BYSECOND", self.by_second),
            ("BYMINUTE", self.by_minute),
            ("BYHOUR", self.by_hour),
        ):
            if values is not None:
                parts.append(f"{key}={','.join(map(str, values))}")
        if self.by_day is not None:
            days = [
                (str(ordinal) if ordinal is not None else "") + WEEKDAYS[weekday]
                for ordinal, weekday in self.by_day
            ]
            parts.append("BYDAY=" + ",".join(days))
        for key, values in (
            ("BYMONTHDAY", self.by_month_day),
            ("BYYEARDAY", self.by_year_day),
            ("BYWEEKNO", self.by_week_no),
            ("BYMONTH", self.by_month),
            ("BYSETPOS", self.by_set_pos),
        ):
            if values is not None:
                parts.append(f"{key}={','.join(map(str, values))}")
        if self.week_start != SUNDAY:
            parts.append(f"WKST={WEEKDAYS[self.week_start]}")
        return ";".join(parts)

    def generate(
        self,
        start: int,
        max_instant: Optional[int] = None,
        timezone: Optional[OffsetSource] = None,
        exclusions: Optional[ExclusionSet] = None,
        limits: Optional[ExpansionLimits] = None,
    ) -> list[int]:
        """Expand the rule into occurrence instants.

        Args:
          start: instant of the first occurrence (DTSTART)
          max_instant: last instant of interest, or None
          timezone: calculation timezone for wall-clock arithmetic
          exclusions: occurrences to leave out; they do not count
            towards COUNT
          limits: expansion ceilings
        Returns: sorted list of instants
        """
        if self.fatal:
            return []
        expansion = _Expansion(self, start, timezone, limits or DEFAULT_LIMITS)
        return expansion.run(max_instant, exclusions)


class _Expansion:
    """State of a single expansion of a rule."""

    def __init__(
        self,
        rule: RecurrenceRule,
        start: int,
        tz: Optional[OffsetSource],
        limits: ExpansionLimits,
    ) -> None:
        self.rule = rule
        self.start = start
        self.tz = tz
        self.limits = limits
        self.start_local = to_local(start, tz)
        self.has_filters = rule.has_filters()
        self.by_month = rule.by_month
        self.by_month_day = rule.by_month_day
        self.by_day = rule.by_day
        if (
            rule.by_week_no is None
            and rule.by_year_day is None
            and rule.by_month_day is None
            and rule.by_day is None
        ):
            # Without day filters the day is taken from the start.
            if rule.freq == Frequency.YEARLY:
                if self.by_month is None:
                    self.by_month = [self.start_local.month]
                self.by_month_day = [self.start_local.day]
            elif rule.freq == Frequency.MONTHLY:
                self.by_month_day = [self.start_local.day]
            elif rule.freq == Frequency.WEEKLY:
                self.by_day = [(None, self.start_local.weekday())]
        if rule.freq == Frequency.MONTHLY or (
            rule.freq == Frequency.YEARLY and rule.by_month is not None
        ):
            self.ordinal_scope = "month"
        elif rule.freq == Frequency.YEARLY:
            self.ordinal_scope = "year"
        else:
            self.ordinal_scope = None

    def run(self, max_instant, exclusions) -> list[int]:
        rule = self.rule
        result: list[int] = []
        seen = set()
        k = 0
        while True:
            if k >= self.limits.max_intervals:
                logger.critical(
                    "Recurrence rule %r: infinite loop detected after %d intervals",
                    rule.text,
                    k,
                )
                break
            period = self._period(k)
            k += 1
            if period is None:
                break
            period_start, year, candidates = period
            if year > self.limits.max_year:
                break
            if rule.until is not None and period_start > rule.until:
                break
            if max_instant is not None and period_start > max_instant:
                break
            done = False
            for instant in self._select(candidates):
                if instant < self.start or instant in seen:
                    continue
                if rule.until is not None and instant > rule.until:
                    done = True
                    break
                if max_instant is not None and instant > max_instant:
                    done = True
                    break
                if exclusions and exclusions.excludes(instant, self.tz):
                    continue
                seen.add(instant)
                result.append(instant)
                if rule.count is not None and len(result) >= rule.count:
                    done = True
                    break
            if done:
                break
        return self._cleanup(result, max_instant)

    def _cleanup(self, result, max_instant) -> list[int]:
        rule = self.rule
        result = sorted(set(result))
        if rule.until is not None:
            result = [i for i in result if i <= rule.until]
        if max_instant is not None:
            result = [i for i in result if i <= max_instant]
        if rule.count is not None:
            result = result[: rule.count]
        return result

    def _select(self, candidates: list[int]) -> list[int]:
        candidates = sorted(set(candidates))
        if not self.rule.by_set_pos:
            return candidates
        picked = set()
        for pos in self.rule.by_set_pos:
            index = pos - 1 if pos > 0 else len(candidates) + pos
            if 0 <= index < len(candidates):
                picked.add(candidates[index])
        return sorted(picked)

    def _period(self, k: int) -> Optional[tuple[int, int, list[int]]]:
        """Compute the k-th base interval.

        Returns: tuple with the instant the interval starts at, its year
            and the candidate instants within it; None if the interval is
            beyond the representable range
        """
        freq = self.rule.freq
        step = k * self.rule.interval
        if freq in _UNIT_SECONDS:
            return self._sub_daily_period(step)
        try:
            first_day, days = self._period_days(step)
        except (OverflowError, ValueError):
            return None
        first = datetime.combine(first_day, time())
        if not self.has_filters:
            base = self._shifted_start(step)
            if base is None:
                return from_local(first, self.tz), first.year, []
            start = from_local(base, self.tz)
            return start, base.year, [start]
        times = [
            time(h, m, s)
            for h in self._time_values("hour", None)
            for m in self._time_values("minute", None)
            for s in self._time_values("second", None)
        ]
        candidates = [
            from_local(datetime.combine(d, t), self.tz)
            for d in days
            if self._match_day(d)
            for t in times
        ]
        return from_local(first, self.tz), first.year, candidates

    def _shifted_start(self, step: int) -> Optional[datetime]:
        freq = self.rule.freq
        start = self.start_local
        if freq == Frequency.YEARLY:
            shifted = start + relativedelta(years=step)
        elif freq == Frequency.MONTHLY:
            shifted = start + relativedelta(months=step)
        elif freq == Frequency.WEEKLY:
            return start + timedelta(weeks=step)
        else:
            return start + timedelta(days=step)
        # Months without the start day are skipped rather than clamped.
        if shifted.day != start.day:
            return None
        return shifted

    def _period_days(self, step: int) -> tuple[date, list[date]]:
        """Days of the k-th interval.

        Returns: tuple with the first day of the interval and the days
            that are worth checking against the day filters
        """
        freq = self.rule.freq
        start = self.start_local.date()
        if freq == Frequency.YEARLY:
            year = start.year + step
            months = sorted(self.by_month or range(1, 13))
            return date(year, 1, 1), [
                date(year, month, day)
                for month in months
                for day in range(1, _days_in_month(year, month) + 1)
            ]
        elif freq == Frequency.MONTHLY:
            year, month = divmod(start.year * 12 + start.month - 1 + step, 12)
            month += 1
            days = [
                date(year, month, day)
                for day in range(1, _days_in_month(year, month) + 1)
            ]
            return days[0], days
        elif freq == Frequency.WEEKLY:
            first = start - timedelta(days=(start.weekday() - self.rule.week_start) % 7)
            first += timedelta(weeks=step)
            return first, [first + timedelta(days=i) for i in range(7)]
        else:
            day = start + timedelta(days=step)
            return day, [day]

    def _sub_daily_period(self, step: int) -> Optional[tuple[int, int, list[int]]]:
        freq = self.rule.freq
        base = self.start + step * _UNIT_SECONDS[freq]
        try:
            local = to_local(base, self.tz)
        except OverflowError:
            return None
        if not self.has_filters:
            return base, local.year, [base]
        if freq == Frequency.HOURLY:
            local = local.replace(minute=0, second=0)
        elif freq == Frequency.MINUTELY:
            local = local.replace(second=0)
        period_start = from_local(local, self.tz)
        if not self._match_day(local.date()):
            return period_start, local.year, []
        candidates = [
            from_local(local.replace(hour=h, minute=m, second=s), self.tz)
            for h in self._time_values("hour", local)
            for m in self._time_values("minute", local)
            for s in self._time_values("second", local)
        ]
        return period_start, local.year, candidates

    def _time_values(self, field: str, period: Optional[datetime]) -> list[int]:
        attr, unit = _TIME_FIELDS[field]
        values = getattr(self.rule, attr)
        if self.rule.freq > unit:
            if values is None:
                return [getattr(self.start_local, field)]
            return sorted(values)
        # The interval fixes this field; a filter can only limit it.
        current = getattr(period, field)
        if values is None or current in values:
            return [current]
        return []

    def _match_day(self, d: date) -> bool:
        rule = self.rule
        if self.by_month is not None and d.month not in self.by_month:
            return False
        if rule.by_week_no is not None:
            _, weekno, weeks = week_number(d, rule.week_start)
            if not _match_signed(weekno, weeks, rule.by_week_no):
                return False
        yday = d.timetuple().tm_yday
        if rule.by_year_day is not None:
            if not _match_signed(yday, _days_in_year(d.year), rule.by_year_day):
                return False
        dim = _days_in_month(d.year, d.month)
        if self.by_month_day is not None:
            if not _match_signed(d.day, dim, self.by_month_day):
                return False
        if self.by_day is not None:
            return any(
                self._match_weekday(d, ordinal, weekday, yday, dim)
                for ordinal, weekday in self.by_day
            )
        return True

    def _match_weekday(self, d, ordinal, weekday, yday, dim) -> bool:
        if d.weekday() != weekday:
            return False
        if ordinal is None or self.ordinal_scope is None:
            return True
        if self.ordinal_scope == "month":
            position, size = d.day, dim
        else:
            position, size = yday, _days_in_year(d.year)
        if ordinal > 0:
            return (position - 1) // 7 + 1 == ordinal
        return (size - position) // 7 + 1 == -ordinal
