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

"""Timezone handling.

A timezone is a list of DAYLIGHT and STANDARD transition rules. The
instants of all rules are materialized into an offset table, which answers
which UTC offset is in force at a given instant.

See https://www.rfc-editor.org/rfc/rfc5545#section-3.6.5
"""

import logging
import sys
from bisect import bisect_left
from collections.abc import Iterable
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dateutil.relativedelta import relativedelta
from icalendar.prop import vDate, vDatetime

from .config import DEFAULT_LIMITS, ExpansionLimits
from .rrule import Frequency, RecurrenceRule
from .tokenizer import PropertyLine, fold, split_unquoted, tokenize
from .values import (
    DATETIME_FORMAT,
    format_instant,
    format_offset,
    from_local,
    parse_offset,
    to_local,
    utc_instant,
)

logger = logging.getLogger(__name__)

# Offset table entry in force before the first known transition.
MIN_INSTANT = -sys.maxsize - 1

YEAR_SECONDS = 365 * 24 * 3600

DAY_SECONDS = 24 * 3600

# Sub-rules are expanded from this year on.
MIN_RULE_YEAR = 1970

_UTC_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class UnknownTimezone(KeyError):
    """The timezone database does not know a zone."""

    def __init__(self, tzid) -> None:
        super().__init__(tzid)
        self.tzid = tzid

    def __str__(self) -> str:
        return f"Unknown timezone {self.tzid!r}"


class TransitionKind(Enum):
    DAYLIGHT = "DAYLIGHT"
    STANDARD = "STANDARD"


class FixedOffset:
    """Calculation timezone with a constant offset."""

    def __init__(self, offset: int) -> None:
        self.offset = offset

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.offset!r})"

    def offset_seconds_at(self, instant: int) -> int:
        return self.offset


class TransitionRule:
    """One DAYLIGHT or STANDARD sub-component of a timezone."""

    def __init__(
        self,
        kind: TransitionKind,
        offset_from: int,
        offset_to: int,
        start: int,
        name: Optional[str] = None,
        rrule: Optional[RecurrenceRule] = None,
        rdates: Optional[Iterable[int]] = None,
        exdates: Optional[Iterable[int]] = None,
    ) -> None:
        self.kind = kind
        self.offset_from = offset_from
        self.offset_to = offset_to
        self.start = start
        self.name = name
        self.rrule = rrule
        self.rdates = list(rdates or [])
        self.exdates = list(exdates or [])

    def __repr__(self) -> str:
        return "{}({}, {}, {}, {!r})".format(
            type(self).__name__,
            self.kind.value,
            format_offset(self.offset_from),
            format_offset(self.offset_to),
            self.name,
        )

    def occurrences(self, limits: Optional[ExpansionLimits] = None) -> list[int]:
        """All instants at which this rule takes effect."""
        instants = {self.start}
        instants.update(self.rdates)
        if self.rrule is not None:
            calc_tz = FixedOffset(self.offset_to)
            anchor = self.start
            if self.rrule.freq == Frequency.YEARLY:
                local = to_local(anchor, calc_tz)
                if local.year < MIN_RULE_YEAR:
                    anchor = from_local(
                        local + relativedelta(year=MIN_RULE_YEAR), calc_tz
                    )
            instants.update(
                self.rrule.generate(anchor, timezone=calc_tz, limits=limits)
            )
        instants.difference_update(self.exdates)
        return sorted(instants)

    def to_ical(self) -> str:
        calc_tz = FixedOffset(self.offset_to)
        lines = [
            fold("BEGIN", None, self.kind.value),
            fold("TZOFFSETFROM", None, format_offset(self.offset_from)),
            fold("TZOFFSETTO", None, format_offset(self.offset_to)),
        ]
        if self.name:
            lines.append(fold("TZNAME", None, self.name))
        lines.append(
            fold("DTSTART", None, format_instant(self.start, DATETIME_FORMAT, calc_tz))
        )
        if self.rrule is not None:
            lines.append(fold("RRULE", None, self.rrule.to_ical()))
        if self.rdates:
            lines.append(
                fold(
                    "RDATE",
                    None,
                    ",".join(
                        format_instant(i, DATETIME_FORMAT, calc_tz)
                        for i in sorted(self.rdates)
                    ),
                )
            )
        if self.exdates:
            lines.append(
                fold(
                    "EXDATE",
                    None,
                    ",".join(
                        format_instant(i, DATETIME_FORMAT, calc_tz)
                        for i in sorted(self.exdates)
                    ),
                )
            )
        lines.append(fold("END", None, self.kind.value))
        return "".join(lines)


class Timezone:
    """A named timezone.

    The offset table is built on the first lookup. Rules should not be
    changed after that, other than through add_rule().
    """

    def __init__(
        self,
        tzid: str,
        rules: Optional[Iterable[TransitionRule]] = None,
        comment: Optional[str] = None,
        limits: Optional[ExpansionLimits] = None,
    ) -> None:
        self.tzid = tzid
        self.comment = comment
        self.limits = limits or DEFAULT_LIMITS
        self._rules = list(rules or [])
        self._table: Optional[list[tuple[int, int]]] = None
        self._thresholds: list[int] = []

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.tzid!r})"

    @property
    def rules(self) -> tuple[TransitionRule, ...]:
        return tuple(self._rules)

    def add_rule(self, rule: TransitionRule) -> None:
        self._rules.append(rule)
        self._table = None

    def offset_table(self) -> list[tuple[int, int]]:
        """Sorted list of (threshold, offset) entries."""
        if self._table is None:
            entries = []
            earliest = None
            for rule in self._rules:
                for instant in rule.occurrences(self.limits):
                    entries.append((instant, rule.offset_to))
                    if earliest is None or instant < earliest[0]:
                        earliest = (instant, rule.offset_from)
            if earliest is not None:
                entries.append((MIN_INSTANT, earliest[1]))
            entries.sort()
            self._table = entries
            self._thresholds = [threshold for threshold, offset in entries]
        return self._table

    def offset_seconds_at(self, instant: int) -> int:
        """Offset in force at an instant, in seconds.

        The entry that applies is the last one with a threshold strictly
        before the instant.
        """
        table = self.offset_table()
        index = bisect_left(self._thresholds, instant) - 1
        if index < 0:
            return 0
        return table[index][1]

    def offset_at(self, instant: int) -> str:
        """Offset in force at an instant, e.g. ``+0200``.

        Returns: the offset, or an empty string if no rules are known
        """
        table = self.offset_table()
        index = bisect_left(self._thresholds, instant) - 1
        if index < 0:
            return ""
        return format_offset(table[index][1])

    @classmethod
    def from_zone(
        cls,
        tzid: str,
        span_start: int,
        span_end: int,
        limits: Optional[ExpansionLimits] = None,
    ) -> "Timezone":
        """Build a timezone from the system timezone database.

        Transitions within a year around the span are included, so that
        lookups at the edges of the span are answered correctly.

        Raises:
          UnknownTimezone: if the zone is not known
        """
        try:
            zone = ZoneInfo(tzid)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise UnknownTimezone(tzid) from e
        first = span_start - YEAR_SECONDS
        last = span_end + YEAR_SECONDS
        rules: dict[tuple[TransitionKind, int, int], TransitionRule] = {}
        previous = _zone_state(zone, first)
        for instant, state in _zone_transitions(zone, first, last):
            kind = TransitionKind.DAYLIGHT if state[1] else TransitionKind.STANDARD
            key = (kind, previous[0], state[0])
            if key in rules:
                rules[key].rdates.append(instant)
            else:
                rules[key] = TransitionRule(
                    kind, previous[0], state[0], instant, name=state[2]
                )
            previous = state
        if not rules:
            offset, dst, name = previous
            kind = TransitionKind.DAYLIGHT if dst else TransitionKind.STANDARD
            rules[(kind, offset, offset)] = TransitionRule(
                kind, offset, offset, first, name=name
            )
        return cls(tzid, rules.values(), comment=tzid, limits=limits)

    @classmethod
    def from_ical(
        cls, text: Union[str, Iterable[str]], limits: Optional[ExpansionLimits] = None
    ) -> Optional["Timezone"]:
        return parse_vtimezone(text, limits=limits)

    @classmethod
    def from_file(
        cls, path: str, limits: Optional[ExpansionLimits] = None
    ) -> Optional["Timezone"]:
        with open(path, encoding="utf-8") as f:
            return parse_vtimezone(f, limits=limits)

    def to_ical(self) -> str:
        lines = [fold("BEGIN", None, "VTIMEZONE"), fold("TZID", None, self.tzid)]
        if self.comment:
            lines.append(fold("X-LIC-LOCATION", None, self.comment))
        lines.extend(rule.to_ical() for rule in self._rules)
        lines.append(fold("END", None, "VTIMEZONE"))
        return "".join(lines)


def _zone_state(zone: ZoneInfo, instant: int) -> tuple[int, bool, Optional[str]]:
    dt = (_UTC_EPOCH + timedelta(seconds=instant)).astimezone(zone)
    return (int(dt.utcoffset().total_seconds()), bool(dt.dst()), dt.tzname())


def _zone_transitions(zone: ZoneInfo, first: int, last: int):
    """Find the instants at which the state of a zone changes.

    The span is scanned in steps of a day; each change is narrowed down
    to the second and the scan resumes from there, so changes less than
    a day apart are all found. Two changes within one step that restore
    the earlier state cancel out and are not reported.
    """
    current = first
    state = _zone_state(zone, current)
    while current < last:
        ahead = min(current + DAY_SECONDS, last)
        new_state = _zone_state(zone, ahead)
        if new_state != state:
            low, high = current, ahead
            while high - low > 1:
                middle = (low + high) // 2
                if _zone_state(zone, middle) == state:
                    low = middle
                else:
                    high = middle
            new_state = _zone_state(zone, high)
            yield high, new_state
            state = new_state
            ahead = high
        current = ahead


class TimezoneRegistry:
    """Timezones of a calendar, by TZID."""

    def __init__(self) -> None:
        self._timezones: dict[str, Timezone] = {}

    def __contains__(self, tzid) -> bool:
        return tzid in self._timezones

    def __iter__(self):
        return iter(self._timezones.values())

    def __len__(self) -> int:
        return len(self._timezones)

    def add(self, tz: Timezone) -> None:
        self._timezones[tz.tzid] = tz

    def get(self, tzid: str) -> Optional[Timezone]:
        return self._timezones.get(tzid)


class _TransitionBlock:
    """Raw fields of a DAYLIGHT or STANDARD block."""

    def __init__(self, kind: TransitionKind) -> None:
        self.kind = kind
        self.dtstart: Optional[str] = None
        self.offset_from: Optional[str] = None
        self.offset_to: Optional[str] = None
        self.name: Optional[str] = None
        self.rrule: Optional[str] = None
        self.rdates: list[str] = []
        self.exdates: list[str] = []

    def feed(self, prop: PropertyLine) -> None:
        if prop.name == "DTSTART":
            self.dtstart = prop.value
        elif prop.name == "TZOFFSETFROM":
            self.offset_from = prop.value
        elif prop.name == "TZOFFSETTO":
            self.offset_to = prop.value
        elif prop.name == "TZNAME":
            self.name = prop.value
        elif prop.name == "RRULE":
            self.rrule = prop.value
        elif prop.name == "RDATE":
            self.rdates.extend(split_unquoted(prop.value, ","))
        elif prop.name == "EXDATE":
            self.exdates.extend(split_unquoted(prop.value, ","))
        else:
            logger.debug("Ignoring %s in %s block", prop.name, self.kind.value)

    def build(self) -> Optional[TransitionRule]:
        offset_to = None if self.offset_to is None else parse_offset(self.offset_to)
        if offset_to is None:
            logger.warning("%s block without valid TZOFFSETTO", self.kind.value)
            return None
        offset_from = offset_to
        if self.offset_from is not None:
            parsed = parse_offset(self.offset_from)
            if parsed is not None:
                offset_from = parsed
        if self.dtstart is None:
            logger.warning("%s block without DTSTART", self.kind.value)
            return None
        # Local times in these blocks are resolved with the offset the
        # block switches to.
        start = _resolve_local(self.dtstart, offset_to)
        if start is None:
            return None
        rrule = None
        if self.rrule is not None:
            rrule = RecurrenceRule.parse(self.rrule)
        return TransitionRule(
            self.kind,
            offset_from,
            offset_to,
            start,
            name=self.name,
            rrule=rrule,
            rdates=_resolve_all(self.rdates, offset_to),
            exdates=_resolve_all(self.exdates, offset_to),
        )


def _resolve_local(value: str, offset: int) -> Optional[int]:
    value = value.split("/")[0].strip()
    try:
        if len(value) == 8:
            dt = datetime.combine(vDate.from_ical(value), datetime.min.time())
        else:
            dt = vDatetime.from_ical(value)
    except ValueError:
        logger.warning("Invalid date-time value %r in timezone", value)
        return None
    if dt.tzinfo is not None:
        return utc_instant(dt)
    return from_local(dt, FixedOffset(offset))


def _resolve_all(values: list[str], offset: int) -> list[int]:
    result = []
    for value in values:
        instant = _resolve_local(value, offset)
        if instant is not None:
            result.append(instant)
    return result


class TimezoneBuilder:
    """Collects the properties of a VTIMEZONE component.

    All fields are collected first; instants are only resolved in build(),
    since the offset they depend on may follow them.
    """

    def __init__(self, limits: Optional[ExpansionLimits] = None) -> None:
        self.limits = limits
        self.tzid: Optional[str] = None
        self.comment: Optional[str] = None
        self._blocks: list[_TransitionBlock] = []
        self._current: Optional[_TransitionBlock] = None

    def feed(self, prop: PropertyLine) -> None:
        if prop.name == "BEGIN":
            try:
                kind = TransitionKind(prop.value.strip().upper())
            except ValueError:
                logger.debug("Ignoring %s component in timezone", prop.value)
                return
            self._current = _TransitionBlock(kind)
            self._blocks.append(self._current)
        elif prop.name == "END":
            self._current = None
        elif self._current is not None:
            self._current.feed(prop)
        elif prop.name == "TZID":
            self.tzid = prop.value
        elif prop.name == "X-LIC-LOCATION":
            self.comment = prop.value
        else:
            logger.debug("Ignoring %s in timezone", prop.name)

    def build(self) -> Optional[Timezone]:
        if not self.tzid:
            logger.warning("Timezone without TZID")
            return None
        rules = []
        for block in self._blocks:
            rule = block.build()
            if rule is not None:
                rules.append(rule)
        return Timezone(self.tzid, rules, comment=self.comment, limits=self.limits)


def parse_vtimezone(
    lines: Union[str, Iterable[str]], limits: Optional[ExpansionLimits] = None
) -> Optional[Timezone]:
    """Read the first VTIMEZONE component from iCalendar text."""
    builder = None
    for prop in tokenize(lines):
        if builder is None:
            if prop.name == "BEGIN" and prop.value.strip().upper() == "VTIMEZONE":
                builder = TimezoneBuilder(limits)
            continue
        if prop.name == "END" and prop.value.strip().upper() == "VTIMEZONE":
            return builder.build()
        builder.feed(prop)
    if builder is not None:
        logger.warning("Unterminated VTIMEZONE component")
        return builder.build()
    return None
