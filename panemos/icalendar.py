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

"""ICalendar file handling."""

import copy
import logging
from collections.abc import Iterable, Iterator
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Optional, Union

from icalendar.caselessdict import CaselessDict

from .config import DEFAULT_LIMITS, ExpansionLimits
from .rrule import ExclusionSet, RecurrenceRule
from .timezone import Timezone, TimezoneBuilder, TimezoneRegistry, UnknownTimezone
from .tokenizer import (
    PropertyLine,
    escape_text,
    fold,
    parse_line,
    split_text_list,
    split_unquoted,
    unescape_text,
    unfold,
)
from .values import (
    DATE_FORMAT,
    DATETIME_FORMAT,
    OffsetSource,
    add_interval,
    calc_duration,
    format_duration,
    format_instant,
    format_utc,
    is_date_value,
    parse_datetime,
    parse_duration,
    timegm,
)

logger = logging.getLogger(__name__)

DEFAULT_PRODID = "-//Panemos//NONSGML Panemos//EN"

# Transitions of timezones taken from the system database are computed
# from this instant on.
SYSTEM_ZONE_START = 0

DateResolver = Callable[[PropertyLine], list[tuple[int, bool]]]


class Property(Enum):
    """Properties understood by the calendar reader."""

    PRODID = "PRODID"
    VERSION = "VERSION"
    METHOD = "METHOD"
    CALSCALE = "CALSCALE"
    UID = "UID"
    DTSTAMP = "DTSTAMP"
    DTSTART = "DTSTART"
    DTEND = "DTEND"
    DUE = "DUE"
    DURATION = "DURATION"
    COMPLETED = "COMPLETED"
    PERCENT_COMPLETE = "PERCENT-COMPLETE"
    SUMMARY = "SUMMARY"
    DESCRIPTION = "DESCRIPTION"
    LOCATION = "LOCATION"
    CATEGORIES = "CATEGORIES"
    STATUS = "STATUS"
    PRIORITY = "PRIORITY"
    RRULE = "RRULE"
    RDATE = "RDATE"
    EXDATE = "EXDATE"
    ORGANIZER = "ORGANIZER"
    ATTENDEE = "ATTENDEE"
    CLASS = "CLASS"
    TRANSP = "TRANSP"
    COMMENT = "COMMENT"
    LAST_MODIFIED = "LAST-MODIFIED"
    ACTION = "ACTION"
    TRIGGER = "TRIGGER"
    REPEAT = "REPEAT"

    @classmethod
    def lookup(cls, name: str) -> Optional["Property"]:
        try:
            return cls(name.upper())
        except ValueError:
            return None


class CalendarAddress:
    """An ORGANIZER or ATTENDEE, with the parameters that describe it."""

    def __init__(self, address: str, params=None) -> None:
        self.address = address
        self.params = CaselessDict(params or {})

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.address!r})"

    def __eq__(self, other):
        return (
            isinstance(other, CalendarAddress)
            and self.address == other.address
            and dict(self.params) == dict(other.params)
        )

    @property
    def name(self) -> Optional[str]:
        return self.params.get("CN")

    @property
    def email(self) -> Optional[str]:
        if self.address.lower().startswith("mailto:"):
            return self.address.split(":", 1)[1]
        return None

    @classmethod
    def from_property(cls, prop: PropertyLine) -> "CalendarAddress":
        return cls(prop.value, prop.params)

    def to_ical(self, name: str) -> str:
        return fold(name, self.params, self.address)


class Alarm:
    """A VALARM component of an event or todo.

    The trigger is either relative to the start or end of the item that
    owns the alarm, or an absolute instant.
    """

    component_name = "VALARM"

    def __init__(self, action: Optional[str] = None) -> None:
        self.action = action
        self.trigger: Optional[timedelta] = None
        self.related = "START"
        self.trigger_time: Optional[int] = None
        self.repeat: Optional[int] = None
        self.repeat_interval: Optional[timedelta] = None
        self.summary: Optional[str] = None
        self.description: Optional[str] = None
        self.attendees: list[CalendarAddress] = []
        self.extensions: list[PropertyLine] = []

    def __repr__(self) -> str:
        return f"{type(self).__name__}(action={self.action!r})"

    def read_property(
        self, kind: Optional[Property], prop: PropertyLine, resolve: DateResolver
    ) -> None:
        if kind is Property.ACTION:
            self.action = prop.value.upper()
        elif kind is Property.TRIGGER:
            if prop.params.get("VALUE", "").upper() == "DATE-TIME":
                dates = resolve(prop)
                if dates:
                    self.trigger_time = dates[0][0]
            else:
                self.trigger = parse_duration(prop.value)
                related = prop.params.get("RELATED", "START").upper()
                if related in ("START", "END"):
                    self.related = related
                else:
                    logger.warning("Invalid trigger relation %r", related)
        elif kind is Property.REPEAT:
            try:
                self.repeat = int(prop.value)
            except ValueError:
                logger.warning("Invalid repeat count %r", prop.value)
        elif kind is Property.DURATION:
            self.repeat_interval = parse_duration(prop.value)
        elif kind is Property.SUMMARY:
            self.summary = unescape_text(prop.value)
        elif kind is Property.DESCRIPTION:
            self.description = unescape_text(prop.value)
        elif kind is Property.ATTENDEE:
            self.attendees.append(CalendarAddress.from_property(prop))
        else:
            self.extensions.append(prop)

    def validate(self) -> None:
        if self.action is None:
            logger.warning("VALARM without ACTION")
        if self.trigger is None and self.trigger_time is None:
            logger.warning("VALARM without TRIGGER")
        if (self.repeat is None) != (self.repeat_interval is None):
            logger.warning("VALARM needs both REPEAT and DURATION or neither")

    def trigger_instant(self, item: "CalendarItem") -> Optional[int]:
        """The instant at which this alarm goes off for an item.

        Returns: the instant, or None if the instant the trigger relates
            to is not known
        """
        if self.trigger_time is not None:
            return self.trigger_time
        if self.trigger is None:
            return None
        base = item.end if self.related == "END" else item.start
        if base is None:
            return None
        return add_interval(base, self.trigger, item.timezone)

    def repeat_instants(self, item: "CalendarItem") -> list[int]:
        """All instants at which this alarm goes off, repeats included."""
        first = self.trigger_instant(item)
        if first is None:
            return []
        instants = [first]
        if self.repeat and self.repeat_interval:
            for _ in range(self.repeat):
                instants.append(
                    add_interval(instants[-1], self.repeat_interval, item.timezone)
                )
        return instants

    def to_ical(self) -> str:
        lines = [fold("BEGIN", None, self.component_name)]
        if self.action is not None:
            lines.append(fold("ACTION", None, self.action))
        if self.trigger_time is not None:
            lines.append(
                fold("TRIGGER", {"VALUE": "DATE-TIME"}, format_utc(self.trigger_time))
            )
        elif self.trigger is not None:
            params = {"RELATED": "END"} if self.related == "END" else None
            lines.append(fold("TRIGGER", params, format_duration(self.trigger)))
        for name, value in (
            ("SUMMARY", self.summary),
            ("DESCRIPTION", self.description),
        ):
            if value is not None:
                lines.append(fold(name, None, escape_text(value)))
        lines.extend(attendee.to_ical("ATTENDEE") for attendee in self.attendees)
        if self.repeat is not None:
            lines.append(fold("REPEAT", None, str(self.repeat)))
        if self.repeat_interval is not None:
            lines.append(fold("DURATION", None, format_duration(self.repeat_interval)))
        for prop in self.extensions:
            lines.append(fold(prop.name, prop.params, prop.value))
        lines.append(fold("END", None, self.component_name))
        return "".join(lines)


class CalendarItem:
    """An item with a start time that may recur."""

    component_name = ""

    end_property: Property

    def __init__(self, uid: Optional[str] = None) -> None:
        self.uid = uid
        self.summary: Optional[str] = None
        self.description: Optional[str] = None
        self.location: Optional[str] = None
        self.categories: list[str] = []
        self.status: Optional[str] = None
        self.priority: Optional[int] = None
        self.dtstamp: Optional[int] = None
        self.start: Optional[int] = None
        self.duration: Optional[timedelta] = None
        self.all_day = False
        self.tzid: Optional[str] = None
        self.timezone: Optional[OffsetSource] = None
        self.rrule: Optional[RecurrenceRule] = None
        self.rdates: list[int] = []
        self.exclusions = ExclusionSet()
        self.organizer: Optional[CalendarAddress] = None
        self.attendees: list[CalendarAddress] = []
        self.classification: Optional[str] = None
        self.transparency: Optional[str] = None
        self.comments: list[str] = []
        self.last_modified: Optional[int] = None
        self.alarms: list[Alarm] = []
        self.extensions: list[PropertyLine] = []
        self.limits = DEFAULT_LIMITS
        self._end: Optional[int] = None

    def __repr__(self) -> str:
        return f"{type(self).__name__}(uid={self.uid!r}, summary={self.summary!r})"

    @property
    def end(self) -> Optional[int]:
        if self.start is None or self.duration is None:
            return None
        return add_interval(self.start, self.duration, self.timezone)

    def set_end(self, end: int) -> None:
        if self.start is None:
            raise ValueError("item has no start")
        self.duration = timedelta(
            seconds=calc_duration(self.start, end, self.timezone)
        )

    def read_property(self, kind: Property, prop: PropertyLine, resolve: DateResolver):
        if kind is Property.UID:
            self.uid = prop.value
        elif kind is Property.SUMMARY:
            self.summary = unescape_text(prop.value)
        elif kind is Property.DESCRIPTION:
            self.description = unescape_text(prop.value)
        elif kind is Property.LOCATION:
            self.location = unescape_text(prop.value)
        elif kind is Property.CATEGORIES:
            self.categories.extend(split_text_list(prop.value))
        elif kind is Property.STATUS:
            self.status = prop.value.upper()
        elif kind is Property.PRIORITY:
            try:
                self.priority = int(prop.value)
            except ValueError:
                logger.warning("Invalid priority %r", prop.value)
        elif kind is Property.DTSTAMP:
            dates = resolve(prop)
            if dates:
                self.dtstamp = dates[0][0]
        elif kind is Property.DTSTART:
            dates = resolve(prop)
            if dates:
                self.start, self.all_day = dates[0]
        elif kind is self.end_property:
            dates = resolve(prop)
            if dates:
                self._end = dates[0][0]
        elif kind is Property.DURATION:
            self.duration = parse_duration(prop.value)
        elif kind is Property.RRULE:
            self.rrule = RecurrenceRule.parse(prop.value)
        elif kind is Property.RDATE:
            self.rdates.extend(instant for instant, is_date in resolve(prop))
        elif kind is Property.EXDATE:
            for instant, is_date in resolve(prop):
                self.exclusions.add(instant, whole_day=is_date)
        elif kind is Property.ORGANIZER:
            self.organizer = CalendarAddress.from_property(prop)
        elif kind is Property.ATTENDEE:
            self.attendees.append(CalendarAddress.from_property(prop))
        elif kind is Property.CLASS:
            self.classification = prop.value.upper()
        elif kind is Property.TRANSP:
            self.transparency = prop.value.upper()
        elif kind is Property.COMMENT:
            self.comments.append(unescape_text(prop.value))
        elif kind is Property.LAST_MODIFIED:
            dates = resolve(prop)
            if dates:
                self.last_modified = dates[0][0]
        else:
            # Written back unchanged.
            self.extensions.append(prop)

    def validate(self) -> None:
        """Derive the duration once all properties have been read."""
        if self._end is not None and self.start is not None:
            if self._end < self.start:
                logger.warning(
                    "%s %s ends before it starts", self.component_name, self.uid
                )
            else:
                self.set_end(self._end)
        self._end = None

    def recurrence_dates(
        self, max_instant: Optional[int] = None, include_start: bool = True
    ) -> list[int]:
        """Start instants of all occurrences of this item.

        The expansion of the recurrence rule is merged with the explicit
        recurrence dates; excluded dates are left out.
        """
        if self.start is None:
            return []
        if self.rrule is not None:
            dates = set(
                self.rrule.generate(
                    self.start,
                    max_instant,
                    self.timezone,
                    exclusions=self.exclusions,
                    limits=self.limits,
                )
            )
        else:
            dates = {self.start}
        for rdate in self.rdates:
            if max_instant is not None and rdate > max_instant:
                continue
            if self.exclusions.excludes(rdate, self.timezone):
                continue
            dates.add(rdate)
        if not include_start:
            dates.discard(self.start)
        return sorted(dates)

    def create_recurrent_items(
        self, max_instant: Optional[int] = None
    ) -> list["CalendarItem"]:
        """Create a copy of this item for every further occurrence.

        Copies get the uid of this item with a sequence number appended.
        """
        siblings = []
        for i, start in enumerate(
            self.recurrence_dates(max_instant, include_start=False), 1
        ):
            sibling = copy.copy(self)
            sibling.start = start
            sibling.uid = f"{self.uid}-{i}"
            sibling.rrule = None
            sibling.rdates = []
            sibling.exclusions = ExclusionSet()
            sibling.categories = list(self.categories)
            sibling.attendees = list(self.attendees)
            sibling.comments = list(self.comments)
            sibling.alarms = [copy.copy(alarm) for alarm in self.alarms]
            sibling.extensions = list(self.extensions)
            siblings.append(sibling)
        return siblings

    def _format_dates(
        self, name: str, instants: Iterable[int], all_day: bool = False
    ) -> str:
        if all_day:
            return fold(
                name,
                {"VALUE": "DATE"},
                ",".join(
                    format_instant(i, DATE_FORMAT, self.timezone) for i in instants
                ),
            )
        if self.tzid and self.timezone is not None:
            return fold(
                name,
                {"TZID": self.tzid},
                ",".join(
                    format_instant(i, DATETIME_FORMAT, self.timezone) for i in instants
                ),
            )
        return fold(name, None, ",".join(format_utc(i) for i in instants))

    def _end_lines(self) -> list[str]:
        end = self.end
        if end is None:
            return []
        return [self._format_dates(self.end_property.value, [end], self.all_day)]

    def _extra_lines(self) -> list[str]:
        return []

    def to_ical(self) -> str:
        lines = [fold("BEGIN", None, self.component_name)]
        if self.uid is not None:
            lines.append(fold("UID", None, self.uid))
        if self.dtstamp is not None:
            lines.append(fold("DTSTAMP", None, format_utc(self.dtstamp)))
        if self.start is not None:
            lines.append(self._format_dates("DTSTART", [self.start], self.all_day))
            lines.extend(self._end_lines())
        for name, value in (
            ("SUMMARY", self.summary),
            ("DESCRIPTION", self.description),
            ("LOCATION", self.location),
        ):
            if value is not None:
                lines.append(fold(name, None, escape_text(value)))
        if self.categories:
            lines.append(
                fold("CATEGORIES", None, ",".join(map(escape_text, self.categories)))
            )
        if self.status is not None:
            lines.append(fold("STATUS", None, self.status))
        if self.priority is not None:
            lines.append(fold("PRIORITY", None, str(self.priority)))
        if self.classification is not None:
            lines.append(fold("CLASS", None, self.classification))
        if self.transparency is not None:
            lines.append(fold("TRANSP", None, self.transparency))
        if self.organizer is not None:
            lines.append(self.organizer.to_ical("ORGANIZER"))
        lines.extend(attendee.to_ical("ATTENDEE") for attendee in self.attendees)
        lines.extend(fold("COMMENT", None, escape_text(c)) for c in self.comments)
        if self.last_modified is not None:
            lines.append(fold("LAST-MODIFIED", None, format_utc(self.last_modified)))
        if self.rrule is not None:
            lines.append(fold("RRULE", None, self.rrule.to_ical()))
        if self.rdates:
            lines.append(self._format_dates("RDATE", sorted(self.rdates), self.all_day))
        if self.exclusions.instants:
            lines.append(self._format_dates("EXDATE", sorted(self.exclusions.instants)))
        if self.exclusions.days:
            lines.append(
                self._format_dates("EXDATE", sorted(self.exclusions.days), True)
            )
        lines.extend(self._extra_lines())
        for prop in self.extensions:
            lines.append(fold(prop.name, prop.params, prop.value))
        lines.extend(alarm.to_ical() for alarm in self.alarms)
        lines.append(fold("END", None, self.component_name))
        return "".join(lines)


class Event(CalendarItem):
    """A VEVENT component."""

    component_name = "VEVENT"

    end_property = Property.DTEND


class Todo(CalendarItem):
    """A VTODO component."""

    component_name = "VTODO"

    end_property = Property.DUE

    def __init__(self, uid: Optional[str] = None) -> None:
        super().__init__(uid)
        self.completed: Optional[int] = None
        self.percent_complete: Optional[int] = None

    @property
    def due(self) -> Optional[int]:
        return self.end

    def read_property(self, kind: Property, prop: PropertyLine, resolve: DateResolver):
        if kind is Property.COMPLETED:
            dates = resolve(prop)
            if dates:
                self.completed = dates[0][0]
        elif kind is Property.PERCENT_COMPLETE:
            try:
                self.percent_complete = int(prop.value)
            except ValueError:
                logger.warning("Invalid percent-complete %r", prop.value)
        else:
            super().read_property(kind, prop, resolve)

    def _extra_lines(self) -> list[str]:
        lines = []
        if self.completed is not None:
            lines.append(fold("COMPLETED", None, format_utc(self.completed)))
        if self.percent_complete is not None:
            lines.append(fold("PERCENT-COMPLETE", None, str(self.percent_complete)))
        return lines


ITEM_CLASSES = {cls.component_name: cls for cls in (Event, Todo)}


class Calendar:
    """A VCALENDAR object with its timezones and items."""

    def __init__(
        self, prodid: str = DEFAULT_PRODID, limits: Optional[ExpansionLimits] = None
    ) -> None:
        self.prodid = prodid
        self.version = "2.0"
        self.method: Optional[str] = None
        self.limits = limits or DEFAULT_LIMITS
        self.timezones = TimezoneRegistry()
        self.calc_timezone: Optional[Timezone] = None
        self.extensions: list[PropertyLine] = []
        self._items: list[CalendarItem] = []

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.prodid!r})"

    @property
    def items(self) -> list[CalendarItem]:
        return list(self._items)

    def events(self) -> Iterator[Event]:
        return (item for item in self._items if isinstance(item, Event))

    def todos(self) -> Iterator[Todo]:
        return (item for item in self._items if isinstance(item, Todo))

    def add_item(self, item: CalendarItem) -> None:
        self._items.append(item)

    def add_timezone(self, tz: Timezone) -> None:
        self.timezones.add(tz)

    def get_timezone(self, tzid: str) -> Optional[Timezone]:
        """Find a timezone by TZID.

        Timezones not defined in the calendar are taken from the system
        timezone database and added to the calendar.
        """
        tz = self.timezones.get(tzid)
        if tz is not None:
            return tz
        span_end = timegm(datetime(self.limits.max_year, 12, 31))
        try:
            tz = Timezone.from_zone(
                tzid, SYSTEM_ZONE_START, span_end, limits=self.limits
            )
        except UnknownTimezone:
            logger.warning("Unknown timezone %r, using UTC", tzid)
            return None
        self.timezones.add(tz)
        return tz

    def set_calc_timezone(self, tzid: Optional[str]) -> None:
        """Set the timezone used for items without TZID."""
        self.calc_timezone = None if tzid is None else self.get_timezone(tzid)

    def expand_recurrences(self, max_instant: Optional[int] = None) -> int:
        """Add a separate item for every further occurrence of every item.

        Returns: number of items added
        """
        added = 0
        for item in list(self._items):
            for sibling in item.create_recurrent_items(max_instant):
                self._items.append(sibling)
                added += 1
        return added

    @classmethod
    def from_ical(
        cls, text: Union[str, Iterable[str]], limits: Optional[ExpansionLimits] = None
    ) -> "Calendar":
        calendar = cls(limits=limits)
        CalendarReader(calendar).read(text)
        return calendar

    @classmethod
    def from_file(
        cls, path: str, limits: Optional[ExpansionLimits] = None
    ) -> "Calendar":
        with open(path, encoding="utf-8") as f:
            return cls.from_ical(f, limits=limits)

    def to_ical(self) -> str:
        lines = [
            fold("BEGIN", None, "VCALENDAR"),
            fold("VERSION", None, self.version),
            fold("PRODID", None, self.prodid),
        ]
        if self.method is not None:
            lines.append(fold("METHOD", None, self.method))
        for prop in self.extensions:
            lines.append(fold(prop.name, prop.params, prop.value))
        lines.extend(tz.to_ical() for tz in self.timezones)
        lines.extend(item.to_ical() for item in self._items)
        lines.append(fold("END", None, "VCALENDAR"))
        return "".join(lines)


class CalendarReader:
    """Routes the properties of an iCalendar stream to their components.

    Items are only built once the whole stream has been read, so that
    timezones defined after the items that use them are found.
    """

    def __init__(self, calendar: Calendar) -> None:
        self.calendar = calendar

    def _tokens(self, lines: Union[str, Iterable[str]]) -> Iterator[PropertyLine]:
        for line in unfold(lines):
            prop = parse_line(line)
            if prop is None:
                logger.warning("Skipping malformed line %r", line)
                continue
            yield prop

    def read(self, lines: Union[str, Iterable[str]]) -> None:
        tokens = self._tokens(lines)
        pending = []
        for prop in tokens:
            if prop.name == "BEGIN":
                component = prop.value.strip().upper()
                if component == "VCALENDAR":
                    continue
                elif component == "VTIMEZONE":
                    self._read_timezone(tokens)
                elif component in ITEM_CLASSES:
                    props, subcomponents = self._collect(tokens, component)
                    pending.append((ITEM_CLASSES[component], props, subcomponents))
                else:
                    logger.debug("Skipping %s component", component)
                    self._collect(tokens, component)
            elif prop.name == "END":
                continue
            else:
                self._read_calendar_property(prop)
        for cls, props, subcomponents in pending:
            self.calendar.add_item(self.build_item(cls, props, subcomponents))

    def _read_calendar_property(self, prop: PropertyLine) -> None:
        kind = Property.lookup(prop.name)
        if kind is Property.PRODID:
            self.calendar.prodid = prop.value
        elif kind is Property.VERSION:
            self.calendar.version = prop.value
        elif kind is Property.METHOD:
            self.calendar.method = prop.value
        elif kind is Property.CALSCALE:
            if prop.value.upper() != "GREGORIAN":
                logger.warning("Unsupported calendar scale %r", prop.value)
        elif prop.name == "X-WR-TIMEZONE":
            self.calendar.extensions.append(prop)
            self.calendar.set_calc_timezone(prop.value)
        else:
            self.calendar.extensions.append(prop)

    def _read_timezone(self, tokens: Iterator[PropertyLine]) -> None:
        builder = TimezoneBuilder(self.calendar.limits)
        for prop in tokens:
            if prop.name == "END" and prop.value.strip().upper() == "VTIMEZONE":
                break
            builder.feed(prop)
        else:
            logger.warning("Unterminated VTIMEZONE component")
        tz = builder.build()
        if tz is not None:
            self.calendar.add_timezone(tz)

    def _collect(
        self, tokens: Iterator[PropertyLine], component: str
    ) -> tuple[list[PropertyLine], list[tuple[str, list[PropertyLine]]]]:
        """Collect the properties of a component and of its subcomponents.

        Returns: tuple with the properties and a list of (name, properties)
            tuples, one for every subcomponent
        """
        props = []
        subcomponents = []
        for prop in tokens:
            if prop.name == "BEGIN":
                name = prop.value.strip().upper()
                subprops, nested = self._collect(tokens, name)
                if nested:
                    logger.debug("Skipping components nested in %s", name)
                subcomponents.append((name, subprops))
            elif prop.name == "END":
                return props, subcomponents
            else:
                props.append(prop)
        logger.warning("Unterminated %s component", component)
        return props, subcomponents

    def _resolver(self, item: CalendarItem) -> DateResolver:
        def resolve(prop: PropertyLine) -> list[tuple[int, bool]]:
            tzid = prop.params.get("TZID")
            tz = self.calendar.get_timezone(tzid) if tzid else None
            result = []
            for value in split_unquoted(prop.value, ","):
                # Only the start of a period is used.
                value = value.split("/")[0]
                is_date = is_date_value(value, prop.params)
                instant = parse_datetime(
                    value, item.timezone if is_date and not tzid else tz
                )
                if instant is not None:
                    result.append((instant, is_date))
            return result

        return resolve

    def build_item(
        self,
        cls: type[CalendarItem],
        props: list[PropertyLine],
        subcomponents: Iterable[tuple[str, list[PropertyLine]]] = (),
    ) -> CalendarItem:
        item = cls()
        item.limits = self.calendar.limits
        # The timezone of the start is needed to resolve dates without time.
        for prop in props:
            if prop.name == "DTSTART":
                tzid = prop.params.get("TZID")
                if tzid:
                    item.tzid = tzid
                    item.timezone = self.calendar.get_timezone(tzid)
                break
        if item.timezone is None:
            item.timezone = self.calendar.calc_timezone
        resolve = self._resolver(item)
        for prop in props:
            kind = Property.lookup(prop.name)
            if kind is not None:
                item.read_property(kind, prop, resolve)
            else:
                item.extensions.append(prop)
        item.validate()
        for name, subprops in subcomponents:
            if name == Alarm.component_name:
                item.alarms.append(self.build_alarm(subprops, resolve))
            else:
                logger.debug("Skipping %s in %s", name, cls.component_name)
        return item

    def build_alarm(self, props: list[PropertyLine], resolve: DateResolver) -> Alarm:
        alarm = Alarm()
        for prop in props:
            alarm.read_property(Property.lookup(prop.name), prop, resolve)
        alarm.validate()
        return alarm
