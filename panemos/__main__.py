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

"""Panemos command-line handling."""

import argparse
import logging
import sys
from datetime import datetime

import dateutil.parser

from . import __version__
from .config import DEFAULT_LIMITS, InvalidConfiguration, load_settings
from .icalendar import Calendar
from .rrule import RecurrenceRule
from .timezone import Timezone, UnknownTimezone
from .values import format_duration, format_instant, from_local, timegm, utc_instant

OUTPUT_FORMAT = "%Y-%m-%dT%H:%M:%S"


def parse_instant(text, tz=None):
    """Parse a date-time argument.

    Times without an explicit offset are wall-clock times in ``tz``.
    """
    dt = dateutil.parser.parse(text)
    if dt.tzinfo is not None:
        return utc_instant(dt)
    return from_local(dt, tz)


def format_local(instant, tz=None):
    offset = tz.offset_at(instant) if tz is not None else "Z"
    return format_instant(instant, OUTPUT_FORMAT, tz) + offset


def _span_end(limits):
    return timegm(datetime(limits.max_year, 12, 31))


def expand_main(args, parser, limits):
    start = parse_instant(args.start)
    tz = None
    if args.tzid:
        tz = Timezone.from_zone(args.tzid, start, _span_end(limits), limits=limits)
        start = parse_instant(args.start, tz)
    max_instant = parse_instant(args.until, tz) if args.until else None
    rule = RecurrenceRule.parse(args.rule)
    if rule.fatal:
        for error in rule.errors:
            logging.error("%s", error)
        return 1
    for instant in rule.generate(start, max_instant, tz, limits=limits):
        print(format_local(instant, tz))
    return 0


def offset_main(args, parser, limits):
    instants = [parse_instant(text) for text in args.datetime]
    tz = Timezone.from_zone(args.zone, min(instants), max(instants), limits=limits)
    for text, instant in zip(args.datetime, instants):
        print(f"{text} {tz.offset_at(instant)}")
    return 0


def vtimezone_main(args, parser, limits):
    start = parse_instant(args.start)
    end = parse_instant(args.end)
    if end < start:
        parser.error("end of span is before its start")
    tz = Timezone.from_zone(args.zone, start, end, limits=limits)
    sys.stdout.write(tz.to_ical())
    return 0


def occurrences_main(args, parser, limits):
    calendar = Calendar.from_file(args.file, limits=limits)
    max_instant = parse_instant(args.until) if args.until else None
    for item in calendar.items:
        print(f"{item.component_name} {item.uid}: {item.summary or ''}")
        duration = ""
        if item.duration is not None:
            duration = " " + format_duration(item.duration)
        for instant in item.recurrence_dates(max_instant):
            print("  " + format_local(instant, item.timezone) + duration)
    return 0


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Expand iCalendar recurrence rules and timezones."
    )
    parser.add_argument(
        "--version",
        action="version",
        version="%(prog)s " + ".".join(map(str, __version__)),
    )
    parser.add_argument(
        "--debug", action="store_true", help="Print debug messages"
    )
    parser.add_argument(
        "--config", type=str, default=None, help="Path to a settings file."
    )
    subparsers = parser.add_subparsers(help="Subcommands", dest="subcommand")

    expand_parser = subparsers.add_parser(
        "expand", help="List the occurrences of a recurrence rule"
    )
    expand_parser.add_argument("rule", help="Recurrence rule, e.g. FREQ=DAILY;COUNT=3")
    expand_parser.add_argument(
        "--start", required=True, help="Start of the first occurrence."
    )
    expand_parser.add_argument(
        "--tzid", default=None, help="Timezone to interpret times in."
    )
    expand_parser.add_argument(
        "--until", default=None, help="Do not list occurrences after this time."
    )
    expand_parser.set_defaults(func=expand_main)

    offset_parser = subparsers.add_parser(
        "offset", help="Print the UTC offset of a timezone at given times"
    )
    offset_parser.add_argument("zone", help="Timezone name, e.g. Europe/Berlin")
    offset_parser.add_argument("datetime", nargs="+", help="UTC date-time")
    offset_parser.set_defaults(func=offset_main)

    vtimezone_parser = subparsers.add_parser(
        "vtimezone", help="Print a VTIMEZONE component for a timezone"
    )
    vtimezone_parser.add_argument("zone", help="Timezone name, e.g. Europe/Berlin")
    vtimezone_parser.add_argument(
        "--from", dest="start", required=True, help="Start of the span to cover."
    )
    vtimezone_parser.add_argument(
        "--to", dest="end", required=True, help="End of the span to cover."
    )
    vtimezone_parser.set_defaults(func=vtimezone_main)

    occurrences_parser = subparsers.add_parser(
        "occurrences", help="List the occurrences of the items in a calendar file"
    )
    occurrences_parser.add_argument("file", help="Path to an iCalendar file.")
    occurrences_parser.add_argument(
        "--until", default=None, help="Do not list occurrences after this time."
    )
    occurrences_parser.set_defaults(func=occurrences_main)

    args = parser.parse_args(argv)

    if args.debug:
        loglevel = logging.DEBUG
    else:
        loglevel = logging.INFO

    logging.basicConfig(level=loglevel, format="%(message)s")

    if args.subcommand is None:
        parser.print_help()
        return 1

    limits = DEFAULT_LIMITS
    if args.config:
        settings = load_settings(args.config)
        try:
            limits = settings.get_limits()
        except InvalidConfiguration as e:
            parser.error(str(e))
        if getattr(args, "tzid", False) is None:
            try:
                args.tzid = settings.get_default_timezone()
            except KeyError:
                pass

    try:
        return args.func(args, parser, limits)
    except UnknownTimezone as e:
        logging.error("%s", e)
        return 1
    except dateutil.parser.ParserError as e:
        parser.error(str(e))


if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))
