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

"""Tests for panemos.timezone."""

import os
import tempfile
import unittest
from datetime import datetime, timedelta, tzinfo

from panemos.rrule import RecurrenceRule
from panemos.timezone import (
    MIN_INSTANT,
    Timezone,
    TimezoneRegistry,
    TransitionKind,
    TransitionRule,
    UnknownTimezone,
    _zone_transitions,
    parse_vtimezone,
)
from panemos.tokenizer import MAX_LINE_OCTETS
from panemos.values import timegm, to_local

EXAMPLE_VTIMEZONE = """\
BEGIN:VCALENDAR
BEGIN:VTIMEZONE
TZID:Europe/Berlin
X-LIC-LOCATION:Europe/Berlin
BEGIN:DAYLIGHT
TZOFFSETFROM:+0100
TZOFFSETTO:+0200
TZNAME:CEST
DTSTART:19700329T020000
RRULE:FREQ=YEARLY;BYMONTH=3;BYDAY=-1SU
END:DAYLIGHT
BEGIN:STANDARD
TZOFFSETFROM:+0200
TZOFFSETTO:+0100
TZNAME:CET
DTSTART:19701025T030000
RRULE:FREQ=YEARLY;BYMONTH=10;BYDAY=-1SU
END:STANDARD
END:VTIMEZONE
END:VCALENDAR
"""

RDATE_VTIMEZONE = """\
BEGIN:VTIMEZONE
TZID:Test/Zone
BEGIN:STANDARD
DTSTART:20000101T000000
RDATE:20010101T000000
TZOFFSETFROM:+0000
TZOFFSETTO:+0100
END:STANDARD
BEGIN:DAYLIGHT
DTSTART:20000601T000000
RDATE:20010601T000000
TZOFFSETFROM:+0100
TZOFFSETTO:+0200
END:DAYLIGHT
END:VTIMEZONE
"""

# Same zone, with the fields each block depends on given last.
REORDERED_VTIMEZONE = """\
BEGIN:VTIMEZONE
TZID:Test/Zone
BEGIN:STANDARD
TZOFFSETFROM:+0000
RDATE:20010101T000000
DTSTART:20000101T000000
TZOFFSETTO:+0100
END:STANDARD
BEGIN:DAYLIGHT
RDATE:20010601T000000
DTSTART:20000601T000000
TZOFFSETFROM:+0100
TZOFFSETTO:+0200
END:DAYLIGHT
END:VTIMEZONE
"""


def instant(*args):
    return timegm(datetime(*args))


class FromZoneTests(unittest.TestCase):
    def setUp(self):
        super().setUp()
        self.berlin = Timezone.from_zone(
            "Europe/Berlin", instant(1995, 1, 1), instant(2030, 12, 31)
        )

    def test_offsets(self):
        self.assertEqual("+0200", self.berlin.offset_at(instant(1999, 7, 1)))
        self.assertEqual("+0100", self.berlin.offset_at(instant(1999, 11, 1, 12)))
        self.assertEqual(3600, self.berlin.offset_seconds_at(instant(2025, 1, 15)))

    def test_rules(self):
        kinds = sorted(rule.kind.value for rule in self.berlin.rules)
        self.assertEqual(["DAYLIGHT", "STANDARD"], kinds)
        for rule in self.berlin.rules:
            if rule.kind is TransitionKind.DAYLIGHT:
                self.assertEqual((3600, 7200), (rule.offset_from, rule.offset_to))
                self.assertEqual("CEST", rule.name)
            else:
                self.assertEqual((7200, 3600), (rule.offset_from, rule.offset_to))
                self.assertEqual("CET", rule.name)

    def test_transition_is_exclusive(self):
        transition = instant(2025, 3, 30, 1)
        self.assertEqual("+0100", self.berlin.offset_at(transition))
        self.assertEqual("+0200", self.berlin.offset_at(transition + 1))

    def test_sentinel(self):
        table = self.berlin.offset_table()
        self.assertEqual((MIN_INSTANT, 3600), table[0])
        self.assertEqual(sorted(table), table)
        self.assertEqual("+0100", self.berlin.offset_at(instant(1900, 1, 1)))

    def test_without_transitions(self):
        utc = Timezone.from_zone("UTC", instant(2000, 1, 1), instant(2001, 1, 1))
        self.assertEqual(1, len(utc.rules))
        self.assertEqual("+0000", utc.offset_at(instant(2000, 6, 1)))

    def test_unknown(self):
        with self.assertRaises(UnknownTimezone) as cm:
            Timezone.from_zone("Nowhere/Special", 0, 0)
        self.assertEqual("Nowhere/Special", cm.exception.tzid)
        self.assertIsInstance(cm.exception, KeyError)

    def test_round_trip(self):
        text = self.berlin.to_ical()
        for line in text.split("\r\n"):
            self.assertLessEqual(len(line.encode("utf-8")), MAX_LINE_OCTETS)
        self.assertTrue(text.startswith("BEGIN:VTIMEZONE\r\nTZID:Europe/Berlin\r\n"))
        parsed = Timezone.from_ical(text)
        self.assertEqual("Europe/Berlin", parsed.tzid)
        self.assertEqual(self.berlin.offset_table(), parsed.offset_table())


class NamedStepsZone(tzinfo):
    """A UTC zone whose abbreviation changes at the given instants."""

    def __init__(self, names):
        self.names = names

    def utcoffset(self, dt):
        return timedelta(0)

    def dst(self, dt):
        return timedelta(0)

    def tzname(self, dt):
        now = timegm(dt.replace(tzinfo=None))
        name = "A"
        for start, step_name in self.names:
            if now >= start:
                name = step_name
        return name


class ZoneTransitionsTests(unittest.TestCase):
    def test_changes_within_a_day(self):
        zone = NamedStepsZone([(10 * 3600, "B"), (16 * 3600, "C")])
        self.assertEqual(
            [(10 * 3600, (0, False, "B")), (16 * 3600, (0, False, "C"))],
            list(_zone_transitions(zone, 0, 3 * 86400)),
        )

    def test_changes_restoring_state_within_a_day(self):
        zone = NamedStepsZone([(10 * 3600, "B"), (16 * 3600, "A")])
        self.assertEqual([], list(_zone_transitions(zone, 0, 3 * 86400)))

    def test_changes_days_apart(self):
        zone = NamedStepsZone([(10 * 3600, "B"), (86400 + 16 * 3600, "A")])
        self.assertEqual(
            [(10 * 3600, (0, False, "B")), (86400 + 16 * 3600, (0, False, "A"))],
            list(_zone_transitions(zone, 0, 3 * 86400)),
        )


class TimezoneTests(unittest.TestCase):
    def test_empty(self):
        tz = Timezone("Empty/Zone")
        self.assertEqual("", tz.offset_at(0))
        self.assertEqual(0, tz.offset_seconds_at(0))
        self.assertEqual([], tz.offset_table())

    def test_add_rule(self):
        tz = Timezone("Test/Zone")
        self.assertEqual("", tz.offset_at(200))
        tz.add_rule(TransitionRule(TransitionKind.STANDARD, 0, 3600, 100))
        self.assertEqual("+0100", tz.offset_at(200))
        self.assertEqual("+0000", tz.offset_at(50))
        tz.add_rule(TransitionRule(TransitionKind.DAYLIGHT, 3600, 7200, 150))
        self.assertEqual("+0200", tz.offset_at(200))

    def test_rule_exdates(self):
        rule = TransitionRule(
            TransitionKind.STANDARD, 0, 3600, 100, rdates=[200, 300], exdates=[200]
        )
        self.assertEqual([100, 300], rule.occurrences())

    def test_pre_epoch_anchor(self):
        rule = TransitionRule(
            TransitionKind.DAYLIGHT,
            3600,
            7200,
            instant(1916, 4, 30, 21),
            rrule=RecurrenceRule.parse("FREQ=YEARLY;BYMONTH=4;BYDAY=-1SU"),
        )
        years = sorted({to_local(i).year for i in rule.occurrences()})
        self.assertEqual(1916, years[0])
        self.assertGreaterEqual(years[1], 1970)
        self.assertEqual(2050, years[-1])

    def test_registry(self):
        registry = TimezoneRegistry()
        tz = Timezone("Test/Zone")
        registry.add(tz)
        self.assertIn("Test/Zone", registry)
        self.assertIs(tz, registry.get("Test/Zone"))
        self.assertIsNone(registry.get("Other/Zone"))
        self.assertEqual([tz], list(registry))
        self.assertEqual(1, len(registry))


class ParseTests(unittest.TestCase):
    def test_rrule_blocks(self):
        tz = parse_vtimezone(EXAMPLE_VTIMEZONE)
        self.assertEqual("Europe/Berlin", tz.tzid)
        self.assertEqual("Europe/Berlin", tz.comment)
        self.assertEqual(2, len(tz.rules))
        self.assertEqual("+0200", tz.offset_at(instant(1999, 7, 1)))
        self.assertEqual("+0100", tz.offset_at(instant(1999, 11, 1, 12)))
        self.assertEqual("+0100", tz.offset_at(instant(2025, 1, 15)))
        self.assertEqual("+0200", tz.offset_at(instant(2049, 7, 1)))

    def test_rdate_blocks(self):
        tz = parse_vtimezone(RDATE_VTIMEZONE)
        self.assertEqual("+0000", tz.offset_at(instant(1999, 6, 1)))
        self.assertEqual("+0100", tz.offset_at(instant(2000, 3, 1)))
        self.assertEqual("+0200", tz.offset_at(instant(2000, 7, 1)))
        self.assertEqual("+0100", tz.offset_at(instant(2001, 3, 1)))
        self.assertEqual("+0200", tz.offset_at(instant(2001, 7, 1)))

    def test_property_order(self):
        self.assertEqual(
            parse_vtimezone(RDATE_VTIMEZONE).offset_table(),
            parse_vtimezone(REORDERED_VTIMEZONE).offset_table(),
        )

    def test_local_times_use_offset_to(self):
        tz = parse_vtimezone(RDATE_VTIMEZONE)
        starts = {rule.kind: rule.start for rule in tz.rules}
        self.assertEqual(
            instant(1999, 12, 31, 23), starts[TransitionKind.STANDARD]
        )
        self.assertEqual(instant(2000, 5, 31, 22), starts[TransitionKind.DAYLIGHT])

    def test_exdate(self):
        text = RDATE_VTIMEZONE.replace(
            "RDATE:20010601T000000", "RDATE:20010601T000000\nEXDATE:20010601T000000"
        )
        tz = parse_vtimezone(text)
        self.assertEqual("+0100", tz.offset_at(instant(2001, 7, 1)))

    def test_missing_offset(self):
        text = RDATE_VTIMEZONE.replace("TZOFFSETTO:+0200\n", "")
        with self.assertLogs("panemos.timezone", level="WARNING"):
            tz = parse_vtimezone(text)
        self.assertEqual(1, len(tz.rules))

    def test_no_tzid(self):
        text = RDATE_VTIMEZONE.replace("TZID:Test/Zone\n", "")
        with self.assertLogs("panemos.timezone", level="WARNING"):
            self.assertIsNone(parse_vtimezone(text))

    def test_no_vtimezone(self):
        self.assertIsNone(parse_vtimezone("BEGIN:VCALENDAR\nEND:VCALENDAR\n"))

    def test_from_file(self):
        fd, path = tempfile.mkstemp(suffix=".ics")
        self.addCleanup(os.remove, path)
        with os.fdopen(fd, "w") as f:
            f.write(RDATE_VTIMEZONE)
        tz = Timezone.from_file(path)
        self.assertEqual("Test/Zone", tz.tzid)
        self.assertEqual("+0200", tz.offset_at(instant(2000, 7, 1)))
