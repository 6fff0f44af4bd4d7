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

"""Tests for panemos.values."""

import unittest
from datetime import date, datetime, timedelta

from dateutil.relativedelta import relativedelta

from panemos.timezone import FixedOffset, Timezone
from panemos.values import (
    DATETIME_FORMAT,
    add_interval,
    calc_duration,
    format_duration,
    format_instant,
    format_offset,
    format_utc,
    from_local,
    get_part,
    is_date_value,
    parse_date,
    parse_datetime,
    parse_duration,
    parse_offset,
    set_part,
    sub_interval,
    timegm,
    to_local,
    truncate_day,
)


def berlin():
    return Timezone.from_zone(
        "Europe/Berlin", timegm(datetime(2024, 1, 1)), timegm(datetime(2026, 1, 1))
    )


class DurationTests(unittest.TestCase):
    def test_parse(self):
        self.assertEqual(timedelta(hours=1), parse_duration("PT1H"))
        self.assertEqual(timedelta(weeks=2), parse_duration("P2W"))
        self.assertEqual(-timedelta(minutes=15), parse_duration("-PT15M"))

    def test_parse_invalid(self):
        with self.assertLogs("panemos.values", level="WARNING"):
            self.assertIsNone(parse_duration("PT1D"))

    def test_format(self):
        for seconds, expected in [
            (3600, "PT1H"),
            (95220, "P1DT2H27M"),
            (620, "PT10M20S"),
            (12600, "PT3H30M"),
            (34200, "PT9H30M"),
            (7610, "PT2H6M50S"),
            (5640, "PT1H34M"),
        ]:
            self.assertEqual(expected, format_duration(seconds))

    def test_format_timedelta(self):
        self.assertEqual("PT1H", format_duration(timedelta(hours=1)))


class OffsetTests(unittest.TestCase):
    def test_parse(self):
        self.assertEqual(7200, parse_offset("+0200"))
        self.assertEqual(-18000, parse_offset("-0500"))
        self.assertEqual(19800, parse_offset("+0530"))

    def test_parse_invalid(self):
        with self.assertLogs("panemos.values", level="WARNING"):
            self.assertIsNone(parse_offset("bogus"))

    def test_format(self):
        self.assertEqual("+0200", format_offset(7200))
        self.assertEqual("-0500", format_offset(-18000))
        self.assertEqual("+0000", format_offset(0))


class DateTimeTests(unittest.TestCase):
    def test_utc(self):
        self.assertEqual(
            timegm(datetime(1997, 10, 20, 9)), parse_datetime("19971020T090000Z")
        )

    def test_floating_without_timezone(self):
        self.assertEqual(
            timegm(datetime(1997, 10, 20, 9)), parse_datetime("19971020T090000")
        )

    def test_local(self):
        self.assertEqual(
            timegm(datetime(1997, 10, 20, 8)),
            parse_datetime("19971020T090000", FixedOffset(3600)),
        )

    def test_utc_ignores_timezone(self):
        self.assertEqual(
            timegm(datetime(1997, 10, 20, 9)),
            parse_datetime("19971020T090000Z", FixedOffset(3600)),
        )

    def test_date(self):
        self.assertEqual(timegm(datetime(1997, 10, 30)), parse_datetime("19971030"))
        self.assertEqual(date(1997, 10, 30), parse_date("19971030"))

    def test_invalid(self):
        with self.assertLogs("panemos.values", level="WARNING"):
            self.assertIsNone(parse_datetime("garbage"))

    def test_is_date_value(self):
        self.assertTrue(is_date_value("19971030"))
        self.assertFalse(is_date_value("19971030T000000"))
        self.assertTrue(is_date_value("19971030", {"VALUE": "DATE"}))

    def test_format(self):
        instant = timegm(datetime(1997, 10, 20, 9))
        self.assertEqual("19971020T090000Z", format_utc(instant))
        self.assertEqual(
            "19971020T100000",
            format_instant(instant, DATETIME_FORMAT, FixedOffset(3600)),
        )

    def test_local_round_trip(self):
        tz = berlin()
        for dt in [datetime(2025, 1, 15, 12), datetime(2025, 7, 15, 12)]:
            self.assertEqual(dt, to_local(from_local(dt, tz), tz))

    def test_from_local_after_transition(self):
        tz = berlin()
        # 03:30 only exists in summer time on this day.
        self.assertEqual(
            timegm(datetime(2025, 3, 30, 1, 30)),
            from_local(datetime(2025, 3, 30, 3, 30), tz),
        )


class IntervalTests(unittest.TestCase):
    def test_sub_day_across_transition(self):
        tz = berlin()
        start = parse_datetime("20251026T100000", tz)
        self.assertEqual(timegm(datetime(2025, 10, 26, 9)), start)
        result = sub_interval(start, "P1D", tz)
        self.assertEqual(timegm(datetime(2025, 10, 25, 8)), result)
        self.assertEqual(
            "20251025T100000", format_instant(result, DATETIME_FORMAT, tz)
        )

    def test_add_day_across_transition(self):
        tz = berlin()
        start = from_local(datetime(2025, 3, 29, 10), tz)
        self.assertEqual(
            timegm(datetime(2025, 3, 30, 8)), add_interval(start, "P1D", tz)
        )

    def test_hours_are_exact(self):
        tz = berlin()
        start = timegm(datetime(2025, 3, 30, 0, 30))
        result = add_interval(start, timedelta(hours=1), tz)
        self.assertEqual(start + 3600, result)
        self.assertEqual(datetime(2025, 3, 30, 3, 30), to_local(result, tz))

    def test_negative_timedelta(self):
        start = timegm(datetime(2025, 1, 1, 12))
        self.assertEqual(start - 3600, add_interval(start, timedelta(hours=-1)))
        self.assertEqual(start + 3600, sub_interval(start, timedelta(hours=-1)))

    def test_relativedelta(self):
        start = timegm(datetime(2025, 1, 31, 12))
        self.assertEqual(
            timegm(datetime(2025, 2, 28, 12)),
            add_interval(start, relativedelta(months=1)),
        )

    def test_invalid_duration(self):
        start = timegm(datetime(2025, 1, 1))
        with self.assertLogs("panemos.values", level="WARNING"):
            self.assertEqual(start, add_interval(start, "bogus"))

    def test_calc_duration(self):
        tz = berlin()
        start = from_local(datetime(2025, 10, 25, 10), tz)
        end = from_local(datetime(2025, 10, 26, 10), tz)
        self.assertEqual(90000, end - start)
        self.assertEqual(86400, calc_duration(start, end, tz))


class PartTests(unittest.TestCase):
    def test_get_part(self):
        instant = timegm(datetime(2025, 7, 1, 22, 15))
        self.assertEqual(22, get_part(instant, "hour"))
        self.assertEqual(0, get_part(instant, "hour", berlin()))
        self.assertEqual(2, get_part(instant, "day", berlin()))

    def test_set_part(self):
        tz = berlin()
        instant = from_local(datetime(2025, 7, 1, 22, 15), tz)
        self.assertEqual(
            from_local(datetime(2025, 7, 1, 9, 15), tz),
            set_part(instant, "hour", 9, tz),
        )

    def test_set_part_invalid_value(self):
        instant = timegm(datetime(2025, 2, 1))
        with self.assertLogs("panemos.values", level="WARNING"):
            self.assertEqual(instant, set_part(instant, "day", 30))

    def test_unknown_part(self):
        self.assertRaises(ValueError, get_part, 0, "week")
        self.assertRaises(ValueError, set_part, 0, "week", 1)

    def test_truncate_day(self):
        tz = berlin()
        instant = from_local(datetime(2025, 7, 1, 22, 15), tz)
        self.assertEqual(timegm(datetime(2025, 6, 30, 22)), truncate_day(instant, tz))
        self.assertEqual(
            timegm(datetime(2025, 7, 1)), truncate_day(timegm(datetime(2025, 7, 1, 5)))
        )
