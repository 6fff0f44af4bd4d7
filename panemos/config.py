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

"""Settings file.

A settings file looks like::

    [expansion]
    max-year = 2050
    max-intervals = 2000

    [calendar]
    timezone = Europe/Berlin
"""

import configparser

# Expansion of rules without an end stops after this year.
DEFAULT_MAX_YEAR = 2050

# Number of base intervals after which an expansion is aborted.
DEFAULT_MAX_INTERVALS = 2000


class InvalidConfiguration(ValueError):
    """The settings file could not be interpreted."""

    def __init__(self, key, value) -> None:
        super().__init__(f"Invalid value {value!r} for {key}")
        self.key = key
        self.value = value


class ExpansionLimits:
    """Ceilings that bound the expansion of a recurrence rule."""

    def __init__(
        self,
        max_year: int = DEFAULT_MAX_YEAR,
        max_intervals: int = DEFAULT_MAX_INTERVALS,
    ) -> None:
        self.max_year = max_year
        self.max_intervals = max_intervals

    def __repr__(self) -> str:
        return "{}(max_year={!r}, max_intervals={!r})".format(
            type(self).__name__, self.max_year, self.max_intervals
        )

    def __eq__(self, other):
        return (
            isinstance(other, ExpansionLimits)
            and self.max_year == other.max_year
            and self.max_intervals == other.max_intervals
        )


DEFAULT_LIMITS = ExpansionLimits()


class FileBasedSettings:
    """Settings stored in an INI file."""

    def __init__(self, cp=None) -> None:
        if cp is None:
            cp = configparser.ConfigParser()
        self._configparser = cp

    @classmethod
    def from_file(cls, f):
        cp = configparser.ConfigParser()
        cp.read_file(f)
        return cls(cp)

    def _get_int(self, section, key, default, minimum):
        try:
            value = self._configparser[section][key]
        except KeyError:
            return default
        try:
            result = int(value)
        except ValueError as e:
            raise InvalidConfiguration(f"{section}.{key}", value) from e
        if result < minimum:
            raise InvalidConfiguration(f"{section}.{key}", value)
        return result

    def get_limits(self) -> ExpansionLimits:
        return ExpansionLimits(
            max_year=self._get_int("expansion", "max-year", DEFAULT_MAX_YEAR, 1970),
            max_intervals=self._get_int(
                "expansion", "max-intervals", DEFAULT_MAX_INTERVALS, 1
            ),
        )

    def get_default_timezone(self) -> str:
        return self._configparser["calendar"]["timezone"]

    def set_default_timezone(self, tzid):
        try:
            self._configparser.add_section("calendar")
        except configparser.DuplicateSectionError:
            pass
        if tzid is None:
            del self._configparser["calendar"]["timezone"]
        else:
            self._configparser["calendar"]["timezone"] = tzid


def load_settings(path: str) -> FileBasedSettings:
    with open(path, encoding="utf-8") as f:
        return FileBasedSettings.from_file(f)
