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

"""Content line handling.

See https://www.rfc-editor.org/rfc/rfc5545#section-3.1
"""

import logging
from collections.abc import Iterable, Iterator, Mapping, Sequence
from typing import NamedTuple, Optional, Union

from icalendar.caselessdict import CaselessDict

logger = logging.getLogger(__name__)

# Maximum length of a physical line, excluding the line break.
MAX_LINE_OCTETS = 75

CONTINUATION_CHARS = (" ", "\t")

FOLD_SEPARATOR = "\r\n "

# Characters that force a parameter value to be quoted.
_QUOTED_PARAM_CHARS = (":", ";", ",")

# Escape pairs of TEXT values and the characters they stand for.
_UNESCAPED = {"n": "\n", "N": "\n", ",": ",", ";": ";", "\\": "\\"}


class PropertyLine(NamedTuple):
    """A single logical content line."""

    name: str
    params: CaselessDict
    value: str


def _physical_lines(lines: Union[str, Iterable[str]]) -> Iterable[str]:
    if isinstance(lines, str):
        return lines.split("\n")
    return lines


def unfold(lines: Union[str, Iterable[str]]) -> Iterator[str]:
    """Join folded physical lines into logical lines.

    Args:
      lines: Either a block of text or an iterable of physical lines
    Returns: iterator over logical lines, without line breaks
    """
    current = None
    for physical in _physical_lines(lines):
        physical = physical.rstrip("\r\n")
        if physical[:1] in CONTINUATION_CHARS:
            current = (current or "") + physical[1:]
            continue
        if current:
            yield current
        current = physical
    if current:
        yield current


def next_line(lines: Sequence[str], pos: int) -> tuple[Optional[str], int]:
    """Read the logical line starting at a cursor position.

    Returns: tuple with the logical line (None at the end of the buffer)
        and the position of the next physical line
    """
    line = ""
    while not line:
        if pos >= len(lines):
            return None, pos
        line = lines[pos].rstrip("\r\n")
        pos += 1
    while pos < len(lines) and lines[pos][:1] in CONTINUATION_CHARS:
        line += lines[pos].rstrip("\r\n")[1:]
        pos += 1
    return line, pos


def split_unquoted(text: str, delimiter: str, maxsplit: int = -1) -> list[str]:
    """Split text on a delimiter that is not inside double quotes."""
    parts = []
    in_quotes = False
    start = 0
    for i, c in enumerate(text):
        if c == '"':
            in_quotes = not in_quotes
        elif c == delimiter and not in_quotes:
            if maxsplit >= 0 and len(parts) >= maxsplit:
                break
            parts.append(text[start:i])
            start = i + 1
    parts.append(text[start:])
    return parts


def parse_line(line: str) -> Optional[PropertyLine]:
    """Split a logical line into name, parameters and value.

    Returns: a PropertyLine, or None if the line is malformed
    """
    parts = split_unquoted(line, ":", 1)
    if len(parts) != 2:
        logger.debug("Skipping line without value: %r", line)
        return None
    head, value = parts
    tokens = split_unquoted(head, ";")
    name = tokens[0].strip().upper()
    if not name:
        logger.debug("Skipping line without property name: %r", line)
        return None
    params = CaselessDict()
    for token in tokens[1:]:
        key, _, param_value = token.partition("=")
        key = key.strip()
        if not key:
            continue
        params[key] = param_value.strip('"')
    return PropertyLine(name, params, value)


def tokenize(lines: Union[str, Iterable[str]]) -> Iterator[PropertyLine]:
    """Parse text into a stream of properties, skipping malformed lines."""
    for line in unfold(lines):
        prop = parse_line(line)
        if prop is not None:
            yield prop


def escape_text(value: str) -> str:
    value = value.replace("\r\n", "\n").replace("\r", "\n")
    value = value.replace("\\", "\\\\")
    return value.replace("\n", "\\n").replace(",", "\\,").replace(";", "\\;")


def unescape_text(value: str) -> str:
    """Decode the escape pairs of a TEXT value.

    A backslash that does not start a known pair is kept as is.
    """
    result = []
    i = 0
    while i < len(value):
        c = value[i]
        if c == "\\" and i + 1 < len(value) and value[i + 1] in _UNESCAPED:
            result.append(_UNESCAPED[value[i + 1]])
            i += 2
        else:
            result.append(c)
            i += 1
    return "".join(result)


def split_text_list(value: str) -> list[str]:
    """Split a TEXT list on commas that are not escaped."""
    items = []
    current = ""
    escaped = False
    for c in value:
        if escaped:
            current += c
            escaped = False
        elif c == "\\":
            current += c
            escaped = True
        elif c == ",":
            items.append(current)
            current = ""
        else:
            current += c
    items.append(current)
    return [unescape_text(item) for item in items]


def quote_param(value: str) -> str:
    value = value.replace('"', "")
    if any(c in value for c in _QUOTED_PARAM_CHARS):
        return f'"{value}"'
    return value


def format_params(params: Optional[Mapping[str, str]]) -> str:
    if not params:
        return ""
    return "".join(
        f";{key.upper()}={quote_param(str(value))}" for key, value in params.items()
    )


def _trailing_backslashes(data: bytes) -> int:
    return len(data) - len(data.rstrip(b"\\"))


def fold_line(line: str) -> str:
    """Fold a logical line into physical lines of at most 75 octets.

    An escape pair is never split, neither is a multi-byte character.

    Returns: the folded text, terminated by CRLF
    """
    line = line.replace("\r\n", "\n").replace("\r", "\n").replace("\n", "\\n")
    data = line.encode("utf-8")
    chunks = []
    limit = MAX_LINE_OCTETS
    while len(data) > limit:
        cut = limit
        while cut > 1 and (data[cut] & 0xC0) == 0x80:
            cut -= 1
        if _trailing_backslashes(data[:cut]) % 2:
            cut -= 1
        chunks.append(data[:cut])
        data = data[cut:]
        # Continuation lines lose one octet to the leading space.
        limit = MAX_LINE_OCTETS - 1
    chunks.append(data)
    return FOLD_SEPARATOR.join(chunk.decode("utf-8") for chunk in chunks) + "\r\n"


def fold(name: str, params: Optional[Mapping[str, str]], value: str) -> str:
    """Render and fold a property."""
    return fold_line(name.upper() + format_params(params) + ":" + value)
