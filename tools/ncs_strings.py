#!/usr/bin/env python3
"""
ncs_strings.py - NCS string tables

Records never carry text inline; every name and value is an index into a
string table, written with bit_width(len(table)) bits. Some sections index
past the primary table into auxiliary strings, so decoding uses a
*combined* table built in a fixed order:

    [primary strings] + [category names] + [field abbreviation] + [type name]

Indices >= len(primary) resolve against exactly this concatenation; using
the primary width where the combined width is needed desynchronizes every
read that follows.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from ncs_types import IndexOutOfRange


TERMINATOR = 'none'


def bit_width(count: int) -> int:
    """Bits needed to index `count` items (minimum 1)."""
    if count < 2:
        return 1
    return (count - 1).bit_length()


def is_terminator(s: str) -> bool:
    """True for the list/field sentinels: 'none' (any case) or ''."""
    return s == '' or s.lower() == TERMINATOR


@dataclass
class StringTable:
    """Ordered strings addressed by dense index."""
    strings: List[str] = field(default_factory=list)
    primary_count: Optional[int] = None

    def __post_init__(self):
        if self.primary_count is None:
            self.primary_count = len(self.strings)

    def __len__(self) -> int:
        return len(self.strings)

    def __iter__(self):
        return iter(self.strings)

    def get(self, idx: int) -> Optional[str]:
        if 0 <= idx < len(self.strings):
            return self.strings[idx]
        return None

    def lookup(self, idx: int) -> str:
        """Like get() but raises IndexOutOfRange."""
        s = self.get(idx)
        if s is None:
            raise IndexOutOfRange(f"String index {idx} outside table of {len(self.strings)}")
        return s

    @property
    def index_bits(self) -> int:
        """Index width for the whole (possibly combined) table."""
        return bit_width(len(self.strings))

    @property
    def primary_bits(self) -> int:
        """Index width for the primary table only."""
        return bit_width(self.primary_count)

    @property
    def is_combined(self) -> bool:
        return self.primary_count != len(self.strings)


def create_combined_string_table(primary: StringTable,
                                 inline: Sequence[str] = (),
                                 field_abbrev: Optional[str] = None,
                                 type_name: Optional[str] = None) -> StringTable:
    """Concatenate primary + inline/category + field abbreviation + type name."""
    extra = list(inline)
    if field_abbrev is not None:
        extra.append(field_abbrev)
    if type_name is not None:
        extra.append(type_name)
    return StringTable(list(primary.strings)[:primary.primary_count] + extra,
                       primary.primary_count)


def is_text(raw: bytes) -> bool:
    """Printable ASCII/UTF-8 text with no control bytes."""
    if not raw:
        return False
    if any(b < 0x20 or b == 0x7F for b in raw):
        return False
    try:
        raw.decode('utf-8')
    except UnicodeDecodeError:
        return False
    return True


def is_length_word(data: bytes, pos: int, end: Optional[int] = None) -> bool:
    """True if data[pos:pos+4] is a `NZ NZ 00 00` section length word within end."""
    if end is None or end > len(data):
        end = len(data)
    return (pos + 4 <= end and data[pos] != 0 and data[pos + 1] != 0
            and data[pos + 2] == 0 and data[pos + 3] == 0)


def read_cstrings(data: bytes, start: int, end: Optional[int] = None,
                  count: Optional[int] = None,
                  text_only: bool = False) -> Tuple[List[str], int]:
    """
    Read NUL-terminated strings from data[start:end].

    Args:
        count: Stop after this many strings
        text_only: Stop (before consuming) at the first string that is empty,
                   not printable text, or a section length word whose two
                   bytes happen to be printable; used when the section end
                   is unknown

    Returns:
        (strings, offset just past the last string consumed)
    """
    if end is None or end > len(data):
        end = len(data)
    strings = []
    pos = start

    while pos < end and (count is None or len(strings) < count):
        nul = data.find(b'\x00', pos, end)
        if nul < 0:
            # Unterminated tail is only a string if nothing else is expected
            if text_only or count is not None:
                break
            nul = end
        raw = data[pos:nul]
        if text_only and (not is_text(raw) or is_length_word(data, pos, end)):
            break
        strings.append(raw.decode('utf-8', errors='replace'))
        pos = min(nul + 1, end)

    return strings, pos
