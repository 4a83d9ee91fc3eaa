#!/usr/bin/env python3
"""
ncs_header.py - NCS header, string table and section resolution

File layout (sections appear in this order, offsets from the header):

    ┌────────────────────────┐ 0x00
    │ Header (36 bytes, LE)  │
    ├────────────────────────┤ type_offset / format_offset
    │ type name, format code │  NUL-terminated
    ├────────────────────────┤ entry_section_offset
    │ dependency list        │  Elias-gamma string indices
    ├────────────────────────┤ string_table_offset
    │ string table           │  NUL-terminated strings
    ├────────────────────────┤ control_section_offset    (optional)
    │ field abbreviation     │
    ├────────────────────────┤ category_names_offset     (optional)
    │ category names         │
    ├────────────────────────┤ binary_offset             (0 = unknown)
    │ binary section         │  remap arrays + records
    └────────────────────────┘

Header fields (all u32 little-endian):
    type_offset, format_offset, field_count, entry_section_offset,
    string_table_offset, control_section_offset, category_names_offset,
    binary_offset, string_count

When binary_offset is missing or unusable, find_binary_section() scans
for the first plausible start. That scan is heuristic and may fail.
"""

import struct
from dataclasses import dataclass
from typing import Callable, Iterator, List, Optional

from bit_reader import BitReader
from ncs_primitives import DEFAULT_LIMITS, parse_dependencies
from ncs_strings import StringTable, is_length_word, read_cstrings
from ncs_types import DecodeLimits, HeaderError


HEADER_STRUCT = struct.Struct('<9I')
HEADER_SIZE = HEADER_STRUCT.size

# Length word preceding the binary section: two nonzero bytes, two zero bytes
SECTION_SIGNATURE_LEN = 4

SECTION_DIVIDER = b'\x7a\x00\x00\x00\x00\x00'


@dataclass
class NcsHeader:
    """Fixed preamble of an NCS file."""
    type_name: str
    format_code: str
    field_count: int
    type_offset: int
    format_offset: int
    entry_section_offset: int
    string_table_offset: int
    control_section_offset: Optional[int] = None
    category_names_offset: Optional[int] = None
    binary_offset: int = 0
    string_count: Optional[int] = None

    def to_bytes(self) -> bytes:
        """Encode the 36-byte header (names are not included)."""
        return HEADER_STRUCT.pack(
            self.type_offset,
            self.format_offset,
            self.field_count,
            self.entry_section_offset,
            self.string_table_offset,
            self.control_section_offset or 0,
            self.category_names_offset or 0,
            self.binary_offset,
            self.string_count or 0,
        )

    def to_dict(self) -> dict:
        return {
            'type_name': self.type_name,
            'format_code': self.format_code,
            'field_count': self.field_count,
            'type_offset': self.type_offset,
            'format_offset': self.format_offset,
            'entry_section_offset': self.entry_section_offset,
            'string_table_offset': self.string_table_offset,
            'control_section_offset': self.control_section_offset,
            'category_names_offset': self.category_names_offset,
            'binary_offset': self.binary_offset,
            'string_count': self.string_count,
        }


def _read_name(data: bytes, offset: int, what: str) -> str:
    if offset < HEADER_SIZE or offset >= len(data):
        raise HeaderError(f"{what} offset 0x{offset:x} outside 0x{HEADER_SIZE:x}..0x{len(data):x}")
    end = data.find(b'\x00', offset)
    if end < 0:
        raise HeaderError(f"{what} at 0x{offset:x} is not NUL-terminated")
    return data[offset:end].decode('utf-8', errors='replace')


def parse_header(data: bytes) -> NcsHeader:
    """
    Parse the fixed header.

    Raises:
        HeaderError: buffer too short or an offset outside the buffer
    """
    if len(data) < HEADER_SIZE:
        raise HeaderError(f"Need {HEADER_SIZE} header bytes, got {len(data)}")

    (type_offset, format_offset, field_count, entry_offset, string_offset,
     control_offset, category_offset, binary_offset,
     string_count) = HEADER_STRUCT.unpack_from(data, 0)

    for name, offset in (('entry section', entry_offset),
                         ('string table', string_offset)):
        if offset < HEADER_SIZE or offset > len(data):
            raise HeaderError(f"{name} offset 0x{offset:x} outside buffer")
    for name, offset in (('control section', control_offset),
                         ('category names', category_offset)):
        if offset and (offset < HEADER_SIZE or offset > len(data)):
            raise HeaderError(f"{name} offset 0x{offset:x} outside buffer")

    return NcsHeader(
        type_name=_read_name(data, type_offset, 'type name'),
        format_code=_read_name(data, format_offset, 'format code'),
        field_count=field_count,
        type_offset=type_offset,
        format_offset=format_offset,
        entry_section_offset=entry_offset,
        string_table_offset=string_offset,
        control_section_offset=control_offset or None,
        category_names_offset=category_offset or None,
        binary_offset=binary_offset,
        string_count=string_count or None,
    )


def _next_boundary(header: NcsHeader, start: int, data_len: int) -> Optional[int]:
    """Closest known section offset after start, or None."""
    candidates = [header.control_section_offset, header.category_names_offset]
    if 0 < header.binary_offset <= data_len:
        candidates.append(header.binary_offset)
    after = [c for c in candidates if c is not None and c > start]
    return min(after) if after else None


def _read_section_strings(data: bytes, header: NcsHeader, start: int,
                          count: Optional[int] = None, text_only: bool = False):
    end = _next_boundary(header, start, len(data))
    # Unknown end and no count: stop at the first non-text string
    return read_cstrings(data, start, end, count=count,
                         text_only=text_only or (end is None and count is None))


def string_table_end(data: bytes, header: NcsHeader) -> int:
    """Byte offset just past the primary string table."""
    _, end = _read_section_strings(data, header, header.string_table_offset,
                                   header.string_count)
    return end


def parse_string_table(data: bytes, header: NcsHeader) -> StringTable:
    """Read the primary string table."""
    strings, _ = _read_section_strings(data, header, header.string_table_offset,
                                       header.string_count)
    return StringTable(strings)


def extract_inline_strings(data: bytes, header: NcsHeader) -> List[str]:
    """Category names appended to the combined table."""
    if header.category_names_offset is None:
        return []
    strings, _ = _read_section_strings(data, header, header.category_names_offset,
                                       text_only=True)
    return strings


def extract_field_abbreviation(data: bytes, header: NcsHeader) -> Optional[str]:
    """First string of the control section, if any."""
    if header.control_section_offset is None:
        return None
    strings, _ = read_cstrings(data, header.control_section_offset, count=1)
    if not strings or not strings[0]:
        return None
    return strings[0]


def aux_sections_end(data: bytes, header: NcsHeader) -> int:
    """Offset past the string table and any control/category sections."""
    end = string_table_end(data, header)
    for offset in (header.control_section_offset, header.category_names_offset):
        if offset is not None:
            _, section_end = _read_section_strings(data, header, offset, text_only=True)
            end = max(end, section_end)
    return end


def parse_header_dependencies(data: bytes, header: NcsHeader, strings: StringTable,
                              limits: DecodeLimits = DEFAULT_LIMITS,
                              trace: Optional[Callable[[str], None]] = None) -> List[str]:
    """Dependency table names from the entry section."""
    if header.entry_section_offset >= header.string_table_offset:
        return []
    section = data[header.entry_section_offset:header.string_table_offset]
    return parse_dependencies(BitReader(section), strings, limits, trace)


def _plausible_array_header(data: bytes, offset: int, limits: DecodeLimits) -> bool:
    if offset + 4 > len(data):
        return False
    count = int.from_bytes(data[offset:offset + 3], 'big')
    width = data[offset + 3]
    return 1 <= width <= 32 and count <= limits.max_array_count


def iter_length_words(data: bytes, start: int = 0) -> Iterator[int]:
    """Offsets of every `NZ NZ 00 00` word at or after start."""
    for i in range(max(start, 0), len(data) - SECTION_SIGNATURE_LEN + 1):
        if is_length_word(data, i):
            yield i


def find_section_dividers(data: bytes, start: int = 0) -> List[int]:
    """Offsets of `7a 00 00 00 00 00` (end-of-tags followed by zero padding)."""
    offsets = []
    pos = data.find(SECTION_DIVIDER, max(start, 0))
    while pos >= 0:
        offsets.append(pos)
        pos = data.find(SECTION_DIVIDER, pos + 1)
    return offsets


def find_binary_section(data: bytes, start: int,
                        limits: DecodeLimits = DEFAULT_LIMITS) -> Optional[int]:
    """
    Scan for the binary section from start.

    Looks for a `NZ NZ 00 00` length word and returns the offset right
    after it, provided a sane fixed-width array header begins there.
    Best effort: returns None when nothing plausible is found.
    """
    for i in iter_length_words(data, start):
        candidate = i + SECTION_SIGNATURE_LEN
        if _plausible_array_header(data, candidate, limits):
            return candidate
    return None


def binary_offset_usable(data: bytes, header: NcsHeader, after: int) -> bool:
    """True if the header's binary offset can be used as-is."""
    return 0 < header.binary_offset < len(data) and header.binary_offset >= after


def resolve_binary_offset(data: bytes, header: NcsHeader,
                          limits: DecodeLimits = DEFAULT_LIMITS,
                          trace: Optional[Callable[[str], None]] = None) -> Optional[int]:
    """Header binary offset if usable, else the locator's guess, else None."""
    after = aux_sections_end(data, header)
    if binary_offset_usable(data, header, after):
        return header.binary_offset

    if trace:
        trace(f"binary offset 0x{header.binary_offset:x} unusable, scanning from 0x{after:x}")
    offset = find_binary_section(data, after, limits)
    if offset is None and after > header.string_table_offset:
        # Text sections may have been misread; rescan from the string table
        if trace:
            trace(f"nothing after 0x{after:x}, scanning from string table "
                  f"0x{header.string_table_offset:x}")
        offset = find_binary_section(data, header.string_table_offset, limits)
    if trace:
        if offset is None:
            trace("binary section not found")
        else:
            trace(f"binary section located at 0x{offset:x}")
    return offset
