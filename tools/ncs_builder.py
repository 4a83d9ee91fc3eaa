#!/usr/bin/env python3
"""
ncs_builder.py - Build synthetic NCS files

Encoder counterpart of the NCS decoder. Lays out a complete file (header,
names, dependency list, string table, control/category sections, binary
section) so decoder behaviour can be exercised without game data.

Usage:
    from ncs_builder import NcsFileBuilder

    builder = NcsFileBuilder('inv', strings=['none', 'inv_weapon', ...],
                             deps=['inv_weapon'])
    builder.set_remap_a([42], width=8)

    rec = builder.new_record()
    rec.pair(0)
    rec.end_tags()
    rec.present('Weapon_AR')
    rec.end_entries()
    rec.dep_entry('BOR_AR_Grip_01', fields={'serialindex': {...}})
    rec.end_dep_table()
    builder.add_record(rec)

    data = builder.build()
"""

import struct
from typing import Dict, List, Optional, Sequence, Union

from bit_reader import BitWriter
from ncs_grammar import (
    ENTRY_END, ENTRY_NESTED, ENTRY_PRESENT, ENTRY_REF, SERIAL_INDEX_FIELD,
    TAG_END, TAG_LIST, TAG_PAIR, TAG_U32, TAG_U32F32, TAG_VARIANT,
)
from ncs_header import HEADER_SIZE, NcsHeader
from ncs_primitives import encode_elias_gamma, encode_fixed_width_array24
from ncs_strings import StringTable, create_combined_string_table


# Word seen between the last text section and the binary section
DEFAULT_SECTION_MARKER = 0x0101


class RecordWriter:
    """Writes one record body (everything after the 32-bit byte count)."""

    def __init__(self, strings: StringTable, remap_a_width: int = 1):
        self.strings = strings
        self.remap_a_width = remap_a_width
        self.bits = BitWriter()

    def index_of(self, s: str) -> int:
        try:
            return self.strings.strings.index(s)
        except ValueError:
            raise ValueError(f"String {s!r} not in table") from None

    def _string(self, s: str, bits: Optional[int] = None):
        self.bits.write(self.index_of(s), self.strings.index_bits if bits is None else bits)

    # Tags

    def pair(self, remap_index: int) -> 'RecordWriter':
        self.bits.write(TAG_PAIR, 8).write(remap_index, self.remap_a_width)
        return self

    def u32(self, value: int) -> 'RecordWriter':
        self.bits.write(TAG_U32, 8).write(value, 32)
        return self

    def u32f32(self, value: Union[int, float]) -> 'RecordWriter':
        """Float values are stored as their IEEE-754 bits."""
        if isinstance(value, float):
            value = struct.unpack('>I', struct.pack('>f', value))[0]
        self.bits.write(TAG_U32F32, 8).write(value, 32)
        return self

    def string_list(self, items: Sequence[str], tag: int = TAG_LIST[0],
                    terminator: Optional[str] = 'none') -> 'RecordWriter':
        if tag not in TAG_LIST:
            raise ValueError(f"0x{tag:02x} is not a list tag")
        self.bits.write(tag, 8)
        for item in items:
            self._string(item, self.strings.primary_bits)
        if terminator is not None:
            self._string(terminator, self.strings.primary_bits)
        return self

    def variant(self, subtype: int) -> 'RecordWriter':
        self.bits.write(TAG_VARIANT, 8).write(subtype, 2)
        return self

    def raw_tag(self, tag_byte: int) -> 'RecordWriter':
        """A bare tag byte with no payload (e.g. unknown vocabulary)."""
        self.bits.write(tag_byte, 8)
        return self

    def end_tags(self) -> 'RecordWriter':
        self.bits.write(TAG_END, 8)
        return self

    # Entries

    def present(self, name: str, entry_type: int = ENTRY_PRESENT) -> 'RecordWriter':
        self.bits.write(entry_type, 2)
        self._string(name)
        return self

    def ref(self, name: str, target: str) -> 'RecordWriter':
        self.bits.write(ENTRY_REF, 2)
        self._string(name)
        self._string(target)
        return self

    def end_entries(self) -> 'RecordWriter':
        self.bits.write(ENTRY_END, 2)
        return self

    # Dependency entries

    def dep_entry(self, name: str,
                  fields: Optional[Dict[str, Union[str, Dict[str, str]]]] = None,
                  ref: Optional[str] = None) -> 'RecordWriter':
        """
        Type 1 with neither fields nor ref, type 2 with fields, type 3 with ref.
        """
        if fields is not None:
            self.bits.write(ENTRY_NESTED, 2)
            self._string(name)
            self._nested_fields(fields)
        elif ref is not None:
            self.bits.write(ENTRY_REF, 2)
            self._string(name)
            self._string(ref)
        else:
            self.bits.write(ENTRY_PRESENT, 2)
            self._string(name)
        return self

    def _nested_fields(self, fields: Dict[str, Union[str, Dict[str, str]]]):
        for field_name, value in fields.items():
            self._string(field_name)
            if field_name == SERIAL_INDEX_FIELD:
                for key, val in value.items():
                    self._string(key)
                    self._string(val)
                if len(value) < 4:
                    self._string('none')
            else:
                self._string(value)
        self._string('none')

    def end_dep_table(self) -> 'RecordWriter':
        self.bits.write(ENTRY_END, 2)
        return self

    @property
    def byte_count(self) -> int:
        return (self.bits.bit_length + 7) // 8


class NcsFileBuilder:
    """Assembles a complete NCS file."""

    def __init__(self, type_name: str, strings: List[str],
                 deps: Sequence[str] = (),
                 format_code: str = 'abjx',
                 categories: Sequence[str] = (),
                 field_abbrev: Optional[str] = None,
                 field_count: int = 0,
                 include_binary_offset: bool = True,
                 include_string_count: bool = True,
                 section_marker: int = DEFAULT_SECTION_MARKER):
        self.type_name = type_name
        self.format_code = format_code
        self.primary = StringTable(list(strings))
        self.deps = list(deps)
        self.categories = list(categories)
        self.field_abbrev = field_abbrev
        self.field_count = field_count
        self.include_binary_offset = include_binary_offset
        self.include_string_count = include_string_count
        self.section_marker = section_marker

        self.remap_a: List[int] = []
        self.remap_a_width = 1
        self.remap_b: List[int] = []
        self.remap_b_width = 1
        self.records: List[RecordWriter] = []

    @property
    def combined(self) -> StringTable:
        return create_combined_string_table(self.primary, self.categories,
                                            self.field_abbrev, self.type_name)

    def set_remap_a(self, values: List[int], width: int):
        self.remap_a, self.remap_a_width = list(values), width

    def set_remap_b(self, values: List[int], width: int):
        self.remap_b, self.remap_b_width = list(values), width

    def new_record(self) -> RecordWriter:
        return RecordWriter(self.combined, self.remap_a_width)

    def add_record(self, record: RecordWriter):
        self.records.append(record)

    def _entry_section(self) -> bytes:
        writer = BitWriter()
        for dep in self.deps:
            idx = self.primary.strings.index(dep)
            if idx == 0:
                raise ValueError(f"Dependency {dep!r} at index 0 cannot be Elias-gamma coded")
            encode_elias_gamma(idx, writer)
        # First value that is not a primary index ends the list
        encode_elias_gamma(max(1, len(self.primary)), writer)
        return writer.to_bytes()

    def binary_section(self) -> bytes:
        writer = encode_fixed_width_array24(self.remap_a, self.remap_a_width)
        encode_fixed_width_array24(self.remap_b, self.remap_b_width, writer)
        for record in self.records:
            writer.write(record.byte_count, 32)
            writer.extend(record.bits)
        return writer.to_bytes()

    @staticmethod
    def _cstrings(strings: Sequence[str]) -> bytes:
        return b''.join(s.encode('utf-8') + b'\x00' for s in strings)

    def build(self) -> bytes:
        names = self._cstrings([self.type_name, self.format_code])
        entry_section = self._entry_section()
        string_table = self._cstrings(self.primary.strings)
        control = self._cstrings([self.field_abbrev]) if self.field_abbrev else b''
        category = self._cstrings(self.categories)
        # Only needed when the locator has to find the binary section
        marker = b'' if self.include_binary_offset else struct.pack('<I', self.section_marker)

        type_offset = HEADER_SIZE
        format_offset = type_offset + len(self.type_name.encode('utf-8')) + 1
        entry_offset = HEADER_SIZE + len(names)
        string_offset = entry_offset + len(entry_section)
        control_offset = string_offset + len(string_table)
        category_offset = control_offset + len(control)
        binary_offset = category_offset + len(category) + len(marker)

        header = NcsHeader(
            type_name=self.type_name,
            format_code=self.format_code,
            field_count=self.field_count,
            type_offset=type_offset,
            format_offset=format_offset,
            entry_section_offset=entry_offset,
            string_table_offset=string_offset,
            control_section_offset=control_offset if control else None,
            category_names_offset=category_offset if category else None,
            binary_offset=binary_offset if self.include_binary_offset else 0,
            string_count=len(self.primary) if self.include_string_count else None,
        )

        return b''.join([
            header.to_bytes(), names, entry_section, string_table,
            control, category, marker, self.binary_section(),
        ])
