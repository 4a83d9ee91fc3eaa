#!/usr/bin/env python3
"""
ncs_grammar.py - NCS record grammar

Record layout (bit stream, MSB-first):

    byte_count      32 bits (informational, not used to skip)
    tags            8-bit tag bytes until 0x7A
    entries         2-bit type codes until type 0
    dep_entries     one entry list per dependency table (only if deps)

Tag bytes:
    0x61 'a'  Pair     index (remap_a.width bits) -> remap_a.values[index]
    0x62 'b'  U32      32 bits
    0x63 'c'  U32F32   32 bits, also read as IEEE-754 single
    0x64 'd'  List     string indices (primary width) until "none"/""
    0x65 'e'  List
    0x66 'f'  List
    0x70 'p'  Variant  2-bit subtype
    0x7A 'z'  end of tags
    other     skipped, kept in Record.unknown_tags

Entry type codes (2 bits):
    0  end
    1  name                      -> present
    2  name                      -> present (payload not decoded)
    3  name, referenced string   -> ref

Dependency entries use the same codes, but type 2 is followed by a
nested field block and type 3 by one reference index. Inside the nested
block a field named 'serialindex' carries up to four key/value pairs
(status, index, _category, _scope) instead of a single value.
"""

import struct
from typing import Callable, Dict, List, Optional

from bit_reader import BitReader
from ncs_strings import StringTable, is_terminator
from ncs_types import (
    DecodeLimits, DepEntry, EntryValue, FieldValue, FixedWidthArray,
    GrammarError, IndexOutOfRange, ListTag, PairTag, Record, Tag,
    U32F32Tag, U32Tag, VariantTag,
)


TAG_PAIR = 0x61
TAG_U32 = 0x62
TAG_U32F32 = 0x63
TAG_LIST = (0x64, 0x65, 0x66)
TAG_VARIANT = 0x70
TAG_END = 0x7A

ENTRY_END = 0
ENTRY_PRESENT = 1
ENTRY_NESTED = 2
ENTRY_REF = 3

SERIAL_INDEX_FIELD = 'serialindex'
SERIAL_INDEX_KEYS = ('status', 'index', '_category', '_scope')


def u32_to_f32(bits: int) -> float:
    """Reinterpret 32 bits as an IEEE-754 single."""
    return struct.unpack('>f', struct.pack('>I', bits))[0]


class RecordGrammar:
    """
    Parses records against one document's string table and remap_a.

    `strings` is normally the combined table. Entry and dependency indices
    use its full width; string lists use the primary table's width.
    """

    def __init__(self, strings: StringTable,
                 remap_a: Optional[FixedWidthArray] = None,
                 deps: Optional[List[str]] = None,
                 limits: Optional[DecodeLimits] = None,
                 trace: Optional[Callable[[str], None]] = None):
        self.strings = strings
        self.remap_a = remap_a if remap_a is not None else FixedWidthArray(0, 1, [])
        self.deps = list(deps or [])
        self.limits = limits or DecodeLimits()
        self.trace = trace

        self.string_bits = strings.index_bits
        self.list_bits = strings.primary_bits

    def _trace(self, msg: str):
        if self.trace:
            self.trace(msg)

    def _read_string(self, reader: BitReader, bits: Optional[int] = None) -> str:
        idx = reader.read(self.string_bits if bits is None else bits)
        return self.strings.lookup(idx)

    # -------------------------------------------------------------------------
    # Tags
    # -------------------------------------------------------------------------

    def parse_tags(self, reader: BitReader, record: Optional[Record] = None) -> List[Tag]:
        """
        Read tags until 0x7A.

        Unknown tag bytes are appended to record.unknown_tags (when a record
        is given) and skipped. Raises StreamExhausted if 0x7A never comes.
        """
        tags = []

        while True:
            tag_byte = reader.read(8)

            if tag_byte == TAG_END:
                break

            if tag_byte == TAG_PAIR:
                idx = reader.read(self.remap_a.width)
                if idx >= len(self.remap_a.values):
                    raise IndexOutOfRange(
                        f"Pair index {idx} outside remap_a of {len(self.remap_a.values)}"
                    )
                tags.append(PairTag(self.remap_a.values[idx]))
            elif tag_byte == TAG_U32:
                tags.append(U32Tag(reader.read(32)))
            elif tag_byte == TAG_U32F32:
                bits = reader.read(32)
                tags.append(U32F32Tag(bits, u32_to_f32(bits)))
            elif tag_byte in TAG_LIST:
                tags.append(ListTag(self.parse_list(reader)))
            elif tag_byte == TAG_VARIANT:
                tags.append(VariantTag(reader.read(2)))
            else:
                self._trace(f"tags: skipping unknown tag 0x{tag_byte:02x} at bit {reader.position - 8}")
                if record is not None:
                    record.unknown_tags.append(tag_byte)

        return tags

    def parse_list(self, reader: BitReader) -> List[str]:
        """String indices (primary width) until 'none', '' or the item ceiling."""
        items = []
        for _ in range(self.limits.max_list_items):
            s = self._read_string(reader, self.list_bits)
            if is_terminator(s):
                break
            items.append(s)
        return items

    # -------------------------------------------------------------------------
    # Entries
    # -------------------------------------------------------------------------

    def parse_entries(self, reader: BitReader) -> Dict[str, EntryValue]:
        entries = {}

        while True:
            entry_type = reader.read(2)

            if entry_type == ENTRY_END:
                break
            elif entry_type == ENTRY_PRESENT:
                entries[self._read_string(reader)] = EntryValue.present()
            elif entry_type == ENTRY_NESTED:
                # Payload format unknown; keep the raw type code
                entries[self._read_string(reader)] = EntryValue.present(ENTRY_NESTED)
            elif entry_type == ENTRY_REF:
                name = self._read_string(reader)
                entries[name] = EntryValue.ref(self._read_string(reader))
            else:
                raise GrammarError(f"Entry type {entry_type} outside 2-bit domain")

        return entries

    # -------------------------------------------------------------------------
    # Dependency entries
    # -------------------------------------------------------------------------

    def parse_dep_entries(self, reader: BitReader) -> List[DepEntry]:
        """One entry list per dependency table, in deps order."""
        all_entries = []

        for dep_idx, dep_name in enumerate(self.deps):
            while True:
                entry_type = reader.read(2)
                if entry_type == ENTRY_END:
                    break

                name = self._read_string(reader)
                if is_terminator(name):
                    break

                fields: Dict[str, FieldValue] = {}
                if entry_type == ENTRY_NESTED:
                    fields = self.parse_nested_fields(reader)
                elif entry_type == ENTRY_REF:
                    fields['ref'] = self._read_string(reader)

                all_entries.append(DepEntry(
                    dep_table_name=dep_name,
                    dep_table_id=dep_idx,
                    name=name,
                    fields=fields,
                ))

        return all_entries

    def parse_nested_fields(self, reader: BitReader) -> Dict[str, FieldValue]:
        fields: Dict[str, FieldValue] = {}

        while True:
            field_name = self._read_string(reader)
            if is_terminator(field_name):
                break

            if field_name == SERIAL_INDEX_FIELD:
                fields[field_name] = self.parse_serial_index(reader)
            else:
                fields[field_name] = self._read_string(reader)

        return fields

    def parse_serial_index(self, reader: BitReader) -> Dict[str, str]:
        """Up to four key/value pairs, ending early on a 'none'/'' key."""
        obj = {}
        for _ in SERIAL_INDEX_KEYS:
            key = self._read_string(reader)
            if is_terminator(key):
                break
            obj[key] = self._read_string(reader)
        return obj

    # -------------------------------------------------------------------------
    # Record
    # -------------------------------------------------------------------------

    def parse_record(self, reader: BitReader) -> Record:
        record = Record()
        record.byte_count = reader.read(32)
        record.tags = self.parse_tags(reader, record)
        record.entries = self.parse_entries(reader)
        if self.deps:
            record.dep_entries = self.parse_dep_entries(reader)
        return record
