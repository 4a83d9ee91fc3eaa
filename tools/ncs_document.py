#!/usr/bin/env python3
"""
ncs_document.py - NCS document assembly and serial index extraction

Decodes a complete NCS buffer:

    bytes -> header -> string table (+ inline strings = combined table)
          -> binary offset (header or locator) -> dependency list
          -> remap_a, remap_b, records -> Document -> serial indices

Usage:
    from ncs_document import NcsDecoder

    decoder = NcsDecoder()
    result = decoder.decode(data)
    if result.success:
        for entry in result.serial_indices:
            print(entry.part_name, entry.index)

    # Diagnostics are off by default; pass a trace hook to see them
    decoder = NcsDecoder(trace=lambda msg: print(msg, file=sys.stderr))

Every decode call builds its own reader, tables and document, so separate
buffers can be decoded concurrently. decode() never raises for bad input;
problems are reported in NcsDecodeResult.errors/warnings.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from bit_reader import BitReader
from ncs_grammar import SERIAL_INDEX_FIELD, RecordGrammar
from ncs_header import (
    NcsHeader, extract_field_abbreviation, extract_inline_strings,
    parse_header, parse_header_dependencies, parse_string_table,
    resolve_binary_offset,
)
from ncs_primitives import parse_fixed_width_array24
from ncs_strings import StringTable, create_combined_string_table
from ncs_types import (
    DecodeLimits, Document, NcsDecodeError, SerialIndexEntry,
)


UNKNOWN = 'Unknown'

Trace = Optional[Callable[[str], None]]


def parse_document(data: bytes, strings: StringTable, binary_offset: int,
                   deps: Optional[List[str]] = None,
                   table_id: str = '',
                   limits: Optional[DecodeLimits] = None,
                   trace: Trace = None) -> Optional[Document]:
    """
    Parse the binary section starting at binary_offset.

    Returns None if either remap array fails. A failing record ends
    parsing; records before it are kept and Document.stop_reason says why.
    """
    limits = limits or DecodeLimits()
    deps = list(deps or [])

    if binary_offset < 0 or binary_offset > len(data):
        if trace:
            trace(f"binary offset 0x{binary_offset:x} outside buffer")
        return None

    reader = BitReader(data, binary_offset)
    if trace:
        trace(f"document: strings={len(strings)} ({strings.index_bits} bits), "
              f"primary={strings.primary_count} ({strings.primary_bits} bits)")

    try:
        remap_a = parse_fixed_width_array24(reader, limits)
        remap_b = parse_fixed_width_array24(reader, limits)
    except NcsDecodeError as e:
        if trace:
            trace(f"document: remap arrays failed: {e}")
        return None

    if trace:
        trace(f"document: remap_a count={remap_a.count} width={remap_a.width}, "
              f"remap_b count={remap_b.count} width={remap_b.width}")

    doc = Document(table_id=table_id, deps=deps, remap_a=remap_a, remap_b=remap_b)
    grammar = RecordGrammar(strings, remap_a, deps, limits, trace)

    while reader.has_bits(32):
        if len(doc.records) >= limits.max_records:
            doc.stop_reason = f"record limit {limits.max_records} reached"
            break

        start = reader.position
        try:
            record = grammar.parse_record(reader)
        except NcsDecodeError as e:
            doc.stop_reason = f"record {len(doc.records)} at bit {start}: {e}"
            reader.seek(start)
            break

        if trace:
            trace(f"document: record {len(doc.records)} tags={len(record.tags)} "
                  f"entries={len(record.entries)} dep_entries={len(record.dep_entries)}")
        doc.records.append(record)

    if trace and doc.stop_reason:
        trace(f"document: stopped, {doc.stop_reason}")
    return doc


def extract_serial_indices(doc: Document) -> List[SerialIndexEntry]:
    """Flatten every serialindex object found in dependency entries."""
    entries = []

    for record in doc.records:
        item_type = next(iter(record.entries), UNKNOWN)

        for dep_entry in record.dep_entries:
            si_obj = dep_entry.fields.get(SERIAL_INDEX_FIELD)
            if not isinstance(si_obj, dict):
                continue
            index_str = si_obj.get('index', '')
            if not index_str.isdigit() or not index_str.isascii():
                continue
            index = int(index_str)
            if index > 0xFFFFFFFF:
                continue

            entries.append(SerialIndexEntry(
                item_type=item_type,
                part_name=dep_entry.name,
                index=index,
                scope=si_obj.get('_scope', UNKNOWN),
                category=si_obj.get('_category', UNKNOWN),
                slot=dep_entry.dep_table_name,
            ))

    return entries


@dataclass
class NcsDecodeResult:
    """Result of decoding one NCS buffer."""
    header: Optional[NcsHeader] = None
    strings: Optional[StringTable] = None
    binary_offset: Optional[int] = None
    document: Optional[Document] = None
    serial_indices: List[SerialIndexEntry] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return len(self.errors) == 0 and self.document is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'header': self.header.to_dict() if self.header else None,
            'binary_offset': self.binary_offset,
            'string_count': len(self.strings) if self.strings is not None else 0,
            'document': self.document.to_dict() if self.document else None,
            'serial_indices': [e.to_dict() for e in self.serial_indices],
            'warnings': list(self.warnings),
            'errors': list(self.errors),
        }


class NcsDecoder:
    """Decodes whole NCS buffers. Holds configuration only, no per-file state."""

    def __init__(self, limits: Optional[DecodeLimits] = None, trace: Trace = None):
        self.limits = limits or DecodeLimits()
        self.trace = trace

    def _trace(self, msg: str):
        if self.trace:
            self.trace(msg)

    def decode(self, data: bytes) -> NcsDecodeResult:
        result = NcsDecodeResult()

        try:
            header = parse_header(data)
        except NcsDecodeError as e:
            result.errors.append(f"Header: {e}")
            return result
        result.header = header
        self._trace(f"header: type={header.type_name!r} format={header.format_code!r} "
                    f"fields={header.field_count}")

        primary = parse_string_table(data, header)
        if header.string_count is not None and len(primary) < header.string_count:
            result.warnings.append(
                f"String table truncated: {len(primary)} of {header.string_count} strings"
            )
        combined = create_combined_string_table(
            primary,
            extract_inline_strings(data, header),
            extract_field_abbreviation(data, header),
            header.type_name,
        )
        result.strings = combined
        self._trace(f"strings: primary={len(primary)} combined={len(combined)}")

        try:
            deps = parse_header_dependencies(data, header, primary, self.limits, self.trace)
        except NcsDecodeError as e:
            result.warnings.append(f"Dependencies: {e}")
            deps = []

        binary_offset = resolve_binary_offset(data, header, self.limits, self.trace)
        if binary_offset is None:
            result.errors.append("Binary section not found")
            return result
        result.binary_offset = binary_offset
        if binary_offset != header.binary_offset:
            result.warnings.append(
                f"Binary section located by scan at 0x{binary_offset:x} "
                f"(header says 0x{header.binary_offset:x})"
            )

        doc = parse_document(data, combined, binary_offset, deps, header.type_name,
                             self.limits, self.trace)
        if doc is None:
            result.errors.append(f"Remap arrays at 0x{binary_offset:x} failed to parse")
            return result
        if doc.stop_reason:
            result.warnings.append(f"Records: {doc.stop_reason}")

        result.document = doc
        result.serial_indices = extract_serial_indices(doc)
        return result


def decode_ncs(data: bytes, limits: Optional[DecodeLimits] = None,
               trace: Trace = None) -> NcsDecodeResult:
    """Convenience function to decode one buffer."""
    return NcsDecoder(limits, trace).decode(data)
