#!/usr/bin/env python3
"""
ncs_tool.py - Inspect and decode NCS catalog files

Usage:
    # Header fields, section offsets, string counts and index widths
    python tools/ncs_tool.py info inv4.bin

    # String table (primary, or combined with inline strings)
    python tools/ncs_tool.py strings inv4.bin --combined --limit 50

    # Section markers, index trial read, inline strings, binary section hex
    python tools/ncs_tool.py debug inv4.bin --hex 128

    # Whole document as JSON or YAML
    python tools/ncs_tool.py parse inv4.bin --format yaml

    # Serial indices as TSV (default), JSON or YAML
    python tools/ncs_tool.py serials inv4.bin -o serials.tsv

    # Custom decode ceilings and decoder trace on stderr
    python tools/ncs_tool.py --limits limits.yaml --trace parse inv4.bin

limits.yaml:
    limits:
      max_records: 5000
      max_list_items: 4095
"""

import argparse
import json
import sys
from pathlib import Path
from typing import List, Optional

import yaml

from bit_reader import BitReader
from ncs_document import NcsDecodeResult, NcsDecoder
from ncs_header import (
    SECTION_SIGNATURE_LEN, extract_field_abbreviation, extract_inline_strings,
    find_section_dividers, iter_length_words,
)
from ncs_types import SERIAL_INDEX_COLUMNS, DecodeLimits, SerialIndexEntry, load_limits


def format_serials_tsv(entries: List[SerialIndexEntry]) -> str:
    lines = ['\t'.join(SERIAL_INDEX_COLUMNS)]
    for e in entries:
        row = e.to_dict()
        lines.append('\t'.join('' if row[c] is None else str(row[c])
                               for c in SERIAL_INDEX_COLUMNS))
    return '\n'.join(lines) + '\n'


def render(data, fmt: str) -> str:
    if fmt == 'yaml':
        return yaml.safe_dump(data, default_flow_style=False, sort_keys=False)
    return json.dumps(data, indent=2) + '\n'


def write_output(text: str, output: Optional[str]):
    if output:
        Path(output).write_text(text)
    else:
        sys.stdout.write(text)


def report_problems(result: NcsDecodeResult, verbose: bool):
    for err in result.errors:
        print(f"error: {err}", file=sys.stderr)
    if verbose:
        for warning in result.warnings:
            print(f"warning: {warning}", file=sys.stderr)


def cmd_info(result: NcsDecodeResult, args) -> str:
    header = result.header
    strings = result.strings
    lines = [
        f"Type: {header.type_name}",
        f"Format: {header.format_code}",
        f"Field count: {header.field_count}",
        f"Entry section: 0x{header.entry_section_offset:x}",
        f"String table: 0x{header.string_table_offset:x}",
    ]
    if header.control_section_offset is not None:
        lines.append(f"Control section: 0x{header.control_section_offset:x}")
    if header.category_names_offset is not None:
        lines.append(f"Category names: 0x{header.category_names_offset:x}")
    lines.append(f"Binary section (header): 0x{header.binary_offset:x}")
    if result.binary_offset is not None:
        lines.append(f"Binary section (used): 0x{result.binary_offset:x}")
    if header.string_count is not None:
        lines.append(f"String count (header): {header.string_count}")
    if strings is not None:
        lines.append(f"Primary strings: {strings.primary_count} ({strings.primary_bits} bits)")
        lines.append(f"Combined strings: {len(strings)} ({strings.index_bits} bits)")

    doc = result.document
    if doc is not None:
        lines.append(f"Dependencies: {', '.join(doc.deps) if doc.deps else '(none)'}")
        lines.append(f"remap_a: count={doc.remap_a.count} width={doc.remap_a.width}")
        lines.append(f"remap_b: count={doc.remap_b.count} width={doc.remap_b.width}")
        lines.append(f"Records: {len(doc.records)}")
        lines.append(f"Serial indices: {len(result.serial_indices)}")
    return '\n'.join(lines) + '\n'


def cmd_strings(result: NcsDecodeResult, args) -> str:
    strings = result.strings
    count = len(strings) if args.combined else strings.primary_count
    shown = count if args.limit is None else min(count, args.limit)
    lines = []
    for i in range(shown):
        marker = '' if i < strings.primary_count else '  (inline)'
        lines.append(f"{i:5}: {strings.strings[i]}{marker}")
    if shown < count:
        lines.append(f"... and {count - shown} more")
    return '\n'.join(lines) + '\n'


def hex_dump(data: bytes, base: int = 0) -> List[str]:
    """16 bytes per line: offset, hex, printable ASCII."""
    lines = []
    for i in range(0, len(data), 16):
        chunk = data[i:i + 16]
        hex_part = ' '.join(f"{b:02x}" for b in chunk)
        text = ''.join(chr(b) if 0x20 <= b < 0x7F else '.' for b in chunk)
        lines.append(f"  0x{base + i:04x}: {hex_part:<47}  |{text}|")
    return lines


def cmd_debug(result: NcsDecodeResult, args) -> str:
    """Section markers, index trial read, inline strings and a hex dump."""
    data = args.data
    header = result.header
    strings = result.strings
    lines = [f"Size: {len(data)} bytes"]

    lines.append("")
    lines.append("=== Section Markers ===")
    markers = list(iter_length_words(data, header.string_table_offset + 1))
    for offset in markers:
        note = ''
        if result.binary_offset == offset + SECTION_SIGNATURE_LEN:
            note = '  (binary section follows)'
        lines.append(f"  0x{offset:03x}: {data[offset]:02x} {data[offset + 1]:02x} 00 00{note}")
    for offset in find_section_dividers(data, header.string_table_offset):
        lines.append(f"  0x{offset:03x}: 7a 00 00 00 00 00 (section divider)")

    if markers and strings is not None:
        bits = strings.index_bits
        reader = BitReader(data, markers[0])
        values = []
        for _ in range(args.indices):
            v = reader.read_bits(bits)
            if v is None:
                break
            values.append(str(v) if v < len(strings) else f"({v})")
        lines.append("")
        lines.append(f"=== Index Test (0x{markers[0]:x}, {bits}-bit) ===")
        lines.append("  " + ' '.join(values))

    if strings is not None and strings.is_combined:
        inline = extract_inline_strings(data, header)
        abbrev = extract_field_abbreviation(data, header)
        labels = ['category'] * len(inline)
        if abbrev is not None:
            labels.append('field abbrev')
        labels.append('type name')
        lines.append("")
        lines.append("=== Inline Strings ===")
        for idx, label in zip(range(strings.primary_count, len(strings)), labels):
            lines.append(f"  {idx:3}: {strings.strings[idx]} ({label})")

    if result.binary_offset is not None:
        start = result.binary_offset
        lines.append("")
        lines.append(f"=== Binary Section (0x{start:x}) ===")
        lines.extend(hex_dump(data[start:start + args.hex], start))

    return '\n'.join(lines) + '\n'


def cmd_parse(result: NcsDecodeResult, args) -> str:
    return render(result.to_dict(), args.format)


def cmd_serials(result: NcsDecodeResult, args) -> str:
    if args.format == 'tsv':
        return format_serials_tsv(result.serial_indices)
    return render([e.to_dict() for e in result.serial_indices], args.format)


COMMANDS = {
    'info': cmd_info,
    'strings': cmd_strings,
    'debug': cmd_debug,
    'parse': cmd_parse,
    'serials': cmd_serials,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Inspect and decode NCS catalog files')
    parser.add_argument('--limits', help='YAML file with decode ceilings')
    parser.add_argument('--trace', action='store_true', help='Print decoder trace to stderr')
    parser.add_argument('-v', '--verbose', action='store_true', help='Print decode warnings')

    sub = parser.add_subparsers(dest='command', required=True)

    p = sub.add_parser('info', help='Show header and section summary')
    p.add_argument('file')

    p = sub.add_parser('strings', help='List the string table')
    p.add_argument('file')
    p.add_argument('--combined', action='store_true', help='Include inline strings')
    p.add_argument('--limit', type=int, help='Show at most N strings')

    p = sub.add_parser('debug', help='Show section markers and binary section bytes')
    p.add_argument('file')
    p.add_argument('--hex', type=int, default=64, metavar='N',
                   help='Bytes of the binary section to dump (default: 64)')
    p.add_argument('--indices', type=int, default=8, metavar='N',
                   help='String indices to trial-read at the first marker (default: 8)')

    p = sub.add_parser('parse', help='Dump the decoded document')
    p.add_argument('file')
    p.add_argument('--format', choices=['json', 'yaml'], default='json')
    p.add_argument('-o', '--output', help='Output file')

    p = sub.add_parser('serials', help='Extract serial indices')
    p.add_argument('file')
    p.add_argument('--format', choices=['tsv', 'json', 'yaml'], default='tsv')
    p.add_argument('-o', '--output', help='Output file')

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        limits = load_limits(args.limits) if args.limits else DecodeLimits()
    except (OSError, ValueError, yaml.YAMLError) as e:
        print(f"error: cannot load limits: {e}", file=sys.stderr)
        return 2

    try:
        data = Path(args.file).read_bytes()
    except OSError as e:
        print(f"error: {e}", file=sys.stderr)
        return 2

    trace = (lambda msg: print(msg, file=sys.stderr)) if args.trace else None
    result = NcsDecoder(limits, trace).decode(data)
    args.data = data
    report_problems(result, args.verbose)

    if result.header is None:
        return 1

    output = COMMANDS[args.command](result, args)
    write_output(output, getattr(args, 'output', None))
    return 0 if result.success else 1


if __name__ == '__main__':
    sys.exit(main())
