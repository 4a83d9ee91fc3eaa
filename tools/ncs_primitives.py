#!/usr/bin/env python3
"""
ncs_primitives.py - Fixed-width array and Elias-gamma codecs

Fixed-width array (FixedWidthIntArray24):
    count:  24 bits
    width:   8 bits (1..32)
    values: count x width bits

Elias-gamma (positive integers):
    N zero bits, a 1 bit, then the N low bits of the value
        1 -> 1
        2 -> 010
        5 -> 00101

The dependency list in the entry section is a run of Elias-gamma values
with no explicit count; it ends on the first value that cannot be a
dependency index (see parse_dependencies()).
"""

from typing import Callable, List, Optional

from bit_reader import BitReader, BitWriter
from ncs_strings import StringTable
from ncs_types import DecodeLimits, FixedWidthArray, SanityLimitExceeded


DEFAULT_LIMITS = DecodeLimits()

Trace = Optional[Callable[[str], None]]


def parse_fixed_width_array24(reader: BitReader,
                              limits: DecodeLimits = DEFAULT_LIMITS) -> FixedWidthArray:
    """
    Read a 24-bit count, 8-bit width array.

    Raises:
        SanityLimitExceeded: width 0 / > 32 or count above the ceiling
        StreamExhausted: stream ends inside the array
    """
    count = reader.read(24)
    width = reader.read(8)

    if width == 0 or width > 32:
        raise SanityLimitExceeded(f"Invalid array width {width}")
    if count > limits.max_array_count:
        raise SanityLimitExceeded(
            f"Array count {count} exceeds ceiling {limits.max_array_count}"
        )

    values = [reader.read(width) for _ in range(count)]
    return FixedWidthArray(count=count, width=width, values=values)


def encode_fixed_width_array24(values: List[int], width: int,
                               writer: Optional[BitWriter] = None) -> BitWriter:
    """Write values as a fixed-width array; returns the writer."""
    if writer is None:
        writer = BitWriter()
    if not 1 <= width <= 32:
        raise ValueError(f"Width must be 1..32, got {width}")
    writer.write(len(values), 24)
    writer.write(width, 8)
    for v in values:
        writer.write(v, width)
    return writer


def read_elias_gamma(reader: BitReader,
                     limits: DecodeLimits = DEFAULT_LIMITS) -> Optional[int]:
    """
    Decode one Elias-gamma value.

    Returns None, with the cursor restored, if the zero run reaches
    limits.max_gamma_zeros or the stream ends.
    """
    start = reader.position
    zeros = 0

    while True:
        bit = reader.read_bits(1)
        if bit is None:
            reader.seek(start)
            return None
        if bit == 1:
            break
        zeros += 1
        if zeros >= limits.max_gamma_zeros:
            reader.seek(start)
            return None

    if zeros == 0:
        return 1

    remainder = reader.read_bits(zeros)
    if remainder is None:
        reader.seek(start)
        return None
    return (1 << zeros) | remainder


def encode_elias_gamma(value: int, writer: Optional[BitWriter] = None) -> BitWriter:
    """Write one positive integer in Elias-gamma form."""
    if value < 1:
        raise ValueError(f"Elias-gamma encodes positive integers, got {value}")
    if writer is None:
        writer = BitWriter()
    n = value.bit_length() - 1
    for _ in range(n):
        writer.write(0, 1)
    writer.write(1, 1)
    if n:
        writer.write(value & ((1 << n) - 1), n)
    return writer


def parse_dependencies(reader: BitReader, strings: StringTable,
                       limits: DecodeLimits = DEFAULT_LIMITS,
                       trace: Trace = None) -> List[str]:
    """
    Read dependency table names as Elias-gamma string indices.

    Stops on a value that is 0, above limits.max_dependencies or not a
    primary string index, on stream end, or when the list is full. These
    are heuristics; there is no explicit count in the stream.
    """
    deps = []

    while len(deps) < limits.max_dependencies:
        idx = read_elias_gamma(reader, limits)
        if idx is None:
            if trace:
                trace(f"deps: stream ended after {len(deps)} entries")
            break
        if idx == 0 or idx > limits.max_dependencies or idx >= strings.primary_count:
            if trace:
                trace(f"deps: stopping at value {idx} (strings={strings.primary_count})")
            break
        name = strings.lookup(idx)
        if trace:
            trace(f"deps: [{idx}] = {name!r}")
        deps.append(name)

    return deps
