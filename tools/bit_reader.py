#!/usr/bin/env python3
"""
bit_reader.py - MSB-first bit stream reader/writer for NCS decoding

All bit-packed NCS sections (fixed-width arrays, Elias-gamma lists, string
indices, record grammar) are read through one cursor convention:

    byte:   [b7 b6 b5 b4 b3 b2 b1 b0] [b7 b6 ...]
    order:    0  1  2  3  4  5  6  7    8  9 ...

Bits are consumed starting from the most significant bit of each byte and
the first bit consumed becomes the most significant bit of the value.

Usage:
    from bit_reader import BitReader, BitWriter

    reader = BitReader(data)
    count = reader.read_bits(24)      # None if fewer than 24 bits remain
    width = reader.read(8)            # raises StreamExhausted instead

    writer = BitWriter()
    writer.write(5, 24)
    data = writer.to_bytes()
"""

from typing import Optional

from ncs_types import StreamExhausted


MAX_READ_BITS = 32


class BitReader:
    """Cursor over a byte buffer reading 0-32 bit unsigned integers."""

    __slots__ = ('_data', '_pos', '_bit_len')

    def __init__(self, data: bytes, offset: int = 0):
        """
        Args:
            data: Buffer to read
            offset: Starting *byte* offset within the buffer
        """
        self._data = bytes(data)
        self._bit_len = len(self._data) * 8
        if offset < 0 or offset * 8 > self._bit_len:
            raise ValueError(f"Offset {offset} outside buffer of {len(self._data)} bytes")
        self._pos = offset * 8

    @property
    def position(self) -> int:
        """Absolute bit position of the cursor."""
        return self._pos

    @property
    def bit_length(self) -> int:
        return self._bit_len

    @property
    def remaining(self) -> int:
        return self._bit_len - self._pos

    def seek(self, bit_pos: int):
        """Move the cursor to an absolute bit position."""
        if bit_pos < 0 or bit_pos > self._bit_len:
            raise ValueError(f"Bit position {bit_pos} outside 0..{self._bit_len}")
        self._pos = bit_pos

    def has_bits(self, n: int) -> bool:
        return n >= 0 and self._pos + n <= self._bit_len

    def read_bits(self, n: int) -> Optional[int]:
        """
        Read an n-bit unsigned integer.

        Returns None (cursor unchanged) if fewer than n bits remain.
        Reading 0 bits returns 0 without moving the cursor.
        """
        if n < 0 or n > MAX_READ_BITS:
            raise ValueError(f"Bit count must be 0..{MAX_READ_BITS}, got {n}")
        if n == 0:
            return 0
        if not self.has_bits(n):
            return None

        start = self._pos
        end = start + n
        first = start >> 3
        last = (end - 1) >> 3
        chunk = int.from_bytes(self._data[first:last + 1], 'big')
        # Drop the unread low bits of the last byte
        shift = (last + 1) * 8 - end
        value = (chunk >> shift) & ((1 << n) - 1)

        self._pos = end
        return value

    def read(self, n: int) -> int:
        """Like read_bits() but raises StreamExhausted on a short stream."""
        value = self.read_bits(n)
        if value is None:
            raise StreamExhausted(
                f"Need {n} bits at bit {self._pos}, only {self.remaining} remain"
            )
        return value

    def __repr__(self) -> str:
        return f"BitReader(pos={self._pos}, bits={self._bit_len})"


class BitWriter:
    """Accumulates MSB-first bit fields; inverse of BitReader."""

    def __init__(self):
        self._acc = 0
        self._nbits = 0

    @property
    def bit_length(self) -> int:
        return self._nbits

    def write(self, value: int, n: int) -> 'BitWriter':
        """Append value as an n-bit field (0 <= n <= 32)."""
        if n < 0 or n > MAX_READ_BITS:
            raise ValueError(f"Bit count must be 0..{MAX_READ_BITS}, got {n}")
        if value < 0 or value >> n:
            raise ValueError(f"Value {value} does not fit in {n} bits")
        self._acc = (self._acc << n) | value
        self._nbits += n
        return self

    def write_bytes(self, data: bytes) -> 'BitWriter':
        for b in data:
            self.write(b, 8)
        return self

    def extend(self, other: 'BitWriter') -> 'BitWriter':
        """Append all bits of another writer (no padding in between)."""
        self._acc = (self._acc << other._nbits) | other._acc
        self._nbits += other._nbits
        return self

    def to_bytes(self) -> bytes:
        """Return the written bits, zero padded to a byte boundary."""
        pad = (-self._nbits) % 8
        total = self._nbits + pad
        return (self._acc << pad).to_bytes(total // 8, 'big')
