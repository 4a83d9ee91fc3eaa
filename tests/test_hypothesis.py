"""
test_hypothesis.py - Property-based testing with Hypothesis

Covers the decoder properties that must hold for any input:
- BitReader short reads fail without moving the cursor
- Elias-gamma values decode back to what was written
- NcsDecoder.decode() never raises on malformed buffers
- Record parsing is bounded (no infinite loops on garbage)

Run with:
    pytest tests/test_hypothesis.py -v
    pytest tests/test_hypothesis.py -v --hypothesis-show-statistics
"""

import pytest
from hypothesis import given, settings, assume, HealthCheck
from hypothesis import strategies as st
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / 'tools'))
from bit_reader import BitReader, BitWriter
from conftest import make_inventory_builder
from ncs_document import NcsDecoder, parse_document
from ncs_primitives import encode_elias_gamma, read_elias_gamma
from ncs_strings import StringTable, bit_width
from ncs_types import DecodeLimits


# =============================================================================
# Strategies for generating test data
# =============================================================================

bytes_strategy = st.binary(min_size=0, max_size=512)
bit_counts = st.integers(min_value=1, max_value=32)
gamma_values = st.integers(min_value=1, max_value=2**20)

# (value, width) fields that fit
fields_strategy = bit_counts.flatmap(
    lambda n: st.tuples(st.integers(min_value=0, max_value=2**n - 1), st.just(n))
)

INVENTORY = make_inventory_builder().build()


# =============================================================================
# Bit reader
# =============================================================================

class TestBitReaderProperties:
    """Cursor behaviour of BitReader."""

    @given(st.binary(max_size=16), bit_counts, st.integers(min_value=0, max_value=31))
    @settings(max_examples=500)
    def test_short_read_leaves_cursor(self, data, n, short_by):
        """Reading n bits with fewer than n left returns None and keeps position."""
        reader = BitReader(data)
        remaining = min(n - 1, short_by)
        assume(reader.bit_length >= remaining)
        reader.seek(reader.bit_length - remaining)

        pos = reader.position
        assert reader.read_bits(n) is None
        assert reader.position == pos
        assert reader.read_bits(n) is None

    @given(st.lists(fields_strategy, max_size=40))
    @settings(max_examples=300)
    def test_writer_fields_read_back(self, fields):
        writer = BitWriter()
        for value, n in fields:
            writer.write(value, n)
        reader = BitReader(writer.to_bytes())
        assert [reader.read_bits(n) for _, n in fields] == [v for v, _ in fields]
        assert reader.remaining < 8

    @given(bytes_strategy, bit_counts)
    def test_successful_read_advances_exactly(self, data, n):
        reader = BitReader(data)
        value = reader.read_bits(n)
        if value is None:
            assert reader.position == 0
        else:
            assert reader.position == n
            assert 0 <= value < 2**n


# =============================================================================
# Elias-gamma
# =============================================================================

class TestEliasGammaProperties:

    @given(gamma_values)
    @settings(max_examples=500)
    def test_round_trip(self, value):
        writer = encode_elias_gamma(value)
        reader = BitReader(writer.to_bytes())
        assert read_elias_gamma(reader) == value
        assert reader.position == writer.bit_length

    @given(st.lists(gamma_values, min_size=1, max_size=50))
    def test_sequence_round_trip(self, values):
        writer = BitWriter()
        for v in values:
            encode_elias_gamma(v, writer)
        reader = BitReader(writer.to_bytes())
        assert [read_elias_gamma(reader) for _ in values] == values

    @given(bytes_strategy)
    def test_failure_restores_cursor(self, data):
        reader = BitReader(data)
        if read_elias_gamma(reader) is None:
            assert reader.position == 0


# =============================================================================
# Decoder safety
# =============================================================================

class TestDecoderSafety:
    """NcsDecoder must report bad input, never raise."""

    @given(bytes_strategy)
    @settings(max_examples=1000, suppress_health_check=[HealthCheck.too_slow])
    def test_never_raises_on_random_bytes(self, data):
        result = NcsDecoder().decode(data)
        if not result.success:
            assert result.errors

    @given(st.integers(min_value=0, max_value=len(INVENTORY)))
    def test_never_raises_on_truncation(self, cut):
        NcsDecoder().decode(INVENTORY[:cut])

    @given(st.lists(st.tuples(st.integers(min_value=0, max_value=len(INVENTORY) - 1),
                              st.integers(min_value=0, max_value=7)),
                    min_size=1, max_size=8))
    @settings(max_examples=500, suppress_health_check=[HealthCheck.too_slow])
    def test_never_raises_on_bitflips(self, flips):
        data = bytearray(INVENTORY)
        for pos, bit in flips:
            data[pos] ^= 1 << bit
        result = NcsDecoder().decode(bytes(data))
        assert result.success or result.errors

    @given(st.binary(min_size=4, max_size=64))
    def test_never_raises_on_appended_garbage(self, tail):
        NcsDecoder().decode(INVENTORY + tail)

    @given(st.binary(max_size=256), st.integers(min_value=1, max_value=300))
    @settings(max_examples=300)
    def test_document_bounded(self, data, n_strings):
        """Records are capped by max_records whatever the stream holds."""
        strings = StringTable(['none'] + [f's{i}' for i in range(1, n_strings)])
        limits = DecodeLimits(max_records=5)
        doc = parse_document(data, strings, 0, deps=['s1'], limits=limits)
        if doc is not None:
            assert len(doc.records) <= 5


# =============================================================================
# Index widths
# =============================================================================

class TestBitWidthProperties:

    @given(st.integers(min_value=2, max_value=2**24))
    def test_width_covers_largest_index(self, count):
        width = bit_width(count)
        assert count - 1 < 2**width
        assert count - 1 >= 2**(width - 1)
