"""
Tests for the NCS record grammar (tags, entries, dependency entries).
"""

import math
import pytest
import sys
from pathlib import Path

# Add tools to path
sys.path.insert(0, str(Path(__file__).parent.parent / 'tools'))

from bit_reader import BitReader, BitWriter
from ncs_builder import RecordWriter
from ncs_grammar import RecordGrammar, u32_to_f32
from ncs_strings import StringTable, create_combined_string_table
from ncs_types import (
    DecodeLimits, DepEntry, EntryKind, EntryValue, FixedWidthArray,
    GrammarError, IndexOutOfRange, ListTag, PairTag, Record, StreamExhausted,
    U32F32Tag, U32Tag, VariantTag,
)


TEN = StringTable(['none'] + [f's{i}' for i in range(1, 10)])

DEP_STRINGS = StringTable([
    'none', 't0', 't1', 'part', 'serialindex', 'status', 'active', 'index',
    '7', '_category', 'grip', '_scope', 'Root', 'display', 'x', 'y',
])


def _reader(writer: RecordWriter) -> BitReader:
    return BitReader(writer.bits.to_bytes())


class TestTags:

    def test_pair_tag(self):
        grammar = RecordGrammar(StringTable(['none']), FixedWidthArray(1, 8, [42]))
        reader = BitReader(b'\x61\x00\x7a')
        assert grammar.parse_tags(reader) == [PairTag(42)]
        assert reader.position == 24

    def test_pair_index_outside_remap(self):
        grammar = RecordGrammar(StringTable(['none']), FixedWidthArray(1, 8, [42]))
        with pytest.raises(IndexOutOfRange):
            grammar.parse_tags(BitReader(b'\x61\x05\x7a'))

    def test_pair_with_empty_remap(self):
        grammar = RecordGrammar(StringTable(['none']))
        with pytest.raises(IndexOutOfRange):
            grammar.parse_tags(BitReader(b'\x61\x00\x7a'))

    def test_u32_tag(self):
        grammar = RecordGrammar(StringTable(['none']))
        reader = BitReader(b'\x62\xde\xad\xbe\xef\x7a')
        assert grammar.parse_tags(reader) == [U32Tag(0xDEADBEEF)]

    def test_u32f32_tag(self):
        rec = RecordWriter(StringTable(['none'])).u32f32(1.5).end_tags()
        tags = RecordGrammar(StringTable(['none'])).parse_tags(_reader(rec))
        assert tags == [U32F32Tag(0x3FC00000, 1.5)]

    def test_u32f32_nan(self):
        tag = U32F32Tag(0x7FC00000, u32_to_f32(0x7FC00000))
        assert math.isnan(tag.f32_val)
        assert tag.to_dict()['f32_val'] is None

    def test_variant_tag(self):
        rec = RecordWriter(StringTable(['none'])).variant(2).end_tags()
        tags = RecordGrammar(StringTable(['none'])).parse_tags(_reader(rec))
        assert tags == [VariantTag(2)]

    def test_several_tags_in_order(self):
        rec = RecordWriter(TEN, 4).pair(0).u32(7).string_list(['s3']).variant(1).end_tags()
        grammar = RecordGrammar(TEN, FixedWidthArray(1, 4, [9]))
        tags = grammar.parse_tags(_reader(rec))
        assert tags == [PairTag(9), U32Tag(7), ListTag(['s3']), VariantTag(1)]

    def test_unknown_tags_skipped_and_kept(self):
        rec = RecordWriter(StringTable(['none'])).raw_tag(0x41).u32(5).raw_tag(0x00).end_tags()
        messages = []
        grammar = RecordGrammar(StringTable(['none']), trace=messages.append)
        record = Record()
        assert grammar.parse_tags(_reader(rec), record) == [U32Tag(5)]
        assert record.unknown_tags == [0x41, 0x00]
        assert any("0x41" in m for m in messages)

    def test_unterminated_tags(self):
        grammar = RecordGrammar(StringTable(['none']))
        with pytest.raises(StreamExhausted):
            grammar.parse_tags(BitReader(b'\x41\x41'))


class TestStringList:

    def test_list_with_terminator(self):
        # [2, 5, 0] in 4 bits each
        grammar = RecordGrammar(TEN)
        reader = BitReader(b'\x25\x00')
        assert grammar.parse_list(reader) == ['s2', 's5']
        assert reader.position == 12

    def test_empty_string_terminates(self):
        grammar = RecordGrammar(StringTable(['none', 'a', '']))
        assert grammar.parse_list(BitReader(b'\x60')) == ['a']

    def test_case_insensitive_terminator(self):
        grammar = RecordGrammar(StringTable(['None', 'a']))
        assert grammar.parse_list(BitReader(b'\x80')) == ['a']

    def test_item_ceiling(self):
        grammar = RecordGrammar(TEN, limits=DecodeLimits(max_list_items=3))
        # 1, 2, 3, 4, 5 with no terminator
        reader = BitReader(b'\x12\x34\x50')
        assert grammar.parse_list(reader) == ['s1', 's2', 's3']
        assert reader.position == 12

    def test_index_outside_table(self):
        grammar = RecordGrammar(StringTable(['none', 'a', 'b', 'c', 'd']))
        with pytest.raises(IndexOutOfRange):
            grammar.parse_list(BitReader(b'\xe0'))

    def test_list_uses_primary_width(self):
        """Lists index the primary table; entries index the combined table."""
        combined = create_combined_string_table(StringTable(['none', 'a', 'b', 'c']), ['cat'])
        grammar = RecordGrammar(combined)
        assert grammar.list_bits == 2
        assert grammar.string_bits == 3
        # list 01 10 00, entry 01 100, end 00
        reader = BitReader(b'\x61\x80')
        assert grammar.parse_list(reader) == ['a', 'b']
        assert grammar.parse_entries(reader) == {'cat': EntryValue.present()}
        assert reader.position == 13


class TestEntries:

    TABLE = StringTable(['none', 'flag', 'name', 'target'])

    def test_present_and_ref(self):
        # 01 01 | 11 10 11 | 00
        grammar = RecordGrammar(self.TABLE)
        entries = grammar.parse_entries(BitReader(b'\x5e\xc0'))
        assert entries == {
            'flag': EntryValue.present(),
            'name': EntryValue.ref('target'),
        }
        assert entries['name'].kind == EntryKind.REF
        assert entries['name'].value == 'target'

    def test_type_two_is_present(self):
        rec = RecordWriter(self.TABLE).present('name', entry_type=2).end_entries()
        entries = RecordGrammar(self.TABLE).parse_entries(_reader(rec))
        assert entries['name'].is_present
        assert entries['name'].entry_type == 2

    def test_later_entry_replaces_earlier(self):
        rec = RecordWriter(self.TABLE).present('flag').ref('flag', 'name').end_entries()
        entries = RecordGrammar(self.TABLE).parse_entries(_reader(rec))
        assert entries == {'flag': EntryValue.ref('name')}

    def test_empty(self):
        assert RecordGrammar(self.TABLE).parse_entries(BitReader(b'\x00')) == {}

    def test_insertion_order(self):
        rec = RecordWriter(self.TABLE).present('target').present('flag').end_entries()
        entries = RecordGrammar(self.TABLE).parse_entries(_reader(rec))
        assert list(entries) == ['target', 'flag']

    def test_truncated(self):
        with pytest.raises(StreamExhausted):
            RecordGrammar(self.TABLE).parse_entries(BitReader(b'\x55'))

    def test_type_outside_domain(self):
        class FakeReader:
            def read(self, n):
                return 5

        with pytest.raises(GrammarError):
            RecordGrammar(self.TABLE).parse_entries(FakeReader())


class TestDependencyEntries:

    def _grammar(self, deps=('t0', 't1')):
        return RecordGrammar(DEP_STRINGS, deps=list(deps))

    def test_all_entry_kinds(self):
        rec = RecordWriter(DEP_STRINGS)
        rec.dep_entry('part', fields={
            'serialindex': {'status': 'active', 'index': '7',
                            '_category': 'grip', '_scope': 'Root'},
            'display': 'x',
        })
        rec.dep_entry('y').end_dep_table()
        rec.dep_entry('x', ref='y').end_dep_table()

        reader = _reader(rec)
        entries = self._grammar().parse_dep_entries(reader)
        assert entries == [
            DepEntry('t0', 0, 'part', {
                'serialindex': {'status': 'active', 'index': '7',
                                '_category': 'grip', '_scope': 'Root'},
                'display': 'x',
            }),
            DepEntry('t0', 0, 'y', {}),
            DepEntry('t1', 1, 'x', {'ref': 'y'}),
        ]
        assert reader.position == rec.bits.bit_length

    def test_terminator_name_ends_table(self):
        rec = RecordWriter(DEP_STRINGS)
        rec.dep_entry('none')
        rec.dep_entry('x').end_dep_table()
        entries = self._grammar().parse_dep_entries(_reader(rec))
        assert entries == [DepEntry('t1', 1, 'x', {})]

    def test_partial_serial_index(self):
        rec = RecordWriter(DEP_STRINGS)
        rec.dep_entry('part', fields={'serialindex': {'index': '7'}}).end_dep_table()
        reader = _reader(rec)
        entries = self._grammar(['t0']).parse_dep_entries(reader)
        assert entries[0].fields == {'serialindex': {'index': '7'}}
        assert reader.position == rec.bits.bit_length

    def test_empty_tables(self):
        rec = RecordWriter(DEP_STRINGS).end_dep_table().end_dep_table()
        assert self._grammar().parse_dep_entries(_reader(rec)) == []

    def test_no_deps_reads_nothing(self):
        reader = BitReader(b'\xff')
        assert self._grammar(()).parse_dep_entries(reader) == []
        assert reader.position == 0


class TestRecord:

    def test_full_record(self):
        rec = RecordWriter(DEP_STRINGS, 2)
        rec.pair(1).end_tags()
        rec.present('part').end_entries()
        rec.dep_entry('x').end_dep_table()
        bits = BitWriter().write(rec.byte_count, 32).extend(rec.bits)

        grammar = RecordGrammar(DEP_STRINGS, FixedWidthArray(2, 2, [1, 3]), ['t0'])
        record = grammar.parse_record(BitReader(bits.to_bytes()))
        assert record.byte_count == rec.byte_count
        assert record.tags == [PairTag(3)]
        assert record.entries == {'part': EntryValue.present()}
        assert record.dep_entries == [DepEntry('t0', 0, 'x', {})]
        assert record.unknown_tags == []

    def test_record_without_deps(self):
        rec = RecordWriter(DEP_STRINGS).end_tags().present('x').end_entries()
        bits = BitWriter().write(rec.byte_count, 32).extend(rec.bits)
        # trailing 1s would be misread as dependency entries
        bits.write(0xFF, 8)
        reader = BitReader(bits.to_bytes())
        record = RecordGrammar(DEP_STRINGS).parse_record(reader)
        assert record.dep_entries == []
        assert reader.position == 32 + rec.bits.bit_length
