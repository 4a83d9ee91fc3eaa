#!/usr/bin/env python3
"""
ncs_types.py - Data model, decode limits and errors for NCS decoding

Everything produced by a decode call lives here: the Document tree
(records, tags, entries, dependency entries), the derived SerialIndexEntry
rows, the DecodeLimits safety ceilings and the NcsDecodeError hierarchy.

Objects are built once per decode call and not mutated afterwards.
to_dict() gives the stable field names used by JSON/YAML/TSV output.
"""

import math
from dataclasses import dataclass, field, fields, asdict
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml


# =============================================================================
# Errors
# =============================================================================

class NcsDecodeError(ValueError):
    """Base class for all NCS decode failures."""


class StreamExhausted(NcsDecodeError):
    """A read needed more bits than remain in the stream."""


class SanityLimitExceeded(NcsDecodeError):
    """A count, width or index exceeded its ceiling (likely desync)."""


class IndexOutOfRange(NcsDecodeError):
    """A string table or remap index does not resolve."""


class GrammarError(NcsDecodeError):
    """A value outside an exhaustive code domain."""


class HeaderError(NcsDecodeError):
    """The fixed header is truncated or points outside the buffer."""


# =============================================================================
# Limits
# =============================================================================

@dataclass(frozen=True)
class DecodeLimits:
    """
    Heuristic ceilings bounding every decode loop.

    These are reverse-engineered safety valves, not format limits. A real
    document larger than a ceiling is silently truncated at it.
    """
    max_array_count: int = 100000   # fixed-width array element count
    max_dependencies: int = 1024    # Elias-gamma dependency list length/value
    max_list_items: int = 4095      # string list tag items
    max_records: int = 100          # records per document
    max_gamma_zeros: int = 32       # Elias-gamma leading zero run

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'DecodeLimits':
        """Build limits from a mapping, defaults for missing keys."""
        if not data:
            return cls()
        if not isinstance(data, dict):
            raise ValueError(f"Limits must be a mapping, got {type(data).__name__}")

        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(f"Unknown limit(s): {', '.join(unknown)}")

        for key, value in data.items():
            if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
                raise ValueError(f"Limit '{key}' must be a positive integer, got {value!r}")
        if data.get('max_gamma_zeros', 32) > 32:
            raise ValueError("Limit 'max_gamma_zeros' cannot exceed 32")

        return cls(**data)

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


def load_limits(path: Union[str, Path]) -> DecodeLimits:
    """Load DecodeLimits from a YAML file.

    The file may hold the limits at top level or under a 'limits' key.
    """
    with open(path) as f:
        data = yaml.safe_load(f)
    if isinstance(data, dict) and 'limits' in data:
        data = data['limits']
    return DecodeLimits.from_dict(data)


# =============================================================================
# Primitives
# =============================================================================

@dataclass
class FixedWidthArray:
    """Fixed-width integer array (24-bit count + 8-bit width header)."""
    count: int
    width: int
    values: List[int] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {'count': self.count, 'width': self.width, 'values': list(self.values)}


# =============================================================================
# Tags
# =============================================================================

@dataclass
class PairTag:
    """Tag 'a': small index translated through remap_a."""
    value: int

    def to_dict(self) -> Dict[str, Any]:
        return {'type': 'Pair', 'value': self.value}


@dataclass
class U32Tag:
    """Tag 'b': raw 32-bit value."""
    value: int

    def to_dict(self) -> Dict[str, Any]:
        return {'type': 'U32', 'value': self.value}


@dataclass
class U32F32Tag:
    """Tag 'c': 32-bit value together with its IEEE-754 reading."""
    u32_val: int
    f32_val: float

    def to_dict(self) -> Dict[str, Any]:
        # NaN/inf have no JSON form
        f32 = self.f32_val if math.isfinite(self.f32_val) else None
        return {'type': 'U32F32', 'u32_val': self.u32_val, 'f32_val': f32}


@dataclass
class ListTag:
    """Tags 'd', 'e', 'f': string list."""
    items: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {'type': 'List', 'items': list(self.items)}


@dataclass
class VariantTag:
    """Tag 'p': 2-bit variant subtype."""
    subtype: int

    def to_dict(self) -> Dict[str, Any]:
        return {'type': 'Variant', 'subtype': self.subtype}


Tag = Union[PairTag, U32Tag, U32F32Tag, ListTag, VariantTag]


# =============================================================================
# Entries
# =============================================================================

class EntryKind(Enum):
    PRESENT = 'present'
    STRING = 'string'
    REF = 'ref'


@dataclass
class EntryValue:
    """
    Value of a record entry.

    entry_type keeps the raw 2-bit code. Type 2 entries decode as PRESENT
    because their payload format is not known.
    """
    kind: EntryKind
    value: Optional[str] = None
    entry_type: int = 1

    @classmethod
    def present(cls, entry_type: int = 1) -> 'EntryValue':
        return cls(EntryKind.PRESENT, None, entry_type)

    @classmethod
    def ref(cls, name: str) -> 'EntryValue':
        return cls(EntryKind.REF, name, 3)

    @property
    def is_present(self) -> bool:
        return self.kind == EntryKind.PRESENT

    def to_dict(self) -> Dict[str, Any]:
        result = {'kind': self.kind.value, 'entry_type': self.entry_type}
        if self.value is not None:
            result['value'] = self.value
        return result


# serialindex is the only field whose value is a mapping
FieldValue = Union[str, Dict[str, str]]


@dataclass
class DepEntry:
    """Entry of one dependency table inside a record."""
    dep_table_name: str
    dep_table_id: int
    name: str
    fields: Dict[str, FieldValue] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'dep_table_name': self.dep_table_name,
            'dep_table_id': self.dep_table_id,
            'name': self.name,
            'fields': {k: (dict(v) if isinstance(v, dict) else v)
                       for k, v in self.fields.items()},
        }


@dataclass
class Record:
    """One parsed record."""
    tags: List[Tag] = field(default_factory=list)
    entries: Dict[str, EntryValue] = field(default_factory=dict)
    dep_entries: List[DepEntry] = field(default_factory=list)
    byte_count: int = 0
    unknown_tags: List[int] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'byte_count': self.byte_count,
            'tags': [t.to_dict() for t in self.tags],
            'unknown_tags': list(self.unknown_tags),
            'entries': {k: v.to_dict() for k, v in self.entries.items()},
            'dep_entries': [d.to_dict() for d in self.dep_entries],
        }


@dataclass
class Document:
    """
    Parsed binary section.

    remap_b has no known consumer; it is kept for offset correctness.
    stop_reason records why record parsing ended early (None if the
    stream simply ran out).
    """
    table_id: str
    deps: List[str]
    remap_a: FixedWidthArray
    remap_b: FixedWidthArray
    records: List[Record] = field(default_factory=list)
    stop_reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'table_id': self.table_id,
            'deps': list(self.deps),
            'remap_a': self.remap_a.to_dict(),
            'remap_b': self.remap_b.to_dict(),
            'records': [r.to_dict() for r in self.records],
            'stop_reason': self.stop_reason,
        }


@dataclass
class SerialIndexEntry:
    """Serial index assignment pulled from a dependency entry."""
    item_type: str
    part_name: str
    index: int
    scope: str
    category: str
    slot: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


SERIAL_INDEX_COLUMNS = ['item_type', 'part_name', 'index', 'scope', 'category', 'slot']
