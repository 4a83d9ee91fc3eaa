"""
pytest configuration and fixtures for NCS decoder tests.

Provides reusable fixtures for:
- Synthetic NCS files built with NcsFileBuilder
- Hypothesis property-based testing configuration
"""

import os
import sys
from pathlib import Path

import pytest

# Add tools to path
sys.path.insert(0, str(Path(__file__).parent.parent / "tools"))

from hypothesis import settings  # noqa: E402

from ncs_builder import NcsFileBuilder  # noqa: E402

# HYPOTHESIS_PROFILE=ci for the longer run
settings.register_profile("default", max_examples=100, deadline=None)
settings.register_profile("ci", max_examples=1000, deadline=None)
settings.load_profile(os.environ.get("HYPOTHESIS_PROFILE", "default"))


INV_STRINGS = [
    'none', 'inv_comp', 'inv_barrel', 'Weapon_AR', 'Weapon_PS',
    'BOR_AR_Grip_01', 'JAK_PS_Barrel_02', 'serialindex', 'status', 'active',
    'index', '12', '5', '_category', 'grip', 'barrel', '_scope', 'Root',
    'Sub', 'alpha', 'beta', 'gamma', 'display',
]


def make_inventory_builder(**kwargs) -> NcsFileBuilder:
    """
    Two-record 'inv' file with two dependency tables.

    Record 0: Pair + List tags, Weapon_AR, serialindex 12 (Root/grip)
    Record 1: U32 tag, Weapon_PS, serialindex 5 (no _scope, barrel)
    """
    options = dict(
        deps=['inv_comp', 'inv_barrel'],
        categories=['Weapons', 'Shields'],
        field_abbrev='wpn',
    )
    options.update(kwargs)
    builder = NcsFileBuilder('inv', INV_STRINGS, **options)
    builder.set_remap_a([42, 1000], width=10)
    builder.set_remap_b([3, 9], width=4)

    rec = builder.new_record()
    rec.pair(1).string_list(['alpha', 'beta']).end_tags()
    rec.present('Weapon_AR').ref('display', 'alpha').end_entries()
    rec.dep_entry('BOR_AR_Grip_01', fields={
        'serialindex': {'status': 'active', 'index': '12',
                        '_category': 'grip', '_scope': 'Root'},
    })
    rec.dep_entry('alpha')
    rec.end_dep_table()
    rec.dep_entry('beta', ref='gamma')
    rec.end_dep_table()
    builder.add_record(rec)

    rec = builder.new_record()
    rec.u32(7).end_tags()
    rec.present('Weapon_PS').end_entries()
    rec.dep_entry('JAK_PS_Barrel_02', fields={
        'serialindex': {'index': '5', '_category': 'barrel'},
        'display': 'gamma',
    })
    rec.end_dep_table()
    rec.end_dep_table()
    builder.add_record(rec)

    return builder


@pytest.fixture
def inventory_builder():
    return make_inventory_builder()


@pytest.fixture
def inventory_bytes():
    return make_inventory_builder().build()


@pytest.fixture
def inventory_file(tmp_path, inventory_bytes):
    path = tmp_path / "inv.bin"
    path.write_bytes(inventory_bytes)
    return path
