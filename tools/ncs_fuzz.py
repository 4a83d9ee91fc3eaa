#!/usr/bin/env python3
"""
ncs_fuzz.py - Fuzz test the NCS decoder

Mutates a seed file (or a built-in synthetic sample) and checks that
NcsDecoder.decode() never raises: every bad input must come back as a
result with errors/warnings, never as an exception.

Usage:
    python tools/ncs_fuzz.py                      # 10 second fuzz of the sample
    python tools/ncs_fuzz.py inv4.bin -d 60       # 1 minute fuzz of a real file
    python tools/ncs_fuzz.py --seed 12345         # Reproducible
"""

import argparse
import random
import sys
import time
import traceback
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from ncs_builder import NcsFileBuilder
from ncs_document import NcsDecoder


@dataclass
class FuzzStats:
    """Statistics from a fuzz run."""
    total_inputs: int = 0
    decode_success: int = 0
    decode_error: int = 0
    crashes: int = 0
    located_by_scan: int = 0     # header binary offset unusable
    partial_records: int = 0     # record parsing stopped early
    serial_indices: int = 0
    errors_by_kind: Dict[str, int] = field(default_factory=dict)
    duration_sec: float = 0.0
    seed: int = 0
    crash_inputs: List[bytes] = field(default_factory=list)

    @property
    def inputs_per_sec(self) -> float:
        if self.duration_sec > 0:
            return self.total_inputs / self.duration_sec
        return 0.0


def build_sample() -> bytes:
    """Small but complete file touching every construct."""
    builder = NcsFileBuilder(
        'inv',
        strings=['none', 'inv_comp', 'Weapon_AR', 'BOR_AR_Grip_01', 'serialindex',
                 'status', 'active', 'index', '7', '_category', 'grip',
                 '_scope', 'Root', 'alpha', 'beta'],
        deps=['inv_comp'],
        categories=['Weapons'],
        field_abbrev='ab',
    )
    builder.set_remap_a([42, 1000], width=10)
    builder.set_remap_b([3], width=4)

    rec = builder.new_record()
    rec.pair(1).u32(0xDEADBEEF).u32f32(1.5).string_list(['alpha', 'beta']).variant(2)
    rec.end_tags()
    rec.present('Weapon_AR').ref('alpha', 'beta').end_entries()
    rec.dep_entry('BOR_AR_Grip_01', fields={
        'serialindex': {'status': 'active', 'index': '7',
                        '_category': 'grip', '_scope': 'Root'},
    })
    rec.end_dep_table()
    builder.add_record(rec)
    return builder.build()


class NcsFuzzer:
    """Mutation fuzzer for NcsDecoder."""

    def __init__(self, sample: bytes, seed: Optional[int] = None):
        self.sample = sample
        self.decoder = NcsDecoder()
        self.seed = seed if seed is not None else random.randint(0, 2**32)
        self.rng = random.Random(self.seed)
        self.stats = FuzzStats(seed=self.seed)

    def generate_random_bytes(self, min_len: int = 0, max_len: int = 512) -> bytes:
        length = self.rng.randint(min_len, max_len)
        return bytes(self.rng.randint(0, 255) for _ in range(length))

    def generate_truncated(self) -> bytes:
        return self.sample[:self.rng.randint(0, len(self.sample))]

    def generate_bitflip(self) -> bytes:
        data = bytearray(self.sample)
        for _ in range(self.rng.randint(1, 8)):
            pos = self.rng.randrange(len(data))
            data[pos] ^= 1 << self.rng.randint(0, 7)
        return bytes(data)

    def generate_header_smash(self) -> bytes:
        """Overwrite one header word with a random value."""
        data = bytearray(self.sample)
        word = self.rng.randrange(9) * 4
        data[word:word + 4] = self.rng.getrandbits(32).to_bytes(4, 'little')
        return bytes(data)

    def generate_extended(self) -> bytes:
        return self.sample + self.generate_random_bytes(1, 64)

    def fuzz_one(self, data: bytes) -> bool:
        """Returns False if the decoder raised."""
        self.stats.total_inputs += 1
        try:
            result = self.decoder.decode(data)
        except Exception:
            self.stats.crashes += 1
            self.stats.crash_inputs.append(data)
            traceback.print_exc(file=sys.stderr)
            return False
        if result.success:
            self.stats.decode_success += 1
        else:
            self.stats.decode_error += 1
            # "Header: ..." -> "Header"
            kind = result.errors[0].split(':', 1)[0].split(' at ', 1)[0]
            self.stats.errors_by_kind[kind] = self.stats.errors_by_kind.get(kind, 0) + 1

        for warning in result.warnings:
            if warning.startswith('Binary section located'):
                self.stats.located_by_scan += 1
            elif warning.startswith('Records:'):
                self.stats.partial_records += 1
        self.stats.serial_indices += len(result.serial_indices)
        return True

    def run(self, duration_sec: float = 10.0, max_inputs: Optional[int] = None) -> FuzzStats:
        generators = [
            self.generate_random_bytes,
            self.generate_truncated,
            self.generate_bitflip,
            self.generate_header_smash,
            self.generate_extended,
        ]

        start_time = time.time()
        end_time = start_time + duration_sec
        while time.time() < end_time:
            if max_inputs is not None and self.stats.total_inputs >= max_inputs:
                break
            self.fuzz_one(self.rng.choice(generators)())

        self.stats.duration_sec = time.time() - start_time
        return self.stats


def format_stats(stats: FuzzStats) -> str:
    lines = [
        f"seed {stats.seed}: {stats.total_inputs} inputs in {stats.duration_sec:.1f}s "
        f"({stats.inputs_per_sec:.0f}/s)",
        f"  decoded:          {stats.decode_success}",
        f"  rejected:         {stats.decode_error}",
    ]
    for kind, n in sorted(stats.errors_by_kind.items(), key=lambda kv: -kv[1]):
        lines.append(f"    {kind}: {n}")
    lines += [
        f"  located by scan:  {stats.located_by_scan}",
        f"  partial records:  {stats.partial_records}",
        f"  serial indices:   {stats.serial_indices}",
        f"  crashes:          {stats.crashes}",
    ]
    for payload in stats.crash_inputs[:5]:
        lines.append(f"    {payload[:64].hex()}")
    return '\n'.join(lines)


def print_stats(stats: FuzzStats):
    print(format_stats(stats))
    print("FAILED: decoder raised" if stats.crashes else "OK: no exceptions")


def main():
    parser = argparse.ArgumentParser(description='Fuzz test the NCS decoder')
    parser.add_argument('sample', nargs='?', help='Seed NCS file (default: built-in sample)')
    parser.add_argument('-d', '--duration', type=float, default=10.0,
                        help='Fuzz duration in seconds (default: 10)')
    parser.add_argument('-s', '--seed', type=int,
                        help='Random seed for reproducibility')
    args = parser.parse_args()

    sample = Path(args.sample).read_bytes() if args.sample else build_sample()
    print(f"Fuzzing decoder: {args.sample or 'built-in sample'} ({len(sample)} bytes)")

    stats = NcsFuzzer(sample, seed=args.seed).run(args.duration)
    print_stats(stats)
    sys.exit(1 if stats.crashes else 0)


if __name__ == '__main__':
    main()
