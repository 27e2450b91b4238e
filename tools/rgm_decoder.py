#!/usr/bin/env python3
"""
Redguard RGM Map Container Decoder
====================================
List the tagged records and script headers of a MAPS/*.RGM file, and check
that the container writes back byte-identical.

RGM format:
  Records: tag(4 ASCII) | length(4, BE) | payload
  Terminator: "END " (no length)

  RAHD  u32 LE header count, 4 opaque bytes, 165-byte header sub-records
  RAST  NUL-terminated string pool          RASB  u32 LE offsets into RAST
  RAVA  i32 LE local variable pool          RASC  script bytecode
  RAAT  256 attribute bytes per header      (all other tags are opaque)

Usage:
  python3 rgm_decoder.py ISLAND.RGM              # Records + headers
  python3 rgm_decoder.py ISLAND.RGM --records    # Record table only
  python3 rgm_decoder.py ISLAND.RGM --headers    # Header table only
  python3 rgm_decoder.py ISLAND.RGM --verify     # Decode/encode identity check
"""

import argparse
import logging
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
from rglib.errors import RedguardError
from rglib.rgm import decode_rgm, encode_rgm, tag_name


# =============================================================================
# LISTINGS
# =============================================================================

def list_records(container):
    """Print the record table in file order."""
    print(f"{'#':>4}  {'Tag':<6} {'Length':>10}")
    print('-' * 24)
    total = 0
    for i, (tag, payload) in enumerate(container.records):
        print(f"{i:>4}  {tag_name(tag):<6} {len(payload):>10,}")
        total += len(payload)
    print('-' * 24)
    print(f"Total: {len(container.records)} records, {total:,} payload bytes")
    if container.trailer:
        print(f"  Trailer after END: {len(container.trailer)} bytes")


def list_headers(container):
    """Print one line per script header."""
    print(f"{'#':>4}  {'Name':<10} {'Inst':>4} {'Script':>7} {'Offset':>8} {'PC':>6} "
          f"{'Str':>4} {'Vars':>4} {'Attrs':>5}")
    print('-' * 62)
    for i, h in enumerate(container.headers):
        attrs = len(h.attribute_values())
        print(f"{i:>4}  {h.name:<10} {h.instances:>4} {h.script_length:>7,} "
              f"0x{h.script_offset:06X} 0x{h.script_pc:04X} "
              f"{len(h.strings):>4} {len(h.variables):>4} {attrs:>5}")
    print('-' * 62)
    total = sum(h.script_length for h in container.headers)
    print(f"Total: {len(container.headers)} headers, {total:,} script bytes "
          f"(base offset 0x{container.script_base:X})")


def verify_identity(data: bytes, container) -> int:
    """Check decode -> encode gives back the original bytes."""
    rebuilt = encode_rgm(container)
    if rebuilt == data:
        print(f"  VERIFY OK: {len(data):,} bytes, byte-identical")
        return 0
    first = next((i for i, (a, b) in enumerate(zip(data, rebuilt)) if a != b),
                 min(len(data), len(rebuilt)))
    print(f"  VERIFY FAILED: {len(data):,} vs {len(rebuilt):,} bytes, "
          f"first difference at 0x{first:X}")
    return 1


# =============================================================================
# MAIN
# =============================================================================

def main():
    parser = argparse.ArgumentParser(
        description='Redguard RGM Map Container Decoder',
        formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument('rgmfile', help='Path to a MAPS/*.RGM file')
    parser.add_argument('--records', action='store_true', help='Show the record table')
    parser.add_argument('--headers', action='store_true', help='Show the header table')
    parser.add_argument('--verify', action='store_true',
                        help='Check that decode/encode is byte-identical')
    parser.add_argument('-v', '--verbose', action='store_true', help='Debug logging')
    args = parser.parse_args()

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING,
                        format='%(levelname)s %(name)s: %(message)s')

    if not os.path.exists(args.rgmfile):
        print(f"File not found: {args.rgmfile}", file=sys.stderr)
        return 1

    with open(args.rgmfile, 'rb') as f:
        data = f.read()

    try:
        container = decode_rgm(data)
    except RedguardError as e:
        print(f"  ERROR: {e}")
        return 1

    print(f"  Loaded: {len(data):,} bytes, {len(container.records)} records, "
          f"{len(container.headers)} headers\n")

    if args.verify:
        return verify_identity(data, container)

    show_all = not (args.records or args.headers)
    if args.records or show_all:
        list_records(container)
    if show_all:
        print()
    if args.headers or show_all:
        list_headers(container)
    return 0


if __name__ == '__main__':
    sys.exit(main() or 0)
