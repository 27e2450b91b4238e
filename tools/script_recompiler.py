#!/usr/bin/env python3
"""
Redguard Script Recompiler
============================
Compile an edited map script (from script_decompiler.py) back into a
MAPS/*.RGM file.

This is the inverse of script_decompiler.py. The script is compiled header
by header; label operands are patched once each header is complete, then
RAHD (script length/offset/PC, string and variable offsets), RAST, RASB,
RAVA, RASC and RAAT are rebuilt. All other records of the original map are
copied unchanged.

The script must contain the same headers, in the same order, as the map.

Usage:
  python3 script_recompiler.py ISLAND.RGM ISLAND.txt --game-dir REDGUARD/ -o NEW/ISLAND.RGM
  python3 script_recompiler.py ISLAND.RGM --game-dir REDGUARD/ --test   # Roundtrip test
"""

import argparse
import logging
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
from rglib.decompiler import decompile
from rglib.errors import RedguardError
from rglib.recompiler import compile_map, recompile
from rglib.rgm import load_rgm, save_rgm
from rglib.symbols import SymbolDatabase


# =============================================================================
# ROUNDTRIP TEST
# =============================================================================

def roundtrip_test(container, symbols) -> int:
    """
    Decompile every header, recompile it, compare the script bytes.
    """
    passed = 0
    failed = 0

    for i, header in enumerate(container.headers):
        try:
            text = decompile(header, symbols)
            compiled = recompile(text, symbols, [header.variables])[0]
        except RedguardError as e:
            failed += 1
            if failed <= 10:
                print(f"  ERROR header [{i}] {header.name}: {e}")
            continue

        if compiled.script == header.script and compiled.script_pc == header.script_pc:
            passed += 1
            continue

        failed += 1
        if failed <= 10:
            print(f"  MISMATCH header [{i}] {header.name}:")
            first = next((j for j, (a, b) in enumerate(zip(header.script, compiled.script))
                          if a != b), min(len(header.script), len(compiled.script)))
            print(f"    Length:   {len(header.script)} vs {len(compiled.script)}")
            print(f"    PC:       {header.script_pc} vs {compiled.script_pc}")
            print(f"    First difference at 0x{first:X}")
            orig_hex = ' '.join(f'{b:02X}' for b in header.script[first:first + 16])
            recomp_hex = ' '.join(f'{b:02X}' for b in compiled.script[first:first + 16])
            print(f"    Original: {orig_hex}")
            print(f"    Recomp:   {recomp_hex}")

    total = passed + failed
    print(f"\n=== Roundtrip Results ===")
    print(f"  Passed:  {passed}/{total}")
    print(f"  Failed:  {failed}/{total}")
    if total > 0:
        print(f"  Rate:    {100 * passed / total:.1f}%")
    return 0 if failed == 0 else 1


# =============================================================================
# MAIN
# =============================================================================

def main():
    p = argparse.ArgumentParser(
        description='Redguard Script Recompiler',
        formatter_class=argparse.RawDescriptionHelpFormatter)
    p.add_argument('rgmfile', help='Original MAPS/*.RGM file')
    p.add_argument('script', nargs='?', default=None, help='Edited script text file')
    p.add_argument('--game-dir', required=True, metavar='DIR',
                   help='Redguard directory holding soup386/SOUP386.DEF, WORLD.INI, ...')
    p.add_argument('-o', '--output', metavar='PATH', help='Output RGM path')
    p.add_argument('--test', action='store_true',
                   help='Roundtrip test: decompile and recompile every header')
    p.add_argument('-v', '--verbose', action='store_true', help='Debug logging')
    args = p.parse_args()

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING,
                        format='%(levelname)s %(name)s: %(message)s')

    if not args.test and not (args.script and args.output):
        p.print_help()
        return 1

    try:
        symbols = SymbolDatabase.from_game_dir(args.game_dir)
        container = load_rgm(args.rgmfile)
        print(f"  Loaded: {args.rgmfile} ({len(container.headers)} headers)")

        if args.test:
            return roundtrip_test(container, symbols)

        with open(args.script, encoding='latin-1') as f:
            text = f.read()
        rebuilt = compile_map(container, text, symbols)
        save_rgm(args.output, rebuilt)
    except (OSError, RedguardError) as e:
        print(f"  ERROR: {e}")
        return 1

    total = sum(len(h.script) for h in rebuilt.headers)
    print(f"  Compiled: {len(rebuilt.headers)} headers, {total:,} script bytes")
    print(f"  Saved: {args.output}")
    return 0


if __name__ == '__main__':
    sys.exit(main() or 0)
