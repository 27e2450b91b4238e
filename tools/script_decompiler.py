#!/usr/bin/env python3
"""
Redguard Script Decompiler
============================
Decompile the script bytecode of a MAPS/*.RGM file into editable text.

Each script header becomes a block like:

    GUARD01 (Execution starts at #2A)
    {
      if GuardAlerted = 0
      {
        RTX("gd01") // Dlg gd01 = Halt! Who goes there?
      }

      #2A:
      Goto #2A
    }

preceded by its editable local variables (varN = value) and non-zero
attributes (Name = value). Names come from the game's symbol files:
soup386/SOUP386.DEF (functions, flags, references, attributes), WORLD.INI
(maps), ITEM.INI + ENGLISH.RTX (items, dialogue subtitles).

Usage:
  python3 script_decompiler.py ISLAND.RGM --game-dir REDGUARD/              # Whole map
  python3 script_decompiler.py ISLAND.RGM --game-dir REDGUARD/ -o ISLAND.txt
  python3 script_decompiler.py ISLAND.RGM --game-dir REDGUARD/ --header GUARD01
  python3 script_decompiler.py ISLAND.RGM --game-dir REDGUARD/ --lenient    # Skip unknown opcodes
"""

import argparse
import logging
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
from rglib.decompiler import decompile, decompile_map
from rglib.errors import RedguardError
from rglib.rgm import load_rgm
from rglib.symbols import SymbolDatabase


def map_name_from_path(path: str) -> str:
    return os.path.splitext(os.path.basename(path))[0].upper()


# =============================================================================
# MAIN
# =============================================================================

def main():
    parser = argparse.ArgumentParser(
        description='Redguard Script Decompiler',
        formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument('rgmfile', help='Path to a MAPS/*.RGM file')
    parser.add_argument('--game-dir', required=True, metavar='DIR',
                        help='Redguard directory holding soup386/SOUP386.DEF, WORLD.INI, ...')
    parser.add_argument('--header', metavar='NAME', help='Decompile a single header')
    parser.add_argument('--lenient', action='store_true',
                        help='Skip unknown opcodes with a warning instead of failing')
    parser.add_argument('-o', '--output', metavar='PATH', help='Write the script to a file')
    parser.add_argument('-v', '--verbose', action='store_true', help='Debug logging')
    args = parser.parse_args()

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING,
                        format='%(levelname)s %(name)s: %(message)s')

    try:
        symbols = SymbolDatabase.from_game_dir(args.game_dir)
        container = load_rgm(args.rgmfile)
        if args.header:
            text = decompile(container.header(args.header), symbols, args.lenient)
        else:
            text = decompile_map(container, symbols, map_name_from_path(args.rgmfile),
                                 lenient=args.lenient)
    except KeyError as e:
        print(f"  ERROR: no header named {e}")
        return 1
    except (OSError, RedguardError) as e:
        print(f"  ERROR: {e}")
        return 1

    if args.output:
        with open(args.output, 'w', encoding='latin-1', newline='\n') as f:
            f.write(text + "\n")
        print(f"  Saved: {args.output} ({len(container.headers)} headers, "
              f"{text.count(chr(10)) + 1:,} lines)")
    else:
        print(text)
    return 0


if __name__ == '__main__':
    sys.exit(main() or 0)
