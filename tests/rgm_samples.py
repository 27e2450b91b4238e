"""Synthetic symbol files and RGM maps shared by the tests."""

import os
import struct
from pathlib import Path
import sys

sys.path.insert(0, str(Path(__file__).parent.parent))

from rglib.header import MapHeader
from rglib.symbols import (
    SymbolDatabase, item_names, parse_item_ini, parse_rtx, parse_soup_def, parse_world_ini,
)


# =============================================================================
# SYMBOL FILES
# =============================================================================

SOUP_DEF = """\
; Redguard script definitions
[functions]
task Wait params 1
function RTX params 1
multitask WalkTo params 2
function TestGlobalFlag params 1
function AddItem params 1
function LoadWorld params 2
function ActiveItem params 0
task Move params 1

[refs]
health
x
[equates]
SOMETHING = 5
auto
Gravity
Speed
MaxSpeed = 4
Health
endauto
[flags]
; type name value
int GuardAlerted 0;Guard saw the player
int DoorOpen 0
"""

WORLD_INI = """\
[world]
world_map[1]=MAPS\\ISLAND.RGM
world_map[2]=MAPS\\ISLAND.RGM
world_map[5]=maps\\catacomb.rgm
"""

ITEM_INI = """\
[items]
name = gold
description = gdsc
name = swrd
description = sdsc
name = gol2
description = gdsc
"""


def make_rtx(entries) -> bytes:
    """entries: (label, subtitle, audio bytes or None)."""
    out = bytearray()
    for label, subtitle, audio in entries:
        sub = subtitle.encode('latin-1')
        body = struct.pack('>h', 1 if audio is not None else 0) + struct.pack('<i', len(sub)) + sub
        if audio is not None:
            body += struct.pack('<iiii', 1, 1, 22050, 100) + struct.pack('<h', 0)
            body += struct.pack('<ii', -1, len(audio)) + b'\x00' + audio
        out += label.encode('latin-1') + struct.pack('>i', len(body)) + body
    out += b'END '
    return bytes(out)


ENGLISH_RTX = make_rtx([
    ("gd01", "Halt!", None),
    ("gold", "GOLD", b'\x01\x02\x03'),
    ("swrd", "SWORD", None),
    ("gol2", "GOLD", None),
])


def write_game_dir(game_dir):
    """Lay out the symbol files the way a Redguard install has them."""
    os.mkdir(os.path.join(game_dir, "soup386"))
    with open(os.path.join(game_dir, "soup386", "SOUP386.DEF"), 'w', encoding='latin-1') as f:
        f.write(SOUP_DEF)
    with open(os.path.join(game_dir, "WORLD.INI"), 'w', encoding='latin-1') as f:
        f.write(WORLD_INI)
    with open(os.path.join(game_dir, "ITEM.INI"), 'w', encoding='latin-1') as f:
        f.write(ITEM_INI)
    with open(os.path.join(game_dir, "ENGLISH.RTX"), 'wb') as f:
        f.write(ENGLISH_RTX)


def sample_symbols() -> SymbolDatabase:
    soup = parse_soup_def(SOUP_DEF)
    subtitles = parse_rtx(ENGLISH_RTX)
    return SymbolDatabase(
        soup['functions'], soup['flags'], soup['references'], soup['attributes'],
        item_names(parse_item_ini(ITEM_INI), subtitles),
        parse_world_ini(WORLD_INI), subtitles)


# =============================================================================
# HEADERS
# =============================================================================

def header_record(name, instances=1, string_count=0, string_index=0, script_length=0,
                  script_offset=0, script_pc=0, variable_count=0, variable_offset=0) -> bytes:
    data = bytearray(165)
    data[4:13] = name.encode('latin-1').ljust(9, b'\x00')
    struct.pack_into('<H', data, 13, instances)
    struct.pack_into('<I', data, 65, string_count)
    struct.pack_into('<I', data, 73, string_index)
    struct.pack_into('<I', data, 77, script_length)
    struct.pack_into('<I', data, 81, script_offset)
    struct.pack_into('<I', data, 85, script_pc)
    struct.pack_into('<I', data, 117, variable_count)
    struct.pack_into('<I', data, 125, variable_offset)
    data[20] = 0x5A     # opaque byte, must survive rebuilds
    return bytes(data)


def make_header(script, name="TEST", script_pc=0, strings=(), variables=()) -> MapHeader:
    """A standalone MapHeader with its slices filled in."""
    header = MapHeader(header_record(name, script_length=len(script), script_pc=script_pc,
                                     string_count=len(strings), variable_count=len(variables)))
    header.script = bytes(script)
    header.strings = list(strings)
    header.variables = list(variables)
    return header


def attribute_block(values) -> bytes:
    block = bytearray(256)
    for index, value in values.items():
        block[index] = value & 0xFF
    return bytes(block)


# =============================================================================
# SAMPLE MAP
# =============================================================================

GUARD_SCRIPT = bytes.fromhex(
    "02 02 00 01 07 67 64 30 31"            # 0   RTX("gd01")
    "06 00 00 07 01 00 00 00 00"            # 9   GuardAlerted = 1
    "03 0A 02 00 00 07 03 00 00 00 00"      # 18  if var2 = 3
    "22 00 00 00"                           #     block ends at 34
    "12"                                    # 33    Return
    "00 01 00 01 07 05 00 00 00"            # 34  #22: Wait(5)
    "04 22 00 00 00"                        # 43  Goto #22
)

GUARD_TEXT = """\
GUARD01 (Execution starts at #22)
{
  RTX("gd01") // Dlg gd01 = Halt!
  GuardAlerted = 1 // Guard saw the player
  if var2 = 3
  {
    Return
  }

  #22:
  Wait(5)
  Goto #22
}"""

DOOR_SCRIPT = bytes.fromhex(
    "14 00 00 00 00 07 0A 00 00 00 00"      # 0   Me.health = 10
    "0F 04 00 01 00"                        # 11  door_a.x++
    "01 03 00 02 0A 02 00 00 00 06 01 00 00 00"   # 16  @WalkTo(var2, DoorOpen)
    "19 0A 02 00 08 00 01 07 01 00 00 00"   # 30  77.Move(1)
    "02 05 00 01 07 01 00 00 00"            # 42  AddItem(<SWORD>)
    "02 04 00 01 16 03 00 00 00"            # 51  TestGlobalFlag(3)
    "03 02 07 00 00 00 07 01 00 00 00 02"   # 60  if ActiveItem() = <SWORD> or
    "0A 03 0A 00 00 07 02 00 00 00 00"      #     var3++ = 2
    "5E 00 00 00"                           #     block ends at 94
    "17 02"                                 # 87    <Anchor>=2
    "11 73 00 00 00"                        # 89    Gosub #73
    "1E 01"                                 # 94  if <ScriptRv> = 1
    "05 00 00 00 00"                        # 96    End
    "02 06 00 02 07 05 00 00 00 07 00 00 00 00"   # 101 LoadWorld(<CATACOMB>, 0)
    "13"                                    # 115 #73: Endint
    "1B 73 00 00 00"                        # 116 <TaskPause(#73)>
    "12"                                    # 121 Return
)

DOOR_TEXT = """\
DOOR
{
  Me.health = 10
  door_a.x++
  @WalkTo(var2, DoorOpen)
  77.Move(1)
  AddItem(<SWORD>)
  TestGlobalFlag(3)
  if ActiveItem() = <SWORD> or var3++ = 2
  {
    <Anchor>=2
    Gosub #73
  }
  if <ScriptRv> = 1
  {
    End
  }
  LoadWorld(<CATACOMB>, 0)

  #73:
  Endint
  <TaskPause(#73)>
  Return
}"""

SAMPLE_HEADERS = [
    dict(name="GUARD01", script=GUARD_SCRIPT, script_pc=0x22, strings=["gd01"],
         variables=[1, 2, 3], instances=1, attributes={}),
    dict(name="DOOR", script=DOOR_SCRIPT, script_pc=0, strings=["door_a"],
         variables=[0, 0, 77, 12, 0, 0], instances=2, attributes={0: 3, 2: -1}),
    dict(name="EMPTY", script=b'', script_pc=0, strings=[], variables=[],
         instances=1, attributes={}),
]

SCRIPT_BASE = 8
RAHD_OPAQUE = b'\x1b\x80\x37\x00'


def record(tag: bytes, payload: bytes) -> bytes:
    return tag + struct.pack('>I', len(payload)) + payload


def build_rgm(headers=None, base=SCRIPT_BASE, trailer=b'') -> bytes:
    """Assemble an RGM file from header dicts like SAMPLE_HEADERS."""
    headers = SAMPLE_HEADERS if headers is None else headers
    rahd = bytearray(struct.pack('<I', len(headers)) + RAHD_OPAQUE)
    rast = bytearray()
    rasb = bytearray()
    rava = bytearray(4)
    scripts = bytearray()
    raat = bytearray()
    offsets = {}

    for h in headers:
        string_index = len(rasb) if h['strings'] else 0
        for text in h['strings']:
            if text not in offsets:
                offsets[text] = len(rast)
                rast += text.encode('latin-1') + b'\x00'
            rasb += struct.pack('<I', offsets[text])
        variable_offset = len(rava) if h['variables'] else 0
        for _ in range(h['instances']):
            for value in h['variables']:
                rava += struct.pack('<i', value)
        rahd += header_record(
            h['name'], h['instances'], len(h['strings']), string_index, len(h['script']),
            base + len(scripts), h['script_pc'], len(h['variables']), variable_offset)
        scripts += h['script']
        raat += attribute_block(h['attributes'])

    return b''.join([
        record(b'RAHD', bytes(rahd)),
        record(b'RAFS', b'\x00'),
        record(b'RAST', bytes(rast)),
        record(b'RASB', bytes(rasb)),
        record(b'RAVA', bytes(rava)),
        record(b'RASC', bytes(base) + bytes(scripts)),
        record(b'RAHK', b'\xAA\xBB'),
        record(b'RAAT', bytes(raat)),
        record(b'MPOB', b'\x01\x02\x03'),
        b'END ',
        trailer,
    ])
