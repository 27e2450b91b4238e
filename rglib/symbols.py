"""
redguard-re: Symbol database.

Loads the name tables the script decompiler and recompiler resolve ids
against:

  soup386/SOUP386.DEF  functions, references, attribute names, flags
  WORLD.INI            world_map[id]=MAPS\\NAME.RGM
  ITEM.INI             item name/description RTX labels, in id order
  ENGLISH.RTX          dialogue label -> subtitle

SOUP386.DEF layout (sections are consumed in this order):

  [functions]    "<kind> <name> params <N>"   (id 0 is NullFunction)
  [refs]         one reference name per line
  [equates]      ... skipped up to "auto"
  auto/endauto   attribute names (lines with '=' are skipped)
  [flags]        "<type> <name> <value>[;comment]"

Lines that are blank or start with ';' are ignored.

ENGLISH.RTX record:
  label(4) | length(4, BE) | hasAudio(2, BE) | subtitleLength(4, LE) | subtitle
  [audio block when hasAudio == 1]
  ...
  "END "
"""

import logging
import os
import struct
from collections import namedtuple

from rglib.constants import (
    END_TAG, FUNCTION_KINDS, ITEM_NAME_OVERRIDES, PARAMETER_TYPES,
    PARAM_NORMAL, TEXT_ENCODING,
)
from rglib.errors import FormatError, TruncatedDataError, UnresolvedSymbolError

logger = logging.getLogger(__name__)


SoupFunction = namedtuple('SoupFunction', 'name kind param_count')
SoupFlag = namedtuple('SoupFlag', 'name flag_type value comment')

NULL_FUNCTION = SoupFunction("NullFunction", "function", 0)


# =============================================================================
# SOUP386.DEF
# =============================================================================

def parse_function_line(line: str) -> SoupFunction:
    """Parse '<kind> <name> params <N>'."""
    parts = line.split()
    if len(parts) < 4 or parts[2] != "params":
        raise FormatError(f"Bad function line: {line!r}")
    kind = parts[0]
    if kind not in FUNCTION_KINDS:
        logger.warning("Unexpected function kind %r in line: %r", kind, line)
    return SoupFunction(parts[1], kind, int(parts[3]))


def parse_flag_line(line: str) -> SoupFlag:
    """Parse '<type> <name> <value>[;comment]'."""
    body, sep, comment = line.partition(';')
    parts = body.split()
    if len(parts) < 3:
        raise FormatError(f"Bad flag line: {line!r}")
    return SoupFlag(parts[1], parts[0], parts[2], comment if sep else None)


def _section(lines, stop):
    """Yield meaningful lines until one equals `stop` (None = end of input)."""
    for line in lines:
        if stop is not None and line == stop:
            return
        if line and not line.startswith(';'):
            yield line


def _skip_to(lines, stop):
    for line in lines:
        if line == stop:
            return


def parse_soup_def(text: str) -> dict:
    """
    Parse SOUP386.DEF text.

    Returns dict with 'functions', 'references', 'attributes' and 'flags'
    lists, each indexed by id.
    """
    lines = iter(line.rstrip('\r') for line in text.split('\n'))

    _skip_to(lines, "[functions]")
    functions = [NULL_FUNCTION]
    functions.extend(parse_function_line(l) for l in _section(lines, "[refs]"))
    references = [l.strip() for l in _section(lines, "[equates]")]
    _skip_to(lines, "auto")
    attributes = [l.strip() for l in _section(lines, "endauto") if '=' not in l]
    _skip_to(lines, "[flags]")
    flags = [parse_flag_line(l) for l in _section(lines, None)]

    return {
        'functions': functions,
        'references': references,
        'attributes': attributes,
        'flags': flags,
    }


# =============================================================================
# WORLD.INI / ITEM.INI
# =============================================================================

def parse_world_ini(text: str) -> dict:
    """
    Parse world_map[id]=MAPS\\NAME.RGM lines.

    Returns {map id: map name}. One map file may own several ids.
    """
    maps = {}
    for line in text.splitlines():
        line = line.strip()
        if not line.startswith("world_map"):
            continue
        try:
            map_id = int(line[line.index('[') + 1:line.index(']')])
        except ValueError:
            raise FormatError(f"Bad world_map line: {line!r}") from None
        path = line.split('=', 1)[1].strip().upper()
        name = path.replace('\\', '/').rsplit('/', 1)[-1].split('.', 1)[0]
        maps[map_id] = name
    return maps


def parse_item_ini(text: str) -> list:
    """
    Parse ITEM.INI into a list of (name label, description label) per item id.

    Each "name = xxxx" line is followed by its "description = xxxx" line.
    """
    items = []
    lines = iter(text.splitlines())
    for line in lines:
        if not line.startswith("name"):
            continue
        name_label = line.split('=', 1)[1].strip().lower()
        desc_line = next(lines, "")
        desc_label = desc_line.split('=', 1)[1].strip().lower() if '=' in desc_line else ""
        items.append((name_label, desc_label))
    return items


def item_names(item_labels: list, subtitles: dict) -> list:
    """Resolve item names: overrides first, then the name label's subtitle."""
    names = []
    for item_id, (name_label, _desc) in enumerate(item_labels):
        name = ITEM_NAME_OVERRIDES.get(item_id)
        if name is None:
            name = subtitles.get(name_label)
        names.append(name)
    return names


# =============================================================================
# ENGLISH.RTX
# =============================================================================

def parse_rtx(data: bytes) -> dict:
    """Parse RTX dialogue records, returning {label: subtitle}."""
    subtitles = {}
    pos = 0

    def need(n, what):
        if pos + n > len(data):
            raise TruncatedDataError(f"RTX {what}", pos, n, len(data) - pos)

    while True:
        need(4, "label")
        label = data[pos:pos + 4].decode(TEXT_ENCODING)
        pos += 4
        if label.encode(TEXT_ENCODING) == END_TAG:
            break

        need(10, f"record '{label}'")
        has_audio = struct.unpack_from('>h', data, pos + 4)[0] == 1
        sub_len = struct.unpack_from('<i', data, pos + 6)[0]
        pos += 10
        need(sub_len, f"subtitle '{label}'")
        subtitles[label] = data[pos:pos + sub_len].decode(TEXT_ENCODING)
        pos += sub_len

        if has_audio:
            # doubleSize, doubleSize, rate, 100 (4 x i32), 0 (i16), -1, length (2 x i32), pad byte
            need(27, f"audio header '{label}'")
            audio_len = struct.unpack_from('<i', data, pos + 22)[0]
            pos += 27
            need(audio_len, f"audio '{label}'")
            pos += audio_len

    return subtitles


# =============================================================================
# SYMBOL DATABASE
# =============================================================================

class SymbolDatabase:
    """
    Read-only id <-> name tables for one editing session.

    Built once (usually via from_game_dir) and passed explicitly to the
    decompiler and recompiler.
    """

    def __init__(self, functions=(), flags=(), references=(), attributes=(),
                 items=(), maps=None, subtitles=None, parameter_types=None):
        self.functions = tuple(functions) or (NULL_FUNCTION,)
        self.flags = tuple(flags)
        self.references = tuple(references)
        self.attributes = tuple(attributes)
        self.items = tuple(items)
        self.maps = dict(maps or {})
        self.subtitles = dict(subtitles or {})
        self.parameter_types = dict(PARAMETER_TYPES if parameter_types is None
                                    else parameter_types)

        # first occurrence wins for every name -> id table
        self._function_ids = _first_index(f.name for f in self.functions)
        self._flag_ids = _first_index(f.name for f in self.flags)
        self._reference_ids = _first_index(self.references)
        self._attribute_ids = _first_index(self.attributes)
        self._item_ids = _first_index(self.items)
        self._map_ids = {}
        for map_id in sorted(self.maps):
            self._map_ids.setdefault(self.maps[map_id], map_id)

    @classmethod
    def from_game_dir(cls, game_dir: str) -> 'SymbolDatabase':
        """
        Load every symbol file from a Redguard install directory.

        SOUP386.DEF is required; WORLD.INI, ITEM.INI and ENGLISH.RTX are
        optional and give empty tables when absent.
        """
        soup_path = find_game_file(game_dir, 'soup386', 'SOUP386.DEF')
        if soup_path is None:
            raise FormatError(f"SOUP386.DEF not found under {game_dir}")
        with open(soup_path, encoding=TEXT_ENCODING) as f:
            soup = parse_soup_def(f.read())
        logger.debug("Loaded %s: %d functions, %d refs, %d attributes, %d flags",
                     soup_path, len(soup['functions']), len(soup['references']),
                     len(soup['attributes']), len(soup['flags']))

        subtitles = {}
        rtx_path = find_game_file(game_dir, 'ENGLISH.RTX')
        if rtx_path:
            with open(rtx_path, 'rb') as f:
                subtitles = parse_rtx(f.read())
            logger.debug("Loaded %s: %d subtitles", rtx_path, len(subtitles))

        maps = {}
        world_path = find_game_file(game_dir, 'WORLD.INI')
        if world_path:
            with open(world_path, encoding=TEXT_ENCODING) as f:
                maps = parse_world_ini(f.read())
            logger.debug("Loaded %s: %d map ids", world_path, len(maps))

        items = []
        item_path = find_game_file(game_dir, 'ITEM.INI')
        if item_path:
            with open(item_path, encoding=TEXT_ENCODING) as f:
                items = item_names(parse_item_ini(f.read()), subtitles)
            logger.debug("Loaded %s: %d items", item_path, len(items))

        return cls(soup['functions'], soup['flags'], soup['references'],
                   soup['attributes'], items, maps, subtitles)

    # -- id -> entry (decode) --

    def function(self, func_id: int) -> SoupFunction:
        return _lookup(self.functions, func_id, "function id")

    def flag(self, flag_id: int) -> SoupFlag:
        return _lookup(self.flags, flag_id, "flag id")

    def reference(self, ref_id: int) -> str:
        return _lookup(self.references, ref_id, "reference id")

    def attribute(self, index: int) -> str:
        return _lookup(self.attributes, index, "attribute index")

    def item_name(self, item_id: int):
        """Item name, or None when the id has no usable name."""
        if 0 <= item_id < len(self.items):
            return self.items[item_id]
        return None

    def map_name(self, map_id: int):
        return self.maps.get(map_id)

    def subtitle(self, label: str):
        return self.subtitles.get(label)

    def parameter_type(self, func_name: str, index: int) -> str:
        return self.parameter_types.get(f"{func_name}{index}", PARAM_NORMAL)

    # -- name -> id (encode) --

    def function_id(self, name: str) -> int:
        return _resolve(self._function_ids, name, "function")

    def flag_id(self, name: str) -> int:
        return _resolve(self._flag_ids, name, "flag")

    def reference_id(self, name: str) -> int:
        return _resolve(self._reference_ids, name, "reference")

    def attribute_id(self, name: str) -> int:
        return _resolve(self._attribute_ids, name, "attribute")

    def item_id(self, name: str) -> int:
        return _resolve(self._item_ids, name, "item")

    def map_id(self, name: str) -> int:
        return _resolve(self._map_ids, name, "map")

    def has_item(self, name: str) -> bool:
        return name in self._item_ids

    def has_map(self, name: str) -> bool:
        return name in self._map_ids

    def map_ids(self, name: str) -> list:
        """All ids that load the given map file, ascending."""
        return sorted(i for i, n in self.maps.items() if n == name)


def find_game_file(game_dir: str, *parts):
    """Case-insensitive path lookup below game_dir. Returns None if absent."""
    path = game_dir
    for part in parts:
        try:
            entries = os.listdir(path)
        except OSError:
            return None
        match = next((e for e in entries if e.lower() == part.lower()), None)
        if match is None:
            return None
        path = os.path.join(path, match)
    return path


def _first_index(names) -> dict:
    table = {}
    for i, name in enumerate(names):
        if name is not None:
            table.setdefault(name, i)
    return table


def _lookup(table, index, what):
    if 0 <= index < len(table):
        return table[index]
    raise UnresolvedSymbolError(what, index)


def _resolve(table, name, what):
    try:
        return table[name]
    except KeyError:
        raise UnresolvedSymbolError(what, name) from None
