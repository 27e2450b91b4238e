"""
redguard-re: RGM map container codec.

An RGM file is a flat sequence of tagged records:

  tag(4 ASCII) | length(4, BE) | payload(length)
  ...
  "END "                         (no length; any trailing bytes are kept)

Records used by the script tools:

  RAHD  u32 LE header count, 4 opaque bytes, count x 165-byte sub-records
  RAST  NUL-terminated strings, shared by all headers
  RASB  u32 LE offsets into RAST, 4 bytes per string, per header
  RAVA  i32 LE local variables (entry 0 is a dummy)
  RASC  scripts, concatenated in header order, starting at the first
        header's script data offset (bytes before it are padding)
  RAAT  256 attribute bytes per header

Every other record (RAFS, RAHK, RALC, RAEX, RAAN, MPOB, ...) is kept as an
opaque payload and written back unchanged and in its original position.
"""

import logging
import struct

from rglib.constants import (
    ATTRIBUTE_BLOCK_SIZE, END_TAG, HEADER_SIZE, RAHD_PREFIX_SIZE, REBUILT_TAGS,
    TAG_ATTRIBUTES, TAG_HEADERS, TAG_SCRIPTS, TAG_STRINGS, TAG_STRING_OFS,
    TAG_VARIABLES, TEXT_ENCODING,
)
from rglib.errors import FormatError, TruncatedDataError
from rglib.header import MapHeader

logger = logging.getLogger(__name__)


# =============================================================================
# RECORD STREAM
# =============================================================================

def read_records(data: bytes):
    """
    Split an RGM file into records.

    Returns (records, trailer) where records is a list of (tag, payload)
    in file order and trailer is whatever follows the END tag.
    """
    records = []
    pos = 0
    while True:
        if pos + 4 > len(data):
            raise FormatError(f"Missing END record (data ends at offset {len(data)})")
        tag = bytes(data[pos:pos + 4])
        pos += 4
        if tag == END_TAG:
            return records, bytes(data[pos:])

        if pos + 4 > len(data):
            raise TruncatedDataError(f"Record {tag!r} length", pos, 4, len(data) - pos)
        length = struct.unpack_from('>I', data, pos)[0]
        pos += 4
        if pos + length > len(data):
            raise TruncatedDataError(f"Record {tag!r}", pos, length, len(data) - pos)
        records.append((tag, bytes(data[pos:pos + length])))
        pos += length


def write_records(records, trailer: bytes = b'') -> bytes:
    """Serialize (tag, payload) records followed by END and the trailer."""
    out = bytearray()
    for tag, payload in records:
        if len(tag) != 4:
            raise FormatError(f"Record tag must be 4 bytes: {tag!r}")
        out += tag
        out += struct.pack('>I', len(payload))
        out += payload
    out += END_TAG
    out += trailer
    return bytes(out)


def tag_name(tag: bytes) -> str:
    return tag.decode(TEXT_ENCODING)


# =============================================================================
# CONTAINER
# =============================================================================

class MapContainer:
    """A decoded RGM file: its records plus the parsed header table."""

    def __init__(self, records, headers, trailer=b''):
        self.records = list(records)
        self.headers = list(headers)
        self.trailer = trailer

    def __repr__(self):
        return f"MapContainer({len(self.records)} records, {len(self.headers)} headers)"

    def record(self, tag: bytes):
        """Payload of the first record with this tag, or None."""
        for rec_tag, payload in self.records:
            if rec_tag == tag:
                return payload
        return None

    @property
    def script_base(self) -> int:
        """Offset of the first script inside RASC."""
        return self.headers[0].script_offset if self.headers else 0

    def header(self, name: str) -> MapHeader:
        for header in self.headers:
            if header.name == name:
                return header
        raise KeyError(name)

    def with_compiled(self, compiled) -> 'MapContainer':
        """
        Return a new container carrying recompiled headers.

        `compiled` holds one entry per header, in table order, each with
        .script, .script_pc, .strings, .attributes and .variables (a dict of
        index -> value overrides). RAHD, RAST, RASB, RAVA, RASC and RAAT are
        rebuilt; every other record is copied. A rebuilt section missing from
        the source map is appended at the end only when it holds non-zero data.
        """
        compiled = list(compiled)
        if len(compiled) != len(self.headers):
            raise FormatError(
                f"Script has {len(compiled)} headers, map has {len(self.headers)}")

        base = self.script_base
        rahd_prefix = self.record(TAG_HEADERS)[4:RAHD_PREFIX_SIZE]
        rahd = bytearray(struct.pack('<I', len(compiled)) + rahd_prefix)
        rast = bytearray()
        rasb = bytearray()
        rava = bytearray(4)
        scripts = bytearray()
        raat = bytearray()
        string_offsets = {}
        headers = []

        for header, comp in zip(self.headers, compiled):
            if comp.name != header.name:
                raise FormatError(f"Script header {comp.name!r} does not match map header {header.name!r}")
            if len(comp.attributes) != ATTRIBUTE_BLOCK_SIZE:
                raise FormatError(f"{header.name}: attribute block must be {ATTRIBUTE_BLOCK_SIZE} bytes")

            variables = list(header.variables)
            for index, value in comp.variables.items():
                if not 0 <= index < len(variables):
                    raise FormatError(f"{header.name}: var{index} does not exist "
                                      f"({len(variables)} variables)")
                variables[index] = value

            fields = {
                'script_length': len(comp.script),
                'script_offset': base + len(scripts),
                'script_pc': comp.script_pc,
                'string_count': len(comp.strings),
            }
            if comp.strings:
                fields['string_index'] = len(rasb)
            for text in comp.strings:
                if text not in string_offsets:
                    string_offsets[text] = len(rast)
                    rast += text.encode(TEXT_ENCODING) + b'\x00'
                rasb += struct.pack('<I', string_offsets[text])

            if variables:
                fields['variable_offset'] = len(rava)
                for _ in range(header.instances):
                    rava += struct.pack(f'<{len(variables)}i', *variables)

            scripts += comp.script
            raat += comp.attributes

            new_header = MapHeader(header.with_fields(**fields))
            new_header.strings = list(comp.strings)
            new_header.variables = variables
            new_header.attributes = bytes(comp.attributes)
            new_header.script = bytes(comp.script)
            rahd += new_header.data
            headers.append(new_header)

        rebuilt = {
            TAG_HEADERS: bytes(rahd),
            TAG_STRINGS: bytes(rast),
            TAG_STRING_OFS: bytes(rasb),
            TAG_VARIABLES: bytes(rava),
            TAG_SCRIPTS: bytes(base) + bytes(scripts),
            TAG_ATTRIBUTES: bytes(raat),
        }
        records = []
        for tag, payload in self.records:
            if tag in rebuilt:
                records.append((tag, rebuilt.pop(tag)))
            else:
                records.append((tag, payload))
        # a section the map lacked is added only when it holds non-zero data
        for tag in REBUILT_TAGS:
            if tag in rebuilt and any(rebuilt[tag]):
                records.append((tag, rebuilt[tag]))

        logger.debug("Rebuilt %d headers: %d script bytes, %d strings, %d variable bytes",
                     len(headers), len(scripts), len(string_offsets), len(rava))
        return MapContainer(records, headers, self.trailer)


# =============================================================================
# DECODE / ENCODE
# =============================================================================

def decode_rgm(data: bytes) -> MapContainer:
    """Parse RGM file bytes into a MapContainer."""
    records, trailer = read_records(data)
    container = MapContainer(records, [], trailer)

    rahd = container.record(TAG_HEADERS)
    if rahd is None:
        raise FormatError("Missing RAHD record")
    if len(rahd) < RAHD_PREFIX_SIZE:
        raise FormatError(f"RAHD too small: {len(rahd)} bytes")
    count = struct.unpack_from('<I', rahd, 0)[0]
    needed = RAHD_PREFIX_SIZE + count * HEADER_SIZE
    if len(rahd) < needed:
        raise FormatError(f"RAHD holds {len(rahd)} bytes, {count} headers need {needed}")

    headers = []
    for i in range(count):
        start = RAHD_PREFIX_SIZE + i * HEADER_SIZE
        headers.append(MapHeader(rahd[start:start + HEADER_SIZE]))

    rast = container.record(TAG_STRINGS) or b''
    rasb = container.record(TAG_STRING_OFS) or b''
    rava = container.record(TAG_VARIABLES) or b''
    rasc = container.record(TAG_SCRIPTS) or b''
    raat = container.record(TAG_ATTRIBUTES)

    pool = list(struct.unpack_from(f'<{len(rava) // 4}i', rava, 0))
    cursor = headers[0].script_offset if headers else 0

    for i, header in enumerate(headers):
        header.resolve_strings(rast, rasb)
        header.resolve_variables(pool)

        end = cursor + header.script_length
        if end > len(rasc):
            raise TruncatedDataError(f"{header.name}: script", cursor,
                                     header.script_length, max(0, len(rasc) - cursor))
        header.script = rasc[cursor:end]
        cursor = end

        if raat is not None:
            start = i * ATTRIBUTE_BLOCK_SIZE
            if start + ATTRIBUTE_BLOCK_SIZE > len(raat):
                raise FormatError(f"RAAT too small for {count} headers ({len(raat)} bytes)")
            header.attributes = raat[start:start + ATTRIBUTE_BLOCK_SIZE]

    container.headers = headers
    logger.debug("Decoded RGM: %d records, %d headers, %d script bytes",
                 len(records), len(headers), cursor)
    return container


def encode_rgm(container: MapContainer) -> bytes:
    """Serialize a MapContainer back to RGM file bytes."""
    data = write_records(container.records, container.trailer)
    logger.debug("Encoded RGM: %d records, %d bytes", len(container.records), len(data))
    return data


def load_rgm(path: str) -> MapContainer:
    with open(path, 'rb') as f:
        return decode_rgm(f.read())


def save_rgm(path: str, container: MapContainer):
    with open(path, 'wb') as f:
        f.write(encode_rgm(container))
