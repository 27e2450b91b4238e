"""
redguard-re: RAHD header sub-records.

Each script unit of a map ("header") is one 165-byte sub-record in RAHD:

  Offset  Size  Field
  4       9     name (space/NUL padded)
  13      2     instance count
  65      4     string count
  73      4     string offset index (byte offset into RASB)
  77      4     script length
  81      4     script data offset (into RASC)
  85      4     script entry PC (script-relative)
  117     4     variable count
  125     4     variable offset (byte offset into RAVA, /4 = index)

All multi-byte fields are little-endian. Bytes not listed are opaque and
carried through unchanged.
"""

import struct

from rglib.constants import ATTRIBUTE_BLOCK_SIZE, HEADER_FIELDS, HEADER_SIZE, TEXT_ENCODING
from rglib.errors import FormatError, TruncatedDataError

_FIELD_FORMATS = {2: '<H', 4: '<I'}


class MapHeader:
    """One script unit: raw sub-record plus its resolved pool slices."""

    def __init__(self, data: bytes):
        if len(data) != HEADER_SIZE:
            raise FormatError(f"Header sub-record must be {HEADER_SIZE} bytes, got {len(data)}")
        self.data = bytes(data)

        off, size = HEADER_FIELDS["name"]
        raw_name = self.data[off:off + size].decode(TEXT_ENCODING)
        self.name = raw_name.split('\x00', 1)[0].strip()

        self.instances = self.field("instances")
        self.string_count = self.field("string_count")
        self.string_index = self.field("string_index")
        self.script_length = self.field("script_length")
        self.script_offset = self.field("script_offset")
        self.script_pc = self.field("script_pc")
        self.variable_count = self.field("variable_count")
        self.variable_offset = self.field("variable_offset")

        # Filled in by the container codec
        self.strings = []
        self.variables = []
        self.attributes = bytes(ATTRIBUTE_BLOCK_SIZE)
        self.script = b''

    def __repr__(self):
        return (f"MapHeader({self.name!r}, script={self.script_length}B @ {self.script_offset}, "
                f"pc={self.script_pc}, strings={self.string_count}, vars={self.variable_count})")

    def field(self, name: str) -> int:
        off, size = HEADER_FIELDS[name]
        return struct.unpack_from(_FIELD_FORMATS[size], self.data, off)[0]

    def with_fields(self, **values) -> bytes:
        """Return a copy of the raw sub-record with the named fields replaced."""
        data = bytearray(self.data)
        for name, value in values.items():
            off, size = HEADER_FIELDS[name]
            struct.pack_into(_FIELD_FORMATS[size], data, off, value)
        return bytes(data)

    # -- pool slices --

    def resolve_strings(self, rast: bytes, rasb: bytes):
        """Resolve this header's strings from the RAST pool via RASB offsets."""
        self.strings = []
        for i in range(self.string_count):
            pos = self.string_index + i * 4
            if pos + 4 > len(rasb):
                raise TruncatedDataError(f"{self.name}: RASB entry {i}", pos, 4, max(0, len(rasb) - pos))
            start = struct.unpack_from('<I', rasb, pos)[0]
            end = rast.find(b'\x00', start)
            if start > len(rast) or end < 0:
                raise FormatError(f"{self.name}: string {i} at RAST offset {start} is not terminated")
            self.strings.append(rast[start:end].decode(TEXT_ENCODING))

    def resolve_variables(self, pool: list):
        """Resolve this header's local variables from the RAVA pool."""
        self.variables = []
        if self.variable_count == 0:
            return
        start = self.variable_offset // 4
        end = start + self.variable_count
        if end > len(pool):
            raise FormatError(
                f"{self.name}: variables {start}..{end - 1} outside RAVA ({len(pool)} entries)")
        self.variables = list(pool[start:end])

    def attribute_values(self) -> list:
        """(index, signed value) for every non-zero attribute byte."""
        return [(i, b - 256 if b > 127 else b)
                for i, b in enumerate(self.attributes) if b]
