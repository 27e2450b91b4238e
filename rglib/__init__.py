"""redguard-re shared library."""
from .errors import (  # noqa: F401
    RedguardError, FormatError, TruncatedDataError, UnresolvedSymbolError,
    UnresolvedLabelError, ScriptSyntaxError, UnknownOpcodeError,
)
from .symbols import SymbolDatabase  # noqa: F401
from .header import MapHeader  # noqa: F401
from .rgm import MapContainer, decode_rgm, encode_rgm, load_rgm, save_rgm, read_records  # noqa: F401
from .decompiler import decompile, decompile_map  # noqa: F401
from .recompiler import CompiledHeader, recompile, compile_map  # noqa: F401
