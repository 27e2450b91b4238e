"""
redguard-re: Exception types.

Everything raised on bad input derives from RedguardError, itself a
ValueError, so callers that only catch ValueError keep working.
"""


class RedguardError(ValueError):
    """Base class for all redguard-re data errors."""

    line_no = None
    line = None

    def locate(self, line_no: int, line: str):
        """Attach the script line an error came from (first call wins)."""
        if self.line_no is None and line_no is not None:
            self.line_no = line_no
            self.line = line
            text = line.strip() if line else ''
            self.args = (f"line {line_no}: {text}: {self.args[0] if self.args else ''}",) + self.args[1:]
        return self


# =============================================================================
# CONTAINER
# =============================================================================

class FormatError(RedguardError):
    """Missing or malformed container records, or wrong section sizes."""


class TruncatedDataError(FormatError):
    """Fewer bytes available than a record or operand declares."""

    def __init__(self, what: str, offset: int, needed: int, available: int):
        self.offset = offset
        self.needed = needed
        self.available = available
        super().__init__(
            f"{what}: need {needed} bytes at offset {offset}, "
            f"only {available} available")


# =============================================================================
# SYMBOLS AND LABELS
# =============================================================================

class UnresolvedSymbolError(RedguardError):
    """A name (or id) is not present in the symbol database."""

    def __init__(self, kind: str, name):
        self.kind = kind
        self.name = name
        super().__init__(f"Unknown {kind}: {name!r}")


class UnresolvedLabelError(RedguardError):
    """A label is referenced in a header but never defined there."""

    def __init__(self, header: str, label: int):
        self.header = header
        self.label = label
        super().__init__(f"{header}: label #{label:02X} is never defined")


# =============================================================================
# SCRIPT TEXT AND BYTECODE
# =============================================================================

class ScriptSyntaxError(RedguardError):
    """Script text that matches no statement grammar."""

    def __init__(self, message: str, line_no: int = None, line: str = None):
        super().__init__(message)
        self.locate(line_no, line)


class UnknownOpcodeError(RedguardError):
    """The decoder met an opcode, operator or selector byte it does not know."""

    def __init__(self, kind: str, value: int, offset: int):
        self.kind = kind
        self.value = value
        self.offset = offset
        super().__init__(f"Unknown {kind} {value} at script offset {offset:#x}")
