"""
redguard-re: Script statement and value nodes.

The parser turns script text into these nodes without touching the symbol
database; the recompiler resolves names and emits bytes from them.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Tuple


# =============================================================================
# VALUES
# =============================================================================

@dataclass
class Call:
    name: str
    args: list = field(default_factory=list)
    multitask: bool = False     # "@Name(...)"


@dataclass
class FlagRef:
    name: str


@dataclass
class VarRef:
    index: int


@dataclass
class Number:
    value: int


@dataclass
class Text:
    value: str                  # quoted string or dialogue label


@dataclass
class ObjectRef:
    obj: str                    # Me/Player/Camera, a string name or a numeric name
    ref: str


@dataclass
class ObjectCall:
    obj: str
    call: Call


@dataclass
class Chain:
    """A value followed by operators: terms[0] op terms[1] op ... [postfix]."""
    terms: list
    operators: List[str] = field(default_factory=list)
    postfix: Optional[str] = None

    @property
    def head(self):
        return self.terms[0]


@dataclass
class Clause:
    lhs: Chain
    comparison: str
    rhs: Chain
    conjunction: Optional[str] = None   # "and" / "or" joining the next clause


# =============================================================================
# STATEMENTS
# =============================================================================

class Statement:
    """Base for statements; the parser records where each one came from."""
    line_no = None
    line = None


@dataclass
class LabelDef(Statement):
    label: int


@dataclass
class Expr(Statement):
    value: object               # Call, ObjectCall, Number or Text


@dataclass
class Assign(Statement):
    target: object              # FlagRef, VarRef or ObjectRef
    formula: Chain


@dataclass
class ObjectStep(Statement):
    obj: str
    ref: str
    op: str                     # "++" / "--"


@dataclass
class If(Statement):
    clauses: List[Clause]
    body: list = field(default_factory=list)


@dataclass
class ScriptRvIf(Statement):
    value: int
    body: list = field(default_factory=list)


@dataclass
class Jump(Statement):
    keyword: str                # Goto / End / Gosub
    label: Optional[int] = None


@dataclass
class Keyword(Statement):
    keyword: str                # Return / Endint


@dataclass
class Anchor(Statement):
    value: int


@dataclass
class TaskPause(Statement):
    label: int


# =============================================================================
# HEADERS
# =============================================================================

@dataclass
class ScriptHeader:
    """One header block of a script file, with the lines that preceded it."""
    name: str
    start_label: Optional[int] = None
    body: list = field(default_factory=list)
    attributes: List[Tuple[str, int, int, str]] = field(default_factory=list)   # (name, value, line_no, line)
    variables: dict = field(default_factory=dict)                               # index -> value
    line_no: int = 0
    line: str = ""
