"""
redguard-re: Script recompiler.

Compiles script text (as produced by rglib.decompiler, possibly edited)
back into per-header bytecode, the inverse of decompile():

  text --preparse/parse--> ScriptHeader nodes --HeaderEncoder--> bytes

Label operands (Goto/End/Gosub/TaskPause) are written as 4-byte zero
placeholders and patched with the label's address once the header is
complete. An if's 4-byte block end is patched as soon as its block is
emitted: the script offset of the first byte after the block.

Strings: header string indices are assigned in first-use order; dialogue
labels used by the header are appended after them, each once.
"""

import logging
import re
import struct
from collections import defaultdict

from rglib.constants import (
    ATTRIBUTE_BLOCK_SIZE, COMPARISONS, DIALOGUE_LABEL_SIZE, GLOBAL_FLAG_FUNCTIONS,
    OBJECT_NAMES, OBJ_STRING, OBJ_VARIABLE, OPERATORS, OP_ANCHOR, OP_END,
    OP_ENDINT, OP_FLAG, OP_FUNCTION, OP_GOSUB, OP_GOTO, OP_IF, OP_MULTITASK,
    OP_NUMERIC, OP_NUMERIC_ALT, OP_OBJECT_DEC, OP_OBJECT_DOT, OP_OBJECT_FUNC,
    OP_OBJECT_INC, OP_OBJECT_TASK, OP_POSTFIX_DEC, OP_POSTFIX_INC, OP_RETURN,
    OP_SCRIPT_RV, OP_STRING, OP_TASK, OP_TASK_PAUSE, OP_VARIABLE, PARAM_DIALOGUE,
    TEXT_ENCODING,
)
from rglib.decompiler import COMPARISON_PARAM, FORMULA, LHS, MAIN, PARAMETER, RHS
from rglib.errors import (
    RedguardError, ScriptSyntaxError, UnresolvedLabelError, UnresolvedSymbolError,
)
from rglib.nodes import (
    Anchor, Assign, Call, Chain, Expr, FlagRef, If, Jump, Keyword, LabelDef,
    Number, ObjectCall, ObjectRef, ObjectStep, ScriptRvIf, TaskPause, Text, VarRef,
)
from rglib.script_parser import parse_script

logger = logging.getLogger(__name__)

JUMP_OPCODES = {"Goto": OP_GOTO, "End": OP_END, "Gosub": OP_GOSUB}
KEYWORD_OPCODES = {"Return": OP_RETURN, "Endint": OP_ENDINT}
CONJUNCTION_BYTES = {None: 0, "and": 1, "or": 2}

_NUMERIC_NAME = re.compile(r'-?\d+$')
_VARIABLE_NAME = re.compile(r'var(\d+)$')


class CompiledHeader:
    """Recompiled output for one header."""

    def __init__(self, name, script, script_pc=0, strings=(), attributes=None,
                 variables=None, labels=None):
        self.name = name
        self.script = bytes(script)
        self.script_pc = script_pc
        self.strings = list(strings)
        self.attributes = bytes(attributes) if attributes is not None else bytes(ATTRIBUTE_BLOCK_SIZE)
        self.variables = dict(variables or {})
        self.labels = dict(labels or {})

    def __repr__(self):
        return (f"CompiledHeader({self.name!r}, {len(self.script)} bytes, pc={self.script_pc}, "
                f"{len(self.strings)} strings)")


# =============================================================================
# HEADER ENCODER
# =============================================================================

class HeaderEncoder:
    """Emits one header's statements as bytecode."""

    def __init__(self, name: str, symbols, variables=None):
        self.name = name
        self.symbols = symbols
        self.variables = list(variables) if variables is not None else None
        self.out = bytearray()
        self.strings = []
        self.dialogue = []
        self.label_defs = {}
        self.patches = defaultdict(list)

    # -- raw writes --

    def u8(self, value: int):
        if not 0 <= value <= 0xFF:
            raise ScriptSyntaxError(f"Byte value out of range: {value}")
        self.out.append(value)

    def u16(self, value: int):
        self.out += struct.pack('<H', value)

    def i32(self, value: int):
        self.out += struct.pack('<I', value & 0xFFFFFFFF)

    def label_ref(self, label: int):
        self.patches[label].append(len(self.out))
        self.out += bytes(4)

    def add_string(self, text: str) -> int:
        if text not in self.strings:
            self.strings.append(text)
        return self.strings.index(text)

    # -- statements --

    def block(self, statements):
        for stmt in statements:
            try:
                self.statement(stmt)
            except RedguardError as e:
                raise e.locate(stmt.line_no, stmt.line)

    def statement(self, stmt):
        if isinstance(stmt, LabelDef):
            if stmt.label in self.label_defs:
                raise ScriptSyntaxError(f"Label #{stmt.label:02X} defined twice")
            self.label_defs[stmt.label] = len(self.out)
        elif isinstance(stmt, Expr):
            self.value(stmt.value, MAIN)
        elif isinstance(stmt, Assign):
            self.assignment(stmt)
        elif isinstance(stmt, If):
            self.conditional(stmt)
        elif isinstance(stmt, ScriptRvIf):
            self.u8(OP_SCRIPT_RV)
            self.u8(stmt.value)
            self.block(stmt.body)
        elif isinstance(stmt, Jump):
            self.u8(JUMP_OPCODES[stmt.keyword])
            if stmt.label is None:
                self.i32(0)
            else:
                self.label_ref(stmt.label)
        elif isinstance(stmt, Keyword):
            self.u8(KEYWORD_OPCODES[stmt.keyword])
        elif isinstance(stmt, Anchor):
            self.u8(OP_ANCHOR)
            self.u8(stmt.value)
        elif isinstance(stmt, TaskPause):
            self.u8(OP_TASK_PAUSE)
            self.label_ref(stmt.label)
        elif isinstance(stmt, ObjectStep):
            self.u8(OP_OBJECT_INC if stmt.op == "++" else OP_OBJECT_DEC)
            self.object_name(stmt.obj)
            self.reference(stmt.ref)
        else:
            raise ScriptSyntaxError(f"Cannot encode {type(stmt).__name__}")

    def assignment(self, stmt):
        self.head(stmt.target)
        self.chain(stmt.formula)

    def conditional(self, stmt):
        self.u8(OP_IF)
        for clause in stmt.clauses:
            lhs_call = self.operand(clause.lhs, LHS)
            self.u8(COMPARISONS.index(clause.comparison))
            self.operand(clause.rhs, RHS, (lhs_call, COMPARISON_PARAM) if lhs_call else None)
            self.u8(CONJUNCTION_BYTES[clause.conjunction])

        end_pos = len(self.out)
        self.out += bytes(4)
        self.block(stmt.body)
        struct.pack_into('<I', self.out, end_pos, len(self.out))

    # -- values --

    def head(self, target):
        """Opcode and id of an assignable value, without trailing bytes."""
        if isinstance(target, FlagRef):
            self.u8(OP_FLAG)
            self.u16(self.symbols.flag_id(target.name))
        elif isinstance(target, VarRef):
            self.u8(OP_VARIABLE)
            self.u8(target.index)
        elif isinstance(target, ObjectRef):
            self.u8(OP_OBJECT_DOT)
            self.object_name(target.obj)
            self.reference(target.ref)
        else:
            raise ScriptSyntaxError(f"Cannot assign to {type(target).__name__}")

    def chain(self, chain: Chain):
        """Formula: first term, then operator bytes and terms, then 0 or a postfix."""
        self.value(chain.head, FORMULA)
        self.tail(chain)

    def tail(self, chain: Chain):
        for op, term in zip(chain.operators, chain.terms[1:]):
            self.u8(OPERATORS.index(op))
            self.value(term, FORMULA)
        if chain.postfix:
            self.u8(OP_POSTFIX_INC if chain.postfix == "++" else OP_POSTFIX_DEC)
            self.u8(0)
        else:
            self.u8(0)

    def operand(self, chain: Chain, mode: str, context=None):
        """
        One side of a comparison. Flags and variables (and properties on the
        left) carry an operator tail; anything else must stand alone.

        Returns the function name when the operand is a call.
        """
        head = chain.head
        if isinstance(head, (FlagRef, VarRef)) or (isinstance(head, ObjectRef) and mode == LHS):
            self.head(head)
            self.tail(chain)
            return None
        if chain.operators or chain.postfix:
            raise ScriptSyntaxError(f"Operators are not allowed after {type(head).__name__} here")
        self.value(head, mode, context)
        if isinstance(head, Call):
            return head.name
        if isinstance(head, ObjectCall):
            return head.call.name
        return None

    def value(self, value, mode: str, context=None):
        if isinstance(value, Call):
            self.call(value, with_opcode=True)
        elif isinstance(value, FlagRef):
            self.head(value)
            if mode == PARAMETER:
                self.out += bytes(2)
            elif mode != FORMULA:
                raise ScriptSyntaxError(f"Flag {value.name} needs '= value' here")
        elif isinstance(value, VarRef):
            self.head(value)
            if mode == PARAMETER:
                self.out += bytes(3)
            elif mode != FORMULA:
                raise ScriptSyntaxError(f"var{value.index} needs '= value' here")
        elif isinstance(value, Number):
            self.u8(self.numeric_opcode(mode, context))
            self.i32(value.value)
        elif isinstance(value, Text):
            self.text(value, mode, context)
        elif isinstance(value, ObjectRef):
            self.head(value)
        elif isinstance(value, ObjectCall):
            func = self.function(value.call.name)
            self.u8(OP_OBJECT_FUNC if func.kind == "function" else OP_OBJECT_TASK)
            self.object_name(value.obj)
            if mode != MAIN and value.call.multitask:
                raise ScriptSyntaxError("'@' is only allowed on statement object calls")
            self.call(value.call, with_opcode=(mode == MAIN))
        else:
            raise ScriptSyntaxError(f"Cannot encode {type(value).__name__}")

    def numeric_opcode(self, mode, context) -> int:
        if mode == PARAMETER and context and context[0] in GLOBAL_FLAG_FUNCTIONS:
            return OP_NUMERIC_ALT
        return OP_NUMERIC

    def text(self, value: Text, mode, context):
        kind = self.symbols.parameter_type(*context) if context and mode in (PARAMETER, RHS) else None
        if kind == PARAM_DIALOGUE:
            raw = value.value.encode(TEXT_ENCODING)
            if len(raw) != DIALOGUE_LABEL_SIZE:
                raise ScriptSyntaxError(
                    f"Dialogue label must be {DIALOGUE_LABEL_SIZE} characters: {value.value!r}")
            self.u8(self.numeric_opcode(mode, context))
            self.out += raw
            if value.value not in self.dialogue:
                self.dialogue.append(value.value)
        else:
            self.u8(OP_STRING)
            self.i32(self.add_string(value.value))

    def function(self, name: str):
        return self.symbols.function(self.symbols.function_id(name))

    def call(self, call: Call, with_opcode: bool):
        func_id = self.symbols.function_id(call.name)
        func = self.symbols.function(func_id)
        if with_opcode:
            if call.multitask:
                self.u8(OP_MULTITASK)
            else:
                self.u8(OP_TASK if func.kind == "task" else OP_FUNCTION)
        self.u16(func_id)
        if func_id == 0:
            if call.args:
                raise ScriptSyntaxError(f"{call.name} takes no parameters")
            return
        self.u8(len(call.args))
        for i, arg in enumerate(call.args):
            self.value(arg, PARAMETER, (call.name, i))

    def object_name(self, obj: str):
        if obj in OBJECT_NAMES:
            self.u8(OBJECT_NAMES.index(obj))
            self.u8(0)
        elif _NUMERIC_NAME.match(obj):
            value = int(obj)
            if self.variables is None or value not in self.variables:
                raise UnresolvedSymbolError("object variable value", obj)
            self.u8(OBJ_VARIABLE)
            self.u8(self.variables.index(value))
        elif _VARIABLE_NAME.match(obj):
            index = int(_VARIABLE_NAME.match(obj).group(1))
            if self.variables is not None and index >= len(self.variables):
                raise UnresolvedSymbolError("object variable", obj)
            self.u8(OBJ_VARIABLE)
            self.u8(index)
        else:
            self.u8(OBJ_STRING)
            self.u8(self.add_string(obj))

    def reference(self, name: str):
        self.u16(self.symbols.reference_id(name))

    # -- finish --

    def patch_labels(self):
        for label, positions in self.patches.items():
            if label not in self.label_defs:
                raise UnresolvedLabelError(self.name, label)
            for pos in positions:
                struct.pack_into('<I', self.out, pos, self.label_defs[label])

    def header_strings(self) -> list:
        return self.strings + [d for d in self.dialogue if d not in self.strings]


# =============================================================================
# PUBLIC API
# =============================================================================

def compile_header(header, symbols, variables=None) -> CompiledHeader:
    """Compile one parsed ScriptHeader."""
    encoder = HeaderEncoder(header.name, symbols, variables)
    encoder.block(header.body)
    try:
        encoder.patch_labels()
    except RedguardError as e:
        raise e.locate(header.line_no, header.line)

    script_pc = 0
    if header.start_label is not None:
        if header.start_label not in encoder.label_defs:
            raise UnresolvedLabelError(header.name, header.start_label).locate(header.line_no, header.line)
        script_pc = encoder.label_defs[header.start_label]

    attributes = bytearray(ATTRIBUTE_BLOCK_SIZE)
    for name, value, line_no, line in header.attributes:
        try:
            index = symbols.attribute_id(name)
        except RedguardError as e:
            raise e.locate(line_no, line)
        if index >= ATTRIBUTE_BLOCK_SIZE or not -128 <= value <= 255:
            raise ScriptSyntaxError(f"Attribute {name} = {value} out of range", line_no, line)
        attributes[index] = value & 0xFF

    compiled = CompiledHeader(header.name, encoder.out, script_pc, encoder.header_strings(),
                              attributes, header.variables, encoder.label_defs)
    logger.debug("Compiled %s: %d bytes, %d strings, %d labels", header.name,
                 len(compiled.script), len(compiled.strings), len(compiled.labels))
    return compiled


def recompile(text: str, symbols, variables=None) -> list:
    """
    Compile script text into one CompiledHeader per header, in text order.

    variables, when given, is one local variable list per header (same
    order); it resolves numeric object names back to variable indices.
    """
    compiled = []
    for i, header in enumerate(parse_script(text, symbols)):
        header_vars = variables[i] if variables is not None and i < len(variables) else None
        compiled.append(compile_header(header, symbols, header_vars))
    return compiled


def compile_map(container, text: str, symbols):
    """Recompile a whole map script into a new MapContainer."""
    compiled = recompile(text, symbols, [h.variables for h in container.headers])
    return container.with_compiled(compiled)
