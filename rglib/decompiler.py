"""
redguard-re: Script bytecode decompiler.

Turns a header's RASC bytes into editable script text. Every statement
starts with one opcode byte; how the following bytes are read depends on
the opcode and on where the value appears (the "mode"):

  MAIN       statement position; flags/variables/properties take " = formula"
  LHS/RHS    either side of an if comparison; flags/variables take an
             operator byte, properties only on the left
  PARAMETER  call argument; flags are padded by 2 bytes, variables by 3
  FORMULA    term of a formula; no trailing bytes
  REFERENCE  the call following an object in statement position

Opcode table (see rglib.constants):

  0/1/2   call: u16 function id, u8 count (absent for id 0), count values
  3       if: (LHS cmp RHS conj)+, u32 script offset where the block ends, block
  4/5/17  Goto/End/Gosub: u32 label (0 = none for Goto/End)
  6       flag: u16 id
  7/22    number: i32, or a 4-byte dialogue label for dialogue parameters
  10      local variable: u8 index
  15/16   Object.Ref++ / Object.Ref--
  18/19   Return / Endint
  20      Object.Ref
  21      string: u32 index into the header's strings
  23      <Anchor>=u8
  25/26   Object.Task(...)
  27      <TaskPause(#label)>
  30      if <ScriptRv> = u8, then a 4-byte block

Object selector byte: 0/1/2 Me/Player/Camera (+1 pad byte),
4 header string[u8], 10 header variable[u8]. A variable prints as its
value, or as varN when an earlier variable holds the same value.
"""

import logging
import struct

from rglib.constants import (
    COMPARISONS, CONJUNCTIONS, DIALOGUE_LABEL_SIZE, OBJECT_NAMES, OBJ_STRING,
    OBJ_VARIABLE, OPERATORS, OP_ANCHOR, OP_END, OP_ENDINT, OP_FLAG, OP_FUNCTION,
    OP_GOSUB, OP_GOTO, OP_IF, OP_MULTITASK, OP_NUMERIC, OP_NUMERIC_ALT,
    OP_OBJECT_DEC, OP_OBJECT_DOT, OP_OBJECT_FUNC, OP_OBJECT_INC, OP_OBJECT_TASK,
    OP_POSTFIX_DEC, OP_POSTFIX_INC, OP_RETURN, OP_SCRIPT_RV, OP_STRING,
    OP_TASK, OP_TASK_PAUSE, OP_VARIABLE, PARAM_DIALOGUE, PARAM_ITEM, PARAM_MAP,
    SCRIPT_RV_BLOCK_SIZE, TEXT_ENCODING, label_text,
)
from rglib.errors import FormatError, TruncatedDataError, UnknownOpcodeError
from rglib.instruction import Instruction, render_script

logger = logging.getLogger(__name__)

MAIN = "main"
LHS = "lhs"
RHS = "rhs"
PARAMETER = "parameter"
FORMULA = "formula"
REFERENCE = "reference"

# Context index used for the right-hand side of a comparison against a call
COMPARISON_PARAM = 9


# =============================================================================
# DECODER
# =============================================================================

class ScriptDecoder:
    """Cursor-driven recursive descent over one header's script bytes."""

    def __init__(self, header, symbols, lenient: bool = False):
        self.header = header
        self.symbols = symbols
        self.lenient = lenient
        self.data = header.script
        self.pos = 0
        self.depth = 0
        self.instructions = []
        self.labels = set()
        self.current = None

        self._handlers = {
            OP_TASK: self._call, OP_MULTITASK: self._call, OP_FUNCTION: self._call,
            OP_IF: self._if,
            OP_GOTO: self._jump, OP_END: self._jump,
            OP_FLAG: self._flag,
            OP_NUMERIC: self._numeric, OP_NUMERIC_ALT: self._numeric,
            OP_VARIABLE: self._variable,
            OP_OBJECT_INC: self._object_step, OP_OBJECT_DEC: self._object_step,
            OP_GOSUB: self._gosub,
            OP_RETURN: self._keyword, OP_ENDINT: self._keyword,
            OP_OBJECT_DOT: self._object_dot,
            OP_STRING: self._string,
            OP_ANCHOR: self._anchor,
            OP_OBJECT_TASK: self._object_task, OP_OBJECT_FUNC: self._object_task,
            OP_TASK_PAUSE: self._task_pause,
            OP_SCRIPT_RV: self._script_rv,
        }

    # -- raw reads --

    def _take(self, size: int) -> bytes:
        if self.pos + size > len(self.data):
            raise TruncatedDataError(f"{self.header.name}: script", self.pos, size,
                                     len(self.data) - self.pos)
        chunk = self.data[self.pos:self.pos + size]
        self.pos += size
        return chunk

    def u8(self) -> int:
        return self._take(1)[0]

    def u16(self) -> int:
        return struct.unpack('<H', self._take(2))[0]

    def u32(self) -> int:
        return struct.unpack('<I', self._take(4))[0]

    def i32(self) -> int:
        return struct.unpack('<i', self._take(4))[0]

    def emit(self, text: str):
        self.current.append(text)

    def unknown(self, kind: str, value: int, offset: int):
        if not self.lenient:
            raise UnknownOpcodeError(kind, value, offset)
        logger.warning("%s: skipping unknown %s %d at offset %#x",
                       self.header.name, kind, value, offset)

    def add_label(self, address: int) -> str:
        self.labels.add(address)
        return label_text(address)

    # -- structure --

    def block(self, end: int):
        """Read statements until the cursor reaches end, one level deeper."""
        owner = self.current
        count = len(self.instructions)
        self.depth += 1
        while self.pos < end:
            self.current = Instruction(self.pos, self.depth)
            self.instructions.append(self.current)
            self.value(MAIN)
        self.depth -= 1
        if owner is not None and len(self.instructions) == count:
            owner.empty_block = True

    def value(self, mode: str, context=None):
        """
        Decode one opcode-tagged value and append its text.

        Returns the function name when the value was a call, so a comparison
        can type its right-hand side.
        """
        offset = self.pos
        opcode = self.u8()
        handler = self._handlers.get(opcode)
        if handler is None:
            self.unknown("opcode", opcode, offset)
            return None
        return handler(opcode, mode, context)

    def formula(self):
        self.emit(" = ")
        self.value(FORMULA)
        self.operator_chain()

    def operator_chain(self):
        """Operator bytes and their operands; 0 or a postfix ends the chain."""
        while self.operator():
            self.value(FORMULA)

    def operator(self) -> bool:
        offset = self.pos
        op = self.u8()
        if op in (OP_POSTFIX_INC, OP_POSTFIX_DEC):
            self.emit(OPERATORS[op])
            self.u8()
            return False
        if 0 < op < OP_POSTFIX_INC:
            self.emit(f" {OPERATORS[op]} ")
            return True
        if op != 0:
            self.unknown("operator", op, offset)
        return False

    def object_name(self):
        offset = self.pos
        selector = self.u8()
        if selector < len(OBJECT_NAMES):
            self.emit(OBJECT_NAMES[selector])
            self.u8()
        elif selector == OBJ_STRING:
            self.emit(self._header_string(self.u8()))
        elif selector == OBJ_VARIABLE:
            index = self.u8()
            if index >= len(self.header.variables):
                raise FormatError(f"{self.header.name}: object variable {index} out of range")
            value = self.header.variables[index]
            # a value held by an earlier variable would re-encode as that index
            if self.header.variables.index(value) == index:
                self.emit(str(value))
            else:
                self.emit(f"var{index}")
        else:
            self.unknown("object selector", selector, offset)
        self.emit(".")

    def reference_name(self):
        self.emit(self.symbols.reference(self.u16() & 0xFF))

    def _header_string(self, index: int) -> str:
        if index >= len(self.header.strings):
            raise FormatError(f"{self.header.name}: string {index} out of range "
                              f"({len(self.header.strings)} strings)")
        return self.header.strings[index]

    def call_text(self, multitask: bool = False) -> str:
        func_id = self.u16()
        func = self.symbols.function(func_id)
        self.emit(("@" if multitask else "") + func.name + "(")
        count = self.u8() if func_id != 0 else 0
        for i in range(count):
            if i:
                self.emit(", ")
            self.value(PARAMETER, (func.name, i))
        self.emit(")")
        return func.name

    def typed_number(self, context) -> str:
        """Read a parameter literal, typed by the function it is passed to."""
        kind = self.symbols.parameter_type(*context) if context else None

        if kind == PARAM_DIALOGUE:
            label = self._take(DIALOGUE_LABEL_SIZE).decode(TEXT_ENCODING)
            subtitle = self.symbols.subtitle(label)
            if subtitle is not None:
                self.current.comment = f"Dlg {label} = {subtitle}"
            return f'"{label}"'

        value = self.i32()
        if kind == PARAM_ITEM:
            name = self.symbols.item_name(value)
            if name and self.symbols.has_item(name) and self.symbols.item_id(name) == value:
                return f"<{name}>"
        elif kind == PARAM_MAP:
            name = self.symbols.map_name(value)
            if name and self.symbols.map_id(name) == value:
                return f"<{name}>"
        return str(value)

    # -- opcode handlers --

    def _call(self, opcode, mode, context):
        return self.call_text(opcode == OP_MULTITASK)

    def _if(self, opcode, mode, context):
        self.emit("if ")
        while True:
            lhs_call = self.value(LHS)
            offset = self.pos
            comparison = self.u8()
            if comparison < len(COMPARISONS):
                self.emit(f" {COMPARISONS[comparison]} ")
            else:
                self.unknown("comparison", comparison, offset)
            self.value(RHS, (lhs_call, COMPARISON_PARAM) if lhs_call else None)

            offset = self.pos
            conjunction = self.u8()
            if conjunction not in CONJUNCTIONS:
                self.unknown("conjunction", conjunction, offset)
                break
            if CONJUNCTIONS[conjunction] is None:
                break
            self.emit(f" {CONJUNCTIONS[conjunction]} ")

        self.block(self.u32())

    def _jump(self, opcode, mode, context):
        label = self.u32()
        self.emit("Goto" if opcode == OP_GOTO else "End")
        if label:
            self.emit(" " + self.add_label(label))

    def _gosub(self, opcode, mode, context):
        self.emit("Gosub " + self.add_label(self.u32()))

    def _keyword(self, opcode, mode, context):
        self.emit("Return" if opcode == OP_RETURN else "Endint")

    def _flag(self, opcode, mode, context):
        flag = self.symbols.flag(self.u16())
        self.emit(flag.name)
        if mode == MAIN:
            self.formula()
            if flag.comment is not None:
                self.current.comment = flag.comment
        elif mode in (LHS, RHS):
            self.operator_chain()
        elif mode == PARAMETER:
            self._take(2)

    def _numeric(self, opcode, mode, context):
        if mode in (PARAMETER, RHS):
            self.emit(self.typed_number(context))
        else:
            self.emit(str(self.i32()))

    def _variable(self, opcode, mode, context):
        self.emit(f"var{self.u8()}")
        if mode == MAIN:
            self.formula()
        elif mode in (LHS, RHS):
            self.operator_chain()
        elif mode == PARAMETER:
            self._take(3)

    def _object_step(self, opcode, mode, context):
        self.object_name()
        self.reference_name()
        self.emit("++" if opcode == OP_OBJECT_INC else "--")

    def _object_dot(self, opcode, mode, context):
        self.object_name()
        self.reference_name()
        if mode == MAIN:
            self.formula()
        elif mode == LHS:
            self.operator_chain()

    def _string(self, opcode, mode, context):
        self.emit(f'"{self._header_string(self.u32())}"')

    def _anchor(self, opcode, mode, context):
        self.emit(f"<Anchor>={self.u8()}")

    def _object_task(self, opcode, mode, context):
        self.object_name()
        if mode == MAIN:
            return self.value(REFERENCE)
        return self.call_text()

    def _task_pause(self, opcode, mode, context):
        self.emit(f"<TaskPause({self.add_label(self.u32())})>")

    def _script_rv(self, opcode, mode, context):
        self.emit(f"if <ScriptRv> = {self.u8()}")
        self.block(self.pos + SCRIPT_RV_BLOCK_SIZE)


# =============================================================================
# PUBLIC API
# =============================================================================

def decode_instructions(header, symbols, lenient: bool = False) -> ScriptDecoder:
    """Decode a header's script; returns the decoder with instructions and labels."""
    decoder = ScriptDecoder(header, symbols, lenient)
    decoder.block(len(header.script))
    if header.script_pc > 0:
        decoder.labels.add(header.script_pc)

    addresses = {ins.address for ins in decoder.instructions}
    addresses.add(len(header.script))
    for label in sorted(decoder.labels - addresses):
        logger.warning("%s: label %s does not start a statement",
                       header.name, label_text(label))
    return decoder


def decompile(header, symbols, lenient: bool = False) -> str:
    """Decompile one header's script bytes into script text."""
    decoder = decode_instructions(header, symbols, lenient)
    return render_script(header.name, header.script_pc, decoder.instructions,
                         decoder.labels, len(header.script))


def decompile_map(container, symbols, map_name: str = None, map_ids=(),
                  lenient: bool = False) -> str:
    """
    Decompile every header of a map into one editable script file.

    With map_name, the file starts with "Maps\\NAME.RGM" and its world ids.
    Each header is preceded by its editable local variables (var2 .. varN-3,
    for headers with more than 4) and its non-zero attributes.
    """
    out = []
    if map_name:
        ids = list(map_ids) or symbols.map_ids(map_name)
        out.append(f"Maps\\{map_name}.RGM\n")
        out.append("IDs: " if len(ids) > 1 else "ID: ")
        out.append(", ".join(str(i) for i in ids) + "\n\n")

    for i, header in enumerate(container.headers):
        if i > 0:
            out.append("\n\n")
        variables = header.variables
        if len(variables) > 4:
            for j in range(2, len(variables) - 2):
                out.append(f"var{j} = {variables[j]}\n")
            out.append("\n")
        attributes = header.attribute_values()
        for index, value in attributes:
            out.append(f"{symbols.attribute(index)} = {value}\n")
        if attributes:
            out.append("\n")
        out.append(decompile(header, symbols, lenient))
    return ''.join(out)
