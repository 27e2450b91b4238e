"""
redguard-re: Script text parser.

Three stages:

  1. preparse()   per line: drop // comments, tidy ", " and "++"/"--"
                  spacing, replace <ITEM NAME> / <MAP> with their ids
  2. tokenize()   one statement line -> [(kind, text), ...]
  3. parse_script()  lines -> ScriptHeader nodes with statement bodies

Script file layout (as written by decompile_map):

  Maps\\NAME.RGM                       preamble, skipped
  ID: 1                                preamble, skipped
  var2 = 10                            local variable override for the next header
  AttrName = 5                         attribute for the next header
  NAME (Execution starts at #1F)
  {
    statements, "#XX:" labels, nested { } after if
  }

Only stage 1 needs the symbol database.
"""

import re

from rglib.constants import COMPARISONS, OPERATORS
from rglib.errors import RedguardError, ScriptSyntaxError, UnresolvedSymbolError
from rglib.nodes import (
    Anchor, Assign, Call, Chain, Clause, Expr, FlagRef, If, Jump, Keyword,
    LabelDef, Number, ObjectCall, ObjectRef, ObjectStep, ScriptHeader,
    ScriptRvIf, TaskPause, Text, VarRef,
)


# =============================================================================
# PRE-PARSE
# =============================================================================

_QUOTED = re.compile(r'("[^"]*")')
_COMMA_SPACE = re.compile(r',\s+')
_POSTFIX = re.compile(r'(\+\+|--)')
# "<=" and "< x" are comparisons, never the start of a name
_BRACKETED = re.compile(r'<([^<>\s=](?:[^<>]*[^<>\s])?)>')
_RESERVED_BRACKETS = ("Anchor", "ScriptRv")


def _outside_quotes(line: str, fn) -> str:
    parts = _QUOTED.split(line)
    for i in range(0, len(parts), 2):
        parts[i] = fn(parts[i])
    return ''.join(parts)


def strip_comment(line: str) -> str:
    """Remove a // comment that is not inside a quoted string."""
    parts = _QUOTED.split(line)
    for i in range(0, len(parts), 2):
        cut = parts[i].find("//")
        if cut >= 0:
            return ''.join(parts[:i] + [parts[i][:cut]]).rstrip()
    return line


def substitute_names(line: str, symbols) -> str:
    """Replace <MAP> and <ITEM NAME> references with their numeric ids."""

    def replace(match):
        name = match.group(1)
        if name in _RESERVED_BRACKETS or name.startswith("TaskPause("):
            return match.group(0)
        if symbols.has_map(name):
            return str(symbols.map_id(name))
        if symbols.has_item(name):
            return str(symbols.item_id(name))
        raise UnresolvedSymbolError("item or map", name)

    return _outside_quotes(line, lambda part: _BRACKETED.sub(replace, part))


def preparse(text: str, symbols) -> list:
    """
    Normalize script text.

    Returns a list of (line number, original line, cleaned line), with
    cleaned lines stripped of surrounding whitespace.
    """
    lines = []
    for line_no, raw in enumerate(text.splitlines(), 1):
        line = strip_comment(raw)
        line = _outside_quotes(line, lambda part: _COMMA_SPACE.sub(",", part))
        line = _outside_quotes(line, lambda part: _POSTFIX.sub(r" \1", part))
        try:
            line = substitute_names(line, symbols)
        except RedguardError as e:
            raise e.locate(line_no, raw)
        lines.append((line_no, raw, line.strip()))
    return lines


# =============================================================================
# TOKENIZER
# =============================================================================

TOKEN_PATTERNS = [
    ('STRING',    r'"[^"]*"'),
    ('LABELDEF',  r'#[0-9A-Fa-f]+:'),
    ('LABEL',     r'#[0-9A-Fa-f]+'),
    ('TASKPAUSE', r'<TaskPause\(#[0-9A-Fa-f]+\)>'),
    ('KEYWORD',   r'<Anchor>|<ScriptRv>'),
    ('NAME',      r'@?[A-Za-z0-9_]*[A-Za-z_][A-Za-z0-9_]*'),
    ('NUMBER',    r'-?\d+'),
    ('OP',        r'\+\+|--|<<|>>|<=|>=|!=|[-+*/&|^=<>]'),
    ('LPAREN',    r'\('),
    ('RPAREN',    r'\)'),
    ('COMMA',     r','),
    ('DOT',       r'\.'),
    ('LBRACE',    r'\{'),
    ('RBRACE',    r'\}'),
    ('SPACE',     r'\s+'),
    ('MISMATCH',  r'.'),
]

_TOKEN_RE = re.compile('|'.join(f'(?P<{name}>{pat})' for name, pat in TOKEN_PATTERNS))


def tokenize(line: str) -> list:
    """Tokenize one cleaned script line."""
    tokens = []
    for match in _TOKEN_RE.finditer(line):
        kind = match.lastgroup
        value = match.group()
        if kind == 'SPACE':
            continue
        if kind == 'MISMATCH':
            raise ScriptSyntaxError(f"Unexpected character {value!r}")
        tokens.append((kind, value))
    return tokens


# =============================================================================
# STATEMENT PARSER
# =============================================================================

CHAIN_OPERATORS = frozenset(OPERATORS[1:10])
POSTFIX_OPERATORS = ("++", "--")
JUMP_KEYWORDS = ("Goto", "End", "Gosub")
PLAIN_KEYWORDS = ("Return", "Endint")

_VAR_NAME = re.compile(r'var(\d+)$')


def parse_statement(line: str):
    """Parse one statement line into a statement node."""
    tokens = tokenize(line)
    if not tokens:
        raise ScriptSyntaxError("Empty statement")
    pos = [0]

    def peek(offset=0):
        i = pos[0] + offset
        return tokens[i] if i < len(tokens) else (None, None)

    def consume(kind=None, value=None):
        tok = peek()
        if tok[0] is None:
            raise ScriptSyntaxError(f"Unexpected end of line, expected {value or kind}")
        if (kind and tok[0] != kind) or (value and tok[1] != value):
            raise ScriptSyntaxError(f"Expected {value or kind}, got {tok[1]!r}")
        pos[0] += 1
        return tok

    def at_end():
        return pos[0] >= len(tokens)

    def expect_end():
        if not at_end():
            raise ScriptSyntaxError(f"Unexpected {peek()[1]!r}")

    def parse_label(text):
        return int(text.lstrip('#').rstrip(':'), 16)

    def parse_int(text):
        value = int(text)
        if not -2**31 <= value < 2**32:
            raise ScriptSyntaxError(f"Number out of range: {text}")
        return value

    def parse_call(name):
        multitask = name.startswith("@")
        consume('LPAREN')
        args = []
        if peek()[0] != 'RPAREN':
            args.append(parse_term())
            while peek()[0] == 'COMMA':
                consume()
                args.append(parse_term())
        consume('RPAREN')
        return Call(name.lstrip("@"), args, multitask)

    def parse_object(obj):
        consume('DOT')
        kind, name = consume('NAME')
        if peek()[0] == 'LPAREN':
            return ObjectCall(obj, parse_call(name))
        if name.startswith("@"):
            raise ScriptSyntaxError(f"Expected a call after {name!r}")
        return ObjectRef(obj, name)

    def parse_term():
        kind, text = peek()
        if kind == 'STRING':
            consume()
            return Text(text[1:-1])
        if kind == 'NUMBER':
            consume()
            if peek()[0] == 'DOT':
                return parse_object(text)
            return Number(parse_int(text))
        if kind == 'NAME':
            consume()
            if peek()[0] == 'LPAREN':
                return parse_call(text)
            if text.startswith("@"):
                raise ScriptSyntaxError(f"Expected a call after {text!r}")
            if peek()[0] == 'DOT':
                return parse_object(text)
            var = _VAR_NAME.match(text)
            if var:
                return VarRef(int(var.group(1)))
            return FlagRef(text)
        raise ScriptSyntaxError(f"Expected a value, got {text!r}" if text else "Expected a value")

    def parse_chain():
        chain = Chain([parse_term()])
        while peek()[0] == 'OP':
            op = peek()[1]
            if op in POSTFIX_OPERATORS:
                consume()
                chain.postfix = op
                break
            if op not in CHAIN_OPERATORS:
                break
            consume()
            chain.operators.append(op)
            chain.terms.append(parse_term())
        return chain

    def parse_if():
        if peek() == ('KEYWORD', '<ScriptRv>'):
            consume()
            consume('OP', '=')
            value = parse_int(consume('NUMBER')[1])
            expect_end()
            return ScriptRvIf(value)
        clauses = []
        while True:
            lhs = parse_chain()
            kind, comparison = consume('OP')
            if comparison not in COMPARISONS:
                raise ScriptSyntaxError(f"Unknown comparison {comparison!r}")
            clause = Clause(lhs, comparison, parse_chain())
            clauses.append(clause)
            if at_end():
                return If(clauses)
            kind, word = consume('NAME')
            if word not in ("and", "or"):
                raise ScriptSyntaxError(f"Expected 'and' or 'or', got {word!r}")
            clause.conjunction = word

    kind, text = peek()
    nxt = peek(1)

    if kind == 'LABELDEF':
        consume()
        expect_end()
        return LabelDef(parse_label(text))

    if kind == 'TASKPAUSE':
        consume()
        expect_end()
        return TaskPause(parse_label(text[len("<TaskPause("):-2]))

    if kind == 'KEYWORD' and text == '<Anchor>':
        consume()
        consume('OP', '=')
        value = parse_int(consume('NUMBER')[1])
        expect_end()
        return Anchor(value)

    if kind == 'NAME' and nxt[0] != 'LPAREN':
        if text == "if":
            consume()
            return parse_if()
        if text in JUMP_KEYWORDS:
            consume()
            label = None
            if not at_end():
                label = parse_label(consume('LABEL')[1])
            expect_end()
            if text == "Gosub" and label is None:
                raise ScriptSyntaxError("Gosub needs a label")
            return Jump(text, label)
        if text in PLAIN_KEYWORDS:
            consume()
            expect_end()
            return Keyword(text)

    target = parse_term()
    if at_end():
        if isinstance(target, (Call, ObjectCall, Number, Text)):
            return Expr(target)
        raise ScriptSyntaxError("Expected '=' after the name")

    kind, op = consume('OP')
    if op in POSTFIX_OPERATORS and isinstance(target, ObjectRef):
        expect_end()
        return ObjectStep(target.obj, target.ref, op)
    if op != "=" or not isinstance(target, (FlagRef, VarRef, ObjectRef)):
        raise ScriptSyntaxError(f"Unexpected {op!r}")
    formula = parse_chain()
    expect_end()
    return Assign(target, formula)


# =============================================================================
# FILE PARSER
# =============================================================================

_PREAMBLE = re.compile(r'^(Maps\\|IDs?:)', re.IGNORECASE)
_VAR_LINE = re.compile(r'^var(\d+)\s*=\s*(-?\d+)$')
_ATTR_LINE = re.compile(r'^(\w+)\s*=\s*(-?\d+)$')
_HEADER_LINE = re.compile(r'^(\S+)(?:\s+\(Execution starts at (#[0-9A-Fa-f]+)\))?$')


class ScriptFileParser:
    """Walks pre-parsed lines and builds ScriptHeader nodes."""

    def __init__(self, lines):
        self.lines = lines
        self.index = 0

    def next_line(self):
        """Next non-blank (line_no, raw, text), or None at end of input."""
        while self.index < len(self.lines):
            entry = self.lines[self.index]
            self.index += 1
            if entry[2]:
                return entry
        return None

    def parse(self) -> list:
        headers = []
        attributes = []
        variables = {}
        while True:
            entry = self.next_line()
            if entry is None:
                break
            line_no, raw, text = entry

            if _PREAMBLE.match(text):
                continue
            m = _VAR_LINE.match(text)
            if m:
                variables[int(m.group(1))] = self._int32(m.group(2), line_no, raw)
                continue
            m = _ATTR_LINE.match(text)
            if m:
                attributes.append((m.group(1), int(m.group(2)), line_no, raw))
                continue
            m = _HEADER_LINE.match(text)
            if not m or text in ("{", "}"):
                raise ScriptSyntaxError("Expected a header name", line_no, raw)

            header = ScriptHeader(m.group(1), line_no=line_no, line=raw)
            if m.group(2):
                header.start_label = int(m.group(2)[1:], 16)
            header.attributes = attributes
            header.variables = variables
            attributes, variables = [], {}

            self.expect_open(header.name)
            header.body = self.parse_block(header.name)
            headers.append(header)

        if attributes or variables:
            raise ScriptSyntaxError("Attribute or variable lines after the last header")
        return headers

    def expect_open(self, owner: str):
        entry = self.next_line()
        if entry is None:
            raise ScriptSyntaxError(f"Missing '{{' after {owner}")
        line_no, raw, text = entry
        if text != "{":
            raise ScriptSyntaxError(f"Expected '{{' after {owner}", line_no, raw)

    def parse_block(self, owner: str) -> list:
        """Statements up to the matching '}' (the '{' is already consumed)."""
        body = []
        while True:
            entry = self.next_line()
            if entry is None:
                raise ScriptSyntaxError(f"Missing '}}' closing {owner}")
            line_no, raw, text = entry
            if text == "}":
                return body
            if text == "{":
                raise ScriptSyntaxError("Unexpected '{'", line_no, raw)
            try:
                stmt = parse_statement(text)
            except RedguardError as e:
                raise e.locate(line_no, raw)
            stmt.line_no = line_no
            stmt.line = raw
            if isinstance(stmt, (If, ScriptRvIf)):
                self.expect_open(f"line {line_no}")
                stmt.body = self.parse_block(f"line {line_no}")
            body.append(stmt)

    @staticmethod
    def _int32(text, line_no, raw) -> int:
        value = int(text)
        if not -2**31 <= value < 2**31:
            raise ScriptSyntaxError(f"Variable value out of range: {value}", line_no, raw)
        return value


def parse_script(text: str, symbols) -> list:
    """Parse a script file into ScriptHeader nodes."""
    return ScriptFileParser(preparse(text, symbols)).parse()
