"""
redguard-re: Decoded script statements and their text rendering.

Rendering rules:
  - one statement per line, indented INDENT x depth
  - "{" lines when depth rises, "}" lines when it falls
  - a blank line and "#XX:" before any statement that is a jump target
  - an inline comment is appended as " // comment"
"""

from rglib.constants import COMMENT_PREFIX, INDENT, label_text


class Instruction:
    """One decoded statement at a script address."""

    def __init__(self, address: int, depth: int):
        self.address = address
        self.depth = depth
        self.parts = []
        self.comment = None
        self.empty_block = False   # statement owns a nested block with no statements

    def __repr__(self):
        return f"Instruction({self.address:#x}, depth={self.depth}, {self.text!r})"

    def append(self, text: str) -> 'Instruction':
        self.parts.append(text)
        return self

    @property
    def text(self) -> str:
        return ''.join(self.parts)

    def render(self, lines: list, previous_depth: int, labelled: bool = False):
        """Append this statement's lines, opening/closing braces from previous_depth."""
        if self.depth > previous_depth:
            for level in range(previous_depth, self.depth):
                lines.append(INDENT * level + "{")
        else:
            for level in range(previous_depth - 1, self.depth - 1, -1):
                lines.append(INDENT * level + "}")

        if labelled:
            lines.append("")
            lines.append(INDENT * self.depth + label_text(self.address) + ":")

        line = INDENT * self.depth + self.text
        if self.comment is not None:
            line += f" {COMMENT_PREFIX} {self.comment}"
        lines.append(line)

        if self.empty_block:
            lines.append(INDENT * self.depth + "{")
            lines.append(INDENT * self.depth + "}")


def render_script(name: str, script_pc: int, instructions, labels,
                  script_length: int = None) -> str:
    """
    Render a header's instruction list as script text.

    labels is the set of addresses that get a "#XX:" line. A label equal to
    script_length (a jump to the end of the script) is printed last.
    """
    lines = [name if script_pc <= 0 else
             f"{name} (Execution starts at {label_text(script_pc)})"]
    depth = 0
    for ins in instructions:
        ins.render(lines, depth, ins.address in labels)
        depth = ins.depth

    if depth == 0:
        lines.append("{")
        depth = 1
    for level in range(depth - 1, 0, -1):
        lines.append(INDENT * level + "}")
    if script_length is not None and script_length in labels:
        lines.append("")
        lines.append(INDENT + label_text(script_length) + ":")
    lines.append("}")
    return '\n'.join(lines)
