from typing import Iterable

from .asm_parser import AsmLine


def format_line(line: AsmLine) -> str:
    if line.address is not None:
        return f"<{line.address:08x}> {line.text}"
    return line.text


def render_document(lines: Iterable[AsmLine]) -> str:
    """The text of an assembly view: one line per AsmLine, newline-terminated."""
    return "".join(format_line(line) + "\n" for line in lines)
