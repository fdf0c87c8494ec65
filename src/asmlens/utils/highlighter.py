import re
from typing import List, Optional

from rich.text import Text

from ..parsing.asm_parser import AsmLine
from ..parsing.document import format_line

REGISTERS = re.compile(
    r"%?\b("
    r"r[abcd]x|r[sd]i|r[bs]p|rip|r(?:8|9|1[0-5])[dwb]?"
    r"|e[abcd]x|e[sd]i|e[bs]p"
    r"|[abcd][hl]|[abcd]x|[sd]il?|[bs]pl?"
    r"|[xyz]mm[0-9]+"
    r"|[xw](?:[12]?[0-9]|3[01])|sp|lr"
    r")\b",
    re.IGNORECASE,
)

SIZE_KEYWORDS = re.compile(r"\b(DWORD|QWORD|WORD|BYTE|PTR)\b")

NUMBERS = re.compile(r"\$?-?\b(0x[0-9a-fA-F]+|[0-9]+)\b")

MNEMONIC = re.compile(r"^\s+([a-z][a-z0-9.]*)\b", re.IGNORECASE)

LABEL = re.compile(r"^(\s*[.$\w@?][\w$.@?]*:)")

DIRECTIVE = re.compile(r"^\s*\.[a-zA-Z_][\w.]*")

# Alternating tints make runs of one source line stand out
BLOCK_TINTS = ("on #101828", "on #181018")


def highlight_line(line: str, bg: str = "") -> Text:
    """
    Syntax-highlight one assembly line.

      - Labels -> YELLOW / bold
      - Directives -> DIM
      - Mnemonics -> BLUE
      - Size keywords (DWORD, PTR, etc.) -> MAGENTA
      - Numeric literals -> CYAN
      - Registers -> RED / bold
    """
    text = Text(line, style=bg)

    label = LABEL.match(line)
    if label:
        text.stylize("bold yellow", 0, label.end())
        return text

    directive = DIRECTIVE.match(line)
    if directive:
        text.stylize("dim", 0, len(line))
        return text

    mnemonic = MNEMONIC.match(line)
    if mnemonic:
        text.stylize("blue", mnemonic.start(1), mnemonic.end(1))

    for pattern, style in ((SIZE_KEYWORDS, "magenta"), (NUMBERS, "cyan"), (REGISTERS, "bold red")):
        for m in pattern.finditer(line, mnemonic.end() if mnemonic else 0):
            text.stylize(style, m.start(), m.end())

    return text


def build_view(lines: List[AsmLine], gutter_width: int = 5) -> Text:
    """
    Render assembly with the originating source line number in a left gutter.
    Consecutive lines from the same source line share a background tint.
    """
    result = Text()
    block = -1
    previous: Optional[int] = None

    for i, line in enumerate(lines):
        if line.source_line is not None and line.source_line != previous:
            block += 1
        previous = line.source_line
        bg = BLOCK_TINTS[block % len(BLOCK_TINTS)] if line.source_line is not None else ""

        if line.source_line is not None:
            result.append(f"{line.source_line:>{gutter_width}} ", style="dim")
        else:
            result.append(" " * (gutter_width + 1))
        result.append_text(highlight_line(format_line(line), bg))

        if i + 1 < len(lines):
            result.append("\n")

    if not lines:
        result.append("(no assembly generated)", style="dim italic")
    return result
