import os
import re
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Set, Tuple

TAB_WIDTH = 8

# --- REGEX REGISTRY ---

RE_LINE_END = re.compile(r"\r?\n")

# 1. SOURCE CORRELATION MARKERS
# GCC/Clang DWARF: .loc 1 42 5 prologue_end
RE_LOC = re.compile(r"^\s*\.loc\s+(\d+)\s+(\d+)")
# Older STABS output: .stabn 68,0,42,.LM1-.LFBB1
RE_STABN = re.compile(r"^\s*\.stabn\s+68\s*,\s*0\s*,\s*(\d+)\s*,")

# 2. FILE TABLE
# .file 1 "main.cpp"  /  .file 0 "/build/dir" "main.cpp" md5 0x...
RE_FILE = re.compile(r"^\s*\.file\s+(\d+)\s+\"([^\"]*)\"(?:\s+\"([^\"]*)\")?")

# 3. STRUCTURE
RE_LABEL = re.compile(r"^\s*[.$\w@?][\w$.@?]*:")
RE_QUOTED_LABEL = re.compile(r"^\s*\"[^\"]+\":")
RE_DIRECTIVE = re.compile(r"^\s*\.[a-zA-Z_][\w.]*")
RE_SECTION = re.compile(r"^\s*\.(section|text|data|bss|rodata)\b")
# Mach-O: __DWARF, __LD ... ELF: .debug_info, .note.GNU-stack, .comment
RE_SKIP_SECTION = re.compile(r"^\s*\.section\s+.*(__DWARF|__LD|__debug|__apple|__llvm|\.debug|\.note|\.comment)", re.IGNORECASE)
RE_LABEL_DEFINITION = re.compile(r"^\s*\.(set|equ|equiv)\b")
RE_DATA_DIRECTIVE = re.compile(r"^\s*\.(ascii|asciz|string)\b")
RE_END_BLOCK = re.compile(r"^\s*\.cfi_endproc\b")
RE_COMMENT_ONLY = re.compile(r"^\s*(#|;|//)")

# 4. BINARY (objdump -d)
#   401126:\t55                   \tpush   %rbp
RE_BINARY_INSTRUCTION = re.compile(r"^\s*([0-9a-fA-F]+):\s?(.*)$")
# 0000000000401126 <main>:
RE_BINARY_FUNCTION = re.compile(r"^([0-9a-fA-F]+)\s+<(.+)>:\s*$")


@dataclass
class AsmFilter:
    binary: bool = False
    directives: bool = True
    comment_only: bool = True
    # When set, only markers for this file move the source cursor
    source_filename: Optional[str] = None


@dataclass
class AsmLine:
    text: str
    source_line: Optional[int] = None
    address: Optional[int] = None


@dataclass
class SourceToAsmMap:
    """source line number -> assembly line indices, in first-seen order."""
    mapping: Dict[int, List[int]] = field(default_factory=dict)
    # asm index -> first source line it was added under
    _owners: Dict[int, int] = field(default_factory=dict, init=False, repr=False, compare=False)
    _pairs: Set[Tuple[int, int]] = field(default_factory=set, init=False, repr=False, compare=False)

    def __post_init__(self):
        for source_line, indices in self.mapping.items():
            for asm_index in indices:
                self._pairs.add((source_line, asm_index))
                self._owners.setdefault(asm_index, source_line)

    def add(self, source_line: int, asm_index: int):
        if (source_line, asm_index) in self._pairs:
            return
        self._pairs.add((source_line, asm_index))
        self._owners.setdefault(asm_index, source_line)
        self.mapping.setdefault(source_line, []).append(asm_index)

    def get(self, source_line: int) -> List[int]:
        return list(self.mapping.get(source_line, ()))

    def source_line_for(self, asm_index: int) -> Optional[int]:
        return self._owners.get(asm_index)

    def items(self) -> Iterator[Tuple[int, List[int]]]:
        return iter(self.mapping.items())

    def __contains__(self, source_line: int) -> bool:
        return source_line in self.mapping

    def __len__(self) -> int:
        return len(self.mapping)


def split_lines(text: str) -> List[str]:
    """Split on \\n or \\r\\n, dropping the empty piece after a final terminator."""
    lines = RE_LINE_END.split(text)
    if lines and lines[-1] == "":
        lines.pop()
    return lines


def expand_tabs(line: str, width: int = TAB_WIDTH) -> str:
    """Expand tabs to the next multiple of `width`; the column restarts on every line."""
    out = []
    column = 0
    for ch in line:
        if ch == "\t":
            spaces = width - (column % width)
            out.append(" " * spaces)
            column += spaces
        else:
            out.append(ch)
            column += 1
    return "".join(out)


class _SourceCursor:
    """Tracks which source line the instructions being read belong to."""

    def __init__(self, source_filename: Optional[str]):
        self.source_basename = os.path.basename(source_filename) if source_filename else None
        self.main_file_ids: Set[int] = set()
        self.line: Optional[int] = None

    def declare_file(self, match: "re.Match"):
        if not self.source_basename:
            return
        path = match.group(3) if match.group(3) is not None else match.group(2)
        if os.path.basename(path) == self.source_basename:
            self.main_file_ids.add(int(match.group(1)))

    def is_main(self, file_id: int) -> bool:
        # Unknown file table: every marker counts
        return not self.main_file_ids or file_id in self.main_file_ids

    def move(self, file_id: Optional[int], line: int):
        if line <= 0 or (file_id is not None and not self.is_main(file_id)):
            self.line = None
        else:
            self.line = line


class AsmParser:
    """
    Turns assembler text into AsmLines plus the source -> assembly index.
    Never raises: anything unrecognized is passed through as a plain line.
    """

    def process(self, asm: str, filters: Optional[AsmFilter] = None) -> Tuple[List[AsmLine], SourceToAsmMap]:
        filters = filters if filters else AsmFilter()
        raw_lines = split_lines(asm)
        if filters.binary:
            lines = self._process_binary(raw_lines)
        else:
            lines = self._process_asm(raw_lines, filters)
        return lines, self.build_map(lines)

    @staticmethod
    def build_map(lines: List[AsmLine]) -> SourceToAsmMap:
        source_map = SourceToAsmMap()
        for index, line in enumerate(lines):
            if line.source_line is not None:
                source_map.add(line.source_line, index)
        return source_map

    def _process_asm(self, raw_lines: List[str], filters: AsmFilter) -> List[AsmLine]:
        cursor = _SourceCursor(filters.source_filename)
        for raw in raw_lines:
            match = RE_FILE.match(raw)
            if match:
                cursor.declare_file(match)

        lines = []
        in_skipped_section = False
        for raw in raw_lines:
            if filters.directives and RE_SECTION.match(raw):
                # Debug info and notes are pages of .byte/.string with no display value
                in_skipped_section = bool(RE_SKIP_SECTION.match(raw))
                if in_skipped_section:
                    continue
            elif in_skipped_section:
                continue

            match = RE_LOC.match(raw)
            if match:
                cursor.move(int(match.group(1)), int(match.group(2)))
                continue
            match = RE_STABN.match(raw)
            if match:
                cursor.move(None, int(match.group(1)))
                continue

            if filters.comment_only and RE_COMMENT_ONLY.match(raw):
                continue

            if RE_END_BLOCK.match(raw):
                cursor.line = None

            if filters.directives and self._is_noise_directive(raw):
                continue

            lines.append(AsmLine(expand_tabs(raw), source_line=cursor.line))
        return lines

    @staticmethod
    def _is_noise_directive(line: str) -> bool:
        if not RE_DIRECTIVE.match(line):
            return False
        if RE_LABEL.match(line):
            return False
        if RE_SECTION.match(line) or RE_LABEL_DEFINITION.match(line) or RE_DATA_DIRECTIVE.match(line):
            return False
        return True

    @staticmethod
    def _process_binary(raw_lines: List[str]) -> List[AsmLine]:
        lines = []
        for raw in raw_lines:
            match = RE_BINARY_FUNCTION.match(raw)
            if match:
                lines.append(AsmLine(f"{match.group(2)}:", address=int(match.group(1), 16)))
                continue
            match = RE_BINARY_INSTRUCTION.match(raw)
            if match:
                lines.append(AsmLine(expand_tabs(match.group(2)), address=int(match.group(1), 16)))
                continue
            lines.append(AsmLine(expand_tabs(raw)))
        return lines


def parse(asm: str, filters: Optional[AsmFilter] = None) -> Tuple[List[AsmLine], SourceToAsmMap]:
    return AsmParser().process(asm, filters)
