from dataclasses import dataclass, field
from typing import List, Optional
from ..parsing.asm_parser import AsmLine, SourceToAsmMap
from ..parsing.diagnostics import Diagnostic
from ..parsing.document import render_document


@dataclass
class AsmViewState:
    """
    The single source of truth for what the assembly view shows.
    """
    source_path: str = ""
    source_lines: List[str] = field(default_factory=list)

    # Assembly Data
    asm_lines: List[AsmLine] = field(default_factory=list)
    asm_mapping: SourceToAsmMap = field(default_factory=SourceToAsmMap)

    # Compiler Metadata & Errors
    compiler_output: str = ""
    user_args: List[str] = field(default_factory=list)
    diagnostics: List[Diagnostic] = field(default_factory=list)
    last_update: float = 0.0

    @property
    def has_errors(self) -> bool:
        """Returns True if any diagnostic is marked as an error."""
        return any(d.is_error for d in self.diagnostics)

    @property
    def asm_text(self) -> str:
        return render_document(self.asm_lines)

    def asm_lines_for_source(self, line_num: int) -> List[int]:
        """Assembly indices generated from a 1-based source line; empty if none."""
        return self.asm_mapping.get(line_num)

    def get_source_line_for_asm(self, asm_idx: int) -> Optional[str]:
        if not 0 <= asm_idx < len(self.asm_lines):
            return None
        line_num = self.asm_lines[asm_idx].source_line
        if line_num and 0 < line_num <= len(self.source_lines):
            return self.source_lines[line_num - 1]
        return None

    def update_asm(self, lines: List[AsmLine], mapping: SourceToAsmMap, timestamp: float):
        self.asm_lines = lines
        self.asm_mapping = mapping
        self.last_update = timestamp
