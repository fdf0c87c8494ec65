from .asm_parser import AsmFilter, AsmLine, AsmParser, SourceToAsmMap, expand_tabs, parse, split_lines
from .diagnostics import Diagnostic, parse_diagnostics
from .document import render_document
from typing import List, Optional, Tuple


def process_assembly(
    asm: str, source_filename: Optional[str] = None, filter_directives: bool = True
) -> Tuple[List[AsmLine], SourceToAsmMap]:
    """
    Demangled compiler output -> display lines + source mapping.
    """
    filters = AsmFilter(directives=filter_directives, source_filename=source_filename)
    return AsmParser().process(asm, filters)
