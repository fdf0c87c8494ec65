"""
Tests for the assembly parser (asm_parser.py).
Covers source-line correlation, directive filtering and tab expansion.
"""
import pytest
from asmlens.parsing import process_assembly, render_document
from asmlens.parsing.asm_parser import (
    AsmFilter,
    AsmLine,
    AsmParser,
    SourceToAsmMap,
    expand_tabs,
    parse,
    split_lines,
)


SIMPLE_ASM = """\
\t.file\t"main.c"
foo:
\t.loc 1 10 0
\tpushq\t%rbp
\tmovl\t$1, %eax
\t.loc 1 11 0
\tret
"""


def _texts(lines):
    return [line.text.strip() for line in lines]


class TestSplitLines:

    def test_lf_and_crlf(self):
        assert split_lines("a\r\nb\nc") == ["a", "b", "c"]

    def test_final_terminator_dropped(self):
        assert split_lines("a\nb\n") == ["a", "b"]

    def test_blank_lines_kept(self):
        assert split_lines("a\n\nb") == ["a", "", "b"]

    def test_empty(self):
        assert split_lines("") == []


class TestExpandTabs:

    def test_tab_to_next_stop(self):
        assert expand_tabs("a\tb") == "a" + " " * 7 + "b"
        assert expand_tabs("a\tb").index("b") == 8

    def test_leading_tab(self):
        assert expand_tabs("\tret") == " " * 8 + "ret"

    def test_full_column_moves_to_next_stop(self):
        assert expand_tabs("12345678\tx").index("x") == 16

    def test_custom_width(self):
        assert expand_tabs("ab\tc", width=4) == "ab  c"

    def test_column_restarts_each_line(self):
        lines, _ = parse("abc\nd\te\n")
        assert lines[1].text.index("e") == 8


class TestSourceMapping:
    """Test the source line -> assembly index map."""

    def test_basic_map(self):
        lines, mapping = parse(SIMPLE_ASM)
        assert mapping.mapping == {10: [1, 2], 11: [3]}
        assert lines[mapping.get(11)[0]].text.strip() == "ret"

    def test_marker_lines_not_emitted(self):
        lines, _ = parse(SIMPLE_ASM)
        for line in lines:
            assert ".loc" not in line.text

    def test_lines_before_first_marker_unmapped(self):
        lines, _ = parse(SIMPLE_ASM)
        assert lines[0].text.strip() == "foo:"
        assert lines[0].source_line is None

    def test_indices_always_valid(self):
        lines, mapping = parse(SIMPLE_ASM)
        for source_line, indices in mapping.items():
            for index in indices:
                assert 0 <= index < len(lines)
                assert lines[index].source_line == source_line

    def test_line_zero_unsets_cursor(self):
        asm = "\t.loc 1 5 0\n\tnop\n\t.loc 1 0 0\n\tnop\n"
        lines, mapping = parse(asm)
        assert lines[0].source_line == 5
        assert lines[1].source_line is None
        assert mapping.mapping == {5: [0]}

    def test_cfi_endproc_resets_cursor(self):
        asm = "f:\n\t.loc 1 3 0\n\tret\n\t.cfi_endproc\ng:\n\tret\n"
        lines, mapping = parse(asm)
        assert mapping.mapping == {3: [1]}
        assert lines[-1].source_line is None

    def test_stabn_markers(self):
        asm = "\t.stabn 68,0,7,.LM1-.LFBB1\n\tmovl $0, %eax\n"
        lines, mapping = parse(asm)
        assert mapping.mapping == {7: [0]}

    def test_revisited_line_appends(self):
        asm = "\t.loc 1 2 0\n\tnop\n\t.loc 1 3 0\n\tnop\n\t.loc 1 2 0\n\tret\n"
        _, mapping = parse(asm)
        assert mapping.get(2) == [0, 2]

    def test_get_returns_copy(self):
        _, mapping = parse(SIMPLE_ASM)
        mapping.get(10).append(99)
        assert mapping.get(10) == [1, 2]

    def test_no_markers(self):
        lines, mapping = parse("foo:\n\tret\n")
        assert len(lines) == 2
        assert len(mapping) == 0

    def test_empty_input(self):
        lines, mapping = parse("")
        assert lines == []
        assert len(mapping) == 0


class TestMainFileFiltering:
    """Markers pointing into headers do not move the cursor."""

    ASM = """\
\t.file 1 "main.cpp"
\t.file 2 "/usr/include/c++/vector"
main:
\t.loc 1 4 0
\tpushq %rbp
\t.loc 2 120 0
\tcall helper
\t.loc 1 5 0
\tret
"""

    def test_header_markers_ignored(self):
        lines, mapping = process_assembly(self.ASM, source_filename="/src/main.cpp")
        assert set(mapping.mapping) == {4, 5}
        assert lines[2].source_line is None

    def test_without_source_name_every_marker_counts(self):
        _, mapping = parse(self.ASM)
        assert 120 in mapping

    def test_dwarf5_directory_form(self):
        asm = '\t.file 0 "/build" "main.cpp" md5 0xabc\n\t.file 1 "other.h"\n\t.loc 0 9 0\n\tnop\n\t.loc 1 3 0\n\tnop\n'
        _, mapping = process_assembly(asm, source_filename="main.cpp")
        assert set(mapping.mapping) == {9}


class TestDirectiveFiltering:

    ASM = """\
\t.section\t.rodata
.LC0:
\t.string\t"hi"
\t.text
\t.globl\tmain
\t.type\tmain, @function
main:
\t.cfi_startproc
\t.set\tFOO, 1
\tret
\t.cfi_endproc
\t.size\tmain, .-main
\t.section\t.debug_info,"",@progbits
\t.long\t0x100
\t.byte\t0x4
\t.section\t.note.GNU-stack,"",@progbits
"""

    def test_noise_removed(self):
        lines, _ = parse(self.ASM)
        text = render_document(lines)
        assert ".globl" not in text
        assert ".type" not in text
        assert ".cfi_startproc" not in text
        assert ".size" not in text

    def test_structure_kept(self):
        lines, _ = parse(self.ASM)
        texts = _texts(lines)
        assert "main:" in texts
        assert ".LC0:" in texts
        assert any(t.startswith(".section") and ".rodata" in t for t in texts)
        assert any(t.startswith(".string") for t in texts)
        assert any(t.startswith(".set") for t in texts)
        assert any(t.startswith(".text") for t in texts)

    def test_debug_sections_skipped(self):
        lines, _ = parse(self.ASM)
        text = render_document(lines)
        assert ".debug_info" not in text
        assert "0x100" not in text
        assert ".note.GNU-stack" not in text

    def test_filter_disabled_keeps_everything_but_markers(self):
        asm = self.ASM + "\t.loc 1 1 0\n"
        lines, _ = process_assembly(asm, filter_directives=False)
        text = render_document(lines)
        assert ".globl" in text
        assert ".debug_info" in text
        assert ".loc" not in text

    def test_comment_only_lines(self):
        lines, _ = parse("# note\n\tret\n  // x\n")
        assert _texts(lines) == ["ret"]

    def test_comment_only_disabled(self):
        lines, _ = parse("# note\n\tret\n", AsmFilter(comment_only=False))
        assert len(lines) == 2


class TestBinaryMode:

    OBJDUMP = """\
0000000000401126 <main>:
  401126:\t55                   \tpush   %rbp
  401127:\t48 89 e5             \tmov    %rsp,%rbp

Disassembly of section .fini:
"""

    def test_addresses_parsed(self):
        lines, mapping = parse(self.OBJDUMP, AsmFilter(binary=True))
        assert lines[0].text == "main:"
        assert lines[0].address == 0x401126
        assert lines[1].address == 0x401126
        assert lines[2].address == 0x401127
        assert len(mapping) == 0

    def test_passthrough_lines(self):
        lines, _ = parse(self.OBJDUMP, AsmFilter(binary=True))
        assert lines[3].address is None
        assert lines[4].text.startswith("Disassembly")

    def test_rendered_with_address_prefix(self):
        lines, _ = parse(self.OBJDUMP, AsmFilter(binary=True))
        rendered = render_document(lines).splitlines()
        assert rendered[0] == "<00401126> main:"
        assert rendered[3] == ""


class TestSourceToAsmMap:

    def test_add_dedups(self):
        source_map = SourceToAsmMap()
        source_map.add(1, 0)
        source_map.add(1, 0)
        source_map.add(1, 3)
        assert source_map.get(1) == [0, 3]

    def test_reverse_lookup(self):
        source_map = SourceToAsmMap({4: [1, 2]})
        assert source_map.source_line_for(2) == 4
        assert source_map.source_line_for(9) is None
        assert 4 in source_map
        assert source_map.get(5) == []

    def test_build_map(self):
        lines = [AsmLine("a", 1), AsmLine("b"), AsmLine("c", 1)]
        assert AsmParser.build_map(lines).mapping == {1: [0, 2]}

    def test_add_dedups_interleaved(self):
        source_map = SourceToAsmMap()
        source_map.add(1, 0)
        source_map.add(2, 0)
        source_map.add(2, 0)
        source_map.add(1, 0)
        assert source_map.get(1) == [0]
        assert source_map.get(2) == [0]
        assert source_map.source_line_for(0) == 1

    def test_reverse_lookup_after_add(self):
        source_map = SourceToAsmMap({4: [1]})
        source_map.add(7, 5)
        assert source_map.source_line_for(5) == 7
        assert source_map.source_line_for(1) == 4


class TestRenderDocument:

    def test_every_line_terminated(self):
        assert render_document([AsmLine("a"), AsmLine("b")]) == "a\nb\n"

    def test_empty(self):
        assert render_document([]) == ""
