"""
Tests for the command line entry point. The engine is mocked out.
"""
import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from rich.console import Console

from asmlens.main import _build_parser, _printer, run
from asmlens.parsing.asm_parser import AsmLine
from asmlens.utils.state import AsmViewState


class TestArgParser:

    def test_file_argument(self):
        args = _build_parser().parse_args(["main.cpp"])
        assert args.file == "main.cpp"
        assert args.kind == "asm"
        assert args.args == ""
        assert not args.watch

    def test_options(self):
        args = _build_parser().parse_args([
            "a.c", "--build-dir", "build", "--args", "gcc -O3", "--kind", "llvm", "--all-directives", "-v",
        ])
        assert args.build_dir == "build"
        assert args.args == "gcc -O3"
        assert args.kind == "llvm"
        assert args.all_directives
        assert args.verbose

    def test_bad_kind_rejected(self):
        with pytest.raises(SystemExit):
            _build_parser().parse_args(["a.c", "--kind", "wasm"])


class TestPrinter:

    def test_plain_output(self):
        console = Console(record=True, width=120)
        state = AsmViewState(asm_lines=[AsmLine("f:"), AsmLine("        ret", 1)])
        _printer(console, plain=True)(state)
        assert console.export_text() == "f:\n        ret\n"

    def test_compiler_output_wins(self):
        console = Console(record=True, width=120)
        state = AsmViewState(compiler_output="a.c:1:1: error: [x]")
        _printer(console, plain=False)(state)
        assert "error: [x]" in console.export_text()


@pytest.fixture
def engine_cls():
    with patch("asmlens.main.AsmEngine") as cls, patch("asmlens.main.ConfigManager") as config_cls, \
            patch("asmlens.main.setup_logging"):
        config_cls.return_value.get.return_value = "INFO"
        config_cls.return_value.config = {}
        engine = cls.return_value
        engine.refresh = AsyncMock(return_value=AsmViewState())
        yield cls


class TestRun:

    def test_missing_file_exits(self, tmp_path, engine_cls):
        with pytest.raises(SystemExit) as info:
            run([str(tmp_path / "nope.c")])
        assert info.value.code == 1
        engine_cls.assert_not_called()

    def test_one_shot(self, tmp_path, engine_cls):
        source = tmp_path / "a.c"
        source.write_text("int x;\n")
        run([str(source), "--args", "gcc -O3 -I\"my dir\"", "--kind", "preprocessed"])

        engine = engine_cls.return_value
        assert engine.user_args == ["gcc", "-O3", "-Imy dir"]
        assert engine_cls.call_args.kwargs["kind"].value == "preprocessed"
        engine.refresh.assert_awaited_once_with(force=True)
        engine.stop.assert_called_once()

    def test_failure_exit_code(self, tmp_path, engine_cls):
        source = tmp_path / "a.c"
        source.write_text("int x;\n")
        engine_cls.return_value.refresh = AsyncMock(return_value=AsmViewState(compiler_output="boom"))
        with pytest.raises(SystemExit) as info:
            run([str(source)])
        assert info.value.code == 1

    def test_all_directives_disables_filter(self, tmp_path, engine_cls):
        source = tmp_path / "a.c"
        source.write_text("int x;\n")
        run([str(source), "--all-directives"])
        config = engine_cls.call_args.kwargs["config"]
        assert config.config["filter_directives"] is False
