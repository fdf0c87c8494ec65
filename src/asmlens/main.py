import argparse
import asyncio
import os
import sys
from typing import List, Optional

from rich.console import Console

from .compiler.compdb import split_whitespace
from .compiler.pipeline import OutputKind
from .engine import AsmEngine
from .utils.config import ConfigManager
from .utils.highlighter import build_view
from .utils.logs import setup_logging
from .utils.state import AsmViewState


def _build_parser() -> argparse.ArgumentParser:
    """Build and return the CLI argument parser."""
    parser = argparse.ArgumentParser(description="asmlens: compiler output viewer driven by compile_commands.json")
    parser.add_argument("file", help="C or C++ source file listed in compile_commands.json")
    parser.add_argument("--build-dir", help="Directory containing compile_commands.json")
    parser.add_argument("--args", default="", help="Custom compile command, e.g. \"g++ -O2 -std=c++20\"")
    parser.add_argument("--kind", choices=[k.value for k in OutputKind], default=OutputKind.ASSEMBLY.value)
    parser.add_argument("--all-directives", action="store_true", help="Keep assembler directives")
    parser.add_argument("--watch", action="store_true", help="Recompile whenever the file is saved")
    parser.add_argument("--no-color", action="store_true", help="Print plain text")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser


def _printer(console: Console, plain: bool):
    def show(state: AsmViewState):
        if state.compiler_output:
            console.print(state.compiler_output, markup=False, highlight=False)
            return
        if plain:
            console.print(state.asm_text, end="", markup=False, highlight=False)
        else:
            console.print(build_view(state.asm_lines))
    return show


async def _watch(engine: AsmEngine):
    await engine.start()
    try:
        while True:
            await asyncio.sleep(3600)
    finally:
        engine.stop()


def run(argv: Optional[List[str]] = None):
    parser = _build_parser()
    args = parser.parse_args(argv)

    config = ConfigManager()
    setup_logging("DEBUG" if args.verbose else config.get("log_level", "INFO"))

    # Resolve to absolute path immediately
    abs_path = os.path.abspath(args.file)
    if not os.path.exists(abs_path):
        print(f"Error: File not found: {abs_path}")
        sys.exit(1)

    if args.all_directives:
        config.config["filter_directives"] = False

    engine = AsmEngine(abs_path, config=config, build_dir=args.build_dir, kind=OutputKind(args.kind))
    engine.user_args = split_whitespace(args.args)
    console = Console(no_color=args.no_color, highlight=False)
    engine.on_update_callback = _printer(console, args.no_color)

    if args.watch:
        try:
            asyncio.run(_watch(engine))
        except KeyboardInterrupt:
            pass
        return

    state = asyncio.run(engine.refresh(force=True))
    engine.stop()
    if state.compiler_output:
        sys.exit(1)


if __name__ == "__main__":
    run()
