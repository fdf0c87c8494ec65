import asyncio
import logging
import os
import time
from typing import Callable, List, Optional, Tuple

from .compiler.compdb import IndexRegistry
from .compiler.pipeline import CompilationPipeline, OutputKind
from .compiler.tools import ToolResolver
from .errors import AsmLensError, Cancelled, CompileFailed
from .parsing import process_assembly
from .utils.config import ConfigManager, resolve_path
from .utils.state import AsmViewState
from .utils.watcher import FileWatcher

logger = logging.getLogger(__name__)


def pipeline_from_config(config: ConfigManager) -> CompilationPipeline:
    extra_flags = list(config.get("extra_flags", []))
    if config.get("intel_syntax", False):
        extra_flags.append("-masm=intel")
    return CompilationPipeline(
        resolver=ToolResolver(config.get("demangler", "c++filt")),
        timeout=float(config.get("timeout", 60)),
        extra_flags=extra_flags,
    )


def _read_lines(path: str) -> List[str]:
    with open(path, "r", errors="replace") as f:
        return f.read().splitlines()


class AsmEngine:
    """
    Keeps the assembly view of one source file up to date.
    """
    def __init__(
        self,
        source_file: str,
        config: Optional[ConfigManager] = None,
        registry: Optional[IndexRegistry] = None,
        pipeline: Optional[CompilationPipeline] = None,
        build_dir: Optional[str] = None,
        kind: OutputKind = OutputKind.ASSEMBLY,
    ):
        self.config = config if config is not None else ConfigManager()
        source_path = os.path.realpath(source_file)
        self.state = AsmViewState(source_path=source_path)
        self._owns_registry = registry is None
        self.registry = registry if registry is not None else IndexRegistry()
        self.pipeline = pipeline if pipeline is not None else pipeline_from_config(self.config)
        self.build_dir = build_dir if build_dir else resolve_path(
            self.config.get("compilation_directory", "${workspaceFolder}"), source_path
        )
        self.kind = kind
        self.filter_directives = bool(self.config.get("filter_directives", True))
        self.watcher = FileWatcher()
        self.on_update_callback: Optional[Callable[[AsmViewState], None]] = None
        self.user_args: List[str] = []
        self._compiled: Optional[Tuple[float, Tuple[str, ...]]] = None
        self.watch_database = False
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    async def start(self, watch_database: bool = True):
        """Compile once, then recompile whenever the source file is saved."""
        self._loop = asyncio.get_running_loop()
        self.watch_database = watch_database
        self.watcher.start_watching(self.state.source_path, self._on_file_saved)
        await self.refresh(force=True)

    def stop(self):
        self.watcher.stop_watching()
        if self._loop and not self._loop.is_closed():
            self._loop.call_soon_threadsafe(self.pipeline.cancel, self.state.source_path)
        if self._owns_registry:
            self.registry.close()

    def _on_file_saved(self, path: str):
        # Runs on the watchdog thread
        if self._loop:
            future = asyncio.run_coroutine_threadsafe(self.refresh(), self._loop)
            future.add_done_callback(self._log_refresh_failure)

    def _log_refresh_failure(self, future):
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            logger.error("Background refresh of %s failed", self.state.source_path, exc_info=error)

    async def set_arguments(self, args: List[str]) -> AsmViewState:
        """Use a custom compile command; an empty list restores the database's."""
        self.user_args = list(args)
        return await self.refresh(force=True)

    def needs_compilation(self, mtime: float) -> bool:
        if self._compiled is None:
            return True
        compiled_mtime, compiled_args = self._compiled
        return mtime > compiled_mtime or compiled_args != tuple(self.user_args)

    async def refresh(self, force: bool = False) -> AsmViewState:
        path = self.state.source_path
        logger.info("Refreshing %s with args %s", path, self.user_args)
        try:
            mtime = os.path.getmtime(path)
            if not force and not self.needs_compilation(mtime):
                logger.debug("%s is up to date", path)
                return self.state

            # File and database I/O run in the default executor
            loop = asyncio.get_running_loop()
            self.state.source_lines = await loop.run_in_executor(None, _read_lines, path)
            index = await loop.run_in_executor(
                None, self.registry.for_build_directory, self.build_dir, self.watch_database
            )
            args = list(self.user_args)
            asm = await self.pipeline.compile(index.get(path), args, self.kind, source_path=path)
        except Cancelled:
            # Superseded by a newer run, which will deliver instead
            logger.debug("Refresh of %s cancelled", path)
            return self.state
        except CompileFailed as e:
            logger.error("Cannot compile %s: %s", path, e)
            self.state.compiler_output = e.stderr or str(e)
            self.state.diagnostics = e.diagnostics
        except (AsmLensError, OSError) as e:
            logger.error("Refresh Error: %s", e)
            self.state.compiler_output = str(e)
            self.state.diagnostics = []
        else:
            lines, mapping = process_assembly(asm, path, self.filter_directives)
            self.state.update_asm(lines, mapping, time.time())
            self.state.compiler_output = ""
            self.state.diagnostics = []
            self._compiled = (mtime, tuple(args))

        self.state.user_args = list(self.user_args)
        if self.on_update_callback:
            self.on_update_callback(self.state)
        return self.state
