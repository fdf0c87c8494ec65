"""
Compile-and-demangle pipeline.

The compiler writes assembly to stdout, which is streamed chunk by chunk
into the demangler's stdin. Only the newest run per source file survives:
starting a new one cancels the previous run and kills its processes.
"""
import asyncio
import logging
import os
import shlex
import signal
import threading
import time
from enum import Enum
from typing import Dict, List, Optional, Sequence

from .compdb import CompileInvocation
from .tools import ToolResolver
from ..errors import Cancelled, CompileFailed, NoCommand, Timeout
from ..parsing.diagnostics import parse_diagnostics
from ..parsing.asm_parser import split_lines

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 60.0
CHUNK_SIZE = 64 * 1024
_POSIX = os.name == "posix"


class OutputKind(str, Enum):
    ASSEMBLY = "asm"
    LLVM_IR = "llvm"
    PREPROCESSED = "preprocessed"

    @property
    def flags(self) -> List[str]:
        return list(_OUTPUT_FLAGS[self])


_OUTPUT_FLAGS = {
    OutputKind.ASSEMBLY: ("-g", "-S", "-o", "-"),
    OutputKind.LLVM_IR: ("-g", "-S", "-emit-llvm", "-o", "-"),
    OutputKind.PREPROCESSED: ("-E", "-o", "-"),
}


class PipelineRun:
    """One in-flight compile-and-demangle operation for one source file."""

    def __init__(self, source_path: str):
        self.source_path = source_path
        self.started = time.monotonic()
        self.cancelled = False
        self.task: Optional[asyncio.Task] = None
        self.processes: List[asyncio.subprocess.Process] = []

    def cancel(self):
        self.cancelled = True
        if self.task and not self.task.done():
            self.task.cancel()

    @property
    def elapsed(self) -> float:
        return time.monotonic() - self.started


class RunRegistry:
    """
    The "current run" slot of every source file.
    """
    def __init__(self):
        self._runs: Dict[str, PipelineRun] = {}
        self._lock = threading.Lock()

    def swap(self, source_path: str, run: PipelineRun) -> Optional[PipelineRun]:
        """Register `run` as current and return the run it replaced."""
        with self._lock:
            previous = self._runs.get(source_path)
            self._runs[source_path] = run
        return previous

    def discard(self, source_path: str, run: PipelineRun):
        with self._lock:
            if self._runs.get(source_path) is run:
                del self._runs[source_path]

    def current(self, source_path: str) -> Optional[PipelineRun]:
        return self._runs.get(source_path)

    def cancel(self, source_path: str) -> bool:
        with self._lock:
            run = self._runs.pop(source_path, None)
        if run is not None:
            run.cancel()
        return run is not None

    def cancel_all(self):
        with self._lock:
            runs, self._runs = self._runs, {}
        for run in runs.values():
            run.cancel()

    def __len__(self) -> int:
        return len(self._runs)


def strip_markers(text: str) -> str:
    """Drop lines that start with '#' or ';' once leading whitespace is trimmed."""
    kept = [line for line in split_lines(text) if not line.lstrip().startswith(("#", ";"))]
    return "\n".join(kept)


class CompilationPipeline:
    def __init__(
        self,
        resolver: Optional[ToolResolver] = None,
        timeout: float = DEFAULT_TIMEOUT,
        extra_flags: Sequence[str] = (),
        runs: Optional[RunRegistry] = None,
    ):
        self.resolver = resolver if resolver is not None else ToolResolver()
        self.timeout = timeout
        self.extra_flags = list(extra_flags)
        self.runs = runs if runs is not None else RunRegistry()

    def command_for(
        self,
        invocation: CompileInvocation,
        override_arguments: Sequence[str] = (),
        kind: OutputKind = OutputKind.ASSEMBLY,
    ) -> List[str]:
        """The full argv: compiler, flags, source path, output flags."""
        base = list(override_arguments) if override_arguments else invocation.command_line
        return [*base, *self.extra_flags, invocation.source_path, *kind.flags]

    async def compile(
        self,
        invocation: Optional[CompileInvocation],
        override_arguments: Sequence[str] = (),
        kind: OutputKind = OutputKind.ASSEMBLY,
        source_path: str = "",
    ) -> str:
        """
        Compiles one source file and returns its demangled assembly.

        Raises NoCommand, Cancelled, CompileFailed or Timeout.
        """
        if invocation is None:
            raise NoCommand(source_path or "<unknown>")

        command = self.command_for(invocation, override_arguments, kind)
        if not command[0]:
            raise NoCommand(invocation.source_path)
        demangler = self.resolver.resolve(command[0])

        run = PipelineRun(invocation.source_path)
        previous = self.runs.swap(invocation.source_path, run)
        if previous is not None:
            logger.debug("Superseding previous run for %s", invocation.source_path)
            previous.cancel()

        run.task = asyncio.ensure_future(self._execute(run, invocation, command, demangler))
        try:
            asm = await asyncio.wait_for(run.task, timeout=self.timeout)
        except asyncio.TimeoutError:
            raise Timeout(invocation.source_path, self.timeout) from None
        except asyncio.CancelledError:
            if run.cancelled:
                raise Cancelled(f"Compilation of {invocation.source_path} was cancelled") from None
            raise
        finally:
            self.runs.discard(invocation.source_path, run)

        if run.cancelled:
            # Superseded after finishing but before delivery
            raise Cancelled(f"Compilation of {invocation.source_path} was superseded")
        logger.info("Compilation succeeded: %d bytes, %.2f s", len(asm), run.elapsed)
        return asm

    def cancel(self, source_path: str) -> bool:
        """Cancel the active run for a source file, if any."""
        return self.runs.cancel(source_path)

    def shutdown(self):
        self.runs.cancel_all()

    async def _execute(
        self,
        run: PipelineRun,
        invocation: CompileInvocation,
        command: List[str],
        demangler: str,
    ) -> str:
        logger.info("Compiling using: %s", shlex.join(command))
        try:
            compiler = await asyncio.create_subprocess_exec(
                *command,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=invocation.working_directory,
                # Each tool leads its own process group, so cc1 and as die with the driver
                start_new_session=_POSIX,
            )
        except OSError as e:
            raise CompileFailed(f"Cannot start compiler '{command[0]}': {e}") from e
        run.processes.append(compiler)

        try:
            try:
                filt = await asyncio.create_subprocess_exec(
                    demangler,
                    stdin=asyncio.subprocess.PIPE,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                    start_new_session=_POSIX,
                )
            except OSError as e:
                raise CompileFailed(f"Cannot start demangler '{demangler}': {e}") from e
            run.processes.append(filt)

            _, compiler_err, asm, filt_err = await asyncio.gather(
                self._forward(compiler.stdout, filt.stdin),
                compiler.stderr.read(),
                filt.stdout.read(),
                filt.stderr.read(),
            )
            compiler_status = await compiler.wait()
            filt_status = await filt.wait()
        finally:
            await self._terminate(run)

        self._check(command[0], compiler_status, _decode(compiler_err))
        self._check(demangler, filt_status, _decode(filt_err))
        return strip_markers(_decode(asm))

    async def _forward(self, source: asyncio.StreamReader, sink: asyncio.StreamWriter):
        broken = False
        while True:
            chunk = await source.read(CHUNK_SIZE)
            if not chunk:
                break
            if broken:
                # Keep draining so the compiler never blocks on a full pipe
                continue
            try:
                sink.write(chunk)
                await sink.drain()
            except (BrokenPipeError, ConnectionResetError):
                logger.warning("Demangler closed its input early")
                broken = True

        sink.close()
        try:
            await sink.wait_closed()
        except (BrokenPipeError, ConnectionResetError):
            pass

    @staticmethod
    def _check(tool: str, status: int, stderr: str):
        if stderr:
            logger.warning("%s", stderr.rstrip())
        if status != 0:
            raise CompileFailed(
                f"{tool} returned with error code {status}",
                stderr=stderr,
                diagnostics=parse_diagnostics(stderr),
            )

    @staticmethod
    async def _terminate(run: PipelineRun):
        """Kill whatever is still running and reap it."""
        for process in run.processes:
            if process.returncode is None:
                try:
                    if _POSIX:
                        os.killpg(process.pid, signal.SIGKILL)
                    else:
                        process.kill()
                except ProcessLookupError:
                    pass
                await process.wait()


def _decode(data: bytes) -> str:
    return data.decode("utf-8", errors="replace")
