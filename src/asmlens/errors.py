"""
Typed failures raised by the compile and parse core.
Every failure is scoped to a single compilation request.
"""
from typing import List, Optional


class AsmLensError(Exception):
    """Base exception for all asmlens errors."""


class NotFound(AsmLensError):
    """A compilation database (or an entry in it) does not exist."""


class NoCommand(NotFound):
    """No compile command is known for a source file."""

    def __init__(self, source_path: str):
        self.source_path = source_path
        super().__init__(f"{source_path} is not found in compile_commands.json")


class ParseError(AsmLensError):
    """The compilation database is malformed."""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Cannot parse compilation database {path}: {reason}")


class ToolResolutionFailure(AsmLensError):
    """The demangler could not be located next to the compiler."""


class Cancelled(AsmLensError):
    """The run was superseded by a newer one or cancelled by the user."""


class CompileFailed(AsmLensError):
    """The compiler or the demangler exited with a non-zero status."""

    def __init__(self, message: str, stderr: str = "", diagnostics: Optional[List] = None):
        self.stderr = stderr
        self.diagnostics = diagnostics if diagnostics is not None else []
        super().__init__(message)


class Timeout(CompileFailed):
    """The run exceeded its time budget."""

    def __init__(self, source_path: str, seconds: float):
        self.source_path = source_path
        self.seconds = seconds
        super().__init__(f"Compilation of {source_path} timed out after {seconds:g} s")
