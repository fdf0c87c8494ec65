from .compdb import (
    CompileCommandIndex,
    CompileInvocation,
    IndexRegistry,
    construct_compile_command,
    find_compile_commands,
    load,
    split_whitespace,
)
from .pipeline import CompilationPipeline, OutputKind, PipelineRun, RunRegistry
from .tools import ToolResolver
