from .compiler import CompilationPipeline, CompileCommandIndex, CompileInvocation, IndexRegistry, OutputKind, ToolResolver
from .errors import AsmLensError, Cancelled, CompileFailed, NoCommand, NotFound, ParseError, Timeout
from .parsing import AsmFilter, AsmLine, AsmParser, SourceToAsmMap, process_assembly

__version__ = "0.1.0"
