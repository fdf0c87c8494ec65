import re
from dataclasses import dataclass
from typing import List

# Pattern: filename:line:col: severity: message
RE_DIAGNOSTIC = re.compile(
    r"^(.*?):(\d+):(\d+):\s+(fatal error|error|warning|note):\s+(.*)$",
    re.MULTILINE,
)


@dataclass
class Diagnostic:
    file: str
    line: int
    column: int
    severity: str  # 'error', 'fatal error', 'warning' or 'note'
    message: str

    @property
    def is_error(self) -> bool:
        return self.severity in ("error", "fatal error")


def parse_diagnostics(stderr: str) -> List[Diagnostic]:
    """
    Parses GCC/Clang error output into structured objects.
    Example: hello.cpp:10:5: error: expected ';'
    """
    return [
        Diagnostic(
            file=match.group(1),
            line=int(match.group(2)),
            column=int(match.group(3)),
            severity=match.group(4),
            message=match.group(5).strip(),
        )
        for match in RE_DIAGNOSTIC.finditer(stderr)
    ]
