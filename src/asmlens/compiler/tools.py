import logging
import os
import shutil
from typing import Callable, Dict, Optional

from ..errors import ToolResolutionFailure

logger = logging.getLogger(__name__)

DEFAULT_DEMANGLER = "c++filt"

# Order matters: "clang++" must be replaced before "clang"
_COMPILER_FRAGMENTS = ("clang++", "clang", "g++", "gcc")


class ToolResolver:
    """
    Locates the demangler that ships next to a compiler.
    e.g. /opt/gcc-13/bin/g++-13 -> /opt/gcc-13/bin/c++filt
    """
    def __init__(self, demangler: str = DEFAULT_DEMANGLER, which: Callable[[str], Optional[str]] = shutil.which):
        self.demangler = demangler
        self._which = which
        self._cache: Dict[str, str] = {}

    def resolve(self, compiler: str) -> str:
        cached = self._cache.get(compiler)
        if cached:
            return cached

        try:
            path = self._locate(compiler)
        except ToolResolutionFailure as e:
            # Not cached: the environment may change before the next run
            logger.debug("%s, falling back to '%s' on PATH", e, self.demangler)
            return self.demangler

        self._cache = {**self._cache, compiler: path}
        return path

    def clear(self):
        self._cache = {}

    def _locate(self, compiler: str) -> str:
        directory, filename = os.path.split(compiler)
        _, ext = os.path.splitext(filename)

        if not directory:
            found = self._which(compiler) if compiler else None
            if found:
                directory = os.path.dirname(found)

        if directory:
            match = self._scan(directory, ext)
            if match:
                return match

        guessed = self._guess(directory, filename, ext)
        if guessed and os.path.exists(guessed):
            return guessed

        raise ToolResolutionFailure(f"No {self.demangler} found for compiler '{compiler}'")

    def _scan(self, directory: str, ext: str) -> Optional[str]:
        wanted = self.demangler + ext
        try:
            entries = sorted(os.listdir(directory))
        except OSError:
            return None

        if wanted in entries:
            return os.path.join(directory, wanted)
        for entry in entries:
            if entry.endswith(wanted):
                return os.path.join(directory, entry)
        return None

    def _guess(self, directory: str, filename: str, ext: str) -> Optional[str]:
        name = filename[: len(filename) - len(ext)] if ext else filename
        for fragment in _COMPILER_FRAGMENTS:
            name = name.replace(fragment, self.demangler)
        if self.demangler not in name:
            return None
        return os.path.join(directory, name + ext)
