"""
Compilation database loading and normalization.

Maps the canonical absolute path of every source file listed in a
compile_commands.json to the compiler invocation that built it.
"""
import json
import logging
import os
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from ..errors import NotFound, ParseError
from ..utils.watcher import FileWatcher

logger = logging.getLogger(__name__)

COMPILE_COMMANDS = "compile_commands.json"

_QUOTES = ("'", '"')
_ESCAPABLE = ("'", '"', " ", "\\")


@dataclass(frozen=True)
class CompileInvocation:
    source_path: str
    directory: str
    executable: str
    arguments: Tuple[str, ...] = ()

    @property
    def command_line(self) -> List[str]:
        return [self.executable, *self.arguments]

    @property
    def working_directory(self) -> Optional[str]:
        """The build directory, or None if it no longer exists."""
        return self.directory if os.path.isdir(self.directory) else None


def split_whitespace(text: str) -> List[str]:
    """
    Tokenize a shell-like command string.

    Single and double quotes group spaces into one token and are removed.
    A backslash escapes an immediately following quote, space or backslash;
    any other backslash is kept as-is (Windows paths).
    """
    tokens = []
    current = []
    has_token = False
    quote_char = None
    i = 0
    while i < len(text):
        ch = text[i]
        if ch == "\\" and i + 1 < len(text) and text[i + 1] in _ESCAPABLE:
            current.append(text[i + 1])
            has_token = True
            i += 2
            continue

        if ch in _QUOTES and (quote_char is None or quote_char == ch):
            quote_char = None if quote_char else ch
        elif ch == " " and quote_char is None:
            if has_token:
                tokens.append("".join(current))
            current = []
            has_token = False
        else:
            current.append(ch)
            has_token = True
        i += 1

    if has_token:
        tokens.append("".join(current))
    # Empty quoted strings produce no token
    return [t for t in tokens if t]


def construct_compile_command(command: str, arguments: Sequence[str]) -> List[str]:
    """
    Returns the argument list with -c, -g and any -o <value> pair removed.
    A non-empty command string takes precedence over the arguments list.
    """
    args = split_whitespace(command) if command else list(arguments)

    result = []
    skip_next = False
    for arg in args:
        if skip_next:
            skip_next = False
            continue
        if arg == "-o":
            skip_next = True
            continue
        if arg in ("-c", "-g"):
            continue
        result.append(arg)
    return result


def normalize_entry(entry: Mapping[str, Any], origin: str = "<memory>") -> CompileInvocation:
    """Build a CompileInvocation from one compilation database record."""
    if not isinstance(entry, Mapping):
        raise ParseError(origin, f"expected an object, got {type(entry).__name__}")

    file = entry.get("file")
    directory = entry.get("directory")
    if not isinstance(file, str) or not isinstance(directory, str):
        raise ParseError(origin, "entry requires 'file' and 'directory' strings")

    command = entry.get("command") or ""
    arguments = entry.get("arguments") or []
    if not isinstance(command, str) or not isinstance(arguments, list):
        raise ParseError(origin, f"bad 'command' or 'arguments' for {file}")
    if not command and not arguments:
        raise ParseError(origin, f"entry for {file} has neither 'command' nor 'arguments'")

    args = construct_compile_command(command, [str(a) for a in arguments])
    # The source path is appended back by the pipeline
    args = [arg for arg in args if arg != file]
    if not args:
        raise ParseError(origin, f"entry for {file} has no compiler")

    source_path = os.path.realpath(os.path.join(directory, file))
    return CompileInvocation(
        source_path=source_path,
        directory=directory,
        executable=args[0],
        arguments=tuple(args[1:]),
    )


def build_mapping(entries: Iterable[Mapping[str, Any]], origin: str = "<memory>") -> Dict[str, CompileInvocation]:
    mapping = {}
    for entry in entries:
        invocation = normalize_entry(entry, origin)
        mapping[invocation.source_path] = invocation
    return mapping


def load(path) -> Dict[str, CompileInvocation]:
    """
    Parse a compile_commands.json file into {realpath: CompileInvocation}.
    Raises NotFound if the file is absent and ParseError if it is malformed.
    """
    path = str(path)
    logger.info("Loading Compilation Database from: %s", path)
    try:
        with open(path, "r") as f:
            entries = json.load(f)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ParseError(path, str(e)) from None
    except OSError:
        raise NotFound(f"Cannot find compilation database: {path}") from None

    if not isinstance(entries, list):
        raise ParseError(path, "top-level value must be an array")

    return build_mapping(entries, path)


def find_compile_commands(root_dir: str = ".") -> Optional[Path]:
    """
    Searches for compile_commands.json in standard build locations.
    """
    # Common places where CMake puts this file
    search_paths = [
        Path(root_dir) / COMPILE_COMMANDS,
        Path(root_dir) / "build" / COMPILE_COMMANDS,
        Path(root_dir) / "out" / COMPILE_COMMANDS,
        Path(root_dir) / "debug" / COMPILE_COMMANDS,
    ]

    for path in search_paths:
        if path.exists():
            return path
    return None


class CompileCommandIndex:
    """
    Source path -> CompileInvocation lookup backed by one compilation database.

    The mapping is only ever replaced as a whole, so readers on other
    threads never see a half-loaded database.
    """
    def __init__(self, path: str, commands: Optional[Dict[str, CompileInvocation]] = None):
        self.path = os.path.realpath(path)
        self._commands: Dict[str, CompileInvocation] = commands if commands is not None else {}
        self._watcher: Optional[FileWatcher] = None
        self._unsubscribe: Optional[Callable[[], None]] = None
        self.on_delete: Optional[Callable[["CompileCommandIndex"], None]] = None

    @classmethod
    def open(cls, path: str) -> "CompileCommandIndex":
        return cls(path, load(path))

    def get(self, source_path: str) -> Optional[CompileInvocation]:
        return self._commands.get(os.path.realpath(source_path))

    def __contains__(self, source_path: str) -> bool:
        return self.get(source_path) is not None

    def __len__(self) -> int:
        return len(self._commands)

    def sources(self) -> List[str]:
        return sorted(self._commands)

    def reload(self):
        """Re-read the backing file. A broken file keeps the previous mapping."""
        try:
            self._commands = load(self.path)
        except (NotFound, ParseError) as e:
            logger.error("Keeping previous compile commands: %s", e)

    def replace(self, entries: Iterable[Mapping[str, Any]]):
        """Swap in a mapping built from raw records."""
        self._commands = build_mapping(entries, self.path)

    def watch(self):
        """Reload on change of the backing file, tear down on its deletion."""
        if self._watcher:
            return
        self._watcher = FileWatcher()
        self._watcher.start_watching(self.path, self._on_changed, self._on_deleted)

    def follow(self, project_model):
        """
        Populate from a build-system integration instead of a file.

        `project_model.subscribe(callback)` must call `callback(entries)` with
        compilation database records whenever the project changes, and return
        a function that cancels the subscription.
        """
        if self._unsubscribe:
            self._unsubscribe()
        self._unsubscribe = project_model.subscribe(self._on_project_model)

    def _on_project_model(self, entries: Iterable[Mapping[str, Any]]):
        try:
            self.replace(entries)
        except ParseError as e:
            logger.error("Ignoring project model update: %s", e)
            return
        logger.info("Project model updated: %d compile commands", len(self._commands))

    def _on_changed(self, _path: str):
        logger.info("Compilation database changed: %s", self.path)
        self.reload()

    def _on_deleted(self, _path: str):
        logger.info("Compilation database deleted: %s", self.path)
        self.close()
        if self.on_delete:
            self.on_delete(self)

    def close(self):
        self._commands = {}
        if self._watcher:
            self._watcher.stop_watching()
            self._watcher = None
        if self._unsubscribe:
            self._unsubscribe()
            self._unsubscribe = None


class IndexRegistry:
    """
    Owns at most one CompileCommandIndex per compilation database path.
    """
    def __init__(self):
        self._indexes: Dict[str, CompileCommandIndex] = {}
        self._lock = threading.Lock()

    @staticmethod
    def key_for(build_dir: str) -> str:
        return os.path.realpath(os.path.join(build_dir, COMPILE_COMMANDS))

    def get(self, build_dir: str) -> Optional[CompileCommandIndex]:
        return self._indexes.get(self.key_for(build_dir))

    def for_build_directory(self, build_dir: str, watch: bool = False) -> CompileCommandIndex:
        key = self.key_for(build_dir)
        index = self._indexes.get(key)
        if index is not None:
            return index

        # Loading happens outside the lock; the first finished load wins
        loaded = CompileCommandIndex.open(key)
        with self._lock:
            index = self._indexes.get(key)
            if index is not None:
                return index
            loaded.on_delete = self.discard
            self._indexes = {**self._indexes, key: loaded}

        if watch:
            loaded.watch()
        return loaded

    def discard(self, index: CompileCommandIndex):
        with self._lock:
            if self._indexes.get(index.path) is not index:
                return
            self._indexes = {k: v for k, v in self._indexes.items() if k != index.path}
        index.close()

    def close(self):
        with self._lock:
            indexes, self._indexes = self._indexes, {}
        for index in indexes.values():
            index.close()

    def __len__(self) -> int:
        return len(self._indexes)
