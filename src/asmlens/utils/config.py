import json
import logging
import os
import re
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

DEFAULT_CONFIG: Dict[str, Any] = {
    # Directory holding compile_commands.json. Supports ${...} variables.
    "compilation_directory": "${workspaceFolder}",
    "demangler": "c++filt",
    "timeout": 60,
    "filter_directives": True,
    "intel_syntax": False,
    "extra_flags": [],
    "log_level": "INFO",
}

RE_VARIABLE = re.compile(r"\$\{(.*?)\}")


class ConfigManager:
    """
    Loads user preferences from ~/.asmlens/config.json, layered over DEFAULT_CONFIG.
    """
    def __init__(self, config_dir: Optional[Path] = None):
        self.config_dir = config_dir if config_dir else Path.home() / ".asmlens"
        self.config_file = self.config_dir / "config.json"
        self.config = self.load_config()

    def load_config(self) -> Dict[str, Any]:
        self.config_dir.mkdir(parents=True, exist_ok=True)
        config = DEFAULT_CONFIG.copy()
        if not self.config_file.exists():
            return config

        try:
            with open(self.config_file, "r") as f:
                user_config = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Ignoring unreadable config %s: %s", self.config_file, e)
            return config

        if isinstance(user_config, dict):
            config.update(user_config)
        return config

    def save_config(self):
        self.config_dir.mkdir(parents=True, exist_ok=True)
        with open(self.config_file, "w") as f:
            json.dump(self.config, f, indent=2)

    def get(self, key: str, default: Any = None) -> Any:
        return self.config.get(key, default)

    def set(self, key: str, value: Any):
        self.config[key] = value
        self.save_config()


def resolve_path(path: str, source_file: str, workspace_folder: Optional[str] = None) -> str:
    """
    Substitute ${workspaceFolder}-style variables in a configured path.
    Unknown variables are left untouched. The result is normalized.
    """
    source = Path(source_file)
    workspace = workspace_folder if workspace_folder else str(source.parent)

    variables = {
        "workspaceFolder": workspace,
        "workspaceFolderBasename": Path(workspace).name,
        "file": str(source),
        "relativeFile": os.path.relpath(str(source), workspace),
        "fileBasename": source.name,
        "fileBasenameNoExtension": source.stem,
        "fileDirname": str(source.parent),
        "fileExtname": source.suffix,
        "pathSeparator": os.sep,
    }

    def substitute(match: "re.Match") -> str:
        value = variables.get(match.group(1))
        return value if value is not None else match.group(0)

    return os.path.normpath(RE_VARIABLE.sub(substitute, path))
