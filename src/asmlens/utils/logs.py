import logging
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler

LOG_FORMAT = "%(message)s"


def setup_logging(level: str = "INFO", console: Optional[Console] = None) -> logging.Logger:
    """
    Route the asmlens loggers to stderr through rich.
    This is the operator-visible channel where compiler stderr ends up.
    """
    root = logging.getLogger("asmlens")
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    for handler in list(root.handlers):
        if isinstance(handler, RichHandler):
            root.removeHandler(handler)

    handler = RichHandler(
        console=console if console else Console(stderr=True),
        show_path=False,
        markup=False,
    )
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(handler)
    return root
