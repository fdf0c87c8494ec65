import logging
import threading
import time
from pathlib import Path
from typing import Callable, Optional
from watchdog.observers import Observer
from watchdog.events import FileSystemEventHandler

logger = logging.getLogger(__name__)


class FileChangeHandler(FileSystemEventHandler):
    """
    Listens for changes to a specific file and triggers a callback.
    Deletion is reported separately so an owner can tear itself down.
    """
    def __init__(
        self,
        target_file: str,
        on_change: Callable[[str], None],
        on_delete: Optional[Callable[[str], None]] = None,
    ):
        self.target_file = str(Path(target_file).resolve())
        self.on_change = on_change
        self.on_delete = on_delete
        self.last_triggered = 0.0
        self.debounce_seconds = 0.5  # Prevent double-triggers from some editors

    def _is_target(self, path) -> bool:
        return str(Path(path).resolve()) == self.target_file

    def _changed(self):
        now = time.time()
        if now - self.last_triggered > self.debounce_seconds:
            self.last_triggered = now
            self.on_change(self.target_file)

    def on_modified(self, event):
        if event.is_directory:
            return
        if self._is_target(event.src_path):
            self._changed()

    def on_created(self, event):
        self.on_modified(event)

    def on_moved(self, event):
        # Editors that save via rename land here
        if event.is_directory:
            return
        if self._is_target(event.dest_path):
            self._changed()

    def on_deleted(self, event):
        if event.is_directory:
            return
        if self._is_target(event.src_path) and self.on_delete:
            self.on_delete(self.target_file)


class FileWatcher:
    """
    Manages the watchdog observer thread.
    """
    def __init__(self):
        self.observer = Observer()
        self.watch = None

    def start_watching(
        self,
        file_path: str,
        on_change: Callable[[str], None],
        on_delete: Optional[Callable[[str], None]] = None,
    ):
        """
        Starts a background thread watching the directory of the file_path.
        """
        path = Path(file_path).resolve()
        if not path.exists():
            raise FileNotFoundError(f"Cannot watch non-existent file: {file_path}")

        handler = FileChangeHandler(str(path), on_change, on_delete)
        # Watch the parent directory
        self.watch = self.observer.schedule(handler, str(path.parent), recursive=False)
        self.observer.start()
        logger.debug("Watching %s", path)

    def stop_watching(self):
        if not self.observer.is_alive():
            return
        self.observer.stop()
        # Handlers run on the observer thread, which cannot join itself
        if threading.current_thread() is not self.observer:
            self.observer.join()
