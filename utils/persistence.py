"""JSON file persistence utilities.

JSONStore loads and saves one JSON document. Writes go to a temporary
sibling file that is then renamed over the target, so a crash mid-write
never leaves a truncated document behind. A lock serializes
read-modify-write cycles coming from the playback tracker thread.
"""

import os
import tempfile
import threading
from collections.abc import Callable
from json import dump, load
from pathlib import Path
from typing import Any

from utils.exceptions import PersistenceError
from utils.logging import get_logger

logger = get_logger(__name__)


class JSONStore:
    """Manages one JSON file with atomic writes and locked updates."""

    def __init__(self, file_path: Path) -> None:
        self.file_path = Path(file_path)
        self._lock = threading.RLock()

    def load(self, default: Any = None) -> Any:
        """Load JSON data from file.

        Args:
            default: Value returned when the file is missing or not valid JSON.
                    Defaults to empty dict.

        Raises:
            PersistenceError: On permission errors
        """
        if default is None:
            default = {}

        try:
            with self.file_path.open(encoding="utf-8") as f:
                return load(f)
        except FileNotFoundError:
            return default
        except ValueError:
            logger.warning(f"Ignoring corrupt JSON in {self.file_path}")
            return default
        except PermissionError as e:
            raise PersistenceError(f"Permission denied reading {self.file_path}") from e

    def save(self, data: Any, *, indent: int = 2) -> None:
        """Atomically replace the file with data serialized as JSON.

        Raises:
            PersistenceError: On serialization or permission errors
        """
        with self._lock:
            try:
                self.file_path.parent.mkdir(parents=True, exist_ok=True)
                fd, tmp_name = tempfile.mkstemp(
                    dir=self.file_path.parent, prefix=f".{self.file_path.name}.", suffix=".tmp"
                )
            except PermissionError as e:
                raise PersistenceError(f"Permission denied writing {self.file_path}") from e

            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    dump(data, f, indent=indent)
                os.replace(tmp_name, self.file_path)
            except TypeError as e:
                Path(tmp_name).unlink(missing_ok=True)
                raise PersistenceError(f"Cannot serialize data: {e}") from e
            except OSError as e:
                Path(tmp_name).unlink(missing_ok=True)
                raise PersistenceError(f"Cannot write {self.file_path}: {e}") from e

    def update(self, mutate: Callable[[dict], None]) -> dict:
        """Load, apply mutate() to the dict in place, save, and return it."""
        with self._lock:
            data = self.load({})
            mutate(data)
            self.save(data)
            return data
