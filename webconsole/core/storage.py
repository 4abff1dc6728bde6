"""
Key-value storage for conlet models that outlive a connection.

Keys are slash separated paths such as ``/alice/HelloWorld/HelloWorld-1f2e``.
``get(path)`` returns every entry stored at the path or below it, so a
conlet can fetch all of a user's instances with one call.
"""

import copy
import json
import os
import shutil
import logging
import tempfile
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


def _under(key: str, path: str) -> bool:
    return key == path or key.startswith(path.rstrip('/') + '/')


class KeyValueStore(ABC):
    """Storage collaborator used by persistent conlets."""

    @abstractmethod
    def get(self, path: str) -> Dict[str, Any]:
        """All entries whose key is ``path`` or lies below it."""

    @abstractmethod
    def put(self, path: str, value: Any) -> None:
        pass

    @abstractmethod
    def delete(self, path: str) -> None:
        """Remove the entry at ``path`` and everything below it."""


class MemoryKeyValueStore(KeyValueStore):
    """In-process store, contents are lost on restart."""

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self._lock = threading.RLock()
        self._data: Dict[str, Any] = dict(initial or {})

    def get(self, path: str) -> Dict[str, Any]:
        with self._lock:
            return {key: copy.deepcopy(value) for key, value in self._data.items()
                    if _under(key, path)}

    def put(self, path: str, value: Any) -> None:
        with self._lock:
            self._data[path] = copy.deepcopy(value)

    def delete(self, path: str) -> None:
        with self._lock:
            for key in [key for key in self._data if _under(key, path)]:
                del self._data[key]


class JsonFileKeyValueStore(MemoryKeyValueStore):
    """
    Store persisted to a single JSON file.

    Every change rewrites the file with the write-to-temp-then-rename
    pattern, keeping the previous version as ``store.json.bak``. On
    startup a corrupted main file falls back to the backup.
    """

    FILE_NAME = "store.json"

    def __init__(self, data_dir: str = "data"):
        super().__init__()
        self.data_dir = Path(data_dir)
        self.store_file = self.data_dir / self.FILE_NAME
        self.backup_file = self.store_file.with_suffix('.json.bak')
        self._load()

    def put(self, path: str, value: Any) -> None:
        with self._lock:
            super().put(path, value)
            self._save()

    def delete(self, path: str) -> None:
        with self._lock:
            super().delete(path)
            self._save()

    def _load(self) -> None:
        """
        Load persisted entries.

        Tries the main file first, falls back to the backup if the main
        file is corrupted.
        """
        files_to_try = []
        if self.store_file.exists():
            files_to_try.append(('main', self.store_file))
        if self.backup_file.exists():
            files_to_try.append(('backup', self.backup_file))

        if not files_to_try:
            logger.info(f"No {self.FILE_NAME} found, starting with an empty store.")
            return

        for source_name, file_path in files_to_try:
            try:
                with open(file_path, 'r') as f:
                    data = json.load(f)
                if not isinstance(data, dict):
                    raise ValueError("store content is not an object")
                self._data = data

                if source_name == 'backup':
                    logger.warning("Loaded store from backup file (main was corrupted)")
                    shutil.copy2(self.backup_file, self.store_file)

                logger.info(f"Loaded {len(self._data)} stored entries")
                return
            except (ValueError, IOError) as e:
                logger.error(f"Failed to load {source_name} store file: {e}")
                continue

        logger.error("All store files corrupted, starting with an empty store.")

    def _save(self) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)
        try:
            # Temp file in the same directory so the rename is atomic
            fd, temp_path = tempfile.mkstemp(suffix='.tmp', prefix='store_', dir=self.data_dir)
            try:
                with os.fdopen(fd, 'w') as f:
                    json.dump(self._data, f, indent=2, sort_keys=True)
            except BaseException:
                os.unlink(temp_path)
                raise

            if self.store_file.exists():
                try:
                    shutil.copy2(self.store_file, self.backup_file)
                except IOError as e:
                    logger.warning(f"Failed to create store backup: {e}")

            os.replace(temp_path, self.store_file)
            logger.debug(f"Store saved to {self.store_file}")
        except (IOError, OSError) as e:
            logger.error(f"Failed to save {self.store_file}: {e}")
