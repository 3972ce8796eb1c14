"""
Key/value storage for the Scatter client.

The client keeps three things across process restarts:
- appkey       the key this app paired with
- nonce        the nonce that must accompany the next request
- identity     the last identity the wallet handed out

All file writes are atomic to prevent corruption.
"""

from __future__ import annotations

import json
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Optional

from shared.log import get_logger

logger = get_logger(__name__)


class StorageProvider(ABC):
    """Narrow key/value contract; values must be JSON serializable."""

    @abstractmethod
    def load(self, key: str) -> Optional[Any]:
        ...

    @abstractmethod
    def save(self, key: str, value: Any) -> None:
        ...

    @abstractmethod
    def remove(self, key: str) -> None:
        ...


class MemoryStorageProvider(StorageProvider):
    """Process-local storage; nothing survives a restart."""

    def __init__(self, initial: Optional[Dict[str, Any]] = None) -> None:
        self._data: Dict[str, Any] = dict(initial or {})

    def load(self, key: str) -> Optional[Any]:
        return self._data.get(key)

    def save(self, key: str, value: Any) -> None:
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)


class FileStorageProvider(StorageProvider):
    """
    JSON file storage.

    The whole file is rewritten on every save/remove using temp file + rename.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path).expanduser()
        self._data: Dict[str, Any] = {}
        self._load()

    def _load(self) -> None:
        if not self.path.exists():
            return
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.error(f"Failed to read {self.path}: {e}")
            return
        if isinstance(data, dict):
            self._data = data
            logger.debug(f"Loaded {self.path.name}")
        else:
            logger.error(f"Ignoring {self.path}: expected a JSON object")

    def _atomic_write(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)

        fd, tmp_path = tempfile.mkstemp(
            prefix=f"{self.path.stem}_",
            suffix=".json.tmp",
            dir=self.path.parent
        )

        try:
            with os.fdopen(fd, "w", encoding="utf-8") as tmp:
                json.dump(self._data, tmp, indent=2, sort_keys=True)
                tmp.flush()
                os.fsync(tmp.fileno())

            os.replace(tmp_path, self.path)
            logger.debug(f"Saved {self.path.name}")

        except Exception as e:
            logger.error(f"Failed to write {self.path}: {e}")
            if os.path.exists(tmp_path):
                try:
                    os.remove(tmp_path)
                except OSError:
                    pass
            raise

    def load(self, key: str) -> Optional[Any]:
        return self._data.get(key)

    def save(self, key: str, value: Any) -> None:
        self._data[key] = value
        self._atomic_write()

    def remove(self, key: str) -> None:
        if key in self._data:
            del self._data[key]
            self._atomic_write()
