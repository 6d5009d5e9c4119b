"""
Local State Storage

Key-value storage port for single-device state (theme, hint budget,
in-progress transcripts). Adapters: in-memory and a JSON file on disk.
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional, Protocol

logger = logging.getLogger(__name__)


class StoragePort(Protocol):
    """Anything with get/set/remove over JSON-serialisable values."""

    def get(self, key: str) -> Optional[Any]:
        ...

    def set(self, key: str, value: Any) -> None:
        ...

    def remove(self, key: str) -> None:
        ...


class InMemoryStorage:
    """Process-local storage; state is lost on restart."""

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self._data: Dict[str, Any] = dict(initial or {})

    def get(self, key: str) -> Optional[Any]:
        return self._data.get(key)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)


class JsonFileStorage:
    """
    Storage backed by a single JSON file.

    The whole file is rewritten on every set/remove (last write wins).
    A missing or corrupt file reads as empty.
    """

    def __init__(self, path: str):
        self.path = Path(path)

    def _load(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            logger.warning(f"⚠️ [JsonFileStorage] Could not read {self.path}: {e}; starting empty")
            return {}
        return data if isinstance(data, dict) else {}

    def _save(self, data: Dict[str, Any]):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
        os.replace(tmp_path, self.path)

    def get(self, key: str) -> Optional[Any]:
        return self._load().get(key)

    def set(self, key: str, value: Any) -> None:
        data = self._load()
        data[key] = value
        self._save(data)

    def remove(self, key: str) -> None:
        data = self._load()
        if key in data:
            del data[key]
            self._save(data)


def storage_from_env() -> StoragePort:
    """JSON file storage when LOCAL_STATE_PATH is set, otherwise in-memory."""
    path = os.getenv("LOCAL_STATE_PATH")
    if path:
        logger.info(f"💾 [Storage] Using local state file: {path}")
        return JsonFileStorage(path)
    logger.info("💾 [Storage] LOCAL_STATE_PATH not set, using in-memory local state")
    return InMemoryStorage()
