import json
import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Optional


logger = logging.getLogger(__name__)


class PersistenceError(Exception):
    """Stored state could not be read back."""


class KeyValueStore(ABC):
    """Durable text store keyed by name."""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        pass

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        pass

    @abstractmethod
    def remove(self, key: str) -> None:
        pass


class MemoryStore(KeyValueStore):
    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)


class JsonFileStore(KeyValueStore):
    """All keys in one JSON object on disk, rewritten on every change.

    An unreadable file is logged and treated as empty; the next write
    replaces it.
    """

    def __init__(self, path):
        self.path = Path(path)
        self._data: Optional[Dict[str, str]] = None

    def _load(self) -> Dict[str, str]:
        if self._data is not None:
            return self._data
        self._data = {}
        try:
            if self.path.exists():
                raw = json.loads(self.path.read_text(encoding='utf-8'))
                if not isinstance(raw, dict):
                    raise PersistenceError(f"expected a JSON object, got {type(raw).__name__}")
                self._data = {str(k): v for k, v in raw.items() if isinstance(v, str)}
        except (OSError, ValueError, PersistenceError) as exc:
            logger.warning("Signal store %s unreadable, starting empty: %s", self.path, exc)
        return self._data

    def _flush(self) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp = self.path.with_suffix(self.path.suffix + '.tmp')
            tmp.write_text(json.dumps(self._data), encoding='utf-8')
            os.replace(tmp, self.path)
        except OSError as exc:
            logger.error("Signal store persist failed: %s", exc)

    def get(self, key: str) -> Optional[str]:
        return self._load().get(key)

    def set(self, key: str, value: str) -> None:
        self._load()[key] = value
        self._flush()

    def remove(self, key: str) -> None:
        if self._load().pop(key, None) is not None:
            self._flush()
