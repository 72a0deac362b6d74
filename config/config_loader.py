import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv

load_dotenv()

DEFAULT_CONFIG_PATH = Path(__file__).parent / 'config.yaml'


def _wrap(value: Any) -> Any:
    return SectionProxy(value) if isinstance(value, dict) else value


def _expand(node: Any) -> Any:
    """Resolve ``${VAR}`` and ``${VAR:-default}`` in every string leaf.

    An unset ``${VAR}`` without a default is left as written so callers can
    tell a placeholder from an empty value.
    """
    if isinstance(node, dict):
        return {key: _expand(value) for key, value in node.items()}
    if isinstance(node, list):
        return [_expand(item) for item in node]
    if isinstance(node, str) and node.startswith('${') and node.endswith('}'):
        name, has_default, fallback = node[2:-1].partition(':-')
        if has_default:
            return os.getenv(name) or fallback
        return os.getenv(name, node)
    return node


class SectionProxy(Mapping):
    """Read-only view of one YAML mapping; nested mappings come back wrapped."""

    def __init__(self, data: Dict[str, Any]):
        self._data = data or {}

    def __getitem__(self, key: str) -> Any:
        return _wrap(self._data[key])

    def __getattr__(self, name: str) -> Any:
        if name.startswith('_') or self._data.get(name) is None:
            raise AttributeError(f"Config key '{name}' not found")
        return _wrap(self._data[name])

    def __iter__(self):
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def get(self, key: str, default: Any = None) -> Any:
        return _wrap(self._data.get(key, default))

    def to_dict(self) -> Dict[str, Any]:
        return self._data


class Config(SectionProxy):
    """Settings loaded from ``config/config.yaml``.

    ``SIGNAL_CONFIG`` points at another file; ``.env`` is read first so its
    variables take part in the expansion.
    """

    def __init__(self, config_path: Optional[str] = None):
        self.config_path = Path(config_path or os.getenv('SIGNAL_CONFIG') or DEFAULT_CONFIG_PATH)
        super().__init__(self._load())

    def _load(self) -> Dict[str, Any]:
        if not self.config_path.exists():
            raise RuntimeError(f"Configuration file not found at {self.config_path}")
        try:
            with self.config_path.open('r', encoding='utf-8') as fh:
                raw = yaml.safe_load(fh) or {}
        except yaml.YAMLError as exc:
            raise RuntimeError(f"Error parsing YAML configuration: {exc}") from exc
        return _expand(raw)

    def reload(self) -> None:
        self._data = self._load()


config = Config()
