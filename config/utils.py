"""Section lookup that works for the YAML loader and for plain dict overrides."""
from __future__ import annotations

from typing import Any, Dict


def get_config_section(source: Any, section: str) -> Dict:
    """Return ``section`` from a Config, a SectionProxy or a plain dict as a dict."""
    if source is None:
        return {}
    getter = getattr(source, 'get', None)
    value = getter(section, None) if callable(getter) else None
    if value is None:
        return {}
    to_dict = getattr(value, 'to_dict', None)
    if callable(to_dict):
        return dict(to_dict())
    if isinstance(value, dict):
        return dict(value)
    return {}
