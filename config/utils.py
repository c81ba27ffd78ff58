"""Helper utilities for accessing configuration sections regardless of the backing loader."""
from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Dict


def _as_dict(candidate: Any) -> Dict:
    to_dict = getattr(candidate, 'to_dict', None)
    if callable(to_dict):
        candidate = to_dict()
    if isinstance(candidate, Mapping):
        return dict(candidate)
    return {}


def get_config_section(source: Any, section: str) -> Dict:
    """Return a dictionary section from a Config, SectionProxy, or plain dict."""
    if source is None:
        return {}

    getter = getattr(source, 'get', None)
    if callable(getter):
        candidate = getter(section, None)
        if candidate is not None:
            return _as_dict(candidate)
        return {}

    try:
        candidate = source[section]  # type: ignore[index]
    except (KeyError, TypeError, IndexError):
        return {}
    return _as_dict(candidate)
