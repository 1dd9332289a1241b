from __future__ import annotations

import logging
from importlib import resources
from typing import Any

import yaml

logger = logging.getLogger(__name__)

_LOCALES: dict[str, dict[str, Any]] = {}
_DEFAULT_LANG = "en"


def _deep_get(d: dict[str, Any], path: str) -> Any | None:
    cur: Any = d
    for part in path.split("."):
        if not isinstance(cur, dict) or part not in cur:
            return None
        cur = cur[part]
    return cur


def reload_locales() -> None:
    """
    (Re)load all YAML files from package directory i18n/locales/.
    A broken locale file is logged and skipped; the others still load.
    """
    global _LOCALES
    _LOCALES = {}

    loc_dir = resources.files(__package__).joinpath("locales")
    for entry in loc_dir.iterdir():
        if not entry.is_file() or not entry.name.lower().endswith((".yaml", ".yml")):
            continue
        try:
            data = yaml.safe_load(entry.read_text(encoding="utf-8")) or {}
        except yaml.YAMLError:
            logger.exception("Failed to parse locale file %s", entry.name)
            continue
        meta = data.get("meta", {})
        code = (meta.get("code") or entry.name.split(".")[0][:2]).lower()
        strings = data.get("strings", {})
        if isinstance(strings, dict):
            _LOCALES[code] = strings


def t(lang: str, key: str, default: str | None = None, **kwargs) -> str:
    """
    Translate by dotted key. Fallback to English, then default, then key.
    """
    lang = (lang or _DEFAULT_LANG).lower()
    v = _deep_get(_LOCALES.get(lang, {}), key)
    if v is None:
        v = _deep_get(_LOCALES.get(_DEFAULT_LANG, {}), key)
    if v is None or isinstance(v, dict):
        return default if default is not None else key
    try:
        return v.format(**kwargs)
    except (KeyError, IndexError, ValueError):
        return v


reload_locales()
