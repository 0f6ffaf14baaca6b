"""Lightweight i18n module for voice-upi.

Loads YAML locale files from voice_upi/locales/ and provides
a simple t(key) lookup with dot-notation keys. Prompt wording
and echo phrases live there; command grammar stays English.
"""

import os
from typing import Any

import yaml

from voice_upi import PACKAGE_DIR

_translations: dict = {}
_locale: str = "en"
_fallback: str = "en"


def setup(locale: str = "en", fallback: str = "en") -> None:
    """Initialize i18n with the given locale and fallback."""
    global _locale, _fallback, _translations
    _locale = locale
    _fallback = fallback
    _translations = {}

    locales_dir = os.path.join(PACKAGE_DIR, "locales")
    for lang in {fallback, locale}:
        path = os.path.join(locales_dir, f"{lang}.yaml")
        if os.path.exists(path):
            with open(path, "r", encoding="utf-8") as f:
                _translations[lang] = yaml.safe_load(f) or {}


def _resolve(key: str, data: dict) -> Any:
    """Resolve a dot-separated key in a nested dict."""
    current = data
    for part in key.split("."):
        if isinstance(current, dict) and part in current:
            current = current[part]
        else:
            return None
    return current


def t(key: str, **kwargs) -> Any:
    """Get translated value by dot-notation key.

    Returns the value for the current locale, falling back
    to the fallback locale, then to the raw key string.
    Supports {placeholder} formatting via kwargs for str values.
    Lists and dicts are returned as-is.
    """
    if not _translations:
        setup(_locale, _fallback)
    result = _resolve(key, _translations.get(_locale, {}))
    if result is None:
        result = _resolve(key, _translations.get(_fallback, {}))
    if result is None:
        return key
    if isinstance(result, str) and kwargs:
        result = result.format(**kwargs)
    return result
