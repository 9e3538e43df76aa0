"""
Lightweight i18n module for the Bondsman CLI.

Usage:
    import i18n
    i18n.init()                         # detect locale, load strings
    i18n.t('cli.goodbye')               # → "Goodbye!"
    i18n.t('service.pulling', model='qwen2.5-coder:1.5b')
"""

import json
import logging
import os
import sys
from pathlib import Path

logger = logging.getLogger(__name__)

_strings: dict = {}
_locale_code: str = 'en'

# Checked in order; the first non-empty value wins
_LOCALE_ENV_VARS = ('BONDSMAN_LANG', 'LC_ALL', 'LC_MESSAGES', 'LANG')


def _detect_locale() -> str:
    """Detect language code from the environment, e.g. "es_ES.UTF-8" → "es_ES"."""
    for var in _LOCALE_ENV_VARS:
        value = os.environ.get(var, '')
        code = value.split('.')[0].split('@')[0]
        if code and code not in ('C', 'POSIX'):
            return code
    return 'en'


def _resolve_locale(code: str, locales_dir: Path) -> str:
    """Resolve locale code to an available JSON file.

    Resolution order: exact match (es_MX) → language only (es) → fallback 'en'.
    """
    if (locales_dir / f'{code}.json').is_file():
        return code
    lang = code.split('_')[0]
    if lang != code and (locales_dir / f'{lang}.json').is_file():
        return lang
    return 'en'


def _find_locales_dir() -> Path:
    """Locate locales/: $BONDSMAN_LOCALES, beside this module, then the installed share dir."""
    override = os.environ.get('BONDSMAN_LOCALES')
    if override and Path(override).is_dir():
        return Path(override)
    local_dir = Path(__file__).resolve().parent / 'locales'
    if local_dir.is_dir():
        return local_dir
    return Path(sys.prefix) / 'share' / 'bondsman' / 'locales'


def _load(path: Path) -> dict:
    try:
        with open(path, encoding='utf-8') as f:
            return json.load(f)
    except (OSError, ValueError) as e:
        logger.warning("Cannot load strings from %s: %s", path, e)
        return {}


def init(locale_override: str = None, locales_dir: Path = None):
    """Initialize i18n: load base English, then overlay the detected locale."""
    global _strings, _locale_code

    locales_dir = Path(locales_dir) if locales_dir else _find_locales_dir()

    _strings = {}
    en_path = locales_dir / 'en.json'
    if en_path.is_file():
        _strings = _load(en_path)

    _locale_code = _resolve_locale(locale_override or _detect_locale(), locales_dir)
    if _locale_code != 'en':
        _strings.update(_load(locales_dir / f'{_locale_code}.json'))
    logger.debug("locale %s, %d strings", _locale_code, len(_strings))


def t(key: str, default: str = None, **kwargs) -> str:
    """Look up a translated string by key, with optional placeholder interpolation.

    Placeholders use {name} syntax: t('service.pulling', model='llama3')
    For plural forms, use pipe-separated singular|plural with {count}:
        "history.loaded": "{count} command|{count} commands"
    """
    text = _strings.get(key)
    if text is None:
        text = default if default is not None else key

    if '|' in text and 'count' in kwargs:
        parts = text.split('|', 1)
        text = parts[0] if kwargs['count'] == 1 else parts[1]

    if kwargs:
        try:
            text = text.format(**kwargs)
        except (KeyError, IndexError):
            pass

    return text


def get_locale() -> str:
    """Return the resolved locale code."""
    return _locale_code
