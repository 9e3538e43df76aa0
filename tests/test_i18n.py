"""Tests for locale resolution and string lookup."""

import json

import pytest

import i18n


@pytest.fixture
def locales(tmp_path):
    (tmp_path / "en.json").write_text(json.dumps({
        "greet": "Hello {name}",
        "bye": "Goodbye!",
        "history.count": "{count} command|{count} commands",
    }))
    (tmp_path / "es.json").write_text(json.dumps({"greet": "Hola {name}"}))
    return tmp_path


def test_english_lookup_and_placeholders(locales):
    i18n.init(locale_override="en", locales_dir=locales)
    assert i18n.t("greet", name="Sam") == "Hello Sam"
    assert i18n.get_locale() == "en"


def test_locale_overlay_falls_back_to_english(locales):
    i18n.init(locale_override="es_MX", locales_dir=locales)
    assert i18n.get_locale() == "es"
    assert i18n.t("greet", name="Sam") == "Hola Sam"
    assert i18n.t("bye") == "Goodbye!"


def test_unknown_locale_uses_english(locales):
    i18n.init(locale_override="fr_FR", locales_dir=locales)
    assert i18n.get_locale() == "en"


def test_plural_selection(locales):
    i18n.init(locale_override="en", locales_dir=locales)
    assert i18n.t("history.count", count=1) == "1 command"
    assert i18n.t("history.count", count=3) == "3 commands"


def test_missing_key_returns_default_or_key(locales):
    i18n.init(locale_override="en", locales_dir=locales)
    assert i18n.t("nope") == "nope"
    assert i18n.t("nope", default="fallback {x}", x=1) == "fallback 1"


def test_bad_placeholder_leaves_text(locales):
    i18n.init(locale_override="en", locales_dir=locales)
    assert i18n.t("greet") == "Hello {name}"
    assert i18n.t("greet", other="x") == "Hello {name}"


def test_locale_detected_from_environment(locales, monkeypatch):
    monkeypatch.delenv("BONDSMAN_LANG", raising=False)
    monkeypatch.delenv("LC_ALL", raising=False)
    monkeypatch.delenv("LC_MESSAGES", raising=False)
    monkeypatch.setenv("LANG", "es_ES.UTF-8")
    i18n.init(locales_dir=locales)
    assert i18n.get_locale() == "es"


def test_bondsman_lang_wins(locales, monkeypatch):
    monkeypatch.setenv("BONDSMAN_LANG", "en")
    monkeypatch.setenv("LANG", "es_ES.UTF-8")
    i18n.init(locales_dir=locales)
    assert i18n.get_locale() == "en"


def test_shipped_locales_share_placeholders():
    """Every translated string keeps the placeholders of its English original."""
    import re
    from pathlib import Path

    root = Path(i18n.__file__).resolve().parent / "locales"
    english = json.loads((root / "en.json").read_text(encoding="utf-8"))
    for path in root.glob("*.json"):
        strings = json.loads(path.read_text(encoding="utf-8"))
        for key, text in strings.items():
            assert key in english, f"{path.name}: unknown key {key}"
            assert set(re.findall(r"{(\w+)}", text)) == set(re.findall(r"{(\w+)}", english[key]))
