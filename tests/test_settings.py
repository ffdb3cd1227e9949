from __future__ import annotations

import os
from pathlib import Path

from sheetl10n.decompose import DEFAULT_INLINE_TAGS
from sheetl10n.freezer import DEFAULT_INLINE_CODE_PATTERNS
from sheetl10n.settings import Settings


def test_defaults_without_environment(monkeypatch) -> None:
    for key in list(os.environ):
        if key.startswith("SHEETL10N_"):
            monkeypatch.delenv(key)
    settings = Settings.from_env()
    assert settings == Settings()
    assert settings.dialect == "2.1"
    assert settings.merge_fallback == "source"
    assert settings.inline_tags == DEFAULT_INLINE_TAGS
    assert settings.inline_code_patterns == DEFAULT_INLINE_CODE_PATTERNS


def test_environment_overrides(monkeypatch) -> None:
    monkeypatch.setenv("SHEETL10N_DIALECT", "1.2")
    monkeypatch.setenv("SHEETL10N_MERGE_FALLBACK", "EMPTY")
    monkeypatch.setenv("SHEETL10N_SOURCE_LANG", "de-DE")
    monkeypatch.setenv("SHEETL10N_TARGET_LANG", "ja")
    monkeypatch.setenv("SHEETL10N_SEGMENT", "off")
    monkeypatch.setenv("SHEETL10N_SRX", "rules/default.srx")
    monkeypatch.setenv("SHEETL10N_EXTRA_INLINE_TAGS", "X-Var, ruby")
    monkeypatch.setenv("SHEETL10N_INLINE_CODES", "\\[\\w+\\]\n\n%s")
    monkeypatch.setenv("SHEETL10N_CONTEXT_INLINE_CODES", '{"Legal*": ["§\\\\d+"], "UI": "\\\\{\\\\w+\\\\}"}')
    monkeypatch.setenv("SHEETL10N_LENGTH_FACTOR", "3.5")
    monkeypatch.setenv("SHEETL10N_WORKERS", "4")
    monkeypatch.setenv("SHEETL10N_PROGRESS", "1")
    settings = Settings.from_env()
    assert settings.dialect == "1.2"
    assert settings.merge_fallback == "empty"
    assert settings.source_lang == "de-DE"
    assert settings.target_lang == "ja"
    assert settings.segment is False
    assert settings.srx_path == Path("rules/default.srx")
    assert {"x-var", "ruby", "b"} <= settings.inline_tags
    assert settings.inline_code_patterns == ("\\[\\w+\\]", "%s")
    assert settings.context_inline_codes == (("Legal*", ("§\\d+",)), ("UI", ("\\{\\w+\\}",)))
    assert settings.length_factor == 3.5
    assert settings.workers == 4
    assert settings.progress is True


def test_inline_tags_replace_defaults(monkeypatch) -> None:
    monkeypatch.setenv("SHEETL10N_INLINE_TAGS", "b,i")
    assert Settings.from_env().inline_tags == frozenset({"b", "i"})


def test_invalid_values_fall_back(monkeypatch) -> None:
    monkeypatch.setenv("SHEETL10N_DIALECT", "3.0")
    monkeypatch.setenv("SHEETL10N_MERGE_FALLBACK", "guess")
    monkeypatch.setenv("SHEETL10N_LENGTH_FACTOR", "abc")
    monkeypatch.setenv("SHEETL10N_WORKERS", "-2")
    monkeypatch.setenv("SHEETL10N_CONTEXT_INLINE_CODES", "{broken")
    settings = Settings.from_env()
    assert settings.dialect == "2.1"
    assert settings.merge_fallback == "source"
    assert settings.length_factor == 2.0
    assert settings.workers == 1
    assert settings.context_inline_codes == ()
