"""Tests for extension based content classification."""

import pytest

from reposcope.core.classifier import classify, script_language
from reposcope.models import ContentKind


class TestClassify:
    """Test the classify function."""

    @pytest.mark.parametrize(
        "path,expected",
        [
            ("src/app.js", ContentKind.SCRIPT),
            ("src/App.tsx", ContentKind.SCRIPT),
            ("lib/worker.mjs", ContentKind.SCRIPT),
            ("styles/site.scss", ContentKind.STYLESHEET),
            ("index.htm", ContentKind.MARKUP),
            ("package.json", ContentKind.STRUCTURED_DATA),
            ("docs/README.md", ContentKind.PROSE),
            ("notes.txt", ContentKind.PLAIN_TEXT),
            ("logo.png", ContentKind.UNSUPPORTED),
            ("Makefile", ContentKind.UNSUPPORTED),
        ],
    )
    def test_default_table(self, path: str, expected: ContentKind) -> None:
        assert classify(path) == expected

    def test_case_insensitive(self) -> None:
        assert classify("SRC/MAIN.JS") == ContentKind.SCRIPT
        assert classify("Theme.CSS") == ContentKind.STYLESHEET

    def test_url_with_query_string(self) -> None:
        assert classify("https://cdn.example.com/app.js?v=3") == ContentKind.SCRIPT
        assert classify("https://example.com/site.css#top") == ContentKind.STYLESHEET

    def test_windows_separators(self) -> None:
        assert classify("src\\widgets\\menu.js") == ContentKind.SCRIPT

    def test_custom_table_replaces_default(self) -> None:
        table = {".vue": ContentKind.MARKUP}

        assert classify("App.vue", table) == ContentKind.MARKUP
        assert classify("app.js", table) == ContentKind.UNSUPPORTED


class TestScriptLanguage:
    """Test grammar selection for scripts."""

    @pytest.mark.parametrize(
        "path,expected",
        [
            ("a.js", "javascript"),
            ("a.jsx", "javascript"),
            ("a.cjs", "javascript"),
            ("a.ts", "typescript"),
            ("a.TS", "typescript"),
            ("a.tsx", "tsx"),
        ],
    )
    def test_language(self, path: str, expected: str) -> None:
        assert script_language(path) == expected
