"""Shared fixtures for the reposcope test suite."""

import io
import zipfile
from collections.abc import Callable

import pytest

from reposcope.core.classifier import classify
from reposcope.models import ConcernToggles, Finding, SourceRecord
from reposcope.scanners import lexical_detectors, parse_unit, run_detectors, structural_detectors
from reposcope.scanners.base import DetectorContext


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "slow: mark test as slow running")


@pytest.fixture
def all_concerns() -> ConcernToggles:
    """Toggles with every concern switched on."""
    return ConcernToggles(
        security=True,
        performance=True,
        quality=True,
        documentation=True,
        accessibility=True,
        seo=True,
    )


@pytest.fixture
def make_record() -> Callable[..., SourceRecord]:
    """Build a record, classifying it by path unless a kind is given."""

    def _make(path: str, content: str, **kwargs) -> SourceRecord:
        kind = kwargs.pop("kind", None) or classify(path)
        return SourceRecord(
            path=path,
            content=content,
            kind=kind,
            size_bytes=len(content.encode("utf-8")),
            **kwargs,
        )

    return _make


@pytest.fixture
def analyze(make_record, all_concerns) -> Callable[..., list[Finding]]:
    """Parse one file and run every detector set that applies to it."""

    def _analyze(path: str, content: str, toggles: ConcernToggles | None = None) -> list[Finding]:
        toggles = toggles or all_concerns
        record = make_record(path, content)
        context = DetectorContext(record)
        unit = parse_unit(record)
        findings = run_detectors(structural_detectors(record.kind), unit, context, toggles)
        findings.extend(run_detectors(lexical_detectors(record.kind), None, context, toggles))
        return findings

    return _analyze


@pytest.fixture
def zip_bytes() -> Callable[[dict[str, str | bytes]], bytes]:
    """Build an in-memory zip archive from ``{name: content}``."""

    def _build(entries: dict[str, str | bytes]) -> bytes:
        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as zf:
            for name, content in entries.items():
                zf.writestr(name, content)
        return buffer.getvalue()

    return _build


@pytest.fixture
def web_project(tmp_path):
    """A small project tree with scripts, styles, markup and noise."""
    files = {
        "index.html": (
            "<!DOCTYPE html>\n"
            "<html>\n"
            "<head><title>Shop</title></head>\n"
            "<body><img src=\"logo.png\"></body>\n"
            "</html>\n"
        ),
        "src/app.js": "// Entry point\nimport 'src/cart.js';\nconsole.log('ready');\n",
        "src/cart.js": "// Cart state\nexport const items = [];\n",
        "styles/site.css": "/* Site styles */\nbody { margin: 0; }\n",
        "README.md": "# Shop\n",
        "logo.png": "not really a png",
        "node_modules/lib/index.js": "eval('boom');\n",
        "dist/bundle.js": "eval('boom');\n",
    }
    for name, content in files.items():
        target = tmp_path / name
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")
    return tmp_path


def rule_ids(findings: list[Finding]) -> list[str]:
    return [f.rule_id for f in findings]


@pytest.fixture
def ids() -> Callable[[list[Finding]], list[str]]:
    """Rule ids of a finding list, in order."""
    return rule_ids
