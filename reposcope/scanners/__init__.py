"""Structural parsers and detector sets for every content kind.

``parse_unit`` turns a record into the parsed structure its detectors
expect, and ``structural_detectors`` / ``lexical_detectors`` return the
detector sets for a kind.
"""

from __future__ import annotations

from typing import Any

from ..core.classifier import script_language
from ..models import ContentKind, SourceRecord
from .base import Detector, DetectorContext, Hit, SyntaxIssue, run_detectors
from .markup.detectors import MARKUP_DETECTORS
from .markup.parser import parse_markup
from .script.ast_engine import ASTEngine
from .script.detectors import SCRIPT_DETECTORS
from .script.detectors import engine as script_engine
from .stylesheet.detectors import STYLESHEET_DETECTORS
from .stylesheet.parser import parse_stylesheet
from .text import LEXICAL_DETECTORS

_STRUCTURAL_DETECTORS: dict[ContentKind, list[Detector]] = {
    ContentKind.SCRIPT: SCRIPT_DETECTORS,
    ContentKind.STYLESHEET: STYLESHEET_DETECTORS,
    ContentKind.MARKUP: MARKUP_DETECTORS,
}

ALL_DETECTORS: list[Detector] = (
    SCRIPT_DETECTORS
    + STYLESHEET_DETECTORS
    + MARKUP_DETECTORS
    # Lexical detectors are shared between kinds
    + list({d.rule_id: d for group in LEXICAL_DETECTORS.values() for d in group}.values())
)


def structural_detectors(kind: ContentKind) -> list[Detector]:
    return _STRUCTURAL_DETECTORS.get(kind, [])


def lexical_detectors(kind: ContentKind) -> list[Detector]:
    return LEXICAL_DETECTORS.get(kind, [])


def is_inline(record: SourceRecord) -> bool:
    """True for script or style blocks cut out of a page."""
    return record.synthetic and record.metadata.get("embedded") == "inline"


def get_detector_by_id(rule_id: str) -> Detector | None:
    """Look up any per-record detector by rule id."""
    for detector in ALL_DETECTORS:
        if detector.rule_id == rule_id:
            return detector
    return None


def parse_unit(record: SourceRecord, engine: ASTEngine | None = None) -> Any:
    """Parse *record* into the structure its structural detectors take.

    Returns None for kinds that are only scanned lexically.

    Raises:
        ParseError: If the content cannot be parsed at all.
    """
    if record.kind == ContentKind.SCRIPT:
        language = "javascript" if is_inline(record) else script_language(record.path)
        return (engine or script_engine).parse(record.content, language)
    if record.kind == ContentKind.STYLESHEET:
        # Inline <style> blocks carry the page path; parse them as plain CSS
        path = "" if is_inline(record) else record.path
        return parse_stylesheet(record.content, path)
    if record.kind == ContentKind.MARKUP:
        return parse_markup(record.content)
    return None


__all__ = [
    "ALL_DETECTORS",
    "Detector",
    "DetectorContext",
    "Hit",
    "SyntaxIssue",
    "get_detector_by_id",
    "lexical_detectors",
    "parse_unit",
    "run_detectors",
    "structural_detectors",
]
