"""Lexical detectors that work on raw lines instead of a parsed structure.

These run for every content kind, including the kinds that have no
structural parser (structured data, prose and plain text), and they still
run when a structural parser failed.
"""

from __future__ import annotations

import json
from collections.abc import Iterator

from ..constants import MAX_PROSE_LINE_LENGTH, UNDOCUMENTED_MIN_LINES
from ..models import Concern, ContentKind, Severity
from .base import Detector, DetectorContext, Hit, index_detectors, steps

_COMMENT_MARKERS = {
    ContentKind.SCRIPT: ("//", "/*"),
    ContentKind.STYLESHEET: ("/*", "//"),
    ContentKind.MARKUP: ("<!--", "//", "/*"),
}


def _check_undocumented_file(lines: list[str], ctx: DetectorContext) -> Iterator[Hit]:
    markers = _COMMENT_MARKERS.get(ctx.record.kind)
    if markers is None or len(lines) <= UNDOCUMENTED_MIN_LINES:
        return
    if any(line.strip().startswith(markers) for line in lines):
        return
    yield Hit(
        whole_file=True,
        description=(
            f"This file has {len(lines)} lines and no comments describing "
            "its purpose."
        ),
    )


def _check_invalid_json(lines: list[str], ctx: DetectorContext) -> Iterator[Hit]:
    content = ctx.record.content
    if not content.strip():
        return
    try:
        json.loads(content)
    except json.JSONDecodeError as e:
        yield Hit(
            line=e.lineno,
            column=e.colno - 1,
            description=f"The file is not valid JSON: {e.msg} (line {e.lineno}, column {e.colno}).",
        )


def _check_json_tab_indent(lines: list[str], ctx: DetectorContext) -> Iterator[Hit]:
    for number, line in enumerate(lines, start=1):
        if "\t" in line:
            yield Hit(line=number)
            return


def _check_long_line(lines: list[str], ctx: DetectorContext) -> Iterator[Hit]:
    for number, line in enumerate(lines, start=1):
        if len(line) > MAX_PROSE_LINE_LENGTH:
            yield Hit(
                line=number,
                description=(
                    f"Line is {len(line)} characters long (limit {MAX_PROSE_LINE_LENGTH})."
                ),
            )


def _check_empty_file(lines: list[str], ctx: DetectorContext) -> Iterator[Hit]:
    if len(ctx.record.content) == 0:
        yield Hit(whole_file=True)


UNDOCUMENTED_FILE = Detector(
    rule_id="undocumented-file",
    concern=Concern.DOCUMENTATION,
    severity=Severity.LOW,
    title="Missing documentation",
    description="This file lacks comments describing its purpose.",
    impact="Undocumented code is harder to understand and maintain.",
    recommendation="Add a header comment explaining what the file is for.",
    remediation=steps(
        ("Add file header documentation",
         "Add a comment block at the top of the file explaining its purpose.",
         "/**\n * @fileoverview What this module does and who uses it.\n */"),
    ),
    tags=frozenset({"maintainability"}),
    check=_check_undocumented_file,
    structural=False,
)

STRUCTURED_DATA_DETECTORS: list[Detector] = [
    Detector(
        rule_id="invalid-json",
        concern=Concern.QUALITY,
        severity=Severity.HIGH,
        title="Invalid JSON",
        description="The file is not valid JSON.",
        impact="Tools reading this file will fail to load it.",
        recommendation="Fix the syntax error reported by the decoder.",
        tags=frozenset({"json", "syntax"}),
        check=_check_invalid_json,
        structural=False,
    ),
    Detector(
        rule_id="json-tab-indent",
        concern=Concern.QUALITY,
        severity=Severity.LOW,
        title="Tabs in JSON",
        description="The file contains tab characters.",
        impact="Mixed indentation makes diffs noisy.",
        recommendation="Indent JSON with spaces.",
        tags=frozenset({"json", "style"}),
        check=_check_json_tab_indent,
        structural=False,
    ),
]

PROSE_DETECTORS: list[Detector] = [
    Detector(
        rule_id="long-line",
        concern=Concern.QUALITY,
        severity=Severity.LOW,
        title="Long line",
        description="A line is longer than the recommended maximum.",
        impact="Long lines are hard to read and review.",
        recommendation=f"Wrap lines at {MAX_PROSE_LINE_LENGTH} characters.",
        tags=frozenset({"style"}),
        check=_check_long_line,
        structural=False,
    ),
]

PLAIN_TEXT_DETECTORS: list[Detector] = [
    Detector(
        rule_id="empty-file",
        concern=Concern.QUALITY,
        severity=Severity.LOW,
        title="Empty file",
        description="The file has no content.",
        impact="Empty files add clutter and may indicate something went missing.",
        recommendation="Remove the file or add its intended content.",
        tags=frozenset({"housekeeping"}),
        check=_check_empty_file,
        structural=False,
    ),
]

LEXICAL_DETECTORS: dict[ContentKind, list[Detector]] = {
    ContentKind.SCRIPT: [UNDOCUMENTED_FILE],
    ContentKind.STYLESHEET: [UNDOCUMENTED_FILE],
    ContentKind.MARKUP: [UNDOCUMENTED_FILE],
    ContentKind.STRUCTURED_DATA: STRUCTURED_DATA_DETECTORS,
    ContentKind.PROSE: PROSE_DETECTORS,
    ContentKind.PLAIN_TEXT: PLAIN_TEXT_DETECTORS,
}

_DETECTOR_INDEX: dict[str, Detector] = index_detectors(
    [UNDOCUMENTED_FILE], STRUCTURED_DATA_DETECTORS, PROSE_DETECTORS, PLAIN_TEXT_DETECTORS
)


def get_detector_by_id(rule_id: str) -> Detector | None:
    """Look up a lexical detector by its rule id."""
    return _DETECTOR_INDEX.get(rule_id)
