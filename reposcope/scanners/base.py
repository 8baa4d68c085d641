"""Detector framework shared by every content kind.

A detector pairs static rule metadata (rule id, concern, severity, texts,
remediation) with a ``check`` callable that inspects a parsed unit or the raw
lines of a record and yields ``Hit`` locations. Calling the detector turns
hits into fully populated ``Finding`` objects.

Usage::

    detector = Detector(
        rule_id="legacy-declaration",
        concern=Concern.QUALITY,
        severity=Severity.LOW,
        title="Use of var",
        description="...",
        check=_check_var,
    )
    findings = detector(parsed_unit, DetectorContext(record))
"""

from __future__ import annotations

import hashlib
import logging
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any

from ..constants import CONTENT_PREFIX_LENGTH, MAX_SNIPPET_LENGTH, SNIPPET_CONTEXT_LINES
from ..models import (
    Concern,
    ConcernToggles,
    Finding,
    RemediationStep,
    Severity,
    SourceRecord,
)

logger = logging.getLogger(__name__)

CheckFn = Callable[[Any, "DetectorContext"], Iterable["Hit"]]


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Hit:
    """A location reported by a detector check.

    Attributes:
        line: 1-based line within the record's own content.
        column: 0-based column, if known.
        end_line: Last line of the reported range, if known.
        end_column: 0-based end column, if known.
        title: Replaces the detector title (e.g. to include a metric).
        description: Replaces the detector description.
        severity: Replaces the detector severity for graded rules.
        snippet: Replaces the generated line-context snippet.
        whole_file: The hit is about the file as a whole; the snippet is
            the start of the content.
    """

    line: int = 1
    column: int | None = None
    end_line: int | None = None
    end_column: int | None = None
    title: str | None = None
    description: str | None = None
    severity: Severity | None = None
    snippet: str | None = None
    whole_file: bool = False


@dataclass(frozen=True)
class SyntaxIssue:
    """A region a tolerant parser had to recover from.

    Attributes:
        line: 1-based line within the parsed content.
        column: 0-based column, if known.
        message: Parser message.
    """

    line: int
    column: int | None
    message: str


@dataclass
class DetectorContext:
    """What a check knows about the record it is inspecting."""

    record: SourceRecord
    _lines: list[str] | None = field(default=None, init=False, repr=False)

    @property
    def path(self) -> str:
        return self.record.path

    @property
    def lines(self) -> list[str]:
        if self._lines is None:
            self._lines = self.record.content.splitlines()
        return self._lines


@dataclass(frozen=True)
class Detector:
    """A single rule.

    Attributes:
        rule_id: Stable identifier, also used in finding ids.
        concern: Concern every finding of this rule belongs to.
        severity: Default severity of emitted findings.
        title: Short human-readable title.
        description: Explanation of the problem.
        impact: Consequence if left unaddressed.
        recommendation: One-line remediation advice.
        remediation: Ordered remediation steps.
        tags: Classification tags added to every finding.
        check: Callable yielding hits for one unit.
        structural: True when ``check`` needs a parsed unit; lexical
            detectors receive the record lines instead.
    """

    rule_id: str
    concern: Concern
    severity: Severity
    title: str
    description: str
    check: CheckFn
    impact: str = ""
    recommendation: str = ""
    remediation: tuple[RemediationStep, ...] = ()
    tags: frozenset[str] = frozenset()
    structural: bool = True

    def __call__(self, unit: Any, context: DetectorContext) -> list[Finding]:
        return [build_finding(self, hit, context) for hit in self.check(unit, context)]


def steps(*items: tuple[str, str] | tuple[str, str, str]) -> tuple[RemediationStep, ...]:
    """Build numbered remediation steps from ``(title, description[, example])`` tuples."""
    result = []
    for number, item in enumerate(items, start=1):
        title, description, *rest = item
        result.append(
            RemediationStep(
                step=number,
                title=title,
                description=description,
                example=rest[0] if rest else None,
            )
        )
    return tuple(result)


# ---------------------------------------------------------------------------
# Finding construction
# ---------------------------------------------------------------------------


def finding_id(file_path: str, rule_id: str, line: int, salt: str = "") -> str:
    """Deterministic finding identifier.

    The same file, rule and line always give the same id. *salt* is only
    used to tell apart findings that collide on those three values.
    """
    key = f"{file_path}\x00{rule_id}\x00{line}"
    if salt:
        key = f"{key}\x00{salt}"
    digest = hashlib.sha256(key.encode("utf-8")).hexdigest()
    return f"{rule_id}-{digest[:16]}"


def truncate(text: str, max_len: int = MAX_SNIPPET_LENGTH) -> str:
    """Truncate text to max_len characters, adding ellipsis if needed."""
    if len(text) <= max_len:
        return text
    return text[: max_len - 3] + "..."


def build_snippet(
    lines: Sequence[str],
    line: int,
    line_offset: int = 0,
    context: int = SNIPPET_CONTEXT_LINES,
) -> str:
    """Numbered context around *line* with a ``>>>`` marker on it.

    Args:
        lines: Lines of the record content.
        line: 1-based line within *lines*.
        line_offset: Added to the printed line numbers.
        context: Lines shown before and after the reported one.
    """
    if not lines:
        return ""
    index = min(max(line - 1, 0), len(lines) - 1)
    start = max(0, index - context)
    end = min(len(lines), index + context + 1)
    out = []
    for i in range(start, end):
        marker = ">>>" if i == index else "   "
        out.append(f"{marker} {i + 1 + line_offset}: {lines[i]}")
    return truncate("\n".join(out))


def content_prefix(content: str) -> str:
    return truncate(content[:CONTENT_PREFIX_LENGTH])


def build_finding(detector: Detector, hit: Hit, context: DetectorContext) -> Finding:
    """Turn a hit into a finding located in the analyzed file."""
    record = context.record
    offset = record.line_offset
    file_path = record.path

    if hit.snippet is not None:
        snippet = truncate(hit.snippet)
    elif hit.whole_file:
        snippet = content_prefix(record.content)
    else:
        snippet = build_snippet(context.lines, hit.line, offset)

    line = max(hit.line, 1) + offset
    tags = set(detector.tags) | {detector.concern.value, record.kind.value}
    if record.synthetic:
        tags.add("embedded")

    return Finding(
        id=finding_id(file_path, detector.rule_id, line),
        rule_id=detector.rule_id,
        title=hit.title or detector.title,
        description=hit.description or detector.description,
        severity=hit.severity or detector.severity,
        concern=detector.concern,
        file_path=file_path,
        line_number=line,
        end_line=hit.end_line + offset if hit.end_line is not None else None,
        column=hit.column,
        end_column=hit.end_column,
        snippet=snippet,
        impact=detector.impact,
        recommendation=detector.recommendation,
        remediation=list(detector.remediation),
        tags=tags,
    )


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------


def run_detectors(
    detectors: Iterable[Detector],
    unit: Any,
    context: DetectorContext,
    toggles: ConcernToggles,
) -> list[Finding]:
    """Run every enabled detector against *unit*, isolating failures.

    Structural detectors are skipped when *unit* is None (the content could
    not be parsed); lexical detectors always receive the record lines. A
    detector that raises is logged and contributes nothing.
    """
    findings: list[Finding] = []
    for detector in detectors:
        if not toggles.is_enabled(detector.concern):
            continue
        if detector.structural and unit is None:
            continue

        target = unit if detector.structural else context.lines
        try:
            findings.extend(detector(target, context))
        except Exception as e:
            logger.warning(
                f"Detector {detector.rule_id} failed on {context.path}: {e}",
                extra={"event": "detector_failed", "rule_id": detector.rule_id,
                       "path": context.path, "error": str(e)},
                exc_info=True,
            )
    return findings


def index_detectors(*groups: Iterable[Detector]) -> dict[str, Detector]:
    """Index detectors by rule id, rejecting duplicates."""
    index: dict[str, Detector] = {}
    for group in groups:
        for detector in group:
            if detector.rule_id in index:
                raise ValueError(f"Duplicate rule id: {detector.rule_id}")
            index[detector.rule_id] = detector
    return index
