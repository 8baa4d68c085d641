"""Data models for analysis inputs, findings and results.

Findings and results are pydantic models so callers can serialize them
directly; source records are plain frozen dataclasses that live only for
the duration of a run.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .core.exceptions import UnknownConcernError


class Severity(str, Enum):
    """Severity levels for findings."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class Concern(str, Enum):
    """The category a finding belongs to."""

    SECURITY = "security"
    PERFORMANCE = "performance"
    QUALITY = "quality"
    DOCUMENTATION = "documentation"
    ACCESSIBILITY = "accessibility"
    SEO = "seo"


class FindingStatus(str, Enum):
    """Tracking status. The engine only ever emits ``OPEN``."""

    OPEN = "open"
    IN_PROGRESS = "in-progress"
    RESOLVED = "resolved"
    CLOSED = "closed"


class ContentKind(str, Enum):
    """Structural family of a source record."""

    SCRIPT = "script"
    STYLESHEET = "stylesheet"
    MARKUP = "markup"
    STRUCTURED_DATA = "structured-data"
    PROSE = "prose"
    PLAIN_TEXT = "plain-text"
    UNSUPPORTED = "unsupported"


class SourceKind(str, Enum):
    """How the analysis root is located."""

    DIRECTORY = "directory"
    ARCHIVE = "archive"
    PAGE = "page"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Findings
# ---------------------------------------------------------------------------


class RemediationStep(BaseModel):
    """One ordered step of remediation guidance."""

    step: int
    title: str
    description: str
    example: str | None = None


class Finding(BaseModel):
    """A single reported problem instance.

    Attributes:
        id: Deterministic identifier, unique within a run.
        rule_id: Identifier of the detector that produced the finding.
        title: Short human-readable title.
        description: Detailed explanation, including measured values.
        severity: One of the four severity levels.
        concern: One of the six concerns.
        file_path: Path of the analyzed file (or page URL).
        line_number: 1-based line; 1 when not line-addressable.
        end_line: Optional last line of the reported range.
        column: Optional 0-based column.
        end_column: Optional 0-based end column.
        snippet: Bounded-length context around the location.
        impact: Consequence if unaddressed.
        recommendation: One-line remediation advice.
        remediation: Ordered remediation steps.
        tags: Free-form classification tags.
        status: Tracking status, initially ``OPEN``.
    """

    id: str
    rule_id: str
    title: str
    description: str
    severity: Severity
    concern: Concern
    file_path: str
    line_number: int = Field(default=1, ge=1)
    end_line: int | None = None
    column: int | None = None
    end_column: int | None = None
    snippet: str = ""
    impact: str = ""
    recommendation: str = ""
    remediation: list[RemediationStep] = Field(default_factory=list)
    tags: set[str] = Field(default_factory=set)
    status: FindingStatus = FindingStatus.OPEN
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


class AnalysisSummary(BaseModel):
    """Counts over a finding set. Always recomputed, never patched."""

    total: int = 0
    by_severity: dict[Severity, int] = Field(
        default_factory=lambda: dict.fromkeys(Severity, 0)
    )
    by_concern: dict[Concern, int] = Field(
        default_factory=lambda: dict.fromkeys(Concern, 0)
    )


def summarize(findings: Iterable[Finding]) -> AnalysisSummary:
    """Aggregate findings into counts by severity and by concern.

    The result does not depend on the order of *findings*.
    """
    severities: Counter[Severity] = Counter()
    concerns: Counter[Concern] = Counter()
    total = 0
    for finding in findings:
        severities[finding.severity] += 1
        concerns[finding.concern] += 1
        total += 1

    return AnalysisSummary(
        total=total,
        by_severity={severity: severities[severity] for severity in Severity},
        by_concern={concern: concerns[concern] for concern in Concern},
    )


class SkippedEntry(BaseModel):
    """A source entry excluded during collection."""

    path: str
    reason: str


class AnalysisResult(BaseModel):
    """Top-level output of one analysis run.

    Attributes:
        findings: All findings, sorted by file path and line.
        summary: Counts derived from ``findings``.
        files_analyzed: Number of real (non-synthetic) records analyzed.
        total_lines: Sum of line counts over analyzed records.
        elapsed_ms: Wall-clock time of the run.
        kinds: Number of analyzed records per content kind.
        skipped: Entries skipped during collection, with the reason.
        cancelled: True when the run was aborted between records.
    """

    findings: list[Finding] = Field(default_factory=list)
    summary: AnalysisSummary = Field(default_factory=AnalysisSummary)
    files_analyzed: int = 0
    total_lines: int = 0
    elapsed_ms: int = 0
    kinds: dict[str, int] = Field(default_factory=dict)
    skipped: list[SkippedEntry] = Field(default_factory=list)
    cancelled: bool = False


# ---------------------------------------------------------------------------
# Inputs
# ---------------------------------------------------------------------------


class ConcernToggles(BaseModel):
    """Per-run switches selecting which detector concerns are invoked."""

    model_config = ConfigDict(extra="forbid")

    security: bool = True
    performance: bool = True
    quality: bool = True
    documentation: bool = True
    accessibility: bool = False
    seo: bool = False

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any] | None) -> ConcernToggles:
        """Build toggles from a plain mapping.

        Raises:
            UnknownConcernError: If *values* names a concern that does not
                exist or holds a non-boolean value.
        """
        if values is None:
            return cls()
        unknown = sorted(set(values) - set(cls.model_fields))
        if unknown:
            raise UnknownConcernError(
                f"Unknown concern toggle(s): {', '.join(unknown)}. "
                f"Recognized: {', '.join(cls.model_fields)}"
            )
        try:
            return cls.model_validate(dict(values))
        except ValidationError as e:
            raise UnknownConcernError(f"Invalid concern toggles: {e}") from e

    def is_enabled(self, concern: Concern) -> bool:
        return bool(getattr(self, concern.value))


class SourceSpec(BaseModel):
    """Where the material to analyze comes from.

    Attributes:
        kind: Directory, archive or page.
        locator: Directory path, archive path, or page URL/path.
        content: Raw archive bytes or page markup supplied in place of
            reading ``locator``.
    """

    kind: SourceKind
    locator: str = ""
    content: bytes | str | None = None


@dataclass(frozen=True)
class SourceRecord:
    """One unit of material to analyze.

    Attributes:
        path: Path relative to the analysis root (or page URL).
        content: Decoded text content.
        kind: Content kind assigned by the classifier.
        size_bytes: Size of the raw content.
        line_offset: Lines to add to reported positions (synthetic records
            cut out of a page).
        synthetic: True for records derived from another record.
        origin: Path of the record this one was derived from.
        metadata: Extra facts about the record, such as HTTP headers.
    """

    path: str
    content: str
    kind: ContentKind
    size_bytes: int
    line_offset: int = 0
    synthetic: bool = False
    origin: str | None = None
    metadata: Mapping[str, str] = field(default_factory=dict)

    @property
    def line_count(self) -> int:
        return len(self.content.splitlines())
