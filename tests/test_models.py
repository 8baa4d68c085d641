"""Tests for the finding model, summarizer and run inputs."""

import pytest
from pydantic import ValidationError

from reposcope.core.exceptions import UnknownConcernError
from reposcope.models import (
    AnalysisSummary,
    Concern,
    ConcernToggles,
    ContentKind,
    Finding,
    FindingStatus,
    Severity,
    SourceKind,
    SourceRecord,
    SourceSpec,
    summarize,
)


def _finding(rule_id: str, severity: Severity, concern: Concern, line: int = 1) -> Finding:
    return Finding(
        id=f"{rule_id}-{line}",
        rule_id=rule_id,
        title=rule_id,
        description="test",
        severity=severity,
        concern=concern,
        file_path="app.js",
        line_number=line,
    )


class TestFinding:
    """Test the Finding model."""

    def test_defaults(self) -> None:
        finding = _finding("dynamic-eval", Severity.CRITICAL, Concern.SECURITY)

        assert finding.status == FindingStatus.OPEN
        assert finding.remediation == []
        assert finding.tags == set()
        assert finding.created_at.tzinfo is not None

    def test_line_number_is_one_based(self) -> None:
        with pytest.raises(ValidationError):
            _finding("dynamic-eval", Severity.CRITICAL, Concern.SECURITY, line=0)

    def test_serializes_enums_as_values(self) -> None:
        finding = _finding("missing-title", Severity.HIGH, Concern.SEO)
        data = finding.model_dump(mode="json")

        assert data["severity"] == "high"
        assert data["concern"] == "seo"
        assert data["status"] == "open"


class TestSummarize:
    """Test the summarize function."""

    def test_empty(self) -> None:
        summary = summarize([])

        assert summary.total == 0
        assert set(summary.by_severity) == set(Severity)
        assert set(summary.by_concern) == set(Concern)
        assert all(count == 0 for count in summary.by_severity.values())
        assert all(count == 0 for count in summary.by_concern.values())

    def test_counts_partition_the_total(self) -> None:
        findings = [
            _finding("dynamic-eval", Severity.CRITICAL, Concern.SECURITY, 1),
            _finding("legacy-declaration", Severity.LOW, Concern.QUALITY, 2),
            _finding("legacy-declaration", Severity.LOW, Concern.QUALITY, 3),
            _finding("missing-alt-text", Severity.HIGH, Concern.ACCESSIBILITY, 4),
        ]
        summary = summarize(findings)

        assert summary.total == 4
        assert sum(summary.by_severity.values()) == summary.total
        assert sum(summary.by_concern.values()) == summary.total
        assert summary.by_severity[Severity.LOW] == 2
        assert summary.by_severity[Severity.MEDIUM] == 0
        assert summary.by_concern[Concern.QUALITY] == 2
        assert summary.by_concern[Concern.SEO] == 0

    def test_order_independent(self) -> None:
        findings = [
            _finding("a", Severity.HIGH, Concern.SECURITY, 1),
            _finding("b", Severity.LOW, Concern.DOCUMENTATION, 2),
            _finding("c", Severity.MEDIUM, Concern.PERFORMANCE, 3),
        ]

        assert summarize(findings) == summarize(list(reversed(findings)))

    def test_accepts_generator(self) -> None:
        findings = (_finding("a", Severity.HIGH, Concern.SECURITY, n) for n in range(1, 4))

        assert summarize(findings).total == 3

    def test_default_summary_is_zero_filled(self) -> None:
        summary = AnalysisSummary()

        assert summary.by_severity == dict.fromkeys(Severity, 0)
        assert summary.by_concern == dict.fromkeys(Concern, 0)


class TestConcernToggles:
    """Test concern toggle parsing."""

    def test_defaults(self) -> None:
        toggles = ConcernToggles()

        enabled = {c for c in Concern if toggles.is_enabled(c)}

        assert enabled == {
            Concern.SECURITY,
            Concern.PERFORMANCE,
            Concern.QUALITY,
            Concern.DOCUMENTATION,
        }

    def test_from_mapping(self) -> None:
        toggles = ConcernToggles.from_mapping({"seo": True, "security": False})

        assert toggles.is_enabled(Concern.SEO)
        assert not toggles.is_enabled(Concern.SECURITY)
        assert toggles.is_enabled(Concern.QUALITY)

    def test_from_none(self) -> None:
        assert ConcernToggles.from_mapping(None) == ConcernToggles()

    def test_unknown_concern_rejected(self) -> None:
        with pytest.raises(UnknownConcernError, match="styling"):
            ConcernToggles.from_mapping({"styling": True})

    def test_invalid_value_rejected(self) -> None:
        with pytest.raises(UnknownConcernError):
            ConcernToggles.from_mapping({"security": ["yes"]})


class TestSourceInputs:
    """Test source specifications and records."""

    def test_source_spec_kind_from_string(self) -> None:
        spec = SourceSpec.model_validate({"kind": "archive", "content": b"PK"})

        assert spec.kind == SourceKind.ARCHIVE
        assert spec.locator == ""

    def test_source_spec_rejects_unknown_kind(self) -> None:
        with pytest.raises(ValidationError):
            SourceSpec.model_validate({"kind": "database", "locator": "db"})

    def test_record_line_count(self) -> None:
        record = SourceRecord(
            path="a.js", content="a\nb\nc\n", kind=ContentKind.SCRIPT, size_bytes=6
        )

        assert record.line_count == 3
        assert record.synthetic is False
        assert record.line_offset == 0

    def test_record_is_immutable(self) -> None:
        record = SourceRecord(path="a.js", content="", kind=ContentKind.SCRIPT, size_bytes=0)

        with pytest.raises(AttributeError):
            record.path = "b.js"  # type: ignore[misc]
