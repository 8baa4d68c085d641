"""Tests for run orchestration."""

import logging
import threading
from unittest.mock import patch

import httpx
import pytest

from reposcope.core import orchestrator
from reposcope.core.collector import CollectorOptions
from reposcope.core.exceptions import (
    ConfigurationError,
    ParseError,
    SourceNotFoundError,
    UnknownConcernError,
    UnsupportedSourceError,
)
from reposcope.core.orchestrator import (
    analyze_record,
    finalize_findings,
    run_analysis,
    run_analysis_async,
)
from reposcope.models import (
    Concern,
    ConcernToggles,
    ContentKind,
    Finding,
    Severity,
    SourceKind,
    SourceSpec,
)
from reposcope.scanners import parse_unit
from reposcope.scanners.script.detectors import engine as script_engine

INLINE_PAGE = (
    "<html>\n"
    "<head>\n"
    "<title>T</title>\n"
    "<script>\n"
    "eval(payload);\n"
    "</script>\n"
    "<style>\n"
    "a:focus { outline: none; }\n"
    "</style>\n"
    "</head>\n"
    "</html>\n"
)


def _branching_function(branches: int) -> str:
    body = "\n".join(f"  if (x === {i}) {{ y += {i}; }}" for i in range(branches))
    return f"// Chooser\nfunction choose(x) {{\n  let y = 0;\n{body}\n  return y;\n}}\n"


def _directory(path) -> SourceSpec:
    return SourceSpec(kind=SourceKind.DIRECTORY, locator=str(path))


def _only(findings, rule_id):
    return [f for f in findings if f.rule_id == rule_id]


def _fingerprint(result):
    return [(f.id, f.rule_id, f.file_path, f.line_number) for f in result.findings]


class TestRunAnalysis:
    """Test end-to-end runs over directories."""

    def test_directory_run(self, web_project) -> None:
        result = run_analysis(_directory(web_project), workers=2)

        assert result.files_analyzed == 5
        assert result.kinds == {"markup": 1, "script": 2, "stylesheet": 1, "prose": 1}
        assert result.total_lines == 5 + 3 + 2 + 2 + 1
        assert result.cancelled is False
        assert result.elapsed_ms >= 0
        assert result.summary.total == len(result.findings)
        assert not any(f.file_path.startswith(("node_modules", "dist")) for f in result.findings)

        rules = {(f.rule_id, f.file_path) for f in result.findings}
        assert ("missing-csp", "index.html") in rules
        assert ("debug-statement", "src/app.js") in rules
        assert ("unoptimized-image", "index.html") in rules
        # Accessibility is off by default
        assert ("missing-alt-text", "index.html") not in rules
        # src/cart.js is imported by src/app.js
        assert not _only(result.findings, "unused-file")

    def test_deterministic(self, web_project) -> None:
        first = run_analysis(_directory(web_project), workers=1)
        second = run_analysis(_directory(web_project), workers=4)

        assert _fingerprint(first) == _fingerprint(second)

    def test_findings_sorted(self, web_project) -> None:
        result = run_analysis(_directory(web_project), {"accessibility": True, "seo": True})
        keys = [(f.file_path, f.line_number) for f in result.findings]

        assert keys == sorted(keys)

    def test_severity_partition(self, web_project) -> None:
        result = run_analysis(_directory(web_project), {"accessibility": True, "seo": True})
        summary = result.summary

        assert sum(summary.by_severity.values()) == summary.total
        assert sum(summary.by_concern.values()) == summary.total

    def test_accepts_plain_mappings(self, web_project) -> None:
        result = run_analysis(
            {"kind": "directory", "locator": str(web_project)}, {"accessibility": True}
        )

        assert _only(result.findings, "missing-alt-text")

    def test_ids_unique(self, tmp_path) -> None:
        (tmp_path / "twice.js").write_text("eval(a); eval(b);\n")

        result = run_analysis(_directory(tmp_path))
        evals = _only(result.findings, "dynamic-eval")

        assert len(evals) == 2
        assert len({f.id for f in result.findings}) == len(result.findings)

    def test_empty_directory(self, tmp_path) -> None:
        result = run_analysis(_directory(tmp_path))

        assert result.files_analyzed == 0
        assert result.findings == []
        assert result.summary.total == 0


class TestConfiguration:
    """Test validation of run inputs."""

    def test_unknown_concern_raised_before_collection(self, tmp_path) -> None:
        with pytest.raises(UnknownConcernError):
            run_analysis(_directory(tmp_path / "missing"), {"styling": True})

    def test_invalid_source(self) -> None:
        with pytest.raises(UnsupportedSourceError):
            run_analysis({"kind": "ftp", "locator": "ftp://example.com"})

    def test_missing_root(self, tmp_path) -> None:
        with pytest.raises(SourceNotFoundError):
            run_analysis(_directory(tmp_path / "missing"))

    def test_invalid_worker_count(self, tmp_path) -> None:
        with pytest.raises(ConfigurationError):
            run_analysis(_directory(tmp_path), workers=0)


class TestToggles:
    """Test that disabled concerns produce nothing."""

    def test_disabled_concerns(self, web_project) -> None:
        config = {"security": False, "quality": False}
        result = run_analysis(_directory(web_project), config)

        concerns = {f.concern for f in result.findings}
        assert Concern.SECURITY not in concerns
        assert Concern.QUALITY not in concerns
        assert result.summary.by_concern[Concern.SECURITY] == 0

    def test_quality_off_skips_dependency_analysis(self, tmp_path) -> None:
        (tmp_path / "util.js").write_text("export const x = 1;\n")

        enabled = run_analysis(_directory(tmp_path))
        disabled = run_analysis(_directory(tmp_path), ConcernToggles(quality=False))

        assert _only(enabled.findings, "unused-file")
        assert not _only(disabled.findings, "unused-file")

    def test_everything_off(self, web_project) -> None:
        config = {concern.value: False for concern in Concern}

        assert run_analysis(_directory(web_project), config).findings == []


class TestComplexityThreshold:
    """Test complexity severity grading through a full run."""

    def test_thresholds(self, tmp_path) -> None:
        (tmp_path / "medium.js").write_text(_branching_function(10))
        (tmp_path / "high.js").write_text(_branching_function(20))
        (tmp_path / "fine.js").write_text(_branching_function(9))

        result = run_analysis(_directory(tmp_path))
        graded = {f.file_path: f.severity for f in _only(result.findings, "high-complexity")}

        assert graded == {"medium.js": Severity.MEDIUM, "high.js": Severity.HIGH}


class TestDependencyAnalysis:
    """Test cross-file findings through a full run."""

    def test_cycle_and_unused(self, tmp_path) -> None:
        (tmp_path / "a.js").write_text("// A\nimport 'b.js';\n")
        (tmp_path / "b.js").write_text("// B\nimport 'c.js';\n")
        (tmp_path / "c.js").write_text("// C\nimport 'a.js';\n")
        (tmp_path / "index.js").write_text("// Entry\nimport 'a.js';\n")
        (tmp_path / "util.js").write_text("// Helpers\nexport const x = 1;\n")

        result = run_analysis(_directory(tmp_path))

        cycles = _only(result.findings, "circular-dependency")
        assert len(cycles) == 1
        assert cycles[0].file_path == "c.js"
        assert cycles[0].line_number == 2
        assert [f.file_path for f in _only(result.findings, "unused-file")] == ["util.js"]

    def test_chain_without_cycle(self, tmp_path) -> None:
        (tmp_path / "index.js").write_text("import 'b.js';\n")
        (tmp_path / "b.js").write_text("import 'c.js';\n")
        (tmp_path / "c.js").write_text("export default 1;\n")

        result = run_analysis(_directory(tmp_path))

        assert _only(result.findings, "circular-dependency") == []
        assert _only(result.findings, "unused-file") == []


class TestArchiveRuns:
    """Test runs over archives."""

    def test_oversized_entry_excluded(self, zip_bytes) -> None:
        data = zip_bytes({
            "src/app.js": "let a = 1;\n",
            "src/huge.js": "eval(x);\n" + "// padding\n" * 200,
        })
        options = CollectorOptions(max_file_size=1024)

        result = run_analysis(SourceSpec(kind="archive", content=data), options=options)

        assert result.files_analyzed == 1
        assert [(s.path, s.reason) for s in result.skipped] == [("src/huge.js", "too_large")]
        assert all(f.file_path != "src/huge.js" for f in result.findings)


class TestPageRuns:
    """Test page mode with inline and external assets."""

    def test_inline_blocks_attributed_to_page(self) -> None:
        result = run_analysis(
            SourceSpec(kind="page", content=INLINE_PAGE), {"accessibility": True}
        )

        assert result.files_analyzed == 1
        assert result.kinds == {"markup": 1}

        evals = _only(result.findings, "dynamic-eval")
        assert len(evals) == 1
        assert evals[0].file_path == "page.html"
        assert evals[0].line_number == 5
        assert "embedded" in evals[0].tags
        assert ">>> 5: eval(payload);" in evals[0].snippet

        focus = _only(result.findings, "focus-indicator-removed")
        assert [f.line_number for f in focus] == [8]

        assert [f.line_number for f in _only(result.findings, "inline-script")] == [4]

    def test_external_assets_followed(self) -> None:
        page_url = "https://shop.example.com/"
        routes = {
            page_url: httpx.Response(
                200,
                text=(
                    "<html><head><title>Shop</title>"
                    "<script src=\"/js/app.js\" defer></script>"
                    "<script src=\"/js/missing.js\" defer></script>"
                    "</head></html>"
                ),
                headers={"Content-Security-Policy": "default-src 'self'"},
            ),
            "https://shop.example.com/js/app.js": httpx.Response(200, text="eval(x);\n"),
        }

        def handler(request: httpx.Request) -> httpx.Response:
            return routes.get(str(request.url), httpx.Response(404))

        client = httpx.Client(transport=httpx.MockTransport(handler))
        options = CollectorOptions(http_client=client, follow_external_assets=True)

        result = run_analysis(SourceSpec(kind="page", locator=page_url), options=options)

        assert result.files_analyzed == 1
        evals = _only(result.findings, "dynamic-eval")
        assert [f.file_path for f in evals] == ["https://shop.example.com/js/app.js"]
        assert not _only(result.findings, "missing-csp")
        assert [s.path for s in result.skipped] == ["https://shop.example.com/js/missing.js"]

    def test_external_assets_not_followed_by_default(self) -> None:
        page = "<html><title>x</title><script src=\"https://cdn.example.com/a.js\"></script></html>"

        with patch.object(httpx.Client, "get") as get:
            result = run_analysis(SourceSpec(kind="page", content=page))

        get.assert_not_called()
        assert result.files_analyzed == 1


class TestFailureIsolation:
    """Test that per-record failures never abort a run."""

    def test_detector_failure(self, tmp_path) -> None:
        (tmp_path / "app.js").write_text("function f(a) { return a; }\neval(a);\n")

        with patch.object(
            script_engine, "find_function_definitions", side_effect=RuntimeError("boom")
        ):
            result = run_analysis(_directory(tmp_path))

        assert _only(result.findings, "dynamic-eval")
        assert result.files_analyzed == 1

    def test_parser_crash_becomes_finding(self, tmp_path) -> None:
        (tmp_path / "app.js").write_text("eval(a);\n")
        (tmp_path / "data.json").write_text("{oops}\n")

        with patch.object(orchestrator, "parse_unit", side_effect=RuntimeError("boom")):
            result = run_analysis(_directory(tmp_path))

        errors = _only(result.findings, "analysis-error")
        assert [f.file_path for f in errors] == ["app.js", "data.json"]
        assert all(f.severity == Severity.LOW for f in errors)
        # Lexical detectors still ran
        assert _only(result.findings, "invalid-json")
        assert result.files_analyzed == 2

    def test_parse_error_becomes_syntax_finding(self, tmp_path) -> None:
        (tmp_path / "site.css").write_text("/* Site */\n.a { color: #eee; }\n")
        (tmp_path / "app.js").write_text("eval(a);\n")

        def fake_parse(record, engine=None):
            if record.kind == ContentKind.STYLESHEET:
                raise ParseError("Unexpected token", line=2, column=3)
            return parse_unit(record, engine)

        with patch.object(orchestrator, "parse_unit", side_effect=fake_parse):
            result = run_analysis(_directory(tmp_path), {"accessibility": True})

        syntax = _only(result.findings, "syntax-error")
        assert len(syntax) == 1
        assert syntax[0].file_path == "site.css"
        assert syntax[0].line_number == 2
        assert syntax[0].column == 3
        assert syntax[0].severity == Severity.HIGH
        assert syntax[0].snippet == "/* Site */\n.a { color: #eee; }\n"
        # Structural detectors were skipped for the stylesheet only
        assert not _only(result.findings, "low-contrast-color")
        assert _only(result.findings, "dynamic-eval")

    def test_tolerant_parse_reports_one_syntax_error(self, tmp_path) -> None:
        (tmp_path / "broken.js").write_text("var c = 1;\nconst a = (;\nconst b = );\n")

        result = run_analysis(_directory(tmp_path))

        assert len(_only(result.findings, "syntax-error")) == 1
        assert _only(result.findings, "legacy-declaration")

    def test_syntax_errors_need_quality(self, tmp_path) -> None:
        (tmp_path / "broken.js").write_text("const a = (;\n")

        result = run_analysis(_directory(tmp_path), {"quality": False})

        assert not _only(result.findings, "syntax-error")


class TestProgressAndCancellation:
    """Test progress reporting and cancellation."""

    def test_progress_monotonic(self, web_project) -> None:
        updates: list[tuple[float, str]] = []

        run_analysis(_directory(web_project), progress=lambda p, m: updates.append((p, m)))

        percents = [p for p, _ in updates]
        assert percents == sorted(percents)
        assert percents[0] == 0.0
        assert percents[-1] == 100.0
        assert any(m.startswith("Analyzed") for _, m in updates)

    def test_failing_callback_does_not_abort(self, web_project) -> None:
        def callback(percent: float, message: str) -> None:
            raise RuntimeError("UI went away")

        result = run_analysis(_directory(web_project), progress=callback)

        assert result.files_analyzed == 5

    def test_cancel_before_start(self, web_project) -> None:
        cancel = threading.Event()
        cancel.set()

        result = run_analysis(_directory(web_project), cancel_event=cancel)

        assert result.cancelled
        assert result.files_analyzed == 0
        assert result.findings == []

    def test_cancel_during_run(self, tmp_path) -> None:
        for i in range(20):
            (tmp_path / f"file{i:02d}.js").write_text("eval(x);\n")
        cancel = threading.Event()

        def progress(percent: float, message: str) -> None:
            if message.startswith("Analyzed"):
                cancel.set()

        result = run_analysis(
            _directory(tmp_path), progress=progress, cancel_event=cancel, workers=1
        )

        assert result.cancelled
        assert 1 <= result.files_analyzed < 20
        assert result.summary.total == len(result.findings)


class TestAsync:
    """Test the async entry point."""

    @pytest.mark.asyncio
    async def test_run_analysis_async(self, web_project) -> None:
        result = await run_analysis_async(_directory(web_project), workers=2)

        assert result.files_analyzed == 5
        assert _fingerprint(result) == _fingerprint(run_analysis(_directory(web_project)))


class TestHelpers:
    """Test record analysis and finding finalization directly."""

    def test_analyze_record_inline_blocks(self, make_record) -> None:
        record = make_record("page.html", INLINE_PAGE)
        outcome = analyze_record(record, ConcernToggles())

        assert [(r.kind, r.line_offset, r.synthetic) for r in outcome.derived] == [
            (ContentKind.SCRIPT, 3, True),
            (ContentKind.STYLESHEET, 6, True),
        ]
        assert all(r.path == "page.html" for r in outcome.derived)
        assert all(r.metadata == {"embedded": "inline"} for r in outcome.derived)
        assert outcome.assets == []

    def test_analyze_record_imports(self, make_record) -> None:
        outcome = analyze_record(make_record("a.js", "import 'b.js';\n"), ConcernToggles())

        assert outcome.imports == {"b.js": 1}

    def test_finalize_dedupes_ids(self) -> None:
        def finding(column: int) -> Finding:
            return Finding(
                id="dynamic-eval-0000",
                rule_id="dynamic-eval",
                title="t",
                description="d",
                severity=Severity.CRITICAL,
                concern=Concern.SECURITY,
                file_path="a.js",
                line_number=1,
                column=column,
            )

        result = finalize_findings([finding(10), finding(0)])

        assert [f.column for f in result] == [0, 10]
        assert result[0].id == "dynamic-eval-0000"
        assert result[1].id != result[0].id

    def test_run_logs_events(self, web_project, caplog) -> None:
        with caplog.at_level(logging.INFO, logger="reposcope"):
            run_analysis(_directory(web_project))

        events = [getattr(r, "event", None) for r in caplog.records]
        assert events.count("record_analyzed") == 5
        assert events.count("run_completed") == 1
