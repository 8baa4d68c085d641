"""Run orchestration: collection, per-record analysis, cross-file analysis.

Records stream out of the lazy collector into a thread pool. Every record
is parsed and run through its detector sets in isolation, so a failure in
one file becomes a finding instead of aborting the batch. Once all records
are done, the dependency graph is analyzed over the whole batch and the
result is summarized.

Usage::

    result = run_analysis(
        SourceSpec(kind="directory", locator="./webapp"),
        {"accessibility": True},
        progress=lambda percent, message: print(f"{percent:5.1f}% {message}"),
    )
"""

from __future__ import annotations

import asyncio
import logging
import os
import threading
import time
from collections import Counter, deque
from collections.abc import Callable, Iterator, Mapping
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Any

from pydantic import ValidationError

from ..constants import IN_FLIGHT_PER_WORKER, WORKER_COUNT
from ..models import (
    AnalysisResult,
    Concern,
    ConcernToggles,
    ContentKind,
    Finding,
    Severity,
    SourceKind,
    SourceRecord,
    SourceSpec,
    summarize,
)
from ..scanners import lexical_detectors, parse_unit, run_detectors, structural_detectors
from ..scanners.base import Detector, DetectorContext, Hit, build_finding, content_prefix, finding_id
from ..scanners.markup.parser import MarkupDocument
from ..scanners.script.ast_engine import ParsedAST
from ..scanners.script.detectors import engine as script_engine
from .collector import CollectorOptions, SourceCollector
from .dependency_graph import analyze_imports, extract_imports
from .exceptions import ConfigurationError, ParseError, UnsupportedSourceError

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float, str], None]

# Share of the progress bar spent on per-record work
_DETECTION_SHARE = 90.0


def _no_hits(unit: Any, ctx: DetectorContext) -> Iterator[Hit]:
    return iter(())


SYNTAX_ERROR = Detector(
    rule_id="syntax-error",
    concern=Concern.QUALITY,
    severity=Severity.HIGH,
    title="Syntax error",
    description="The file could not be parsed cleanly.",
    impact="Code that does not parse will fail at runtime or in the build.",
    recommendation="Fix the syntax error reported by the parser.",
    tags=frozenset({"syntax"}),
    check=_no_hits,
)

ANALYSIS_ERROR = Detector(
    rule_id="analysis-error",
    concern=Concern.QUALITY,
    severity=Severity.LOW,
    title="File could not be analyzed",
    description="Analysis of this file failed unexpectedly.",
    impact="Problems in this file may go unreported.",
    recommendation="Check that the file is well-formed and report the failure.",
    tags=frozenset({"engine"}),
    check=_no_hits,
)


@dataclass
class RecordOutcome:
    """Everything the orchestrator keeps from one analyzed record.

    Attributes:
        record: The analyzed record (content is released by dropping this).
        findings: Findings produced for the record.
        imports: Bare import targets for non-synthetic scripts.
        derived: Inline blocks cut out of a markup record.
        assets: ``(url, kind)`` pairs of external assets referenced by a page.
    """

    record: SourceRecord
    findings: list[Finding] = field(default_factory=list)
    imports: dict[str, int] | None = None
    derived: list[SourceRecord] = field(default_factory=list)
    assets: list[tuple[str, ContentKind]] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Per-record analysis
# ---------------------------------------------------------------------------


def _error_finding(
    detector: Detector,
    record: SourceRecord,
    message: str,
    line: int = 1,
    column: int | None = None,
) -> Finding:
    hit = Hit(
        line=line,
        column=column,
        description=message,
        snippet=content_prefix(record.content),
    )
    return build_finding(detector, hit, DetectorContext(record))


def inline_records(record: SourceRecord, document: MarkupDocument) -> list[SourceRecord]:
    """Synthetic records for the inline scripts and styles of a page."""
    return [
        SourceRecord(
            path=record.path,
            content=block.content,
            kind=block.kind,
            size_bytes=len(block.content.encode("utf-8")),
            line_offset=record.line_offset + block.line_offset,
            synthetic=True,
            origin=record.path,
            metadata={"embedded": "inline"},
        )
        for block in document.inline_blocks()
    ]


def analyze_record(
    record: SourceRecord,
    toggles: ConcernToggles,
    follow_assets: bool = False,
) -> RecordOutcome:
    """Parse one record and run its detector sets.

    Parse failures turn into a ``syntax-error`` finding; structural
    detectors are then skipped while lexical detectors still run. Any other
    failure becomes an ``analysis-error`` finding. Nothing raises.
    """
    outcome = RecordOutcome(record=record)
    quality = toggles.is_enabled(Concern.QUALITY)
    context = DetectorContext(record)

    unit: Any = None
    try:
        unit = parse_unit(record)
    except ParseError as e:
        logger.info(
            f"Could not parse {record.path}: {e}",
            extra={"event": "parse_failed", "path": record.path,
                   "kind": record.kind.value, "error": str(e)},
        )
        if quality:
            outcome.findings.append(
                _error_finding(SYNTAX_ERROR, record, str(e), e.line, e.column)
            )
    except Exception as e:
        logger.warning(
            f"Parser failed on {record.path}: {e}",
            extra={"event": "parse_failed", "path": record.path,
                   "kind": record.kind.value, "error": str(e)},
            exc_info=True,
        )
        if quality:
            outcome.findings.append(
                _error_finding(ANALYSIS_ERROR, record, f"Parser failed: {e}")
            )

    syntax_errors = getattr(unit, "syntax_errors", None)
    if syntax_errors and quality:
        first = syntax_errors[0]
        message = first.message
        if len(syntax_errors) > 1:
            message = f"{message} ({len(syntax_errors)} syntax errors in total)"
        outcome.findings.append(
            _error_finding(SYNTAX_ERROR, record, message, first.line, first.column)
        )

    outcome.findings.extend(
        run_detectors(structural_detectors(record.kind), unit, context, toggles)
    )
    # Lexical rules judge whole files; page fragments are not files
    if not record.synthetic:
        outcome.findings.extend(
            run_detectors(lexical_detectors(record.kind), None, context, toggles)
        )

    if isinstance(unit, ParsedAST) and not record.synthetic and quality:
        outcome.imports = extract_imports(unit, script_engine)

    if isinstance(unit, MarkupDocument):
        outcome.derived = inline_records(record, unit)
        if follow_assets and not record.synthetic:
            outcome.assets = [
                (asset.url, asset.kind) for asset in unit.external_assets(record.path)
            ]

    return outcome


def _safe_analyze(
    record: SourceRecord, toggles: ConcernToggles, follow_assets: bool
) -> RecordOutcome:
    try:
        return analyze_record(record, toggles, follow_assets)
    except Exception as e:
        logger.error(
            f"Analysis of {record.path} failed: {e}",
            extra={"event": "record_failed", "path": record.path, "error": str(e)},
            exc_info=True,
        )
        outcome = RecordOutcome(record=record)
        if toggles.is_enabled(Concern.QUALITY):
            outcome.findings.append(
                _error_finding(ANALYSIS_ERROR, record, f"Analysis failed: {e}")
            )
        return outcome


# ---------------------------------------------------------------------------
# Result assembly
# ---------------------------------------------------------------------------


def _sort_key(finding: Finding) -> tuple:
    return (
        finding.file_path,
        finding.line_number,
        finding.column if finding.column is not None else -1,
        finding.rule_id,
        finding.description,
    )


def finalize_findings(findings: list[Finding]) -> list[Finding]:
    """Sort findings deterministically and make their ids unique.

    The first finding with a given id keeps it; later ones get the column
    and an occurrence counter folded into the hash.
    """
    ordered = sorted(findings, key=_sort_key)
    occurrences: Counter[str] = Counter()
    result: list[Finding] = []
    for finding in ordered:
        occurrences[finding.id] += 1
        count = occurrences[finding.id]
        if count > 1:
            salt = f"{finding.column if finding.column is not None else ''}:{count}"
            new_id = finding_id(finding.file_path, finding.rule_id, finding.line_number, salt)
            finding = finding.model_copy(update={"id": new_id})
        result.append(finding)
    return result


class _ProgressReporter:
    """Forwards progress with a monotonically non-decreasing percentage."""

    def __init__(self, callback: ProgressCallback | None):
        self.callback = callback
        self.percent = 0.0

    def __call__(self, percent: float, message: str) -> None:
        self.percent = min(max(self.percent, percent), 100.0)
        logger.debug(
            message, extra={"event": "progress", "percent": round(self.percent, 1)}
        )
        if self.callback is None:
            return
        try:
            self.callback(self.percent, message)
        except Exception as e:
            logger.warning(f"Progress callback failed: {e}")


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


class AnalysisRun:
    """One analysis run over one source.

    States: collecting and detecting (pipelined), cross-file analysis,
    summarizing, done.
    """

    def __init__(
        self,
        source: SourceSpec,
        toggles: ConcernToggles,
        options: CollectorOptions | None = None,
        progress: ProgressCallback | None = None,
        cancel_event: threading.Event | None = None,
        workers: int | None = None,
    ):
        self.source = source
        self.toggles = toggles
        self.options = options or CollectorOptions()
        self.report = _ProgressReporter(progress)
        self.cancel_event = cancel_event
        self.workers = workers or WORKER_COUNT or os.cpu_count() or 1

        self.findings: list[Finding] = []
        self.imports: dict[str, dict[str, int]] = {}
        self.script_paths: list[str] = []
        self.kinds: Counter[str] = Counter()
        self.files_analyzed = 0
        self.total_lines = 0
        self.cancelled = False

    def _cancel_requested(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()

    def _merge(self, outcome: RecordOutcome) -> None:
        record = outcome.record
        self.findings.extend(outcome.findings)
        if outcome.imports is not None:
            self.imports[record.path] = outcome.imports
        if not record.synthetic:
            self.files_analyzed += 1
            self.total_lines += record.line_count
            self.kinds[record.kind.value] += 1
            if record.kind == ContentKind.SCRIPT:
                self.script_paths.append(record.path)
        logger.info(
            f"Analyzed {record.path}: {len(outcome.findings)} findings",
            extra={"event": "record_analyzed", "path": record.path,
                   "kind": record.kind.value, "findings": len(outcome.findings)},
        )

    def execute(self) -> AnalysisResult:
        start = time.monotonic()
        self.report(0.0, "Collecting sources")

        with SourceCollector(self.options) as collector:
            records = collector.collect(self.source)
            self._detect(collector, records)
            skipped = list(collector.skipped)

        if not self.cancelled and self.toggles.is_enabled(Concern.QUALITY):
            self.report(_DETECTION_SHARE, "Analyzing dependencies")
            self.findings.extend(analyze_imports(self.imports, self.script_paths))

        self.report(95.0, "Summarizing")
        findings = finalize_findings(self.findings)
        elapsed_ms = int((time.monotonic() - start) * 1000)

        result = AnalysisResult(
            findings=findings,
            summary=summarize(findings),
            files_analyzed=self.files_analyzed,
            total_lines=self.total_lines,
            elapsed_ms=elapsed_ms,
            kinds=dict(self.kinds),
            skipped=skipped,
            cancelled=self.cancelled,
        )

        logger.info(
            f"Analysis {'cancelled' if self.cancelled else 'complete'}: "
            f"{result.files_analyzed} files, {len(findings)} findings in {elapsed_ms}ms",
            extra={"event": "run_completed", "records": result.files_analyzed,
                   "findings": len(findings), "elapsed_ms": elapsed_ms},
        )
        self.report(100.0, "Cancelled" if self.cancelled else "Done")
        return result

    def _detect(self, collector: SourceCollector, records: Iterator[SourceRecord]) -> None:
        max_in_flight = max(self.workers * IN_FLIGHT_PER_WORKER, 1)
        follow_assets = (
            self.options.follow_external_assets and self.source.kind == SourceKind.PAGE
        )
        pending: dict[Future[RecordOutcome], SourceRecord] = {}
        derived: deque[SourceRecord] = deque()
        submitted = 0
        completed = 0
        exhausted = False

        executor = ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix="reposcope")
        try:
            while True:
                if self._cancel_requested():
                    self.cancelled = True
                    logger.warning(
                        "Analysis cancelled",
                        extra={"event": "run_cancelled", "records": completed},
                    )
                    break

                while len(pending) < max_in_flight:
                    record = derived.popleft() if derived else None
                    if record is None and not exhausted:
                        record = next(records, None)
                        exhausted = record is None
                    if record is None:
                        break
                    future = executor.submit(_safe_analyze, record, self.toggles, follow_assets)
                    pending[future] = record
                    submitted += 1

                if not pending:
                    break

                done, _ = wait(pending, return_when=FIRST_COMPLETED)
                for future in done:
                    pending.pop(future)
                    outcome = future.result()
                    self._merge(outcome)
                    derived.extend(outcome.derived)
                    for url, kind in outcome.assets:
                        asset = collector.fetch_asset(url, kind, origin=outcome.record.path)
                        if asset is not None:
                            derived.append(asset)
                    completed += 1

                    # The total is unknown while the collector is still producing
                    expected = submitted + len(derived) + (0 if exhausted else max_in_flight)
                    self.report(
                        _DETECTION_SHARE * completed / max(expected, 1),
                        f"Analyzed {outcome.record.path}",
                    )
        finally:
            executor.shutdown(wait=True, cancel_futures=True)


# ---------------------------------------------------------------------------
# Public entry points
# ---------------------------------------------------------------------------


def _resolve_source(source: SourceSpec | Mapping[str, Any]) -> SourceSpec:
    if isinstance(source, SourceSpec):
        return source
    try:
        return SourceSpec.model_validate(dict(source))
    except ValidationError as e:
        raise UnsupportedSourceError(f"Invalid source specification: {e}") from e


def _resolve_toggles(config: ConcernToggles | Mapping[str, Any] | None) -> ConcernToggles:
    if isinstance(config, ConcernToggles):
        return config
    return ConcernToggles.from_mapping(config)


def run_analysis(
    source: SourceSpec | Mapping[str, Any],
    config: ConcernToggles | Mapping[str, Any] | None = None,
    *,
    options: CollectorOptions | None = None,
    progress: ProgressCallback | None = None,
    cancel_event: threading.Event | None = None,
    workers: int | None = None,
) -> AnalysisResult:
    """Analyze a directory, archive or page and return all findings.

    Args:
        source: Where to read material from.
        config: Concern toggles, as a model or a plain mapping.
        options: Collection settings (ceilings, deny-list, kind table).
        progress: Called with ``(percent, message)``; percent never decreases.
        cancel_event: When set, the run stops between records and returns
            what it has so far with ``cancelled=True``.
        workers: Worker threads; defaults to ``REPOSCOPE_WORKERS`` or the
            CPU count.

    Raises:
        ConfigurationError: For invalid toggles or source specifications,
            before any work starts.
        CollectionError: If the analysis root is missing or unreadable.
    """
    spec = _resolve_source(source)
    toggles = _resolve_toggles(config)
    if workers is not None and workers < 1:
        raise ConfigurationError(f"workers must be at least 1, got {workers}")

    run = AnalysisRun(
        spec,
        toggles,
        options=options,
        progress=progress,
        cancel_event=cancel_event,
        workers=workers,
    )
    return run.execute()


async def run_analysis_async(
    source: SourceSpec | Mapping[str, Any],
    config: ConcernToggles | Mapping[str, Any] | None = None,
    *,
    options: CollectorOptions | None = None,
    progress: ProgressCallback | None = None,
    cancel_event: threading.Event | None = None,
    workers: int | None = None,
) -> AnalysisResult:
    """Run ``run_analysis`` in a worker thread so the event loop stays free."""
    return await asyncio.to_thread(
        run_analysis,
        source,
        config,
        options=options,
        progress=progress,
        cancel_event=cancel_event,
        workers=workers,
    )
