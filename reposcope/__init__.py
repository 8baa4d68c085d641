"""Static analysis of web projects: scripts, stylesheets, markup and docs."""

from .core.collector import CollectorOptions, SourceCollector, collect
from .core.dependency_graph import analyze_dependencies
from .core.exceptions import (
    CollectionError,
    ConfigurationError,
    ReposcopeError,
    SourceNotFoundError,
    SourceUnreadableError,
    UnknownConcernError,
    UnsupportedSourceError,
)
from .core.orchestrator import run_analysis, run_analysis_async
from .logging_config import configure_logging, summarize_run_log
from .models import (
    AnalysisResult,
    AnalysisSummary,
    Concern,
    ConcernToggles,
    ContentKind,
    Finding,
    FindingStatus,
    RemediationStep,
    Severity,
    SkippedEntry,
    SourceKind,
    SourceRecord,
    SourceSpec,
    summarize,
)

__version__ = "0.1.0"

__all__ = [
    # Entry points
    "run_analysis",
    "run_analysis_async",
    "collect",
    "analyze_dependencies",
    "summarize",
    "CollectorOptions",
    "SourceCollector",
    # Logging
    "configure_logging",
    "summarize_run_log",
    # Models
    "AnalysisResult",
    "AnalysisSummary",
    "Concern",
    "ConcernToggles",
    "ContentKind",
    "Finding",
    "FindingStatus",
    "RemediationStep",
    "Severity",
    "SkippedEntry",
    "SourceKind",
    "SourceRecord",
    "SourceSpec",
    # Exceptions
    "ReposcopeError",
    "CollectionError",
    "SourceNotFoundError",
    "SourceUnreadableError",
    "ConfigurationError",
    "UnknownConcernError",
    "UnsupportedSourceError",
]
