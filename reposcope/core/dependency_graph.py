"""Cross-file dependency analysis for script records.

Import targets are extracted per file, turned into edges between files of
the analyzed batch, and the resulting directed graph is searched for cycles
(``circular-dependency``) and for files nothing imports (``unused-file``).

Only literal, bare import targets are considered. A target becomes an edge
when it names another script path of the batch exactly; relative and
absolute specifiers (starting with ``.`` or ``/``) are dropped, as are
package imports that do not match a batch path.
"""

from __future__ import annotations

import fnmatch
import logging
import posixpath
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass

from ..constants import ENTRY_POINT_PATTERNS
from ..models import Concern, ContentKind, Finding, RemediationStep, Severity, SourceRecord
from ..scanners.base import finding_id, truncate
from ..scanners.script.ast_engine import ASTEngine, ParsedAST
from .classifier import script_language

logger = logging.getLogger(__name__)

CYCLE_ARROW = " → "


@dataclass(frozen=True)
class DependencyEdge:
    """A literal import of *target* by *source* at *line*."""

    source: str
    target: str
    line: int


# ---------------------------------------------------------------------------
# Import extraction
# ---------------------------------------------------------------------------


def extract_imports(ast: ParsedAST, engine: ASTEngine) -> dict[str, int]:
    """Bare import targets of one file, mapped to their first line."""
    targets: dict[str, int] = {}
    for statement in engine.find_imports(ast):
        module = statement.module
        if not module or module.startswith((".", "/")):
            continue
        targets.setdefault(module, statement.line)
    return targets


def build_edges(
    imports: Mapping[str, Mapping[str, int]],
    paths: Iterable[str],
) -> dict[str, list[DependencyEdge]]:
    """Adjacency lists keyed by source path, neighbours sorted by target.

    Args:
        imports: ``{path: {target: line}}`` for every script file.
        paths: All script paths of the batch; only these can be targets.
    """
    known = set(paths)
    graph: dict[str, list[DependencyEdge]] = {path: [] for path in sorted(known)}
    for source in sorted(imports):
        if source not in known:
            continue
        for target, line in imports[source].items():
            if target in known and target != source:
                graph[source].append(DependencyEdge(source, target, line))
    for edges in graph.values():
        edges.sort(key=lambda e: (e.target, e.line))
    return graph


# ---------------------------------------------------------------------------
# Graph algorithms
# ---------------------------------------------------------------------------


def find_cycles(
    graph: Mapping[str, list[DependencyEdge]],
) -> Iterator[tuple[list[str], DependencyEdge]]:
    """Yield ``(cycle, closing_edge)`` for every back edge of a DFS.

    The search uses an explicit stack, so long import chains cannot hit the
    recursion limit. Roots and neighbours are visited in sorted order,
    which makes the reported cycles deterministic. ``cycle`` lists the files
    in traversal order and repeats the first file at the end.
    """
    visited: set[str] = set()
    on_stack: set[str] = set()

    for root in sorted(graph):
        if root in visited:
            continue

        visited.add(root)
        on_stack.add(root)
        path = [root]
        stack: list[tuple[str, Iterator[DependencyEdge]]] = [(root, iter(graph[root]))]

        while stack:
            node, neighbours = stack[-1]
            edge = next(neighbours, None)
            if edge is None:
                stack.pop()
                path.pop()
                on_stack.discard(node)
                continue

            target = edge.target
            if target in on_stack:
                start = path.index(target)
                yield path[start:] + [target], edge
            elif target not in visited:
                visited.add(target)
                on_stack.add(target)
                path.append(target)
                stack.append((target, iter(graph.get(target, ()))))


def is_entry_point(path: str, patterns: Iterable[str] = ENTRY_POINT_PATTERNS) -> bool:
    name = posixpath.basename(path).lower()
    return any(fnmatch.fnmatchcase(name, pattern) for pattern in patterns)


def find_unused(
    graph: Mapping[str, list[DependencyEdge]],
    patterns: Iterable[str] = ENTRY_POINT_PATTERNS,
) -> list[str]:
    """Files never targeted by an edge, entry points excluded, sorted."""
    patterns = tuple(patterns)
    targeted = {edge.target for edges in graph.values() for edge in edges}
    return [
        path for path in sorted(graph)
        if path not in targeted and not is_entry_point(path, patterns)
    ]


# ---------------------------------------------------------------------------
# Findings
# ---------------------------------------------------------------------------


def _cycle_finding(cycle: list[str], edge: DependencyEdge) -> Finding:
    chain = CYCLE_ARROW.join(cycle)
    return Finding(
        id=finding_id(edge.source, "circular-dependency", edge.line),
        rule_id="circular-dependency",
        title="Circular dependency",
        description=f"Circular import chain: {chain}",
        severity=Severity.MEDIUM,
        concern=Concern.QUALITY,
        file_path=edge.source,
        line_number=max(edge.line, 1),
        snippet=truncate(f"{edge.source}:{edge.line} imports {edge.target!r} ({chain})"),
        impact="Circular imports cause partially initialized modules and brittle load order.",
        recommendation="Move the shared code into a module both files can import.",
        remediation=[
            RemediationStep(
                step=1,
                title="Extract shared code",
                description="Move what both modules need into a third module.",
            ),
            RemediationStep(
                step=2,
                title="Invert the dependency",
                description="Pass the dependency in as a parameter instead of importing it.",
            ),
        ],
        tags={"dependencies", "architecture", Concern.QUALITY.value, ContentKind.SCRIPT.value},
    )


def _unused_finding(path: str) -> Finding:
    return Finding(
        id=finding_id(path, "unused-file", 1),
        rule_id="unused-file",
        title="Unused file",
        description=f"No other analyzed file imports {path}.",
        severity=Severity.LOW,
        concern=Concern.QUALITY,
        file_path=path,
        line_number=1,
        snippet="",
        impact="Dead files add maintenance cost and confuse readers.",
        recommendation="Delete the file, or import it where it is meant to be used.",
        tags={"dependencies", "dead-code", Concern.QUALITY.value, ContentKind.SCRIPT.value},
    )


def analyze_imports(
    imports: Mapping[str, Mapping[str, int]],
    script_paths: Iterable[str],
    entry_patterns: Iterable[str] = ENTRY_POINT_PATTERNS,
) -> list[Finding]:
    """Cycle and dead-file findings for already extracted imports.

    Args:
        imports: ``{path: {target: line}}`` per script file.
        script_paths: Paths of the non-synthetic script records.
        entry_patterns: File name patterns never reported as unused.
    """
    graph = build_edges(imports, script_paths)

    findings = [_cycle_finding(cycle, edge) for cycle, edge in find_cycles(graph)]
    findings.extend(_unused_finding(path) for path in find_unused(graph, entry_patterns))

    edge_count = sum(len(edges) for edges in graph.values())
    logger.debug(
        f"Dependency graph: {len(graph)} files, {edge_count} edges, "
        f"{len(findings)} findings"
    )
    return findings


def analyze_dependencies(
    records: Iterable[SourceRecord],
    engine: ASTEngine | None = None,
) -> list[Finding]:
    """Parse the script records and run the dependency analysis over them.

    Synthetic records (inline or fetched page assets) are ignored.
    """
    engine = engine or ASTEngine()
    imports: dict[str, dict[str, int]] = {}
    for record in records:
        if record.kind != ContentKind.SCRIPT or record.synthetic:
            continue
        ast = engine.parse(record.content, script_language(record.path))
        imports[record.path] = extract_imports(ast, engine)
    return analyze_imports(imports, imports.keys())
