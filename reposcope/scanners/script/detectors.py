"""Detectors for JavaScript and TypeScript sources.

Every detector receives a ``ParsedAST`` produced by the shared ``ASTEngine``
and yields hits by walking the tree. Detectors are grouped by concern in
module-level lists, like rule packs, and indexed by rule id.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterator

import tree_sitter as ts

from ...constants import (
    AVERAGE_COMPLEXITY_THRESHOLD,
    COMPLEXITY_HIGH_THRESHOLD,
    COMPLEXITY_MEDIUM_THRESHOLD,
    MAX_FILE_CHARACTERS,
    MAX_LITERAL_ELEMENTS,
    MAX_PARAMETERS,
    SECRET_KEYWORDS,
    SECRET_MIN_LENGTH,
)
from ...models import Concern, Severity
from ..base import Detector, DetectorContext, Hit, index_detectors, steps
from .ast_engine import ASTEngine, FunctionCall, ParsedAST

logger = logging.getLogger(__name__)

engine = ASTEngine()

_TIMER_FUNCTIONS = frozenset({"setTimeout", "setInterval"})
_MARKUP_SINKS = frozenset({"innerHTML", "outerHTML"})
_DOCUMENT_WRITERS = frozenset({"write", "writeln"})
_SQL_RE = re.compile(
    r"\b(?:select\b.+\bfrom|insert\s+into|update\b.+\bset|delete\s+from)\b",
    re.IGNORECASE | re.DOTALL,
)
_LITERAL_TYPES = frozenset({"string", "template_string", "number"})
_DOM_QUERIES = frozenset({
    "getElementById",
    "getElementsByClassName",
    "getElementsByTagName",
    "getElementsByName",
    "querySelector",
    "querySelectorAll",
})


def _position(node: ts.Node) -> dict[str, int]:
    return {
        "line": node.start_point.row + 1,
        "column": node.start_point.column,
        "end_line": node.end_point.row + 1,
        "end_column": node.end_point.column,
    }


def _member_parts(ast: ParsedAST, node: ts.Node | None) -> tuple[str | None, str | None]:
    """Return ``(object_text, property_name)`` for a member expression."""
    if node is None or node.type != "member_expression":
        return None, None
    obj = node.child_by_field_name("object")
    prop = node.child_by_field_name("property")
    return (
        ast.get_text(obj) if obj is not None else None,
        ast.get_text(prop) if prop is not None else None,
    )


# ---------------------------------------------------------------------------
# Security checks
# ---------------------------------------------------------------------------


def _check_dynamic_eval(ast: ParsedAST, ctx: DetectorContext) -> Iterator[Hit]:
    for call in engine.find_function_calls(ast):
        if call.receiver not in (None, "window", "globalThis"):
            continue
        if call.name == "eval":
            yield Hit(**_position(call.node), title="Use of eval()")
        elif call.name in _TIMER_FUNCTIONS and call.arguments:
            if call.arguments[0].type in ("string", "template_string"):
                yield Hit(
                    **_position(call.node),
                    title=f"{call.name}() called with a string",
                    description=(
                        f"{call.name}() receives source code as a string, which is "
                        "evaluated like eval() when the timer fires."
                    ),
                )

    for node in ast.nodes("new_expression"):
        constructor = node.child_by_field_name("constructor")
        if constructor is not None and ast.get_text(constructor) == "Function":
            yield Hit(
                **_position(node),
                title="Use of the Function constructor",
                description=(
                    "new Function(...) compiles a string into executable code and "
                    "is equivalent to eval()."
                ),
            )


def _check_unsanitized_markup_write(ast: ParsedAST, ctx: DetectorContext) -> Iterator[Hit]:
    for node_type in ("assignment_expression", "augmented_assignment_expression"):
        for node in ast.nodes(node_type):
            _obj, prop = _member_parts(ast, node.child_by_field_name("left"))
            if prop in _MARKUP_SINKS:
                yield Hit(
                    **_position(node),
                    description=f"Markup is assigned to .{prop} without sanitization.",
                )

    for call in engine.find_function_calls(ast):
        if call.name in _DOCUMENT_WRITERS and call.receiver == "document":
            yield Hit(
                **_position(call.node),
                description=f"document.{call.name}() injects raw markup into the page.",
            )
        elif call.name == "insertAdjacentHTML" and call.receiver is not None:
            yield Hit(
                **_position(call.node),
                description="insertAdjacentHTML() parses its argument as markup.",
            )

    for node in ast.nodes("jsx_attribute"):
        name = node.named_children[0] if node.named_child_count else None
        if name is not None and ast.get_text(name) == "dangerouslySetInnerHTML":
            yield Hit(
                **_position(node),
                description="dangerouslySetInnerHTML bypasses React's escaping.",
            )


def _check_hardcoded_secret(ast: ParsedAST, ctx: DetectorContext) -> Iterator[Hit]:
    for literal in engine.find_string_literals(ast):
        lowered = literal.value.lower()
        if len(literal.value) <= SECRET_MIN_LENGTH:
            continue
        keyword = next((k for k in SECRET_KEYWORDS if k in lowered), None)
        if keyword is not None:
            yield Hit(
                line=literal.line,
                column=literal.column,
                description=(
                    f"A string literal mentioning {keyword!r} looks like an "
                    "embedded credential."
                ),
            )


def _is_concatenation(ast: ParsedAST, node: ts.Node | None) -> bool:
    if node is None or node.type != "binary_expression":
        return False
    operator = node.child_by_field_name("operator")
    return operator is not None and ast.get_text(operator) == "+"


def _concatenated_operands(ast: ParsedAST, node: ts.Node) -> list[ts.Node]:
    operands: list[ts.Node] = []
    stack = [node]
    while stack:
        current = stack.pop()
        if _is_concatenation(ast, current):
            stack.append(current.child_by_field_name("right"))
            stack.append(current.child_by_field_name("left"))
        elif current.type == "parenthesized_expression" and current.named_child_count == 1:
            stack.append(current.named_children[0])
        else:
            operands.append(current)
    return operands


def _has_substitution(node: ts.Node) -> bool:
    return any(child.type == "template_substitution" for child in node.named_children)


def _check_sql_injection(ast: ParsedAST, ctx: DetectorContext) -> Iterator[Hit]:
    for node in ast.nodes("template_string"):
        if not _has_substitution(node):
            continue
        static = ast.get_text(node)
        for child in node.named_children:
            if child.type == "template_substitution":
                static = static.replace(ast.get_text(child), " ", 1)
        if _SQL_RE.search(static):
            yield Hit(
                **_position(node),
                description="An SQL statement is built by interpolating values into a template string.",
            )

    for node in ast.nodes("binary_expression"):
        # Report each concatenation chain once, at its outermost "+"
        if not _is_concatenation(ast, node) or _is_concatenation(ast, node.parent):
            continue
        operands = _concatenated_operands(ast, node)
        has_sql = any(
            op.type == "string" and _SQL_RE.search(ast.get_text(op)) for op in operands
        )
        has_value = any(
            op.type not in _LITERAL_TYPES
            or (op.type == "template_string" and _has_substitution(op))
            for op in operands
        )
        if has_sql and has_value:
            yield Hit(
                **_position(node),
                description="An SQL statement is built by concatenating values into a string.",
            )


# ---------------------------------------------------------------------------
# Performance checks
# ---------------------------------------------------------------------------


def _check_dom_query_in_loop(ast: ParsedAST, ctx: DetectorContext) -> Iterator[Hit]:
    for call in engine.find_function_calls(ast):
        if call.name in _DOM_QUERIES and call.receiver == "document":
            if engine.is_inside_loop(call.node):
                yield Hit(
                    **_position(call.node),
                    description=(
                        f"document.{call.name}() runs on every loop iteration."
                    ),
                )


def _check_oversized_literal(ast: ParsedAST, ctx: DetectorContext) -> Iterator[Hit]:
    for node_type in ("array", "object"):
        for node in ast.nodes(node_type):
            count = sum(1 for child in node.named_children if child.type != "comment")
            if count > MAX_LITERAL_ELEMENTS:
                yield Hit(
                    line=node.start_point.row + 1,
                    column=node.start_point.column,
                    description=(
                        f"{node_type.capitalize()} literal with {count} elements "
                        f"(limit {MAX_LITERAL_ELEMENTS})."
                    ),
                )


def _unpaired_calls(ast: ParsedAST, setter: str, clearer: str) -> Iterator[Hit]:
    calls = engine.find_function_calls(ast)
    if any(call.name == clearer for call in calls):
        return
    for call in calls:
        if call.name == setter:
            yield Hit(**_position(call.node))


def _check_uncleared_interval(ast: ParsedAST, ctx: DetectorContext) -> Iterator[Hit]:
    yield from _unpaired_calls(ast, "setInterval", "clearInterval")


def _check_unremoved_listener(ast: ParsedAST, ctx: DetectorContext) -> Iterator[Hit]:
    yield from _unpaired_calls(ast, "addEventListener", "removeEventListener")


# ---------------------------------------------------------------------------
# Quality checks
# ---------------------------------------------------------------------------


def _check_high_complexity(ast: ParsedAST, ctx: DetectorContext) -> Iterator[Hit]:
    for fn in engine.find_function_definitions(ast):
        complexity = engine.cyclomatic_complexity(ast, fn.node)
        if complexity <= COMPLEXITY_MEDIUM_THRESHOLD:
            continue
        severity = Severity.HIGH if complexity > COMPLEXITY_HIGH_THRESHOLD else Severity.MEDIUM
        yield Hit(
            line=fn.line,
            column=fn.column,
            end_line=fn.end_line,
            severity=severity,
            title=f"High cyclomatic complexity ({complexity}) in {fn.name}",
            description=(
                f"Function {fn.name} has a cyclomatic complexity of {complexity}, "
                f"above the limit of {COMPLEXITY_MEDIUM_THRESHOLD}."
            ),
        )


def _check_high_average_complexity(ast: ParsedAST, ctx: DetectorContext) -> Iterator[Hit]:
    functions = engine.find_function_definitions(ast)
    if not functions:
        return
    total = sum(engine.cyclomatic_complexity(ast, fn.node) for fn in functions)
    average = total / len(functions)
    if average > AVERAGE_COMPLEXITY_THRESHOLD:
        yield Hit(
            whole_file=True,
            title=f"High average complexity ({average:.1f})",
            description=(
                f"The {len(functions)} functions in this file have an average "
                f"cyclomatic complexity of {average:.1f}, above "
                f"{AVERAGE_COMPLEXITY_THRESHOLD}."
            ),
        )


def _check_excess_parameters(ast: ParsedAST, ctx: DetectorContext) -> Iterator[Hit]:
    for fn in engine.find_function_definitions(ast):
        if fn.parameter_count > MAX_PARAMETERS:
            yield Hit(
                line=fn.line,
                column=fn.column,
                description=(
                    f"Function {fn.name} takes {fn.parameter_count} parameters "
                    f"(limit {MAX_PARAMETERS})."
                ),
            )


def _check_legacy_declaration(ast: ParsedAST, ctx: DetectorContext) -> Iterator[Hit]:
    for node in ast.nodes("variable_declaration"):
        if node.children and node.children[0].type == "var":
            yield Hit(line=node.start_point.row + 1, column=node.start_point.column)


def _check_debug_statement(ast: ParsedAST, ctx: DetectorContext) -> Iterator[Hit]:
    for call in engine.find_function_calls(ast):
        if call.receiver == "console":
            yield Hit(
                **_position(call.node),
                description=f"console.{call.name}() left in the code.",
            )
    for node in ast.nodes("debugger_statement"):
        yield Hit(
            line=node.start_point.row + 1,
            column=node.start_point.column,
            title="Debugger statement",
            description="A debugger statement pauses execution when devtools are open.",
        )


def _check_explicit_any(ast: ParsedAST, ctx: DetectorContext) -> Iterator[Hit]:
    if not ast.is_typescript:
        return
    for node in ast.nodes("predefined_type"):
        if ast.get_text(node) == "any":
            yield Hit(line=node.start_point.row + 1, column=node.start_point.column)


def _check_type_check_suppressed(ast: ParsedAST, ctx: DetectorContext) -> Iterator[Hit]:
    for node in engine.find_comments(ast):
        if "@ts-ignore" in ast.get_text(node):
            yield Hit(line=node.start_point.row + 1, column=node.start_point.column)


def _handles_rejection(ast: ParsedAST, call_node: ts.Node) -> bool:
    """True if *call_node* is, or is chained into, a ``.catch(...)`` call."""
    current = call_node
    while True:
        _obj, prop = _member_parts(ast, current.child_by_field_name("function"))
        if prop == "catch":
            return True
        # A second argument to then() is the rejection handler
        if prop == "then" and _argument_count(current) >= 2:
            return True
        parent = current.parent
        if (
            parent is None
            or parent.type != "member_expression"
            or parent.child_by_field_name("object") != current
            or parent.parent is None
            or parent.parent.type != "call_expression"
        ):
            return False
        current = parent.parent


def _argument_count(call_node: ts.Node) -> int:
    args = call_node.child_by_field_name("arguments")
    if args is None:
        return 0
    return sum(1 for child in args.named_children if child.type != "comment")


def _may_fail(call: FunctionCall) -> str | None:
    if call.receiver is None and call.name == "fetch":
        return "fetch()"
    if call.receiver == "JSON" and call.name == "parse":
        return "JSON.parse()"
    if call.receiver == "axios":
        return f"axios.{call.name}()"
    if call.name == "then" and call.receiver is not None:
        return "A promise chain"
    return None


def _check_unhandled_async(ast: ParsedAST, ctx: DetectorContext) -> Iterator[Hit]:
    reported: set[int] = set()
    candidates: list[tuple[ts.Node, str]] = []
    for call in engine.find_function_calls(ast):
        label = _may_fail(call)
        if label is not None:
            candidates.append((call.node, label))
    for node in ast.nodes("await_expression"):
        awaited = node.named_children[0] if node.named_child_count else None
        if awaited is not None and awaited.type == "call_expression":
            candidates.append((awaited, "An awaited call"))

    for node, label in sorted(candidates, key=lambda item: item[0].start_byte):
        line = node.start_point.row + 1
        if line in reported:
            continue
        if engine.is_inside_try(node) or _handles_rejection(ast, node):
            continue
        reported.add(line)
        yield Hit(
            **_position(node),
            description=f"{label} can fail, and no try/catch or .catch() handles the error.",
        )


def _check_oversized_file(ast: ParsedAST, ctx: DetectorContext) -> Iterator[Hit]:
    size = len(ast.source_code)
    if size > MAX_FILE_CHARACTERS:
        yield Hit(
            whole_file=True,
            description=(
                f"The file is {size} characters long (limit {MAX_FILE_CHARACTERS})."
            ),
        )


# ---------------------------------------------------------------------------
# Detector sets
# ---------------------------------------------------------------------------

SECURITY_DETECTORS: list[Detector] = [
    Detector(
        rule_id="dynamic-eval",
        concern=Concern.SECURITY,
        severity=Severity.CRITICAL,
        title="Dynamic code evaluation",
        description="Strings are compiled and executed as code at runtime.",
        impact="Attacker-influenced strings reaching eval can run arbitrary code.",
        recommendation="Replace dynamic evaluation with explicit logic or JSON.parse().",
        remediation=steps(
            ("Remove eval", "Rewrite the logic without compiling strings.",
             "// Instead of:\neval('handle' + name + '()');\n\n// Use:\nhandlers[name]();"),
            ("Pass functions to timers",
             "Give setTimeout/setInterval a function instead of a string.",
             "setTimeout(() => refresh(), 1000);"),
        ),
        tags=frozenset({"eval", "injection"}),
        check=_check_dynamic_eval,
    ),
    Detector(
        rule_id="unsanitized-markup-write",
        concern=Concern.SECURITY,
        severity=Severity.HIGH,
        title="Cross-site scripting risk",
        description="Markup is written into the document without sanitization.",
        impact="Injected markup can execute scripts in users' browsers.",
        recommendation="Use textContent, or sanitize markup before inserting it.",
        remediation=steps(
            ("Prefer text APIs", "Assign plain text through textContent.",
             "// Instead of:\nelement.innerHTML = userInput;\n\n// Use:\nelement.textContent = userInput;"),
            ("Sanitize markup", "Run required markup through a sanitizer such as DOMPurify.",
             "element.innerHTML = DOMPurify.sanitize(html);"),
        ),
        tags=frozenset({"xss"}),
        check=_check_unsanitized_markup_write,
    ),
    Detector(
        rule_id="sql-injection",
        concern=Concern.SECURITY,
        severity=Severity.CRITICAL,
        title="SQL injection vulnerability",
        description="An SQL statement is assembled from runtime values.",
        impact="Values spliced into a query can change its meaning and expose or destroy data.",
        recommendation="Use parameterized queries or a query builder.",
        remediation=steps(
            ("Use placeholders", "Pass values separately from the statement text.",
             "// Instead of:\nconst query = `SELECT * FROM users WHERE id = ${userId}`;\n\n"
             "// Use:\nconst query = 'SELECT * FROM users WHERE id = ?';\ndb.query(query, [userId]);"),
        ),
        tags=frozenset({"sql", "injection"}),
        check=_check_sql_injection,
    ),
    Detector(
        rule_id="hardcoded-secret",
        concern=Concern.SECURITY,
        severity=Severity.MEDIUM,
        title="Possible hardcoded secret",
        description="A string literal appears to contain a credential.",
        impact="Secrets committed to source are exposed to everyone with access to it.",
        recommendation="Load credentials from environment variables or a secret store.",
        remediation=steps(
            ("Move the value out of source", "Read it from the environment at runtime.",
             "const apiKey = process.env.API_KEY;"),
            ("Rotate the secret", "Assume the committed value is compromised."),
        ),
        tags=frozenset({"secrets"}),
        check=_check_hardcoded_secret,
    ),
]

PERFORMANCE_DETECTORS: list[Detector] = [
    Detector(
        rule_id="dom-query-in-loop",
        concern=Concern.PERFORMANCE,
        severity=Severity.MEDIUM,
        title="DOM query inside a loop",
        description="The document is queried on every loop iteration.",
        impact="Repeated DOM lookups slow down rendering and scripting.",
        recommendation="Query the element once before the loop and reuse it.",
        remediation=steps(
            ("Hoist the lookup", "Store the element in a variable outside the loop.",
             "const list = document.getElementById('list');\nfor (const item of items) {\n  list.append(item);\n}"),
        ),
        tags=frozenset({"dom"}),
        check=_check_dom_query_in_loop,
    ),
    Detector(
        rule_id="oversized-literal",
        concern=Concern.PERFORMANCE,
        severity=Severity.LOW,
        title="Very large literal",
        description="An array or object literal is very large.",
        impact="Large inline data increases bundle size and parse time.",
        recommendation="Load large data sets from a separate resource.",
        tags=frozenset({"bundle-size"}),
        check=_check_oversized_literal,
    ),
    Detector(
        rule_id="uncleared-interval",
        concern=Concern.PERFORMANCE,
        severity=Severity.MEDIUM,
        title="Interval never cleared",
        description="setInterval() is used but clearInterval() never appears in the file.",
        impact="Intervals that are never cleared keep running and leak memory.",
        recommendation="Keep the interval handle and clear it when it is no longer needed.",
        remediation=steps(
            ("Clear the interval", "Call clearInterval() during cleanup.",
             "const id = setInterval(poll, 1000);\n// later\nclearInterval(id);"),
        ),
        tags=frozenset({"memory-leak"}),
        check=_check_uncleared_interval,
    ),
    Detector(
        rule_id="unremoved-listener",
        concern=Concern.PERFORMANCE,
        severity=Severity.LOW,
        title="Event listener never removed",
        description=(
            "addEventListener() is used but removeEventListener() never appears "
            "in the file."
        ),
        impact="Listeners that outlive their element keep it alive in memory.",
        recommendation="Remove listeners when the component is torn down.",
        remediation=steps(
            ("Add cleanup", "Remove the listener in the matching teardown code.",
             "useEffect(() => {\n  window.addEventListener('resize', onResize);\n"
             "  return () => window.removeEventListener('resize', onResize);\n}, []);"),
        ),
        tags=frozenset({"memory-leak"}),
        check=_check_unremoved_listener,
    ),
]

QUALITY_DETECTORS: list[Detector] = [
    Detector(
        rule_id="high-complexity",
        concern=Concern.QUALITY,
        severity=Severity.MEDIUM,
        title="High cyclomatic complexity",
        description="A function has too many independent paths.",
        impact="Complex functions are hard to test and easy to break.",
        recommendation="Split the function into smaller, focused helpers.",
        remediation=steps(
            ("Extract helpers", "Move independent branches into named functions."),
            ("Flatten conditionals", "Use early returns or lookup tables instead of nested branches."),
        ),
        tags=frozenset({"complexity", "maintainability"}),
        check=_check_high_complexity,
    ),
    Detector(
        rule_id="high-average-complexity",
        concern=Concern.QUALITY,
        severity=Severity.MEDIUM,
        title="High average complexity",
        description="Functions in this file are complex on average.",
        impact="The file as a whole is hard to reason about and review.",
        recommendation="Refactor the most complex functions first.",
        tags=frozenset({"complexity", "maintainability"}),
        check=_check_high_average_complexity,
    ),
    Detector(
        rule_id="excess-parameters",
        concern=Concern.QUALITY,
        severity=Severity.LOW,
        title="Too many parameters",
        description="A function declares too many parameters.",
        impact="Long parameter lists are easy to call incorrectly.",
        recommendation="Group related parameters into an options object.",
        remediation=steps(
            ("Use an options object", "Pass named values in a single object.",
             "function createUser({ name, email, role, team, locale, timezone }) {}"),
        ),
        tags=frozenset({"maintainability"}),
        check=_check_excess_parameters,
    ),
    Detector(
        rule_id="legacy-declaration",
        concern=Concern.QUALITY,
        severity=Severity.LOW,
        title="Use of var",
        description="A variable is declared with var.",
        impact="var is function-scoped and hoisted, which invites subtle bugs.",
        recommendation="Declare variables with const or let.",
        tags=frozenset({"style"}),
        check=_check_legacy_declaration,
    ),
    Detector(
        rule_id="debug-statement",
        concern=Concern.QUALITY,
        severity=Severity.LOW,
        title="Console statement",
        description="A debugging statement was left in the code.",
        impact="Debug output leaks internals and clutters the console.",
        recommendation="Remove it or route it through a proper logger.",
        tags=frozenset({"debugging"}),
        check=_check_debug_statement,
    ),
    Detector(
        rule_id="unhandled-async",
        concern=Concern.QUALITY,
        severity=Severity.MEDIUM,
        title="Missing error handling",
        description="An operation that can fail has no error handling.",
        impact="Rejected promises and parse errors surface as uncaught exceptions.",
        recommendation="Wrap the operation in try/catch or attach a .catch() handler.",
        remediation=steps(
            ("Handle failures", "Catch the error where the operation runs.",
             "try {\n  const response = await fetch(url);\n  return await response.json();\n"
             "} catch (error) {\n  showError(error);\n}"),
        ),
        tags=frozenset({"error-handling", "async"}),
        check=_check_unhandled_async,
    ),
    Detector(
        rule_id="explicit-any",
        concern=Concern.QUALITY,
        severity=Severity.MEDIUM,
        title="Explicit any type",
        description="A value is annotated with the any type.",
        impact="any disables type checking for everything it touches.",
        recommendation="Use a precise type, or unknown with a type guard.",
        tags=frozenset({"typescript", "type-safety"}),
        check=_check_explicit_any,
    ),
    Detector(
        rule_id="type-check-suppressed",
        concern=Concern.QUALITY,
        severity=Severity.LOW,
        title="Type checking suppressed",
        description="A @ts-ignore comment silences the type checker.",
        impact="Suppressed errors hide real type mistakes.",
        recommendation="Fix the underlying type error, or use @ts-expect-error with a reason.",
        tags=frozenset({"typescript", "type-safety"}),
        check=_check_type_check_suppressed,
    ),
    Detector(
        rule_id="oversized-file",
        concern=Concern.QUALITY,
        severity=Severity.LOW,
        title="Large file",
        description="The file is very long.",
        impact="Large files are hard to navigate and review.",
        recommendation="Split the file into smaller modules.",
        tags=frozenset({"maintainability"}),
        check=_check_oversized_file,
    ),
]

SCRIPT_DETECTORS: list[Detector] = (
    SECURITY_DETECTORS + PERFORMANCE_DETECTORS + QUALITY_DETECTORS
)

_DETECTOR_INDEX: dict[str, Detector] = index_detectors(SCRIPT_DETECTORS)


def get_detector_by_id(rule_id: str) -> Detector | None:
    """Look up a script detector by its rule id."""
    return _DETECTOR_INDEX.get(rule_id)
