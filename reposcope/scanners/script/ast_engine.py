"""Core AST parsing engine for JavaScript and TypeScript analysis.

This module wraps tree-sitter for parsing script sources into syntax trees
and provides the structured finders the script detectors and the dependency
graph build on: calls, imports, string literals, function definitions and
the cyclomatic complexity metric.

Parsing is always tolerant. Malformed input still yields a tree, with the
damaged regions recorded in ``ParsedAST.syntax_errors``.

Usage::

    engine = ASTEngine()
    ast = engine.parse("const x = require('./util.js');", language="javascript")
    imports = engine.find_imports(ast)
    calls = engine.find_function_calls(ast, function_name="eval")
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field

import tree_sitter as ts
import tree_sitter_javascript as ts_js
import tree_sitter_typescript as ts_ts

from ..base import SyntaxIssue

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Node type groups
# ---------------------------------------------------------------------------

FUNCTION_NODE_TYPES = frozenset({
    "function_declaration",
    "function_expression",
    "function",
    "arrow_function",
    "method_definition",
    "generator_function_declaration",
    "generator_function",
})

LOOP_NODE_TYPES = frozenset({
    "for_statement",
    "for_in_statement",
    "while_statement",
    "do_statement",
})

# Each occurrence adds one independent path through a function
BRANCH_NODE_TYPES = frozenset({
    "if_statement",
    "ternary_expression",
    "switch_case",
    "switch_default",
    "while_statement",
    "for_statement",
    "for_in_statement",
    "do_statement",
    "catch_clause",
})

BRANCH_OPERATORS = frozenset({"&&", "||", "??"})

MAX_SYNTAX_ERRORS = 20

# ---------------------------------------------------------------------------
# Data classes for structured query results
# ---------------------------------------------------------------------------


@dataclass
class FunctionCall:
    """Represents a function or method call found in the AST.

    Attributes:
        name: The function/method name (e.g., "eval", "querySelector").
        arguments: Argument nodes, punctuation excluded.
        line: 1-based line number.
        column: 0-based column offset.
        receiver: Object the method is called on, if any.
            For ``document.write()`` the receiver is ``"document"``.
        node: The ``call_expression`` node.
    """

    name: str
    arguments: list[ts.Node] = field(default_factory=list, repr=False)
    line: int = 0
    column: int = 0
    receiver: str | None = None
    node: ts.Node | None = field(default=None, repr=False)


@dataclass
class ImportStatement:
    """Represents an import, re-export, ``require()`` or ``import()``.

    Attributes:
        module: The module specifier string (e.g., ``"./util.js"``).
        is_dynamic: ``True`` for ``require()`` and ``import()`` rather than
            static ``import`` statements.
        line: 1-based line number.
    """

    module: str
    is_dynamic: bool = False
    line: int = 0


@dataclass
class StringLiteral:
    """A string literal found in the AST.

    Attributes:
        value: The string content *without* surrounding quotes.
        line: 1-based line number.
        column: 0-based column offset.
    """

    value: str
    line: int = 0
    column: int = 0


@dataclass
class FunctionDefinition:
    """A function, method, or arrow-function definition.

    Attributes:
        name: Declared name; the variable name for assigned function
            expressions, ``"<anonymous>"`` otherwise.
        parameter_count: Number of declared parameters.
        line: 1-based first line.
        end_line: 1-based last line.
        column: 0-based column offset.
        node: The defining node.
    """

    name: str
    parameter_count: int = 0
    line: int = 0
    end_line: int = 0
    column: int = 0
    node: ts.Node | None = field(default=None, repr=False)


# ---------------------------------------------------------------------------
# ParsedAST wrapper
# ---------------------------------------------------------------------------


class ParsedAST:
    """Wrapper around a tree-sitter parse tree with convenience methods.

    Attributes:
        tree: The underlying ``tree_sitter.Tree``.
        source_code: Original source string that was parsed.
        language: Language identifier (``"javascript"``, ``"typescript"``,
            or ``"tsx"``).
    """

    __slots__ = ("tree", "source_code", "language", "_source_bytes",
                 "_index", "_syntax_errors")

    def __init__(
        self,
        tree: ts.Tree,
        source_code: str,
        language: str,
    ) -> None:
        self.tree = tree
        self.source_code = source_code
        self.language = language
        self._source_bytes: bytes = source_code.encode("utf-8")
        self._index: dict[str, list[ts.Node]] | None = None
        self._syntax_errors: list[SyntaxIssue] | None = None

    @property
    def root_node(self) -> ts.Node:
        """Return the root node of the parse tree."""
        return self.tree.root_node

    @property
    def has_errors(self) -> bool:
        """Return ``True`` if the tree contains any parse errors."""
        return self.tree.root_node.has_error

    @property
    def is_typescript(self) -> bool:
        return self.language in ("typescript", "tsx")

    @property
    def syntax_errors(self) -> list[SyntaxIssue]:
        """Error and missing-token regions, in source order."""
        if self._syntax_errors is None:
            self._syntax_errors = self._collect_syntax_errors()
        return self._syntax_errors

    def get_text(self, node: ts.Node) -> str:
        """Extract the source text spanned by *node*."""
        return self._source_bytes[node.start_byte:node.end_byte].decode(
            "utf-8", errors="replace"
        )

    def walk(self, visitor: Callable[[ts.Node, int], bool | None]) -> None:
        """Depth-first, pre-order walk of the AST using a visitor callback.

        The *visitor* is called with ``(node, depth)`` for every node.
        If the visitor returns ``False`` explicitly, the subtree rooted
        at that node is skipped. The walk uses an explicit stack, so deeply
        nested sources cannot exhaust the interpreter's recursion limit.
        """
        stack: list[tuple[ts.Node, int]] = [(self.tree.root_node, 0)]
        while stack:
            node, depth = stack.pop()
            if visitor(node, depth) is False:
                continue
            children = node.children
            for child in reversed(children):
                stack.append((child, depth + 1))

    def nodes(self, node_type: str) -> list[ts.Node]:
        """Return all nodes of *node_type*, in source order."""
        if self._index is None:
            index: dict[str, list[ts.Node]] = {}

            def _visitor(node: ts.Node, _depth: int) -> None:
                index.setdefault(node.type, []).append(node)

            self.walk(_visitor)
            self._index = index
        return self._index.get(node_type, [])

    def iter_subtree(self, node: ts.Node) -> Iterator[ts.Node]:
        """Yield *node* and all its descendants, pre-order."""
        stack = [node]
        while stack:
            current = stack.pop()
            yield current
            stack.extend(reversed(current.children))

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _collect_syntax_errors(self) -> list[SyntaxIssue]:
        issues: list[SyntaxIssue] = []
        if not self.has_errors:
            return issues

        def _visitor(node: ts.Node, _depth: int) -> bool | None:
            if len(issues) >= MAX_SYNTAX_ERRORS:
                return False
            if node.is_missing:
                issues.append(
                    SyntaxIssue(
                        line=node.start_point.row + 1,
                        column=node.start_point.column,
                        message=f"Missing {node.type!r}",
                    )
                )
                return False
            if node.type == "ERROR":
                text = self.get_text(node).strip().splitlines()
                token = text[0][:40] if text else ""
                issues.append(
                    SyntaxIssue(
                        line=node.start_point.row + 1,
                        column=node.start_point.column,
                        message=f"Unexpected token near {token!r}" if token else "Unexpected end of input",
                    )
                )
                return False
            # Only descend into subtrees that contain an error
            return node.has_error

        self.walk(_visitor)
        return issues


# ---------------------------------------------------------------------------
# Supported languages
# ---------------------------------------------------------------------------

_SUPPORTED_LANGUAGES = frozenset({"javascript", "typescript", "tsx"})

_languages: dict[str, ts.Language] = {}
_languages_lock = threading.Lock()


def get_language(language: str) -> ts.Language:
    """Return (and cache) the tree-sitter ``Language`` for *language*.

    Args:
        language: One of ``"javascript"``, ``"typescript"``, ``"tsx"``.

    Raises:
        ValueError: If *language* is not supported.
    """
    if language not in _SUPPORTED_LANGUAGES:
        raise ValueError(
            f"Unsupported language: {language!r}. "
            f"Supported: {', '.join(sorted(_SUPPORTED_LANGUAGES))}"
        )

    with _languages_lock:
        if language not in _languages:
            if language == "javascript":
                _languages[language] = ts.Language(ts_js.language())
            elif language == "typescript":
                _languages[language] = ts.Language(ts_ts.language_typescript())
            else:  # tsx
                _languages[language] = ts.Language(ts_ts.language_tsx())
        return _languages[language]


# ---------------------------------------------------------------------------
# ASTEngine
# ---------------------------------------------------------------------------


class ASTEngine:
    """Core AST parsing engine for JavaScript and TypeScript.

    Parsers are not safe to share between threads, so each thread that
    uses the engine gets its own parser per language.

    Example::

        engine = ASTEngine()
        ast = engine.parse(source, language="typescript")
        for fn in engine.find_function_definitions(ast):
            print(fn.name, engine.cyclomatic_complexity(ast, fn.node))
    """

    def __init__(self) -> None:
        self._local = threading.local()

    # ------------------------------------------------------------------
    # Parser initialisation
    # ------------------------------------------------------------------

    def _get_parser(self, language: str) -> ts.Parser:
        """Return (and cache) this thread's ``Parser`` for *language*."""
        parsers: dict[str, ts.Parser] | None = getattr(self._local, "parsers", None)
        if parsers is None:
            parsers = {}
            self._local.parsers = parsers
        if language not in parsers:
            parsers[language] = ts.Parser(language=get_language(language))
        return parsers[language]

    # ------------------------------------------------------------------
    # Parsing
    # ------------------------------------------------------------------

    def parse(self, source_code: str, language: str = "javascript") -> ParsedAST:
        """Parse *source_code* into a ``ParsedAST``.

        Args:
            source_code: The full file contents to parse.
            language: One of ``"javascript"``, ``"typescript"``, or
                ``"tsx"``.

        Returns:
            A ``ParsedAST`` wrapping the parse tree. Syntax errors do not
            raise; see ``ParsedAST.syntax_errors``.

        Raises:
            ValueError: If *language* is not supported.
        """
        parser = self._get_parser(language)
        tree = parser.parse(source_code.encode("utf-8"))
        return ParsedAST(tree=tree, source_code=source_code, language=language)

    # ------------------------------------------------------------------
    # Structured finders
    # ------------------------------------------------------------------

    def find_function_calls(
        self,
        ast: ParsedAST,
        function_name: str | None = None,
    ) -> list[FunctionCall]:
        """Find function/method calls in the AST.

        Args:
            ast: A previously parsed AST.
            function_name: If given, only return calls whose name matches
                this value exactly.
        """
        calls: list[FunctionCall] = []
        for node in ast.nodes("call_expression"):
            fn_node = node.child_by_field_name("function")
            if fn_node is None:
                continue

            receiver: str | None = None
            if fn_node.type == "member_expression":
                prop = fn_node.child_by_field_name("property")
                obj = fn_node.child_by_field_name("object")
                name = ast.get_text(prop) if prop else ast.get_text(fn_node)
                receiver = ast.get_text(obj) if obj else None
            else:
                # Identifiers, import(), immediately invoked expressions
                name = ast.get_text(fn_node)

            if function_name is not None and name != function_name:
                continue

            args_node = node.child_by_field_name("arguments")
            arguments = []
            if args_node is not None:
                arguments = [
                    child for child in args_node.children
                    if child.is_named and child.type != "comment"
                ]

            calls.append(
                FunctionCall(
                    name=name,
                    arguments=arguments,
                    line=node.start_point.row + 1,
                    column=node.start_point.column,
                    receiver=receiver,
                    node=node,
                )
            )
        return calls

    def find_imports(self, ast: ParsedAST) -> list[ImportStatement]:
        """Find all import and require() statements.

        Detects:
        - ``import ... from '...'`` and ``export ... from '...'``
        - ``import('...')`` (dynamic imports)
        - ``require('...')`` (CommonJS require calls)

        Only literal specifiers are reported; computed ones are ignored.
        """
        imports: list[ImportStatement] = []

        for node_type in ("import_statement", "export_statement"):
            for node in ast.nodes(node_type):
                source = node.child_by_field_name("source")
                module = self._string_value(ast, source)
                if module:
                    imports.append(
                        ImportStatement(module=module, line=node.start_point.row + 1)
                    )

        for call in self.find_function_calls(ast):
            if call.receiver is not None or call.name not in ("require", "import"):
                continue
            if not call.arguments:
                continue
            module = self._string_value(ast, call.arguments[0])
            if module:
                imports.append(
                    ImportStatement(module=module, is_dynamic=True, line=call.line)
                )

        imports.sort(key=lambda imp: imp.line)
        return imports

    def find_string_literals(self, ast: ParsedAST) -> list[StringLiteral]:
        """Find all string literals in the code.

        Template literal *fragments* (the static parts of template strings)
        are also included.
        """
        literals: list[StringLiteral] = []
        for node in ast.nodes("string_fragment"):
            literals.append(
                StringLiteral(
                    value=ast.get_text(node),
                    line=node.start_point.row + 1,
                    column=node.start_point.column,
                )
            )
        literals.sort(key=lambda lit: (lit.line, lit.column))
        return literals

    def find_function_definitions(self, ast: ParsedAST) -> list[FunctionDefinition]:
        """Extract all function, method, and arrow-function definitions."""
        definitions: list[FunctionDefinition] = []

        def _visitor(node: ts.Node, _depth: int) -> None:
            # The "function" keyword token shares its type with the expression node
            if not node.is_named or node.type not in FUNCTION_NODE_TYPES:
                return
            definitions.append(
                FunctionDefinition(
                    name=self._function_name(ast, node),
                    parameter_count=self._parameter_count(node),
                    line=node.start_point.row + 1,
                    end_line=node.end_point.row + 1,
                    column=node.start_point.column,
                    node=node,
                )
            )

        ast.walk(_visitor)
        return definitions

    def find_comments(self, ast: ParsedAST) -> list[ts.Node]:
        return list(ast.nodes("comment"))

    # ------------------------------------------------------------------
    # Metrics and structural predicates
    # ------------------------------------------------------------------

    def cyclomatic_complexity(self, ast: ParsedAST, node: ts.Node) -> int:
        """Cyclomatic complexity of the function rooted at *node*.

        One plus the number of branch points in the subtree. Nested
        functions are counted towards the enclosing function.
        """
        complexity = 1
        for child in ast.iter_subtree(node):
            if child.type in BRANCH_NODE_TYPES:
                complexity += 1
            elif child.type == "binary_expression":
                operator = child.child_by_field_name("operator")
                if operator is not None and operator.type in BRANCH_OPERATORS:
                    complexity += 1
        return complexity

    def is_inside_loop(self, node: ts.Node) -> bool:
        """Return ``True`` if *node* sits inside the body of a loop."""
        current = node
        parent = node.parent
        while parent is not None:
            if parent.type in LOOP_NODE_TYPES:
                body = parent.child_by_field_name("body")
                if body is not None and (
                    current.start_byte >= body.start_byte
                    and current.end_byte <= body.end_byte
                ):
                    return True
            current = parent
            parent = parent.parent
        return False

    def is_inside_try(self, node: ts.Node) -> bool:
        """Return ``True`` if *node* runs inside a ``try`` block.

        The search stops at the enclosing function, since a function
        defined in a try block is usually called after it exits.
        """
        current = node
        parent = node.parent
        while parent is not None and current.type not in FUNCTION_NODE_TYPES:
            if parent.type == "try_statement":
                body = parent.child_by_field_name("body")
                if body is not None and body.id == current.id:
                    return True
            current = parent
            parent = parent.parent
        return False

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _string_value(ast: ParsedAST, node: ts.Node | None) -> str | None:
        """Value of a plain string literal node, or None."""
        if node is None or node.type != "string":
            return None
        fragments = [c for c in node.children if c.type == "string_fragment"]
        if len(fragments) != 1:
            return None
        return ast.get_text(fragments[0])

    @staticmethod
    def _function_name(ast: ParsedAST, node: ts.Node) -> str:
        name_node = node.child_by_field_name("name")
        if name_node is not None:
            return ast.get_text(name_node)

        # const foo = () => ..., foo = function () {...}, { foo: () => ... }
        parent = node.parent
        if parent is not None:
            if parent.type == "variable_declarator":
                target = parent.child_by_field_name("name")
            elif parent.type == "assignment_expression":
                target = parent.child_by_field_name("left")
            elif parent.type == "pair":
                target = parent.child_by_field_name("key")
            else:
                target = None
            if target is not None:
                return ast.get_text(target)
        return "<anonymous>"

    @staticmethod
    def _parameter_count(node: ts.Node) -> int:
        params = node.child_by_field_name("parameters")
        if params is None:
            # Single-parameter arrow function without parentheses: x => ...
            return 1 if node.child_by_field_name("parameter") is not None else 0
        return sum(
            1 for child in params.children
            if child.is_named and child.type != "comment"
        )
