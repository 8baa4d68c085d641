"""Stylesheet parsing on top of cssutils.

cssutils builds the rule tree; it does not keep source positions, so rule
and declaration lines are recovered by matching selectors against a light
scan of the raw text. cssutils reports problems through a process-global
log, which is why parsing is serialized behind a module lock.
"""

from __future__ import annotations

import logging
import re
import threading
from dataclasses import dataclass, field

import cssutils
from cssutils.css import CSSRule

from ...core.exceptions import ParseError
from ..base import SyntaxIssue

logger = logging.getLogger(__name__)

# cssutils writes parser messages here while a parse is running
_css_log = logging.getLogger(f"{__name__}.cssutils")
_css_log.propagate = False

_parse_lock = threading.Lock()

_COMMENT_RE = re.compile(r"/\*.*?\*/", re.DOTALL)
_HEADER_RE = re.compile(r"([^{};]+)\{")
_POSITION_RE = re.compile(r"\[(\d+):(\d+):")
_ATTRIBUTE_RE = re.compile(r"\[[^\]]*\]")

STRICT_EXTENSIONS = (".css",)


@dataclass
class Declaration:
    """One ``property: value`` pair of a style rule."""

    name: str
    value: str
    important: bool = False
    line: int = 1


@dataclass
class StyleRule:
    """A style rule with its selectors and declarations.

    Attributes:
        selector_text: The full selector list as written by cssutils.
        selectors: Individual selectors of the list.
        declarations: Declarations in source order, duplicates included.
        line: 1-based line of the rule header.
        media: Media query text when the rule is nested in ``@media``.
    """

    selector_text: str
    selectors: list[str] = field(default_factory=list)
    declarations: list[Declaration] = field(default_factory=list)
    line: int = 1
    media: str | None = None

    def property_names(self) -> set[str]:
        return {d.name for d in self.declarations}


@dataclass
class StyleSheetUnit:
    """Parsed stylesheet.

    Attributes:
        rules: Style rules in source order.
        source: The raw stylesheet text.
        syntax_errors: Parser errors recovered from. Only collected for
            plain CSS; preprocessor dialects are parsed best-effort.
    """

    rules: list[StyleRule] = field(default_factory=list)
    source: str = ""
    syntax_errors: list[SyntaxIssue] = field(default_factory=list)


class _CollectingHandler(logging.Handler):
    def __init__(self) -> None:
        super().__init__(level=logging.ERROR)
        self.messages: list[str] = []

    def emit(self, record: logging.LogRecord) -> None:
        self.messages.append(record.getMessage())


def normalize_selector(text: str) -> str:
    """Collapse whitespace and spacing around combinators and commas."""
    text = re.sub(r"\s*([>+~,])\s*", r"\1", text.strip())
    return re.sub(r"\s+", " ", text)


def strip_attribute_selectors(selector: str) -> str:
    return _ATTRIBUTE_RE.sub("", selector)


def _blank_comments(text: str) -> str:
    # Keep offsets and newlines so lines stay addressable
    return _COMMENT_RE.sub(lambda m: re.sub(r"[^\n]", " ", m.group(0)), text)


@dataclass
class _RawBlock:
    selector: str
    line: int
    body_start: int
    body_end: int


class _SourceLocator:
    """Finds source lines for rules emitted by cssutils, in order."""

    def __init__(self, source: str) -> None:
        self.text = _blank_comments(source)
        self.blocks: list[_RawBlock] = []
        for match in _HEADER_RE.finditer(self.text):
            header = match.group(1)
            if header.strip().startswith("@"):
                continue
            body_start = match.end()
            body_end = self.text.find("}", body_start)
            if body_end == -1:
                body_end = len(self.text)
            leading = len(header) - len(header.lstrip())
            self.blocks.append(
                _RawBlock(
                    selector=normalize_selector(header),
                    line=self.text.count("\n", 0, match.start() + leading) + 1,
                    body_start=body_start,
                    body_end=body_end,
                )
            )
        self._cursor = 0

    def find_block(self, selector_text: str) -> _RawBlock | None:
        wanted = normalize_selector(selector_text)
        for i in range(self._cursor, len(self.blocks)):
            if self.blocks[i].selector == wanted:
                self._cursor = i + 1
                return self.blocks[i]
        return None

    def declaration_line(self, block: _RawBlock, name: str, start: int) -> tuple[int, int]:
        """Line of *name* inside *block*, searching from offset *start*."""
        pattern = re.compile(rf"(?<![-\w]){re.escape(name)}\s*:", re.IGNORECASE)
        match = pattern.search(self.text, max(start, block.body_start), block.body_end)
        if match is None:
            return block.line, start
        return self.text.count("\n", 0, match.start()) + 1, match.end()


def _error_issues(messages: list[str]) -> list[SyntaxIssue]:
    issues = []
    for message in messages:
        match = _POSITION_RE.search(message)
        if match:
            issues.append(
                SyntaxIssue(line=int(match.group(1)), column=int(match.group(2)) - 1,
                            message=message)
            )
        else:
            issues.append(SyntaxIssue(line=1, column=None, message=message))
    return issues


def _run_cssutils(source: str) -> tuple[cssutils.css.CSSStyleSheet, list[str]]:
    handler = _CollectingHandler()
    with _parse_lock:
        _css_log.addHandler(handler)
        try:
            parser = cssutils.CSSParser(
                log=_css_log,
                loglevel=logging.ERROR,
                raiseExceptions=False,
                validate=False,
            )
            sheet = parser.parseString(source)
        finally:
            _css_log.removeHandler(handler)
    return sheet, handler.messages


def parse_stylesheet(source: str, path: str = "") -> StyleSheetUnit:
    """Parse *source* into a ``StyleSheetUnit``.

    Args:
        source: Stylesheet text.
        path: File path, used to tell plain CSS from preprocessor dialects.

    Raises:
        ParseError: If plain CSS produced errors and no rules at all.
    """
    strict = path.lower().endswith(STRICT_EXTENSIONS) or not path
    sheet, messages = _run_cssutils(source)

    locator = _SourceLocator(source)
    rules: list[StyleRule] = []

    def _collect(css_rules, media: str | None) -> None:
        for rule in css_rules:
            if rule.type == CSSRule.STYLE_RULE:
                rules.append(_build_rule(rule, media, locator))
            elif rule.type == CSSRule.MEDIA_RULE:
                _collect(rule.cssRules, rule.media.mediaText)

    _collect(sheet.cssRules, None)

    syntax_errors = _error_issues(messages) if strict else []
    if strict and messages and not rules and source.strip():
        first = syntax_errors[0]
        raise ParseError(first.message, line=first.line, column=first.column)

    if messages and not strict:
        logger.debug(f"Ignored {len(messages)} parser messages for {path}")

    return StyleSheetUnit(rules=rules, source=source, syntax_errors=syntax_errors)


def _build_rule(rule, media: str | None, locator: _SourceLocator) -> StyleRule:
    selector_text = rule.selectorText
    block = locator.find_block(selector_text)

    declarations: list[Declaration] = []
    cursor = block.body_start if block else 0
    for prop in rule.style.getProperties(all=True):
        if block is not None:
            line, cursor = locator.declaration_line(block, prop.name, cursor)
        else:
            line = 1
        declarations.append(
            Declaration(
                name=prop.name.lower(),
                value=prop.value,
                important=prop.priority == "important",
                line=line,
            )
        )

    return StyleRule(
        selector_text=selector_text,
        selectors=[s.selectorText for s in rule.selectorList],
        declarations=declarations,
        line=block.line if block else 1,
        media=media,
    )
