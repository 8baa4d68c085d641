"""Markup parsing with BeautifulSoup.

The lenient ``html.parser`` backend never rejects input and records the
source line of every tag, which is all the markup detectors need. The
document also knows how to cut out its inline scripts and styles so they
can be analyzed as records of their own.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from urllib.parse import urljoin

from bs4 import BeautifulSoup, Tag

from ...models import ContentKind
from ..base import SyntaxIssue

logger = logging.getLogger(__name__)

# <script type> values that hold executable JavaScript
SCRIPT_TYPES = frozenset({
    "",
    "text/javascript",
    "application/javascript",
    "application/ecmascript",
    "text/ecmascript",
    "module",
})


@dataclass
class EmbeddedBlock:
    """Inline ``<script>`` or ``<style>`` content.

    Attributes:
        kind: Script or Stylesheet.
        content: The raw text between the tags.
        line_offset: Lines of the page preceding the block's first line.
    """

    kind: ContentKind
    content: str
    line_offset: int


@dataclass
class ExternalAsset:
    """A script or stylesheet referenced by URL."""

    url: str
    kind: ContentKind


@dataclass
class MarkupDocument:
    """Parsed markup.

    Attributes:
        soup: The BeautifulSoup tree.
        source: The raw markup.
        syntax_errors: Always empty; ``html.parser`` recovers from anything.
    """

    soup: BeautifulSoup
    source: str
    syntax_errors: list[SyntaxIssue] = field(default_factory=list)

    def inline_blocks(self) -> list[EmbeddedBlock]:
        """Inline scripts and styles, in document order."""
        blocks: list[EmbeddedBlock] = []
        for tag in self.soup.find_all(["script", "style"]):
            if tag.name == "script" and (tag.get("src") or not is_script_type(tag)):
                continue
            content = tag.string or ""
            if not content.strip():
                continue
            blocks.append(
                EmbeddedBlock(
                    kind=ContentKind.SCRIPT if tag.name == "script" else ContentKind.STYLESHEET,
                    content=str(content),
                    line_offset=self._content_line_offset(tag),
                )
            )
        return blocks

    def external_assets(self, base_url: str) -> list[ExternalAsset]:
        """External scripts and stylesheets, resolved against *base_url*."""
        assets: list[ExternalAsset] = []
        for tag in self.soup.find_all(["script", "link"]):
            if tag.name == "script":
                src = tag.get("src")
                if src and is_script_type(tag):
                    assets.append(
                        ExternalAsset(urljoin(base_url, src), ContentKind.SCRIPT)
                    )
            elif is_stylesheet_link(tag) and tag.get("href"):
                assets.append(
                    ExternalAsset(urljoin(base_url, tag["href"]), ContentKind.STYLESHEET)
                )
        return assets

    def _content_line_offset(self, tag: Tag) -> int:
        """Number of page lines before the first line of *tag*'s content."""
        line = tag_line(tag)
        lines = self.source.split("\n")
        if line > len(lines):
            return line - 1
        start = sum(len(text) + 1 for text in lines[: line - 1]) + (tag.sourcepos or 0)
        end_of_tag = self.source.find(">", start)
        if end_of_tag == -1:
            return line - 1
        return self.source.count("\n", 0, end_of_tag)


def tag_line(tag: Tag) -> int:
    return tag.sourceline or 1


def is_script_type(tag: Tag) -> bool:
    script_type = (tag.get("type") or "").strip().lower()
    return script_type in SCRIPT_TYPES


def is_stylesheet_link(tag: Tag) -> bool:
    if tag.name != "link":
        return False
    rel = tag.get("rel") or []
    if isinstance(rel, str):
        rel = rel.split()
    return "stylesheet" in (r.lower() for r in rel)


def parse_markup(source: str) -> MarkupDocument:
    """Parse *source* into a ``MarkupDocument``."""
    soup = BeautifulSoup(source, "html.parser")
    return MarkupDocument(soup=soup, source=source)
