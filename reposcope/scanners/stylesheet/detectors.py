"""Detectors for stylesheets (CSS and preprocessor dialects)."""

from __future__ import annotations

import re
from collections.abc import Iterator

from ...constants import (
    LIGHT_COLOR_BRIGHTNESS,
    MAX_BOX_SHADOWS,
    MAX_CHILD_COMBINATORS,
    MIN_FONT_SIZE_PT,
    MIN_FONT_SIZE_PX,
)
from ...models import Concern, Severity
from ..base import Detector, DetectorContext, Hit, index_detectors, steps
from .parser import StyleRule, StyleSheetUnit, normalize_selector, strip_attribute_selectors

_HEX_COLOR_RE = re.compile(r"^#([0-9a-f]{3}|[0-9a-f]{6})$", re.IGNORECASE)
_FONT_SIZE_RE = re.compile(r"^(\d+(?:\.\d+)?|\.\d+)\s*(px|pt)$", re.IGNORECASE)
_VENDOR_RE = re.compile(r"^-(webkit|moz|ms|o)-")
_OUTLINE_REMOVED = frozenset({"none", "0", "0px"})
_FOCUS_REPLACEMENTS = ("box-shadow", "border", "background", "text-decoration")


def split_top_level(value: str, separator: str = ",") -> list[str]:
    """Split *value* on *separator*, ignoring separators inside parentheses."""
    parts: list[str] = []
    depth = 0
    current: list[str] = []
    for char in value:
        if char == "(":
            depth += 1
        elif char == ")":
            depth = max(depth - 1, 0)
        if char == separator and depth == 0:
            parts.append("".join(current))
            current = []
        else:
            current.append(char)
    parts.append("".join(current))
    return [p.strip() for p in parts if p.strip()]


def color_brightness(hex_color: str) -> float | None:
    """Perceived brightness (0-255) of a ``#rgb`` or ``#rrggbb`` color."""
    match = _HEX_COLOR_RE.match(hex_color.strip())
    if match is None:
        return None
    digits = match.group(1)
    if len(digits) == 3:
        digits = "".join(c * 2 for c in digits)
    r, g, b = (int(digits[i:i + 2], 16) for i in (0, 2, 4))
    return (r * 299 + g * 587 + b * 114) / 1000


def _rule_label(rule: StyleRule) -> str:
    if rule.media:
        return f"{rule.selector_text} (@media {rule.media})"
    return rule.selector_text


# ---------------------------------------------------------------------------
# Performance checks
# ---------------------------------------------------------------------------


def _check_universal_selector(unit: StyleSheetUnit, ctx: DetectorContext) -> Iterator[Hit]:
    for rule in unit.rules:
        for selector in rule.selectors:
            if "*" in strip_attribute_selectors(selector):
                yield Hit(
                    line=rule.line,
                    description=f"Selector {selector!r} uses the universal selector.",
                )
                break


def _check_deep_selector(unit: StyleSheetUnit, ctx: DetectorContext) -> Iterator[Hit]:
    for rule in unit.rules:
        for selector in rule.selectors:
            depth = strip_attribute_selectors(selector).count(">")
            if depth > MAX_CHILD_COMBINATORS:
                yield Hit(
                    line=rule.line,
                    description=(
                        f"Selector {selector!r} chains {depth} child combinators "
                        f"(limit {MAX_CHILD_COMBINATORS})."
                    ),
                )


def _check_stacked_box_shadow(unit: StyleSheetUnit, ctx: DetectorContext) -> Iterator[Hit]:
    for rule in unit.rules:
        for decl in rule.declarations:
            if decl.name != "box-shadow" or decl.value.strip().lower() == "none":
                continue
            count = len(split_top_level(decl.value))
            if count > MAX_BOX_SHADOWS:
                yield Hit(
                    line=decl.line,
                    description=(
                        f"box-shadow stacks {count} shadows (limit {MAX_BOX_SHADOWS})."
                    ),
                )


def _check_fixed_position(unit: StyleSheetUnit, ctx: DetectorContext) -> Iterator[Hit]:
    for rule in unit.rules:
        for decl in rule.declarations:
            if decl.name == "position" and decl.value.strip().lower() == "fixed":
                yield Hit(line=decl.line, description=f"{_rule_label(rule)} is position: fixed.")


# ---------------------------------------------------------------------------
# Quality checks
# ---------------------------------------------------------------------------


def _check_duplicate_selector(unit: StyleSheetUnit, ctx: DetectorContext) -> Iterator[Hit]:
    first_seen: dict[tuple[str, str | None], int] = {}
    for rule in unit.rules:
        key = (normalize_selector(rule.selector_text), rule.media)
        if key in first_seen:
            yield Hit(
                line=rule.line,
                description=(
                    f"Selector {rule.selector_text!r} was already defined on line "
                    f"{first_seen[key] + ctx.record.line_offset}."
                ),
            )
        else:
            first_seen[key] = rule.line


def _check_important_override(unit: StyleSheetUnit, ctx: DetectorContext) -> Iterator[Hit]:
    for rule in unit.rules:
        for decl in rule.declarations:
            if decl.important:
                yield Hit(
                    line=decl.line,
                    description=f"{decl.name} in {_rule_label(rule)} is marked !important.",
                )


def _check_vendor_prefix_only(unit: StyleSheetUnit, ctx: DetectorContext) -> Iterator[Hit]:
    for rule in unit.rules:
        names = rule.property_names()
        for decl in rule.declarations:
            if decl.name.startswith("--") or not _VENDOR_RE.match(decl.name):
                continue
            standard = _VENDOR_RE.sub("", decl.name)
            if standard not in names:
                yield Hit(
                    line=decl.line,
                    description=(
                        f"{decl.name} is used without the standard {standard} property."
                    ),
                )


# ---------------------------------------------------------------------------
# Accessibility checks
# ---------------------------------------------------------------------------


def _check_focus_indicator_removed(unit: StyleSheetUnit, ctx: DetectorContext) -> Iterator[Hit]:
    for rule in unit.rules:
        removed = [
            d for d in rule.declarations
            if d.name in ("outline", "outline-style", "outline-width")
            and d.value.strip().lower() in _OUTLINE_REMOVED
        ]
        if not removed:
            continue
        replaced = any(
            d.name.startswith(_FOCUS_REPLACEMENTS) for d in rule.declarations
        )
        if not replaced:
            yield Hit(
                line=removed[0].line,
                description=(
                    f"{_rule_label(rule)} removes the focus outline without "
                    "providing another focus style."
                ),
            )


def _check_low_contrast_color(unit: StyleSheetUnit, ctx: DetectorContext) -> Iterator[Hit]:
    for rule in unit.rules:
        for decl in rule.declarations:
            if decl.name != "color":
                continue
            brightness = color_brightness(decl.value)
            if brightness is not None and brightness > LIGHT_COLOR_BRIGHTNESS:
                yield Hit(
                    line=decl.line,
                    description=(
                        f"Text color {decl.value} has a perceived brightness of "
                        f"{brightness:.0f} and is likely hard to read on light backgrounds."
                    ),
                )


def _check_small_font_size(unit: StyleSheetUnit, ctx: DetectorContext) -> Iterator[Hit]:
    for rule in unit.rules:
        for decl in rule.declarations:
            if decl.name != "font-size":
                continue
            match = _FONT_SIZE_RE.match(decl.value.strip())
            if match is None:
                continue
            size = float(match.group(1))
            unit_name = match.group(2).lower()
            minimum = MIN_FONT_SIZE_PX if unit_name == "px" else MIN_FONT_SIZE_PT
            if size < minimum:
                yield Hit(
                    line=decl.line,
                    description=(
                        f"font-size {decl.value} is below the minimum of "
                        f"{minimum:g}{unit_name}."
                    ),
                )


# ---------------------------------------------------------------------------
# Detector sets
# ---------------------------------------------------------------------------

PERFORMANCE_DETECTORS: list[Detector] = [
    Detector(
        rule_id="universal-selector",
        concern=Concern.PERFORMANCE,
        severity=Severity.MEDIUM,
        title="Universal selector",
        description="A rule uses the universal selector *.",
        impact="Universal selectors match every element and slow down style recalculation.",
        recommendation="Target specific elements or classes instead of *.",
        tags=frozenset({"selectors"}),
        check=_check_universal_selector,
    ),
    Detector(
        rule_id="deep-selector",
        concern=Concern.PERFORMANCE,
        severity=Severity.MEDIUM,
        title="Overly deep selector",
        description="A selector chains many child combinators.",
        impact="Deep selectors are slow to match and tightly coupled to markup structure.",
        recommendation="Use a class on the target element instead of a long chain.",
        tags=frozenset({"selectors"}),
        check=_check_deep_selector,
    ),
    Detector(
        rule_id="stacked-box-shadow",
        concern=Concern.PERFORMANCE,
        severity=Severity.LOW,
        title="Many stacked box shadows",
        description="A box-shadow stacks many shadows.",
        impact="Each shadow layer adds paint cost, especially during animation.",
        recommendation="Reduce the number of shadow layers.",
        tags=frozenset({"rendering"}),
        check=_check_stacked_box_shadow,
    ),
    Detector(
        rule_id="fixed-position",
        concern=Concern.PERFORMANCE,
        severity=Severity.LOW,
        title="Fixed positioning",
        description="An element uses position: fixed.",
        impact="Fixed elements are repainted on scroll and can hurt scrolling performance.",
        recommendation="Prefer position: sticky where possible, and keep fixed elements small.",
        tags=frozenset({"rendering"}),
        check=_check_fixed_position,
    ),
]

QUALITY_DETECTORS: list[Detector] = [
    Detector(
        rule_id="duplicate-selector",
        concern=Concern.QUALITY,
        severity=Severity.MEDIUM,
        title="Duplicate selector",
        description="The same selector is defined more than once.",
        impact="Split definitions make it hard to know which declarations win.",
        recommendation="Merge the declarations into a single rule.",
        tags=frozenset({"maintainability"}),
        check=_check_duplicate_selector,
    ),
    Detector(
        rule_id="important-override",
        concern=Concern.QUALITY,
        severity=Severity.MEDIUM,
        title="Use of !important",
        description="A declaration is marked !important.",
        impact="!important breaks the cascade and leads to specificity wars.",
        recommendation="Increase selector specificity or restructure the rules instead.",
        remediation=steps(
            ("Remove !important", "Find which rule overrides this one and fix the ordering."),
        ),
        tags=frozenset({"specificity"}),
        check=_check_important_override,
    ),
    Detector(
        rule_id="vendor-prefix-only",
        concern=Concern.QUALITY,
        severity=Severity.LOW,
        title="Vendor prefix without standard property",
        description="A vendor-prefixed property is used without its standard form.",
        impact="Browsers that dropped the prefix ignore the declaration.",
        recommendation="Add the unprefixed property after the prefixed one.",
        remediation=steps(
            ("Add the standard property", "Declare the standard form after the prefixed one.",
             ".box {\n  -webkit-transform: rotate(5deg);\n  transform: rotate(5deg);\n}"),
        ),
        tags=frozenset({"compatibility"}),
        check=_check_vendor_prefix_only,
    ),
]

ACCESSIBILITY_DETECTORS: list[Detector] = [
    Detector(
        rule_id="focus-indicator-removed",
        concern=Concern.ACCESSIBILITY,
        severity=Severity.HIGH,
        title="Focus indicator removed",
        description="The focus outline is removed without a replacement.",
        impact="Keyboard users cannot see which element has focus.",
        recommendation="Provide a visible alternative focus style.",
        remediation=steps(
            ("Restore a focus style", "Use :focus-visible with a clear outline or shadow.",
             "button:focus-visible {\n  outline: 2px solid #1a73e8;\n}"),
        ),
        tags=frozenset({"keyboard", "wcag"}),
        check=_check_focus_indicator_removed,
    ),
    Detector(
        rule_id="low-contrast-color",
        concern=Concern.ACCESSIBILITY,
        severity=Severity.MEDIUM,
        title="Possible low contrast text color",
        description="A very light text color is used.",
        impact="Low-contrast text is hard to read for users with low vision.",
        recommendation="Check the color pair against WCAG contrast ratios.",
        tags=frozenset({"contrast", "wcag"}),
        check=_check_low_contrast_color,
    ),
    Detector(
        rule_id="small-font-size",
        concern=Concern.ACCESSIBILITY,
        severity=Severity.MEDIUM,
        title="Small font size",
        description="Text is set in a very small font size.",
        impact="Small text is hard to read, especially on mobile devices.",
        recommendation="Use at least 14px (10.5pt), preferably in relative units.",
        tags=frozenset({"readability", "wcag"}),
        check=_check_small_font_size,
    ),
]

STYLESHEET_DETECTORS: list[Detector] = (
    PERFORMANCE_DETECTORS + QUALITY_DETECTORS + ACCESSIBILITY_DETECTORS
)

_DETECTOR_INDEX: dict[str, Detector] = index_detectors(STYLESHEET_DETECTORS)


def get_detector_by_id(rule_id: str) -> Detector | None:
    """Look up a stylesheet detector by its rule id."""
    return _DETECTOR_INDEX.get(rule_id)
