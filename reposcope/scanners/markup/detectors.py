"""Detectors for HTML documents."""

from __future__ import annotations

from collections.abc import Iterator

from bs4 import Tag

from ...models import Concern, Severity
from ..base import Detector, DetectorContext, Hit, index_detectors, steps
from .parser import MarkupDocument, is_script_type, is_stylesheet_link, tag_line

_CSP_HEADER = "content-security-policy"
_UNLABELLED_INPUT_EXEMPT = frozenset({"hidden", "submit", "button", "reset", "image"})
_CSRF_MARKERS = ("csrf", "token", "xsrf")
_MODERN_IMAGE_SUFFIXES = (".webp", ".avif", ".svg")
_OPTIMIZED_MARKERS = ("optimized", "compressed")


def _attr(tag: Tag, name: str) -> str:
    value = tag.get(name)
    if value is None:
        return ""
    if isinstance(value, list):
        return " ".join(value)
    return str(value)


def _has_accessible_name(tag: Tag) -> bool:
    return any(_attr(tag, a).strip() for a in ("aria-label", "aria-labelledby", "title"))


# ---------------------------------------------------------------------------
# Security checks
# ---------------------------------------------------------------------------


def _check_missing_csp(doc: MarkupDocument, ctx: DetectorContext) -> Iterator[Hit]:
    if _CSP_HEADER in {k.lower() for k in ctx.record.metadata}:
        return
    for meta in doc.soup.find_all("meta"):
        if _attr(meta, "http-equiv").strip().lower() == _CSP_HEADER:
            return
    yield Hit(whole_file=True)


def _check_inline_script(doc: MarkupDocument, ctx: DetectorContext) -> Iterator[Hit]:
    for script in doc.soup.find_all("script"):
        if script.get("src") or not is_script_type(script):
            continue
        if (script.string or "").strip():
            yield Hit(line=tag_line(script))


def _check_javascript_url(doc: MarkupDocument, ctx: DetectorContext) -> Iterator[Hit]:
    for link in doc.soup.find_all("a", href=True):
        href = _attr(link, "href").strip().lower()
        if href.startswith("javascript:"):
            yield Hit(line=tag_line(link))


def _check_form_missing_csrf(doc: MarkupDocument, ctx: DetectorContext) -> Iterator[Hit]:
    for form in doc.soup.find_all("form"):
        if _attr(form, "method").strip().lower() != "post":
            continue
        protected = any(
            _attr(field, "type").lower() == "hidden"
            and any(m in _attr(field, "name").lower() for m in _CSRF_MARKERS)
            for field in form.find_all("input")
        )
        if not protected:
            yield Hit(line=tag_line(form))


# ---------------------------------------------------------------------------
# Performance checks
# ---------------------------------------------------------------------------


def _check_render_blocking_asset(doc: MarkupDocument, ctx: DetectorContext) -> Iterator[Hit]:
    for tag in doc.soup.find_all(["script", "link"]):
        if tag.name == "script":
            if not tag.get("src") or not is_script_type(tag):
                continue
            # Module scripts are deferred by default
            if _attr(tag, "type").strip().lower() == "module":
                continue
            if tag.has_attr("async") or tag.has_attr("defer"):
                continue
            yield Hit(
                line=tag_line(tag),
                title="Render-blocking script",
                description=(
                    f"Script {_attr(tag, 'src')} is loaded without async or defer "
                    "and blocks parsing."
                ),
            )
        elif is_stylesheet_link(tag) and not tag.has_attr("media"):
            yield Hit(
                line=tag_line(tag),
                severity=Severity.LOW,
                title="Stylesheet without media query",
                description=(
                    f"Stylesheet {_attr(tag, 'href')} has no media attribute and "
                    "blocks rendering for every media type."
                ),
            )


def _check_unoptimized_image(doc: MarkupDocument, ctx: DetectorContext) -> Iterator[Hit]:
    for img in doc.soup.find_all("img", src=True):
        src = _attr(img, "src").strip()
        if not src or src.lower().startswith("data:"):
            continue
        # Responsive images let the browser pick the format
        if img.has_attr("srcset") or img.find_parent("picture") is not None:
            continue
        path = src.split("?", 1)[0].split("#", 1)[0].lower()
        if path.endswith(_MODERN_IMAGE_SUFFIXES):
            continue
        if any(marker in path for marker in _OPTIMIZED_MARKERS):
            continue
        yield Hit(
            line=tag_line(img),
            description=f"Image {src} is served in a legacy format without responsive sources.",
        )


# ---------------------------------------------------------------------------
# Accessibility checks
# ---------------------------------------------------------------------------


def _check_missing_alt_text(doc: MarkupDocument, ctx: DetectorContext) -> Iterator[Hit]:
    for img in doc.soup.find_all("img"):
        if not img.has_attr("alt"):
            yield Hit(
                line=tag_line(img),
                description=f"Image {_attr(img, 'src') or '(no src)'} has no alt attribute.",
            )


def _check_unlabelled_input(doc: MarkupDocument, ctx: DetectorContext) -> Iterator[Hit]:
    labelled_ids = {
        _attr(label, "for") for label in doc.soup.find_all("label") if label.get("for")
    }
    for field in doc.soup.find_all(["input", "select", "textarea"]):
        if field.name == "input" and _attr(field, "type").lower() in _UNLABELLED_INPUT_EXEMPT:
            continue
        if _has_accessible_name(field):
            continue
        if field.get("id") and _attr(field, "id") in labelled_ids:
            continue
        if field.find_parent("label") is not None:
            continue
        name = _attr(field, "name")
        label = f"<{field.name} name={name!r}>" if name else f"<{field.name}>"
        yield Hit(line=tag_line(field), description=f"{label} has no associated label.")


def _check_unlabelled_button(doc: MarkupDocument, ctx: DetectorContext) -> Iterator[Hit]:
    for button in doc.soup.find_all("button"):
        if button.get_text(strip=True) or _has_accessible_name(button):
            continue
        if any(_attr(img, "alt").strip() for img in button.find_all("img")):
            continue
        yield Hit(line=tag_line(button))


# ---------------------------------------------------------------------------
# SEO checks
# ---------------------------------------------------------------------------


def _check_missing_title(doc: MarkupDocument, ctx: DetectorContext) -> Iterator[Hit]:
    title = doc.soup.find("title")
    if title is None or not title.get_text(strip=True):
        yield Hit(whole_file=True)


def _check_missing_meta_description(doc: MarkupDocument, ctx: DetectorContext) -> Iterator[Hit]:
    for meta in doc.soup.find_all("meta"):
        if _attr(meta, "name").strip().lower() == "description":
            return
    yield Hit(whole_file=True)


def _check_multiple_h1(doc: MarkupDocument, ctx: DetectorContext) -> Iterator[Hit]:
    headings = doc.soup.find_all("h1")
    if len(headings) > 1:
        yield Hit(
            line=tag_line(headings[1]),
            description=f"The page has {len(headings)} <h1> elements.",
        )


# ---------------------------------------------------------------------------
# Detector sets
# ---------------------------------------------------------------------------

SECURITY_DETECTORS: list[Detector] = [
    Detector(
        rule_id="missing-csp",
        concern=Concern.SECURITY,
        severity=Severity.HIGH,
        title="Missing Content Security Policy",
        description=(
            "The page declares no Content-Security-Policy, neither in a meta tag "
            "nor in the response headers."
        ),
        impact="Without a CSP, injected scripts run with full page privileges.",
        recommendation="Serve a Content-Security-Policy header restricting script sources.",
        remediation=steps(
            ("Add a policy", "Start with a restrictive policy and relax it as needed.",
             "<meta http-equiv=\"Content-Security-Policy\" content=\"default-src 'self'\">"),
        ),
        tags=frozenset({"csp", "xss"}),
        check=_check_missing_csp,
    ),
    Detector(
        rule_id="inline-script",
        concern=Concern.SECURITY,
        severity=Severity.MEDIUM,
        title="Inline script",
        description="JavaScript is embedded directly in the page.",
        impact="Inline scripts prevent a strict Content Security Policy.",
        recommendation="Move scripts to external files.",
        tags=frozenset({"csp"}),
        check=_check_inline_script,
    ),
    Detector(
        rule_id="javascript-url",
        concern=Concern.SECURITY,
        severity=Severity.HIGH,
        title="javascript: URL",
        description="A link executes JavaScript through a javascript: URL.",
        impact="javascript: URLs are a common script injection vector.",
        recommendation="Use a button with an event listener instead.",
        remediation=steps(
            ("Replace the link", "Attach behaviour with addEventListener.",
             "<button type=\"button\" id=\"open\">Open</button>"),
        ),
        tags=frozenset({"xss"}),
        check=_check_javascript_url,
    ),
    Detector(
        rule_id="form-missing-csrf",
        concern=Concern.SECURITY,
        severity=Severity.MEDIUM,
        title="Form without CSRF token",
        description="A POST form has no hidden CSRF token field.",
        impact="Other sites can submit the form on behalf of logged-in users.",
        recommendation="Include a per-session CSRF token in every state-changing form.",
        tags=frozenset({"csrf"}),
        check=_check_form_missing_csrf,
    ),
]

PERFORMANCE_DETECTORS: list[Detector] = [
    Detector(
        rule_id="render-blocking-asset",
        concern=Concern.PERFORMANCE,
        severity=Severity.MEDIUM,
        title="Render-blocking asset",
        description="An external asset blocks page rendering.",
        impact="Blocking assets delay the first paint of the page.",
        recommendation="Load scripts with defer or async, and scope stylesheets with media.",
        tags=frozenset({"loading"}),
        check=_check_render_blocking_asset,
    ),
    Detector(
        rule_id="unoptimized-image",
        concern=Concern.PERFORMANCE,
        severity=Severity.LOW,
        title="Unoptimized image",
        description="An image is served in a legacy format.",
        impact="Legacy image formats are larger and slow down page loads.",
        recommendation="Serve WebP or AVIF, or offer responsive sources with srcset.",
        remediation=steps(
            ("Offer a modern format", "Let the browser pick the best supported source.",
             "<picture>\n  <source srcset=\"hero.webp\" type=\"image/webp\">\n"
             "  <img src=\"hero.jpg\" alt=\"Hero\">\n</picture>"),
        ),
        tags=frozenset({"images"}),
        check=_check_unoptimized_image,
    ),
]

ACCESSIBILITY_DETECTORS: list[Detector] = [
    Detector(
        rule_id="missing-alt-text",
        concern=Concern.ACCESSIBILITY,
        severity=Severity.HIGH,
        title="Image without alt text",
        description="An image has no alt attribute.",
        impact="Screen reader users get no description of the image.",
        recommendation="Add a descriptive alt attribute, or alt=\"\" for decorative images.",
        tags=frozenset({"images", "wcag"}),
        check=_check_missing_alt_text,
    ),
    Detector(
        rule_id="unlabelled-input",
        concern=Concern.ACCESSIBILITY,
        severity=Severity.MEDIUM,
        title="Form field without label",
        description="A form field has no associated label.",
        impact="Screen reader users cannot tell what the field is for.",
        recommendation="Associate a <label for=...> or add aria-label.",
        remediation=steps(
            ("Add a label", "Reference the field id from a label element.",
             "<label for=\"email\">Email</label>\n<input id=\"email\" type=\"email\">"),
        ),
        tags=frozenset({"forms", "wcag"}),
        check=_check_unlabelled_input,
    ),
    Detector(
        rule_id="unlabelled-button",
        concern=Concern.ACCESSIBILITY,
        severity=Severity.HIGH,
        title="Button without accessible name",
        description="A button has neither text nor an aria-label.",
        impact="Assistive technology announces the button without a purpose.",
        recommendation="Give the button visible text or an aria-label.",
        tags=frozenset({"forms", "wcag"}),
        check=_check_unlabelled_button,
    ),
]

SEO_DETECTORS: list[Detector] = [
    Detector(
        rule_id="missing-title",
        concern=Concern.SEO,
        severity=Severity.HIGH,
        title="Missing page title",
        description="The document has no <title>.",
        impact="Search results show no meaningful title for the page.",
        recommendation="Add a concise, descriptive <title> to the head.",
        tags=frozenset({"metadata"}),
        check=_check_missing_title,
    ),
    Detector(
        rule_id="missing-meta-description",
        concern=Concern.SEO,
        severity=Severity.MEDIUM,
        title="Missing meta description",
        description="The document has no <meta name=\"description\">.",
        impact="Search engines generate their own, often poor, snippet.",
        recommendation="Add a meta description summarizing the page.",
        tags=frozenset({"metadata"}),
        check=_check_missing_meta_description,
    ),
    Detector(
        rule_id="multiple-h1",
        concern=Concern.SEO,
        severity=Severity.MEDIUM,
        title="Multiple h1 headings",
        description="The document has more than one <h1>.",
        impact="Multiple top-level headings blur the page's main topic.",
        recommendation="Keep a single <h1> and use <h2>-<h6> below it.",
        tags=frozenset({"headings"}),
        check=_check_multiple_h1,
    ),
]

MARKUP_DETECTORS: list[Detector] = (
    SECURITY_DETECTORS + PERFORMANCE_DETECTORS + ACCESSIBILITY_DETECTORS + SEO_DETECTORS
)

_DETECTOR_INDEX: dict[str, Detector] = index_detectors(MARKUP_DETECTORS)


def get_detector_by_id(rule_id: str) -> Detector | None:
    """Look up a markup detector by its rule id."""
    return _DETECTOR_INDEX.get(rule_id)
