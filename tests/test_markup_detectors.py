"""Tests for the markup parser and detectors."""

from reposcope.models import Concern, ContentKind, Severity
from reposcope.scanners.base import DetectorContext
from reposcope.scanners.markup.detectors import MARKUP_DETECTORS, get_detector_by_id
from reposcope.scanners.markup.parser import parse_markup

GOOD_PAGE = """<!DOCTYPE html>
<!-- Storefront landing page -->
<html lang="en">
<head>
  <meta http-equiv="Content-Security-Policy" content="default-src 'self'">
  <meta name="description" content="A shop">
  <title>Shop</title>
  <link rel="stylesheet" href="site.css" media="all">
  <script src="app.js" defer></script>
</head>
<body>
  <h1>Shop</h1>
  <img src="logo.svg" alt="Logo">
  <form method="post">
    <input type="hidden" name="csrf_token" value="abc">
    <label for="email">Email</label>
    <input id="email" name="email">
    <label>Name <input name="name"></label>
    <button>Send</button>
  </form>
</body>
</html>
"""


def _only(findings, rule_id):
    return [f for f in findings if f.rule_id == rule_id]


class TestParser:
    """Test markup parsing and embedded content discovery."""

    def test_inline_blocks(self) -> None:
        source = (
            "<html>\n"
            "<head>\n"
            "<style>\n"
            "body { margin: 0; }\n"
            "</style>\n"
            "</head>\n"
            "<body>\n"
            "<script>eval(x);</script>\n"
            "<script src=\"lib.js\"></script>\n"
            "<script type=\"application/ld+json\">{}</script>\n"
            "</body>\n"
            "</html>\n"
        )
        blocks = parse_markup(source).inline_blocks()

        assert [b.kind for b in blocks] == [ContentKind.STYLESHEET, ContentKind.SCRIPT]
        style, script = blocks
        assert style.line_offset == 2
        assert style.content.splitlines()[1] == "body { margin: 0; }"
        assert script.line_offset == 7
        assert script.content == "eval(x);"

    def test_external_assets(self) -> None:
        source = (
            "<link rel=\"stylesheet\" href=\"/css/site.css\">\n"
            "<link rel=\"icon\" href=\"/favicon.ico\">\n"
            "<script src=\"js/app.js\"></script>\n"
        )
        assets = parse_markup(source).external_assets("https://shop.example.com/index.html")

        assert [(a.url, a.kind) for a in assets] == [
            ("https://shop.example.com/css/site.css", ContentKind.STYLESHEET),
            ("https://shop.example.com/js/app.js", ContentKind.SCRIPT),
        ]

    def test_never_reports_syntax_errors(self) -> None:
        assert parse_markup("<div><span></div>").syntax_errors == []


class TestDetectors:
    """Test the markup detectors."""

    def test_registry(self) -> None:
        ids = [d.rule_id for d in MARKUP_DETECTORS]

        assert len(ids) == len(set(ids)) == 12
        assert get_detector_by_id("missing-title").concern == Concern.SEO

    def test_clean_page(self, analyze) -> None:
        findings = analyze("index.html", GOOD_PAGE)

        assert findings == []

    def test_missing_csp(self, analyze) -> None:
        findings = _only(analyze("a.html", "<html><title>x</title></html>"), "missing-csp")

        assert len(findings) == 1
        assert findings[0].severity == Severity.HIGH
        assert findings[0].line_number == 1

    def test_csp_header_satisfies_rule(self, make_record, all_concerns) -> None:
        record = make_record(
            "https://shop.example.com/",
            "<html><title>x</title></html>",
            kind=ContentKind.MARKUP,
            metadata={"content-security-policy": "default-src 'self'"},
        )
        detector = get_detector_by_id("missing-csp")

        assert detector(parse_markup(record.content), DetectorContext(record)) == []

    def test_inline_script_and_javascript_url(self, analyze) -> None:
        source = (
            "<script>track();</script>\n"
            "<script src=\"app.js\" async></script>\n"
            "<a href=\"javascript:void(0)\">x</a>\n"
            "<a href=\"/home\">home</a>\n"
        )
        findings = analyze("a.html", source)

        assert [f.line_number for f in _only(findings, "inline-script")] == [1]
        assert [f.line_number for f in _only(findings, "javascript-url")] == [3]

    def test_form_missing_csrf(self, analyze) -> None:
        source = (
            "<form method=\"POST\"><input name=\"q\" aria-label=\"q\"></form>\n"
            "<form method=\"get\"><input name=\"q\" aria-label=\"q\"></form>\n"
        )
        findings = _only(analyze("a.html", source), "form-missing-csrf")

        assert [f.line_number for f in findings] == [1]

    def test_render_blocking_assets(self, analyze) -> None:
        source = (
            "<script src=\"a.js\"></script>\n"
            "<script src=\"b.js\" defer></script>\n"
            "<script type=\"module\" src=\"c.js\"></script>\n"
            "<link rel=\"stylesheet\" href=\"site.css\">\n"
            "<link rel=\"stylesheet\" href=\"print.css\" media=\"print\">\n"
        )
        findings = _only(analyze("a.html", source), "render-blocking-asset")

        assert [(f.line_number, f.severity) for f in findings] == [
            (1, Severity.MEDIUM),
            (4, Severity.LOW),
        ]

    def test_unoptimized_image(self, analyze) -> None:
        source = (
            "<img src=\"hero.jpg\" alt=\"Hero\">\n"
            "<img src=\"hero.webp?v=2\" alt=\"Hero\">\n"
            "<img src=\"hero-optimized.png\" alt=\"Hero\">\n"
            "<img src=\"hero.png\" srcset=\"hero-2x.png 2x\" alt=\"Hero\">\n"
            "<picture><source srcset=\"a.avif\"><img src=\"a.jpg\" alt=\"A\"></picture>\n"
            "<img src=\"data:image/png;base64,AAAA\" alt=\"Dot\">\n"
            "<img src=\"BANNER.GIF\" alt=\"Banner\">\n"
        )
        findings = _only(analyze("a.html", source), "unoptimized-image")

        assert [f.line_number for f in findings] == [1, 7]
        assert all(f.concern == Concern.PERFORMANCE for f in findings)
        assert all(f.severity == Severity.LOW for f in findings)
        assert "hero.jpg" in findings[0].description

    def test_missing_alt_text(self, analyze) -> None:
        source = "<img src=\"a.png\">\n<img src=\"b.png\" alt=\"\">\n"
        findings = _only(analyze("a.html", source), "missing-alt-text")

        assert [f.line_number for f in findings] == [1]
        assert "a.png" in findings[0].description

    def test_unlabelled_input(self, analyze) -> None:
        source = (
            "<input name=\"email\">\n"
            "<input type=\"submit\">\n"
            "<input aria-label=\"Search\">\n"
            "<textarea></textarea>\n"
        )
        findings = _only(analyze("a.html", source), "unlabelled-input")

        assert [f.line_number for f in findings] == [1, 4]
        assert "<input name='email'>" in findings[0].description

    def test_unlabelled_button(self, analyze) -> None:
        source = (
            "<button></button>\n"
            "<button aria-label=\"Close\"></button>\n"
            "<button><img src=\"x.png\" alt=\"Search\"></button>\n"
        )
        findings = _only(analyze("a.html", source), "unlabelled-button")

        assert [f.line_number for f in findings] == [1]

    def test_seo_rules(self, analyze) -> None:
        source = "<html>\n<body>\n<h1>One</h1>\n<h1>Two</h1>\n</body>\n</html>\n"
        findings = analyze("a.html", source)

        assert len(_only(findings, "missing-title")) == 1
        assert len(_only(findings, "missing-meta-description")) == 1
        assert [f.line_number for f in _only(findings, "multiple-h1")] == [4]
