"""Stylesheet parsing and detectors."""

from .detectors import STYLESHEET_DETECTORS
from .parser import Declaration, StyleRule, StyleSheetUnit, parse_stylesheet

__all__ = [
    "Declaration",
    "STYLESHEET_DETECTORS",
    "StyleRule",
    "StyleSheetUnit",
    "parse_stylesheet",
]
