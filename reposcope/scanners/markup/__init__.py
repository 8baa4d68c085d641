"""HTML parsing and detectors."""

from .detectors import MARKUP_DETECTORS
from .parser import EmbeddedBlock, ExternalAsset, MarkupDocument, parse_markup

__all__ = [
    "EmbeddedBlock",
    "ExternalAsset",
    "MARKUP_DETECTORS",
    "MarkupDocument",
    "parse_markup",
]
