"""Core pipeline: collection, classification, dependency analysis and orchestration.

Only the exception hierarchy is re-exported here; the pipeline modules
import the models and scanners and are imported directly.
"""

from .exceptions import (
    ArchiveEntryError,
    CollectionError,
    ConfigurationError,
    ParseError,
    ReposcopeError,
    SourceNotFoundError,
    SourceUnreadableError,
    UnknownConcernError,
    UnsupportedSourceError,
)

__all__ = [
    "ArchiveEntryError",
    "CollectionError",
    "ConfigurationError",
    "ParseError",
    "ReposcopeError",
    "SourceNotFoundError",
    "SourceUnreadableError",
    "UnknownConcernError",
    "UnsupportedSourceError",
]
