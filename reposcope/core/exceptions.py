"""Custom exception hierarchy for reposcope.

Only collection-root and configuration errors ever leave ``run_analysis``.
Everything else is converted into a finding or a logged skip.
"""


class ReposcopeError(Exception):
    """Base exception for all reposcope errors.

    All custom exceptions should inherit from this class to allow
    callers to catch all reposcope-specific errors with a single
    except clause when appropriate.
    """
    pass


# =============================================================================
# Collection Errors
# =============================================================================

class CollectionError(ReposcopeError):
    """Base exception for source collection errors that abort a run."""

    def __init__(self, message: str, locator: str | None = None):
        super().__init__(message)
        self.locator = locator


class SourceNotFoundError(CollectionError):
    """The analysis root (directory, archive or page) does not exist."""
    pass


class SourceUnreadableError(CollectionError):
    """The analysis root exists but cannot be read or decoded."""
    pass


class ArchiveEntryError(ReposcopeError):
    """A single archive entry could not be read; the entry is skipped."""
    pass


# =============================================================================
# Configuration Errors
# =============================================================================

class ConfigurationError(ReposcopeError):
    """Base exception for invalid invocation configuration."""
    pass


class UnknownConcernError(ConfigurationError):
    """A concern toggle that the engine does not recognize was supplied."""
    pass


class UnsupportedSourceError(ConfigurationError):
    """The requested source kind is not one of directory, archive or page."""
    pass


# =============================================================================
# Analysis Errors
# =============================================================================

class ParseError(ReposcopeError):
    """Structural content could not be parsed at all."""

    def __init__(self, message: str, line: int = 1, column: int | None = None):
        super().__init__(message)
        self.line = line
        self.column = column
