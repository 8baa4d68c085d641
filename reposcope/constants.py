"""Constants and configuration values for reposcope.

This module centralizes magic numbers and configuration values
that are used across the codebase for easier maintenance.
"""

import os

# =============================================================================
# Collection Limits
# =============================================================================

# Maximum size of a single file or archive entry (1MB)
# Larger entries are skipped with a warning, never analyzed
MAX_ENTRY_SIZE = int(os.environ.get("REPOSCOPE_MAX_FILE_SIZE", 1024 * 1024))

# Maximum number of records collected in a single run
MAX_FILES = int(os.environ.get("REPOSCOPE_MAX_FILES", 5000))

# Maximum cumulative bytes read from one archive (200MB)
MAX_CUMULATIVE_ARCHIVE_SIZE = 200 * 1024 * 1024

# Maximum path length for archive entries
MAX_ARCHIVE_PATH_LENGTH = 260

# Chunk size used while streaming archive entries
ARCHIVE_READ_CHUNK = 8192

# Directory names that are never descended into
DEFAULT_DENY_DIRS = frozenset({
    "node_modules",
    ".git",
    ".svn",
    ".hg",
    "dist",
    "build",
    "coverage",
    ".next",
    ".nuxt",
    ".cache",
    "temp",
    "tmp",
    "__pycache__",
    ".venv",
    "venv",
})


# =============================================================================
# Worker Pool
# =============================================================================

# Number of worker threads; 0 means one per CPU core
WORKER_COUNT = int(os.environ.get("REPOSCOPE_WORKERS", 0))

# In-flight records per worker before collection waits for results
IN_FLIGHT_PER_WORKER = 4


# =============================================================================
# Network
# =============================================================================

# Default HTTP request timeout in seconds (page mode)
DEFAULT_REQUEST_TIMEOUT = int(os.environ.get("REQUEST_TIMEOUT", 30))

USER_AGENT = "reposcope/0.1 (+static analysis)"


# =============================================================================
# Finding Presentation
# =============================================================================

# Maximum snippet length stored on a finding
MAX_SNIPPET_LENGTH = 500

# Context lines shown around the reported line
SNIPPET_CONTEXT_LINES = 2

# Characters of content quoted for whole-file findings
CONTENT_PREFIX_LENGTH = 100


# =============================================================================
# Detector Thresholds
# =============================================================================

# Cyclomatic complexity limits
COMPLEXITY_MEDIUM_THRESHOLD = 10
COMPLEXITY_HIGH_THRESHOLD = 20
AVERAGE_COMPLEXITY_THRESHOLD = 8

# Functions with more parameters than this are flagged
MAX_PARAMETERS = 5

# Array/object literals with more elements than this are flagged
MAX_LITERAL_ELEMENTS = 1000

# Minimum length of a string literal considered a hardcoded secret
SECRET_MIN_LENGTH = 8
SECRET_KEYWORDS = ("password", "secret", "api_key")

# Script files longer than this (characters) are flagged
MAX_FILE_CHARACTERS = 10000

# Files longer than this many lines need at least one comment
UNDOCUMENTED_MIN_LINES = 10

# Stylesheet thresholds
MAX_CHILD_COMBINATORS = 3
MAX_BOX_SHADOWS = 3
MIN_FONT_SIZE_PX = 14.0
MIN_FONT_SIZE_PT = 10.5
LIGHT_COLOR_BRIGHTNESS = 200

# Prose lines longer than this are flagged
MAX_PROSE_LINE_LENGTH = 120

# Files matching these names are treated as entry points by dead-file detection
ENTRY_POINT_PATTERNS = ("index.*", "main.*", "app.*")
