"""
nilgiri - k6 load test automation with AI-assisted HTML reports.

Generates a k6 script from a small config, runs k6, reads its summary export,
asks an AI endpoint for commentary, and writes a single-file HTML report.
"""

from .exceptions import (
    NilgiriConfigError,
    NilgiriEngineError,
    NilgiriError,
    NilgiriInsightError,
    NilgiriOutputError,
    NilgiriSummaryError,
)

__all__ = [
    "__version__",
    "NilgiriConfigError",
    "NilgiriEngineError",
    "NilgiriError",
    "NilgiriInsightError",
    "NilgiriOutputError",
    "NilgiriSummaryError",
]

__version__ = "1.0.0"
