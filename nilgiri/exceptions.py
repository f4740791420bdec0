"""Custom exceptions for nilgiri.

All nilgiri-specific exceptions inherit from NilgiriError for unified error handling.
Each exception preserves the original cause chain for debugging.
"""

from __future__ import annotations

from typing import Any


class NilgiriError(Exception):
    """Base exception for all nilgiri errors.

    Attributes:
        message: Human-readable error description
        context: Optional dictionary with additional debugging context
        original_error: Original exception that caused this error (if any)
    """

    def __init__(
        self,
        message: str,
        *args: object,
        context: dict[str, Any] | None = None,
        original_error: Exception | None = None,
    ) -> None:
        super().__init__(message, *args)
        self.message = message
        self.context = context or {}
        self.original_error = original_error

    def __str__(self) -> str:
        """Return formatted error message with context if available."""
        base = self.message
        if self.context:
            ctx_str = ", ".join(f"{k}={v!r}" for k, v in self.context.items())
            base = f"{base} [{ctx_str}]"
        if self.original_error:
            base = f"{base} (caused by: {type(self.original_error).__name__}: {self.original_error})"
        return base

    def with_context(self, **kwargs: Any) -> "NilgiriError":
        """Add context to this error and return self for chaining."""
        self.context.update(kwargs)
        return self


class NilgiriConfigError(NilgiriError):
    """Raised when the run configuration is invalid or cannot be loaded.

    Common causes:
    - Config file not found or invalid YAML
    - Missing report path, AI endpoint or API key
    - Invalid URL, duration string or ramp stage
    """


class NilgiriEngineError(NilgiriError):
    """Raised when the k6 engine cannot be run.

    Common causes:
    - k6 binary not installed or not on PATH
    - Binary not executable
    - Engine exceeded the configured timeout
    """


class NilgiriSummaryError(NilgiriError):
    """Raised when the engine's summary export cannot be used.

    Common causes:
    - Engine exited before writing the summary file
    - Summary file is not valid JSON
    - Summary has no "metrics" object
    """


class NilgiriInsightError(NilgiriError):
    """Raised when the AI analysis endpoint call fails.

    Never escapes the pipeline: the report falls back to a placeholder.
    """


class NilgiriOutputError(NilgiriError):
    """Raised when a report or other kept output cannot be written.

    Common causes:
    - Parent path exists as a regular file
    - No write permission for the target directory
    """
