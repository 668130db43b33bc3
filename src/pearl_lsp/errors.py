"""
PEARL Language Server Error Hierarchy
=====================================

This module defines the exception hierarchy and the diagnostic records used
throughout the language server.

Analysis never aborts on bad input. Exceptions are raised by helper code
(directive parsing, include loading, settings validation) and converted into
``Diagnostic`` records at the place where they are caught. The collected
diagnostics are what the editor eventually sees.

Exception Hierarchy
-------------------
PearlError (base)
├── PreprocessorError - malformed directive, macro redefinition
│   └── IncludeError - include file not found, unreadable, circular, too deep
└── AnalysisOptionsError - invalid configuration value

Message Format
--------------
Errors and diagnostics share the compiler-style format:

    file:line:column: error: description
    hint: suggestion for fixing (when available)

Lines and columns are stored 0-based (editor protocol convention) and printed
1-based.
"""

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Optional

from pearl_lsp.uris import uri_to_path


# =============================================================================
# Source Location Tracking
# =============================================================================

@dataclass(frozen=True)
class SourceLocation:
    """
    A position in a source document.

    Attributes:
        uri: Document URI (``file:///...``) or a pseudo name like ``<input>``
        line: Line number (0-based)
        column: Column number (0-based)
    """
    uri: str
    line: int
    column: int

    def __str__(self) -> str:
        """Format as 'file:line:column' (1-based) for messages."""
        return f"{display_name(self.uri)}:{self.line + 1}:{self.column + 1}"


def display_name(uri: str) -> str:
    """Return a short, human readable name for a document URI."""
    if uri.startswith("file://"):
        return str(uri_to_path(uri))
    return uri


# =============================================================================
# Exceptions
# =============================================================================

class PearlError(Exception):
    """
    Base exception for all language server errors.

    Attributes:
        message: The error description
        location: Where in the source the error occurred (optional)
        hint: A suggestion for fixing the error (optional)
    """

    def __init__(
        self,
        message: str,
        location: Optional[SourceLocation] = None,
        hint: Optional[str] = None,
    ):
        self.message = message
        self.location = location
        self.hint = hint
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        parts = []
        if self.location:
            parts.append(f"{self.location}: error: {self.message}")
        else:
            parts.append(f"error: {self.message}")
        if self.hint:
            parts.append(f"hint: {self.hint}")
        return "\n".join(parts)


class PreprocessorError(PearlError):
    """
    Error while processing a ``#`` directive.

    Raised for malformed ``#define``/``#undef``/``#ifdef`` lines and for
    redefinition of an existing macro.
    """
    pass


class IncludeError(PreprocessorError):
    """
    Error including a file.

    Raised when:
        - Include file not found
        - Permission denied or undecodable content
        - Circular include detected
        - Include nesting exceeds the configured limit
    """

    def __init__(
        self,
        filename: str,
        reason: str,
        location: Optional[SourceLocation] = None,
        search_path: Optional[str] = None,
    ):
        self.included_filename = filename
        self.reason = reason
        self.search_path = search_path

        hint = None
        if search_path:
            hint = f"searched relative to: {search_path}"

        super().__init__(
            f"cannot include '{filename}': {reason}",
            location=location,
            hint=hint,
        )


class AnalysisOptionsError(PearlError):
    """Invalid configuration value supplied by the client or command line."""
    pass


# =============================================================================
# Diagnostics
# =============================================================================

class Severity(IntEnum):
    """Diagnostic severity; values match the editor protocol."""
    ERROR = 1
    WARNING = 2
    INFORMATION = 3
    HINT = 4

    @property
    def label(self) -> str:
        return self.name.lower()


class DiagnosticTag(Enum):
    """Rendering tags attached to a diagnostic."""
    UNNECESSARY = 1     # dimmed: inactive or unused code


@dataclass(frozen=True)
class Diagnostic:
    """
    A single message attached to a source range.

    Attributes:
        message: Human readable description
        severity: ERROR, WARNING, INFORMATION or HINT
        uri: Document the range belongs to
        line, column: Start position (0-based)
        end_line, end_column: End position (0-based, exclusive)
        code: Stable identifier of the check that produced it
        tags: Rendering tags (e.g. UNNECESSARY)
    """
    message: str
    severity: Severity
    uri: str
    line: int
    column: int
    end_line: int
    end_column: int
    code: str = ""
    tags: frozenset = field(default_factory=frozenset)

    @property
    def location(self) -> SourceLocation:
        return SourceLocation(self.uri, self.line, self.column)

    def __str__(self) -> str:
        return f"{self.location}: {self.severity.label}: {self.message}"


class DiagnosticCollector:
    """
    Collects diagnostics for batch reporting.

    The lexer and the analyzer keep going after every problem they find, so
    everything is funnelled through one collector per analysis run.

    Example:
        collector = DiagnosticCollector()
        collector.error("undefined identifier 'X'", token, code="undefined-identifier")
        if collector.has_errors():
            print(collector.report())
    """

    def __init__(self):
        self.diagnostics: list[Diagnostic] = []

    def add(self, diagnostic: Diagnostic) -> None:
        """Add an already built diagnostic."""
        self.diagnostics.append(diagnostic)

    def extend(self, diagnostics) -> None:
        self.diagnostics.extend(diagnostics)

    def at_token(
        self,
        severity: Severity,
        message: str,
        token,
        code: str = "",
        tags: frozenset = frozenset(),
    ) -> Diagnostic:
        """Add a diagnostic covering a single token."""
        diagnostic = Diagnostic(
            message=message,
            severity=severity,
            uri=token.uri,
            line=token.line,
            column=token.column,
            end_line=token.line,
            end_column=token.column + max(token.length, 1),
            code=code,
            tags=tags,
        )
        self.diagnostics.append(diagnostic)
        return diagnostic

    def error(self, message: str, token, code: str = "") -> Diagnostic:
        return self.at_token(Severity.ERROR, message, token, code)

    def warning(self, message: str, token, code: str = "", tags: frozenset = frozenset()) -> Diagnostic:
        return self.at_token(Severity.WARNING, message, token, code, tags)

    def hint(self, message: str, token, code: str = "", tags: frozenset = frozenset()) -> Diagnostic:
        return self.at_token(Severity.HINT, message, token, code, tags)

    def from_error(self, error: PearlError, token, code: str = "") -> Diagnostic:
        """Convert a caught PearlError into an error diagnostic on ``token``."""
        message = error.message
        if error.hint:
            message = f"{message} ({error.hint})"
        return self.error(message, token, code)

    def count(self, severity: Severity) -> int:
        return sum(1 for d in self.diagnostics if d.severity == severity)

    def has_errors(self) -> bool:
        """Return True if any error-level diagnostic has been collected."""
        return self.count(Severity.ERROR) > 0

    def report(self, include_hints: bool = True) -> str:
        """Format all diagnostics for display, ordered by position."""
        lines = []
        ordered = sorted(self.diagnostics, key=lambda d: (d.uri, d.line, d.column))
        for diagnostic in ordered:
            if diagnostic.severity == Severity.HINT and not include_hints:
                continue
            lines.append(str(diagnostic))

        errors = self.count(Severity.ERROR)
        warnings = self.count(Severity.WARNING)
        error_word = "error" if errors == 1 else "errors"
        warning_word = "warning" if warnings == 1 else "warnings"
        lines.append(f"{errors} {error_word}, {warnings} {warning_word}")
        return "\n".join(lines)

    def clear(self) -> None:
        self.diagnostics.clear()
