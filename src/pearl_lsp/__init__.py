"""
PEARL Language Server - Editor Support for PEARL Real-Time Programs
===================================================================

This package provides the analysis backend and the language server for
PEARL, the Process and Experiment Automation Realtime Language.

Each document version is analyzed in one pass: a lexer with an integrated
preprocessor (#define, #ifdef/#ifndef/#else/#endif, #include) produces a
token list, and a semantic analyzer walks it with a scope stack, resolving
every identifier and checking block structure. Editor requests (hover,
go-to-definition, folding, semantic tokens, completion) read the stored
result of the last analysis.

Main Components
---------------
- **language**: Tokens, preprocessor, lexer, scopes and semantic analyzer
- **analysis**: Pipeline orchestration and the per-document result
- **server**: pygls language server and protocol-independent features
- **cli**: Command-line tools (pearl-lsp, pearl-check)

Quick Start
-----------
Analyze a text:
    >>> from pearl_lsp import analyze
    >>> result = analyze("MODULE M; PROBLEM; DCL X FIXED; MODEND;")
    >>> for diagnostic in result.diagnostics:
    ...     print(diagnostic)

Or use the command-line tools:
    $ pearl-check motor.p -D SIMULATION
    $ pearl-lsp --tcp --port 2087
"""

__version__ = "0.1.0"

# =============================================================================
# Public API Exports
# =============================================================================

from pearl_lsp.errors import (
    PearlError,
    PreprocessorError,
    IncludeError,
    AnalysisOptionsError,
    SourceLocation,
    Severity,
    DiagnosticTag,
    Diagnostic,
    DiagnosticCollector,
)
from pearl_lsp.config import AnalysisOptions, IncludeMode
from pearl_lsp.analysis import AnalysisResult, PearlAnalyzer, analyze

__all__ = [
    # Version
    "__version__",
    # Errors and diagnostics
    "PearlError",
    "PreprocessorError",
    "IncludeError",
    "AnalysisOptionsError",
    "SourceLocation",
    "Severity",
    "DiagnosticTag",
    "Diagnostic",
    "DiagnosticCollector",
    # Analysis
    "AnalysisOptions",
    "IncludeMode",
    "AnalysisResult",
    "PearlAnalyzer",
    "analyze",
]
