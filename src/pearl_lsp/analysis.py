"""
PEARL Document Analysis
=======================

This module provides the main analysis interface. It runs the complete
pipeline for one document version:

    Source → Lex + Preprocess → Semantic Analysis → AnalysisResult

Usage
-----
Command line:
    $ pearl-check motor.p

Programmatic:
    >>> from pearl_lsp import analyze
    >>> result = analyze("MODULE M; DCL X FIXED; MODEND;")
    >>> [d.message for d in result.diagnostics]
    ["variable 'X' is declared but never used"]

The result carries everything the editor features need: the token list
with definition/builtin/macro links attached, the diagnostics, folding
regions and the macro table in effect at the end of the document. Editor
requests read a stored result and never trigger a new analysis.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from pearl_lsp.cache import IncludeFileCache
from pearl_lsp.config import AnalysisOptions
from pearl_lsp.errors import Diagnostic, DiagnosticCollector, Severity
from pearl_lsp.language.analyzer import SemanticAnalyzer
from pearl_lsp.language.lexer import Lexer
from pearl_lsp.language.preprocessor import MacroTable
from pearl_lsp.language.scope import Symbol
from pearl_lsp.language.tokens import FoldingRegion, Token
from pearl_lsp.uris import path_to_uri

logger = logging.getLogger(__name__)


@dataclass
class AnalysisResult:
    """
    Result of analyzing one document version.

    Attributes:
        uri: Document URI
        text: The analyzed text
        tokens: All tokens, including those of included files
        line_offsets: Offset of the first character of each document line
        diagnostics: Findings for the document and its include files
        folding: Folding regions for the document and its include files
        macros: Macro table at the end of the document
        version: Editor version number of the document, if known
    """
    uri: str
    text: str
    tokens: list[Token]
    line_offsets: list[int]
    diagnostics: list[Diagnostic]
    folding: list[FoldingRegion]
    macros: MacroTable
    version: Optional[int] = None
    document_tokens: list[Token] = field(init=False, repr=False)

    def __post_init__(self):
        self.document_tokens = [t for t in self.tokens if t.uri == self.uri]

    @property
    def has_errors(self) -> bool:
        return any(d.severity == Severity.ERROR for d in self.diagnostics)

    def diagnostics_for(self, uri: Optional[str] = None) -> list[Diagnostic]:
        """Diagnostics positioned in ``uri`` (the document itself by default)."""
        uri = uri or self.uri
        return [d for d in self.diagnostics if d.uri == uri]

    def folding_for(self, uri: Optional[str] = None) -> list[FoldingRegion]:
        uri = uri or self.uri
        return [f for f in self.folding if f.uri == uri]

    def offset_at(self, line: int, character: int) -> int:
        """Convert a 0-based line/character position to a document offset."""
        if line < 0:
            return 0
        if line >= len(self.line_offsets):
            return len(self.text)
        start = self.line_offsets[line]
        end = self.line_offsets[line + 1] - 1 if line + 1 < len(self.line_offsets) else len(self.text)
        return min(start + max(character, 0), end)

    def token_at(self, line: int, character: int) -> Optional[Token]:
        """
        Return the document token covering a position.

        For a macro reference the reference token itself is returned, not
        one of the expansion tokens sharing its span.
        """
        offset = self.offset_at(line, character)
        for token in self.document_tokens:
            if token.covers(offset):
                return token
            if token.offset > offset:
                break
        return None


class PearlAnalyzer:
    """
    Main analyzer class.

    This class provides the main interface for analyzing PEARL documents.
    One instance is shared by all documents of a server; the include cache
    it holds is the only state carried from one run to the next.

    Example:
        analyzer = PearlAnalyzer(AnalysisOptions(predefined_macros={"DEBUG": ""}))
        result = analyzer.analyze_source(text, "file:///work/motor.p")
        for diagnostic in result.diagnostics:
            print(diagnostic)
    """

    def __init__(
        self,
        options: Optional[AnalysisOptions] = None,
        include_cache: Optional[IncludeFileCache] = None,
    ):
        self.options = options or AnalysisOptions()
        self.include_cache = include_cache if include_cache is not None else IncludeFileCache()

    def analyze_source(self, text: str, uri: str = "<input>", version: Optional[int] = None) -> AnalysisResult:
        """
        Analyze a document text.

        Args:
            text: Document content
            uri: Document URI (include paths resolve relative to it)
            version: Editor version number, stored in the result

        Returns:
            AnalysisResult for this text
        """
        diagnostics = DiagnosticCollector()
        lexer = Lexer(
            text,
            uri,
            MacroTable(self.options.predefined_macros),
            diagnostics,
            self.include_cache,
            self.options,
        )
        tokens = lexer.tokenize()

        analyzer = SemanticAnalyzer(
            tokens,
            diagnostics,
            uri=uri,
            report_unused=self.options.report_unused,
        )
        analyzer.analyze()

        logger.debug(
            f"{uri}: {len(tokens)} tokens, {len(diagnostics.diagnostics)} diagnostics, "
            f"{len(lexer.macros)} macros"
        )

        return AnalysisResult(
            uri=uri,
            text=text,
            tokens=tokens,
            line_offsets=lexer.line_offsets,
            diagnostics=list(diagnostics.diagnostics),
            folding=lexer.folding + analyzer.folding,
            macros=lexer.macros,
            version=version,
        )

    def analyze_file(self, filepath) -> AnalysisResult:
        """
        Analyze a file from disk.

        Raises:
            FileNotFoundError: If the file doesn't exist
        """
        path = Path(filepath)
        text = path.read_text(encoding="utf-8")
        return self.analyze_source(text, path_to_uri(path))

    def visible_symbols(self, result: AnalysisResult, line: int, character: int) -> dict[str, Symbol]:
        """
        Names visible at a position, using the bounded analysis variant.

        The stored tokens are reused; the document is not lexed again and no
        token annotations are changed.
        """
        analyzer = SemanticAnalyzer(
            result.tokens,
            uri=result.uri,
            cutoff=result.offset_at(line, character),
        )
        analyzer.analyze()
        return analyzer.visible_symbols()


# =============================================================================
# Convenience Functions
# =============================================================================

def analyze(
    text: str,
    uri: str = "<input>",
    options: Optional[AnalysisOptions] = None,
) -> AnalysisResult:
    """
    Convenience function to analyze a PEARL text.

    Args:
        text: Document content
        uri: Document URI
        options: Analysis options

    Returns:
        AnalysisResult
    """
    return PearlAnalyzer(options).analyze_source(text, uri)
