"""
PEARL Lexer with Integrated Preprocessor
========================================

This module converts PEARL source text into a flat, position-annotated token
list. Preprocessing happens in the same pass: directive lines are evaluated
as they are reached, inactive lines are consumed whole, macro references are
replaced by their re-lexed expansion and ``#include`` files are lexed in
place.

Scanning Order
--------------
At each position the lexer tries, in order:

1. Whitespace and newlines (newlines record a line offset)
2. At the start of a line: a ``#`` directive, or a whole inactive line
3. Line comments ``! ...`` and block comments ``/* ... */``
4. Identifiers and keywords ``[A-Za-z][A-Za-z0-9_]*`` (macro names win)
5. Numbers ``12``, ``3.5``, ``1.5E-3``, ``15(31)``
6. Character strings ``'it''s'`` and bit strings ``'1010'B1``
7. Operators (longest match) and punctuation
8. Anything else becomes a one-character ERROR token

Token Positions
---------------
| Token source        | uri                | line/column/offset           |
|---------------------|--------------------|------------------------------|
| document text       | document           | own position                 |
| included file       | included file      | own position in that file    |
| macro expansion     | document           | span of the macro reference  |

The lexer never raises. Every problem becomes a diagnostic and scanning
continues with the rest of the file.

Example Usage
-------------
>>> lexer = Lexer("DCL X FIXED; ! counter", "file:///demo.p")
>>> [t.text for t in lexer.tokenize()]
['DCL', 'X', 'FIXED', ';', '! counter']
"""

import logging
import re
import string
from typing import Optional

from pearl_lsp.cache import IncludeFileCache
from pearl_lsp.config import AnalysisOptions
from pearl_lsp.errors import (
    Diagnostic,
    DiagnosticCollector,
    DiagnosticTag,
    IncludeError,
    PreprocessorError,
    Severity,
)
from pearl_lsp.language.preprocessor import (
    CONDITIONAL_DIRECTIVES,
    KNOWN_DIRECTIVES,
    ConditionalState,
    Directive,
    Macro,
    MacroTable,
    directive_name,
    parse_directive,
    substitute_macros,
)
from pearl_lsp.language.tokens import (
    ONE_CHAR_OPERATORS,
    SYMBOL_CHARS,
    SYSTEM_ONLY_OPERATORS,
    THREE_CHAR_OPERATORS,
    TRIVIA_KINDS,
    TWO_CHAR_OPERATORS,
    FoldingKind,
    FoldingRegion,
    Section,
    Token,
    TokenKind,
    TokenLinks,
    classify_word,
)
from pearl_lsp.uris import is_file_uri, path_to_uri, uri_to_path

logger = logging.getLogger(__name__)


# Integer, fraction, exponent and an optional precision suffix: 15(31)
NUMBER_PATTERN = re.compile(r'\d+(?:\.\d*)?(?:[Ee][+-]?\d+)?(?:\(\d+\))?')

# Digits allowed after the B of a bit string ('..'B1 .. '..'B4)
BIT_SUFFIX_DIGITS = "1234"

# Maximum nesting of macros expanding into other macros
MAX_MACRO_DEPTH = 32

HORIZONTAL_WHITESPACE = " \t\r\f\v"


class Lexer:
    """
    Single-pass lexer with an integrated preprocessor.

    One Lexer instance handles one source text. Included files and macro
    replacement texts are handled by child lexers that share the macro
    table, the diagnostic collector and the include cache with their parent.

    Usage:
        lexer = Lexer(source_text, uri, options=options)
        tokens = lexer.tokenize()

    Attributes:
        source: The text being tokenized
        uri: Document URI the tokens are attributed to
        tokens: Output token list (filled by tokenize)
        line_offsets: Offset of the first character of each line
        folding: Comment and conditional-block folding regions
    """

    IDENT_START = string.ascii_letters
    IDENT_CHARS = string.ascii_letters + string.digits + "_"

    def __init__(
        self,
        source: str,
        uri: str = "<input>",
        macros: Optional[MacroTable] = None,
        diagnostics: Optional[DiagnosticCollector] = None,
        include_cache: Optional[IncludeFileCache] = None,
        options: Optional[AnalysisOptions] = None,
        *,
        include_chain: tuple = (),
        depth: int = 0,
        expanding: frozenset = frozenset(),
        directives: bool = True,
        section: Section = Section.PROBLEM,
    ):
        """
        Initialize the lexer.

        Args:
            source: Source text to tokenize
            uri: URI of the document the text belongs to
            macros: Shared macro table (seeded from options if omitted)
            diagnostics: Shared diagnostic collector
            include_cache: Shared include-file cache
            options: Analysis options (include mode, depth limit, ...)
            include_chain: Resolved paths of the files currently being included
            depth: Include nesting level of this source
            expanding: Names of the macros whose expansion is in progress
            directives: False for macro replacement text, where ``#`` lines
                are not interpreted
            section: SYSTEM/PROBLEM state inherited from the parent
        """
        self.source = source
        self.uri = uri
        self.options = options or AnalysisOptions()
        self.macros = macros if macros is not None else MacroTable(self.options.predefined_macros)
        self.diagnostics = diagnostics if diagnostics is not None else DiagnosticCollector()
        self.include_cache = include_cache if include_cache is not None else IncludeFileCache()

        self.tokens: list[Token] = []
        self.line_offsets: list[int] = [0]
        self.folding: list[FoldingRegion] = []

        # Current position in source
        self._pos = 0
        self._line = 0
        self._column = 0
        self._at_line_start = True

        self._section = section
        self._conditions = ConditionalState()
        self._inactive_run: Optional[tuple[Token, Token]] = None
        self._depth = depth
        self._expanding = expanding
        self._directives = directives

        self._document_path = uri_to_path(uri).resolve() if is_file_uri(uri) else None
        if not include_chain and self._document_path is not None:
            include_chain = (self._document_path,)
        self._include_chain = include_chain

    def tokenize(self) -> list[Token]:
        """
        Tokenize the whole source.

        Returns:
            The token list, including tokens of included files
        """
        while not self._at_end():
            if self._at_line_start:
                self._at_line_start = False
                self._skip_horizontal_whitespace()
                if self._at_end():
                    break
                if self._directives and self._peek() == "#":
                    self._scan_directive()
                    continue
                if not self._conditions.active:
                    self._scan_inactive_line()
                    continue

            self._scan_token()

        self._finish()
        return self.tokens

    # =========================================================================
    # Character Access Methods
    # =========================================================================

    def _at_end(self) -> bool:
        return self._pos >= len(self.source)

    def _peek(self, offset: int = 0) -> str:
        """
        Look at character at current position + offset without advancing.

        Returns empty string if past end of source.
        """
        pos = self._pos + offset
        if pos >= len(self.source):
            return ""
        return self.source[pos]

    def _advance(self) -> str:
        """Consume and return the current character, tracking lines."""
        if self._at_end():
            return ""

        char = self.source[self._pos]
        self._pos += 1

        if char == "\n":
            self._line += 1
            self._column = 0
            self._at_line_start = True
            self.line_offsets.append(self._pos)
        else:
            self._column += 1

        return char

    def _advance_by(self, count: int) -> None:
        for _ in range(count):
            self._advance()

    def _skip_horizontal_whitespace(self) -> None:
        while not self._at_end() and self._peek() in HORIZONTAL_WHITESPACE:
            self._advance()

    def _skip_to_end_of_line(self) -> None:
        while not self._at_end() and self._peek() != "\n":
            self._advance()

    # =========================================================================
    # Token Creation
    # =========================================================================

    def _make_token(
        self,
        kind: TokenKind,
        start: int,
        line: int,
        column: int,
        links: Optional[TokenLinks] = None,
    ) -> Token:
        """Create a token spanning from ``start`` to the current position."""
        return Token(
            kind=kind,
            text=self.source[start:self._pos],
            uri=self.uri,
            line=line,
            column=column,
            offset=start,
            length=self._pos - start,
            links=links or TokenLinks(),
        )

    def _emit(self, kind: TokenKind, start: int, line: int, column: int) -> Token:
        token = self._make_token(kind, start, line, column)
        self.tokens.append(token)
        return token

    # =========================================================================
    # Token Scanning
    # =========================================================================

    def _scan_token(self) -> None:
        """Scan whatever starts at the current position."""
        char = self._peek()

        if char in HORIZONTAL_WHITESPACE or char == "\n":
            self._advance()
            return

        start, line, column = self._pos, self._line, self._column

        if char == "!":
            self._skip_to_end_of_line()
            self._emit(TokenKind.COMMENT, start, line, column)
        elif char == "/" and self._peek(1) == "*":
            self._scan_block_comment(start, line, column)
        elif char in self.IDENT_START:
            self._scan_identifier(start, line, column)
        elif char in string.digits:
            self._scan_number(start, line, column)
        elif char == "'":
            self._scan_string(start, line, column)
        else:
            self._scan_operator(start, line, column)

    def _scan_block_comment(self, start: int, line: int, column: int) -> None:
        """Scan a ``/* ... */`` comment, which may span lines."""
        self._advance()
        self._advance()

        terminated = False
        while not self._at_end():
            if self._peek() == "*" and self._peek(1) == "/":
                self._advance()
                self._advance()
                terminated = True
                break
            self._advance()

        # Text after the comment is not at the start of a line
        self._at_line_start = False

        token = self._emit(TokenKind.COMMENT, start, line, column)
        if self._line > line:
            self.folding.append(FoldingRegion(self.uri, line, self._line, FoldingKind.COMMENT))
        if not terminated:
            self.diagnostics.error(
                "unterminated block comment (add closing */)", token,
                code="unterminated-comment",
            )

    def _scan_identifier(self, start: int, line: int, column: int) -> None:
        """Scan an identifier, keyword or macro reference."""
        while not self._at_end() and self._peek() in self.IDENT_CHARS:
            self._advance()

        word = self.source[start:self._pos]

        macro = self.macros.get(word)
        if macro is not None and word not in self._expanding:
            marker = self._make_token(
                TokenKind.MACRO_EXPANSION, start, line, column,
                links=TokenLinks(macro_value=macro.value, macro=macro),
            )
            self._expand_macro(macro, marker)
            return

        if word == "SYSTEM":
            self._section = Section.SYSTEM
        elif word == "PROBLEM":
            self._section = Section.PROBLEM

        self._emit(classify_word(word), start, line, column)

    def _scan_number(self, start: int, line: int, column: int) -> None:
        match = NUMBER_PATTERN.match(self.source, start)
        self._advance_by(match.end() - start)
        self._emit(TokenKind.NUMBER, start, line, column)

    def _scan_string(self, start: int, line: int, column: int) -> None:
        """
        Scan a character or bit string.

        A doubled quote stands for one quote character. A string that
        reaches the end of the line is closed there and reported.
        """
        self._advance()  # opening quote

        terminated = False
        while not self._at_end() and self._peek() != "\n":
            char = self._advance()
            if char == "'":
                if self._peek() == "'":
                    self._advance()
                    continue
                terminated = True
                break

        kind = TokenKind.STRING
        if terminated and self._peek() == "B":
            width = 2 if self._peek(1) and self._peek(1) in BIT_SUFFIX_DIGITS else 1
            follower = self._peek(width)
            if not (follower and follower in self.IDENT_CHARS):
                self._advance_by(width)
                kind = TokenKind.BITSTRING

        token = self._emit(kind, start, line, column)
        if not terminated:
            self.diagnostics.error(
                "unterminated string literal (closed at end of line)", token,
                code="unterminated-string",
            )

    def _scan_operator(self, start: int, line: int, column: int) -> None:
        """Scan an operator or punctuation symbol using longest match."""
        for op in THREE_CHAR_OPERATORS + TWO_CHAR_OPERATORS:
            if not self.source.startswith(op, self._pos):
                continue
            if op in SYSTEM_ONLY_OPERATORS and self._section != Section.SYSTEM:
                continue
            self._advance_by(len(op))
            self._emit(TokenKind.OPERATOR, start, line, column)
            return

        char = self._advance()
        if char in ONE_CHAR_OPERATORS:
            self._emit(TokenKind.OPERATOR, start, line, column)
        elif char in SYMBOL_CHARS:
            self._emit(TokenKind.SYMBOL, start, line, column)
        else:
            token = self._emit(TokenKind.ERROR, start, line, column)
            self.diagnostics.error(f"illegal character {char!r}", token, code="illegal-character")

    # =========================================================================
    # Macro Expansion
    # =========================================================================

    def _expand_macro(self, macro: Macro, marker: Token) -> None:
        """
        Emit a macro reference followed by its re-lexed replacement.

        Every replacement token takes the position span of the reference.
        """
        self.tokens.append(marker)

        if len(self._expanding) >= MAX_MACRO_DEPTH:
            self.diagnostics.error(
                f"expansion of macro '{macro.name}' nested too deeply", marker,
                code="macro-depth",
            )
            return

        scratch = DiagnosticCollector()
        child = Lexer(
            macro.value,
            self.uri,
            self.macros,
            scratch,
            self.include_cache,
            self.options,
            expanding=self._expanding | {macro.name},
            directives=False,
            section=self._section,
        )

        for token in child.tokenize():
            if token.kind in TRIVIA_KINDS:
                continue
            self.tokens.append(Token(
                kind=token.kind,
                text=token.text,
                uri=marker.uri,
                line=marker.line,
                column=marker.column,
                offset=marker.offset,
                length=marker.length,
                links=TokenLinks(macro_value=macro.value, macro=macro),
            ))
        self._section = child._section

        for diagnostic in scratch.diagnostics:
            self.diagnostics.at_token(
                diagnostic.severity,
                f"in expansion of macro '{macro.name}': {diagnostic.message}",
                marker,
                code=diagnostic.code,
            )

    # =========================================================================
    # Preprocessor Directives
    # =========================================================================

    def _scan_directive(self) -> None:
        """Consume a ``#`` line and act on it."""
        start, line, column = self._pos, self._line, self._column
        self._skip_to_end_of_line()
        text = self.source[start:self._pos]
        name = directive_name(text)

        if name not in CONDITIONAL_DIRECTIVES and not self._conditions.active:
            self._add_inactive(self._make_token(TokenKind.INACTIVE, start, line, column))
            return

        kind = TokenKind.DIRECTIVE if name in KNOWN_DIRECTIVES else TokenKind.INACTIVE
        token = self._emit(kind, start, line, column)

        try:
            directive = parse_directive(text, token.location)
        except PreprocessorError as e:
            self.diagnostics.from_error(e, token, code="invalid-directive")
            if name in ("ifdef", "ifndef"):
                # Keep #endif matching intact
                self._conditions.push(True, token)
            return

        try:
            if name in CONDITIONAL_DIRECTIVES:
                self._handle_conditional(directive, token)
            elif name == "define":
                self.macros.define(directive.name_arg, directive.value, token.location)
                logger.debug(f"#define {directive.name_arg} = {directive.value!r}")
            elif name == "undef":
                if not self.macros.undefine(directive.name_arg):
                    self.diagnostics.warning(
                        f"macro '{directive.name_arg}' is not defined", token,
                        code="undefined-macro",
                    )
            elif name == "include":
                self._include(directive.value, token)
        except IncludeError as e:
            self.diagnostics.from_error(e, token, code="include-error")
        except PreprocessorError as e:
            self.diagnostics.from_error(e, token, code="preprocessor-error")

    def _handle_conditional(self, directive: Directive, token: Token) -> None:
        if directive.name in ("ifdef", "ifndef"):
            defined = directive.name_arg in self.macros
            self._conditions.push(defined != directive.negated, token)
        elif directive.name == "else":
            self._conditions.invert(token.location)
        else:
            opener = self._conditions.pop(token.location)
            if token.line > opener.line:
                self.folding.append(FoldingRegion(
                    self.uri, opener.line, token.line, FoldingKind.PREPROC,
                    opener.text.strip(),
                ))

        if self._conditions.active:
            self._flush_inactive_run()

    def _scan_inactive_line(self) -> None:
        """Consume one physical line switched off by a false condition."""
        start, line, column = self._pos, self._line, self._column
        self._skip_to_end_of_line()
        if self._pos > start:
            self._add_inactive(self._make_token(TokenKind.INACTIVE, start, line, column))
        if self._peek() == "\n":
            self._advance()

    def _add_inactive(self, token: Token) -> None:
        self.tokens.append(token)
        first = self._inactive_run[0] if self._inactive_run else token
        self._inactive_run = (first, token)

    def _flush_inactive_run(self) -> None:
        """Emit one dimmed hint covering the current run of inactive lines."""
        if self._inactive_run is None:
            return
        first, last = self._inactive_run
        self.diagnostics.add(Diagnostic(
            message="inactive code (excluded by preprocessor condition)",
            severity=Severity.HINT,
            uri=self.uri,
            line=first.line,
            column=first.column,
            end_line=last.line,
            end_column=last.column + last.length,
            code="inactive-code",
            tags=frozenset({DiagnosticTag.UNNECESSARY}),
        ))
        self._inactive_run = None

    # =========================================================================
    # File Inclusion
    # =========================================================================

    def _include(self, raw_path: str, token: Token) -> None:
        """
        Lex an included file in place.

        Raises:
            IncludeError: If the file cannot be included
        """
        path_text = substitute_macros(raw_path, self.macros)
        base = self.options.include_base(self._document_path)
        path = (base / path_text).resolve()
        logger.debug(f"Resolved include '{raw_path}' to {path}")

        if path in self._include_chain:
            raise IncludeError(path_text, "circular include detected", token.location)
        if self._depth >= self.options.max_include_depth:
            raise IncludeError(
                path_text,
                f"include nesting exceeds {self.options.max_include_depth} levels",
                token.location,
            )

        try:
            text = self.include_cache.read(path)
        except IncludeError as e:
            raise IncludeError(path_text, e.reason, token.location, search_path=str(base))

        child = Lexer(
            text,
            path_to_uri(path),
            self.macros,
            self.diagnostics,
            self.include_cache,
            self.options,
            include_chain=self._include_chain + (path,),
            depth=self._depth + 1,
            section=self._section,
        )
        self.tokens.extend(child.tokenize())
        self.folding.extend(child.folding)
        self._section = child._section

    # =========================================================================
    # End of Input
    # =========================================================================

    def _finish(self) -> None:
        self._flush_inactive_run()
        for opener in self._conditions.unclosed():
            self.diagnostics.error(
                f"#{directive_name(opener.text)} without matching #endif", opener,
                code="unterminated-conditional",
            )
