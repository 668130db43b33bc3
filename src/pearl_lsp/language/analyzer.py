"""
PEARL Semantic Analyzer
=======================

Single forward pass over the lexer's token list. The analyzer keeps a stack
of open blocks and a parallel stack of scopes, declares names as it meets
DCL/SPC statements, labels and PROC/TASK headers, and resolves every other
identifier against the scopes open at that point.

Block Structure
---------------
| Opener                 | Closer  | Notes                                  |
|------------------------|---------|----------------------------------------|
| MODULE, SHELLMODULE    | MODEND  | top level only                         |
| PROC, TASK             | END     | at module level only; owns labels      |
| BEGIN, REPEAT          | END     | FOR i ... REPEAT declares i            |
| IF                     | FIN     | ELSE closes and reopens the IF frame   |
| CASE                   | FIN     |                                        |

A closer whose permitted openers do not include the innermost open block is
reported and otherwise ignored; the stack is left unchanged.

Resolution
----------
Lookup walks the scopes innermost first and stops at the first scope that
declares the name. Names in call position that are not declared anywhere
are looked up in the builtin procedure table. Statements that operate on a
particular kind of object (CALL, ACTIVATE, REQUEST, ENTER, ...) check the
kind of the resolved symbol.

Unused Symbols
--------------
Closing a scope only records it. When the pass ends, every recorded scope is
swept for symbols that were never referenced and are not GLOBAL. If the
file never reached MODEND, the global scope (and an unclosed module scope)
is swept as well.

Bounded Analysis
----------------
Given a ``cutoff`` offset, the pass stops at the first document token beyond
it and reports nothing about the rest of the file. The scopes open at that
point are the names visible at the cursor.
"""

import logging
from dataclasses import replace
from enum import Enum, auto
from typing import Optional

from pearl_lsp.errors import DiagnosticCollector, DiagnosticTag
from pearl_lsp.language.library import get_builtin
from pearl_lsp.language.scope import (
    KIND_BY_TYPE_KEYWORD,
    BlockFrame,
    ScopeArena,
    Symbol,
    SymbolKind,
    TypeAttributes,
)
from pearl_lsp.language.tokens import (
    TRIVIA_KINDS,
    FoldingKind,
    FoldingRegion,
    Token,
    TokenKind,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Statement Tables
# =============================================================================

MODULE_KEYWORDS = ("MODULE", "SHELLMODULE")
UNIT_KEYWORDS = ("PROC", "PROCEDURE", "TASK")

# Closer -> openers it may close
CLOSERS = {
    "END": ("PROC", "TASK", "BEGIN", "REPEAT"),
    "FIN": ("IF", "CASE"),
    "MODEND": MODULE_KEYWORDS,
}

# Opener -> closer expected for it
EXPECTED_CLOSER = {
    opener: closer for closer, openers in CLOSERS.items() for opener in openers
}


class Requirement(Enum):
    MANDATORY = auto()
    OPTIONAL = auto()
    FORBIDDEN = auto()


# Task control keyword -> (task name rule, PRIO clause rule)
TASK_CONTROL = {
    "ACTIVATE": (Requirement.MANDATORY, Requirement.OPTIONAL),
    "TERMINATE": (Requirement.OPTIONAL, Requirement.FORBIDDEN),
    "PREVENT": (Requirement.OPTIONAL, Requirement.FORBIDDEN),
    "SUSPEND": (Requirement.OPTIONAL, Requirement.FORBIDDEN),
    "CONTINUE": (Requirement.OPTIONAL, Requirement.OPTIONAL),
    "RESUME": (Requirement.FORBIDDEN, Requirement.FORBIDDEN),
}

SEMA_STATEMENTS = ("REQUEST", "RELEASE")
BOLT_STATEMENTS = ("ENTER", "LEAVE", "RESERVE", "FREE")
IO_STATEMENTS = ("PUT", "GET", "READ", "WRITE", "TAKE", "SEND", "CONVERT", "OPEN", "CLOSE")

# Keywords after which a new statement begins (label position)
STATEMENT_OPENERS = ("BEGIN", "THEN", "ELSE", "REPEAT", "OUT")

# Keywords that can only start a statement; used to detect a missing ';'
STATEMENT_KEYWORDS = frozenset({
    "MODULE", "SHELLMODULE", "MODEND", "SYSTEM", "PROBLEM",
    "PROC", "PROCEDURE", "TASK", "DCL", "DECLARE", "SPC", "SPECIFY", "TYPE",
    "BEGIN", "END", "REPEAT", "FOR", "WHILE", "IF", "ELSE", "FIN", "CASE",
    "ALT", "OUT", "CALL", "GOTO", "RETURN", "EXIT",
    *TASK_CONTROL, *SEMA_STATEMENTS, "SEMASET", *BOLT_STATEMENTS, *IO_STATEMENTS,
})

# Keywords allowed inside a PROC/TASK header
HEADER_KEYWORDS = ("PRIO", "PRIORITY", "MAIN", "RESIDENT", "REENTRANT")

KIND_NAMES = {
    SymbolKind.VAR: "variable",
    SymbolKind.PROC: "procedure",
    SymbolKind.TASK: "task",
    SymbolKind.SEMA: "semaphore",
    SymbolKind.BOLT: "bolt",
    SymbolKind.LABEL: "label",
    SymbolKind.MODULE: "module",
}


def render_tokens(tokens: list[Token]) -> str:
    """Join token texts, with a blank only between two word-like tokens."""
    text = ""
    for token in tokens:
        if text and text[-1].isalnum() and token.text[:1].isalnum():
            text += " "
        text += token.text
    return text


# =============================================================================
# Semantic Analyzer
# =============================================================================

class SemanticAnalyzer:
    """
    Scope-stack semantic analyzer.

    Usage:
        analyzer = SemanticAnalyzer(tokens, diagnostics, uri=uri)
        analyzer.analyze()
        analyzer.folding        # block folding regions

    Attributes:
        arena: All scopes created during the pass
        frames: Open block frames (frames[0] is the root frame)
        folding: Folding regions of matched blocks
        diagnostics: Collector receiving all findings
    """

    def __init__(
        self,
        tokens: list[Token],
        diagnostics: Optional[DiagnosticCollector] = None,
        *,
        uri: Optional[str] = None,
        cutoff: Optional[int] = None,
        report_unused: bool = True,
    ):
        """
        Args:
            tokens: Token list produced by the lexer
            diagnostics: Collector for findings (a private one if omitted)
            uri: Main document URI; cutoff offsets refer to this document
            cutoff: Stop before the first document token starting after
                this offset (bounded analysis)
            report_unused: Emit unused-symbol warnings
        """
        self.diagnostics = diagnostics if diagnostics is not None else DiagnosticCollector()
        self.uri = uri
        self.cutoff = cutoff
        self.report_unused = report_unused

        significant = [
            t for t in tokens
            if t.kind not in TRIVIA_KINDS and t.kind != TokenKind.ERROR
        ]
        if cutoff is not None:
            for index, token in enumerate(significant):
                if (uri is None or token.uri == uri) and token.offset > cutoff:
                    significant = significant[:index]
                    break
        self._tokens = significant
        self._pos = 0

        self.arena = ScopeArena()
        self.frames: list[BlockFrame] = [BlockFrame(None)]
        self.folding: list[FoldingRegion] = []

        self._pending_loop_var: Optional[Token] = None
        self._statement_start_pos = 0
        self._modend_seen = False
        self._outer_labels: dict[str, Symbol] = {}

        self._handlers = {
            "MODULE": self._module_header,
            "SHELLMODULE": self._module_header,
            "SYSTEM": self._system_part,
            "PROC": self._bare_unit_header,
            "PROCEDURE": self._bare_unit_header,
            "TASK": self._bare_unit_header,
            "DCL": self._declaration,
            "DECLARE": self._declaration,
            "SPC": self._declaration,
            "SPECIFY": self._declaration,
            "TYPE": self._skip_statement,
            "BEGIN": self._open_block,
            "REPEAT": self._open_block,
            "IF": self._open_block,
            "CASE": self._open_block,
            "ELSE": self._else,
            "FOR": self._for_loop,
            "ALT": self._alternative,
            "END": self._close_block,
            "FIN": self._close_block,
            "MODEND": self._close_block,
            "CALL": self._call,
            "GOTO": self._goto,
            "SEMASET": self._semaset,
        }
        for keyword in TASK_CONTROL:
            self._handlers[keyword] = self._task_control
        for keyword in SEMA_STATEMENTS:
            self._handlers[keyword] = self._sema_statement
        for keyword in BOLT_STATEMENTS:
            self._handlers[keyword] = self._bolt_statement
        for keyword in IO_STATEMENTS:
            self._handlers[keyword] = self._io_statement

    @property
    def bounded(self) -> bool:
        return self.cutoff is not None

    def analyze(self) -> None:
        """Run the pass over all tokens."""
        while not self._at_end():
            self._statement()

        if not self.bounded:
            self._finish()

        logger.debug(
            f"Analyzed {len(self._tokens)} tokens, {len(self.arena.scopes)} scopes, "
            f"{len(self.frames) - 1} open blocks"
        )

    def visible_symbols(self) -> dict[str, Symbol]:
        """Names visible at the point where the pass stopped."""
        visible = self.arena.visible_symbols()
        if self._pending_loop_var is not None:
            name = self._pending_loop_var.text
            visible.setdefault(name, Symbol(self._pending_loop_var, SymbolKind.VAR,
                                            TypeAttributes(type_name="FIXED")))
        return visible

    # =========================================================================
    # Token Access Methods
    # =========================================================================

    def _at_end(self) -> bool:
        return self._pos >= len(self._tokens)

    def _peek(self, offset: int = 0) -> Optional[Token]:
        """Look at token at current position + offset (None past the end)."""
        pos = self._pos + offset
        if pos >= len(self._tokens):
            return None
        return self._tokens[pos]

    def _previous(self) -> Optional[Token]:
        return self._tokens[self._pos - 1] if self._pos > 0 else None

    def _advance(self) -> Optional[Token]:
        """Consume and return the current token."""
        token = self._peek()
        if token is not None:
            self._pos += 1
        return token

    def _check_symbol(self, *chars: str) -> bool:
        token = self._peek()
        return token is not None and token.is_symbol(*chars)

    def _check_keyword(self, *words: str) -> bool:
        token = self._peek()
        return token is not None and token.is_keyword(*words)

    def _check_identifier(self) -> bool:
        token = self._peek()
        return token is not None and token.kind == TokenKind.IDENTIFIER

    def _at_statement_keyword(self) -> bool:
        token = self._peek()
        return token is not None and token.kind == TokenKind.KEYWORD and token.text in STATEMENT_KEYWORDS

    def _error_here(self, message: str, fallback: Token, code: str = "syntax-error") -> None:
        """Report at the current token, or at ``fallback`` at end of input."""
        self.diagnostics.error(message, self._peek() or fallback, code=code)

    def _synchronize(self) -> None:
        """
        Skip to the next statement boundary after an error.

        Stops after a ';' or before a keyword that starts a statement.
        """
        while not self._at_end():
            if self._check_symbol(";"):
                self._advance()
                return
            if self._at_statement_keyword():
                return
            self._advance()

    def _finish_statement(self, keyword: Token) -> None:
        """Consume the ';' ending a statement, or report and resynchronize."""
        if self._check_symbol(";"):
            self._advance()
            return
        self._error_here(f"expected ';' after {keyword.text} statement", keyword)
        self._synchronize()

    def _group(self, resolve: bool) -> tuple[list[Token], int]:
        """
        Consume a balanced ``( )`` or ``[ ]`` group at the current token.

        Args:
            resolve: Resolve identifiers inside the group as references

        Returns:
            (inner tokens, number of top-level commas)
        """
        open_token = self._advance()
        close = ")" if open_token.text == "(" else "]"
        inner: list[Token] = []
        depth = 0
        commas = 0

        while not self._at_end():
            token = self._peek()
            if token.is_symbol("(", "["):
                depth += 1
            elif token.is_symbol(")", "]"):
                if depth == 0:
                    self._advance()
                    return inner, commas
                depth -= 1
            elif token.is_symbol(";"):
                break
            elif token.is_symbol(",") and depth == 0:
                commas += 1

            inner.append(token)
            if resolve and token.kind == TokenKind.IDENTIFIER:
                self._resolve_current()
            else:
                self._advance()

        self._error_here(f"expected '{close}'", open_token)
        return inner, commas

    def _skip_statement(self) -> None:
        """Skip a statement that declares nothing checkable (e.g. TYPE)."""
        self._advance()
        while not self._at_end():
            if self._advance().is_symbol(";"):
                return

    # =========================================================================
    # Symbol Management
    # =========================================================================

    def _global_level(self) -> int:
        """Stack level of the scope holding MODULE/PROC/TASK names."""
        if len(self.frames) > 1 and self.frames[1].keyword in MODULE_KEYWORDS:
            return 1
        return 0

    def _body_level(self) -> Optional[int]:
        """Stack level of the innermost PROC/TASK frame, if any."""
        for level in range(len(self.frames) - 1, 0, -1):
            if self.frames[level].is_body:
                return level
        return None

    def _declare(
        self,
        name_token: Token,
        kind: SymbolKind,
        attributes: Optional[TypeAttributes] = None,
        level: Optional[int] = None,
    ) -> Symbol:
        """
        Declare a name in the current scope (or the scope at ``level``).

        Returns:
            The new symbol, or the existing one if the name was taken
        """
        scope = self.arena.current if level is None else self.arena.at_level(level)
        attributes = attributes or TypeAttributes()
        symbol = Symbol(name_token, kind, attributes)
        if attributes.is_global or kind in (SymbolKind.MODULE, SymbolKind.PROC, SymbolKind.TASK):
            symbol.mark_used()

        existing = scope.declare(symbol)
        if existing is not None:
            if (existing.attributes.is_specification and existing.kind == kind
                    and not attributes.is_specification):
                # Implementation of an earlier SPC
                symbol.used = symbol.used or existing.used
                scope.replace(symbol)
            else:
                self.diagnostics.error(
                    f"'{name_token.text}' is already declared in this scope "
                    f"(first declared at {existing.name_token.location})",
                    name_token,
                    code="duplicate-declaration",
                )
                return existing

        self._link(name_token, symbol)
        return symbol

    def _link(self, token: Token, symbol: Symbol) -> None:
        if not self.bounded:
            token.link(symbol)

    def _resolve_current(self, write: bool = False) -> Optional[Symbol]:
        """Resolve the identifier at the current position and consume it."""
        previous = self._previous()
        token = self._advance()
        if previous is not None and previous.is_symbol("."):
            return None  # structure component
        return self._resolve(token, write=write, call=self._check_symbol("("))

    def _resolve(self, token: Token, write: bool = False, call: bool = False) -> Optional[Symbol]:
        """
        Resolve a referencing occurrence of a name.

        Args:
            token: The identifier token
            write: The token is an assignment target (does not count as use)
            call: The token is in call position
        """
        symbol = self.arena.lookup(token.text)
        if symbol is not None:
            self._link(token, symbol)
            if not write:
                symbol.mark_used()
            return symbol

        builtin = get_builtin(token.text)
        if builtin is not None and (call or builtin.niladic):
            if not self.bounded:
                token.links.builtin = builtin
            return None

        self.diagnostics.error(
            f"undefined identifier '{token.text}'", token, code="undefined-identifier"
        )
        return None

    def _resolve_kind(self, token: Token, keyword: Token, *kinds: SymbolKind) -> Optional[Symbol]:
        """Resolve a name operated on by ``keyword`` and check its kind."""
        symbol = self._resolve(token, call=keyword.text == "CALL")
        if symbol is not None and symbol.kind not in kinds:
            required = " or ".join(kind.name for kind in kinds)
            self.diagnostics.error(
                f"'{token.text}' is declared as {symbol.kind.name}, "
                f"but {keyword.text} requires {required}",
                token,
                code="kind-mismatch",
            )
        return symbol

    # =========================================================================
    # Block Stack
    # =========================================================================

    def _push_frame(self, keyword: str, opening: Token, symbol: Optional[Symbol] = None) -> None:
        self.frames.append(BlockFrame(keyword, opening, symbol))
        self.arena.push(keyword)

    def _pop_frame(self, closer: Token) -> BlockFrame:
        frame = self.frames.pop()
        self.arena.pop()
        opening = frame.opening_token
        if opening.uri == closer.uri and closer.line > opening.line:
            self.folding.append(FoldingRegion(
                closer.uri, opening.line, closer.line, FoldingKind.REGION, frame.keyword,
            ))
        return frame

    def _check_goto_targets(self, frame: BlockFrame, closer: Token) -> None:
        """Resolve the GOTOs of a PROC/TASK body against its labels."""
        body = self.arena.current
        for target in frame.goto_targets:
            label = body.lookup(target.text)
            if label is not None and label.kind == SymbolKind.LABEL:
                self._link(target, label)
                label.mark_used()
            else:
                self.diagnostics.error(
                    f"label {target.text} not defined", closer, code="undefined-label"
                )

    # =========================================================================
    # Statements
    # =========================================================================

    def _statement(self) -> None:
        """Dispatch on the current token."""
        token = self._peek()
        if token.kind == TokenKind.KEYWORD:
            handler = self._handlers.get(token.text)
            if handler is not None:
                handler()
            else:
                self._advance()
        elif token.kind == TokenKind.IDENTIFIER:
            self._identifier()
        else:
            self._advance()

    def _at_statement_start(self) -> bool:
        if self._pos == self._statement_start_pos:
            return True
        previous = self._previous()
        return (
            previous is None
            or previous.is_symbol(";", ":")
            or previous.is_keyword(*STATEMENT_OPENERS)
        )

    def _identifier(self) -> None:
        token = self._peek()
        following = self._peek(1)

        if following is not None and following.is_symbol(":"):
            after = self._peek(2)
            if after is not None and after.is_keyword(*UNIT_KEYWORDS):
                name = self._advance()
                self._advance()  # ':'
                self._open_unit(self._advance(), name)
                return
            if self._at_statement_start():
                self._label()
                return

        if following is not None and following.is_operator(":="):
            self._resolve_current(write=True)
            return

        self._resolve_current()

    def _label(self) -> None:
        name = self._advance()
        self._advance()  # ':'
        level = self._body_level()
        label = self._declare(name, SymbolKind.LABEL, level=level)
        if level is None and label.kind == SymbolKind.LABEL:
            self._outer_labels.setdefault(name.text, label)
        self._statement_start_pos = self._pos

    # -------------------------------------------------------------------------
    # Module structure
    # -------------------------------------------------------------------------

    def _module_header(self) -> None:
        """MODULE name; / MODULE(name); / SHELLMODULE ..."""
        keyword = self._advance()

        name = None
        if self._check_symbol("("):
            self._advance()
            if self._check_identifier():
                name = self._advance()
            if self._check_symbol(")"):
                self._advance()
            else:
                self._error_here("expected ')' after module name", keyword)
        elif self._check_identifier():
            name = self._advance()

        if name is None:
            self._error_here(f"expected module name after {keyword.text}", keyword)

        if len(self.frames) > 1:
            self.diagnostics.error(
                f"{keyword.text} is only allowed at top level", keyword, code="misplaced-block"
            )

        symbol = None
        if name is not None:
            symbol = self._declare(name, SymbolKind.MODULE, level=0)
        self._push_frame(keyword.text, name or keyword, symbol)

        if self._check_symbol(";"):
            self._advance()

    def _system_part(self) -> None:
        """Skip the SYSTEM part up to PROBLEM or MODEND."""
        self._advance()
        while not self._at_end() and not self._check_keyword("PROBLEM", "MODEND"):
            self._advance()

    # -------------------------------------------------------------------------
    # PROC and TASK headers
    # -------------------------------------------------------------------------

    def _bare_unit_header(self) -> None:
        """PROC name ...; / TASK name ...; (also PROC name: PROC ...;)"""
        keyword = self._advance()
        if not self._check_identifier():
            self._error_here(f"expected a name after {keyword.text}", keyword)
            self._synchronize()
            return

        name = self._advance()
        if self._check_symbol(":"):
            after = self._peek(1)
            if after is not None and after.is_keyword(*UNIT_KEYWORDS):
                self._advance()
                keyword = self._advance()
        self._open_unit(keyword, name)

    def _open_unit(self, keyword: Token, name: Token) -> None:
        """Declare a PROC/TASK, open its body and parse its header."""
        frame_keyword = "TASK" if keyword.text == "TASK" else "PROC"
        kind = SymbolKind.TASK if frame_keyword == "TASK" else SymbolKind.PROC

        at_module_level = len(self.frames) == 1 or (
            len(self.frames) == 2 and self.frames[1].keyword in MODULE_KEYWORDS
        )
        if not at_module_level:
            self.diagnostics.error(
                f"{frame_keyword} '{name.text}' may only be declared at module level",
                name,
                code="nested-unit",
            )

        symbol = self._declare(name, kind, level=self._global_level())
        self._push_frame(frame_keyword, name, symbol)
        self._unit_header(keyword, symbol.attributes)

    def _unit_header(self, keyword: Token, attributes: TypeAttributes) -> None:
        """Parameters, RETURNS, GLOBAL, PRIO and flags up to the ';'."""
        while not self._at_end():
            token = self._peek()
            if token.is_symbol(";"):
                self._advance()
                return
            if token.is_symbol("("):
                self._parameter_list(attributes)
            elif token.is_keyword("RETURNS"):
                self._advance()
                if self._check_symbol("("):
                    inner, _ = self._group(resolve=False)
                    attributes.returns = render_tokens(inner)
            elif token.is_keyword("GLOBAL"):
                self._advance()
                attributes.is_global = True
                if self._check_symbol("("):
                    self._group(resolve=False)
            elif token.is_keyword(*HEADER_KEYWORDS):
                self._advance()
            elif token.kind == TokenKind.IDENTIFIER:
                self._resolve_current()
            elif self._at_statement_keyword():
                break
            else:
                self._advance()

        self._error_here(f"expected ';' after {keyword.text} header", keyword)

    def _parameter_list(self, attributes: TypeAttributes) -> None:
        """Formal parameters: (a FIXED, (b, c) FLOAT IDENT, ...)."""
        open_token = self._advance()

        while not self._at_end():
            if self._check_symbol(")"):
                self._advance()
                return
            if self._check_symbol(";"):
                break

            names: list[Token] = []
            if self._check_symbol("("):
                self._advance()
                while self._check_identifier() or self._check_symbol(","):
                    token = self._advance()
                    if token.kind == TokenKind.IDENTIFIER:
                        names.append(token)
                if self._check_symbol(")"):
                    self._advance()
            elif self._check_identifier():
                names.append(self._advance())
            else:
                self._error_here("expected parameter name", open_token)

            type_tokens: list[Token] = []
            depth = 0
            while not self._at_end():
                token = self._peek()
                if token.is_symbol(";"):
                    break
                if depth == 0 and token.is_symbol(",", ")"):
                    break
                if token.is_symbol("("):
                    depth += 1
                elif token.is_symbol(")"):
                    depth -= 1
                type_tokens.append(self._advance())

            type_text = render_tokens(type_tokens)
            kind = SymbolKind.VAR
            for token in type_tokens:
                if token.kind == TokenKind.KEYWORD and token.text in KIND_BY_TYPE_KEYWORD:
                    kind = KIND_BY_TYPE_KEYWORD[token.text]
                    break
            for name in names:
                self._declare(name, kind, TypeAttributes(
                    type_name=type_text or None,
                    is_parameter=True,
                    is_ident=any(t.is_keyword("IDENT") for t in type_tokens),
                    is_inv=any(t.is_keyword("INV") for t in type_tokens),
                ))
                attributes.parameters.append(f"{name.text} {type_text}".rstrip())

            if not names and not type_tokens and not self._check_symbol(",", ")", ";"):
                # Nothing consumed for this item
                self._advance()
            if self._check_symbol(","):
                self._advance()

        self._error_here("expected ')' after parameter list", open_token)

    # -------------------------------------------------------------------------
    # Declarations
    # -------------------------------------------------------------------------

    def _declaration(self) -> None:
        """DCL/DECLARE/SPC/SPECIFY item, item, ... ;"""
        keyword = self._advance()
        specification = keyword.text in ("SPC", "SPECIFY")

        while True:
            names: list[Token] = []
            if self._check_symbol("("):
                self._advance()
                while self._check_identifier() or self._check_symbol(","):
                    token = self._advance()
                    if token.kind == TokenKind.IDENTIFIER:
                        names.append(token)
                if self._check_symbol(")"):
                    self._advance()
                else:
                    self._error_here("expected ')' after name list", keyword)
            elif self._check_identifier():
                names.append(self._advance())

            if not names:
                self._error_here(f"expected identifier in {keyword.text} statement", keyword)
                self._synchronize()
                return

            attributes, kind = self._declaration_attributes(specification)
            for name in names:
                self._declare(name, kind, replace(attributes, parameters=list(attributes.parameters)))

            if self._check_symbol(","):
                self._advance()
                continue
            self._finish_statement(keyword)
            return

    def _declaration_attributes(self, specification: bool) -> tuple[TypeAttributes, SymbolKind]:
        """Dimensions and attributes of one declaration item."""
        attributes = TypeAttributes(is_specification=specification)
        kind = SymbolKind.VAR

        if self._check_symbol("("):
            _, commas = self._group(resolve=True)
            attributes.dimensions = commas + 1

        while not self._at_end():
            token = self._peek()
            if token.is_symbol(",", ";") or (self._at_statement_keyword() and token.text not in UNIT_KEYWORDS):
                break

            if token.is_keyword("INV"):
                attributes.is_inv = True
                self._advance()
            elif token.is_keyword("REF"):
                attributes.is_ref = True
                self._advance()
            elif token.is_keyword("IDENT"):
                attributes.is_ident = True
                self._advance()
                if self._check_symbol("("):
                    self._group(resolve=True)
            elif token.is_keyword("GLOBAL"):
                attributes.is_global = True
                self._advance()
                if self._check_symbol("("):
                    self._group(resolve=False)
            elif token.is_keyword("INIT", "PRESET"):
                attributes.is_init = True
                self._advance()
                if self._check_symbol("("):
                    self._group(resolve=True)
            elif token.is_keyword("STRUCT"):
                attributes.type_name = "STRUCT"
                self._advance()
                if self._check_symbol("[", "("):
                    self._group(resolve=False)
            elif token.is_keyword("RETURNS"):
                self._advance()
                if self._check_symbol("("):
                    inner, _ = self._group(resolve=False)
                    attributes.returns = render_tokens(inner)
            elif token.is_type_keyword() or token.is_keyword(*UNIT_KEYWORDS):
                kind = KIND_BY_TYPE_KEYWORD.get(token.text, SymbolKind.VAR)
                self._advance()
                type_name = token.text
                if self._check_symbol("("):
                    inner, _ = self._group(resolve=False)
                    type_name += f"({render_tokens(inner)})"
                attributes.type_name = type_name
            elif token.kind == TokenKind.IDENTIFIER:
                # User-defined type name
                if attributes.type_name is None:
                    attributes.type_name = token.text
                self._advance()
            elif token.is_symbol("(", "["):
                self._group(resolve=True)
            else:
                self._advance()

        return attributes, kind

    # -------------------------------------------------------------------------
    # Blocks
    # -------------------------------------------------------------------------

    def _open_block(self) -> None:
        """BEGIN, REPEAT, IF, CASE."""
        keyword = self._advance()
        self._push_frame(keyword.text, keyword)

        if keyword.text == "REPEAT" and self._pending_loop_var is not None:
            variable = self._declare(
                self._pending_loop_var, SymbolKind.VAR, TypeAttributes(type_name="FIXED")
            )
            variable.mark_used()
        self._pending_loop_var = None
        self._statement_start_pos = self._pos

    def _for_loop(self) -> None:
        self._advance()
        if self._check_identifier():
            self._pending_loop_var = self._advance()

    def _else(self) -> None:
        keyword = self._advance()
        if self.frames[-1].keyword != "IF":
            self.diagnostics.error("ELSE without matching IF", keyword, code="mismatched-block")
            return
        self._pop_frame(keyword)
        self._push_frame("IF", keyword)
        self._statement_start_pos = self._pos

    def _alternative(self) -> None:
        """ALT (values) starts a new statement."""
        self._advance()
        if self._check_symbol("("):
            self._group(resolve=True)
        self._statement_start_pos = self._pos

    def _close_block(self) -> None:
        """END, FIN, MODEND."""
        closer = self._advance()
        openers = CLOSERS[closer.text]
        frame = self.frames[-1]

        if frame.keyword not in openers:
            message = f"unexpected {closer.text}: no open {'/'.join(openers)} block"
            if frame.keyword is not None:
                message += f" (innermost open block is {frame.keyword}, expected {EXPECTED_CLOSER[frame.keyword]})"
            self.diagnostics.error(message, closer, code="mismatched-block")
            return

        if frame.is_body:
            self._check_goto_targets(frame, closer)
        self._pop_frame(closer)
        if closer.text == "MODEND":
            self._modend_seen = True

    # -------------------------------------------------------------------------
    # Kind-directed statements
    # -------------------------------------------------------------------------

    def _call(self) -> None:
        keyword = self._advance()
        if not self._check_identifier():
            self._error_here("expected procedure name after CALL", keyword)
            self._synchronize()
            return
        self._resolve_kind(self._advance(), keyword, SymbolKind.PROC)

    def _task_control(self) -> None:
        """ACTIVATE/TERMINATE/PREVENT/SUSPEND/CONTINUE/RESUME."""
        keyword = self._advance()
        name_rule, prio_rule = TASK_CONTROL[keyword.text]

        if self._check_identifier():
            if name_rule == Requirement.FORBIDDEN:
                self.diagnostics.error(
                    f"{keyword.text} does not take a task name", self._advance(),
                    code="syntax-error",
                )
            else:
                self._resolve_kind(self._advance(), keyword, SymbolKind.TASK)
        elif name_rule == Requirement.MANDATORY:
            self._error_here(f"{keyword.text} requires a task name", keyword)

        prio_seen = False
        while not self._at_end() and not self._check_symbol(";"):
            token = self._peek()
            if token.is_keyword("PRIO", "PRIORITY"):
                prio_seen = True
                if prio_rule == Requirement.FORBIDDEN:
                    self.diagnostics.error(
                        f"{keyword.text} does not accept a {token.text} clause", token,
                        code="syntax-error",
                    )
                self._advance()
            elif token.kind == TokenKind.IDENTIFIER:
                self._resolve_current()
            elif self._at_statement_keyword():
                break
            else:
                self._advance()

        if prio_rule == Requirement.MANDATORY and not prio_seen:
            self.diagnostics.error(f"{keyword.text} requires a PRIO clause", keyword, code="syntax-error")
        self._finish_statement(keyword)

    def _name_list_statement(self, kind: SymbolKind) -> None:
        """REQUEST/RELEASE/ENTER/LEAVE/RESERVE/FREE name, name, ... ;"""
        keyword = self._advance()
        if not self._check_identifier():
            self._error_here(f"{keyword.text} requires a {kind.name} name", keyword)
            self._synchronize()
            return

        while self._check_identifier():
            self._resolve_kind(self._advance(), keyword, kind)
            if not self._check_symbol(","):
                break
            self._advance()
        self._finish_statement(keyword)

    def _sema_statement(self) -> None:
        self._name_list_statement(SymbolKind.SEMA)

    def _bolt_statement(self) -> None:
        self._name_list_statement(SymbolKind.BOLT)

    def _semaset(self) -> None:
        """SEMASET value, ..., sema; the last operand must be a SEMA."""
        keyword = self._advance()
        operands: list[Token] = []
        while not self._at_end() and not self._check_symbol(";") and not self._at_statement_keyword():
            token = self._advance()
            if token.kind == TokenKind.IDENTIFIER:
                operands.append(token)

        for token in operands[:-1]:
            self._resolve(token)
        if operands:
            self._resolve_kind(operands[-1], keyword, SymbolKind.SEMA)
        else:
            self.diagnostics.error("SEMASET requires a SEMA operand", keyword, code="syntax-error")
        self._finish_statement(keyword)

    def _goto(self) -> None:
        keyword = self._advance()
        if not self._check_identifier():
            self._error_here("expected label after GOTO", keyword)
            self._synchronize()
            return

        target = self._advance()
        level = self._body_level()
        if level is not None:
            self.frames[level].goto_targets.append(target)
        else:
            label = self.arena.lookup(target.text)
            if label is not None and label.kind == SymbolKind.LABEL:
                self._link(target, label)
                label.mark_used()
            else:
                # May name a label further down, resolved once the pass ends
                self.frames[0].goto_targets.append(target)
        self._finish_statement(keyword)

    def _io_statement(self) -> None:
        """PUT/GET/... : names after BY are format items, not references."""
        keyword = self._advance()
        in_format = False
        while not self._at_end() and not self._check_symbol(";"):
            token = self._peek()
            if token.is_keyword("BY"):
                in_format = True
                self._advance()
            elif token.kind == TokenKind.IDENTIFIER and not in_format:
                self._resolve_current()
            elif self._at_statement_keyword():
                break
            else:
                self._advance()
        self._finish_statement(keyword)

    # =========================================================================
    # End of Input
    # =========================================================================

    def _finish(self) -> None:
        for target in self.frames[0].goto_targets:
            label = self._outer_labels.get(target.text)
            if label is not None:
                self._link(target, label)
                label.mark_used()
            else:
                self.diagnostics.error(
                    f"label {target.text} not defined", target, code="undefined-label"
                )

        for frame in reversed(self.frames[1:]):
            self.diagnostics.warning(
                f"Block '{frame.keyword}' not closed, expected {EXPECTED_CLOSER[frame.keyword]}",
                frame.opening_token,
                code="unclosed-block",
            )

        if not self.report_unused:
            return

        scopes = self.arena.take_closed()
        if not self._modend_seen:
            scopes.append(self.arena.global_scope)
            if self._global_level() == 1:
                scopes.append(self.arena.at_level(1))

        for scope in scopes:
            for symbol in scope.unused_symbols():
                self.diagnostics.warning(
                    f"{KIND_NAMES[symbol.kind]} '{symbol.name}' is declared but never used",
                    symbol.name_token,
                    code="unused-symbol",
                    tags=frozenset({DiagnosticTag.UNNECESSARY}),
                )
