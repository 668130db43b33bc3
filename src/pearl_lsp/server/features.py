"""
Editor Features
===============

Hover, go-to-definition, folding and completion computed from a stored
``AnalysisResult``. Nothing here depends on the protocol library; the server
module converts the plain results into protocol types.

None of these functions analyze the document again. Completion runs the
bounded analyzer variant over the stored tokens to find the names visible
at the cursor.
"""

from dataclasses import dataclass
from typing import Optional

from pearl_lsp.analysis import AnalysisResult, PearlAnalyzer
from pearl_lsp.errors import display_name
from pearl_lsp.language.library import BUILTIN_PROCEDURES
from pearl_lsp.language.scope import Symbol, SymbolKind
from pearl_lsp.language.tokens import (
    ALL_KEYWORDS,
    LITERAL_KINDS,
    TYPE_KEYWORDS,
    FoldingRegion,
    TokenKind,
)


# Short descriptions for the keywords users hover most often
KEYWORD_DESCRIPTIONS = {
    "MODULE": "Start of a module; closed by `MODEND`.",
    "SHELLMODULE": "Start of a shell module; closed by `MODEND`.",
    "MODEND": "End of a module.",
    "SYSTEM": "Start of the system part (device configuration).",
    "PROBLEM": "Start of the problem part (declarations and code).",
    "PROC": "Procedure declaration; the body is closed by `END`.",
    "PROCEDURE": "Procedure declaration; the body is closed by `END`.",
    "TASK": "Task declaration; the body is closed by `END`.",
    "DCL": "Declaration of variables and objects.",
    "DECLARE": "Declaration of variables and objects.",
    "SPC": "Specification of an object declared elsewhere.",
    "SPECIFY": "Specification of an object declared elsewhere.",
    "BEGIN": "Start of a block; closed by `END`.",
    "REPEAT": "Loop body; closed by `END`.",
    "FOR": "Loop control variable, declared implicitly as `FIXED`.",
    "IF": "Conditional statement; closed by `FIN`.",
    "ELSE": "Alternative branch of an `IF`.",
    "CASE": "Multi-way selection; closed by `FIN`.",
    "END": "Closes `PROC`, `TASK`, `BEGIN` or `REPEAT`.",
    "FIN": "Closes `IF` or `CASE`.",
    "CALL": "Calls a procedure.",
    "GOTO": "Jumps to a label in the same procedure or task.",
    "ACTIVATE": "Starts a task, optionally with a `PRIO` clause.",
    "TERMINATE": "Terminates a task (the current one if no name is given).",
    "PREVENT": "Cancels the scheduled activations of a task.",
    "SUSPEND": "Suspends a task.",
    "CONTINUE": "Continues a suspended task.",
    "RESUME": "Suspends the current task until a scheduled time.",
    "REQUEST": "P-operation on a semaphore.",
    "RELEASE": "V-operation on a semaphore.",
    "ENTER": "Acquires a bolt for shared access.",
    "LEAVE": "Releases shared access to a bolt.",
    "RESERVE": "Acquires a bolt for exclusive access.",
    "FREE": "Releases exclusive access to a bolt.",
    "GLOBAL": "Makes the object visible to other modules.",
    "INIT": "Initial value of a declared object.",
}


@dataclass(frozen=True)
class DefinitionTarget:
    """Where a name is declared."""
    uri: str
    line: int
    column: int
    length: int


@dataclass(frozen=True)
class CompletionCandidate:
    """
    One completion proposal.

    Attributes:
        label: Text to insert
        kind: "keyword", "macro", "function", "variable", "task", ...
        detail: Short description shown next to the label
    """
    label: str
    kind: str
    detail: Optional[str] = None


# =============================================================================
# Hover
# =============================================================================

def _code_block(text: str) -> str:
    return f"```pearl\n{text}\n```"


def describe_symbol(symbol: Symbol) -> str:
    """Markdown description of a declared symbol."""
    token = symbol.name_token
    where = f"{display_name(token.uri)}:{token.line + 1}"
    return f"{_code_block(symbol.describe())}\n\nDeclared at {where}"


def hover_markdown(result: AnalysisResult, line: int, character: int) -> Optional[str]:
    """
    Markdown hover text for the token at a position.

    Returns None for comments, inactive code, directives, literals and
    punctuation.
    """
    token = result.token_at(line, character)
    if token is None:
        return None

    if token.kind == TokenKind.MACRO_EXPANSION:
        macro = token.links.macro
        text = _code_block(f"#define {token.text} {token.macro_value}".rstrip())
        if macro is not None and macro.location is not None:
            text += f"\n\nDefined at {macro.location}"
        else:
            text += "\n\nPredefined macro"
        return text

    if token.kind in LITERAL_KINDS or token.kind in (
        TokenKind.COMMENT, TokenKind.INACTIVE, TokenKind.DIRECTIVE,
        TokenKind.SYMBOL, TokenKind.ERROR,
    ):
        return None

    if token.kind == TokenKind.IDENTIFIER:
        if token.definition is not None:
            return describe_symbol(token.definition)
        if token.builtin is not None:
            builtin = token.builtin
            return f"{_code_block(builtin.signature)}\n\n{builtin.description} (builtin)"
        return f"identifier `{token.text}` (not declared)"

    if token.kind == TokenKind.KEYWORD:
        if token.text in KEYWORD_DESCRIPTIONS:
            return f"**{token.text}**: {KEYWORD_DESCRIPTIONS[token.text]}"
        if token.text in TYPE_KEYWORDS:
            return f"**{token.text}**: type keyword"
        return f"**{token.text}**: keyword"

    return f"operator `{token.text}`"


# =============================================================================
# Go-to-definition
# =============================================================================

def find_definition(result: AnalysisResult, line: int, character: int) -> Optional[DefinitionTarget]:
    """Declaration site of the identifier or macro at a position."""
    token = result.token_at(line, character)
    if token is None:
        return None

    if token.kind == TokenKind.MACRO_EXPANSION:
        macro = token.links.macro
        if macro is None or macro.location is None:
            return None
        location = macro.location
        return DefinitionTarget(location.uri, location.line, location.column, 0)

    if token.kind != TokenKind.IDENTIFIER or token.definition is None:
        return None

    name = token.definition.name_token
    return DefinitionTarget(name.uri, name.line, name.column, name.length)


# =============================================================================
# Folding
# =============================================================================

def folding_regions(result: AnalysisResult) -> list[FoldingRegion]:
    """Folding regions of the document itself, ordered by start line."""
    regions = {
        (region.start_line, region.end_line): region
        for region in result.folding_for()
        if region.end_line > region.start_line
    }
    return sorted(regions.values(), key=lambda r: (r.start_line, r.end_line))


# =============================================================================
# Completion
# =============================================================================

_COMPLETION_KIND_BY_SYMBOL = {
    SymbolKind.VAR: "variable",
    SymbolKind.PROC: "function",
    SymbolKind.TASK: "task",
    SymbolKind.SEMA: "sema",
    SymbolKind.BOLT: "bolt",
    SymbolKind.LABEL: "label",
    SymbolKind.MODULE: "module",
}


def completion_candidates(
    analyzer: PearlAnalyzer,
    result: AnalysisResult,
    line: int,
    character: int,
) -> list[CompletionCandidate]:
    """
    Names visible at the cursor, then macros, builtins and keywords.

    Each label appears once; an earlier group wins.
    """
    candidates: list[CompletionCandidate] = []
    seen: set[str] = set()

    def add(label: str, kind: str, detail: Optional[str] = None) -> None:
        if label not in seen:
            seen.add(label)
            candidates.append(CompletionCandidate(label, kind, detail))

    visible = analyzer.visible_symbols(result, line, character)
    for name in sorted(visible):
        symbol = visible[name]
        add(name, _COMPLETION_KIND_BY_SYMBOL[symbol.kind], symbol.describe())

    for name in result.macros.names():
        add(name, "macro", f"#define {name} {result.macros.get(name).value}".rstrip())

    for builtin in BUILTIN_PROCEDURES:
        add(builtin.name, "function", builtin.signature)

    for keyword in sorted(ALL_KEYWORDS):
        add(keyword, "keyword")

    return candidates
