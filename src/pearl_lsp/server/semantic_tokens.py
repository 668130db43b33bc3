"""
Semantic Token Classification
=============================

Maps analyzed tokens to the editor's semantic token classes and encodes
them as the relative position stream the protocol expects.

Legend
------
| Index | Type      | Assigned to                                |
|-------|-----------|--------------------------------------------|
| 0     | type      | type keywords (FIXED, CHAR, SEMA, ...)     |
| 1     | variable  | VAR symbols, unresolved identifiers        |
| 2     | parameter | formal parameters                          |
| 3     | function  | PROC symbols and builtin procedures        |
| 4     | class     | TASK and MODULE symbols                    |
| 5     | property  | SEMA and BOLT symbols                      |
| 6     | label     | labels                                     |
| 7     | operator  | operators, operator keywords (AND, REM)    |
| 8     | string    | character and bit strings                  |
| 9     | number    | numeric literals                           |

The only modifier is ``declaration`` (bit 0), set on the defining
occurrence of a symbol.

Encoding
--------
Each token becomes five integers: line delta, start delta (relative to the
previous token when on the same line), length, type index, modifier bits.
"""

from typing import Optional

from pearl_lsp.language.scope import SymbolKind
from pearl_lsp.language.tokens import TRIVIA_KINDS, Token, TokenKind

TOKEN_TYPES = [
    "type",
    "variable",
    "parameter",
    "function",
    "class",
    "property",
    "label",
    "operator",
    "string",
    "number",
]
TOKEN_MODIFIERS = ["declaration"]

_TYPE_INDEX = {name: index for index, name in enumerate(TOKEN_TYPES)}
DECLARATION_BIT = 1

_TYPE_BY_SYMBOL_KIND = {
    SymbolKind.VAR: "variable",
    SymbolKind.PROC: "function",
    SymbolKind.TASK: "class",
    SymbolKind.MODULE: "class",
    SymbolKind.SEMA: "property",
    SymbolKind.BOLT: "property",
    SymbolKind.LABEL: "label",
}

_TYPE_BY_TOKEN_KIND = {
    TokenKind.OPERATOR: "operator",
    TokenKind.STRING: "string",
    TokenKind.BITSTRING: "string",
    TokenKind.NUMBER: "number",
}


def classify(token: Token) -> Optional[tuple[str, int]]:
    """
    Return (token type, modifier bits) for a token, or None to skip it.

    Comments, inactive lines, directives and macro expansions are skipped.
    """
    if token.kind in TRIVIA_KINDS or token.macro_value is not None:
        return None

    if token.kind == TokenKind.KEYWORD:
        return ("type", 0) if token.is_type_keyword() else None

    if token.kind == TokenKind.IDENTIFIER:
        symbol = token.definition
        if symbol is not None:
            modifiers = DECLARATION_BIT if symbol.name_token is token else 0
            if symbol.kind == SymbolKind.VAR and symbol.attributes.is_parameter:
                return "parameter", modifiers
            return _TYPE_BY_SYMBOL_KIND[symbol.kind], modifiers
        if token.builtin is not None:
            return "function", 0
        return "variable", 0

    token_type = _TYPE_BY_TOKEN_KIND.get(token.kind)
    return (token_type, 0) if token_type else None


def encode(tokens: list[Token]) -> list[int]:
    """
    Encode document tokens as the relative semantic token stream.

    Args:
        tokens: Tokens of one document, in document order
    """
    data: list[int] = []
    previous_line = 0
    previous_column = 0

    for token in sorted(tokens, key=lambda t: (t.line, t.column)):
        classification = classify(token)
        if classification is None or token.length == 0:
            continue
        token_type, modifiers = classification

        delta_line = token.line - previous_line
        delta_column = token.column - previous_column if delta_line == 0 else token.column
        data.extend([delta_line, delta_column, token.length, _TYPE_INDEX[token_type], modifiers])

        previous_line = token.line
        previous_column = token.column

    return data
