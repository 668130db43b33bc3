"""
PEARL Language Front End
========================

Lexing, preprocessing and semantic analysis of PEARL source text.

Pipeline
--------
    source → Lexer (+ preprocessor, includes, macro expansion)
           → token list
           → SemanticAnalyzer (scope stack, block stack)
           → tokens linked to symbols, diagnostics, folding regions

Example Usage
-------------
    >>> from pearl_lsp.language import Lexer, SemanticAnalyzer
    >>> tokens = Lexer("MODULE M; MODEND;").tokenize()
    >>> SemanticAnalyzer(tokens).analyze()
"""

from pearl_lsp.language.tokens import Token, TokenKind, FoldingRegion, FoldingKind
from pearl_lsp.language.preprocessor import Macro, MacroTable, ConditionalState
from pearl_lsp.language.lexer import Lexer
from pearl_lsp.language.scope import Symbol, SymbolKind, Scope, ScopeArena
from pearl_lsp.language.analyzer import SemanticAnalyzer
from pearl_lsp.language.library import BuiltinProcedure, get_builtin

__all__ = [
    "Token",
    "TokenKind",
    "FoldingRegion",
    "FoldingKind",
    "Macro",
    "MacroTable",
    "ConditionalState",
    "Lexer",
    "Symbol",
    "SymbolKind",
    "Scope",
    "ScopeArena",
    "SemanticAnalyzer",
    "BuiltinProcedure",
    "get_builtin",
]
