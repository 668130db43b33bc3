"""
PEARL Symbols and Scopes
========================

Data structures for the semantic analyzer's symbol table.

Scope Arena
-----------
Scopes are kept in an arena (a list that only grows during a run) and the
open scopes are tracked by an index stack. Closing a scope pops an index and
remembers the scope as closed; the unused-symbol sweep runs over the closed
scopes later, so closing itself is O(1).

    arena.scopes:  [global, module M, proc P, begin]
    stack:         [0, 1, 2]          <- begin (3) already closed
    closed:        [3]

Lookup walks the stack from the innermost scope outwards and the first scope
that has the name wins, whatever kind of symbol it holds.
"""

from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Optional

from pearl_lsp.language.tokens import Token


# =============================================================================
# Symbol Kinds
# =============================================================================

class SymbolKind(Enum):
    VAR = auto()
    PROC = auto()
    TASK = auto()
    SEMA = auto()
    BOLT = auto()
    LABEL = auto()
    MODULE = auto()


# Type keywords that select a symbol kind other than VAR
KIND_BY_TYPE_KEYWORD = {
    "SEMA": SymbolKind.SEMA,
    "BOLT": SymbolKind.BOLT,
    "TASK": SymbolKind.TASK,
    "PROC": SymbolKind.PROC,
    "PROCEDURE": SymbolKind.PROC,
    "ENTRY": SymbolKind.PROC,
}


# =============================================================================
# Symbols
# =============================================================================

@dataclass
class TypeAttributes:
    """
    Declared attributes of a symbol.

    Attributes:
        type_name: Type as written ("FIXED(15)", "CHAR(20)", "STRUCT", a user type)
        dimensions: Number of array dimensions (0 for scalars)
        is_inv: Declared INV (constant)
        is_ref: Declared REF
        is_global: Declared GLOBAL (externally visible)
        is_init: Has an INIT/PRESET clause
        is_ident: Declared IDENT(...)
        is_parameter: Formal parameter of a PROC/TASK
        is_specification: Introduced by SPC/SPECIFY rather than DCL
        parameters: Formal parameters as written, for PROC headers
        returns: RETURNS type, for PROC headers
    """
    type_name: Optional[str] = None
    dimensions: int = 0
    is_inv: bool = False
    is_ref: bool = False
    is_global: bool = False
    is_init: bool = False
    is_ident: bool = False
    is_parameter: bool = False
    is_specification: bool = False
    parameters: list[str] = field(default_factory=list)
    returns: Optional[str] = None

    def describe(self) -> str:
        """Return the attributes in declaration order, e.g. 'INV FIXED(15)'."""
        parts = []
        if self.dimensions:
            parts.append("(" + ",".join("*" * self.dimensions) + ")")
        if self.is_inv:
            parts.append("INV")
        if self.is_ref:
            parts.append("REF")
        if self.is_ident:
            parts.append("IDENT")
        if self.type_name:
            parts.append(self.type_name)
        if self.parameters:
            parts.append("(" + ", ".join(self.parameters) + ")")
        if self.returns:
            parts.append(f"RETURNS({self.returns})")
        if self.is_global:
            parts.append("GLOBAL")
        if self.is_init:
            parts.append("INIT(...)")
        return " ".join(parts)


@dataclass(eq=False)
class Symbol:
    """
    One declared name.

    Attributes:
        name_token: The defining occurrence
        kind: What the name denotes
        attributes: Declared type attributes
        used: Set once any reference resolves to this symbol
    """
    name_token: Token
    kind: SymbolKind
    attributes: TypeAttributes = field(default_factory=TypeAttributes)
    used: bool = False

    def __repr__(self) -> str:
        return f"Symbol({self.kind.name}, {self.name!r}, {self.name_token.line}:{self.name_token.column})"

    @property
    def name(self) -> str:
        return self.name_token.text

    def mark_used(self) -> None:
        self.used = True

    def describe(self) -> str:
        """One-line declaration summary, e.g. 'DCL X INV FIXED'."""
        attributes = self.attributes.describe()
        if self.kind == SymbolKind.VAR:
            prefix = "parameter" if self.attributes.is_parameter else (
                "SPC" if self.attributes.is_specification else "DCL"
            )
        else:
            prefix = self.kind.name
        return f"{prefix} {self.name} {attributes}".rstrip()


# =============================================================================
# Scopes
# =============================================================================

class Scope:
    """A mapping from name to Symbol for one block."""

    def __init__(self, index: int, keyword: Optional[str] = None):
        self.index = index
        self.keyword = keyword
        self.symbols: dict[str, Symbol] = {}

    def __contains__(self, name: str) -> bool:
        return name in self.symbols

    def __iter__(self):
        return iter(self.symbols.values())

    def __len__(self) -> int:
        return len(self.symbols)

    def lookup(self, name: str) -> Optional[Symbol]:
        return self.symbols.get(name)

    def declare(self, symbol: Symbol) -> Optional[Symbol]:
        """
        Insert a symbol.

        Returns:
            The symbol already declared under that name (nothing is inserted
            then), or None on success
        """
        existing = self.symbols.get(symbol.name)
        if existing is not None:
            return existing
        self.symbols[symbol.name] = symbol
        return None

    def replace(self, symbol: Symbol) -> None:
        self.symbols[symbol.name] = symbol

    def unused_symbols(self) -> list[Symbol]:
        """Symbols never referenced and not externally visible."""
        return [
            symbol for symbol in self.symbols.values()
            if not symbol.used and not symbol.attributes.is_global
        ]


class ScopeArena:
    """Arena of scope records plus the stack of open scope indices."""

    def __init__(self):
        self.scopes: list[Scope] = [Scope(0)]
        self._stack: list[int] = [0]
        self._closed: list[int] = []

    @property
    def global_scope(self) -> Scope:
        return self.scopes[0]

    @property
    def current(self) -> Scope:
        return self.scopes[self._stack[-1]]

    @property
    def depth(self) -> int:
        """Number of open scopes, the global scope included."""
        return len(self._stack)

    def at_level(self, level: int) -> Scope:
        """Return the open scope at stack position ``level`` (0 = global)."""
        return self.scopes[self._stack[level]]

    def push(self, keyword: Optional[str] = None) -> Scope:
        scope = Scope(len(self.scopes), keyword)
        self.scopes.append(scope)
        self._stack.append(scope.index)
        return scope

    def pop(self) -> Scope:
        """
        Close the innermost scope.

        Raises:
            IndexError: If only the global scope is open
        """
        if len(self._stack) == 1:
            raise IndexError("cannot close the global scope")
        index = self._stack.pop()
        self._closed.append(index)
        return self.scopes[index]

    def lookup(self, name: str) -> Optional[Symbol]:
        """Find ``name`` from the innermost open scope outwards."""
        for index in reversed(self._stack):
            symbol = self.scopes[index].lookup(name)
            if symbol is not None:
                return symbol
        return None

    def visible_symbols(self) -> dict[str, Symbol]:
        """All names visible from the innermost scope (inner names shadow)."""
        visible: dict[str, Symbol] = {}
        for index in self._stack:
            visible.update(self.scopes[index].symbols)
        return visible

    def take_closed(self) -> list[Scope]:
        """Return the scopes closed since the last call, oldest first."""
        closed = [self.scopes[index] for index in self._closed]
        self._closed.clear()
        return closed


# =============================================================================
# Block Frames
# =============================================================================

@dataclass
class BlockFrame:
    """
    An open structured-statement region.

    The analyzer keeps a root frame (keyword None) paired with the global
    scope, so the frame stack and the scope stack always have equal length.

    Attributes:
        keyword: Opening construct (MODULE, PROC, TASK, BEGIN, REPEAT, IF, CASE)
        opening_token: Token that opened the block
        symbol: Symbol declared by the header (MODULE/PROC/TASK)
        goto_targets: GOTO target tokens seen inside a PROC/TASK body (on the
            root frame, unresolved GOTOs outside any body)
    """
    keyword: Optional[str]
    opening_token: Optional[Token] = None
    symbol: Optional[Symbol] = None
    goto_targets: list[Token] = field(default_factory=list)

    @property
    def is_body(self) -> bool:
        """True for PROC/TASK frames, which own labels and GOTO targets."""
        return self.keyword in ("PROC", "TASK")
