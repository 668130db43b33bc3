"""
PEARL Tokens and Keyword Tables
===============================

Token model shared by the lexer, the semantic analyzer and the editor
features.

A ``Token`` is immutable once the lexer has created it. The analyzer attaches
what it learns about a token (the symbol it resolves to, the builtin it
names) to the token's ``TokenLinks`` record, which is the only mutable part.

Keyword Tables
--------------
Identifiers are classified against four disjoint tables:

| Table              | Examples                         | Token kind |
|--------------------|----------------------------------|------------|
| RESERVED_KEYWORDS  | MODULE, PROC, IF, DCL, ACTIVATE  | KEYWORD    |
| TYPE_KEYWORDS      | FIXED, FLOAT, CHAR, SEMA, BOLT   | KEYWORD    |
| OPERATOR_KEYWORDS  | AND, OR, NOT, REM, ENTIER        | OPERATOR   |
| (anything else)    | Counter, Motor_1                 | IDENTIFIER |

Keywords are case sensitive and spelled in upper case.

Folding regions are recorded next to the tokens they span; both the lexer
(comments, conditional blocks) and the analyzer (matched blocks) add them.
"""

from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Optional

from pearl_lsp.errors import SourceLocation


# =============================================================================
# Token Kind Enumeration
# =============================================================================

class TokenKind(Enum):
    """Lexical category of a token."""

    KEYWORD = auto()            # reserved and type-introducing keywords
    IDENTIFIER = auto()         # user names
    NUMBER = auto()             # 42, 3.14, 1.5E-3, 15(31)
    STRING = auto()             # 'text'
    BITSTRING = auto()          # '1010'B1, 'FF'B4
    OPERATOR = auto()           # := + <= AND REM ...
    SYMBOL = auto()             # ( ) , ; : . [ ]
    COMMENT = auto()            # ! line comment, /* block comment */
    INACTIVE = auto()           # a physical line switched off by #ifdef/#else
    MACRO_EXPANSION = auto()    # marker for a macro reference, precedes its expansion
    DIRECTIVE = auto()          # a #define/#include/... line
    ERROR = auto()              # illegal character


# Kinds the semantic analyzer never looks at
TRIVIA_KINDS = frozenset({
    TokenKind.COMMENT,
    TokenKind.INACTIVE,
    TokenKind.MACRO_EXPANSION,
    TokenKind.DIRECTIVE,
})

# Kinds that carry literal values (no hover, no go-to-definition)
LITERAL_KINDS = frozenset({
    TokenKind.NUMBER,
    TokenKind.STRING,
    TokenKind.BITSTRING,
})


# =============================================================================
# Keyword Tables
# =============================================================================

RESERVED_KEYWORDS = frozenset({
    # Module structure
    "MODULE", "SHELLMODULE", "MODEND", "SYSTEM", "PROBLEM",
    # Procedures and tasks
    "PROC", "PROCEDURE", "TASK", "RETURNS", "RETURN", "CALL",
    "GLOBAL", "RESIDENT", "REENTRANT", "MAIN", "PRIO", "PRIORITY",
    # Blocks and control flow
    "BEGIN", "END", "REPEAT", "FOR", "FROM", "BY", "TO", "WHILE",
    "IF", "THEN", "ELSE", "FIN", "CASE", "ALT", "OUT", "GOTO", "EXIT",
    # Declarations
    "DCL", "DECLARE", "SPC", "SPECIFY", "INIT", "PRESET", "INV", "REF",
    "IDENT", "TYPE", "STRUCT", "LENGTH",
    # Task control and scheduling
    "ACTIVATE", "TERMINATE", "PREVENT", "SUSPEND", "CONTINUE", "RESUME",
    "AT", "AFTER", "ALL", "EVERY", "DURING", "UNTIL", "WHEN",
    # Synchronisation
    "REQUEST", "RELEASE", "SEMASET", "ENTER", "LEAVE", "RESERVE", "FREE",
    # Signals and interrupts
    "ON", "INDUCE", "TRIGGER", "ENABLE", "DISABLE", "RST",
    # Input/output
    "OPEN", "CLOSE", "PUT", "GET", "READ", "WRITE", "TAKE", "SEND",
    "CONVERT", "FORMAT",
    # Time units and constants
    "SEC", "MIN", "HRS", "NIL",
})

TYPE_KEYWORDS = frozenset({
    "FIXED", "FLOAT", "BIT", "CHAR", "CHARACTER", "CLOCK", "DURATION", "DUR",
    "SEMA", "BOLT", "DATION", "INTERRUPT", "IRPT", "SIGNAL", "ENTRY",
})

OPERATOR_KEYWORDS = frozenset({
    "AND", "OR", "NOT", "EXOR", "REM", "ABS", "SIGN", "ENTIER", "ROUND",
    "FIT", "LWB", "UPB", "SIZEOF", "SHIFT", "CSHIFT", "CAT",
    "LT", "LE", "GT", "GE", "EQ", "NE", "IS", "ISNT",
    "TOFIXED", "TOFLOAT", "TOBIT", "TOCHAR", "TRY", "CONT",
})

ALL_KEYWORDS = RESERVED_KEYWORDS | TYPE_KEYWORDS | OPERATOR_KEYWORDS


def classify_word(word: str) -> TokenKind:
    """Classify an identifier-shaped word against the keyword tables."""
    if word in RESERVED_KEYWORDS or word in TYPE_KEYWORDS:
        return TokenKind.KEYWORD
    if word in OPERATOR_KEYWORDS:
        return TokenKind.OPERATOR
    return TokenKind.IDENTIFIER


# =============================================================================
# Operator Tables
# =============================================================================

# Longest match first. The arrows are only recognized in the SYSTEM part.
THREE_CHAR_OPERATORS = ("<->",)
TWO_CHAR_OPERATORS = (":=", "<=", ">=", "==", "/=", "<>", "><", "//", "**", "->", "<-")
ONE_CHAR_OPERATORS = "+-*/<>="
SYMBOL_CHARS = "()[],;:."

SYSTEM_ONLY_OPERATORS = frozenset({"<->", "->", "<-"})


class Section(Enum):
    """Which part of a module the lexer is in; toggled by SYSTEM/PROBLEM."""
    PROBLEM = auto()
    SYSTEM = auto()


# =============================================================================
# Token Data Classes
# =============================================================================

@dataclass
class TokenLinks:
    """
    Mutable annotations attached to a token by later passes.

    Attributes:
        definition: Symbol this token refers to (set at most once)
        builtin: Builtin procedure this token names
        macro_value: Replacement text if the token stems from a macro reference
        macro: The Macro record for a macro reference
    """
    definition: Optional[object] = None
    builtin: Optional[object] = None
    macro_value: Optional[str] = None
    macro: Optional[object] = None


@dataclass(frozen=True)
class Token:
    """
    A single lexical element.

    Tokens produced from an included file carry that file's ``uri``. Tokens
    produced by macro expansion carry the position of the macro reference
    they replace.

    Attributes:
        kind: The TokenKind classification
        text: Source text (or replacement text for expanded tokens)
        uri: Document the token belongs to
        line: Line number (0-based)
        column: Column number (0-based)
        offset: Character offset from the start of the document
        length: Number of source characters covered
    """
    kind: TokenKind
    text: str
    uri: str
    line: int
    column: int
    offset: int
    length: int
    links: TokenLinks = field(default_factory=TokenLinks, compare=False, repr=False)

    def __repr__(self) -> str:
        return f"Token({self.kind.name}, {self.text!r}, {self.line}:{self.column})"

    @property
    def location(self) -> SourceLocation:
        return SourceLocation(self.uri, self.line, self.column)

    @property
    def definition(self):
        return self.links.definition

    @property
    def builtin(self):
        return self.links.builtin

    @property
    def macro_value(self) -> Optional[str]:
        return self.links.macro_value

    def link(self, symbol) -> None:
        """Attach the symbol this token refers to; later links are ignored."""
        if self.links.definition is None:
            self.links.definition = symbol

    def is_keyword(self, *words: str) -> bool:
        """Return True if this is a keyword token spelled as one of ``words``."""
        return self.kind == TokenKind.KEYWORD and self.text in words

    def is_symbol(self, *chars: str) -> bool:
        return self.kind == TokenKind.SYMBOL and self.text in chars

    def is_operator(self, *ops: str) -> bool:
        return self.kind == TokenKind.OPERATOR and self.text in ops

    def is_type_keyword(self) -> bool:
        return self.kind == TokenKind.KEYWORD and self.text in TYPE_KEYWORDS

    def covers(self, offset: int) -> bool:
        """Return True if ``offset`` lies within this token's span."""
        return self.offset <= offset < self.offset + max(self.length, 1)


# =============================================================================
# Folding Regions
# =============================================================================

class FoldingKind(Enum):
    COMMENT = "comment"     # multi-line /* */ comment
    REGION = "region"       # matched block opener/closer
    PREPROC = "preproc"     # #ifdef ... #endif


@dataclass(frozen=True)
class FoldingRegion:
    """
    A foldable line range recorded by the lexer or the analyzer.

    Attributes:
        uri: Document the range belongs to
        start_line: First line (0-based)
        end_line: Last line (0-based, inclusive)
        kind: What produced the range
        label: Optional collapsed-text label (e.g. the opening keyword)
    """
    uri: str
    start_line: int
    end_line: int
    kind: FoldingKind
    label: Optional[str] = None
