"""
PEARL Preprocessor State
========================

Macro table, conditional-compilation state and directive parsing used by the
lexer. The lexer owns the scanning loop and calls in here whenever a line
starts with ``#``.

Supported Directives
--------------------
#define NAME [value]        - Define a macro (redefinition is an error)
#undef NAME                 - Remove a macro (warning if undefined)
#include "file"             - Lex another file in place
#ifdef NAME                 - Active if NAME is defined
#ifndef NAME                - Active if NAME is not defined
#else                       - Invert the innermost condition
#endif                      - Close the innermost condition

Conditional State
-----------------
Each ``#ifdef``/``#ifndef`` pushes the logical AND of its own outcome and the
enclosing state, so a line is active only if every enclosing condition holds.
``#else`` inverts the innermost raw outcome and recombines it with the
enclosing state.

Macros live in their own namespace; they never appear in the symbol table.

Example
-------
>>> macros = MacroTable({"DEBUG": ""})
>>> "DEBUG" in macros
True
>>> substitute_macros("inc/VERSION.p", MacroTable({"VERSION": "v2"}))
'inc/v2.p'
"""

import re
from dataclasses import dataclass
from typing import Optional

from pearl_lsp.errors import PreprocessorError, SourceLocation


# =============================================================================
# Directive Patterns
# =============================================================================

# Pattern for identifying the directive name
DIRECTIVE_PATTERN = re.compile(r'^#\s*([A-Za-z_]\w*)?')

# Pattern for #define with optional value
DEFINE_PATTERN = re.compile(r'^#\s*define\s+([A-Za-z]\w*)(?:\s+(.*?))?\s*$')

# Pattern for #undef
UNDEF_PATTERN = re.compile(r'^#\s*undef\s+([A-Za-z]\w*)\s*$')

# Pattern for #ifdef/#ifndef
CONDITION_PATTERN = re.compile(r'^#\s*(?:ifdef|ifndef)\s+([A-Za-z]\w*)\s*$')

# Pattern for #include "path", #include <path> or #include path
INCLUDE_PATTERN = re.compile(r'^#\s*include\s+(?:"([^"]*)"|<([^>]*)>|(\S+))\s*$')

# Pattern for identifier (for macro substitution in include paths)
IDENTIFIER_PATTERN = re.compile(r'\b([A-Za-z]\w*)\b')

CONDITIONAL_DIRECTIVES = frozenset({"ifdef", "ifndef", "else", "endif"})
KNOWN_DIRECTIVES = CONDITIONAL_DIRECTIVES | {"define", "undef", "include"}

# Maximum nested substitutions inside an include path
MAX_SUBSTITUTION_PASSES = 16


# =============================================================================
# Macros
# =============================================================================

@dataclass
class Macro:
    """
    A preprocessor macro.

    Attributes:
        name: Macro name
        value: Replacement text
        location: Where the macro was defined (None for predefined macros)
    """
    name: str
    value: str
    location: Optional[SourceLocation] = None

    @property
    def is_predefined(self) -> bool:
        """Return True if the macro came from configuration, not source."""
        return self.location is None


class MacroTable:
    """
    The preprocessor-only namespace of macro names.

    One table is shared by a document and every file it includes, so a
    ``#define`` in an include file is visible after the ``#include`` line.
    """

    def __init__(self, predefined: Optional[dict[str, str]] = None):
        self._macros: dict[str, Macro] = {}
        for name, value in (predefined or {}).items():
            self._macros[name] = Macro(name, value)

    def __contains__(self, name: str) -> bool:
        return name in self._macros

    def __len__(self) -> int:
        return len(self._macros)

    def get(self, name: str) -> Optional[Macro]:
        return self._macros.get(name)

    def names(self) -> list[str]:
        return sorted(self._macros)

    def define(self, name: str, value: str, location: SourceLocation) -> Macro:
        """
        Record a macro.

        Raises:
            PreprocessorError: If ``name`` is already defined
        """
        existing = self._macros.get(name)
        if existing is not None:
            hint = None
            if existing.location is not None:
                hint = f"'{name}' was first defined at {existing.location}"
            else:
                hint = f"'{name}' is predefined by the configuration"
            raise PreprocessorError(f"macro '{name}' is already defined", location, hint)

        macro = Macro(name, value, location)
        self._macros[name] = macro
        return macro

    def undefine(self, name: str) -> bool:
        """Remove a macro. Returns False if it was not defined."""
        return self._macros.pop(name, None) is not None


def unquote_value(value: str) -> str:
    """Strip one pair of surrounding double quotes from a #define value."""
    value = value.strip()
    if len(value) >= 2 and value[0] == '"' and value[-1] == '"':
        return value[1:-1]
    return value


def strip_directive_comment(line: str) -> str:
    """Remove a trailing ``!`` comment that is not inside quotes."""
    quote = None
    for i, char in enumerate(line):
        if quote:
            if char == quote:
                quote = None
        elif char in "'\"":
            quote = char
        elif char == "!":
            return line[:i].rstrip()
    return line.rstrip()


def substitute_macros(text: str, macros: MacroTable) -> str:
    """Replace every macro name inside ``text`` by its value."""
    for _ in range(MAX_SUBSTITUTION_PASSES):
        changed = False

        def replace(match: re.Match) -> str:
            nonlocal changed
            macro = macros.get(match.group(1))
            if macro is None:
                return match.group(0)
            changed = True
            return macro.value

        text = IDENTIFIER_PATTERN.sub(replace, text)
        if not changed:
            break
    return text


# =============================================================================
# Directive Parsing
# =============================================================================

@dataclass(frozen=True)
class Directive:
    """
    A parsed ``#`` line.

    Attributes:
        name: Directive name in lower case ("define", "include", ...)
        name_arg: Macro name for define/undef/ifdef/ifndef
        value: Replacement text for define, path for include
        negated: True for #ifndef
    """
    name: str
    name_arg: Optional[str] = None
    value: Optional[str] = None
    negated: bool = False


def directive_name(line: str) -> str:
    """Return the lower-cased directive name of a ``#`` line ('' if missing)."""
    match = DIRECTIVE_PATTERN.match(line)
    if not match or match.group(1) is None:
        return ""
    return match.group(1).lower()


def parse_directive(line: str, location: SourceLocation) -> Directive:
    """
    Parse a directive line (starting at its ``#``).

    Raises:
        PreprocessorError: If the directive is unknown or malformed
    """
    text = strip_directive_comment(line)
    name = directive_name(text)

    if name not in KNOWN_DIRECTIVES:
        shown = f"#{name}" if name else "#"
        raise PreprocessorError(
            f"unrecognized preprocessor directive '{shown}'",
            location,
            hint="supported: #define, #undef, #include, #ifdef, #ifndef, #else, #endif",
        )

    if name == "define":
        match = DEFINE_PATTERN.match(text)
        if not match:
            raise PreprocessorError("invalid #define syntax", location,
                                    hint="expected '#define NAME [value]'")
        return Directive(name, match.group(1), unquote_value(match.group(2) or ""))

    if name == "undef":
        match = UNDEF_PATTERN.match(text)
        if not match:
            raise PreprocessorError("invalid #undef syntax", location,
                                    hint="expected '#undef NAME'")
        return Directive(name, match.group(1))

    if name in ("ifdef", "ifndef"):
        match = CONDITION_PATTERN.match(text)
        if not match:
            raise PreprocessorError(f"invalid #{name} syntax", location,
                                    hint=f"expected '#{name} NAME'")
        return Directive(name, match.group(1), negated=(name == "ifndef"))

    if name == "include":
        match = INCLUDE_PATTERN.match(text)
        if not match:
            raise PreprocessorError("invalid #include syntax", location,
                                    hint="expected '#include \"file\"'")
        path = next(group for group in match.groups() if group is not None)
        return Directive(name, value=path)

    # else / endif take no arguments; trailing text is ignored
    return Directive(name)


# =============================================================================
# Conditional Compilation State
# =============================================================================

class ConditionalState:
    """
    Stack of conditional-compilation states.

    ``_active`` holds the combined state (AND of all enclosing outcomes);
    ``_conditions`` is the companion stack of raw outcomes that ``#else``
    inverts.
    """

    def __init__(self):
        self._active: list[bool] = []
        self._conditions: list[bool] = []
        self._openers: list = []

    @property
    def active(self) -> bool:
        """True if lines at the current position are compiled."""
        return self._active[-1] if self._active else True

    @property
    def depth(self) -> int:
        return len(self._active)

    def _outer(self) -> bool:
        return self._active[-2] if len(self._active) > 1 else True

    def push(self, condition: bool, opener) -> None:
        self._active.append(self.active and condition)
        self._conditions.append(condition)
        self._openers.append(opener)

    def invert(self, location: SourceLocation) -> None:
        """
        Handle ``#else``.

        Raises:
            PreprocessorError: If no conditional is open
        """
        if not self._conditions:
            raise PreprocessorError("#else without matching #ifdef/#ifndef", location)
        condition = not self._conditions[-1]
        self._conditions[-1] = condition
        self._active[-1] = self._outer() and condition

    def pop(self, location: SourceLocation):
        """
        Handle ``#endif``; returns the token that opened the conditional.

        Raises:
            PreprocessorError: If no conditional is open
        """
        if not self._active:
            raise PreprocessorError("#endif without matching #ifdef/#ifndef", location)
        self._active.pop()
        self._conditions.pop()
        return self._openers.pop()

    def unclosed(self) -> list:
        """Return the opening tokens of conditionals still open."""
        return list(self._openers)
