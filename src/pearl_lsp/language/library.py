"""
PEARL Builtin Procedures
========================

Static table of the predefined procedures a PEARL program may call without
declaring them: numeric functions, string primitives and I/O helpers.

The analyzer consults this table only after ordinary scope lookup has
failed, and only for names in call position (followed by ``(`` or the target
of ``CALL``). Niladic builtins such as ``NOW`` are recognized anywhere.

Example:
    >>> proc = get_builtin("SQRT")
    >>> proc.signature
    'SQRT(x FLOAT) RETURNS(FLOAT)'
"""

from dataclasses import dataclass
from enum import Enum, auto
from typing import Optional


# =============================================================================
# Builtin Categories
# =============================================================================

class BuiltinCategory(Enum):
    """Functional group of a builtin procedure."""
    MATH = auto()       # numeric functions
    STRING = auto()     # character and bit string primitives
    TIME = auto()       # clock and date access
    IO = auto()         # dation helpers


# =============================================================================
# Builtin Definition
# =============================================================================

@dataclass(frozen=True)
class Parameter:
    """
    Description of a builtin parameter.

    Attributes:
        name: Parameter name as shown in signatures
        type_name: PEARL type of the parameter
    """
    name: str
    type_name: str

    def __str__(self) -> str:
        return f"{self.name} {self.type_name}"


@dataclass(frozen=True)
class BuiltinProcedure:
    """
    Definition of a predefined procedure.

    Attributes:
        name: Procedure name (upper case)
        description: One-line description
        category: Functional group
        parameters: Parameter descriptions in call order
        returns: Result type, or None for procedures without a result
        niladic: True if the name may be used without an argument list
    """
    name: str
    description: str
    category: BuiltinCategory
    parameters: tuple[Parameter, ...] = ()
    returns: Optional[str] = None
    niladic: bool = False

    @property
    def signature(self) -> str:
        """Return the signature in PEARL notation."""
        text = self.name
        if self.parameters:
            text += "(" + ", ".join(str(p) for p in self.parameters) + ")"
        if self.returns:
            text += f" RETURNS({self.returns})"
        return text


def _math(name: str, description: str) -> BuiltinProcedure:
    return BuiltinProcedure(
        name, description, BuiltinCategory.MATH,
        (Parameter("x", "FLOAT"),), "FLOAT",
    )


BUILTIN_PROCEDURES: tuple[BuiltinProcedure, ...] = (
    # -------------------------------------------------------------------------
    # Numeric functions
    # -------------------------------------------------------------------------
    _math("SQRT", "Square root"),
    _math("SIN", "Sine of an angle in radians"),
    _math("COS", "Cosine of an angle in radians"),
    _math("TAN", "Tangent of an angle in radians"),
    _math("ATAN", "Arc tangent, result in radians"),
    _math("EXP", "Exponential function e**x"),
    _math("LN", "Natural logarithm"),
    _math("TANH", "Hyperbolic tangent"),

    # -------------------------------------------------------------------------
    # String primitives
    # -------------------------------------------------------------------------
    BuiltinProcedure(
        "TOUPPER", "Convert a character to upper case", BuiltinCategory.STRING,
        (Parameter("c", "CHAR(1)"),), "CHAR(1)",
    ),
    BuiltinProcedure(
        "TOLOWER", "Convert a character to lower case", BuiltinCategory.STRING,
        (Parameter("c", "CHAR(1)"),), "CHAR(1)",
    ),
    BuiltinProcedure(
        "CHARLEN", "Length of a character string without trailing blanks",
        BuiltinCategory.STRING,
        (Parameter("s", "CHAR"),), "FIXED",
    ),
    BuiltinProcedure(
        "CHARPOS", "Position of a substring, 0 if absent", BuiltinCategory.STRING,
        (Parameter("s", "CHAR"), Parameter("sub", "CHAR")), "FIXED",
    ),
    BuiltinProcedure(
        "BITCOUNT", "Number of set bits in a bit string", BuiltinCategory.STRING,
        (Parameter("b", "BIT"),), "FIXED",
    ),

    # -------------------------------------------------------------------------
    # Clock and date
    # -------------------------------------------------------------------------
    BuiltinProcedure(
        "NOW", "Current time of day", BuiltinCategory.TIME,
        returns="CLOCK", niladic=True,
    ),
    BuiltinProcedure(
        "DATE", "Current date as text", BuiltinCategory.TIME,
        returns="CHAR(10)", niladic=True,
    ),

    # -------------------------------------------------------------------------
    # Dation helpers
    # -------------------------------------------------------------------------
    BuiltinProcedure(
        "ST", "Status of the last I/O operation on a dation", BuiltinCategory.IO,
        (Parameter("d", "DATION"),), "FIXED",
    ),
    BuiltinProcedure(
        "SOP", "Current position within a dation", BuiltinCategory.IO,
        (Parameter("d", "DATION"),), "FIXED",
    ),
    BuiltinProcedure(
        "FLUSH", "Write buffered output of a dation", BuiltinCategory.IO,
        (Parameter("d", "DATION"),),
    ),
)


# =============================================================================
# Lookup
# =============================================================================

_BUILTINS_BY_NAME: dict[str, BuiltinProcedure] = {
    proc.name: proc for proc in BUILTIN_PROCEDURES
}


def get_builtin(name: str) -> Optional[BuiltinProcedure]:
    """Look up a builtin procedure by its exact (upper case) name."""
    return _BUILTINS_BY_NAME.get(name)
