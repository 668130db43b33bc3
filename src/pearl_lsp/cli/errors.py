"""
Unified CLI Error Handling
==========================

Consistent error reporting and exit codes for pearl-lsp and pearl-check.
"""

import sys
import traceback
from enum import IntEnum
from typing import NoReturn

import click

from pearl_lsp.errors import PearlError


class ExitCode(IntEnum):
    """Standard exit codes for CLI tools."""
    SUCCESS = 0
    ANALYSIS_ERROR = 1   # At least one error-level diagnostic
    INVALID_ARGS = 2     # Invalid arguments, options or missing files
    INTERNAL_ERROR = 3   # Unexpected internal error


def handle_cli_exception(error: Exception, verbose: bool = False) -> NoReturn:
    """
    Report an exception raised by a CLI tool and exit.

    Args:
        error: The exception that was raised
        verbose: If True, print full traceback for internal errors

    Raises:
        SystemExit: Always exits with an appropriate exit code
    """
    if isinstance(error, PearlError):
        # Option errors carry their own "error:" formatting and hint
        click.echo(str(error), err=True)
        sys.exit(ExitCode.INVALID_ARGS)

    elif isinstance(error, (FileNotFoundError, PermissionError, UnicodeDecodeError)):
        click.echo(f"Error: {error}", err=True)
        sys.exit(ExitCode.INVALID_ARGS)

    else:
        click.echo(f"Internal error: {error}", err=True)
        if verbose:
            traceback.print_exc()
        sys.exit(ExitCode.INTERNAL_ERROR)
