"""
pearl-lsp - PEARL Language Server Command-Line Interface
========================================================

Starts the PEARL language server. Editors normally launch it over stdio;
TCP mode is useful when attaching a debugger to the server process.

Usage Examples
--------------
Run over stdio (what an editor extension does):
    $ pearl-lsp

Listen on a TCP port:
    $ pearl-lsp --tcp --port 2087

Debug logging to a file:
    $ pearl-lsp -v --log-file /tmp/pearl-lsp.log
"""

import logging
import sys
from pathlib import Path
from typing import Optional

import click

from pearl_lsp import __version__
from pearl_lsp.cli.errors import handle_cli_exception

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(verbose: bool, log_file: Optional[Path]) -> None:
    """
    Configure the root logger.

    stdout carries the protocol in stdio mode, so log output goes to stderr
    unless a file is given.
    """
    if log_file is not None:
        handler: logging.Handler = logging.FileHandler(log_file, encoding="utf-8")
    else:
        handler = logging.StreamHandler(sys.stderr)
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT,
        handlers=[handler],
        force=True,
    )


# =============================================================================
# CLI Definition
# =============================================================================

@click.command()
@click.option(
    "--tcp",
    is_flag=True,
    help="Listen on a TCP socket instead of stdio",
)
@click.option(
    "--host",
    default="127.0.0.1",
    show_default=True,
    help="Host to bind in TCP mode",
)
@click.option(
    "--port",
    type=click.IntRange(1, 65535),
    default=2087,
    show_default=True,
    help="Port to listen on in TCP mode",
)
@click.option(
    "-v", "--verbose",
    is_flag=True,
    help="Debug logging",
)
@click.option(
    "--log-file",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Write the log to a file instead of stderr",
)
@click.version_option(version=__version__, prog_name="pearl-lsp")
def main(
    tcp: bool,
    host: str,
    port: int,
    verbose: bool,
    log_file: Optional[Path],
) -> None:
    """
    Run the PEARL language server.

    \b
    Features:
        - Diagnostics (syntax, undefined names, block structure, unused)
        - Hover, go-to-definition, completion
        - Folding ranges and semantic tokens
        - Preprocessor (#define, #ifdef, #include) aware
    """
    configure_logging(verbose, log_file)

    try:
        from pearl_lsp.server.server import server

        if tcp:
            logging.getLogger(__name__).info(f"Listening on {host}:{port}")
            server.start_tcp(host, port)
        else:
            server.start_io()
    except Exception as e:
        handle_cli_exception(e, verbose)


if __name__ == "__main__":
    main()
