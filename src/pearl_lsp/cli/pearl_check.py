"""
pearl-check - PEARL Batch Analyzer
==================================

Runs the same analysis the language server performs on a set of files and
prints the findings in compiler style:

    motor.p:12:5: error: undefined identifier 'SPEED'

Usage Examples
--------------
Check a file:
    $ pearl-check motor.p

With predefined macros:
    $ pearl-check -D SIMULATION -D VERSION=2 motor.p

Resolve includes against a project root:
    $ pearl-check --include-mode workspace --workspace . src/*.p

Exit status is 1 when any file has an error-level diagnostic.
"""

import sys
from pathlib import Path
from typing import Optional

import click

from pearl_lsp import __version__
from pearl_lsp.analysis import PearlAnalyzer
from pearl_lsp.cli.errors import ExitCode, handle_cli_exception
from pearl_lsp.config import AnalysisOptions, IncludeMode, parse_macro_definitions
from pearl_lsp.errors import DiagnosticCollector


# =============================================================================
# CLI Definition
# =============================================================================

@click.command()
@click.argument(
    "files",
    nargs=-1,
    required=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
)
@click.option(
    "-D", "--define",
    "defines",
    multiple=True,
    metavar="NAME[=VALUE]",
    help="Predefine a macro (can be repeated)",
)
@click.option(
    "--include-mode",
    type=click.Choice([m.value for m in IncludeMode], case_sensitive=False),
    default=IncludeMode.FILE.value,
    show_default=True,
    help="Resolve #include paths relative to the file or the workspace",
)
@click.option(
    "--workspace",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    help="Workspace root for --include-mode workspace (default: current directory)",
)
@click.option(
    "--no-hints",
    is_flag=True,
    help="Do not print hint-level diagnostics (inactive code)",
)
@click.option(
    "--no-unused",
    is_flag=True,
    help="Do not report unused declarations",
)
@click.option(
    "-v", "--verbose",
    is_flag=True,
    help="Verbose output",
)
@click.version_option(version=__version__, prog_name="pearl-check")
def main(
    files: tuple[Path, ...],
    defines: tuple[str, ...],
    include_mode: str,
    workspace: Optional[Path],
    no_hints: bool,
    no_unused: bool,
    verbose: bool,
) -> None:
    """
    Analyze PEARL source files and report diagnostics.

    FILES are the PEARL sources (.p) to check.

    \b
    Examples:
        pearl-check motor.p                  # Check one file
        pearl-check -D DEBUG motor.p         # With a predefined macro
        pearl-check --no-hints *.p           # Hide inactive-code hints
    """
    try:
        options = AnalysisOptions(
            predefined_macros=parse_macro_definitions(defines),
            include_mode=IncludeMode(include_mode.lower()),
            workspace_root=(workspace or Path.cwd()).resolve(),
            report_unused=not no_unused,
        )
        analyzer = PearlAnalyzer(options)
        collector = DiagnosticCollector()

        for path in files:
            if verbose:
                click.echo(f"Checking {path}...")
            result = analyzer.analyze_file(path)
            collector.extend(result.diagnostics)
    except Exception as e:
        handle_cli_exception(e, verbose)

    click.echo(collector.report(include_hints=not no_hints))

    if verbose:
        cache = analyzer.include_cache
        click.echo(f"Include cache: {cache.hits} hits, {cache.misses} misses")

    sys.exit(ExitCode.ANALYSIS_ERROR if collector.has_errors() else ExitCode.SUCCESS)


if __name__ == "__main__":
    main()
