"""
PEARL Language Server - Configuration
=====================================

Analysis options and their construction from client settings. Options can
come from:
- Default values (defined here)
- The client's ``initializationOptions``
- ``workspace/didChangeConfiguration`` notifications
- ``pearl-check`` command-line options

Client settings live under the ``pearl`` section:

    {
        "pearl": {
            "predefinedMacros": {"DEBUG": "", "VERSION": "2"},
            "includeMode": "file",
            "logLevel": "debug"
        }
    }

``predefinedMacros`` may also be given as a list of ``NAME`` or
``NAME=VALUE`` strings, the same spelling ``pearl-check -D`` accepts.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional

from pearl_lsp.errors import AnalysisOptionsError

logger = logging.getLogger(__name__)

SETTINGS_SECTION = "pearl"

LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


class IncludeMode(Enum):
    """Directory that relative ``#include`` paths are resolved against."""
    FILE = "file"               # directory of the including document
    WORKSPACE = "workspace"     # workspace root folder


def parse_macro_definitions(items: Iterable[str]) -> dict[str, str]:
    """
    Parse ``NAME`` / ``NAME=VALUE`` strings into a macro mapping.

    Raises:
        AnalysisOptionsError: If an entry has no valid macro name
    """
    macros = {}
    for item in items:
        name, _, value = str(item).partition("=")
        name = name.strip()
        if not name or not (name[0].isalpha() and name.replace("_", "a").isalnum()):
            raise AnalysisOptionsError(
                f"invalid macro definition '{item}'",
                hint="use NAME or NAME=VALUE",
            )
        macros[name] = value.strip()
    return macros


@dataclass
class AnalysisOptions:
    """
    Options that shape a single analysis run.

    Attributes:
        predefined_macros: Macros seeded into the preprocessor before lexing
        include_mode: Base directory policy for relative include paths
        workspace_root: Workspace folder (used by IncludeMode.WORKSPACE)
        max_include_depth: Maximum nesting of #include files
        report_unused: Emit unused-symbol warnings
        log_level: Requested log level name, if any
    """

    predefined_macros: dict[str, str] = field(default_factory=dict)
    include_mode: IncludeMode = IncludeMode.FILE
    workspace_root: Optional[Path] = None
    max_include_depth: int = 10
    report_unused: bool = True
    log_level: Optional[str] = None

    # ═══════════════════════════════════════════════════════════════════════════
    # FACTORY METHODS
    # ═══════════════════════════════════════════════════════════════════════════

    @classmethod
    def from_settings(
        cls,
        settings: Optional[Mapping[str, Any]],
        workspace_root: Optional[Path] = None,
    ) -> "AnalysisOptions":
        """
        Create AnalysisOptions from client settings.

        Accepts either the whole settings object or just its ``pearl``
        section. Invalid values are logged and replaced by defaults.

        Args:
            settings: Settings mapping sent by the client (may be None)
            workspace_root: Root folder of the workspace, if known

        Returns:
            AnalysisOptions with values from the settings
        """
        options = cls(workspace_root=workspace_root)
        if not settings:
            return options

        section = settings.get(SETTINGS_SECTION, settings)
        if not isinstance(section, Mapping):
            logger.warning(f"Ignoring non-object '{SETTINGS_SECTION}' settings: {section!r}")
            return options

        # Predefined macros
        macros = section.get("predefinedMacros")
        if isinstance(macros, Mapping):
            options.predefined_macros = {
                str(name): "" if value is None else str(value)
                for name, value in macros.items()
            }
        elif isinstance(macros, (list, tuple)):
            try:
                options.predefined_macros = parse_macro_definitions(macros)
            except AnalysisOptionsError as e:
                logger.warning(f"Ignoring predefinedMacros: {e.message}")
        elif macros is not None:
            logger.warning(f"Ignoring predefinedMacros of type {type(macros).__name__}")

        # Include mode
        if mode := section.get("includeMode"):
            try:
                options.include_mode = IncludeMode(str(mode).lower())
            except ValueError:
                logger.warning(f"Unknown includeMode {mode!r}, using 'file'")

        # Log level
        if level := section.get("logLevel"):
            if str(level).lower() in LOG_LEVELS:
                options.log_level = str(level).lower()
            else:
                logger.warning(f"Unknown logLevel {level!r}")

        return options

    # ═══════════════════════════════════════════════════════════════════════════
    # HELPER METHODS
    # ═══════════════════════════════════════════════════════════════════════════

    def include_base(self, document_path: Optional[Path]) -> Path:
        """
        Return the directory relative include paths resolve against.

        Args:
            document_path: Path of the including document (None for
                in-memory sources)
        """
        if self.include_mode == IncludeMode.WORKSPACE and self.workspace_root:
            return Path(self.workspace_root)
        if document_path is not None:
            return document_path.parent
        if self.workspace_root:
            return Path(self.workspace_root)
        return Path.cwd()
