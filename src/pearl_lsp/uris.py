"""Conversions between document URIs and filesystem paths."""

import sys
from pathlib import Path
from urllib.parse import unquote, urlparse


def uri_to_path(uri: str) -> Path:
    """Convert a ``file://`` URI to a filesystem path."""
    parsed = urlparse(uri)
    path = unquote(parsed.path)
    # On Windows, remove leading slash from /C:/path
    if sys.platform == "win32" and path.startswith("/") and len(path) > 2 and path[2] == ":":
        path = path[1:]
    return Path(path)


def path_to_uri(path) -> str:
    """Convert a filesystem path to a ``file://`` URI."""
    return Path(path).resolve().as_uri()


def is_file_uri(uri: str) -> bool:
    return uri.startswith("file://")
