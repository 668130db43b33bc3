"""
PEARL Language Server - Caches
==============================

Process-scoped stores shared between analysis runs.

IncludeFileCache
----------------
Contents of ``#include`` files keyed by absolute path. Each read compares the
file's current modification time with the cached one and re-reads on a
mismatch, so an edited include file is picked up on the next analysis.

DocumentStore
-------------
The latest analysis result per open document. A new result replaces the old
one in a single assignment, so readers see either the previous or the new
result. Closing a document forgets its result.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from pearl_lsp.errors import IncludeError
from pearl_lsp.uris import is_file_uri, uri_to_path

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CachedFile:
    """Content of a file together with the mtime it was read at."""
    path: Path
    mtime: float
    text: str


class IncludeFileCache:
    """mtime-validated cache of include file contents."""

    def __init__(self):
        self._entries: dict[Path, CachedFile] = {}
        self.hits = 0
        self.misses = 0

    def __contains__(self, path: Path) -> bool:
        return Path(path) in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def read(self, path: Path) -> str:
        """
        Return the UTF-8 text of ``path``, re-reading it if it changed.

        Raises:
            IncludeError: If the file is missing, unreadable or not UTF-8
        """
        path = Path(path)
        try:
            mtime = path.stat().st_mtime
        except FileNotFoundError:
            self._entries.pop(path, None)
            raise IncludeError(str(path), "file not found")
        except OSError as e:
            raise IncludeError(str(path), e.strerror or str(e))

        cached = self._entries.get(path)
        if cached is not None and cached.mtime == mtime:
            self.hits += 1
            logger.debug(f"Include cache hit: {path}")
            return cached.text

        self.misses += 1
        logger.debug(f"Include cache miss: {path}")
        try:
            text = path.read_text(encoding="utf-8")
        except PermissionError:
            raise IncludeError(str(path), "permission denied")
        except UnicodeDecodeError:
            raise IncludeError(str(path), "file is not valid UTF-8")
        except OSError as e:
            raise IncludeError(str(path), e.strerror or str(e))

        self._entries[path] = CachedFile(path, mtime, text)
        return text

    def invalidate(self, path: Path) -> None:
        self._entries.pop(Path(path), None)

    def clear(self) -> None:
        self._entries.clear()


class DocumentStore:
    """
    Latest analysis result per document URI.

    Example:
        store = DocumentStore(include_cache)
        store.put(uri, result)
        result = store.get(uri)
        store.forget(uri)       # on didClose
    """

    def __init__(self, include_cache: Optional[IncludeFileCache] = None):
        self.include_cache = include_cache if include_cache is not None else IncludeFileCache()
        self._results: dict = {}

    def __contains__(self, uri: str) -> bool:
        return uri in self._results

    def __len__(self) -> int:
        return len(self._results)

    def get(self, uri: str):
        return self._results.get(uri)

    def put(self, uri: str, result) -> None:
        self._results[uri] = result

    def uris(self) -> list[str]:
        return list(self._results)

    def forget(self, uri: str) -> None:
        """Drop the result of a closed document and its cached file content."""
        self._results.pop(uri, None)
        if is_file_uri(uri):
            self.include_cache.invalidate(uri_to_path(uri).resolve())
        logger.debug(f"Forgot document {uri}")
