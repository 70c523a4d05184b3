"""Document archive gateway.

The engine only needs two operations from the archive: "is this content
already stored?" and "register this stored file". ``HashDocumentArchive`` is a
small default backed by SHA-256 content hashes kept in a JSON index file.
"""

import hashlib
import json
import logging
from pathlib import Path
from typing import Protocol

from .exceptions import ArchiveError
from .files import STAGING_DIR_NAME, atomic_write_text

logger = logging.getLogger(__name__)


class DocumentArchive(Protocol):
    """Deduplicating view over the persistent document store."""

    def file_exists(self, path: Path) -> bool:
        """Return True if the content of ``path`` is already archived."""
        ...

    def add_file(self, path: Path) -> None:
        """Register ``path``; raises ``ArchiveError`` on failure."""
        ...


def sha256_file(path: Path) -> str:
    digest = hashlib.sha256()
    with path.open("rb") as f:
        for chunk in iter(lambda: f.read(64 * 1024), b""):
            digest.update(chunk)
    return digest.hexdigest()


class HashDocumentArchive:
    """Content-addressed archive index.

    Usage:
        archive = HashDocumentArchive(index_path, documents_root)
        if not archive.file_exists(staged):
            ...copy into the document store...
            archive.add_file(stored)

    On first use the index is seeded from every file already present under
    ``documents_root`` (staging directories excluded), so documents copied by
    earlier runs are recognised even without an index file.
    """

    def __init__(self, index_path: Path, documents_root: Path):
        self.index_path = index_path
        self.documents_root = documents_root
        self._hashes: dict[str, str] | None = None

    def _load(self) -> dict[str, str]:
        if self._hashes is not None:
            return self._hashes

        hashes: dict[str, str] = {}
        if self.index_path.exists():
            try:
                hashes = json.loads(self.index_path.read_text(encoding="utf-8"))
            except (OSError, json.JSONDecodeError) as e:
                logger.warning(f"Ignoring unreadable archive index {self.index_path}: {e}")
                hashes = {}
        else:
            for path in self.documents_root.rglob("*"):
                if path.is_file() and STAGING_DIR_NAME not in path.relative_to(self.documents_root).parts:
                    hashes[sha256_file(path)] = str(path)
            logger.debug(f"Seeded archive index with {len(hashes)} documents")

        self._hashes = hashes
        return hashes

    def file_exists(self, path: Path) -> bool:
        return sha256_file(path) in self._load()

    def add_file(self, path: Path) -> None:
        hashes = self._load()
        try:
            hashes[sha256_file(path)] = str(path)
            atomic_write_text(self.index_path, json.dumps(hashes, indent=2))
        except OSError as e:
            raise ArchiveError(f"Could not add {path} to archive: {e}") from e
