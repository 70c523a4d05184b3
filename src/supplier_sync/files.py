"""Filesystem helpers for staging and document directories."""

import logging
import os
import re
import shutil
import tempfile
import zipfile
from pathlib import Path

logger = logging.getLogger(__name__)

STAGING_DIR_NAME = "_tmp"


def _slugify_supplier(supplier: str) -> str:
    slug = re.sub(r"[^a-zA-Z0-9._-]+", "-", supplier.strip()).strip("-.")
    return slug or "supplier"


def init_supplier_directories(documents_root: Path, supplier: str) -> tuple[Path, Path]:
    """Create the staging and document directories for a supplier.

    Returns:
        (staging directory, document directory)
    """
    documents_dir = documents_root / _slugify_supplier(supplier)
    downloads_dir = documents_dir / STAGING_DIR_NAME
    downloads_dir.mkdir(parents=True, exist_ok=True)
    return downloads_dir, documents_dir


def truncate_directory(path: Path) -> None:
    """Delete everything inside ``path`` but keep the directory itself."""
    if not path.exists():
        return
    for entry in path.iterdir():
        if entry.is_dir() and not entry.is_symlink():
            shutil.rmtree(entry)
        else:
            entry.unlink()


def find_files(directory: Path, extension: str) -> list[Path]:
    """List regular files in ``directory`` (recursively) ending with ``extension``."""
    ext = extension.lower()
    return sorted(p for p in directory.rglob("*") if p.is_file() and p.name.lower().endswith(ext))


def unzip_file(source: Path, destination: Path) -> list[Path]:
    """Extract ``source`` into ``destination``, refusing members that escape it."""
    extracted: list[Path] = []
    root = destination.resolve()
    with zipfile.ZipFile(source) as archive:
        for member in archive.infolist():
            target = (destination / member.filename).resolve()
            if not target.is_relative_to(root):
                raise ValueError(f"Zip member {member.filename!r} escapes {destination}")
            if member.is_dir():
                target.mkdir(parents=True, exist_ok=True)
                continue
            target.parent.mkdir(parents=True, exist_ok=True)
            with archive.open(member) as src, target.open("wb") as dst:
                shutil.copyfileobj(src, dst)
            extracted.append(target)
    return extracted


def contained_path(directory: Path, name: str) -> Path:
    """Return ``directory / name``, refusing names that are not a plain file name inside ``directory``."""
    if not name or name in (".", "..") or Path(name).name != name:
        raise ValueError(f"File name {name!r} escapes {directory}")
    return directory / name


def copy_file(source: Path, destination: Path) -> int:
    """Copy ``source`` to ``destination``; returns the number of bytes copied."""
    destination.parent.mkdir(parents=True, exist_ok=True)
    shutil.copyfile(source, destination)
    return destination.stat().st_size


def atomic_write_text(path: Path, content: str, mode: int | None = None) -> None:
    """Atomically write text to `path` using temp + fsync + os.replace."""
    path.parent.mkdir(parents=True, exist_ok=True)

    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.tmp.", dir=path.parent)
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        if mode is not None:
            os.chmod(tmp_path, mode)
        os.replace(tmp_path, path)
    except BaseException:
        try:
            tmp_path.unlink(missing_ok=True)
        except OSError:
            pass
        raise
