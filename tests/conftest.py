"""Pytest configuration and shared fixtures for supplier-sync tests."""

from pathlib import Path

import pytest

from supplier_sync.config import AppSettings, PathsSettings
from supplier_sync.context import RunContext
from supplier_sync.credentials import Credentials
from supplier_sync.recipes.models import Recipe


@pytest.fixture
def anyio_backend():
    return "asyncio"


class MemoryArchive:
    """Document archive keeping file contents in memory."""

    def __init__(self, known: set[bytes] | None = None):
        self.known = set(known or ())
        self.added: list[Path] = []

    def file_exists(self, path: Path) -> bool:
        return path.read_bytes() in self.known

    def add_file(self, path: Path) -> None:
        self.known.add(path.read_bytes())
        self.added.append(path)


@pytest.fixture
def archive() -> MemoryArchive:
    return MemoryArchive()


@pytest.fixture
def credentials() -> Credentials:
    return Credentials(id="acct-1", username="me@example.com", password="s3cret", totp="123456")


@pytest.fixture
def app_settings(tmp_path: Path) -> AppSettings:
    return AppSettings(paths=PathsSettings(documents_dir=str(tmp_path / "docs"), config_dir=str(tmp_path / "config")))


@pytest.fixture
def make_context(tmp_path: Path, archive: MemoryArchive, credentials: Credentials, app_settings: AppSettings):
    """Build a RunContext for a recipe with staging and store under tmp_path."""

    def _make(recipe: Recipe, **changes) -> RunContext:
        documents_dir = tmp_path / "docs" / recipe.supplier
        downloads_dir = documents_dir / "_tmp"
        downloads_dir.mkdir(parents=True, exist_ok=True)
        ctx = RunContext(
            recipe=recipe,
            credentials=credentials,
            archive=archive,
            settings=app_settings,
            downloads_dir=downloads_dir,
            documents_dir=documents_dir,
            config_dir=tmp_path / "config",
        )
        return ctx.evolve(**changes) if changes else ctx

    return _make
