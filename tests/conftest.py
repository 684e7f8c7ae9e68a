"""Shared pytest fixtures.

Provides:
- settings: Settings rooted in a per-test temporary directory
- store: initialized WorkspaceStore on that root
- extractor / pipeline: core components wired to the same settings
- client: TestClient with the app lifespan running
- make_upload: stage an UploadedFile on disk
- make_zip / make_tar: build small bundles on disk
"""
from __future__ import annotations

from itertools import count
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from server import create_app
from sitedrop_backend.archive import ArchiveExtractor, ArchiveLimits
from sitedrop_backend.config import Settings
from sitedrop_backend.ingestion import IngestionPipeline, UploadedFile
from sitedrop_backend.workspace import WorkspaceStore
from tests.helpers import tar_bytes, zip_bytes


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        storage_root=(tmp_path / "storage").resolve(),
        max_upload_bytes=1024 * 1024,
        max_archive_entries=50,
        max_archive_decompressed_bytes=256 * 1024,
    )


@pytest.fixture
def store(settings) -> WorkspaceStore:
    s = WorkspaceStore(settings.storage_root)
    s.initialize()
    return s


@pytest.fixture
def extractor(settings) -> ArchiveExtractor:
    return ArchiveExtractor(
        ArchiveLimits(
            max_entries=settings.max_archive_entries,
            max_total_bytes=settings.max_archive_decompressed_bytes,
        )
    )


@pytest.fixture
def pipeline(store, extractor) -> IngestionPipeline:
    return IngestionPipeline(store, extractor)


@pytest.fixture
def workspace(store):
    return store.create_workspace("alice-a1b2c3d4")


@pytest.fixture
def client(settings):
    app = create_app(settings)
    with TestClient(app) as c:
        yield c


@pytest.fixture
def staging_dir(tmp_path) -> Path:
    d = tmp_path / "staging"
    d.mkdir()
    return d


@pytest.fixture
def make_upload(staging_dir):
    counter = count()

    def _make(name: str, data: bytes, media_type: str | None = None) -> UploadedFile:
        temp_path = staging_dir / f"upload-{next(counter)}.tmp"
        temp_path.write_bytes(data)
        return UploadedFile(temp_path=temp_path, original_name=name, media_type=media_type)

    return _make


@pytest.fixture
def make_zip(staging_dir):
    counter = count()

    def _make(members: dict[str, bytes]) -> Path:
        path = staging_dir / f"bundle-{next(counter)}.zip"
        path.write_bytes(zip_bytes(members))
        return path

    return _make


@pytest.fixture
def make_tar(staging_dir):
    counter = count()

    def _make(members: dict[str, bytes], mode: str = "w:gz") -> Path:
        path = staging_dir / f"bundle-{next(counter)}.tar"
        path.write_bytes(tar_bytes(members, mode))
        return path

    return _make

