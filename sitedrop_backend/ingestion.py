from __future__ import annotations

import asyncio
import os
import shutil
import threading
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Callable, Optional, Sequence

from .archive import ArchiveExtractor, is_archive_name
from .config import normalize_suffix
from .errors import InvalidInput, IOFailure, PathTraversal, SitedropError
from .logger_config import get_logger
from .security import is_safe_basename, safe_join
from .workspace import Workspace, WorkspaceStore, partial_path

log = get_logger(__name__)


@dataclass(frozen=True)
class UploadedFile:
    temp_path: Path
    original_name: str
    media_type: Optional[str] = None


@dataclass(frozen=True)
class FileOutcome:
    filename: str
    ok: bool
    action: Optional[str] = None  # "placed" or "extracted"
    error: Optional[str] = None
    message: Optional[str] = None
    entries: int = 0
    skipped: int = 0

    def as_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class IngestionReport:
    project_id: str
    outcomes: tuple[FileOutcome, ...]

    @property
    def succeeded(self) -> list[FileOutcome]:
        return [o for o in self.outcomes if o.ok]

    @property
    def failed(self) -> list[FileOutcome]:
        return [o for o in self.outcomes if not o.ok]

    @property
    def ok(self) -> bool:
        return not self.failed


def discard_temp(path: Path) -> None:
    try:
        Path(path).unlink(missing_ok=True)
    except OSError as e:
        log.warning("Could not remove staged upload %s: %s", path, e)


class IngestionPipeline:
    """Place one request's uploads into a single, already existing workspace.

    Archives (by declared filename suffix) are unpacked; everything else is
    moved into the workspace root under its original name. Each file succeeds
    or fails on its own and the report says which. Staged temp files never
    outlive the call.
    """

    def __init__(
        self,
        store: WorkspaceStore,
        extractor: ArchiveExtractor,
        allowed_suffixes: frozenset[str] = frozenset(),
        allowed_media_types: frozenset[str] = frozenset(),
    ) -> None:
        self.store = store
        self.extractor = extractor
        self.allowed_suffixes = frozenset(normalize_suffix(s) for s in allowed_suffixes)
        self.allowed_media_types = frozenset(t.strip().lower() for t in allowed_media_types)

    async def ingest(self, project_id: str, files: Sequence[UploadedFile]) -> IngestionReport:
        try:
            workspace = await asyncio.to_thread(self.store.resolve_workspace, project_id)
        except SitedropError:
            for upload in files:
                await asyncio.to_thread(discard_temp, upload.temp_path)
            raise

        stop = threading.Event()
        try:
            outcomes = await asyncio.gather(
                *(asyncio.to_thread(self.process_file, workspace, upload, stop.is_set) for upload in files)
            )
        except asyncio.CancelledError:
            # Worker threads cannot be interrupted; tell extractions to stop writing.
            stop.set()
            log.warning("Ingestion into %s cancelled", workspace.project_id)
            raise

        report = IngestionReport(project_id=workspace.project_id, outcomes=tuple(outcomes))
        log.info(
            "Ingested into %s: %d succeeded, %d failed",
            workspace.project_id,
            len(report.succeeded),
            len(report.failed),
        )
        return report

    def process_file(
        self,
        workspace: Workspace,
        upload: UploadedFile,
        should_stop: Optional[Callable[[], bool]] = None,
    ) -> FileOutcome:
        name = upload.original_name
        try:
            if is_archive_name(name):
                result = self.extractor.extract(upload.temp_path, workspace, should_stop, name=name)
                return FileOutcome(
                    filename=name,
                    ok=True,
                    action="extracted",
                    entries=result.entries_written,
                    skipped=len(result.skipped),
                )
            self._place(workspace, upload)
            return FileOutcome(filename=name, ok=True, action="placed", entries=1)
        except SitedropError as e:
            log.warning("Failed to ingest %r into %s: %s", name, workspace.project_id, e.code)
            return FileOutcome(filename=name, ok=False, error=e.code, message=e.public_message)
        except Exception:
            log.exception("Unexpected error ingesting %r into %s", name, workspace.project_id)
            return FileOutcome(filename=name, ok=False, error=IOFailure.code, message=IOFailure.default_message)
        finally:
            discard_temp(upload.temp_path)

    def is_allowed(self, name: str, media_type: Optional[str]) -> bool:
        if not self.allowed_suffixes and not self.allowed_media_types:
            return True
        if Path(name).suffix.lower() in self.allowed_suffixes:
            return True
        ct = (media_type or "").split(";")[0].strip().lower()
        return bool(ct) and ct in self.allowed_media_types

    def _place(self, workspace: Workspace, upload: UploadedFile) -> Path:
        name = upload.original_name
        if not name:
            raise InvalidInput("Missing filename")
        # Same rule archive entries get: a traversal attempt is refused, not renamed.
        if not is_safe_basename(name):
            log.warning("Rejected unsafe upload filename %r", name)
            raise PathTraversal("Unsafe filename")
        if not self.is_allowed(name, upload.media_type):
            raise InvalidInput("File type not allowed")

        target = safe_join(workspace.root, name)
        if target == workspace.root:
            raise PathTraversal("Unsafe filename")

        tmp = partial_path(workspace)
        try:
            shutil.move(str(upload.temp_path), str(tmp))
            os.replace(tmp, target)
        except OSError as e:
            tmp.unlink(missing_ok=True)
            log.error("Failed to place %r into %s: %s", name, workspace.project_id, e)
            raise IOFailure("Failed to store file") from e
        return target
