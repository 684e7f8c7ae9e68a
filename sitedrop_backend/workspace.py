from __future__ import annotations

import secrets
import threading
import time
from dataclasses import dataclass
from pathlib import Path

from .config import INCOMING_SUBDIR, PROJECTS_SUBDIR
from .errors import AlreadyExists, InvalidInput, IOFailure, NotFound, PathTraversal, StorageInitError
from .identifiers import IdentifierGenerator
from .logger_config import get_logger
from .security import is_valid_project_id, safe_join

log = get_logger(__name__)


@dataclass(frozen=True)
class Workspace:
    project_id: str
    root: Path
    created_at: float
    # In-flight writes live here, outside the public tree, on the same filesystem.
    staging_root: Path


def partial_path(workspace: Workspace) -> Path:
    """Scratch file for one write; os.replace() moves it into the workspace."""
    return workspace.staging_root / f"{secrets.token_hex(8)}.part"


class WorkspaceStore:
    """Sole owner of the `{storage_root}/projects/{project_id}` layout.

    Creation is serialized per identifier within the process: an allocation
    set guarded by a lock rejects repeats, and the directory itself is made
    with an exclusive mkdir so an existing directory is never reused.
    Workspaces are never deleted here.
    """

    def __init__(self, storage_root: Path) -> None:
        self.storage_root = Path(storage_root).resolve()
        self.projects_root = self.storage_root / PROJECTS_SUBDIR
        self.incoming_root = self.storage_root / INCOMING_SUBDIR
        self._lock = threading.Lock()
        self._allocated: set[str] = set()

    def initialize(self) -> None:
        try:
            self.projects_root.mkdir(parents=True, exist_ok=True)
            self.incoming_root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageInitError() from e
        log.info("Storage root ready at %s", self.storage_root)

    def _root_for(self, project_id: str) -> Path:
        try:
            return safe_join(self.projects_root, project_id)
        except PathTraversal:
            raise NotFound() from None

    def create_workspace(self, project_id: str) -> Workspace:
        if not is_valid_project_id(project_id):
            raise InvalidInput("Invalid project id")

        with self._lock:
            if project_id in self._allocated:
                raise AlreadyExists()
            self._allocated.add(project_id)

        root = self._root_for(project_id)
        try:
            root.mkdir(parents=True, exist_ok=False)
        except FileExistsError:
            # Stays in _allocated: the id is taken either way.
            raise AlreadyExists() from None
        except OSError as e:
            with self._lock:
                self._allocated.discard(project_id)
            log.error("Failed to create workspace %s: %s", project_id, e)
            raise IOFailure("Failed to create project directory") from e

        log.info("Created workspace %s", project_id)
        return Workspace(project_id=project_id, root=root, created_at=time.time(), staging_root=self.incoming_root)

    def allocate(self, username: str, generator: IdentifierGenerator, max_attempts: int = 5) -> Workspace:
        """Generate an id for `username` and create its workspace, retrying on collision."""
        for attempt in range(1, max_attempts + 1):
            project_id = generator.generate(username)
            try:
                return self.create_workspace(project_id)
            except AlreadyExists:
                log.warning("Project id collision on %s (attempt %d/%d)", project_id, attempt, max_attempts)
        raise AlreadyExists("Could not allocate a unique project id")

    def resolve_workspace(self, project_id: str) -> Workspace:
        # Syntax first: nothing below runs for ids that could traverse.
        if not is_valid_project_id(project_id):
            raise NotFound()
        root = self._root_for(project_id)
        try:
            st = root.stat()
        except FileNotFoundError:
            raise NotFound() from None
        except OSError as e:
            raise IOFailure() from e
        if not root.is_dir():
            raise NotFound()
        return Workspace(project_id=project_id, root=root, created_at=st.st_ctime, staging_root=self.incoming_root)

    def exists(self, project_id: str) -> bool:
        try:
            self.resolve_workspace(project_id)
        except NotFound:
            return False
        return True
