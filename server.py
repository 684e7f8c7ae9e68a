from __future__ import annotations

import uuid
from contextlib import asynccontextmanager
from pathlib import Path
from typing import List, Optional

from fastapi import FastAPI, File, Form, Request, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel

from sitedrop_backend.archive import ArchiveExtractor, ArchiveLimits
from sitedrop_backend.config import Settings, load_settings
from sitedrop_backend.errors import InvalidInput, IOFailure, SitedropError, UploadTooLarge
from sitedrop_backend.identifiers import IdentifierGenerator
from sitedrop_backend.ingestion import FileOutcome, IngestionPipeline, UploadedFile, discard_temp
from sitedrop_backend.logger_config import get_logger, setup_logging
from sitedrop_backend.workspace import WorkspaceStore

log = get_logger(__name__)

STAGING_CHUNK_SIZE = 1024 * 1024


class CreateProjectRequest(BaseModel):
    username: Optional[str] = None
    projectName: Optional[str] = None


def _stage_upload(upload: UploadFile, incoming_root: Path, max_bytes: int) -> Path:
    """Copy one multipart part to a staging file, enforcing the size limit."""
    dest = incoming_root / f"{uuid.uuid4().hex}.upload"
    written = 0
    try:
        with open(dest, "wb") as out:
            while True:
                chunk = upload.file.read(STAGING_CHUNK_SIZE)
                if not chunk:
                    break
                written += len(chunk)
                if written > max_bytes:
                    raise UploadTooLarge()
                out.write(chunk)
    except OSError as e:
        dest.unlink(missing_ok=True)
        raise IOFailure("Failed to receive file") from e
    except BaseException:
        dest.unlink(missing_ok=True)
        raise
    return dest


def _upload_status(outcomes: List[FileOutcome]) -> int:
    ok = sum(1 for o in outcomes if o.ok)
    if ok == len(outcomes):
        return 200
    if ok:
        return 207
    return 400


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or load_settings()
    setup_logging(settings.log_level)

    store = WorkspaceStore(settings.storage_root)
    generator = IdentifierGenerator(suffix_bytes=settings.id_suffix_bytes)
    extractor = ArchiveExtractor(
        ArchiveLimits(
            max_entries=settings.max_archive_entries,
            max_total_bytes=settings.max_archive_decompressed_bytes,
        ),
        allowed_suffixes=settings.allowed_suffixes,
    )
    pipeline = IngestionPipeline(
        store,
        extractor,
        allowed_suffixes=settings.allowed_suffixes,
        allowed_media_types=settings.allowed_media_types,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # A storage root we cannot create is fatal: let it abort startup.
        store.initialize()
        log.info("Application startup complete.")
        yield
        log.info("Application shutdown complete.")

    app = FastAPI(lifespan=lifespan)
    app.state.settings = settings
    app.state.store = store
    app.state.generator = generator
    app.state.pipeline = pipeline

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(SitedropError)
    async def _sitedrop_error(request: Request, exc: SitedropError) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "error": exc.code, "message": exc.public_message},
        )

    @app.exception_handler(RequestValidationError)
    async def _validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=400,
            content={"success": False, "error": InvalidInput.code, "message": "Malformed request"},
        )

    @app.get("/health")
    async def health() -> dict:
        return {"status": "ok"}

    @app.post("/api/projects")
    async def create_project(payload: CreateProjectRequest, request: Request) -> JSONResponse:
        username = payload.username
        project_name = payload.projectName
        if not username or not username.strip() or not project_name or not project_name.strip():
            raise InvalidInput("Username and project name are required")

        # Read from app.state so the entropy source can be swapped.
        ws = await run_in_threadpool(
            store.allocate, username, request.app.state.generator, settings.create_attempts
        )
        log.info("Project %r created as %s", project_name, ws.project_id)

        # request.base_url is guaranteed to end with '/'
        public_url = f"{request.base_url}p/{ws.project_id}"
        return JSONResponse({"success": True, "projectId": ws.project_id, "publicUrl": public_url})

    @app.post("/api/upload")
    async def upload(
        projectId: Optional[str] = Form(None),
        files: Optional[List[UploadFile]] = File(None),
    ) -> JSONResponse:
        if not projectId or not projectId.strip():
            raise InvalidInput("Project ID is required")
        if not files:
            raise InvalidInput("No files uploaded")

        # Fail fast before staging anything for an unknown project.
        await run_in_threadpool(store.resolve_workspace, projectId)

        staged: List[UploadedFile] = []
        rejected: dict[int, FileOutcome] = {}
        try:
            for index, part in enumerate(files):
                name = part.filename or ""
                try:
                    temp_path = await run_in_threadpool(
                        _stage_upload, part, store.incoming_root, settings.max_upload_bytes
                    )
                except SitedropError as e:
                    rejected[index] = FileOutcome(filename=name, ok=False, error=e.code, message=e.public_message)
                    continue
                staged.append(UploadedFile(temp_path=temp_path, original_name=name, media_type=part.content_type))

            report = await pipeline.ingest(projectId, staged)
        finally:
            for item in staged:
                await run_in_threadpool(discard_temp, item.temp_path)

        processed = iter(report.outcomes)
        outcomes = [rejected[i] if i in rejected else next(processed) for i in range(len(files))]

        status = _upload_status(outcomes)
        if status == 200:
            message = "Files uploaded successfully"
        elif status == 207:
            message = "Some files failed to upload"
        else:
            message = "Failed to upload files"
        return JSONResponse(
            status_code=status,
            content={
                "success": status == 200,
                "projectId": report.project_id,
                "message": message,
                "files": [o.as_dict() for o in outcomes],
            },
        )

    # Published workspaces, read-only. Defined after the API routes.
    app.mount(
        "/p",
        StaticFiles(directory=str(settings.projects_root), html=True, check_dir=False),
        name="projects",
    )
    return app


app = create_app()


if __name__ == "__main__":
    # Convenience: python server.py
    import uvicorn

    uvicorn.run("server:app", host="127.0.0.1", port=app.state.settings.port, reload=False)
