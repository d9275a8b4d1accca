import os
import time
import uuid
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, File, Form, HTTPException, Query, Request, Response, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from app.config import settings
from app.db import init_db
from app.errors import MissingChunk, UploadError
from app.logs import audit_event, log_event, trace_id
from app.metrics import bytes_uploaded_total, chunks_uploaded_total, http_request_duration_seconds, metrics_response
from app.mime import extension_of
from app.reassembly import StoredObject
from app.schemas import (
    CancelUploadResponse,
    DeleteFileResponse,
    ErrorResponse,
    StoredObjectResponse,
    SweepResponse,
    UploadChunkResponse,
)
from app.services import UploadServices, build_services
from app.storage import is_valid_upload_id
from app.tracing import setup_tracing


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", "unknown")


def _upload_id(request: Request) -> str | None:
    return request.path_params.get("upload_id")


def _route_label(request: Request) -> str:
    route = request.scope.get("route")
    if route is not None and hasattr(route, "path"):
        return str(route.path)
    return request.url.path


def _error_code_for_status(status_code: int) -> str:
    mapping = {
        400: "bad_request",
        404: "not_found",
        409: "conflict",
        422: "bad_request",
        500: "internal_error",
        502: "bad_gateway",
    }
    return mapping.get(status_code, f"http_{status_code}")


def _error_body(
    request: Request,
    detail: str,
    error_code: str,
    upload_id: str | None = None,
    chunk_index: int | None = None,
) -> dict:
    return ErrorResponse(
        detail=detail,
        error_code=error_code,
        request_id=_request_id(request),
        upload_id=upload_id or _upload_id(request),
        chunk_index=chunk_index,
        trace_id=trace_id(),
    ).model_dump()


def _log_request_error(request: Request, status_code: int, error_class: str, detail: str, upload_id: str | None) -> None:
    log_event(
        {
            "event": "request_error",
            "request_id": _request_id(request),
            "upload_id": upload_id or _upload_id(request),
            "method": request.method,
            "path": request.url.path,
            "status_code": status_code,
            "error_class": error_class,
            "detail": detail,
        }
    )


def _stored_object_response(stored: StoredObject, message: str) -> StoredObjectResponse:
    return StoredObjectResponse(
        message=message,
        url=stored.url,
        object_key=stored.object_key,
        content_type=stored.content_type,
        size_bytes=stored.size_bytes,
    )


def _stream_size(upload: UploadFile) -> int:
    upload.file.seek(0, os.SEEK_END)
    size = upload.file.tell()
    upload.file.seek(0)
    return size


def get_services(request: Request) -> UploadServices:
    return request.app.state.services


COMMON_ERROR_RESPONSES = {
    400: {"model": ErrorResponse, "description": "Malformed request"},
    500: {"model": ErrorResponse, "description": "Local storage or internal failure"},
    502: {"model": ErrorResponse, "description": "Object store failure"},
}


def create_app(services: UploadServices | None = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if app.state.services is None:
            if settings.database_auto_create:
                init_db()
            app.state.services = build_services(settings)
        active: UploadServices = app.state.services
        if active.config.janitor_enabled:
            active.scheduler.start()
        yield
        await active.scheduler.stop()

    app = FastAPI(title=settings.app_name, version=settings.app_version, lifespan=lifespan)
    app.state.services = services
    setup_tracing(app)

    @app.middleware("http")
    async def request_context_and_logging(request: Request, call_next):
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
        request.state.request_id = request_id
        start = time.perf_counter()

        response = await call_next(request)
        duration_ms = round((time.perf_counter() - start) * 1000, 2)
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Upload-Service-Version"] = settings.app_version
        http_request_duration_seconds.labels(
            method=request.method,
            route=_route_label(request),
            status_code=str(response.status_code),
        ).observe(duration_ms / 1000.0)

        log_event(
            {
                "event": "request_completed",
                "request_id": request_id,
                "upload_id": _upload_id(request),
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "duration_ms": duration_ms,
            }
        )
        return response

    @app.exception_handler(UploadError)
    async def upload_error_handler(request: Request, exc: UploadError):
        _log_request_error(request, exc.status_code, exc.error_code, exc.detail, exc.upload_id)
        chunk_index = exc.chunk_index if isinstance(exc, MissingChunk) else None
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_body(request, exc.detail, exc.error_code, exc.upload_id, chunk_index),
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        error_class = "client_error" if 400 <= exc.status_code < 500 else "server_error"
        _log_request_error(request, exc.status_code, error_class, str(exc.detail), None)
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_body(request, str(exc.detail), _error_code_for_status(exc.status_code)),
            headers=exc.headers or {},
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        fields = sorted({".".join(str(part) for part in error.get("loc", ())[1:]) for error in exc.errors()})
        detail = f"invalid or missing fields: {', '.join(fields)}" if fields else "invalid request"
        _log_request_error(request, 400, "client_error", detail, None)
        return JSONResponse(status_code=400, content=_error_body(request, detail, "bad_request"))

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        _log_request_error(request, 500, "unhandled_exception", str(exc), None)
        return JSONResponse(
            status_code=500,
            content=_error_body(request, "internal server error", "internal_error"),
        )

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/version")
    def version(services: UploadServices = Depends(get_services)) -> dict[str, str]:
        return {
            "app_name": settings.app_name,
            "app_version": settings.app_version,
            "bucket": services.naming.bucket,
        }

    @app.get("/metrics")
    def metrics() -> Response:
        return metrics_response()

    @app.post(
        "/files",
        response_model=StoredObjectResponse,
        responses={**COMMON_ERROR_RESPONSES, 409: {"model": ErrorResponse, "description": "No free object key"}},
    )
    def upload_file(
        request: Request,
        file: UploadFile = File(...),
        services: UploadServices = Depends(get_services),
    ) -> StoredObjectResponse:
        file_name = file.filename or ""
        allowed = services.config.allowed_single_upload_extensions()
        if allowed and extension_of(file_name) not in allowed:
            raise HTTPException(
                status_code=400,
                detail=f"only {', '.join(sorted(allowed))} files are allowed",
            )
        size_bytes = _stream_size(file)
        if size_bytes == 0:
            raise HTTPException(status_code=400, detail="file is empty")

        stored = services.uploader.upload(file.file, size_bytes, file_name, file.content_type)
        audit_event(
            {
                "event": "audit",
                "action": "file_upload",
                "request_id": _request_id(request),
                "object_key": stored.object_key,
                "content_type": stored.content_type,
                "size_bytes": stored.size_bytes,
            }
        )
        return _stored_object_response(stored, "file uploaded")

    @app.delete("/files", response_model=DeleteFileResponse, responses={**COMMON_ERROR_RESPONSES})
    def delete_file(
        request: Request,
        url: str = Query(default=""),
        services: UploadServices = Depends(get_services),
    ) -> DeleteFileResponse:
        if not url.strip():
            raise HTTPException(status_code=400, detail="url must be provided")
        object_key = services.uploader.delete(url)
        audit_event(
            {
                "event": "audit",
                "action": "file_delete",
                "request_id": _request_id(request),
                "object_key": object_key,
            }
        )
        return DeleteFileResponse(message="file deleted", object_key=object_key)

    @app.post("/files/upload-chunk", response_model=UploadChunkResponse, responses={**COMMON_ERROR_RESPONSES})
    def upload_chunk(
        request: Request,
        chunk: UploadFile = File(...),
        upload_id: str = Form(...),
        chunk_index: int = Form(...),
        services: UploadServices = Depends(get_services),
    ) -> UploadChunkResponse:
        if not is_valid_upload_id(upload_id):
            raise HTTPException(status_code=400, detail="upload_id must be a path-safe token")
        if chunk_index < 0:
            raise HTTPException(status_code=400, detail="chunk_index must be non-negative")
        data = chunk.file.read()
        if not data:
            raise HTTPException(status_code=400, detail="chunk payload is empty")

        result = services.store.write_chunk(upload_id, chunk_index, data)
        chunks_uploaded_total.inc()
        bytes_uploaded_total.inc(result.size_bytes)
        audit_event(
            {
                "event": "audit",
                "action": "chunk_upload",
                "request_id": _request_id(request),
                "upload_id": upload_id,
                "chunk_index": chunk_index,
                "size_bytes": result.size_bytes,
            }
        )
        return UploadChunkResponse(
            message=f"chunk {chunk_index} uploaded",
            upload_id=upload_id,
            chunk_index=chunk_index,
            path=result.path,
            size_bytes=result.size_bytes,
        )

    @app.post(
        "/files/complete-upload",
        response_model=StoredObjectResponse,
        responses={**COMMON_ERROR_RESPONSES, 409: {"model": ErrorResponse, "description": "Missing chunk"}},
    )
    def complete_upload(
        request: Request,
        upload_id: str = Form(...),
        file_name: str = Form(...),
        total_chunks: int = Form(...),
        services: UploadServices = Depends(get_services),
    ) -> StoredObjectResponse:
        if not is_valid_upload_id(upload_id):
            raise HTTPException(status_code=400, detail="upload_id must be a path-safe token")
        if not file_name.strip():
            raise HTTPException(status_code=400, detail="file_name must be provided")
        if total_chunks <= 0:
            raise HTTPException(status_code=400, detail="total_chunks must be positive")

        stored = services.reassembler.complete(upload_id, file_name, total_chunks)
        audit_event(
            {
                "event": "audit",
                "action": "upload_complete",
                "request_id": _request_id(request),
                "upload_id": upload_id,
                "object_key": stored.object_key,
                "total_chunks": total_chunks,
                "size_bytes": stored.size_bytes,
            }
        )
        return _stored_object_response(stored, "upload completed")

    @app.delete(
        "/files/{upload_id}/cancel-upload",
        response_model=CancelUploadResponse,
        responses={**COMMON_ERROR_RESPONSES},
    )
    def cancel_upload(
        request: Request,
        upload_id: str,
        services: UploadServices = Depends(get_services),
    ) -> CancelUploadResponse:
        if not is_valid_upload_id(upload_id):
            raise HTTPException(status_code=400, detail="upload_id must be a path-safe token")
        existed = services.janitor.cancel(upload_id)
        audit_event(
            {
                "event": "audit",
                "action": "upload_cancel",
                "request_id": _request_id(request),
                "upload_id": upload_id,
                "had_scratch_state": existed,
            }
        )
        return CancelUploadResponse(message="upload cancelled and scratch files removed", upload_id=upload_id)

    @app.post("/files/maintenance/sweep", response_model=SweepResponse, responses={**COMMON_ERROR_RESPONSES})
    async def run_sweep(request: Request, services: UploadServices = Depends(get_services)) -> SweepResponse:
        report = await services.scheduler.trigger()
        audit_event(
            {
                "event": "audit",
                "action": "janitor_sweep",
                "request_id": _request_id(request),
                "removed": len(report.removed),
                "failed": len(report.failed),
            }
        )
        return SweepResponse(message="sweep finished", **report.as_dict())

    return app


app = create_app()
