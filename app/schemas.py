from pydantic import BaseModel


class BaseResponse(BaseModel):
    success: bool = True
    message: str


class StoredObjectResponse(BaseResponse):
    url: str
    object_key: str
    content_type: str
    size_bytes: int


class DeleteFileResponse(BaseResponse):
    object_key: str


class UploadChunkResponse(BaseResponse):
    upload_id: str
    chunk_index: int
    path: str
    size_bytes: int


class CancelUploadResponse(BaseResponse):
    upload_id: str


class SweepResponse(BaseResponse):
    scanned: int
    removed: list[str]
    failed: list[str]
    manifest_rows_deleted: int
    tombstones_purged: int
    started_at: str
    finished_at: str | None = None


class ErrorResponse(BaseModel):
    success: bool = False
    detail: str
    error_code: str
    request_id: str | None = None
    upload_id: str | None = None
    chunk_index: int | None = None
    trace_id: str | None = None
