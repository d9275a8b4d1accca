import logging
import time
from dataclasses import dataclass

from app.errors import InvalidRequest, IOFailure, MissingChunk
from app.locks import SessionLockRegistry
from app.logs import core_event
from app.metrics import (
    missing_chunk_rejections_total,
    object_put_latency_seconds,
    reassembly_latency_seconds,
    uploads_completed_total,
)
from app.mime import classify
from app.naming import NamingResolver
from app.object_store import ObjectStoreGateway
from app.storage import ChunkStore
from app.tracing import tracer


@dataclass(frozen=True)
class StoredObject:
    object_key: str
    url: str
    content_type: str
    size_bytes: int


class UploadSessionReassembler:
    """Turns a complete set of scratch chunks into one committed object."""

    def __init__(
        self,
        store: ChunkStore,
        gateway: ObjectStoreGateway,
        naming: NamingResolver,
        locks: SessionLockRegistry,
    ) -> None:
        self.store = store
        self.gateway = gateway
        self.naming = naming
        self.locks = locks

    def complete(self, upload_id: str, file_name: str, total_chunks: int) -> StoredObject:
        if total_chunks <= 0:
            raise InvalidRequest("total_chunks must be positive", upload_id=upload_id)
        if not file_name or not file_name.strip():
            raise InvalidRequest("file_name is required", upload_id=upload_id)
        self.store.session_dir(upload_id)

        with self.locks.hold(upload_id), tracer().start_as_current_span("upload.complete"):
            missing = self.store.first_missing_chunk(upload_id, total_chunks)
            if missing is not None:
                missing_chunk_rejections_total.inc()
                raise MissingChunk(missing, upload_id=upload_id)

            assemble_t0 = time.perf_counter()
            staging = self.store.assemble(upload_id, total_chunks)
            reassembly_latency_seconds.observe(time.perf_counter() - assemble_t0)

            bucket = self.naming.bucket
            self.gateway.ensure_bucket(bucket)
            object_key = self.naming.resolve(file_name)
            content_type = classify(file_name)

            try:
                size_bytes = staging.stat().st_size
                stream = staging.open("rb")
            except OSError as exc:
                raise IOFailure(f"failed to open staging blob: {exc}", upload_id=upload_id) from exc
            # The stream must be closed before the session directory goes away.
            with stream:
                put_t0 = time.perf_counter()
                self.gateway.put_object(bucket, object_key, stream, size_bytes, content_type)
                object_put_latency_seconds.observe(time.perf_counter() - put_t0)

            url = self.naming.build_public_url(object_key)
            uploads_completed_total.inc()
            try:
                self.store.remove_session(upload_id)
            except IOFailure as exc:
                core_event(
                    {
                        "event": "session_cleanup_failed",
                        "upload_id": upload_id,
                        "object_key": object_key,
                        "detail": exc.detail,
                    },
                    level=logging.WARNING,
                )

        return StoredObject(object_key=object_key, url=url, content_type=content_type, size_bytes=size_bytes)
