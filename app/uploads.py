import time
from typing import BinaryIO

from app.errors import InvalidRequest
from app.metrics import object_put_latency_seconds, objects_deleted_total, single_uploads_total
from app.mime import DEFAULT_CONTENT_TYPE, classify
from app.naming import NamingResolver
from app.object_store import ObjectStoreGateway
from app.reassembly import StoredObject
from app.tracing import tracer


def effective_content_type(file_name: str, content_type_hint: str | None) -> str:
    hint = (content_type_hint or "").strip()
    # Browsers send octet-stream when they know nothing; the extension says more.
    if hint and hint.lower() != DEFAULT_CONTENT_TYPE:
        return hint
    return classify(file_name)


class SingleShotUploader:
    def __init__(self, gateway: ObjectStoreGateway, naming: NamingResolver) -> None:
        self.gateway = gateway
        self.naming = naming

    def upload(
        self,
        stream: BinaryIO | None,
        size_bytes: int,
        file_name: str,
        content_type_hint: str | None = None,
    ) -> StoredObject:
        if stream is None or size_bytes <= 0:
            raise InvalidRequest("file is empty")
        if not file_name or not file_name.strip():
            raise InvalidRequest("file name is required")

        with tracer().start_as_current_span("upload.single"):
            bucket = self.naming.bucket
            self.gateway.ensure_bucket(bucket)
            object_key = self.naming.resolve(file_name)
            content_type = effective_content_type(file_name, content_type_hint)

            put_t0 = time.perf_counter()
            self.gateway.put_object(bucket, object_key, stream, size_bytes, content_type)
            object_put_latency_seconds.observe(time.perf_counter() - put_t0)

        single_uploads_total.inc()
        return StoredObject(
            object_key=object_key,
            url=self.naming.build_public_url(object_key),
            content_type=content_type,
            size_bytes=size_bytes,
        )

    def delete(self, public_url: str) -> str:
        if not public_url or not public_url.strip():
            raise InvalidRequest("url is required")
        object_key = self.naming.extract_object_key(public_url)
        self.gateway.remove_object(self.naming.bucket, object_key)
        objects_deleted_total.inc()
        return object_key
