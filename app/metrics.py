from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, generate_latest
from starlette.responses import Response

chunks_uploaded_total = Counter("chunks_uploaded_total", "Total chunks written to scratch storage")
bytes_uploaded_total = Counter("bytes_uploaded_total", "Total chunk bytes written to scratch storage")
uploads_completed_total = Counter("uploads_completed_total", "Total chunked uploads committed to the object store")
uploads_cancelled_total = Counter("uploads_cancelled_total", "Total chunked uploads cancelled by clients")
single_uploads_total = Counter("single_uploads_total", "Total single-shot uploads committed to the object store")
objects_deleted_total = Counter("objects_deleted_total", "Total objects removed by public url")
missing_chunk_rejections_total = Counter(
    "missing_chunk_rejections_total", "Total completions rejected because a chunk was missing"
)
janitor_sessions_removed_total = Counter("janitor_sessions_removed_total", "Total stale sessions removed by the janitor")
janitor_failures_total = Counter("janitor_failures_total", "Total per-session janitor removal failures")

active_sessions = Gauge("active_sessions", "Session scratch directories seen by the last janitor sweep")

object_put_latency_seconds = Histogram("object_put_latency_seconds", "Object store put latency in seconds")
reassembly_latency_seconds = Histogram("reassembly_latency_seconds", "Chunk concatenation latency in seconds")
http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency in seconds",
    ["method", "route", "status_code"],
)


def metrics_response() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
