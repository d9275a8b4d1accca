"""Error taxonomy shared by the upload core and the HTTP layer."""


class UploadError(Exception):
    """Base class for every failure the upload core reports to its callers."""

    error_code = "upload_error"
    status_code = 500

    def __init__(self, detail: str, upload_id: str | None = None) -> None:
        super().__init__(detail)
        self.detail = detail
        self.upload_id = upload_id


class InvalidRequest(UploadError):
    """Malformed caller input: non-positive chunk count, empty file, blank name."""

    error_code = "invalid_request"
    status_code = 400


class InvalidUrlFormat(UploadError):
    """A public URL that does not belong to the configured base URL and bucket."""

    error_code = "invalid_url_format"
    status_code = 400


class MissingChunk(UploadError):
    """Completion attempted before every chunk index in range was stored."""

    error_code = "missing_chunk"
    status_code = 409

    def __init__(self, chunk_index: int, upload_id: str | None = None) -> None:
        super().__init__(f"missing chunk {chunk_index}", upload_id=upload_id)
        self.chunk_index = chunk_index


class NamingExhausted(UploadError):
    """No free object key was found within the configured number of probes."""

    error_code = "naming_exhausted"
    status_code = 409


class IOFailure(UploadError):
    """Local scratch storage could not be read, written or deleted."""

    error_code = "io_failure"
    status_code = 500


class ObjectStoreFailure(UploadError):
    """The backing object store rejected or failed a request."""

    error_code = "object_store_failure"
    status_code = 502
