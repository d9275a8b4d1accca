from pathlib import PurePosixPath
from urllib.parse import quote, unquote

from app.errors import InvalidRequest, InvalidUrlFormat, NamingExhausted, ObjectStoreFailure
from app.object_store import ObjectStoreGateway, StatState


def base_filename(desired_name: str) -> str:
    return PurePosixPath(desired_name.replace("\\", "/").strip()).name


def split_extension(file_name: str) -> tuple[str, str]:
    path = PurePosixPath(file_name)
    suffix = path.suffix
    if not suffix:
        return file_name, ""
    return file_name[: -len(suffix)], suffix


class NamingResolver:
    """Maps desired file names to free object keys and object keys to public URLs.

    Key disambiguation probes the store sequentially (``name.ext``, ``name_1.ext``,
    ``name_2.ext``, ...). Nothing is reserved, so two writers racing on the same
    desired name can both be handed the same key; the later put wins.
    """

    def __init__(
        self,
        gateway: ObjectStoreGateway,
        bucket: str,
        public_url_base: str,
        max_attempts: int = 1000,
    ) -> None:
        if not bucket.strip("/"):
            raise ValueError("bucket must be set")
        self.gateway = gateway
        self.bucket = bucket.strip("/")
        self.public_url_base = public_url_base.strip().rstrip("/")
        self.max_attempts = max_attempts

    def _exists(self, key: str) -> bool:
        stat = self.gateway.stat_object(self.bucket, key)
        if stat.state is StatState.error:
            raise ObjectStoreFailure(f"failed to stat object {key}: {stat.error}") from stat.error
        return stat.state is StatState.exists

    def resolve(self, desired_name: str) -> str:
        file_name = base_filename(desired_name)
        if not file_name or file_name in (".", ".."):
            raise InvalidRequest("file name is empty")
        stem, extension = split_extension(file_name)

        candidate = file_name
        counter = 0
        while self._exists(candidate):
            counter += 1
            if counter > self.max_attempts:
                raise NamingExhausted(
                    f"no free object key for {file_name} after {self.max_attempts} attempts"
                )
            candidate = f"{stem}_{counter}{extension}"
        return candidate

    def build_public_url(self, object_key: str) -> str:
        # Keys are client file names; "?", "#" and spaces must not leak into the URL syntax.
        return f"{self.public_url_base}/{self.bucket}/{quote(object_key.lstrip('/'), safe='/')}"

    def extract_object_key(self, url: str) -> str:
        candidate = url.strip()
        if not candidate.lower().startswith(self.public_url_base.lower()):
            raise InvalidUrlFormat("url does not start with the public url base")

        path = candidate[len(self.public_url_base) :].lstrip("/")
        prefix = f"{self.bucket}/"
        if not path.startswith(prefix):
            raise InvalidUrlFormat("url does not contain the configured bucket")

        encoded_key = path[len(prefix) :].split("#", 1)[0].split("?", 1)[0]
        object_key = unquote(encoded_key)
        if not object_key:
            raise InvalidUrlFormat("url does not contain an object key")
        return object_key
