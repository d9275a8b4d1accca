from pathlib import Path

import pytest
from botocore.exceptions import ClientError
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session, sessionmaker

from app.config import Settings
from app.db import build_engine, init_db
from app.main import create_app
from app.object_store import ObjectStoreGateway
from app.services import build_services

BASE_URL = "http://cdn.test"
BUCKET = "media"


def client_error(code: str, operation: str) -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


class FakeS3Client:
    def __init__(self) -> None:
        self.buckets: set[str] = set()
        self.objects: dict[tuple[str, str], dict] = {}
        self.calls: list[tuple[str, dict]] = []
        self.failures: dict[str, Exception] = {}

    def _record(self, name: str, kwargs: dict) -> None:
        self.calls.append((name, kwargs))
        if name in self.failures:
            raise self.failures[name]

    def call_names(self) -> list[str]:
        return [name for name, _ in self.calls]

    def head_bucket(self, **kwargs):
        self._record("head_bucket", kwargs)
        if kwargs["Bucket"] not in self.buckets:
            raise client_error("404", "HeadBucket")
        return {}

    def create_bucket(self, **kwargs):
        self._record("create_bucket", kwargs)
        self.buckets.add(kwargs["Bucket"])
        return {}

    def head_object(self, **kwargs):
        self._record("head_object", kwargs)
        stored = self.objects.get((kwargs["Bucket"], kwargs["Key"]))
        if stored is None:
            raise client_error("404", "HeadObject")
        return {"ContentLength": len(stored["body"]), "ContentType": stored["content_type"]}

    def put_object(self, **kwargs):
        self._record("put_object", kwargs)
        body = kwargs["Body"]
        data = body.read() if hasattr(body, "read") else body
        self.objects[(kwargs["Bucket"], kwargs["Key"])] = {
            "body": data,
            "content_type": kwargs.get("ContentType"),
            "content_length": kwargs.get("ContentLength"),
        }
        return {"ETag": '"etag-1"'}

    def delete_object(self, **kwargs):
        self._record("delete_object", kwargs)
        self.objects.pop((kwargs["Bucket"], kwargs["Key"]), None)
        return {}

    def seed(self, key: str, body: bytes = b"existing", bucket: str = BUCKET) -> None:
        self.buckets.add(bucket)
        self.objects[(bucket, key)] = {"body": body, "content_type": "application/octet-stream", "content_length": len(body)}


@pytest.fixture
def fake_s3() -> FakeS3Client:
    return FakeS3Client()


@pytest.fixture
def gateway(fake_s3: FakeS3Client) -> ObjectStoreGateway:
    return ObjectStoreGateway(fake_s3)


@pytest.fixture
def scratch_root(tmp_path: Path) -> Path:
    return tmp_path / "scratch"


@pytest.fixture
def test_settings(scratch_root: Path) -> Settings:
    return Settings(
        _env_file=None,
        scratch_root=str(scratch_root),
        object_store_bucket=BUCKET,
        public_url_base=BASE_URL,
        janitor_enabled=False,
        naming_max_attempts=50,
    )


@pytest.fixture
def session_factory(tmp_path: Path):
    engine = build_engine(f"sqlite:///{tmp_path / 'manifest.db'}")
    init_db(bind=engine)
    yield sessionmaker(bind=engine, autoflush=False, autocommit=False, class_=Session)
    engine.dispose()


@pytest.fixture
def services(test_settings: Settings, gateway: ObjectStoreGateway, session_factory):
    return build_services(test_settings, gateway=gateway, session_factory=session_factory)


@pytest.fixture
def client(services):
    with TestClient(create_app(services)) as test_client:
        yield test_client
