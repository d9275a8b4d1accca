"""Thin gateway over an S3-compatible object store (AWS S3, MinIO, R2)."""

import enum
from dataclasses import dataclass
from typing import BinaryIO

from botocore.exceptions import BotoCoreError, ClientError

from app.config import Settings
from app.errors import ObjectStoreFailure

_NOT_FOUND_CODES = frozenset({"404", "NoSuchKey", "NotFound", "NoSuchBucket"})
_ALREADY_OWNED_CODES = frozenset({"BucketAlreadyOwnedByYou", "BucketAlreadyExists"})


class StatState(str, enum.Enum):
    exists = "EXISTS"
    not_found = "NOT_FOUND"
    error = "ERROR"


@dataclass(frozen=True)
class ObjectStat:
    state: StatState
    size_bytes: int | None = None
    content_type: str | None = None
    error: Exception | None = None

    @property
    def exists(self) -> bool:
        return self.state is StatState.exists


def _error_code(exc: ClientError) -> str:
    return str(exc.response.get("Error", {}).get("Code", ""))


class ObjectStoreGateway:
    def __init__(self, client, region: str = "us-east-1") -> None:
        self.client = client
        self.region = region

    def bucket_exists(self, bucket: str) -> bool:
        try:
            self.client.head_bucket(Bucket=bucket)
        except ClientError as exc:
            if _error_code(exc) in _NOT_FOUND_CODES:
                return False
            raise ObjectStoreFailure(f"failed to check bucket {bucket}: {exc}") from exc
        except BotoCoreError as exc:
            raise ObjectStoreFailure(f"failed to check bucket {bucket}: {exc}") from exc
        return True

    def make_bucket(self, bucket: str) -> None:
        params: dict = {"Bucket": bucket}
        if self.region and self.region not in ("us-east-1", "auto"):
            params["CreateBucketConfiguration"] = {"LocationConstraint": self.region}
        try:
            self.client.create_bucket(**params)
        except ClientError as exc:
            # Another writer may have created it between the check and the create.
            if _error_code(exc) in _ALREADY_OWNED_CODES:
                return
            raise ObjectStoreFailure(f"failed to create bucket {bucket}: {exc}") from exc
        except BotoCoreError as exc:
            raise ObjectStoreFailure(f"failed to create bucket {bucket}: {exc}") from exc

    def ensure_bucket(self, bucket: str) -> bool:
        if self.bucket_exists(bucket):
            return False
        self.make_bucket(bucket)
        return True

    def stat_object(self, bucket: str, key: str) -> ObjectStat:
        try:
            head = self.client.head_object(Bucket=bucket, Key=key)
        except ClientError as exc:
            if _error_code(exc) in _NOT_FOUND_CODES:
                return ObjectStat(state=StatState.not_found)
            return ObjectStat(state=StatState.error, error=exc)
        except BotoCoreError as exc:
            return ObjectStat(state=StatState.error, error=exc)
        return ObjectStat(
            state=StatState.exists,
            size_bytes=head.get("ContentLength"),
            content_type=head.get("ContentType"),
        )

    def put_object(self, bucket: str, key: str, stream: BinaryIO, length: int, content_type: str) -> str | None:
        try:
            result = self.client.put_object(
                Bucket=bucket,
                Key=key,
                Body=stream,
                ContentLength=length,
                ContentType=content_type,
            )
        except (BotoCoreError, ClientError) as exc:
            raise ObjectStoreFailure(f"failed to put object {key}: {exc}") from exc
        return result.get("ETag")

    def remove_object(self, bucket: str, key: str) -> None:
        try:
            self.client.delete_object(Bucket=bucket, Key=key)
        except (BotoCoreError, ClientError) as exc:
            raise ObjectStoreFailure(f"failed to remove object {key}: {exc}") from exc


def endpoint_url(endpoint: str, secure: bool) -> str:
    if "://" in endpoint:
        return endpoint
    scheme = "https" if secure else "http"
    return f"{scheme}://{endpoint}"


def build_object_store(config: Settings) -> ObjectStoreGateway:
    import boto3
    from botocore.config import Config

    client_kwargs = {
        "region_name": config.object_store_region,
        "endpoint_url": endpoint_url(config.object_store_endpoint, config.object_store_secure),
        "config": Config(
            connect_timeout=config.object_store_connect_timeout_seconds,
            read_timeout=config.object_store_read_timeout_seconds,
            retries={"max_attempts": max(1, config.object_store_max_attempts), "mode": "standard"},
            s3={"addressing_style": "path"},
        ),
    }
    if config.object_store_access_key and config.object_store_secret_key:
        client_kwargs["aws_access_key_id"] = config.object_store_access_key
        client_kwargs["aws_secret_access_key"] = config.object_store_secret_key
    client = boto3.client("s3", **client_kwargs)
    return ObjectStoreGateway(client, region=config.object_store_region)
