import hashlib
import logging
import os
import re
import shutil
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from app.errors import InvalidRequest, IOFailure, MissingChunk
from app.logs import core_event
from app.manifest import SessionManifest

STAGING_NAME = "final.tmp"
TRASH_DIR = ".trash"
COPY_BUFFER_SIZE = 1024 * 1024
_UPLOAD_ID_PATTERN = re.compile(r"[A-Za-z0-9][A-Za-z0-9._-]{0,127}")


@dataclass(frozen=True)
class ChunkWriteResult:
    path: str
    size_bytes: int
    checksum_sha256: str


def is_valid_upload_id(upload_id: str) -> bool:
    return bool(upload_id) and _UPLOAD_ID_PATTERN.fullmatch(upload_id) is not None


class ChunkStore:
    """Per-session scratch storage laid out as ``<root>/<upload_id>/<index>.part``."""

    def __init__(self, root: str, manifest: SessionManifest | None = None) -> None:
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        self.manifest = manifest

    @property
    def trash_root(self) -> Path:
        return self.root / TRASH_DIR

    def session_dir(self, upload_id: str) -> Path:
        if not is_valid_upload_id(upload_id):
            raise InvalidRequest("upload id must be a path-safe token", upload_id=upload_id)
        return self.root / upload_id

    def chunk_path(self, upload_id: str, chunk_index: int) -> Path:
        if chunk_index < 0:
            raise InvalidRequest("chunk index must be non-negative", upload_id=upload_id)
        return self.session_dir(upload_id) / f"{chunk_index}.part"

    def staging_path(self, upload_id: str) -> Path:
        return self.session_dir(upload_id) / STAGING_NAME

    def write_chunk(self, upload_id: str, chunk_index: int, data: bytes) -> ChunkWriteResult:
        target = self.chunk_path(upload_id, chunk_index)
        temp = target.with_name(f".{target.name}.{uuid.uuid4().hex}")
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            temp.write_bytes(data)
            os.replace(temp, target)
        except OSError as exc:
            try:
                temp.unlink(missing_ok=True)
            except OSError:
                pass
            raise IOFailure(f"failed to write chunk {chunk_index}: {exc}", upload_id=upload_id) from exc

        checksum = hashlib.sha256(data).hexdigest()
        if self.manifest is not None:
            try:
                self.manifest.record_chunk(upload_id, chunk_index, len(data), checksum)
            except IOFailure as exc:
                # The chunk file is already in place; the manifest only advises the janitor.
                core_event(
                    {
                        "event": "manifest_record_failed",
                        "upload_id": upload_id,
                        "chunk_index": chunk_index,
                        "detail": exc.detail,
                    },
                    level=logging.WARNING,
                )
        return ChunkWriteResult(path=str(target), size_bytes=len(data), checksum_sha256=checksum)

    def chunk_exists(self, upload_id: str, chunk_index: int) -> bool:
        return self.chunk_path(upload_id, chunk_index).is_file()

    def first_missing_chunk(self, upload_id: str, total_chunks: int) -> int | None:
        for index in range(total_chunks):
            if not self.chunk_exists(upload_id, index):
                return index
        return None

    def assemble(self, upload_id: str, total_chunks: int) -> Path:
        """Concatenate chunks ``0..total_chunks-1`` into the session's staging blob.

        Bytes are streamed through a fixed-size buffer so memory use does not grow
        with the file. On failure the chunks are left untouched.
        """
        staging = self.staging_path(upload_id)
        try:
            with staging.open("wb") as output:
                for index in range(total_chunks):
                    try:
                        part = self.chunk_path(upload_id, index).open("rb")
                    except FileNotFoundError as exc:
                        raise MissingChunk(index, upload_id=upload_id) from exc
                    with part:
                        shutil.copyfileobj(part, output, COPY_BUFFER_SIZE)
        except OSError as exc:
            raise IOFailure(f"failed to assemble chunks: {exc}", upload_id=upload_id) from exc
        return staging

    def remove_session(self, upload_id: str) -> bool:
        """Delete a session's scratch directory; returns False if there was none.

        The directory is renamed into the trash area first, so it either
        disappears as a whole or stays fully intact.
        """
        target = self.session_dir(upload_id)
        if not target.exists():
            self._forget(upload_id)
            return False

        tombstone = self.trash_root / f"{upload_id}.{uuid.uuid4().hex}"
        try:
            self.trash_root.mkdir(parents=True, exist_ok=True)
            os.replace(target, tombstone)
        except FileNotFoundError:
            self._forget(upload_id)
            return False
        except OSError as exc:
            raise IOFailure(f"failed to remove session directory: {exc}", upload_id=upload_id) from exc

        self._forget(upload_id)
        self._purge(tombstone)
        return True

    def _forget(self, upload_id: str) -> None:
        if self.manifest is None:
            return
        try:
            self.manifest.forget(upload_id)
        except IOFailure as exc:
            # The janitor drops rows whose directory is gone on its next sweep.
            core_event(
                {"event": "manifest_forget_failed", "upload_id": upload_id, "detail": exc.detail},
                level=logging.WARNING,
            )

    def _purge(self, tombstone: Path) -> bool:
        try:
            shutil.rmtree(tombstone)
        except FileNotFoundError:
            return True
        except OSError as exc:
            core_event(
                {"event": "tombstone_purge_failed", "path": str(tombstone), "detail": str(exc)},
                level=logging.WARNING,
            )
            return False
        return True

    def purge_tombstones(self) -> int:
        if not self.trash_root.is_dir():
            return 0
        purged = 0
        for tombstone in self.trash_root.iterdir():
            if self._purge(tombstone):
                purged += 1
        return purged

    def list_sessions(self) -> list[str]:
        try:
            entries = list(self.root.iterdir())
        except FileNotFoundError:
            return []
        except OSError as exc:
            raise IOFailure(f"failed to list scratch root: {exc}") from exc
        return sorted(entry.name for entry in entries if entry.is_dir() and is_valid_upload_id(entry.name))

    def session_created_at(self, upload_id: str) -> datetime | None:
        target = self.session_dir(upload_id)
        if self.manifest is not None:
            recorded = self.manifest.created_at(upload_id)
            if recorded is not None:
                return recorded
        try:
            modified = target.stat().st_mtime
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise IOFailure(f"failed to stat session directory: {exc}", upload_id=upload_id) from exc
        return datetime.fromtimestamp(modified, tz=timezone.utc)
