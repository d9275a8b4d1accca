from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from app.errors import IOFailure
from app.models import SessionChunk, UploadSession, utc_now


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes even for timezone-aware columns.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class SessionManifest:
    """Advisory record of each session's age and received chunks.

    Chunk files on disk stay the source of truth for completeness; the manifest
    gives the janitor a creation time that does not depend on filesystem metadata.
    """

    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    def _upsert_chunk(self, db: Session, upload_id: str, chunk_index: int, size_bytes: int, checksum: str) -> None:
        upload_session = db.get(UploadSession, upload_id)
        if upload_session is None:
            db.add(UploadSession(upload_id=upload_id))
            db.flush()
        else:
            upload_session.updated_at = utc_now()

        existing = db.scalar(
            select(SessionChunk).where(SessionChunk.upload_id == upload_id, SessionChunk.chunk_index == chunk_index)
        )
        if existing:
            existing.size_bytes = size_bytes
            existing.checksum_sha256 = checksum
        else:
            db.add(
                SessionChunk(
                    upload_id=upload_id,
                    chunk_index=chunk_index,
                    size_bytes=size_bytes,
                    checksum_sha256=checksum,
                )
            )
        db.commit()

    def record_chunk(self, upload_id: str, chunk_index: int, size_bytes: int, checksum_sha256: str) -> None:
        try:
            with self._session_factory() as db:
                try:
                    self._upsert_chunk(db, upload_id, chunk_index, size_bytes, checksum_sha256)
                except IntegrityError:
                    # A concurrent first write for the same session created the row first.
                    db.rollback()
                    self._upsert_chunk(db, upload_id, chunk_index, size_bytes, checksum_sha256)
        except SQLAlchemyError as exc:
            raise IOFailure(f"failed to record chunk {chunk_index} in manifest: {exc}", upload_id=upload_id) from exc

    def created_at(self, upload_id: str) -> datetime | None:
        try:
            with self._session_factory() as db:
                value = db.scalar(select(UploadSession.created_at).where(UploadSession.upload_id == upload_id))
        except SQLAlchemyError as exc:
            raise IOFailure(f"failed to read manifest: {exc}", upload_id=upload_id) from exc
        return _as_utc(value) if value is not None else None

    def received_indices(self, upload_id: str) -> list[int]:
        try:
            with self._session_factory() as db:
                return list(
                    db.scalars(
                        select(SessionChunk.chunk_index)
                        .where(SessionChunk.upload_id == upload_id)
                        .order_by(SessionChunk.chunk_index)
                    ).all()
                )
        except SQLAlchemyError as exc:
            raise IOFailure(f"failed to read manifest: {exc}", upload_id=upload_id) from exc

    def known_sessions(self) -> list[str]:
        try:
            with self._session_factory() as db:
                return list(db.scalars(select(UploadSession.upload_id).order_by(UploadSession.upload_id)).all())
        except SQLAlchemyError as exc:
            raise IOFailure(f"failed to read manifest: {exc}") from exc

    def forget(self, upload_id: str) -> int:
        try:
            with self._session_factory() as db:
                db.execute(delete(SessionChunk).where(SessionChunk.upload_id == upload_id))
                deleted = db.execute(delete(UploadSession).where(UploadSession.upload_id == upload_id)).rowcount or 0
                db.commit()
        except SQLAlchemyError as exc:
            raise IOFailure(f"failed to drop manifest: {exc}", upload_id=upload_id) from exc
        return deleted
