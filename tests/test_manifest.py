from datetime import datetime, timedelta, timezone
from pathlib import Path

from app.manifest import SessionManifest
from app.models import UploadSession
from app.storage import ChunkStore


def test_chunk_writes_are_recorded(tmp_path: Path, session_factory) -> None:
    manifest = SessionManifest(session_factory)
    store = ChunkStore(str(tmp_path / "scratch"), manifest=manifest)

    store.write_chunk("s1", 2, b"CCC")
    store.write_chunk("s1", 0, b"AAA")
    store.write_chunk("s1", 0, b"AAAA")

    assert manifest.received_indices("s1") == [0, 2]
    assert manifest.known_sessions() == ["s1"]
    created_at = manifest.created_at("s1")
    assert created_at is not None
    assert created_at.tzinfo is not None


def test_remove_session_drops_manifest(tmp_path: Path, session_factory) -> None:
    manifest = SessionManifest(session_factory)
    store = ChunkStore(str(tmp_path / "scratch"), manifest=manifest)
    store.write_chunk("s1", 0, b"AAA")

    store.remove_session("s1")
    assert manifest.known_sessions() == []
    assert manifest.received_indices("s1") == []
    assert manifest.created_at("s1") is None


def test_created_at_reads_back_stored_value(session_factory) -> None:
    old = datetime.now(timezone.utc) - timedelta(days=3)
    with session_factory() as db:
        db.add(UploadSession(upload_id="old-session", created_at=old, updated_at=old))
        db.commit()

    created_at = SessionManifest(session_factory).created_at("old-session")
    assert created_at is not None
    assert abs((created_at - old).total_seconds()) < 1
