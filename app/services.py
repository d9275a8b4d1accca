from dataclasses import dataclass
from datetime import timedelta

from sqlalchemy.orm import sessionmaker

from app.config import Settings, settings
from app.db import SessionLocal
from app.locks import SessionLockRegistry
from app.maintenance import JanitorScheduler, SessionJanitor
from app.manifest import SessionManifest
from app.naming import NamingResolver
from app.object_store import ObjectStoreGateway, build_object_store
from app.reassembly import UploadSessionReassembler
from app.storage import ChunkStore
from app.uploads import SingleShotUploader


@dataclass
class UploadServices:
    config: Settings
    gateway: ObjectStoreGateway
    naming: NamingResolver
    store: ChunkStore
    locks: SessionLockRegistry
    reassembler: UploadSessionReassembler
    uploader: SingleShotUploader
    janitor: SessionJanitor
    scheduler: JanitorScheduler


def build_services(
    config: Settings = settings,
    gateway: ObjectStoreGateway | None = None,
    session_factory: sessionmaker | None = None,
    with_manifest: bool = True,
) -> UploadServices:
    gateway = gateway or build_object_store(config)
    manifest = SessionManifest(session_factory or SessionLocal) if with_manifest else None
    naming = NamingResolver(
        gateway,
        bucket=config.object_store_bucket,
        public_url_base=config.public_url_base,
        max_attempts=config.naming_max_attempts,
    )
    store = ChunkStore(config.scratch_root, manifest=manifest)
    locks = SessionLockRegistry()
    janitor = SessionJanitor(store, locks, max_age=timedelta(seconds=config.stale_session_ttl_seconds))
    return UploadServices(
        config=config,
        gateway=gateway,
        naming=naming,
        store=store,
        locks=locks,
        reassembler=UploadSessionReassembler(store, gateway, naming, locks),
        uploader=SingleShotUploader(gateway, naming),
        janitor=janitor,
        scheduler=JanitorScheduler(janitor, interval_seconds=config.janitor_interval_seconds),
    )
