from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from app.config import settings


class Base(DeclarativeBase):
    pass


def build_engine(database_url: str):
    engine_kwargs: dict = {"future": True}
    if database_url.startswith("sqlite"):
        engine_kwargs["connect_args"] = {"check_same_thread": False}
    return create_engine(database_url, **engine_kwargs)


engine = build_engine(settings.database_url)
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, class_=Session)


def init_db(bind=None) -> None:
    """Create the manifest tables directly; deployments run `alembic upgrade head` instead."""
    # Models must be imported so their tables register on Base.metadata.
    import app.models  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)
