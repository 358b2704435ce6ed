"""SQLAlchemy engine and session factory for the CMMS backend."""
from __future__ import annotations

from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from .settings import get_settings

Base = declarative_base()


def create_db_engine(database_url: Optional[str] = None) -> Engine:
    """Create an engine; in-memory SQLite shares one connection across threads."""
    database_url = database_url or get_settings().database_url
    if not database_url.startswith("sqlite"):
        return create_engine(database_url, pool_pre_ping=True)

    connect_args = {"check_same_thread": False}
    if database_url in ("sqlite://", "sqlite:///:memory:"):
        return create_engine(database_url, connect_args=connect_args, poolclass=StaticPool)
    return create_engine(database_url, connect_args=connect_args)


def create_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autoflush=False, expire_on_commit=False, bind=engine)


def init_db(engine: Engine) -> None:
    # Registers the PM tables on Base.metadata before creating them.
    from .maintenance import models  # noqa: F401

    Base.metadata.create_all(bind=engine)
