from __future__ import annotations

import logging

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from advisory.config import Settings
from advisory.models import Base

logger = logging.getLogger(__name__)


def create_db_engine(cfg: Settings) -> Engine:
    """Create engine using SQLAlchemy's ``create_engine``."""
    return create_engine(
        cfg.database_url,
        future=True,
        pool_size=50,
        max_overflow=0,
        pool_recycle=30,
        pool_pre_ping=True,
    )


def create_session_factory(engine: Engine) -> sessionmaker:
    # ORM objects returned by services are read after the session closes
    return sessionmaker(
        bind=engine,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
        future=True,
    )


def init_db(cfg: Settings) -> sessionmaker:
    """Build the engine and session factory handed to request handlers."""
    engine = create_db_engine(cfg)
    if cfg.db_create_all:
        Base.metadata.create_all(engine)
    logger.info("database initialized (%s)", engine.dialect.name)
    return create_session_factory(engine)


def dispose_session_factory(factory: sessionmaker) -> None:
    engine = factory.kw.get("bind")
    if engine is not None:
        engine.dispose()
