#build_engine\infrastructure\postgres\database.py

"""SQLAlchemy engine, session factory and schema helpers."""

import logging
import threading
from typing import Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

from build_engine.infrastructure.postgres.config import get_database_settings

logger = logging.getLogger(__name__)


# ============================================
# Base for ORM models
# ============================================
Base = declarative_base()


# ============================================
# Engine configuration
# ============================================
def create_db_engine(database_url: Optional[str] = None) -> Engine:
    """Create the pooled engine used by the API and the workers."""

    db_settings = get_database_settings()
    url = database_url or db_settings.database_url

    engine = create_engine(
        url,
        echo=db_settings.echo_sql,
        pool_pre_ping=True,
        pool_size=db_settings.pool_size,
        max_overflow=db_settings.max_overflow,
        pool_timeout=db_settings.pool_timeout,
        pool_recycle=db_settings.pool_recycle,
    )

    if engine.dialect.name == "postgresql":
        timeout_ms = db_settings.statement_timeout_ms
        application_name = db_settings.application_name

        @event.listens_for(engine, "connect")
        def configure_connection(dbapi_conn, connection_record):
            cursor = dbapi_conn.cursor()
            cursor.execute("SET search_path TO public")
            cursor.execute(f"SET statement_timeout = {int(timeout_ms)}")
            cursor.execute("SET application_name = %s", (application_name,))
            cursor.close()

    logger.info(f"[postgres] engine ready ({engine.url.render_as_string(hide_password=True)})")
    return engine


# Production engine, created on first use
_engine: Optional[Engine] = None
_engine_lock = threading.Lock()


def get_engine() -> Engine:
    global _engine
    with _engine_lock:
        if _engine is None:
            _engine = create_db_engine()
        return _engine


# ============================================
# Session factory
# ============================================
def get_session_factory(engine_instance: Optional[Engine] = None) -> sessionmaker:
    """
    Session factory bound to the given engine, or the production engine.

    Objects stay readable after commit; repositories hand out domain
    copies and never reuse a session across calls.
    """
    return sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=engine_instance or get_engine(),
        expire_on_commit=False
    )


# ============================================
# Schema helpers
# ============================================
def init_db(engine_instance: Optional[Engine] = None) -> None:
    """Create all tables (tests and local runs; Alembic owns production)."""
    from build_engine.infrastructure.postgres import models  # noqa: F401  registers tables

    Base.metadata.create_all(bind=engine_instance or get_engine())


def drop_db(engine_instance: Optional[Engine] = None) -> None:
    Base.metadata.drop_all(bind=engine_instance or get_engine())
