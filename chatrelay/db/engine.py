"""
Database engine configuration.

Creates SQLAlchemy engine with appropriate settings for SQLite or PostgreSQL.
"""

from pathlib import Path

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine

from chatrelay.config import Settings
from chatrelay.core import get_logger

logger = get_logger(__name__)


def build_engine(settings: Settings) -> Engine:
    """Create a new engine for the configured database URL."""
    database_url = settings.database_url

    if settings.is_sqlite:
        db_path = database_url.replace("sqlite:///", "")
        if db_path and db_path != ":memory:":
            db_dir = Path(db_path).parent
            if not db_dir.exists():
                db_dir.mkdir(parents=True, exist_ok=True)
                logger.info("Created database directory", data={"path": str(db_dir)})
        engine = create_engine(
            database_url,
            connect_args={"check_same_thread": False},  # Required for SQLite + threads
            echo=settings.debug,
            pool_pre_ping=True,
        )
    else:
        engine = create_engine(
            database_url,
            echo=settings.debug,
            pool_pre_ping=True,
            pool_size=5,
            max_overflow=10,
        )

    logger.info(
        "Database engine created",
        data={"dialect": engine.dialect.name, "debug": settings.debug},
    )
    return engine


def create_tables(engine: Engine) -> None:
    """Create any missing tables. Schema migrations are managed elsewhere."""
    from chatrelay.db.base import Base
    from chatrelay.db import models  # noqa: F401  (registers mappers)

    Base.metadata.create_all(bind=engine)


def verify_database_connection(engine: Engine | None) -> bool:
    """
    Verify database connectivity with a simple query.

    Returns:
        True if connection successful, False otherwise.
    """
    if engine is None:
        return False
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error("Database connection failed", data={"error": str(e)})
        return False
