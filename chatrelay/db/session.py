"""
Database session management.

Sessions come from a factory bound to the application's engine; the API
dependency lives in ``chatrelay.api.deps``.
"""

from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker


def build_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(
        bind=engine,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
    )
