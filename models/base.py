"""
Database configuration and base model.

Uses SQLAlchemy 2.0 declarative style with SQLite.
"""

from pathlib import Path
from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

import appdirs

from config import APP_NAME, APP_AUTHOR


def get_database_path() -> Path:
    """Get the path to the SQLite database file."""
    # Use appdirs for cross-platform data directory
    data_dir = Path(appdirs.user_data_dir(APP_NAME, APP_AUTHOR))
    data_dir.mkdir(parents=True, exist_ok=True)
    return data_dir / "quizarena.db"


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    pass


_default_engine: Optional[Engine] = None


def create_db_engine(url: str = None) -> Engine:
    """
    Create a database engine.

    Args:
        url: SQLAlchemy URL (default: the SQLite file in the user data dir)
    """
    if url is None:
        url = f"sqlite:///{get_database_path()}"
    return create_engine(
        url,
        echo=False,
        connect_args={"check_same_thread": False},  # Allow multi-threaded access
    )


def get_engine() -> Engine:
    """Shared engine for the default database, created on first use."""
    global _default_engine
    if _default_engine is None:
        _default_engine = create_db_engine()
    return _default_engine


def make_session_factory(engine: Engine) -> sessionmaker:
    """Session factory bound to ``engine``."""
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@contextmanager
def get_session(factory: sessionmaker) -> Generator[Session, None, None]:
    """Context manager for database sessions."""
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def init_db(engine: Engine = None) -> None:
    """Initialize the database, creating all tables."""
    # Register mapped classes on Base.metadata
    import models.stored_value  # noqa: F401
    Base.metadata.create_all(bind=engine or get_engine())


def reset_db(engine: Engine = None) -> None:
    """Drop and recreate all tables. USE WITH CAUTION."""
    import models.stored_value  # noqa: F401
    bind = engine or get_engine()
    Base.metadata.drop_all(bind=bind)
    Base.metadata.create_all(bind=bind)
