"""
Database engine and transactional sessions.

Repositories take a `SessionFactory`: a callable returning a context manager
that commits on success and rolls back on error. The default factory binds
to `settings.database_url`; tests build one over an in-memory engine with
`make_session_factory`.
"""
from contextlib import contextmanager
from typing import Callable, ContextManager, Generator, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool

from photo_analyzer.core.config import settings
from photo_analyzer.core.logging import get_logger

logger = get_logger("db.connection")

SessionFactory = Callable[[], ContextManager[Session]]

# Created on first use, never at import time
_engine: Optional[Engine] = None
_default_factory: Optional[SessionFactory] = None


def _get_engine() -> Engine:
    global _engine
    if _engine is None:
        _engine = create_engine(
            settings.database_url,
            poolclass=QueuePool,
            pool_size=5,
            max_overflow=10,
            pool_pre_ping=True,
            pool_timeout=5,
        )
    return _engine


def make_session_factory(engine: Engine) -> SessionFactory:
    """
    Build a transactional session context manager bound to `engine`.

    Objects stay readable after commit (`expire_on_commit=False`), so
    repositories can map rows to records outside the transaction.
    """
    local = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)

    @contextmanager
    def _session() -> Generator[Session, None, None]:
        db = local()
        try:
            yield db
            db.commit()
        except Exception as e:
            db.rollback()
            logger.error(f"Database error, rolled back: {e}")
            raise
        finally:
            db.close()

    return _session


@contextmanager
def get_db_session() -> Generator[Session, None, None]:
    """Session on the configured database."""
    global _default_factory
    if _default_factory is None:
        _default_factory = make_session_factory(_get_engine())
    with _default_factory() as db:
        yield db


def init_db(engine: Optional[Engine] = None) -> None:
    """Create the analyzer tables that do not exist yet."""
    from photo_analyzer.db.models import Base

    engine = engine or _get_engine()
    Base.metadata.create_all(bind=engine, checkfirst=True)
    logger.info(f"Analyzer tables ready on {engine.url.render_as_string(hide_password=True)}")
