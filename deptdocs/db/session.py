"""
deptdocs Database Session Management.

Single entry point for database initialisation plus the transaction context
manager every directory, grant and resolver call runs inside. Storage
exceptions are translated into the deptdocs error hierarchy after rollback:
constraint violations become conflicts, everything else from the DBAPI is a
transient storage error.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Callable, Generator, Optional

from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from deptdocs.db.base import Base, engine_registry
from deptdocs.engine.config import DatabaseConfig
from deptdocs.engine.errors import DeptDocsConflictError, DeptDocsStorageError

logger = logging.getLogger("deptdocs.db.session")

ENGINE_NAME = "deptdocs"

SessionFactory = Callable[[], Session]

_session_factory: Optional[sessionmaker] = None


def init_db(
    db_config: Optional[DatabaseConfig] = None,
    url: Optional[str] = None,
    create_tables: bool = False,
) -> sessionmaker:
    """
    Register the deptdocs engine and return its session factory.

    Args:
        db_config: Database section of deptdocs.yaml (defaults when None).
        url: Overrides db_config.url (tests, CLI --url).
        create_tables: Run Base.metadata.create_all() — dev/init only;
                       production schemas are managed by migrations.
    """
    global _session_factory

    # Model classes must be imported before create_all sees the metadata
    from deptdocs.db import models  # noqa: F401

    cfg = db_config or DatabaseConfig()
    engine = engine_registry.register(
        ENGINE_NAME,
        url or cfg.url,
        pool_size=cfg.pool_size,
        max_overflow=cfg.max_overflow,
        pool_timeout=cfg.pool_timeout,
        pool_recycle=cfg.pool_recycle,
        pool_pre_ping=cfg.pool_pre_ping,
        isolation_level=cfg.isolation_level,
    )

    if create_tables:
        Base.metadata.create_all(engine)

    _session_factory = engine_registry.get_session_factory(ENGINE_NAME)
    logger.info(f"Database initialised (isolation={cfg.isolation_level})")
    return _session_factory


def get_session_factory() -> sessionmaker:
    """Return the factory built by init_db()."""
    if _session_factory is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return _session_factory


@contextmanager
def transaction(
    session_factory: SessionFactory,
    operation: str = "transaction",
    read_only: bool = False,
) -> Generator[Session, None, None]:
    """
    One atomic unit of work.

    Commits on success (rolls back instead when read_only), rolls back on any
    error. Nothing from an aborted transaction is ever observable.

    Raises:
        DeptDocsConflictError: a storage constraint rejected the write.
        DeptDocsStorageError: lost connection, serialization failure, etc.
    """
    session = session_factory()
    try:
        yield session
        if read_only:
            session.rollback()
        else:
            session.commit()
    except IntegrityError as e:
        session.rollback()
        logger.warning(f"{operation}: constraint violation: {e.orig}")
        raise DeptDocsConflictError(
            f"{operation} conflicts with existing data",
            reason="constraint",
            operation=operation,
        ) from e
    except DBAPIError as e:
        session.rollback()
        logger.error(f"{operation}: storage failure: {e.orig}")
        raise DeptDocsStorageError(
            f"{operation} failed due to a storage error",
            operation=operation,
        ) from e
    except BaseException:
        session.rollback()
        raise
    finally:
        session.close()


@contextmanager
def session_scope(operation: str = "transaction") -> Generator[Session, None, None]:
    """transaction() bound to the factory created by init_db()."""
    with transaction(get_session_factory(), operation) as session:
        yield session


def close_db() -> None:
    """Dispose the engine. Used during shutdown and between tests."""
    global _session_factory
    _session_factory = None
    engine_registry.dispose(ENGINE_NAME)
