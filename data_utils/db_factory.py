from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import sessionmaker, Session

from data_utils.settings import DatabaseSettings

# 1. Global storage
_engine: Optional[Engine] = None
_SessionLocal: Optional[sessionmaker] = None


def get_db_url(original_dsn: str) -> str:
    url = make_url(original_dsn)
    if url.drivername == "postgresql":
        url = url.set(drivername="postgresql+psycopg")
    return url.render_as_string(hide_password=False)


def enable_sqlite_savepoints(engine: Engine) -> Engine:
    """
    pysqlite opens transactions lazily and breaks SAVEPOINT semantics.
    Hand transaction control to SQLAlchemy so begin_nested() works on SQLite.
    """

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    return engine


def init_db(settings: Optional[DatabaseSettings] = None, engine: Optional[Engine] = None):
    """
    Initializes the process-wide engine and session factory once.
    An explicit engine (tests, scripts) takes precedence over settings.
    """
    global _engine, _SessionLocal
    if _engine is not None and engine is None:
        return

    if engine is None:
        settings = settings or DatabaseSettings()
        db_url = get_db_url(settings.database_url)
        if make_url(db_url).get_backend_name() == "sqlite":
            engine = enable_sqlite_savepoints(
                create_engine(db_url, connect_args={"check_same_thread": False})
            )
        else:
            engine = create_engine(
                db_url,
                pool_pre_ping=True,
                pool_size=settings.DB_POOL_SIZE,
                max_overflow=settings.DB_MAX_OVERFLOW,
            )

    _engine = engine
    _SessionLocal = sessionmaker(
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
        bind=_engine
    )


def get_engine() -> Engine:
    if _engine is None:
        raise RuntimeError("Database not initialized. Call init_db(settings) first.")
    return _engine


def get_session() -> Session:
    if _SessionLocal is None:
        raise RuntimeError("Database not initialized. Call init_db(settings) first.")
    return _SessionLocal()


@contextmanager
def get_db_context(settings: Optional[DatabaseSettings] = None) -> Generator[Session, None, None]:
    """
    Context manager for python 'with' statements.

    Usage:
        with get_db_context(settings) as session:
            session.execute(...)
    """
    # Ensure init if not already done
    init_db(settings)

    session = _SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def get_db() -> Generator[Session, None, None]:
    """FastAPI dependency: one session per request, closed afterwards."""
    init_db()
    session = _SessionLocal()
    try:
        yield session
    finally:
        session.close()
