"""Shared fixtures: in-memory SQLite, inline memory ingest, captured telemetry."""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

import data_models  # noqa: F401  registers every table on Base.metadata
from data_models.base import Base
from data_services.telemetry import MemoryTelemetrySink, set_telemetry_sink
from data_utils import db_factory
from data_utils.db_factory import enable_sqlite_savepoints, get_session, init_db
from data_workers import ingest_outbox
from next_actions.fetch_context import CommandCenterSignals


@pytest.fixture
def engine(monkeypatch):
    # Every test gets its own database; one shared connection so sessions see each other's commits
    monkeypatch.setattr(db_factory, "_engine", None)
    monkeypatch.setattr(db_factory, "_SessionLocal", None)

    engine = enable_sqlite_savepoints(
        create_engine(
            "sqlite://",
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
    )
    Base.metadata.create_all(engine)
    init_db(engine=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(engine):
    session = get_session()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(autouse=True)
def inline_ingest(monkeypatch):
    monkeypatch.setattr(ingest_outbox, "INGEST_MODE", "inline")


@pytest.fixture(autouse=True)
def telemetry():
    sink = MemoryTelemetrySink()
    previous = set_telemetry_sink(sink)
    yield sink
    set_telemetry_sink(previous)


@pytest.fixture
def signals():
    """Builds a command center provider returning fixed counters."""

    def make(**counters):
        snapshot = CommandCenterSignals(**counters)
        return lambda session, now: snapshot

    return make


@pytest.fixture
def client(engine):
    from api.app_factory import create_app

    with TestClient(create_app()) as c:
        yield c
