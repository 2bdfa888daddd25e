"""Shared fixtures: SQLite-backed relational and document stores.

Service tests run against a real SQLAlchemy session (in-memory SQLite,
single shared connection). The document store gets its own engine so the
two never share a transaction, as in production.
"""
import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.config import settings
from app.core.limiter import limiter
from app.db.base import Base
from app.services.document_store import SqlDocumentStore

import app.models  # noqa: F401  (register every table on Base.metadata)


def _sqlite_engine(url: str = "sqlite://"):
    engine = create_engine(
        url,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool if url == "sqlite://" else None,
    )

    @event.listens_for(engine, "connect")
    def _enable_foreign_keys(dbapi_connection, connection_record):
        dbapi_connection.execute("PRAGMA foreign_keys=ON")

    return engine


@pytest.fixture(autouse=True)
def _fast_settings(monkeypatch):
    """No backoff sleeps, inline effects, no rate limiting in tests."""
    monkeypatch.setattr(settings, "RETRY_BACKOFF_BASE_SECONDS", 0.0)
    monkeypatch.setattr(settings, "EFFECTS_DISPATCH_MODE", "inline")
    monkeypatch.setattr(settings, "BATCH_TARGET_CAPACITY_KG", 5000.0)
    monkeypatch.setattr(settings, "THREE_APPROVAL_THRESHOLD", 5_000_000.00)
    monkeypatch.setattr(limiter, "enabled", False)


@pytest.fixture
def engine():
    engine = _sqlite_engine()
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, expire_on_commit=False, autoflush=False)


@pytest.fixture
def db(session_factory):
    with session_factory() as session:
        yield session


@pytest.fixture
def documents():
    store = SqlDocumentStore(engine=_sqlite_engine())
    store.ensure_schema()
    yield store
    store.engine.dispose()


@pytest.fixture
def file_engine(tmp_path):
    """File-backed SQLite so two independent connections can race."""
    engine = _sqlite_engine(f"sqlite:///{tmp_path / 'race.db'}")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()
