"""Shared fixtures: SQLite-backed lifecycle models, repositories and services."""

import uuid
from datetime import datetime, timedelta
from unittest.mock import Mock

import pytest
from sqlalchemy import create_engine, event, func, select
from sqlalchemy.orm import Session

from lifecycle_toolkit.config import LifecycleConfig, set_config
from lifecycle_toolkit.soft_delete import (
    EntityStatus,
    SoftDeleteRepository,
    SoftDeleteService,
)

from sample_models import Attachment, Base, Document


class FakeClock:
    """Clock that advances one minute on every call."""

    def __init__(self, start: datetime = datetime(2026, 3, 1, 9, 0, 0)):
        self.current = start

    def __call__(self) -> datetime:
        self.current += timedelta(minutes=1)
        return self.current


@pytest.fixture(autouse=True)
def reset_global_config():
    """Keep tests independent of each other's global configuration."""
    set_config(None)
    yield
    set_config(None)


@pytest.fixture
def config():
    return LifecycleConfig(environment="test")


@pytest.fixture
def engine():
    """Create an in-memory SQLite database."""
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(engine):
    session = Session(engine)
    yield session
    session.close()


@pytest.fixture
def repository(db_session):
    return SoftDeleteRepository(db_session, Document)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def audit_logger():
    return Mock()


@pytest.fixture
def service(repository, config, clock, audit_logger):
    return SoftDeleteService(
        repository, audit_logger=audit_logger, config=config, clock=clock
    )


@pytest.fixture
def make_document(repository, clock):
    """Create and commit a document stamped by ``actor``."""

    def _make(title: str = "SOP-001", actor: str = "creator", owner=None):
        document = repository.add(
            Document(title=title, owner=owner), actor, clock()
        )
        repository.commit()
        return document

    return _make


@pytest.fixture
def make_attachment(db_session):
    def _make(document, filename: str = "scan.pdf"):
        attachment = Attachment(document_id=document.id, filename=filename)
        attachment.stamp_created("creator")
        db_session.add(attachment)
        db_session.commit()
        return attachment

    return _make


@pytest.fixture
def active_attachments(db_session):
    """Dependency check counting active attachments of a document."""

    def _count(document_id: uuid.UUID) -> int:
        stmt = (
            select(func.count())
            .select_from(Attachment)
            .where(
                Attachment.document_id == document_id,
                Attachment.status == EntityStatus.ACTIVE,
            )
        )
        return int(db_session.execute(stmt).scalar_one())

    return _count


@pytest.fixture
def file_engine(tmp_path):
    """File-backed SQLite database shareable across threads and the CLI."""
    path = tmp_path / "lifecycle.db"
    engine = create_engine(
        f"sqlite:///{path}", connect_args={"check_same_thread": False}
    )

    # writers take the lock up front and queue on the busy timeout
    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()
