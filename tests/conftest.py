import uuid
from contextlib import contextmanager
from pathlib import Path
from unittest.mock import MagicMock, Mock, patch

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker

from spinup.common import containers, settings
from spinup.common.celery_app import app as celery_app
from spinup.common.db.models import Base, Server, ServerStatus

TEST_CONTAINER_ID = "c0ffee" + "0" * 58


@pytest.fixture
def db_engine(tmp_path: Path):
    """
    Create a SQLite engine with the full schema.

    Returns:
        SQLAlchemy engine
    """
    engine = create_engine(f"sqlite:///{tmp_path / 'spinup.db'}")

    @event.listens_for(engine, "connect")
    def enable_foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(db_engine):
    """
    Create a new database session for a test.

    Args:
        db_engine: SQLAlchemy engine (from the db_engine fixture)

    Returns:
        SQLAlchemy session
    """
    SessionLocal = sessionmaker(bind=db_engine, autocommit=False, autoflush=False)
    session = SessionLocal()

    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def mock_make_session(db_session):
    """Make every `make_session` in the code under test yield `db_session`."""

    @contextmanager
    def _mock_session():
        yield db_session

    with (
        patch("spinup.workers.tasks.servers.make_session", _mock_session),
        patch("tools.servers.make_session", _mock_session),
    ):
        yield db_session


@pytest.fixture(autouse=True)
def mock_file_storage(tmp_path: Path):
    data_dir = tmp_path / "servers"
    data_dir.mkdir(parents=True, exist_ok=True)
    with patch.object(settings, "DATA_DIR", data_dir):
        yield data_dir


@pytest.fixture(autouse=True)
def mock_port_lock():
    with patch.object(settings, "PORT_ALLOCATION_LOCK", False):
        yield


@pytest.fixture(autouse=True)
def mock_send_task():
    def send_task(*args, **kwargs):
        return Mock(id=str(uuid.uuid4()))

    with patch.object(celery_app, "send_task", side_effect=send_task) as mock:
        yield mock


@pytest.fixture(autouse=True)
def docker_client():
    """Replace the cached Docker client so nothing talks to a real daemon."""
    client = MagicMock()
    client.api.pull.return_value = iter([])
    client.api.containers.return_value = []
    client.containers.create.return_value = Mock(
        id=TEST_CONTAINER_ID, short_id=TEST_CONTAINER_ID[:12]
    )
    with patch.object(containers, "_client", client):
        yield client


@pytest.fixture(autouse=True)
def mock_host_sockets():
    with patch("spinup.common.ports.psutil.net_connections", return_value=[]) as mock:
        yield mock


@pytest.fixture
def make_server(db_session):
    """Factory for committed Server rows."""

    def _make(**kwargs) -> Server:
        defaults = {
            "org_id": "org-1",
            "name": "test-server",
            "game_key": "minecraft-java",
            "status": ServerStatus.CREATING.value,
            "ports": [],
        }
        server = Server(**(defaults | kwargs))
        db_session.add(server)
        db_session.commit()
        return server

    return _make
