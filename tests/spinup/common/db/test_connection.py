from unittest.mock import patch

import pytest

from spinup.common import settings
from spinup.common.db import connection
from spinup.common.db.models import Base, Server


@pytest.fixture
def sqlite_db(tmp_path):
    with (
        patch.object(settings, "DB_URL", f"sqlite:///{tmp_path / 'conn.db'}"),
        patch.object(connection, "_engine", None),
        patch.object(connection, "_session_factory", None),
        patch.object(connection, "_scoped_session", None),
    ):
        Base.metadata.create_all(connection.get_engine())
        yield
        connection.get_engine().dispose()


def test_engine_is_cached(sqlite_db):
    assert connection.get_engine() is connection.get_engine()
    assert connection.get_scoped_session() is connection.get_scoped_session()


def test_make_session_commits(sqlite_db):
    with connection.make_session() as session:
        session.add(Server(org_id="org-1", name="kept", game_key="terraria", ports=[]))

    with connection.make_session() as session:
        assert [s.name for s in session.query(Server).all()] == ["kept"]


def test_make_session_rolls_back_on_error(sqlite_db):
    with pytest.raises(RuntimeError):
        with connection.make_session() as session:
            session.add(Server(org_id="org-1", name="dropped", game_key="terraria", ports=[]))
            session.flush()
            raise RuntimeError("boom")

    with connection.make_session() as session:
        assert session.query(Server).count() == 0
