"""Tests for the job ledger and the enqueue API."""

from unittest.mock import Mock

import pytest
from sqlalchemy import select

from spinup.common import jobs as job_utils
from spinup.common.celery_app import PROCESS_SERVER_JOB
from spinup.common.db.models import Job, JobStatus, JobType


@pytest.fixture
def server(make_server):
    return make_server()


@pytest.fixture
def sample_job(db_session, server):
    job = job_utils.create_job(db_session, server.id, JobType.START)
    db_session.commit()
    return job


def test_create_job(db_session, server):
    job = job_utils.create_job(db_session, server.id, JobType.CREATE)
    db_session.commit()

    assert job.id is not None
    assert job.server_id == server.id
    assert job.type == "CREATE"
    assert job.status == JobStatus.PENDING.value
    assert job.progress == 0
    assert job.payload == {}
    assert job.logs == ""
    assert job.error is None
    assert job.started_at is None
    assert job.finished_at is None


def test_create_job_with_string_type(db_session, server):
    job = job_utils.create_job(db_session, server.id, "STOP")
    db_session.commit()

    assert job.type == JobType.STOP.value


def test_create_job_rejects_unknown_type(db_session, server):
    with pytest.raises(ValueError):
        job_utils.create_job(db_session, server.id, "REBUILD")


def test_enqueue_publishes_message(db_session, server, mock_send_task):
    job = job_utils.enqueue(db_session, server.id, JobType.CREATE)

    mock_send_task.assert_called_once_with(
        PROCESS_SERVER_JOB,
        kwargs={"server_id": server.id, "job_id": job.id, "job_type": "CREATE"},
    )
    assert job.status == JobStatus.PENDING.value
    assert job.celery_task_id is not None

    stored = db_session.get(Job, job.id)
    assert stored is not None
    assert stored.status == JobStatus.PENDING.value


def test_enqueue_commits_before_publishing(db_session, db_engine, server, mock_send_task):
    seen = {}

    def send_task(*args, **kwargs):
        job_id = kwargs["kwargs"]["job_id"]
        # Read through a separate connection, as the worker would
        with db_engine.connect() as conn:
            rows = conn.execute(select(Job.id).where(Job.id == job_id)).all()
        seen["persisted"] = len(rows) == 1
        return Mock(id="task-1")

    mock_send_task.side_effect = send_task
    job_utils.enqueue(db_session, server.id, JobType.START)

    assert seen["persisted"] is True


def test_enqueue_failure_marks_job_failed(db_session, server, mock_send_task):
    mock_send_task.side_effect = ConnectionError("broker down")

    with pytest.raises(ConnectionError):
        job_utils.enqueue(db_session, server.id, JobType.STOP)

    job = db_session.query(Job).filter(Job.server_id == server.id).one()
    assert job.status == JobStatus.FAILED.value
    assert job.error == "Failed to dispatch job: broker down"
    assert job.finished_at is not None
    assert job.started_at is not None


def test_duplicate_enqueues_create_independent_jobs(db_session, server, mock_send_task):
    first = job_utils.enqueue_create(db_session, server.id)
    second = job_utils.enqueue_create(db_session, server.id)

    assert first.id != second.id
    assert mock_send_task.call_count == 2
    assert db_session.query(Job).filter(Job.server_id == server.id).count() == 2


@pytest.mark.parametrize(
    "enqueue_fn, expected_type",
    [
        (job_utils.enqueue_create, "CREATE"),
        (job_utils.enqueue_start, "START"),
        (job_utils.enqueue_stop, "STOP"),
        (job_utils.enqueue_restart, "RESTART"),
        (job_utils.enqueue_delete, "DELETE"),
    ],
)
def test_enqueue_helpers(db_session, server, enqueue_fn, expected_type):
    job = enqueue_fn(db_session, server.id)

    assert job.type == expected_type
    assert job.server_id == server.id


def test_get_job(db_session, sample_job):
    retrieved = job_utils.get_job(db_session, sample_job.id)

    assert retrieved is not None
    assert retrieved.id == sample_job.id


def test_get_job_not_found(db_session):
    assert job_utils.get_job(db_session, "no-such-job") is None


def test_list_jobs_filters(db_session, server, make_server):
    other = make_server(name="other-server")
    start = job_utils.create_job(db_session, server.id, JobType.START)
    stop = job_utils.create_job(db_session, server.id, JobType.STOP)
    job_utils.create_job(db_session, other.id, JobType.START)
    stop.mark_failed("boom")
    db_session.commit()

    assert {j.id for j in job_utils.list_jobs(db_session, server_id=server.id)} == {
        start.id,
        stop.id,
    }
    assert [j.id for j in job_utils.list_jobs(db_session, server_id=server.id, status="FAILED")] == [
        stop.id
    ]
    assert [
        j.id for j in job_utils.list_jobs(db_session, server_id=server.id, job_type=JobType.START)
    ] == [start.id]
    assert len(job_utils.list_jobs(db_session)) == 3
    assert len(job_utils.list_jobs(db_session, limit=2)) == 2


def test_has_active_job(db_session, server):
    assert not job_utils.has_active_job(db_session, server.id)

    job = job_utils.create_job(db_session, server.id, JobType.START)
    db_session.commit()
    assert job_utils.has_active_job(db_session, server.id)

    job.mark_running()
    db_session.commit()
    assert job_utils.has_active_job(db_session, server.id)

    job.mark_success()
    db_session.commit()
    assert not job_utils.has_active_job(db_session, server.id)


def test_start_job(db_session, sample_job):
    job = job_utils.start_job(db_session, sample_job.id)

    assert job is not None
    assert job.status == JobStatus.RUNNING.value
    assert job.started_at is not None


def test_start_job_missing(db_session):
    assert job_utils.start_job(db_session, "missing") is None


def test_update_progress_appends_log(db_session, sample_job):
    job_utils.update_progress(db_session, sample_job, 30, "Pulled image")
    job_utils.update_progress(db_session, sample_job, 60, "Allocated ports")

    db_session.expire_all()
    job = db_session.get(Job, sample_job.id)
    assert job.progress == 60
    assert job.logs == "Pulled image\nAllocated ports\n"


@pytest.mark.parametrize("value, expected", [(-5, 0), (150, 100), (42, 42)])
def test_update_progress_clamps(db_session, sample_job, value, expected):
    job_utils.update_progress(db_session, sample_job, value)

    assert sample_job.progress == expected


def test_complete_job(db_session, sample_job):
    job_utils.start_job(db_session, sample_job.id)
    job = job_utils.complete_job(db_session, sample_job.id)

    assert job is not None
    assert job.status == JobStatus.SUCCESS.value
    assert job.progress == 100
    assert job.finished_at is not None
    assert job.finished_at >= job.started_at


def test_complete_job_missing(db_session):
    assert job_utils.complete_job(db_session, "missing") is None


def test_fail_job(db_session, sample_job):
    job_utils.start_job(db_session, sample_job.id)
    job = job_utils.fail_job(db_session, sample_job.id, "Container not found")

    assert job is not None
    assert job.status == JobStatus.FAILED.value
    assert job.error == "Container not found"
    assert job.finished_at is not None


def test_fail_job_missing(db_session):
    assert job_utils.fail_job(db_session, "missing", "error") is None


def test_serialize_job(db_session, sample_job):
    data = job_utils.serialize_job(sample_job)

    assert data["id"] == sample_job.id
    assert data["server_id"] == sample_job.server_id
    assert data["type"] == "START"
    assert data["status"] == "PENDING"
    assert data["progress"] == 0
    assert data["error"] is None
    assert data["started_at"] is None
    assert data["finished_at"] is None
    assert isinstance(data["created_at"], str)
    assert data["logs"] == ""
    assert data["payload"] == {}
