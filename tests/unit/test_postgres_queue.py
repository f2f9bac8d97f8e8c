from __future__ import annotations

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.dialects import postgresql
from sqlalchemy.exc import OperationalError

from push_pipeline.jobs.models import NotificationJob
from push_pipeline.notifications.contracts import QueueError
from push_pipeline.schema.notification_jobs import NotificationJobRow
from push_pipeline.storage.postgres_queue import PostgresNotificationQueue


def _session_factory(session):
  factory = MagicMock()
  factory.return_value.__aenter__ = AsyncMock(return_value=session)
  factory.return_value.__aexit__ = AsyncMock(return_value=False)
  return factory


def _session(rowcount: int = 1):
  session = AsyncMock()
  session.add = MagicMock()
  result = MagicMock()
  result.rowcount = rowcount
  result.scalar_one_or_none.return_value = None
  session.execute.return_value = result
  return session


@pytest.mark.anyio
async def test_enqueue_adds_row_and_notifies():
  session = _session()
  queue = PostgresNotificationQueue(session_factory=_session_factory(session))
  job = NotificationJob(recipient_id="user-1", title="t", body="b", data={"n": 1})

  await queue.enqueue(job)

  row = session.add.call_args[0][0]
  assert row.job_id == job.job_id
  assert row.status == "queued"
  assert row.data_json == {"n": "1"}
  session.execute.assert_awaited_once()
  session.commit.assert_awaited_once()


@pytest.mark.anyio
async def test_enqueue_wraps_database_errors():
  session = _session()
  session.commit.side_effect = OperationalError("INSERT", {}, Exception("connection refused"))
  queue = PostgresNotificationQueue(session_factory=_session_factory(session))

  with pytest.raises(QueueError):
    await queue.enqueue(NotificationJob(recipient_id="user-1", title="t", body="b"))


@pytest.mark.anyio
async def test_ack_reports_lost_lease():
  queue = PostgresNotificationQueue(session_factory=_session_factory(_session(rowcount=0)))
  job = NotificationJob(recipient_id="user-1", title="t", body="b", lease_id="stale")
  assert await queue.ack(job) is False


@pytest.mark.anyio
async def test_state_changes_require_a_lease():
  session = _session()
  queue = PostgresNotificationQueue(session_factory=_session_factory(session))
  job = NotificationJob(recipient_id="user-1", title="t", body="b")

  assert await queue.retry(job, delay_seconds=5) is False
  assert await queue.dead_letter(job, reason="boom") is False
  session.execute.assert_not_called()


@pytest.mark.anyio
async def test_claim_without_rows_returns_none():
  queue = PostgresNotificationQueue(session_factory=_session_factory(_session()), poll_interval_seconds=0.01)
  assert await queue.claim(wait_seconds=0.03) is None


def _row(**overrides) -> NotificationJobRow:
  values = {
    "job_id": "job-1",
    "recipient_id": "user-1",
    "title": "t",
    "body": "b",
    "data_json": {"lesson_id": "42"},
    "status": "queued",
    "attempts": 0,
    "lease_id": None,
    "visible_at": datetime.now(UTC) - timedelta(seconds=1),
    "enqueued_at": datetime.now(UTC) - timedelta(minutes=5),
  }
  values.update(overrides)
  return NotificationJobRow(**values)


def _compiled(session):
  """Compile the statement handed to the last `session.execute` call."""
  stmt = session.execute.call_args[0][0]
  compiled = stmt.compile(dialect=postgresql.dialect())
  return str(compiled), compiled.params


def _leased_job() -> NotificationJob:
  return NotificationJob(job_id="job-1", recipient_id="user-1", title="t", body="b", lease_id="lease-1")


@pytest.mark.anyio
async def test_claim_leases_the_selected_row():
  session = _session()
  row = _row()
  session.execute.return_value.scalar_one_or_none.return_value = row
  queue = PostgresNotificationQueue(session_factory=_session_factory(session), visibility_timeout_seconds=60)

  job = await queue.claim(wait_seconds=0)

  assert job.job_id == "job-1"
  assert job.lease_id is not None
  assert job.lease_id == row.lease_id
  assert job.attempts == 0
  assert job.data == {"lesson_id": "42"}
  assert row.status == "leased"
  assert row.visible_at > datetime.now(UTC) + timedelta(seconds=50)
  session.commit.assert_awaited_once()
  sql, _ = _compiled(session)
  assert "FOR UPDATE SKIP LOCKED" in sql


@pytest.mark.anyio
async def test_claim_of_expired_lease_counts_an_attempt():
  session = _session()
  row = _row(status="leased", attempts=1, lease_id="crashed-worker")
  session.execute.return_value.scalar_one_or_none.return_value = row
  queue = PostgresNotificationQueue(session_factory=_session_factory(session))

  job = await queue.claim(wait_seconds=0)

  assert job.attempts == 2
  assert row.attempts == 2
  assert job.lease_id != "crashed-worker"
  assert job.last_error == "lease expired before the job was settled"


@pytest.mark.anyio
async def test_retry_requeues_with_attempt_and_delay():
  session = _session()
  queue = PostgresNotificationQueue(session_factory=_session_factory(session))

  assert await queue.retry(_leased_job(), delay_seconds=30, error="provider unavailable") is True

  sql, params = _compiled(session)
  assert "notification_jobs.attempts +" in sql
  assert params["status"] == "queued"
  assert params["last_error"] == "provider unavailable"
  assert params["visible_at"] > datetime.now(UTC) + timedelta(seconds=25)
  assert params["lease_id_1"] == "lease-1"
  session.commit.assert_awaited_once()


@pytest.mark.anyio
async def test_dead_letter_marks_row_dead():
  session = _session()
  queue = PostgresNotificationQueue(session_factory=_session_factory(session))

  assert await queue.dead_letter(_leased_job(), reason="5 of 5 attempts failed") is True

  sql, params = _compiled(session)
  assert "notification_jobs.attempts +" in sql
  assert params["status"] == "dead"
  assert params["last_error"] == "5 of 5 attempts failed"
  assert isinstance(params["dead_lettered_at"], datetime)


@pytest.mark.anyio
async def test_extend_lease_pushes_visibility_out():
  session = _session()
  queue = PostgresNotificationQueue(session_factory=_session_factory(session), visibility_timeout_seconds=60)

  assert await queue.extend_lease(_leased_job()) is True

  sql, params = _compiled(session)
  assert "status" not in params
  assert params["visible_at"] > datetime.now(UTC) + timedelta(seconds=50)
  assert params["lease_id_1"] == "lease-1"


@pytest.mark.anyio
async def test_extend_lease_reports_lost_lease():
  queue = PostgresNotificationQueue(session_factory=_session_factory(_session(rowcount=0)))
  assert await queue.extend_lease(_leased_job()) is False


@pytest.mark.anyio
@pytest.mark.parametrize(("rowcount", "expected"), [(1, True), (0, False)])
async def test_requeue_dead_letter_reports_whether_a_row_changed(rowcount, expected):
  session = _session(rowcount=rowcount)
  queue = PostgresNotificationQueue(session_factory=_session_factory(session))

  assert await queue.requeue_dead_letter("job-1") is expected

  assert session.execute.await_count == 2
  update_sql = str(session.execute.call_args_list[0][0][0].compile(dialect=postgresql.dialect()))
  assert "UPDATE notification_jobs" in update_sql
  session.commit.assert_awaited_once()


@pytest.mark.anyio
async def test_raw_connection_errors_become_queue_errors():
  session = _session()
  session.execute.side_effect = ConnectionRefusedError(111, "Connect call failed")
  queue = PostgresNotificationQueue(session_factory=_session_factory(session))

  with pytest.raises(QueueError):
    await queue.claim(wait_seconds=0)
  with pytest.raises(QueueError):
    await queue.ack(_leased_job())
