from __future__ import annotations

from datetime import UTC, datetime
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from push_pipeline.jobs.models import DeadLetterRecord
from push_pipeline.main import app
from push_pipeline.notifications.contracts import QueueError

SECRET = "ops-secret-value"


@pytest.fixture
def queue():
  return AsyncMock()


@pytest.fixture
def client(clean_env, queue):
  clean_env.setenv("PUSH_OPS_SECRET", SECRET)
  app.state.queue = queue
  yield TestClient(app)
  del app.state.queue


def _record(job_id: str) -> DeadLetterRecord:
  now = datetime(2026, 10, 19, 9, 0, tzinfo=UTC)
  return DeadLetterRecord(job_id=job_id, recipient_id="user-1", title="Lesson ready", attempts=5, last_error="provider error messaging/unavailable", enqueued_at=now, dead_lettered_at=now)


def test_health_is_public(client):
  response = client.get("/health")
  assert response.status_code == 200
  assert response.json()["status"] == "ok"
  assert response.json()["worker"] == "stopped"


def test_dead_letters_require_secret(client, queue):
  response = client.get("/internal/dead-letters")
  assert response.status_code == 403
  response = client.get("/internal/dead-letters", headers={"X-Push-Ops-Secret": "wrong"})
  assert response.status_code == 403
  queue.list_dead_letters.assert_not_called()


def test_dead_letters_denied_when_secret_unconfigured(clean_env, queue):
  app.state.queue = queue
  try:
    response = TestClient(app).get("/internal/dead-letters", headers={"X-Push-Ops-Secret": ""})
  finally:
    del app.state.queue
  assert response.status_code == 403
  assert response.json()["detail"] == "Operator authentication is not configured."


def test_list_dead_letters(client, queue):
  queue.list_dead_letters.return_value = [_record("job-2"), _record("job-1")]

  response = client.get("/internal/dead-letters?limit=10", headers={"X-Push-Ops-Secret": SECRET})

  assert response.status_code == 200
  body = response.json()
  assert body["count"] == 2
  assert [item["job_id"] for item in body["items"]] == ["job-2", "job-1"]
  assert body["items"][0]["attempts"] == 5
  queue.list_dead_letters.assert_awaited_once_with(limit=10)


def test_list_dead_letters_reports_queue_outage(client, queue):
  queue.list_dead_letters.side_effect = QueueError("db down")
  response = client.get("/internal/dead-letters", headers={"X-Push-Ops-Secret": SECRET})
  assert response.status_code == 503


def test_requeue_dead_letter(client, queue):
  queue.requeue_dead_letter.return_value = True
  response = client.post("/internal/dead-letters/job-1/requeue", headers={"X-Push-Ops-Secret": SECRET})
  assert response.status_code == 200
  assert response.json() == {"job_id": "job-1", "status": "queued"}
  queue.requeue_dead_letter.assert_awaited_once_with("job-1")


def test_requeue_unknown_job_is_404(client, queue):
  queue.requeue_dead_letter.return_value = False
  response = client.post("/internal/dead-letters/missing/requeue", headers={"X-Push-Ops-Secret": SECRET})
  assert response.status_code == 404
