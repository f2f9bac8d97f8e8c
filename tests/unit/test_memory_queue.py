from __future__ import annotations

import asyncio

import pytest

from push_pipeline.jobs.models import NotificationJob
from push_pipeline.storage.memory_queue import InMemoryNotificationQueue


class _Clock:
  def __init__(self) -> None:
    self.now = 1000.0

  def __call__(self) -> float:
    return self.now


def _job(**overrides) -> NotificationJob:
  values = {"recipient_id": "user-1", "title": "Hello", "body": "World", "data": {"k": "v"}}
  values.update(overrides)
  return NotificationJob(**values)


@pytest.mark.anyio
async def test_claim_leases_job_and_hides_it_from_other_consumers():
  queue = InMemoryNotificationQueue(clock=_Clock())
  job = _job()
  await queue.enqueue(job)

  claimed = await queue.claim(wait_seconds=0)
  assert claimed is not None
  assert claimed.job_id == job.job_id
  assert claimed.lease_id is not None
  assert await queue.claim(wait_seconds=0) is None


@pytest.mark.anyio
async def test_ack_removes_job():
  queue = InMemoryNotificationQueue(clock=_Clock())
  await queue.enqueue(_job())
  claimed = await queue.claim(wait_seconds=0)

  assert await queue.ack(claimed) is True
  assert queue.pending_count() == 0
  assert await queue.ack(claimed) is False


@pytest.mark.anyio
async def test_retry_counts_attempt_and_delays_visibility():
  clock = _Clock()
  queue = InMemoryNotificationQueue(clock=clock)
  await queue.enqueue(_job())
  claimed = await queue.claim(wait_seconds=0)

  assert await queue.retry(claimed, delay_seconds=30, error="provider unavailable") is True
  assert await queue.claim(wait_seconds=0) is None

  clock.now += 30
  again = await queue.claim(wait_seconds=0)
  assert again is not None
  assert again.attempts == 1
  assert again.last_error == "provider unavailable"
  assert again.lease_id != claimed.lease_id


@pytest.mark.anyio
async def test_expired_lease_is_reclaimed_and_stale_holder_is_ignored():
  clock = _Clock()
  queue = InMemoryNotificationQueue(visibility_timeout_seconds=60, clock=clock)
  await queue.enqueue(_job())
  first = await queue.claim(wait_seconds=0)

  clock.now += 61
  second = await queue.claim(wait_seconds=0)
  assert second is not None
  assert second.job_id == first.job_id
  # The lapsed lease counts as a failed attempt.
  assert second.attempts == 1
  assert second.last_error == "lease expired before the job was settled"

  assert await queue.ack(first) is False
  assert await queue.retry(first, delay_seconds=0) is False
  assert await queue.dead_letter(first, reason="stale") is False
  assert await queue.ack(second) is True


@pytest.mark.anyio
async def test_extend_lease_keeps_job_hidden_past_original_deadline():
  clock = _Clock()
  queue = InMemoryNotificationQueue(visibility_timeout_seconds=60, clock=clock)
  await queue.enqueue(_job())
  claimed = await queue.claim(wait_seconds=0)

  clock.now += 50
  assert await queue.extend_lease(claimed) is True
  clock.now += 50
  assert await queue.claim(wait_seconds=0) is None

  clock.now += 11
  reclaimed = await queue.claim(wait_seconds=0)
  assert reclaimed is not None
  assert reclaimed.attempts == 1


@pytest.mark.anyio
async def test_extend_lease_fails_for_stale_holder():
  clock = _Clock()
  queue = InMemoryNotificationQueue(visibility_timeout_seconds=60, clock=clock)
  await queue.enqueue(_job())
  first = await queue.claim(wait_seconds=0)
  clock.now += 61
  second = await queue.claim(wait_seconds=0)

  assert await queue.extend_lease(first) is False
  assert await queue.extend_lease(second) is True


@pytest.mark.anyio
async def test_repeated_reclaims_accumulate_attempts():
  clock = _Clock()
  queue = InMemoryNotificationQueue(visibility_timeout_seconds=10, clock=clock)
  await queue.enqueue(_job())

  seen = []
  for _ in range(3):
    claimed = await queue.claim(wait_seconds=0)
    seen.append(claimed.attempts)
    clock.now += 11
  assert seen == [0, 1, 2]


@pytest.mark.anyio
async def test_dead_letter_keeps_job_for_inspection_and_requeue():
  queue = InMemoryNotificationQueue(clock=_Clock())
  job = _job(attempts=4)
  await queue.enqueue(job)
  claimed = await queue.claim(wait_seconds=0)

  assert await queue.dead_letter(claimed, reason="5 of 5 attempts failed") is True
  assert queue.pending_count() == 0

  records = await queue.list_dead_letters()
  assert [record.job_id for record in records] == [job.job_id]
  assert records[0].attempts == 5
  assert records[0].last_error == "5 of 5 attempts failed"
  assert records[0].dead_lettered_at is not None

  assert await queue.requeue_dead_letter(job.job_id) is True
  assert await queue.list_dead_letters() == []
  revived = await queue.claim(wait_seconds=0)
  assert revived.attempts == 0
  assert revived.last_error is None


@pytest.mark.anyio
async def test_requeue_unknown_job_returns_false():
  queue = InMemoryNotificationQueue()
  assert await queue.requeue_dead_letter("missing") is False


@pytest.mark.anyio
async def test_claim_waits_for_enqueue():
  queue = InMemoryNotificationQueue()
  waiter = asyncio.create_task(queue.claim(wait_seconds=2))
  await asyncio.sleep(0.05)
  assert not waiter.done()

  job = _job()
  await queue.enqueue(job)
  claimed = await asyncio.wait_for(waiter, timeout=1)
  assert claimed.job_id == job.job_id


@pytest.mark.anyio
async def test_claim_returns_none_after_wait():
  queue = InMemoryNotificationQueue()
  assert await queue.claim(wait_seconds=0.05) is None
