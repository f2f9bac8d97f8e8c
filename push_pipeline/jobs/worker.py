"""Background consumer that delivers queued push notifications."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Iterable

from push_pipeline.config import Settings
from push_pipeline.jobs.backoff import RetryPolicy
from push_pipeline.jobs.models import DispatchOutcome, ErrorKind, JobDisposition, NotificationJob
from push_pipeline.jobs.queue import NotificationQueue
from push_pipeline.notifications.classification import classify_error, classify_result, invalid_tokens
from push_pipeline.notifications.contracts import BatchPushProvider, LeaseLostError, PushMessage, PushProvider, PushProviderError, SendResult, TokenStore
from push_pipeline.notifications.payload import build_message
from push_pipeline.utils.masking import mask_sample, mask_token

logger = logging.getLogger(__name__)

DEFAULT_MIN_TOKEN_LENGTH = 21
_RETRYABLE_KINDS = (ErrorKind.TRANSIENT, ErrorKind.UNKNOWN)


def filter_tokens(tokens: Iterable[object], *, min_length: int = DEFAULT_MIN_TOKEN_LENGTH) -> list[str]:
  """Drop obviously malformed tokens and duplicates while keeping registration order."""
  seen: set[str] = set()
  accepted: list[str] = []
  for token in tokens:
    if not isinstance(token, str) or len(token) < min_length or token in seen:
      continue
    seen.add(token)
    accepted.append(token)
  return accepted


class NotificationWorker:
  """Claims notification jobs and fans them out to every registered device of the recipient."""

  def __init__(
    self,
    *,
    queue: NotificationQueue,
    token_store: TokenStore,
    provider: PushProvider,
    retry_policy: RetryPolicy | None = None,
    concurrency: int = 4,
    claim_wait_seconds: float = 5.0,
    provider_timeout_seconds: float = 10.0,
    store_timeout_seconds: float = 5.0,
    queue_timeout_seconds: float = 10.0,
    shutdown_grace_seconds: float = 20.0,
    min_token_length: int = DEFAULT_MIN_TOKEN_LENGTH,
  ) -> None:
    if concurrency <= 0:
      raise ValueError("concurrency must be a positive integer.")
    self._queue = queue
    self._token_store = token_store
    self._provider = provider
    self._retry_policy = retry_policy or RetryPolicy()
    self._concurrency = concurrency
    self._claim_wait_seconds = claim_wait_seconds
    self._provider_timeout_seconds = provider_timeout_seconds
    self._store_timeout_seconds = store_timeout_seconds
    self._queue_timeout_seconds = queue_timeout_seconds
    self._shutdown_grace_seconds = shutdown_grace_seconds
    self._min_token_length = min_token_length
    self._stopping = asyncio.Event()
    self._tasks: list[asyncio.Task[None]] = []

  @classmethod
  def from_settings(cls, settings: Settings, *, queue: NotificationQueue, token_store: TokenStore, provider: PushProvider) -> NotificationWorker:
    """Build a worker using the configured limits and timeouts."""
    retry_policy = RetryPolicy(max_attempts=settings.max_attempts, base_delay_seconds=settings.retry_base_delay_seconds, max_delay_seconds=settings.retry_max_delay_seconds)
    return cls(
      queue=queue,
      token_store=token_store,
      provider=provider,
      retry_policy=retry_policy,
      concurrency=settings.worker_concurrency,
      claim_wait_seconds=settings.claim_wait_seconds,
      provider_timeout_seconds=settings.provider_timeout_seconds,
      store_timeout_seconds=settings.store_timeout_seconds,
      queue_timeout_seconds=settings.queue_timeout_seconds,
      shutdown_grace_seconds=settings.shutdown_grace_seconds,
      min_token_length=settings.min_token_length,
    )

  @property
  def running(self) -> bool:
    return any(not task.done() for task in self._tasks)

  async def start(self) -> None:
    """Spawn the bounded pool of consumer tasks."""
    if self.running:
      return
    self._stopping = asyncio.Event()
    self._tasks = [asyncio.create_task(self._consume(index), name=f"push-worker-{index}") for index in range(self._concurrency)]
    logger.info("Notification worker started with concurrency=%d", self._concurrency)

  async def stop(self) -> None:
    """Let in-flight jobs finish within the grace period, then cancel the rest."""
    if not self._tasks:
      return
    self._stopping.set()
    _, pending = await asyncio.wait(self._tasks, timeout=self._shutdown_grace_seconds)
    for task in pending:
      # A job cancelled mid-flight stays leased and is reclaimed once its visibility timeout passes.
      task.cancel()
    await asyncio.gather(*self._tasks, return_exceptions=True)
    self._tasks = []
    logger.info("Notification worker stopped (cancelled=%d)", len(pending))

  async def _consume(self, index: int) -> None:
    claim_timeout = self._claim_wait_seconds + self._queue_timeout_seconds
    while not self._stopping.is_set():
      try:
        job = await asyncio.wait_for(self._queue.claim(wait_seconds=self._claim_wait_seconds), timeout=claim_timeout)
      except TimeoutError:
        logger.error("Worker %d timed out claiming a job", index)
        await self._pause(self._claim_wait_seconds)
        continue
      except Exception:  # noqa: BLE001
        # A backend outage must not kill the consumer; keep polling until it recovers.
        logger.error("Worker %d failed to claim a job", index, exc_info=True)
        await self._pause(self._claim_wait_seconds)
        continue
      if job is None:
        continue
      await self.process_job(job)

  async def _pause(self, seconds: float) -> None:
    try:
      await asyncio.wait_for(self._stopping.wait(), timeout=seconds)
    except TimeoutError:
      return

  async def process_job(self, job: NotificationJob) -> JobDisposition:
    """Run one claimed job through resolve, dispatch, classify and settle."""
    recipient_id = job.recipient_id.strip() if isinstance(job.recipient_id, str) else ""
    if not recipient_id:
      # Malformed input can never succeed; acknowledge so it does not cycle through retries.
      logger.warning("Job %s is missing recipient_id; acknowledging without delivery", job.job_id)
      await self._ack(job)
      return JobDisposition.COMPLETED

    if job.attempts >= self._retry_policy.max_attempts:
      # Only lease-expiry reclaims can push attempts this far; stop redelivering the job.
      reason = f"attempt budget exhausted after {job.attempts} attempts; last error: {job.last_error or 'none'}"
      logger.error("Job %s exhausted its attempts without settling; dead-lettering", job.job_id)
      await self._queue_call(self._queue.dead_letter(job, reason=reason), job=job, action="dead-letter")
      return JobDisposition.DEAD_LETTERED

    try:
      return await self._deliver(job, recipient_id)
    except LeaseLostError:
      logger.warning("Job %s was reclaimed by another consumer; abandoning this delivery", job.job_id)
      return JobDisposition.ABANDONED
    except Exception as exc:  # noqa: BLE001
      logger.error("Unexpected failure processing job %s", job.job_id, exc_info=True)
      return await self._fail(job, f"unexpected error: {type(exc).__name__}: {exc}")

  async def _deliver(self, job: NotificationJob, recipient_id: str) -> JobDisposition:
    logger.info("Processing notification job=%s recipient=%s attempt=%d", job.job_id, recipient_id, job.attempts + 1)
    try:
      tokens = await self._resolve_tokens(recipient_id)
    except TimeoutError:
      return await self._fail(job, "token lookup timed out")
    except Exception as exc:  # noqa: BLE001
      logger.warning("Token lookup failed for recipient %s: %s", recipient_id, exc)
      return await self._fail(job, f"token lookup failed: {exc}")

    if not tokens:
      logger.info("No valid device tokens for user %s; completing job %s", recipient_id, job.job_id)
      await self._ack(job)
      return JobDisposition.COMPLETED

    message = build_message(job)
    await self._renew_lease(job)
    try:
      outcomes = await self._dispatch(job, tokens, message)
    except TimeoutError:
      return await self._fail(job, f"provider batch send timed out after {self._provider_timeout_seconds}s")
    except PushProviderError as exc:
      outcomes = await self._recover_batch(job, tokens, message, exc)
      if outcomes is None:
        return await self._fail(job, f"provider error {exc.code or 'unknown'}: {exc.message}")

    return await self._settle(job, outcomes)

  async def _recover_batch(self, job: NotificationJob, tokens: list[str], message: PushMessage, exc: PushProviderError) -> list[DispatchOutcome] | None:
    """Salvage a batch that failed part-way; None means the whole job should be retried."""
    done = [classify_result(result) for result in exc.partial_results]
    done_tokens = {outcome.token for outcome in done}
    remaining = [token for token in tokens if token not in done_tokens]
    kind = classify_error(exc.code, exc.message)

    if kind is ErrorKind.INVALID_TOKEN:
      logger.warning("Batch send for job %s rejected with an invalid-token error; isolating %d tokens with per-token sends", job.job_id, len(remaining))
      await self._renew_lease(job)
      return done + await self._send_sequentially(job, remaining, message)

    if not done:
      return None
    # Devices from chunks that were already delivered keep their results; the rest carry the batch error.
    failed = [DispatchOutcome(token=token, success=False, error_kind=kind, error_code=exc.code, error_message=exc.message) for token in remaining]
    return done + failed

  async def _renew_lease(self, job: NotificationJob) -> None:
    """Push the job's visibility deadline out before the next provider call."""
    try:
      held = await asyncio.wait_for(self._queue.extend_lease(job), timeout=self._queue_timeout_seconds)
    except Exception as exc:  # noqa: BLE001
      # The final ack reports a lease that really lapsed, so delivery carries on.
      logger.warning("Lease renewal failed for job %s: %s", job.job_id, exc or "timeout")
      return
    if not held:
      raise LeaseLostError(job.job_id)

  async def _resolve_tokens(self, recipient_id: str) -> list[str]:
    entries = await asyncio.wait_for(self._token_store.list_tokens_for_user(recipient_id), timeout=self._store_timeout_seconds)
    return filter_tokens((entry.token for entry in entries), min_length=self._min_token_length)

  async def _dispatch(self, job: NotificationJob, tokens: list[str], message: PushMessage) -> list[DispatchOutcome]:
    if len(tokens) == 1:
      logger.info("Sending single push to token=%s", mask_token(tokens[0]))
      return [await self._send_one(tokens[0], message)]

    if not isinstance(self._provider, BatchPushProvider):
      logger.info("Provider has no batch send; sending to %d tokens one by one", len(tokens))
      return await self._send_sequentially(job, tokens, message)

    logger.info("Sending multicast to %d tokens (sample: %s)", len(tokens), mask_sample(tokens, limit=2))
    results = await asyncio.wait_for(self._provider.send_many(tokens, message), timeout=self._provider_timeout_seconds)
    return self._match_results(tokens, results)

  def _match_results(self, tokens: list[str], results: list[SendResult]) -> list[DispatchOutcome]:
    by_token = {result.token: result for result in results}
    outcomes: list[DispatchOutcome] = []
    for token in tokens:
      result = by_token.get(token)
      if result is None:
        outcomes.append(DispatchOutcome(token=token, success=False, error_kind=ErrorKind.UNKNOWN, error_message="provider returned no result for token"))
      else:
        outcomes.append(classify_result(result))
    return outcomes

  async def _send_one(self, token: str, message: PushMessage) -> DispatchOutcome:
    try:
      result = await asyncio.wait_for(self._provider.send_one(token, message), timeout=self._provider_timeout_seconds)
    except TimeoutError:
      return DispatchOutcome(token=token, success=False, error_kind=ErrorKind.TRANSIENT, error_code="timeout", error_message=f"send timed out after {self._provider_timeout_seconds}s")
    except PushProviderError as exc:
      return DispatchOutcome(token=token, success=False, error_kind=classify_error(exc.code, exc.message), error_code=exc.code, error_message=exc.message)
    except Exception as exc:  # noqa: BLE001
      # One failing device must not abort delivery to the others.
      return DispatchOutcome(token=token, success=False, error_kind=ErrorKind.TRANSIENT, error_message=f"{type(exc).__name__}: {exc}")
    return classify_result(result)

  async def _send_sequentially(self, job: NotificationJob, tokens: list[str], message: PushMessage) -> list[DispatchOutcome]:
    outcomes: list[DispatchOutcome] = []
    for index, token in enumerate(tokens):
      if index:
        # Each send may take a full provider timeout, so the lease is renewed per device.
        await self._renew_lease(job)
      outcomes.append(await self._send_one(token, message))
    return outcomes

  async def _settle(self, job: NotificationJob, outcomes: list[DispatchOutcome]) -> JobDisposition:
    for outcome in outcomes:
      if not outcome.success:
        logger.warning("Push failed job=%s token=%s kind=%s code=%s error=%s", job.job_id, mask_token(outcome.token), outcome.error_kind, outcome.error_code, outcome.error_message)

    stale_tokens = invalid_tokens(outcomes)
    if stale_tokens:
      await self._prune(stale_tokens)

    succeeded = sum(1 for outcome in outcomes if outcome.success)
    retryable = [outcome for outcome in outcomes if outcome.error_kind in _RETRYABLE_KINDS]
    logger.info("Dispatch result job=%s success=%d invalid=%d retryable=%d", job.job_id, succeeded, len(stale_tokens), len(retryable))

    if succeeded or not retryable:
      await self._ack(job)
      return JobDisposition.COMPLETED

    first = retryable[0]
    return await self._fail(job, f"{len(retryable)} of {len(outcomes)} devices failed; first error {first.error_code or first.error_kind}: {first.error_message}")

  async def _prune(self, tokens: list[str]) -> None:
    """Delete invalid tokens; a failed delete is only logged since the next send will report them again."""
    logger.warning("Removing %d invalid tokens (sample: %s)", len(tokens), mask_sample(tokens))
    try:
      await asyncio.wait_for(self._token_store.delete_tokens(tokens), timeout=self._store_timeout_seconds)
    except Exception as exc:  # noqa: BLE001
      logger.error("Failed removing %d invalid tokens: %s", len(tokens), exc or "timeout")

  async def _fail(self, job: NotificationJob, reason: str) -> JobDisposition:
    attempt = job.attempts + 1
    if self._retry_policy.should_dead_letter(job.attempts):
      logger.error("Job %s failed attempt %d/%d; dead-lettering: %s", job.job_id, attempt, self._retry_policy.max_attempts, reason)
      await self._queue_call(self._queue.dead_letter(job, reason=reason), job=job, action="dead-letter")
      return JobDisposition.DEAD_LETTERED

    delay = self._retry_policy.delay_for(attempt)
    logger.warning("Job %s failed attempt %d/%d; retrying in %.1fs: %s", job.job_id, attempt, self._retry_policy.max_attempts, delay, reason)
    await self._queue_call(self._queue.retry(job, delay_seconds=delay, error=reason), job=job, action="retry")
    return JobDisposition.RETRIED

  async def _ack(self, job: NotificationJob) -> None:
    await self._queue_call(self._queue.ack(job), job=job, action="ack")

  async def _queue_call(self, call: Awaitable[bool], *, job: NotificationJob, action: str) -> bool:
    """Apply a queue state change; on failure the lease expires and the job is redelivered."""
    try:
      return await asyncio.wait_for(call, timeout=self._queue_timeout_seconds)
    except Exception as exc:  # noqa: BLE001
      logger.error("Queue %s failed for job %s; it will be redelivered after its lease expires: %s", action, job.job_id, exc or "timeout", exc_info=not isinstance(exc, TimeoutError))
      return False
