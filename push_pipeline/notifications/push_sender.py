"""Push notification delivery implementations."""

from __future__ import annotations

import logging

import firebase_admin
from firebase_admin import exceptions as firebase_exceptions
from firebase_admin import messaging
from starlette.concurrency import run_in_threadpool

from push_pipeline.notifications.contracts import PushMessage, PushProviderError, SendResult
from push_pipeline.utils.masking import mask_token

logger = logging.getLogger(__name__)

# FCM rejects multicast requests above this many tokens.
MULTICAST_MAX_TOKENS = 500


def _error_code(exc: BaseException) -> str | None:
  """Map Admin SDK exceptions onto `messaging/<kebab-code>` provider codes."""
  if isinstance(exc, messaging.UnregisteredError):
    return "messaging/registration-token-not-registered"
  if isinstance(exc, messaging.SenderIdMismatchError):
    return "messaging/sender-id-mismatch"
  code = getattr(exc, "code", None)
  if not code:
    return None
  return f"messaging/{str(code).lower().replace('_', '-')}"


def _failed_result(token: str, exc: BaseException) -> SendResult:
  return SendResult(token=token, success=False, error_code=_error_code(exc), error_message=str(exc) or type(exc).__name__)


class FirebasePushProvider:
  """`firebase_admin.messaging` backed provider supporting single and multicast sends."""

  def __init__(self, *, app: firebase_admin.App | None = None) -> None:
    self._app = app

  def _notification(self, message: PushMessage) -> messaging.Notification:
    # Empty strings are omitted so the device does not render a blank title/body line.
    return messaging.Notification(title=message.title or None, body=message.body or None)

  def _send_sync(self, token: str, message: PushMessage) -> SendResult:
    payload = messaging.Message(token=token, notification=self._notification(message), data=message.data)
    try:
      message_id = messaging.send(payload, app=self._app)
    except firebase_exceptions.FirebaseError as exc:
      logger.warning("FCM send failed token=%s code=%s error=%s", mask_token(token), _error_code(exc), exc)
      return _failed_result(token, exc)
    return SendResult(token=token, success=True, message_id=message_id)

  def _send_multicast_sync(self, tokens: list[str], message: PushMessage) -> list[SendResult]:
    results: list[SendResult] = []
    for start in range(0, len(tokens), MULTICAST_MAX_TOKENS):
      chunk = tokens[start : start + MULTICAST_MAX_TOKENS]
      try:
        payload = messaging.MulticastMessage(tokens=chunk, notification=self._notification(message), data=message.data)
        batch = messaging.send_each_for_multicast(payload, app=self._app)
      except firebase_exceptions.FirebaseError as exc:
        # Earlier chunks were delivered; hand their results back with the error.
        raise PushProviderError(str(exc) or type(exc).__name__, code=_error_code(exc), partial_results=results) from exc
      except ValueError as exc:
        # The SDK validates tokens client-side and raises before any request is made.
        raise PushProviderError(str(exc), code="messaging/invalid-argument", partial_results=results) from exc

      logger.debug("FCM multicast chunk success=%d failure=%d", batch.success_count, batch.failure_count)
      for token, response in zip(chunk, batch.responses, strict=True):
        if response.success:
          results.append(SendResult(token=token, success=True, message_id=response.message_id))
        else:
          results.append(_failed_result(token, response.exception))
    return results

  async def send_one(self, token: str, message: PushMessage) -> SendResult:
    """Send to one token; per-token provider errors are returned, not raised."""
    return await run_in_threadpool(self._send_sync, token, message)

  async def send_many(self, tokens: list[str], message: PushMessage) -> list[SendResult]:
    """Send to many tokens; raises `PushProviderError` when the request fails as a whole."""
    return await run_in_threadpool(self._send_multicast_sync, tokens, message)


class NullPushProvider:
  """No-op provider used when push delivery is disabled or unconfigured."""

  async def send_one(self, token: str, message: PushMessage) -> SendResult:
    """Drop the notification while recording a debug log."""
    logger.debug("Push provider disabled; dropping push token=%s title_present=%s", mask_token(token), bool(message.title))
    return SendResult(token=token, success=True)

  async def send_many(self, tokens: list[str], message: PushMessage) -> list[SendResult]:
    return [await self.send_one(token, message) for token in tokens]
