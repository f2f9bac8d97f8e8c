"""Classification of provider errors into invalid-token vs retryable failures."""

from __future__ import annotations

from push_pipeline.jobs.models import DispatchOutcome, ErrorKind
from push_pipeline.notifications.contracts import SendResult

# Provider codes that always mean the registration is permanently dead.
# `sender-id-mismatch` is a project credential problem, not a dead device, and stays transient.
_INVALID_TOKEN_CODES = frozenset(
  {
    "invalid-registration-token",
    "registration-token-not-registered",
    "unregistered",
  }
)

# Human-readable fragments providers attach when the code alone is ambiguous (e.g. `invalid-argument`).
_INVALID_TOKEN_MESSAGE_FRAGMENTS = (
  "not a valid fcm registration token",
  "registration token is not a valid",
  "invalid registration token",
  "registration-token-not-registered",
  "not-registered",
  "not registered",
)


def _normalize_code(code: str | None) -> str:
  """Lowercase a provider code and drop the `messaging/` namespace."""
  normalized = (code or "").strip().lower().replace("_", "-")
  if normalized.startswith("messaging/"):
    normalized = normalized[len("messaging/") :]
  return normalized


def classify_error(code: str | None, message: str | None) -> ErrorKind:
  """
  Classify a provider failure.

  The code is checked first; the message is only consulted when the code does
  not settle it, because some providers answer `invalid-argument` for both bad
  payloads and bad tokens and only the text tells them apart.
  """
  normalized_code = _normalize_code(code)
  if normalized_code in _INVALID_TOKEN_CODES:
    return ErrorKind.INVALID_TOKEN

  lowered_message = (message or "").strip().lower()
  if lowered_message and any(fragment in lowered_message for fragment in _INVALID_TOKEN_MESSAGE_FRAGMENTS):
    return ErrorKind.INVALID_TOKEN

  if not normalized_code and not lowered_message:
    return ErrorKind.UNKNOWN

  return ErrorKind.TRANSIENT


def classify_result(result: SendResult) -> DispatchOutcome:
  """Turn one provider result into a dispatch outcome."""
  if result.success:
    return DispatchOutcome(token=result.token, success=True, error_kind=ErrorKind.NONE)

  kind = classify_error(result.error_code, result.error_message)
  return DispatchOutcome(token=result.token, success=False, error_kind=kind, error_code=result.error_code, error_message=result.error_message)


def invalid_tokens(outcomes: list[DispatchOutcome]) -> list[str]:
  """Return tokens classified as invalid, without duplicates, in dispatch order."""
  seen: set[str] = set()
  tokens: list[str] = []
  for outcome in outcomes:
    if outcome.error_kind is ErrorKind.INVALID_TOKEN and outcome.token not in seen:
      seen.add(outcome.token)
      tokens.append(outcome.token)
  return tokens
