"""Helpers that keep device tokens out of logs."""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

_VISIBLE_CHARS = 6


def mask_token(token: Any) -> str:
  """Return a short prefix/suffix view of a device token."""
  if not isinstance(token, str) or not token:
    return "<invalid>"
  # Short values would be fully exposed by prefix + suffix.
  if len(token) <= _VISIBLE_CHARS * 2:
    return "*" * len(token)
  return f"{token[:_VISIBLE_CHARS]}...{token[-_VISIBLE_CHARS:]}"


def mask_sample(tokens: Iterable[str], *, limit: int = 3) -> str:
  """Render a comma-separated sample of masked tokens."""
  sample = [mask_token(token) for token in list(tokens)[:limit]]
  return ", ".join(sample)
