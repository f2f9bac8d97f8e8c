"""Retry delay policy for failed notification jobs."""

from __future__ import annotations

import random
from dataclasses import dataclass


@dataclass(frozen=True)
class RetryPolicy:
  """Exponential backoff with jitter and a bounded number of attempts."""

  max_attempts: int = 5
  base_delay_seconds: float = 5.0
  max_delay_seconds: float = 300.0
  jitter: bool = True

  def should_dead_letter(self, attempts_so_far: int) -> bool:
    """Return True when the attempt that just failed was the last one allowed."""
    return attempts_so_far + 1 >= self.max_attempts

  def delay_for(self, attempt: int) -> float:
    """Delay before the next try after `attempt` (1-based) failed."""
    delay = min(self.base_delay_seconds * (2 ** max(attempt - 1, 0)), self.max_delay_seconds)
    if self.jitter and delay > 0:
      # ±25% keeps a burst of failed jobs from retrying in lockstep.
      jitter_range = delay * 0.25
      delay += random.uniform(-jitter_range, jitter_range)
    return max(delay, 0.0)
