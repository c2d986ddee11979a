"""
Token accounting.

Key features:
- ``accumulate_usage`` sums a sequence of usage snapshots
- ``TokenAccountant`` keeps the running total of one run while it is polled
- ``estimate_usage`` provides a deterministic figure for providers that report nothing
- ``UsageLedger`` keeps per-thread totals across runs
- ``estimate_cost`` converts usage into an approximate USD cost
"""

import asyncio
import math
from typing import Dict, Iterable, Optional

from .logs import get_logger
from .types import TokenUsage

logger = get_logger("usage")

# Characters per token used when a provider does not report usage
ESTIMATE_CHARS_PER_TOKEN = 4

DEFAULT_PRICING_MODEL = "gpt-4-turbo-preview"

# USD per 1K tokens
MODEL_PRICING: Dict[str, Dict[str, float]] = {
  "gpt-4-turbo-preview": {"input": 0.01, "output": 0.03},
  "gpt-4-0125-preview": {"input": 0.01, "output": 0.03},
  "gpt-4-1106-preview": {"input": 0.01, "output": 0.03},
  "gpt-4": {"input": 0.03, "output": 0.06},
  "gpt-4-32k": {"input": 0.06, "output": 0.12},
  "gpt-3.5-turbo": {"input": 0.0005, "output": 0.0015},
  "gpt-3.5-turbo-16k": {"input": 0.003, "output": 0.004},
}


def accumulate_usage(snapshots: Iterable[Optional[TokenUsage]]) -> TokenUsage:
  """
  Sum usage snapshots; ``None`` entries (iterations without usage) are skipped.
  """
  total = TokenUsage()
  for snapshot in snapshots:
    if snapshot is not None:
      total = total + snapshot
  return total


def estimate_tokens(text: str, ratio: int = ESTIMATE_CHARS_PER_TOKEN) -> int:
  return math.ceil(len(text or "") / ratio)


def estimate_usage(text: str, ratio: int = ESTIMATE_CHARS_PER_TOKEN) -> TokenUsage:
  """
  Estimate usage from the length of ``text``.

  The same estimate is used for prompt and completion, so the total is twice
  the per-side figure.
  """
  tokens = estimate_tokens(text, ratio)
  return TokenUsage(prompt_tokens=tokens, completion_tokens=tokens, total_tokens=tokens * 2)


class TokenAccountant:
  """
  Running token total for one run.

  With ``cumulative=True`` each snapshot is read as the run's usage to date and
  only its growth over the previous snapshot is added. Providers report run
  usage this way, so adding every snapshot as-is would count the same tokens
  once per poll. With ``cumulative=False`` snapshots are per-iteration deltas and
  are summed unchanged.
  """

  def __init__(self, cumulative: bool = True):
    self.cumulative = cumulative
    self._total = TokenUsage()
    self._last: Optional[TokenUsage] = None
    self.observed = False

  def add(self, snapshot: Optional[TokenUsage]) -> TokenUsage:
    if snapshot is None:
      return self._total
    self.observed = True

    if not self.cumulative:
      self._total = self._total + snapshot
      return self._total

    previous = self._last or TokenUsage()
    delta = TokenUsage(
      prompt_tokens=max(snapshot.prompt_tokens - previous.prompt_tokens, 0),
      completion_tokens=max(snapshot.completion_tokens - previous.completion_tokens, 0),
      total_tokens=max(snapshot.total_tokens - previous.total_tokens, 0),
    )
    self._last = snapshot
    self._total = self._total + delta
    return self._total

  @property
  def total(self) -> TokenUsage:
    return self._total

  def result(self, fallback_text: str) -> TokenUsage:
    """Return the total, or an estimate from ``fallback_text`` when no usage was ever reported."""
    if not self.observed:
      logger.debug("No usage reported by the provider, estimating from the response length")
      return estimate_usage(fallback_text)
    return self._total


class UsageLedger:
  """Accumulated usage per thread across runs."""

  def __init__(self):
    self._totals: Dict[str, TokenUsage] = {}
    self._lock = asyncio.Lock()

  async def add(self, thread_id: str, usage: TokenUsage) -> TokenUsage:
    async with self._lock:
      total = self._totals.get(thread_id, TokenUsage()) + usage
      self._totals[thread_id] = total
      return total

  def get(self, thread_id: str) -> TokenUsage:
    return self._totals.get(thread_id, TokenUsage())

  def clear(self, thread_id: Optional[str] = None) -> None:
    if thread_id is None:
      self._totals.clear()
    else:
      self._totals.pop(thread_id, None)


def estimate_cost(usage: TokenUsage, model: str = DEFAULT_PRICING_MODEL) -> Dict[str, float]:
  """
  Approximate cost in USD, rounded to 4 decimal places.

  Unknown models are priced like ``DEFAULT_PRICING_MODEL``.
  """
  pricing = MODEL_PRICING.get(model)
  if pricing is None:
    pricing = MODEL_PRICING[DEFAULT_PRICING_MODEL]
  input_cost = usage.prompt_tokens / 1000 * pricing["input"]
  output_cost = usage.completion_tokens / 1000 * pricing["output"]
  return {
    "inputCost": round(input_cost, 4),
    "outputCost": round(output_cost, 4),
    "totalCost": round(input_cost + output_cost, 4),
  }
