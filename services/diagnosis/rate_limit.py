"""Fixed-window request limiting behind a pluggable counter store."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Protocol, Tuple


class RateLimitStore(Protocol):
	"""Counter storage used by RateLimiter; one counter per client key."""

	async def get(self, key: str) -> int:
		...

	async def increment(self, key: str) -> int:
		...

	async def expire(self, key: str, seconds: float) -> None:
		...


class InMemoryRateLimitStore:
	"""Process-local counters with per-key expiry.

	Expired counters are swept at most once per `purge_interval` seconds
	from `increment`, so keys that never come back do not accumulate.
	"""

	def __init__(self, clock: Callable[[], float] = time.monotonic, purge_interval: float = 60.0) -> None:
		if purge_interval <= 0:
			raise ValueError("purge_interval must be positive.")
		self._clock = clock
		self._counters: Dict[str, Tuple[int, Optional[float]]] = {}
		self.purge_interval = purge_interval
		self._next_purge = clock() + purge_interval

	async def get(self, key: str) -> int:
		"""Return the live count for a key, dropping it once expired."""
		count, expires_at = self._counters.get(key, (0, None))
		if expires_at is not None and self._clock() >= expires_at:
			del self._counters[key]
			return 0
		return count

	async def increment(self, key: str) -> int:
		"""Add one to a key's counter and return the new value."""
		if self._clock() >= self._next_purge:
			self.purge()
		count = await self.get(key)
		_, expires_at = self._counters.get(key, (0, None))
		self._counters[key] = (count + 1, expires_at)
		return count + 1

	async def expire(self, key: str, seconds: float) -> None:
		"""Schedule a key to reset after `seconds`."""
		count = await self.get(key)
		self._counters[key] = (count, self._clock() + seconds)

	def purge(self) -> int:
		"""Remove expired counters; returns how many were dropped."""
		now = self._clock()
		self._next_purge = now + self.purge_interval
		expired = [key for key, (_, expires_at) in self._counters.items() if expires_at is not None and now >= expires_at]
		for key in expired:
			del self._counters[key]
		return len(expired)


@dataclass(frozen=True)
class RateLimitDecision:
	allowed: bool
	remaining: int
	retry_after: float


class RateLimiter:
	"""Allow `points` requests per `window` seconds for each client key."""

	def __init__(self, store: RateLimitStore, *, points: int = 10, window: float = 1.0, prefix: str = "analyze") -> None:
		if store is None:
			raise ValueError("RateLimitStore is required.")
		if points <= 0 or window <= 0:
			raise ValueError("Rate limit points and window must be positive.")
		self.store = store
		self.points = points
		self.window = window
		self.prefix = prefix

	async def check(self, client_key: str) -> RateLimitDecision:
		"""Consume one point for the client and report whether the request may proceed."""
		key = f"{self.prefix}:{client_key or 'unknown'}"
		count = await self.store.increment(key)
		if count == 1:
			await self.store.expire(key, self.window)
		if count > self.points:
			return RateLimitDecision(allowed=False, remaining=0, retry_after=self.window)
		return RateLimitDecision(allowed=True, remaining=self.points - count, retry_after=0.0)
