import threading
import time
from collections import OrderedDict
from typing import Any, Callable, Generic, Hashable, Optional, Tuple, TypeVar

V = TypeVar('V')


class TTLCache(Generic[V]):
	"""Bounded in-process map whose entries expire after a per-entry TTL."""

	def __init__(
		self,
		*,
		ttl_seconds: float,
		max_entries: int = 1024,
		clock: Callable[[], float] = time.time,
	) -> None:
		self.ttl_seconds = ttl_seconds
		self.max_entries = max_entries
		self._clock = clock
		self._entries: 'OrderedDict[Hashable, Tuple[float, V]]' = OrderedDict()
		self._lock = threading.Lock()

	def now(self) -> float:
		return self._clock()

	def get(self, key: Hashable) -> Optional[V]:
		with self._lock:
			entry = self._entries.get(key)
			if entry is None:
				return None
			expires_at, value = entry
			if self._clock() >= expires_at:
				del self._entries[key]
				return None
			return value

	def set(self, key: Hashable, value: V, ttl: float | None = None) -> float:
		"""Store ``value`` and return its absolute expiry timestamp."""
		lifetime = self.ttl_seconds if ttl is None else ttl
		expires_at = self._clock() + max(lifetime, 0.0)
		with self._lock:
			self._entries.pop(key, None)
			self._entries[key] = (expires_at, value)
			while len(self._entries) > self.max_entries:
				self._entries.popitem(last=False)
		return expires_at

	def expires_at(self, key: Hashable) -> Optional[float]:
		with self._lock:
			entry = self._entries.get(key)
			return entry[0] if entry else None

	def invalidate(self, key: Hashable) -> None:
		with self._lock:
			self._entries.pop(key, None)

	def clear(self) -> None:
		with self._lock:
			self._entries.clear()

	def __contains__(self, key: Any) -> bool:
		return self.get(key) is not None

	def __len__(self) -> int:
		with self._lock:
			return len(self._entries)
