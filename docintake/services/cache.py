import asyncio
import threading
from collections import OrderedDict
from typing import Any, Awaitable, Callable, Dict, Hashable, Optional


class BoundedCache:
    """Fixed-capacity LRU cache with in-flight load de-duplication.

    Concurrent get_or_load() calls for the same missing key share one
    loader invocation; later callers await the first caller's result.
    """

    def __init__(self, max_size: int = 50):
        if max_size <= 0:
            raise ValueError("max_size must be positive")
        self.max_size = max_size
        self._data: "OrderedDict[Hashable, Any]" = OrderedDict()
        self._inflight: Dict[Hashable, asyncio.Future] = {}
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0
        self.evictions = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)

    def __contains__(self, key: Hashable) -> bool:
        with self._lock:
            return key in self._data

    def get(self, key: Hashable, default: Optional[Any] = None) -> Any:
        with self._lock:
            if key not in self._data:
                self.misses += 1
                return default
            self._data.move_to_end(key)
            self.hits += 1
            return self._data[key]

    def set(self, key: Hashable, value: Any) -> None:
        with self._lock:
            self._set_locked(key, value)

    def _set_locked(self, key: Hashable, value: Any) -> None:
        if key in self._data:
            self._data.move_to_end(key)
        self._data[key] = value
        while len(self._data) > self.max_size:
            self._data.popitem(last=False)
            self.evictions += 1

    def invalidate(self, key: Hashable) -> bool:
        with self._lock:
            return self._data.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._data.clear()

    def is_loading(self, key: Hashable) -> bool:
        with self._lock:
            return key in self._inflight

    async def get_or_load(self, key: Hashable, loader: Callable[[], Awaitable[Any]]) -> Any:
        with self._lock:
            if key in self._data:
                self._data.move_to_end(key)
                self.hits += 1
                return self._data[key]
            self.misses += 1
            future = self._inflight.get(key)
            owner = future is None
            if owner:
                future = asyncio.get_running_loop().create_future()
                self._inflight[key] = future

        if not owner:
            return await asyncio.shield(future)

        try:
            value = await loader()
        except asyncio.CancelledError:
            with self._lock:
                self._inflight.pop(key, None)
            future.cancel()
            raise
        except Exception as e:
            with self._lock:
                self._inflight.pop(key, None)
            future.set_exception(e)
            # Waiters re-raise it; mark retrieved so an unawaited future stays quiet
            future.exception()
            raise

        with self._lock:
            self._set_locked(key, value)
            self._inflight.pop(key, None)
        future.set_result(value)
        return value

    def stats(self) -> Dict[str, int]:
        with self._lock:
            return {
                "size": len(self._data),
                "max_size": self.max_size,
                "inflight": len(self._inflight),
                "hits": self.hits,
                "misses": self.misses,
                "evictions": self.evictions,
            }
