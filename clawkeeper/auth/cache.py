"""Time-bounded cache for values that are expensive to fetch."""

import time
from collections.abc import Awaitable, Callable
from typing import Any


class TTLCache:
    """
    Maps keys to values that expire ``ttl_ms`` after they were loaded.

    One instance is shared per process; tests build their own and call
    ``clear()`` between cases.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: dict[str, tuple[float, Any]] = {}

    async def get_or_refresh(
        self,
        key: str,
        ttl_ms: int,
        loader: Callable[[], Awaitable[Any]],
    ) -> Any:
        now = self._clock()
        entry = self._entries.get(key)
        if entry is not None and entry[0] > now:
            return entry[1]

        value = await loader()
        self._entries[key] = (now + ttl_ms / 1000, value)
        return value

    def invalidate(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()
