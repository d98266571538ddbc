"""
In-flight request table.

Guarantees at most one evaluation per request id at a time: the first caller
claims the id and starts the work, concurrent duplicates attach to the same
future. Entries are released as soon as the future completes.

Owned by an engine instance (or injected), never module-global, so several
engines can run side by side.
"""

import asyncio
import threading
from typing import Callable, Dict, List, Optional, Tuple


class InFlightTable:
    def __init__(self):
        self._entries: Dict[str, asyncio.Future] = {}
        self._lock = threading.Lock()

    def claim(
        self,
        request_id: str,
        factory: Callable[[], asyncio.Future],
    ) -> Tuple[asyncio.Future, bool]:
        """
        Atomically look up or start the work for a request id.

        `factory` is only called when the id is not already in flight.

        Returns:
            (future, created) - created is False when attaching to an
            existing evaluation
        """
        with self._lock:
            existing = self._entries.get(request_id)
            if existing is not None and not existing.done():
                return existing, False
            future = factory()
            self._entries[request_id] = future

        future.add_done_callback(lambda f: self._release(request_id, f))
        return future, True

    def _release(self, request_id: str, future: asyncio.Future) -> None:
        with self._lock:
            if self._entries.get(request_id) is future:
                del self._entries[request_id]

    def get(self, request_id: str) -> Optional[asyncio.Future]:
        with self._lock:
            return self._entries.get(request_id)

    def ids(self) -> List[str]:
        with self._lock:
            return list(self._entries)

    def __contains__(self, request_id: str) -> bool:
        with self._lock:
            return request_id in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
