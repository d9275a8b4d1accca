from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from threading import Lock


@dataclass
class _SessionLock:
    lock: Lock = field(default_factory=Lock)
    holders: int = 0


class SessionLockRegistry:
    """In-process mutual exclusion keyed by upload id.

    Only serializes callers inside one process; several service instances sharing
    a scratch root need an external lock.
    """

    def __init__(self) -> None:
        self._locks: dict[str, _SessionLock] = {}
        self._guard = Lock()

    @contextmanager
    def hold(self, upload_id: str) -> Iterator[None]:
        with self._guard:
            entry = self._locks.get(upload_id)
            if entry is None:
                entry = _SessionLock()
                self._locks[upload_id] = entry
            entry.holders += 1

        entry.lock.acquire()
        try:
            yield
        finally:
            entry.lock.release()
            with self._guard:
                entry.holders -= 1
                if entry.holders == 0:
                    self._locks.pop(upload_id, None)

    def is_held(self, upload_id: str) -> bool:
        with self._guard:
            entry = self._locks.get(upload_id)
            return entry is not None and entry.lock.locked()

    def tracked(self) -> int:
        with self._guard:
            return len(self._locks)
