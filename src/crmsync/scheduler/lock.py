"""Per-job execution lock: at most one in-flight run per job name."""
import threading
from typing import Set


class ExecutionLock:
    """
    A set of held job names guarded by a mutex.

    try_acquire() checks and sets in one critical section, so the guarantee
    holds whether runs are dispatched from the event loop or from worker
    threads.
    """

    def __init__(self):
        self._mutex = threading.Lock()
        self._held: Set[str] = set()

    def try_acquire(self, name: str) -> bool:
        """Take the lock for `name`. Returns False if it is already held."""
        with self._mutex:
            if name in self._held:
                return False
            self._held.add(name)
            return True

    def release(self, name: str) -> None:
        with self._mutex:
            self._held.discard(name)

    def locked(self, name: str) -> bool:
        with self._mutex:
            return name in self._held
