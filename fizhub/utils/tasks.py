import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Set

from fizhub.observability.logging import log


class BackgroundTasks:
    """
    Worker pool for detached calls (validation requests). Tracks outstanding
    futures so shutdown can wait for them with a bound.
    """

    def __init__(self, max_workers: int = 2, name: str = "fizhub-worker"):
        self._executor = ThreadPoolExecutor(max_workers=max(1, int(max_workers)), thread_name_prefix=name)
        self._lock = threading.Lock()
        self._pending: Set[Future] = set()
        self._name = name

    def submit(self, fn, *args, **kwargs) -> Future:
        fut = self._executor.submit(fn, *args, **kwargs)
        with self._lock:
            self._pending.add(fut)
        fut.add_done_callback(self._on_done)
        return fut

    def _on_done(self, fut: Future) -> None:
        with self._lock:
            self._pending.discard(fut)
        exc = fut.exception() if not fut.cancelled() else None
        if exc is not None:
            log(event="background_task_failed", pool=self._name, errorType=type(exc).__name__, error=str(exc)[:300])

    def pending(self) -> int:
        with self._lock:
            return len(self._pending)

    def shutdown(self, timeout_sec: float) -> bool:
        """Stop accepting work and wait up to timeout_sec for outstanding tasks. Returns True if all finished."""
        with self._lock:
            pending = set(self._pending)
        self._executor.shutdown(wait=False)
        if not pending:
            return True
        _, not_done = wait(pending, timeout=timeout_sec)
        if not_done:
            log(event="background_tasks_abandoned", pool=self._name, count=len(not_done))
        return not not_done
