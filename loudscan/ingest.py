"""
loudscan Ingest Queue - bounded, lossy-under-overload entry point.

Responsibilities:
    - Accept requests from the inbound event thread without ever blocking it
    - Buffer at most `capacity` requests that no worker has picked up yet
    - Run `worker_count` pull loops on a dedicated or a caller-owned executor

INVARIANTS:
    - submit() never blocks on scanning work and never raises for overload
      or closure; it returns False instead
    - A worker loop pulls one request, finishes it, then pulls the next
    - close() stops intake only; buffered and running requests complete
    - A caller-owned (shared) executor is never shut down by the queue
"""

import logging
import queue
import threading
from concurrent.futures import Executor, Future, ThreadPoolExecutor, wait
from typing import Callable

from loudscan.config import ScannerConfig
from loudscan.contracts import ScanRequest
from loudscan.errors import ValidationError


logger = logging.getLogger(__name__)

# Tells one worker loop to exit
_STOP = object()

RequestHandler = Callable[[ScanRequest], object]


class IngestQueue:
    """
    Bounded buffer of ScanRequests drained by a fixed set of worker loops.

    Args:
        handler: Called once per request on a worker thread (usually a
            PipelineWorker)
        capacity: Maximum number of buffered requests
        worker_count: Number of concurrent worker loops
        executor: Shared executor to run the loops on; when None a dedicated
            ThreadPoolExecutor sized to worker_count is created and owned
    """

    def __init__(
        self,
        handler: RequestHandler,
        capacity: int,
        worker_count: int,
        executor: Executor | None = None,
    ):
        if capacity < 1:
            raise ValidationError("capacity", capacity, "must be at least 1")
        if worker_count < 1:
            raise ValidationError("worker_count", worker_count, "must be at least 1")

        self.handler = handler
        self.capacity = capacity
        self.worker_count = worker_count

        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=worker_count, thread_name_prefix="loudscan-scan"
        )
        # Unbounded underneath; `_slots` enforces the capacity so that close()
        # can always enqueue its stop markers
        self._items: queue.Queue = queue.Queue()
        self._slots = threading.BoundedSemaphore(capacity)
        self._lock = threading.Lock()
        self._closed = False
        self._pending = 0
        self._loops: list[Future] = [
            self._executor.submit(self._worker_loop, index) for index in range(worker_count)
        ]
        logger.info(
            "Ingest queue started (capacity=%d, workers=%d, %s executor)",
            capacity, worker_count, "dedicated" if self._owns_executor else "shared",
        )

    @classmethod
    def from_config(
        cls,
        handler: RequestHandler,
        config: ScannerConfig,
        shared_executor: Executor | None = None,
    ) -> "IngestQueue":
        """
        Build a queue from a ScannerConfig.

        Raises:
            ValidationError: If use_shared_pool is set but no executor is given
        """
        if config.use_shared_pool and shared_executor is None:
            raise ValidationError("use_shared_pool", True, "requires a shared executor")
        return cls(
            handler,
            capacity=config.queue_capacity,
            worker_count=config.worker_count,
            executor=shared_executor if config.use_shared_pool else None,
        )

    # -------------------------------------------------------------------------
    # Producer side
    # -------------------------------------------------------------------------

    def submit(self, request: ScanRequest) -> bool:
        """
        Enqueue a request if the queue is open and has room.

        Returns:
            True if accepted, False if closed or full (the request is dropped).
        """
        with self._lock:
            if self._closed:
                return False
            if not self._slots.acquire(blocking=False):
                logger.debug("Queue full, dropping request %s", request.request_id)
                return False
            self._items.put(request)
            self._pending += 1
            return True

    def close(self) -> None:
        """Stop accepting requests; let buffered and running ones finish."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            for _ in self._loops:
                self._items.put(_STOP)
        logger.info("Ingest queue closed")
        if self._owns_executor:
            self._executor.shutdown(wait=False)

    def join(self, timeout: float | None = None) -> bool:
        """
        Wait for every worker loop to exit after close().

        Returns:
            True if all loops finished within the timeout.
        """
        _, not_done = wait(self._loops, timeout=timeout)
        return not not_done

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        """Number of buffered requests no worker has picked up yet."""
        with self._lock:
            return self._pending

    def __enter__(self) -> "IngestQueue":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
        self.join()

    # -------------------------------------------------------------------------
    # Consumer side
    # -------------------------------------------------------------------------

    def _worker_loop(self, index: int) -> None:
        while True:
            item = self._items.get()
            if item is _STOP:
                logger.debug("Worker %d finished", index)
                return
            with self._lock:
                self._pending -= 1
            self._slots.release()
            try:
                self.handler(item)
            except Exception:
                logger.exception("Worker %d failed on request %s", index, item.request_id)
