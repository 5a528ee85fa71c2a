import queue
import threading
from typing import Any, Callable, List, Optional


DEFAULT_WORKERS = 10

_CLOSE = object()


class WorkerPool:
    """Fixed number of threads draining a FIFO of tasks.

    Tasks are handed to ``handler`` in push order, but nothing orders their
    completion. The first exception raised by ``handler`` cancels the pool:
    tasks still queued are dropped and ``on_error(task, exc)`` is called once.
    """

    def __init__(self, workers: int, handler: Callable[[Any], None],
                 on_error: Optional[Callable[[Any, BaseException], None]] = None,
                 queue_size: int = 0):
        if workers <= 0:
            workers = DEFAULT_WORKERS
        self.workers = workers
        self.handler = handler
        self.on_error = on_error
        self.error: Optional[BaseException] = None
        self._queue: "queue.Queue[Any]" = queue.Queue(maxsize=queue_size)
        self._cancelled = threading.Event()
        self._closed = False
        self._lock = threading.Lock()
        self._threads: List[threading.Thread] = []

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def push(self, task: Any) -> bool:
        if self._closed:
            raise RuntimeError("push on a closed queue")
        if self._cancelled.is_set():
            return False
        self._queue.put(task)
        return True

    def close_queue(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self._queue.put(_CLOSE)

    def cancel(self) -> None:
        self._cancelled.set()

    def start(self) -> None:
        if self._threads:
            raise RuntimeError("pool already started")
        for i in range(self.workers):
            t = threading.Thread(target=self._worker, name=f"hlsdl-worker-{i}", daemon=True)
            t.start()
            self._threads.append(t)

    def join(self, timeout: Optional[float] = None) -> None:
        for t in self._threads:
            t.join(timeout)

    def run(self) -> None:
        self.start()
        self.join()

    def _worker(self) -> None:
        while True:
            task = self._queue.get()
            if task is _CLOSE:
                # Put the marker back so every other worker sees it too.
                self._queue.put(_CLOSE)
                return
            if self._cancelled.is_set():
                continue
            try:
                self.handler(task)
            except Exception as e:
                self._fail(task, e)

    def _fail(self, task: Any, exc: BaseException) -> None:
        with self._lock:
            first = self.error is None
            if first:
                self.error = exc
        self.cancel()
        if first and self.on_error is not None:
            self.on_error(task, exc)
