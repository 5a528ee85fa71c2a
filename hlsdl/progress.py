import os
import sys
import threading
import time
from typing import Any, Callable, Dict, List, Optional

from flask import Flask, jsonify


class Progress:
    """Per-segment callback for run_download, with running totals."""

    def __init__(self, total: int, quiet: bool = False):
        self.total = total
        self.quiet = quiet
        self.start = time.time()
        self.done = 0
        self.failed: List[int] = []
        self.bytes = 0
        self._lock = threading.Lock()

    def __call__(self, index: int, uri: str, nbytes: int, error: Optional[BaseException] = None) -> None:
        with self._lock:
            if error is None:
                self.done += 1
                self.bytes += nbytes
            else:
                self.failed.append(index)
        if self.quiet:
            return
        if error is None:
            print(f"Downloaded segment {index}: {uri}")
        else:
            print(f"Failed segment {index}: {error}", file=sys.stderr)

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            elapsed = max(0.001, time.time() - self.start)
            return {
                "total": self.total,
                "done": self.done,
                "failed": list(self.failed),
                "bytes": self.bytes,
                "speed": self.bytes / elapsed,
            }


class ProgressPrinter:
    """Rewrites one console line with segment count, size and speed."""

    def __init__(self, progress: Progress, interval: float = 0.5):
        self.progress = progress
        self.interval = interval
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def line(self) -> str:
        snap = self.progress.snapshot()
        mb = snap["bytes"] / (1024 * 1024)
        mbs = snap["speed"] / (1024 * 1024)
        return f"Downloading: {snap['done']}/{snap['total']} segments | {mb:.2f} MB | {mbs:.2f} MB/s"

    def _loop(self) -> None:
        while not self._stop.wait(self.interval):
            print("\r" + self.line(), end="", flush=True)

    def start(self) -> None:
        self._thread = threading.Thread(target=self._loop, name="hlsdl-progress", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        if self._thread:
            self._thread.join(timeout=1.0)
            # Final state, then a newline after the progress line
            print("\r" + self.line(), flush=True)


def create_progress_app(get_state: Callable[[], Dict[str, Any]]):
    app = Flask(__name__)

    @app.get("/")
    def index():
        return (
            "<h3>hlsdl progress</h3>"
            "<p>Download JSON: <a href='/progress' target='_blank'>/progress</a></p>"
        )

    @app.get("/progress")
    def progress():
        return jsonify(get_state())

    return app


def start_progress_server(get_state: Callable[[], Dict[str, Any]], host: str = "0.0.0.0",
                          port: Optional[int] = None) -> None:
    """Serve download progress JSON. Blocking; run it in a daemon thread."""
    app = create_progress_app(get_state)
    # Respect Render/Heroku-style PORT if available
    bind_port = port if port is not None else int(os.environ.get("PORT", "5000"))
    app.run(host=host, port=bind_port, debug=False, use_reloader=False, threaded=True)
