import os
import queue
from pathlib import Path
from typing import Dict, Union

from hlsdl.errors import ReassemblyError


_FAILED = object()


class Joiner:
    """Writes segment payloads to one file in index order.

    Workers call :meth:`join` from any thread; the thread that calls
    :meth:`run` owns the reorder buffer and the output file, so neither needs
    a lock. Bytes go to ``<name>.part`` which is renamed onto ``name`` only
    once every index has been written.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self.tmp = self.path.with_suffix(self.path.suffix + ".part")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._file = self.tmp.open("wb")
        except OSError as e:
            raise ReassemblyError(f"open {self.tmp} failed: {e}") from e
        self._inbox: "queue.Queue" = queue.Queue()
        self._buffer: Dict[int, bytes] = {}
        self.cursor = 0
        self.written = 0

    @property
    def name(self) -> str:
        return str(self.path)

    @property
    def pending(self) -> int:
        return len(self._buffer)

    def join(self, index: int, data: bytes) -> None:
        self._inbox.put((index, data))

    def fail(self, exc: BaseException) -> None:
        self._inbox.put((_FAILED, exc))

    def run(self, total: int) -> None:
        """Block until indices 0..total-1 are written, then finalize the file.

        Raises whatever was passed to :meth:`fail`, or ReassemblyError; in
        both cases the partial file is removed.
        """
        try:
            while self.cursor < total:
                index, data = self._inbox.get()
                if index is _FAILED:
                    raise data
                self._accept(index, data, total)
            self._finalize()
        except BaseException:
            self.abort()
            raise

    def _accept(self, index: int, data: bytes, total: int) -> None:
        if index < 0 or index >= total:
            raise ReassemblyError(f"segment index {index} out of range 0..{total - 1}")
        if index < self.cursor or index in self._buffer:
            return
        self._buffer[index] = data
        while self.cursor in self._buffer:
            self._write(self._buffer.pop(self.cursor))
            self.cursor += 1

    def _write(self, data: bytes) -> None:
        try:
            self._file.write(data)
        except OSError as e:
            raise ReassemblyError(f"write to {self.tmp} failed: {e}") from e
        self.written += len(data)

    def _finalize(self) -> None:
        try:
            self._file.flush()
            os.fsync(self._file.fileno())
            self._file.close()
            self.tmp.replace(self.path)
        except OSError as e:
            raise ReassemblyError(f"finalize {self.path} failed: {e}") from e

    def abort(self) -> None:
        if not self._file.closed:
            self._file.close()
        self.tmp.unlink(missing_ok=True)
        self._buffer.clear()
