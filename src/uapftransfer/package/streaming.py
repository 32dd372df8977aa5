"""Bounded producer/consumer pipe for streamed archives.

A background thread writes archive bytes into one end; the caller reads from the
other end like a regular binary file. Memory stays bounded to
`max_chunks * chunk_size` bytes regardless of archive size.

Error channel: if the producer raises, the exception is re-raised on the
consumer's next `read()`. Closing the reader early cancels the producer with
`ExportCancelledError`.
"""

from __future__ import annotations

import io
import queue
import threading
from typing import Any, Callable, Optional

from ..core.errors import ExportCancelledError
from ..core.logging import get_logger

logger = get_logger(__name__)

_EOF = object()
_PUT_POLL_S = 0.1


class _PipeFailure:
    __slots__ = ("error",)

    def __init__(self, error: BaseException) -> None:
        self.error = error


class PipeWriter(io.RawIOBase):
    """Write end of the pipe (handed to the producer).

    Not seekable or tellable: `zipfile` writes data descriptors instead of
    seeking back to patch local headers.
    """

    def __init__(self, pipe: "_Pipe", *, chunk_size: int) -> None:
        super().__init__()
        self._pipe = pipe
        self._chunk_size = int(chunk_size)
        self._pending = bytearray()
        self._aborted = False

    def writable(self) -> bool:
        return True

    def write(self, data: Any) -> int:
        if self.closed:
            raise ValueError("write to closed pipe")
        view = memoryview(data).cast("B")
        if self._aborted:
            return len(view)
        self._pending.extend(view)
        while len(self._pending) >= self._chunk_size:
            chunk = bytes(self._pending[: self._chunk_size])
            del self._pending[: self._chunk_size]
            self._pipe.put(chunk)
        return len(view)

    def flush(self) -> None:
        if self._pending and not self.closed and not self._aborted:
            self._pipe.put(bytes(self._pending))
            self._pending.clear()

    def close(self) -> None:
        if not self.closed:
            self.flush()
        super().close()

    def abort(self) -> None:
        """Drop buffered bytes; later writes are accepted and discarded."""
        self._aborted = True
        self._pending.clear()


class _Pipe:
    def __init__(self, max_chunks: int) -> None:
        self._queue: "queue.Queue[Any]" = queue.Queue(maxsize=max(1, int(max_chunks)))
        self.cancelled = threading.Event()

    def put(self, item: Any) -> None:
        # Poll so a producer blocked on a full queue notices consumer-side cancellation.
        while True:
            if self.cancelled.is_set():
                raise ExportCancelledError("archive stream was closed by the reader")
            try:
                self._queue.put(item, timeout=_PUT_POLL_S)
                return
            except queue.Full:
                continue

    def put_final(self, item: Any) -> None:
        try:
            self.put(item)
        except ExportCancelledError:
            pass

    def get(self) -> Any:
        return self._queue.get()

    def drain(self) -> None:
        while True:
            try:
                self._queue.get_nowait()
            except queue.Empty:
                return


class ArchiveStream(io.RawIOBase):
    """Read end of the pipe: a read-only, non-seekable binary stream."""

    def __init__(self, pipe: _Pipe, thread: threading.Thread) -> None:
        super().__init__()
        self._pipe = pipe
        self._thread = thread
        self._buffer = b""
        self._eof = False
        self._error: Optional[BaseException] = None

    def readable(self) -> bool:
        return True

    def _fill(self) -> None:
        item = self._pipe.get()
        if item is _EOF:
            self._eof = True
        elif isinstance(item, _PipeFailure):
            self._eof = True
            self._error = item.error
        else:
            self._buffer += item

    def _raise_if_failed(self) -> None:
        if self._error is not None:
            raise self._error

    def readinto(self, b: Any) -> int:
        view = memoryview(b).cast("B")
        data = self.read(len(view))
        n = len(data)
        view[:n] = data
        return n

    def read(self, size: int = -1) -> bytes:
        if self.closed:
            raise ValueError("read from closed archive stream")
        if size is None or size < 0:
            return self.readall()
        while not self._buffer and not self._eof:
            self._fill()
        if not self._buffer:
            self._raise_if_failed()
            return b""
        out, self._buffer = self._buffer[:size], self._buffer[size:]
        return out

    def readall(self) -> bytes:
        parts = []
        while True:
            chunk = self.read(1024 * 1024)
            if not chunk:
                break
            parts.append(chunk)
        return b"".join(parts)

    def close(self) -> None:
        if self.closed:
            return
        if not self._eof:
            self._pipe.cancelled.set()
            self._pipe.drain()
        super().close()
        self._thread.join(timeout=5.0)


def start_producer(
    produce: Callable[[PipeWriter], None],
    *,
    chunk_size: int,
    max_chunks: int,
    name: str = "uapf-export",
) -> ArchiveStream:
    """Run `produce(writer)` on a background thread and return the read end."""
    pipe = _Pipe(max_chunks)

    def _runner() -> None:
        writer = PipeWriter(pipe, chunk_size=chunk_size)
        try:
            produce(writer)
            writer.close()
        except ExportCancelledError:
            writer.abort()
            writer.close()
            logger.info("Archive producer cancelled by reader", stream=name)
            pipe.put_final(_PipeFailure(ExportCancelledError("archive stream was closed by the reader")))
            return
        except BaseException as e:
            writer.abort()
            writer.close()
            logger.error("Archive producer failed", stream=name, error=str(e))
            pipe.put_final(_PipeFailure(e))
            return
        pipe.put_final(_EOF)

    thread = threading.Thread(target=_runner, name=name, daemon=True)
    stream = ArchiveStream(pipe, thread)
    thread.start()
    return stream
