"""In-process byte pipe connecting the encoder thread to the response body.

The writer end is a minimal file-like object that Pillow can ``save()`` into;
the reader end is an iterable of byte chunks that Starlette's
``StreamingResponse`` can consume. Chunks travel over a bounded queue, so a
writer that gets ahead of its reader blocks instead of buffering the whole
image.

Closing rules:

- the writer closes exactly once, either cleanly (reader sees EOF after the
  buffered chunks) or with an error (reader gets the error on its next read
  after the buffered chunks);
- closing the reader makes any pending or later write raise
  ``PipeClosedError`` within one poll interval, and releases a read that is
  still blocked in another thread.
"""
import logging
import queue
import threading
from typing import Iterator, Optional

from webpconv.config import PIPE_CHUNK_SIZE, PIPE_MAX_CHUNKS, PIPE_POLL_INTERVAL

logger = logging.getLogger("webpconv.stream")

_EOF = object()


class PipeClosedError(OSError):
    """Write attempted after the reading end went away."""


class _Failure:
    __slots__ = ("error",)

    def __init__(self, error: BaseException):
        self.error = error


class _Pipe:
    def __init__(self, chunk_size: int, max_chunks: int, poll_interval: float):
        self.chunks: queue.Queue = queue.Queue(maxsize=max(1, max_chunks))
        self.chunk_size = max(1, chunk_size)
        self.poll_interval = poll_interval
        self.reader_closed = threading.Event()
        self.writer_closed = threading.Event()
        self.close_lock = threading.Lock()

    def put(self, item) -> bool:
        """Block until item is queued. False if the reader closed first."""
        while not self.reader_closed.is_set():
            try:
                self.chunks.put(item, timeout=self.poll_interval)
                return True
            except queue.Full:
                continue
        return False


class PipeWriter:
    """Producer end. Pillow only needs write(); flush() and close() round it out."""

    def __init__(self, pipe: _Pipe):
        self._pipe = pipe
        self.bytes_written = 0

    @property
    def closed(self) -> bool:
        return self._pipe.writer_closed.is_set()

    def writable(self) -> bool:
        return True

    def write(self, data) -> int:
        if self.closed:
            raise ValueError("write to closed pipe")
        view = memoryview(data).cast("B")
        size = self._pipe.chunk_size
        for start in range(0, len(view), size):
            if not self._pipe.put(bytes(view[start:start + size])):
                raise PipeClosedError("pipe reader closed")
        self.bytes_written += len(view)
        return len(view)

    def flush(self) -> None:
        if self._pipe.reader_closed.is_set():
            raise PipeClosedError("pipe reader closed")

    def close(self) -> bool:
        """Signal EOF. Returns False if the pipe was already closed."""
        return self._finish(_EOF)

    def close_with_error(self, error: BaseException) -> bool:
        """Make the reader raise error once it reaches this point."""
        return self._finish(_Failure(error))

    def _finish(self, marker) -> bool:
        with self._pipe.close_lock:
            if self._pipe.writer_closed.is_set():
                return False
            self._pipe.writer_closed.set()
        # A closed reader drops the marker; nobody is left to see it
        self._pipe.put(marker)
        return True


class PipeReader:
    """Consumer end: single-pass, finite, not restartable."""

    def __init__(self, pipe: _Pipe):
        self._pipe = pipe
        self._pending = b""
        self._eof = False
        self._error: Optional[BaseException] = None

    @property
    def closed(self) -> bool:
        return self._pipe.reader_closed.is_set()

    def _next_chunk(self) -> bytes:
        """Next chunk from the writer; b"" at EOF. Re-raises a writer error on every call."""
        if self._pending:
            chunk, self._pending = self._pending, b""
            return chunk
        if self._error is not None:
            raise self._error
        if self._eof:
            return b""
        if self.closed:
            raise ValueError("read from closed pipe")
        item = self._pipe.chunks.get()
        if item is _EOF:
            self._eof = True
            return b""
        if isinstance(item, _Failure):
            self._error = item.error
            raise item.error
        return item

    def peek(self) -> bytes:
        """Block until the first unread chunk is available and return it without consuming it."""
        if not self._pending:
            self._pending = self._next_chunk()
        return self._pending

    def read(self, size: int = -1) -> bytes:
        if size is None or size < 0:
            return b"".join(self)
        parts: list[bytes] = []
        remaining = size
        while remaining > 0:
            chunk = self._next_chunk()
            if not chunk:
                break
            if len(chunk) > remaining:
                chunk, self._pending = chunk[:remaining], chunk[remaining:]
            parts.append(chunk)
            remaining -= len(chunk)
        return b"".join(parts)

    def __iter__(self) -> Iterator[bytes]:
        try:
            while chunk := self._next_chunk():
                yield chunk
        finally:
            self.close()

    def close(self) -> None:
        """Abandon the stream. A blocked writer fails with PipeClosedError; a blocked read returns b""."""
        if self.closed:
            return
        self._pipe.reader_closed.set()
        if not (self._eof or self._error is not None):
            logger.debug("Pipe reader closed before EOF")
        while True:
            try:
                self._pipe.chunks.get_nowait()
            except queue.Empty:
                break
        # Wake a read still parked in another thread (cancelled peek, abandoned iterator)
        try:
            self._pipe.chunks.put_nowait(_EOF)
        except queue.Full:
            pass

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()


def pipe(
    chunk_size: int = PIPE_CHUNK_SIZE,
    max_chunks: int = PIPE_MAX_CHUNKS,
    poll_interval: float = PIPE_POLL_INTERVAL,
) -> tuple[PipeReader, PipeWriter]:
    """Create a connected (reader, writer) pair."""
    shared = _Pipe(chunk_size, max_chunks, poll_interval)
    return PipeReader(shared), PipeWriter(shared)
