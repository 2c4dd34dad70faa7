"""
Duplex byte streams.

The secure codec only needs three operations from the connection it wraps:

    readinto(buffer) -> int   fill up to len(buffer) bytes, 0 at EOF
    write(data) -> int        send some prefix of data, return its length
    close()

Both reads and writes may be short, so the codec goes through read_exactly()
and write_all(), which loop until the full count is transferred.

Adapters:
- SocketStream: a connected TCP socket
- PipeEnd: one side of an in-memory pipe (see memory_pipe)
- JoinedStream: a separate reader and writer glued together
"""

import contextlib
import logging
import socket
import threading
from typing import Optional, Protocol, Tuple, Union, runtime_checkable

from ..errors import ShortReadError, ShortWriteError


logger = logging.getLogger(__name__)

Address = Union[str, Tuple[str, int]]


@runtime_checkable
class DuplexStream(Protocol):
    """Anything that can be read from, written to and closed."""

    def readinto(self, buffer) -> int:
        ...

    def write(self, data) -> int:
        ...

    def close(self) -> None:
        ...


# ============================================================================
# Short read / short write recovery
# ============================================================================

def read_exactly(stream: DuplexStream, size: int) -> bytes:
    """
    Read exactly `size` bytes, retrying short reads.

    Args:
        stream: Source stream
        size: Number of bytes required

    Returns:
        The bytes read

    Raises:
        ShortReadError: If the stream hits EOF first
    """
    buf = bytearray(size)
    view = memoryview(buf)
    got = 0
    while got < size:
        count = stream.readinto(view[got:])
        if not count:
            raise ShortReadError(size, bytes(buf[:got]))
        got += count
    return bytes(buf)


def write_all(stream: DuplexStream, data: bytes) -> int:
    """
    Write all of `data`, retrying short writes.

    Returns:
        Number of bytes written (always len(data))

    Raises:
        ShortWriteError: If the stream stops accepting bytes
    """
    view = memoryview(data)
    written = 0
    while written < len(view):
        count = stream.write(view[written:])
        if not count:
            raise ShortWriteError(len(view), written)
        written += count
    return written


# ============================================================================
# TCP sockets
# ============================================================================

class SocketStream:
    """DuplexStream over a connected socket."""

    def __init__(self, sock: socket.socket):
        self._sock = sock

    @property
    def socket(self) -> socket.socket:
        return self._sock

    @property
    def peer(self) -> str:
        """Printable peer address, or '?' once the socket is gone."""
        try:
            host, port = self._sock.getpeername()[:2]
        except OSError:
            return "?"
        return f"{host}:{port}"

    def readinto(self, buffer) -> int:
        return self._sock.recv_into(buffer)

    def write(self, data) -> int:
        return self._sock.send(data)

    def settimeout(self, timeout: Optional[float]) -> None:
        self._sock.settimeout(timeout)

    def close(self) -> None:
        # shutdown fails with ENOTCONN when the peer already went away
        with contextlib.suppress(OSError):
            self._sock.shutdown(socket.SHUT_RDWR)
        self._sock.close()


def parse_address(address: Address, default_host: str = "localhost") -> Tuple[str, int]:
    """
    Turn "host:port", ":port", "port" or (host, port) into a (host, port) tuple.

    Raises:
        ValueError: If the port is missing or not a number
    """
    if isinstance(address, tuple):
        host, port = address
        return host or default_host, int(port)

    host, sep, port = address.rpartition(":")
    if not sep:
        host = ""
    if not port.isdigit():
        raise ValueError(f"Invalid address: {address!r}")
    return host or default_host, int(port)


def connect(address: Address, timeout: Optional[float] = None) -> SocketStream:
    """Open a TCP connection and wrap it."""
    host, port = parse_address(address)
    sock = socket.create_connection((host, port), timeout=timeout)
    sock.settimeout(None)
    logger.debug("Connected to %s:%d", host, port)
    return SocketStream(sock)


def listen(address: Address, backlog: int = 16) -> socket.socket:
    """Bind a listening TCP socket."""
    host, port = parse_address(address)
    sock = socket.create_server((host, port), backlog=backlog)
    logger.debug("Listening on %s:%d", *sock.getsockname()[:2])
    return sock


# ============================================================================
# In-memory pipe
# ============================================================================

class _PipeBuffer:
    """One direction of a memory pipe."""

    def __init__(self):
        self._data = bytearray()
        self._closed = False
        self._cond = threading.Condition()

    def put(self, data, limit: Optional[int]) -> int:
        with self._cond:
            if self._closed:
                raise BrokenPipeError("write on closed pipe")
            chunk = bytes(data[:limit]) if limit else bytes(data)
            self._data += chunk
            self._cond.notify_all()
            return len(chunk)

    def take_into(self, buffer, limit: Optional[int], timeout: Optional[float]) -> int:
        view = memoryview(buffer).cast("B")
        with self._cond:
            while not self._data and not self._closed:
                if not self._cond.wait(timeout):
                    raise TimeoutError("pipe read timed out")
            size = min(len(view), len(self._data))
            if limit:
                size = min(size, limit)
            view[:size] = self._data[:size]
            del self._data[:size]
            return size

    def close(self) -> None:
        with self._cond:
            self._closed = True
            self._cond.notify_all()


class PipeEnd:
    """
    One side of a memory pipe.

    Bytes written here are read from the other end. Closing either end makes
    the other end see EOF once its buffer drains, and makes writes fail with
    BrokenPipeError.
    """

    def __init__(self, inbound: _PipeBuffer, outbound: _PipeBuffer,
                 max_chunk: Optional[int] = None,
                 timeout: Optional[float] = None):
        self._inbound = inbound
        self._outbound = outbound
        self._max_chunk = max_chunk
        self._timeout = timeout

    def readinto(self, buffer) -> int:
        return self._inbound.take_into(buffer, self._max_chunk, self._timeout)

    def write(self, data) -> int:
        return self._outbound.put(data, self._max_chunk)

    def close(self) -> None:
        self._inbound.close()
        self._outbound.close()


def memory_pipe(max_chunk: Optional[int] = None,
                timeout: Optional[float] = None) -> Tuple[PipeEnd, PipeEnd]:
    """
    Create two connected in-memory stream ends.

    Args:
        max_chunk: If set, every read and write moves at most this many
            bytes, which exercises short-read / short-write handling
        timeout: Seconds a read may block before TimeoutError

    Returns:
        (left, right) pipe ends
    """
    a_to_b = _PipeBuffer()
    b_to_a = _PipeBuffer()
    left = PipeEnd(b_to_a, a_to_b, max_chunk, timeout)
    right = PipeEnd(a_to_b, b_to_a, max_chunk, timeout)
    return left, right


class JoinedStream:
    """Glue a reader and a writer (and optionally a closer) into one stream."""

    def __init__(self, reader, writer, closer=None):
        self.reader = reader
        self.writer = writer
        self.closer = closer

    def readinto(self, buffer) -> int:
        return self.reader.readinto(buffer)

    def write(self, data) -> int:
        return self.writer.write(data)

    def close(self) -> None:
        if self.closer is not None:
            self.closer.close()
