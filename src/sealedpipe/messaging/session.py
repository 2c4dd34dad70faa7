"""
Session Orchestration

Turns a raw duplex stream into a secure channel:

    CONNECTED -> HANDSHAKING -> SECURE -> CLOSED

- Server: accepts connections, runs each one on its own thread, echoes
  messages back by default
- Client: dials, runs the same handshake, hands the channel to the caller

Each connection owns its key material: the server keeps one template KeySet
and gives every accepted connection its own copy. Nothing mutable is shared
between connection threads.
"""

import logging
import socket
import threading
from enum import Enum
from typing import Callable, Optional

from ..config import TransportConfig
from ..core_crypto.keys import KeySet, fingerprint
from ..errors import (
    DecryptionFailedError,
    HandshakeError,
    MessageTooLargeError,
    SealedPipeError,
    ShortReadError,
)
from ..integration.event_logger import EventLogger, EventType
from ..transport.streams import Address, DuplexStream, SocketStream, connect
from .secure_stream import SecureReader, SecureWriter


logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 0.5   # seconds between shutdown checks in serve()


def _template_key_set(key_set: Optional[KeySet], config: TransportConfig) -> KeySet:
    """Key material for one endpoint; must agree with config.hkdf_info."""
    if key_set is None:
        return KeySet.generate(config.hkdf_info)
    if key_set.info != config.hkdf_info:
        raise ValueError(
            f"key set HKDF info {key_set.info!r} does not match config {config.hkdf_info!r}"
        )
    return key_set


class ConnectionState(Enum):
    """Lifecycle of one connection."""
    CONNECTED = "connected"
    HANDSHAKING = "handshaking"
    SECURE = "secure"
    CLOSED = "closed"


# ============================================================================
# Secure Channel
# ============================================================================

class SecureChannel:
    """
    Duplex channel of plaintext messages over a sealed, framed stream.

    One read() returns exactly one message written by one write() on the
    other side. Reads and writes are strictly sequential per direction.
    """

    def __init__(self, stream: DuplexStream, shared_key: bytes,
                 config: Optional[TransportConfig] = None,
                 events: Optional[EventLogger] = None,
                 peer: str = "?",
                 on_close: Optional[Callable[[], None]] = None):
        config = config or TransportConfig()
        self._stream = stream
        self._reader = SecureReader(stream, shared_key, config.max_message_size)
        self._writer = SecureWriter(stream, shared_key, config.max_message_size)
        self._events = events or EventLogger()
        self._peer = peer
        self._on_close = on_close
        self._closed = False

    @property
    def peer(self) -> str:
        return self._peer

    @property
    def closed(self) -> bool:
        return self._closed

    def _check_open(self) -> None:
        if self._closed:
            raise ValueError("I/O operation on closed channel")

    def _receive(self, read: Callable[[], object]):
        self._check_open()
        try:
            return read()
        except DecryptionFailedError as exc:
            self._events.log_event(EventType.DECRYPTION_FAILED, self._peer, error=str(exc))
            raise
        except MessageTooLargeError as exc:
            self._events.log_event(EventType.MESSAGE_TOO_LARGE, self._peer,
                                   size=exc.size, limit=exc.limit, direction="in")
            raise

    def read(self) -> bytes:
        """Receive and decrypt one message."""
        data = self._receive(self._reader.read)
        self._events.log_message_receive(self._peer, len(data))
        return data

    def readinto(self, buffer) -> int:
        """Receive one message into `buffer`; see SecureReader.readinto."""
        count = self._receive(lambda: self._reader.readinto(buffer))
        self._events.log_message_receive(self._peer, count)
        return count

    def write(self, data: bytes) -> int:
        """Encrypt and send one message."""
        self._check_open()
        try:
            written = self._writer.write(data)
        except MessageTooLargeError as exc:
            self._events.log_event(EventType.MESSAGE_TOO_LARGE, self._peer,
                                   size=exc.size, limit=exc.limit, direction="out")
            raise
        self._events.log_message_send(self._peer, len(data), written)
        return written

    def close(self) -> None:
        """Close the underlying stream. Safe to call twice."""
        if self._closed:
            return
        self._closed = True
        try:
            self._stream.close()
        finally:
            self._events.log_event(EventType.CONNECTION_CLOSED, self._peer)
            if self._on_close is not None:
                self._on_close()

    def __enter__(self) -> 'SecureChannel':
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


# ============================================================================
# Session
# ============================================================================

class Session:
    """
    One connection's handshake and the resulting channel.

    The session owns the stream: if the handshake fails, the stream is
    closed before the error is raised.
    """

    def __init__(self, stream: DuplexStream, key_set: KeySet,
                 config: Optional[TransportConfig] = None,
                 events: Optional[EventLogger] = None,
                 peer: str = "?"):
        self._stream = stream
        self._key_set = key_set
        self._config = config or TransportConfig()
        self._events = events or EventLogger()
        self._peer = peer
        self._channel: Optional[SecureChannel] = None
        self.state = ConnectionState.CONNECTED

    @property
    def channel(self) -> Optional[SecureChannel]:
        return self._channel

    @property
    def key_set(self) -> KeySet:
        return self._key_set

    def establish(self) -> SecureChannel:
        """
        Run the key exchange and wrap the stream.

        Returns:
            SecureChannel bound to this session's shared key

        Raises:
            HandshakeError: If the exchange fails (the stream is closed)
        """
        if self.state is not ConnectionState.CONNECTED:
            raise HandshakeError(f"cannot start handshake in state {self.state.value}")
        self.state = ConnectionState.HANDSHAKING

        settimeout = getattr(self._stream, "settimeout", None)
        try:
            if settimeout is not None and self._config.handshake_timeout:
                settimeout(self._config.handshake_timeout)
            shared_key = self._key_set.exchange(self._stream, self._events.logger)
            if settimeout is not None and self._config.handshake_timeout:
                settimeout(None)
        except HandshakeError as exc:
            self._events.log_key_exchange_failed(self._peer, exc)
            self._abort()
            raise

        self._events.log_key_exchange(
            self._peer,
            fingerprint(self._key_set.public_bytes),
            fingerprint(self._key_set.peer_public),
        )
        self._channel = SecureChannel(
            self._stream, shared_key, self._config, self._events, self._peer,
            on_close=self._mark_closed,
        )
        self.state = ConnectionState.SECURE
        return self._channel

    def close(self) -> None:
        if self._channel is not None:
            self._channel.close()
        elif self.state is not ConnectionState.CLOSED:
            self._abort()

    def _abort(self) -> None:
        self.state = ConnectionState.CLOSED
        self._stream.close()

    def _mark_closed(self) -> None:
        self.state = ConnectionState.CLOSED


# ============================================================================
# Server
# ============================================================================

ConnectionHandler = Callable[[SecureChannel], None]


def echo_handler(channel: SecureChannel) -> None:
    """Echo every message back until the peer hangs up."""
    while True:
        try:
            data = channel.read()
        except ShortReadError as exc:
            if exc.partial:
                raise
            return
        channel.write(data)


class Server:
    """Secure echo server (or any ConnectionHandler)."""

    def __init__(self, key_set: Optional[KeySet] = None,
                 config: Optional[TransportConfig] = None,
                 handler: ConnectionHandler = echo_handler,
                 events: Optional[EventLogger] = None,
                 poll_interval: float = DEFAULT_POLL_INTERVAL):
        """
        Args:
            key_set: Process-wide key material (generated if None); every
                connection gets its own copy
                and its HKDF info must match config.hkdf_info
            config: Transport settings
            handler: Called with each established channel
            events: Security event sink
            poll_interval: Seconds between shutdown checks while accepting
        """
        self._config = config or TransportConfig()
        self._key_set = _template_key_set(key_set, self._config)
        self._handler = handler
        self._events = events or EventLogger(logging.getLogger("sealedpipe.server"))
        self._poll_interval = poll_interval
        self._closing = threading.Event()

    @property
    def public_bytes(self) -> bytes:
        return self._key_set.public_bytes

    @property
    def events(self) -> EventLogger:
        return self._events

    def serve(self, listener: socket.socket) -> None:
        """
        Accept connections until shutdown() is called.

        Each connection is handled on its own daemon thread. The listener is
        closed when the loop ends.

        Raises:
            OSError: If accept() fails for any reason other than shutdown
        """
        self._events.log_event(EventType.SYSTEM_START, "system",
                               key=fingerprint(self.public_bytes))
        listener.settimeout(self._poll_interval)
        try:
            while not self._closing.is_set():
                try:
                    conn, addr = listener.accept()
                except socket.timeout:
                    continue
                except OSError as exc:
                    if self._closing.is_set():
                        break
                    self._events.logger.error("Failed to accept client: %s", exc)
                    raise
                conn.settimeout(None)
                thread = threading.Thread(
                    target=self.handle_connection,
                    args=(SocketStream(conn), f"{addr[0]}:{addr[1]}"),
                    name=f"sealedpipe-conn-{addr[0]}:{addr[1]}",
                    daemon=True,
                )
                thread.start()
        finally:
            listener.close()
            self._events.log_event(EventType.SYSTEM_SHUTDOWN, "system")

    def handle_connection(self, stream: DuplexStream, peer: str = "memory") -> None:
        """
        Handshake with one client and run the handler.

        Failures are logged and end this connection only.
        """
        self._events.log_event(EventType.CONNECTION_OPENED, peer)
        session = Session(stream, self._key_set.copy(), self._config, self._events, peer)
        try:
            channel = session.establish()
        except HandshakeError as exc:
            self._events.logger.info("Error performing handshake with %s: %s", peer, exc)
            return

        with channel:
            try:
                self._handler(channel)
            except (SealedPipeError, OSError) as exc:
                self._events.logger.info("Error handling client %s: %s", peer, exc)

    def shutdown(self) -> None:
        """Stop serve() at its next poll."""
        self._closing.set()


# ============================================================================
# Client
# ============================================================================

class Client:
    """Secure client; a fresh key pair per client unless one is given."""

    def __init__(self, key_set: Optional[KeySet] = None,
                 config: Optional[TransportConfig] = None,
                 events: Optional[EventLogger] = None):
        self._config = config or TransportConfig()
        self._key_set = _template_key_set(key_set, self._config)
        self._events = events or EventLogger(logging.getLogger("sealedpipe.client"))

    @property
    def public_bytes(self) -> bytes:
        return self._key_set.public_bytes

    def connect(self, stream: DuplexStream, peer: str = "memory") -> SecureChannel:
        """
        Handshake over an already-open stream.

        Raises:
            HandshakeError: If the exchange fails (the stream is closed)
        """
        self._events.log_event(EventType.CONNECTION_OPENED, peer)
        session = Session(stream, self._key_set.copy(), self._config, self._events, peer)
        return session.establish()


# ============================================================================
# Entry points
# ============================================================================

def dial(address: Address, config: Optional[TransportConfig] = None,
         events: Optional[EventLogger] = None) -> SecureChannel:
    """
    Generate a key pair, connect to `address`, handshake, return the channel.

    Raises:
        OSError: If the connection cannot be opened
        HandshakeError: If the key exchange fails
    """
    config = config or TransportConfig()
    stream = connect(address, timeout=config.handshake_timeout)
    return Client(config=config, events=events).connect(stream, stream.peer)


def serve(listener: socket.socket, config: Optional[TransportConfig] = None,
          handler: ConnectionHandler = echo_handler,
          events: Optional[EventLogger] = None) -> None:
    """Run a secure server with a fresh process-wide key pair on `listener`."""
    Server(config=config, handler=handler, events=events).serve(listener)
