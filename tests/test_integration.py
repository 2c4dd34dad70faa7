"""
Integration tests for sealedpipe.

Tests end-to-end workflows combining the handshake, the secure codec and
the server/client sessions, over memory pipes and loopback TCP.
"""

import socket
import threading

import pytest

from sealedpipe.config import TransportConfig
from sealedpipe.core_crypto.keys import KeySet
from sealedpipe.errors import DecryptionFailedError, HandshakeError, MessageTooLargeError
from sealedpipe.integration.event_logger import EventLogger, EventType
from sealedpipe.main import main
from sealedpipe.messaging.session import (
    Client, ConnectionState, SecureChannel, Server, Session, dial
)
from sealedpipe.transport.streams import listen, memory_pipe, write_all


def start_connection(server, stream):
    t = threading.Thread(target=server.handle_connection, args=(stream,), daemon=True)
    t.start()
    return t


@pytest.fixture
def tcp_server():
    """A Server running serve() on a loopback port."""
    listener = listen(("127.0.0.1", 0))
    port = listener.getsockname()[1]
    server = Server(poll_interval=0.05)
    t = threading.Thread(target=server.serve, args=(listener,), daemon=True)
    t.start()
    yield server, port
    server.shutdown()
    t.join(5)


class TestEchoOverPipe:
    """Client and server wired together in memory."""

    def test_hello_echo(self):
        """Client sends "hello", server decrypts it and echoes it back."""
        received = []

        def handler(channel):
            data = channel.read()
            received.append(data)
            channel.write(data)

        server = Server(handler=handler)
        server_end, client_end = memory_pipe(timeout=5)
        t = start_connection(server, server_end)

        channel = Client().connect(client_end)
        channel.write(b"hello")
        assert channel.read() == b"hello"
        channel.close()
        t.join(5)

        assert received == [b"hello"]

    def test_many_messages_with_short_reads(self):
        server = Server()
        server_end, client_end = memory_pipe(max_chunk=7, timeout=5)
        t = start_connection(server, server_end)

        with Client().connect(client_end) as channel:
            for i in range(50):
                message = f"message {i}".encode() * (i + 1)
                channel.write(message)
                assert channel.read() == message
        t.join(5)
        assert not t.is_alive()

    def test_server_events(self):
        events = EventLogger()
        server = Server(events=events)
        server_end, client_end = memory_pipe(timeout=5)
        t = start_connection(server, server_end)

        with Client().connect(client_end) as channel:
            channel.write(b"hello")
            channel.read()
        t.join(5)

        stats = events.get_statistics()
        assert stats[EventType.CONNECTION_OPENED.value] == 1
        assert stats[EventType.KEY_EXCHANGE.value] == 1
        assert stats[EventType.MESSAGE_RECEIVE.value] == 1
        assert stats[EventType.MESSAGE_SEND.value] == 1
        assert stats[EventType.CONNECTION_CLOSED.value] == 1

    def test_failed_handshake_is_contained(self):
        """A client that hangs up mid-handshake does not raise in the server."""
        events = EventLogger()
        server = Server(events=events)
        server_end, client_end = memory_pipe(timeout=5)
        client_end.write(b"only ten b")
        client_end.close()

        server.handle_connection(server_end)

        assert events.get_events(EventType.KEY_EXCHANGE_FAILED)
        assert not events.get_events(EventType.KEY_EXCHANGE)

    def test_oversized_message_ends_connection(self):
        """A peer with a larger limit cannot push an oversized frame through."""
        events = EventLogger()
        server = Server(config=TransportConfig(max_message_size=16), events=events)
        server_end, client_end = memory_pipe(timeout=5)
        t = start_connection(server, server_end)

        channel = Client(config=TransportConfig(max_message_size=1024)).connect(client_end)
        channel.write(bytes(17))
        t.join(5)
        assert not t.is_alive()
        assert events.get_events(EventType.MESSAGE_TOO_LARGE)
        channel.close()

    def test_connections_use_distinct_keys(self):
        """Two clients of one server end up with different shared keys."""
        server = Server()
        keys = []
        for _ in range(2):
            server_end, client_end = memory_pipe(timeout=5)
            t = start_connection(server, server_end)
            session = Session(client_end, KeySet.generate())
            session.establish()
            keys.append(session.key_set.shared_key())
            session.close()
            t.join(5)
        assert keys[0] != keys[1]


class TestSession:
    """Tests for the connection state machine."""

    def test_states(self):
        server_end, client_end = memory_pipe(timeout=5)
        peer = Session(server_end, KeySet.generate())
        t = threading.Thread(target=peer.establish, daemon=True)
        t.start()

        session = Session(client_end, KeySet.generate())
        assert session.state is ConnectionState.CONNECTED
        channel = session.establish()
        t.join(5)

        assert session.state is ConnectionState.SECURE
        assert isinstance(channel, SecureChannel)
        assert session.key_set.shared_key() == peer.key_set.shared_key()

        channel.close()
        assert session.state is ConnectionState.CLOSED
        assert channel.closed

    def test_failed_handshake_closes_stream(self):
        server_end, client_end = memory_pipe(timeout=5)
        server_end.close()
        session = Session(client_end, KeySet.generate())
        with pytest.raises(HandshakeError):
            session.establish()
        assert session.state is ConnectionState.CLOSED

    def test_handshake_only_once(self):
        server_end, client_end = memory_pipe(timeout=5)
        server_end.close()
        session = Session(client_end, KeySet.generate())
        with pytest.raises(HandshakeError):
            session.establish()
        with pytest.raises(HandshakeError):
            session.establish()

    def test_mismatched_context_fails_reads(self):
        """Peers with different HKDF info derive different keys."""
        server_end, client_end = memory_pipe(timeout=5)
        peer = Session(server_end, KeySet.generate(info=b"one"))
        t = threading.Thread(target=peer.establish, daemon=True)
        t.start()
        channel = Session(client_end, KeySet.generate(info=b"two")).establish()
        t.join(5)

        peer.channel.write(b"hello")
        with pytest.raises(DecryptionFailedError):
            channel.read()

    def test_key_set_must_match_config_context(self):
        """A supplied KeySet with another HKDF info is refused up front."""
        key_set = KeySet.generate(info=b"other")
        with pytest.raises(ValueError):
            Server(key_set=key_set)
        with pytest.raises(ValueError):
            Client(key_set=key_set)

        config = TransportConfig(hkdf_info=b"other")
        server = Server(key_set=key_set, config=config)
        server_end, client_end = memory_pipe(timeout=5)
        t = start_connection(server, server_end)
        with Client(config=config).connect(client_end) as channel:
            channel.write(b"hello")
            assert channel.read() == b"hello"
        t.join(5)

    def test_closed_channel(self):
        server_end, client_end = memory_pipe(timeout=5)
        peer = Session(server_end, KeySet.generate())
        t = threading.Thread(target=peer.establish, daemon=True)
        t.start()
        channel = Session(client_end, KeySet.generate()).establish()
        t.join(5)
        channel.close()
        channel.close()
        with pytest.raises(ValueError):
            channel.write(b"late")

    def test_write_limit(self):
        server_end, client_end = memory_pipe(timeout=5)
        config = TransportConfig(max_message_size=8)
        peer = Session(server_end, KeySet.generate(), config)
        t = threading.Thread(target=peer.establish, daemon=True)
        t.start()
        channel = Session(client_end, KeySet.generate(), config).establish()
        t.join(5)
        channel.write(bytes(8))
        with pytest.raises(MessageTooLargeError):
            channel.write(bytes(9))


class TestEchoOverTCP:
    """Server and client over loopback sockets."""

    def test_dial_hello(self, tcp_server):
        _, port = tcp_server
        with dial(("127.0.0.1", port)) as channel:
            channel.write(b"hello")
            assert channel.read() == b"hello"

    def test_concurrent_clients(self, tcp_server):
        _, port = tcp_server
        results = {}

        def run(i):
            with dial(("127.0.0.1", port)) as channel:
                message = f"client {i}".encode()
                channel.write(message)
                results[i] = channel.read() == message

        threads = [threading.Thread(target=run, args=(i,)) for i in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(10)
        assert results == {i: True for i in range(8)}

    def test_stalled_client_does_not_block_others(self, tcp_server):
        _, port = tcp_server
        stalled = socket.create_connection(("127.0.0.1", port))
        try:
            with dial(("127.0.0.1", port)) as channel:
                channel.write(b"still served")
                assert channel.read() == b"still served"
        finally:
            stalled.close()

    def test_garbage_client_does_not_stop_server(self, tcp_server):
        _, port = tcp_server
        bad = socket.create_connection(("127.0.0.1", port))
        bad.sendall(b"x" * 32 + b"\x00" * 8)
        bad.close()

        with dial(("127.0.0.1", port)) as channel:
            channel.write(b"after garbage")
            assert channel.read() == b"after garbage"

    def test_handshake_timeout(self):
        listener = listen(("127.0.0.1", 0))
        port = listener.getsockname()[1]
        events = EventLogger()
        server = Server(config=TransportConfig(handshake_timeout=0.2),
                        events=events, poll_interval=0.05)
        t = threading.Thread(target=server.serve, args=(listener,), daemon=True)
        t.start()
        try:
            silent = socket.create_connection(("127.0.0.1", port))
            silent.recv(32)
            # server gives up and closes the connection
            silent.settimeout(5)
            assert silent.recv(1) == b""
            silent.close()
        finally:
            server.shutdown()
            t.join(5)
        assert events.get_events(EventType.KEY_EXCHANGE_FAILED)

    def test_shutdown_releases_listener(self):
        listener = listen(("127.0.0.1", 0))
        server = Server(poll_interval=0.05)
        t = threading.Thread(target=server.serve, args=(listener,), daemon=True)
        t.start()
        server.shutdown()
        t.join(5)
        assert not t.is_alive()
        assert listener.fileno() == -1
        assert server.events.get_events(EventType.SYSTEM_SHUTDOWN)


class TestCommandLine:
    """Tests for the sealedpipe entry point."""

    def test_client_prints_echo(self, tcp_server, capsys):
        _, port = tcp_server
        assert main(["--host", "127.0.0.1", str(port), "hello"]) == 0
        assert capsys.readouterr().out == "hello\n"

    def test_missing_arguments(self):
        assert main([]) == 2

    def test_invalid_config(self):
        assert main(["--max-message-size", "0", "4000", "hi"]) == 2

    def test_connection_refused(self):
        placeholder = socket.socket()
        placeholder.bind(("127.0.0.1", 0))
        port = placeholder.getsockname()[1]
        placeholder.close()
        assert main(["--host", "127.0.0.1", str(port), "hello"]) == 1
