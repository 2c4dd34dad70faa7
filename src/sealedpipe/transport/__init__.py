# Transport Module
"""
Raw byte-stream plumbing underneath the secure codec:
- DuplexStream interface (readinto / write / close)
- TCP socket adapter, listener and dialer
- In-memory pipe for tests and local wiring
- Short read / short write recovery
"""

from .streams import (
    DuplexStream,
    SocketStream,
    PipeEnd,
    JoinedStream,
    memory_pipe,
    read_exactly,
    write_all,
    parse_address,
    connect,
    listen,
)

__all__ = [
    'DuplexStream',
    'SocketStream',
    'PipeEnd',
    'JoinedStream',
    'memory_pipe',
    'read_exactly',
    'write_all',
    'parse_address',
    'connect',
    'listen',
]
