# Secure Messaging Module
"""
Secure transport implementations including:
- XSalsa20-Poly1305 sealed frames
- SecureReader / SecureWriter over any duplex stream
- Handshake-then-transport sessions
- Threaded server and synchronous client

Frame format: [length (8) | nonce (24) | sealed box]
"""

from .secure_stream import (
    SecureReader,
    SecureWriter,
    XSalsa20Poly1305Cipher,
    max_frame_length,
)
from .session import (
    ConnectionState,
    SecureChannel,
    Session,
    Server,
    Client,
    echo_handler,
    dial,
    serve,
)

__all__ = [
    'SecureReader',
    'SecureWriter',
    'XSalsa20Poly1305Cipher',
    'max_frame_length',
    'ConnectionState',
    'SecureChannel',
    'Session',
    'Server',
    'Client',
    'echo_handler',
    'dial',
    'serve',
]
