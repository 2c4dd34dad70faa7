# sealedpipe
"""
Authenticated-encryption transport over raw byte streams.

Two peers swap X25519 public keys, derive a shared key with HKDF-SHA256, then
exchange length-framed XSalsa20-Poly1305 sealed messages.

Modules:
  - core_crypto: key pairs, key exchange, nonces
  - messaging: secure reader/writer, sessions, server and client
  - transport: duplex stream adapters (TCP, in-memory)
  - integration: security event logging
"""

from .config import TransportConfig
from .errors import (
    SealedPipeError,
    KeyGenerationError,
    RandomSourceError,
    HandshakeError,
    MessageTooLargeError,
    DecryptionFailedError,
    ShortBufferError,
    BufferTooSmallError,
    ShortReadError,
    ShortWriteError,
    FrameSyncError,
)
from .messaging.session import SecureChannel, Server, Client, dial, serve

__version__ = "1.0.0"

__all__ = [
    'TransportConfig',
    'SealedPipeError',
    'KeyGenerationError',
    'RandomSourceError',
    'HandshakeError',
    'MessageTooLargeError',
    'DecryptionFailedError',
    'ShortBufferError',
    'BufferTooSmallError',
    'ShortReadError',
    'ShortWriteError',
    'FrameSyncError',
    'SecureChannel',
    'Server',
    'Client',
    'dial',
    'serve',
]
